"""
Curve Sampler & Path Builder

Turns an evaluator and a viewport into canvas draw commands. Undefined or
far out-of-range samples lift the pen, so asymptotes and holes render as
breaks instead of vertical spikes.
"""

import math
from typing import Callable, Iterable, List, NamedTuple

from socratic_calculus_tutor.config import SAMPLE_COUNT

# Samples further than this (data units) outside [y_min, y_max] lift the pen
OUT_OF_RANGE_MARGIN = 1.0


class PathCommand(NamedTuple):
    """One SVG-style command in canvas coordinates ("M", "L" or "Z")."""
    op: str
    x: float = 0.0
    y: float = 0.0


def sample_path(
    evaluator: Callable[[float], float],
    x_min: float,
    x_max: float,
    y_min: float,
    y_max: float,
    width: float,
    height: float,
    sample_count: int = SAMPLE_COUNT,
) -> List[PathCommand]:
    """
    Sample evaluator at sample_count + 1 evenly spaced x values.

    Returns:
        Commands where every subpath starts with "M"; an empty list when no
        sample is drawable
    """
    if sample_count <= 0 or x_max <= x_min or y_max <= y_min:
        return []

    commands: List[PathCommand] = []
    pen_down = False
    x_span = x_max - x_min
    y_span = y_max - y_min

    for i in range(sample_count + 1):
        x = x_min + (i / sample_count) * x_span
        y = evaluator(x)

        if not math.isfinite(y) or y < y_min - OUT_OF_RANGE_MARGIN or y > y_max + OUT_OF_RANGE_MARGIN:
            pen_down = False
            continue

        px = (x - x_min) / x_span * width
        py = height - (y - y_min) / y_span * height

        commands.append(PathCommand("L" if pen_down else "M", px, py))
        pen_down = True

    return commands


def count_subpaths(commands: Iterable[PathCommand]) -> int:
    """Number of separately drawn pieces (pen-up breaks + 1)."""
    return sum(1 for cmd in commands if cmd.op == "M")


def to_svg_path(commands: Iterable[PathCommand]) -> str:
    """Render commands as an SVG path "d" attribute."""
    parts = []
    for cmd in commands:
        if cmd.op == "Z":
            parts.append("Z")
        else:
            parts.append(f"{cmd.op} {cmd.x:.2f} {cmd.y:.2f}")
    return " ".join(parts)
