"""
Unit Tests for the Curve Sampler

Tests canvas mapping and pen-up breaks at asymptotes and holes.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_calculus_tutor", "src"))

from socratic_calculus_tutor.curve_sampler import PathCommand, count_subpaths, sample_path, to_svg_path
from socratic_calculus_tutor.expression_sandbox import compile_expression

VIEWPORT = dict(x_min=-4.0, x_max=4.0, y_min=-2.0, y_max=10.0, width=480, height=320)


def sample(expression, **overrides):
    args = dict(VIEWPORT, **overrides)
    return sample_path(compile_expression(expression), **args)


class TestSamplePath:
    """Test suite for sample_path."""

    def test_parabola_is_one_piece(self):
        commands = sample("Math.pow(x, 2)")

        assert commands[0].op == "M"
        assert count_subpaths(commands) == 1
        assert all(cmd.op in ("M", "L") for cmd in commands)

    def test_out_of_range_samples_are_skipped(self):
        commands = sample("x * x")
        # x^2 <= y_max + 1 only for |x| <= sqrt(11)
        assert all(cmd.y >= 320 - (11 + 2) / 12 * 320 - 1e-9 for cmd in commands)
        assert len(commands) < 301

    def test_removable_hole_breaks_path(self):
        # x = 2 is sample 225 of 300 exactly
        commands = sample("(x*x - 4) / (x - 2)")

        assert count_subpaths(commands) == 2
        assert len(commands) == 300

    def test_vertical_asymptote_breaks_path(self):
        commands = sample("1 / x")
        assert count_subpaths(commands) == 2

        # No segment joins the two branches
        xs = [cmd.x for cmd in commands]
        second_start = [i for i, cmd in enumerate(commands) if cmd.op == "M"][1]
        assert xs[second_start - 1] < 240 < xs[second_start]

    def test_canvas_mapping(self):
        commands = sample("3")

        assert len(commands) == 301
        assert commands[0] == PathCommand("M", 0.0, pytest.approx(320 - 5 / 12 * 320))
        assert commands[-1].x == pytest.approx(480.0)
        assert commands[150].x == pytest.approx(240.0)

    def test_y_axis_is_inverted(self):
        commands = sample("x")
        ys = [cmd.y for cmd in commands]
        assert ys == sorted(ys, reverse=True)

    def test_nothing_drawable(self):
        assert sample("sqrt(x - 100)") == []

    @pytest.mark.parametrize("overrides", [
        {"x_min": 1.0, "x_max": 1.0},
        {"y_min": 5.0, "y_max": 0.0},
    ])
    def test_degenerate_viewport(self, overrides):
        assert sample("x", **overrides) == []

    def test_sample_count(self):
        commands = sample_path(compile_expression("1"), sample_count=10, **VIEWPORT)
        assert len(commands) == 11


class TestSvgPath:
    def test_to_svg_path(self):
        commands = [PathCommand("M", 0, 1.234), PathCommand("L", 2.5, 3), PathCommand("Z")]
        assert to_svg_path(commands) == "M 0.00 1.23 L 2.50 3.00 Z"

    def test_count_subpaths_empty(self):
        assert count_subpaths([]) == 0
