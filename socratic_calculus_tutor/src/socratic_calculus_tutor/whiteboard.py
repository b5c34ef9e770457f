"""
Whiteboard Scene

Chains the sandbox, the curve sampler and an animator into one Scene.
A scene is built once per visualization request; frames are then derived
from elapsed time alone.
"""

import logging
import math
from dataclasses import dataclass, fields, is_dataclass
from typing import Any, Dict, Optional, Tuple, Union

from socratic_calculus_tutor.animators import (
    Animator,
    DerivativeAnimator,
    IntegralAnimator,
    LimitAnimator,
)
from socratic_calculus_tutor.contract import (
    VisualizationKind,
    VisualizationRequest,
    WhiteboardInstruction,
    to_visualization_request,
)
from socratic_calculus_tutor.curve_sampler import PathCommand, sample_path
from socratic_calculus_tutor.expression_sandbox import Evaluator, compile_expression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """Everything needed to draw the whiteboard at one instant."""
    kind: str
    elapsed: float
    curve: Tuple[PathCommand, ...]
    overlay: Any
    complete: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "elapsed": self.elapsed,
            "curve": _jsonable(self.curve),
            "overlay": _jsonable(self.overlay),
            "complete": self.complete,
        }


def _jsonable(value: Any) -> Any:
    """Plain JSON types; non-finite floats become None."""
    if isinstance(value, PathCommand):
        return {"op": value.op, "x": value.x, "y": value.y}
    if is_dataclass(value):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


class Scene:
    """A validated visualization: compiled function, sampled curve, animator."""

    def __init__(self, request: VisualizationRequest, evaluator: Evaluator, animator: Animator):
        self.request = request
        self.evaluator = evaluator
        self.animator = animator

        vp = request.viewport
        self.curve: Tuple[PathCommand, ...] = tuple(
            sample_path(evaluator, vp.x_min, vp.x_max, vp.y_min, vp.y_max, vp.width, vp.height)
        )

    @property
    def kind(self) -> str:
        return self.request.kind.value

    @property
    def duration(self) -> float:
        return self.animator.duration

    def frame_at(self, elapsed: float) -> Frame:
        overlay = self.animator.frame_at(elapsed)
        return Frame(
            kind=self.kind,
            elapsed=elapsed,
            curve=self.curve,
            overlay=overlay,
            complete=overlay.complete,
        )


def _make_animator(request: VisualizationRequest, evaluator: Evaluator) -> Animator:
    params = request.params
    vp = request.viewport
    if request.kind == VisualizationKind.LIMIT:
        return LimitAnimator(evaluator, vp, params["approach"], params.get("value"))
    if request.kind == VisualizationKind.DERIVATIVE:
        return DerivativeAnimator(evaluator, vp, params["point"])
    return IntegralAnimator(evaluator, vp, params["a"], params["b"])


def build_scene(instruction: Union[WhiteboardInstruction, VisualizationRequest]) -> Optional[Scene]:
    """
    Build the scene for an instruction.

    Returns None (nothing is drawn) when the kind is "none", the viewport is
    degenerate, or the function expression is rejected by the sandbox.
    """
    if isinstance(instruction, WhiteboardInstruction):
        request = to_visualization_request(instruction)
    else:
        request = instruction

    if request.kind == VisualizationKind.NONE:
        return None

    if not request.viewport.is_valid():
        logger.debug(f"[Whiteboard] Degenerate viewport {request.viewport}, skipping {request.kind.value}")
        return None

    evaluator = compile_expression(request.function_expression)
    if evaluator is None:
        logger.info(f"[Whiteboard] Suppressed {request.kind.value}: rejected expression")
        return None

    return Scene(request, evaluator, _make_animator(request, evaluator))

