"""
Pydantic models for the oracle's structured tutoring record.

The oracle is trusted to classify, not to be well-formed: anything that does
not validate here becomes an OracleContractViolation and is never applied.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from socratic_calculus_tutor.config import (
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    DEFAULT_X_MAX,
    DEFAULT_X_MIN,
    DEFAULT_Y_MAX,
    DEFAULT_Y_MIN,
    MAX_CONFIDENCE_DELTA,
    MIN_CONFIDENCE_DELTA,
)
from socratic_calculus_tutor.errors import OracleContractViolation
from socratic_calculus_tutor.knowledge_graph import ErrorKind


VisualizationType = Literal["limit", "derivative", "integral", "none"]
StepStatus = Literal["neutral", "student", "correct", "error"]


class Step(BaseModel):
    """One line of the worked solution shown on the whiteboard."""
    expression: str = Field(description="LaTeX expression for this step")
    status: StepStatus = Field(description="neutral=grey, student=blue, correct=green, error=red")
    annotation: Optional[str] = None


class FunctionConfig(BaseModel):
    """Graph function and the kind-specific numeric parameters."""
    expression: str = Field(description='Numeric expression in x, e.g. "Math.pow(x,2)" or "sin(x)"')
    limit_approach: Optional[float] = None
    limit_value: Optional[float] = None
    derivative_point: Optional[float] = None
    integral_a: Optional[float] = None
    integral_b: Optional[float] = None
    x_min: Optional[float] = None
    x_max: Optional[float] = None
    y_min: Optional[float] = None
    y_max: Optional[float] = None


class WhiteboardInstruction(BaseModel):
    text: str
    visualization_type: VisualizationType = "none"
    math_expression: Optional[str] = None
    function_config: Optional[FunctionConfig] = None
    steps: List[Step] = Field(default_factory=list)
    highlight_step: Optional[int] = None

    @field_validator("steps", mode="before")
    @classmethod
    def default_steps(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("highlight_step", mode="before")
    @classmethod
    def whole_step_index(cls, v: Any) -> Any:
        """A fractional or non-finite index highlights nothing."""
        if isinstance(v, float):
            return int(v) if v.is_integer() else None
        return v


DEFAULT_WHITEBOARD = WhiteboardInstruction(
    text="Waiting for student input...",
    visualization_type="none",
)

INITIAL_WHITEBOARD = WhiteboardInstruction(
    text="Ask me any math question to get started.",
    visualization_type="none",
)


class KnowledgeUpdate(BaseModel):
    """Oracle's proposed change to the knowledge graph."""
    topic: str = Field(min_length=1)
    confidence_delta: float = Field(description="Change in confidence, -30 to +20")
    mastered: Optional[bool] = None
    weak_nodes: Optional[List[str]] = None

    @field_validator("confidence_delta")
    @classmethod
    def clamp_delta(cls, v: float) -> float:
        """Keep the delta inside the range the contract allows."""
        return float(min(MAX_CONFIDENCE_DELTA, max(MIN_CONFIDENCE_DELTA, v)))


class SocraticResponse(BaseModel):
    """The complete structured record of one tutoring turn."""
    tutor_response: str
    error_type: ErrorKind
    micro_drill: bool
    whiteboard_instruction: WhiteboardInstruction = Field(
        default_factory=lambda: DEFAULT_WHITEBOARD.model_copy(deep=True)
    )
    knowledge_update: KnowledgeUpdate

    @field_validator("whiteboard_instruction", mode="before")
    @classmethod
    def default_whiteboard(cls, v: Any) -> Any:
        """A missing instruction becomes the neutral placeholder."""
        if v is None:
            return DEFAULT_WHITEBOARD.model_copy(deep=True)
        return v

    @property
    def is_correct(self) -> bool:
        return self.error_type == ErrorKind.NONE


def parse_oracle_record(payload: Any) -> SocraticResponse:
    """
    Validate a raw tool payload.

    Raises:
        OracleContractViolation: missing required fields, unknown error_type,
            or anything else that fails validation
    """
    if not isinstance(payload, Mapping):
        raise OracleContractViolation("Oracle did not return a structured record")
    try:
        return SocraticResponse.model_validate(dict(payload))
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise OracleContractViolation(f"Malformed oracle record (fields: {', '.join(fields)})") from e


# ==================== Visualization Request ====================

class VisualizationKind(Enum):
    LIMIT = "limit"
    DERIVATIVE = "derivative"
    INTEGRAL = "integral"
    NONE = "none"


@dataclass(frozen=True)
class Viewport:
    """Data-space bounds plus the canvas they are drawn on."""
    x_min: float = DEFAULT_X_MIN
    x_max: float = DEFAULT_X_MAX
    y_min: float = DEFAULT_Y_MIN
    y_max: float = DEFAULT_Y_MAX
    width: float = CANVAS_WIDTH
    height: float = CANVAS_HEIGHT

    def is_valid(self) -> bool:
        return self.x_max > self.x_min and self.y_max > self.y_min and self.width > 0 and self.height > 0

    def to_canvas_x(self, x: float) -> float:
        return (x - self.x_min) / (self.x_max - self.x_min) * self.width

    def to_canvas_y(self, y: float) -> float:
        # Canvas y grows downward
        return self.height - (y - self.y_min) / (self.y_max - self.y_min) * self.height


@dataclass(frozen=True)
class VisualizationRequest:
    """
    Immutable, fully-defaulted view of a whiteboard instruction.

    params holds only the kind-specific numbers:
        limit      -> approach, value (value may be None)
        derivative -> point
        integral   -> a, b
    """
    kind: VisualizationKind
    function_expression: str
    viewport: Viewport
    params: Mapping[str, Optional[float]] = field(default_factory=dict)
    steps: Tuple[Step, ...] = ()
    text: str = ""


def _pick(value: Optional[float], default: float) -> float:
    return default if value is None else value


def to_visualization_request(instruction: WhiteboardInstruction) -> VisualizationRequest:
    """Fill in the defaults the renderer relies on."""
    config = instruction.function_config or FunctionConfig(expression="Math.pow(x, 2)")
    kind = VisualizationKind(instruction.visualization_type)
    viewport = Viewport(
        x_min=_pick(config.x_min, DEFAULT_X_MIN),
        x_max=_pick(config.x_max, DEFAULT_X_MAX),
        y_min=_pick(config.y_min, DEFAULT_Y_MIN),
        y_max=_pick(config.y_max, DEFAULT_Y_MAX),
    )

    params: Dict[str, Optional[float]] = {}
    if kind == VisualizationKind.LIMIT:
        params = {"approach": _pick(config.limit_approach, 2.0), "value": config.limit_value}
    elif kind == VisualizationKind.DERIVATIVE:
        params = {"point": _pick(config.derivative_point, 1.0)}
    elif kind == VisualizationKind.INTEGRAL:
        params = {"a": _pick(config.integral_a, 0.0), "b": _pick(config.integral_b, 2.0)}

    return VisualizationRequest(
        kind=kind,
        function_expression=config.expression,
        viewport=viewport,
        params=params,
        steps=tuple(instruction.steps),
        text=instruction.text,
    )
