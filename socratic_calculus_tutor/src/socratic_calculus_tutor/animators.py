"""
Visualization Animators

Each animator is a pure function of elapsed seconds: the same t always
yields the same frame, so any frame can be replayed without a running timer.
All geometry is returned in canvas coordinates of the animator's viewport.
"""

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from socratic_calculus_tutor.contract import Viewport
from socratic_calculus_tutor.curve_sampler import PathCommand

Function = Callable[[float], float]


@dataclass(frozen=True)
class Point:
    x: float
    y: float


def _point(viewport: Viewport, x: float, y: float) -> Optional[Point]:
    """Canvas point, or None where the function is undefined."""
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return Point(viewport.to_canvas_x(x), viewport.to_canvas_y(y))


class Animator:
    """Base class: subclasses produce one frame per elapsed time."""

    kind = "none"

    # Seconds after which frames stop changing
    duration: float = 0.0

    def frame_at(self, elapsed: float):
        raise NotImplementedError

    def is_complete(self, elapsed: float) -> bool:
        return elapsed >= self.duration


# ==================== Limit ====================

@dataclass(frozen=True)
class LimitFrame:
    offset: float
    snapped: bool
    moving_point: Optional[Point]  # filled circle
    limit_point: Optional[Point]   # open circle: the limit exists
    guide_x: float                 # dashed vertical line at the approach value
    guide_y: Optional[float]       # dashed horizontal line at the limit value
    complete: bool
    kind: str = "limit"


class LimitAnimator(Animator):
    """
    A point slides along the curve toward x = approach.

    offset(t) = 1.8 * e^(-1.2 t); once it falls below 0.02 the point snaps
    to the limit, staying 0.001 to the right so a removable hole at the
    approach value remains evaluable.
    """

    kind = "limit"

    INITIAL_OFFSET = 1.8
    DECAY_RATE = 1.2
    EPSILON = 0.02
    SNAP_RESIDUAL = 0.001

    def __init__(self, fn: Function, viewport: Viewport, approach: float, limit_value: Optional[float] = None):
        self.fn = fn
        self.viewport = viewport
        self.approach = approach
        self.duration = math.log(self.INITIAL_OFFSET / self.EPSILON) / self.DECAY_RATE

        if limit_value is None or not math.isfinite(limit_value):
            limit_value = fn(approach)
            if not math.isfinite(limit_value):
                limit_value = fn(approach + self.SNAP_RESIDUAL)
        self.limit_value = limit_value

    def offset_at(self, elapsed: float) -> Tuple[float, bool]:
        """Return (offset, snapped)."""
        offset = self.INITIAL_OFFSET * math.exp(-self.DECAY_RATE * max(elapsed, 0.0))
        if abs(offset) < self.EPSILON:
            return self.SNAP_RESIDUAL, True
        return offset, False

    def frame_at(self, elapsed: float) -> LimitFrame:
        offset, snapped = self.offset_at(elapsed)
        x = self.approach + offset
        limit_point = _point(self.viewport, self.approach, self.limit_value)
        return LimitFrame(
            offset=offset,
            snapped=snapped,
            moving_point=_point(self.viewport, x, self.fn(x)),
            limit_point=limit_point,
            guide_x=self.viewport.to_canvas_x(self.approach),
            guide_y=limit_point.y if limit_point else None,
            complete=snapped,
        )


# ==================== Derivative ====================

@dataclass(frozen=True)
class DerivativeFrame:
    h: float
    slope: float
    style: str                      # "secant" or "tangent"
    point: Optional[Point]          # (x0, f(x0))
    secant_point: Optional[Point]   # (x0 + h, f(x0 + h)) while h is visible
    line_start: Optional[Point]
    line_end: Optional[Point]
    complete: bool
    kind: str = "derivative"


class DerivativeAnimator(Animator):
    """
    A secant through x0 +/- h collapses into the tangent at x0.

    h(t) = 1.5 * e^(-1.2 t), floored to 0.001 once below 0.02. The slope is
    the centred difference while h > 0.005, then a forward difference, so
    we never divide by a step indistinguishable from zero.
    """

    kind = "derivative"

    INITIAL_H = 1.5
    DECAY_RATE = 1.2
    FLOOR_TRIGGER = 0.02
    H_FLOOR = 0.001
    CENTERED_MIN_H = 0.005
    ONE_SIDED_STEP = 0.001
    TANGENT_H = 0.05
    SECANT_POINT_MIN_H = 0.1
    LINE_EXTENT = 1.5

    def __init__(self, fn: Function, viewport: Viewport, point: float):
        self.fn = fn
        self.viewport = viewport
        self.x0 = point
        self.duration = math.log(self.INITIAL_H / self.FLOOR_TRIGGER) / self.DECAY_RATE

    def h_at(self, elapsed: float) -> float:
        h = self.INITIAL_H * math.exp(-self.DECAY_RATE * max(elapsed, 0.0))
        return self.H_FLOOR if h < self.FLOOR_TRIGGER else h

    def slope_for(self, h: float) -> float:
        x0 = self.x0
        if h > self.CENTERED_MIN_H:
            return (self.fn(x0 + h) - self.fn(x0 - h)) / (2 * h)
        return (self.fn(x0 + self.ONE_SIDED_STEP) - self.fn(x0)) / self.ONE_SIDED_STEP

    def frame_at(self, elapsed: float) -> DerivativeFrame:
        h = self.h_at(elapsed)
        slope = self.slope_for(h)
        x0 = self.x0
        y0 = self.fn(x0)

        line_start = line_end = None
        if math.isfinite(slope) and math.isfinite(y0):
            line_start = _point(self.viewport, x0 - self.LINE_EXTENT, y0 - slope * self.LINE_EXTENT)
            line_end = _point(self.viewport, x0 + self.LINE_EXTENT, y0 + slope * self.LINE_EXTENT)

        secant_point = None
        if h > self.SECANT_POINT_MIN_H:
            secant_point = _point(self.viewport, x0 + h, self.fn(x0 + h))

        return DerivativeFrame(
            h=h,
            slope=slope,
            style="tangent" if h < self.TANGENT_H else "secant",
            point=_point(self.viewport, x0, y0),
            secant_point=secant_point,
            line_start=line_start,
            line_end=line_end,
            complete=h == self.H_FLOOR,
        )


# ==================== Integral ====================

@dataclass(frozen=True)
class Rectangle:
    x: float
    y: float          # top edge on the canvas
    width: float
    height: float
    below_axis: bool  # drawn downward from y = 0


@dataclass(frozen=True)
class IntegralFrame:
    rectangle_count: Optional[int]      # None once the area is continuous
    rectangles: Tuple[Rectangle, ...]
    area_path: Tuple[PathCommand, ...]
    complete: bool
    kind: str = "integral"


class IntegralAnimator(Animator):
    """
    Midpoint Riemann sums that refine 4 -> 8 -> 16 -> 32 -> 64 -> continuous,
    one step every 0.5 s.
    """

    kind = "integral"

    SCHEDULE: Tuple[Optional[int], ...] = (4, 8, 16, 32, 64, None)
    STEP_SECONDS = 0.5
    AREA_SAMPLES = 100

    def __init__(self, fn: Function, viewport: Viewport, a: float, b: float):
        self.fn = fn
        self.viewport = viewport
        self.a = a
        self.b = b
        self.duration = self.STEP_SECONDS * (len(self.SCHEDULE) - 1)
        self._zero = viewport.to_canvas_y(max(viewport.y_min, 0.0))

    def rectangle_count_at(self, elapsed: float) -> Optional[int]:
        index = int(max(elapsed, 0.0) // self.STEP_SECONDS)
        return self.SCHEDULE[min(index, len(self.SCHEDULE) - 1)]

    def rectangles(self, n: int) -> List[Rectangle]:
        vp = self.viewport
        dx = (self.b - self.a) / n
        rects = []
        for i in range(n):
            left = self.a + i * dx
            y = self.fn(left + dx / 2)
            if not math.isfinite(y):
                continue
            x0 = vp.to_canvas_x(left)
            x1 = vp.to_canvas_x(left + dx)
            top = vp.to_canvas_y(y)
            rects.append(Rectangle(
                x=min(x0, x1),
                y=top if y >= 0 else self._zero,
                width=abs(x1 - x0),
                height=abs(self._zero - top),
                below_axis=y < 0,
            ))
        return rects

    def area_path(self) -> List[PathCommand]:
        """Closed shaded region over [a, b], clipped to the viewport y-range."""
        vp = self.viewport
        commands = [PathCommand("M", vp.to_canvas_x(self.a), self._zero)]
        for i in range(self.AREA_SAMPLES + 1):
            x = self.a + (i / self.AREA_SAMPLES) * (self.b - self.a)
            y = self.fn(x)
            if math.isfinite(y) and vp.y_min <= y <= vp.y_max:
                commands.append(PathCommand("L", vp.to_canvas_x(x), vp.to_canvas_y(y)))
        commands.append(PathCommand("L", vp.to_canvas_x(self.b), self._zero))
        commands.append(PathCommand("Z"))
        return commands

    def frame_at(self, elapsed: float) -> IntegralFrame:
        n = self.rectangle_count_at(elapsed)
        if n is None:
            return IntegralFrame(
                rectangle_count=None,
                rectangles=(),
                area_path=tuple(self.area_path()),
                complete=True,
            )
        return IntegralFrame(
            rectangle_count=n,
            rectangles=tuple(self.rectangles(n)),
            area_path=(),
            complete=False,
        )
