"""
Replace curves with short straight segments.

Reprojection moves vertices, not curves, so every segment is first turned
into a chain of LineTo no longer than ``max_segment_length`` (in the path's
own units).  Curve length is estimated from the control polygon, which is an
upper bound for Bezier curves.  Arcs are subdivided along their chord: their
curvature is not modeled.
"""

import math
from typing import List

import numpy as np

from svg_paths import ArcTo, Close, CubicTo, LineTo, MoveTo, Path, Point, QuadTo

LINE_MIN_STEPS:  int = 1
CURVE_MIN_STEPS: int = 4
ARC_MIN_STEPS:   int = 8

# Closing segments shorter than this are treated as already closed.
CLOSE_TOLERANCE: float = 1e-9

DEFAULT_MAX_SEGMENT_LENGTH: float = 2.0


def _polyline_length(points: List[Point]) -> float:
    return sum(math.dist(a, b) for a, b in zip(points, points[1:]))


def _step_count(estimated_length: float, max_segment_length: float, min_steps: int) -> int:
    return max(min_steps, math.ceil(estimated_length / max_segment_length))


def _sample_line(start: Point, end: Point, steps: int) -> List[Point]:
    t = np.linspace(0.0, 1.0, steps + 1)[1:]
    xs = start[0] + (end[0] - start[0]) * t
    ys = start[1] + (end[1] - start[1]) * t
    return list(zip(xs.tolist(), ys.tolist()))


def _sample_cubic(p0: Point, p1: Point, p2: Point, p3: Point, steps: int) -> List[Point]:
    """Points of a cubic Bezier at steps uniform parameters after t=0."""
    t = np.linspace(0.0, 1.0, steps + 1)[1:]
    mt = 1.0 - t
    w0, w1, w2, w3 = mt ** 3, 3 * mt ** 2 * t, 3 * mt * t ** 2, t ** 3
    xs = w0 * p0[0] + w1 * p1[0] + w2 * p2[0] + w3 * p3[0]
    ys = w0 * p0[1] + w1 * p1[1] + w2 * p2[1] + w3 * p3[1]
    return list(zip(xs.tolist(), ys.tolist()))


def _sample_quad(p0: Point, p1: Point, p2: Point, steps: int) -> List[Point]:
    t = np.linspace(0.0, 1.0, steps + 1)[1:]
    mt = 1.0 - t
    w0, w1, w2 = mt ** 2, 2 * mt * t, t ** 2
    xs = w0 * p0[0] + w1 * p1[0] + w2 * p2[0]
    ys = w0 * p0[1] + w1 * p1[1] + w2 * p2[1]
    return list(zip(xs.tolist(), ys.tolist()))


def densify_path(path: Path, max_segment_length: float = DEFAULT_MAX_SEGMENT_LENGTH) -> Path:
    """Return an equivalent path made only of MoveTo, LineTo and Close.

    The last sample of every segment is replaced by the segment's exact
    endpoint so that floating error does not accumulate along the path.
    """
    if not max_segment_length > 0:
        raise ValueError(f"max_segment_length must be positive, got {max_segment_length}")

    out: Path = []
    current: Point = (0.0, 0.0)
    start: Point = (0.0, 0.0)

    def emit(points: List[Point], end: Point):
        out.extend(LineTo(p) for p in points[:-1])
        out.append(LineTo(end))

    for cmd in path:
        if isinstance(cmd, MoveTo):
            out.append(cmd)
            current = start = cmd.end
        elif isinstance(cmd, LineTo):
            steps = _step_count(math.dist(current, cmd.end), max_segment_length, LINE_MIN_STEPS)
            emit(_sample_line(current, cmd.end, steps), cmd.end)
            current = cmd.end
        elif isinstance(cmd, CubicTo):
            control_polygon = [current, cmd.c1, cmd.c2, cmd.end]
            steps = _step_count(_polyline_length(control_polygon), max_segment_length, CURVE_MIN_STEPS)
            emit(_sample_cubic(current, cmd.c1, cmd.c2, cmd.end, steps), cmd.end)
            current = cmd.end
        elif isinstance(cmd, QuadTo):
            control_polygon = [current, cmd.c1, cmd.end]
            steps = _step_count(_polyline_length(control_polygon), max_segment_length, CURVE_MIN_STEPS)
            emit(_sample_quad(current, cmd.c1, cmd.end, steps), cmd.end)
            current = cmd.end
        elif isinstance(cmd, ArcTo):
            steps = _step_count(math.dist(current, cmd.end), max_segment_length, ARC_MIN_STEPS)
            emit(_sample_line(current, cmd.end, steps), cmd.end)
            current = cmd.end
        elif isinstance(cmd, Close):
            if math.dist(current, start) > CLOSE_TOLERANCE:
                steps = _step_count(math.dist(current, start), max_segment_length, LINE_MIN_STEPS)
                emit(_sample_line(current, start, steps), start)
            out.append(cmd)
            current = start

    return out
