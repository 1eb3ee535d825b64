"""
SVG affine transform helpers.

Matrices are plain 6-tuples (a, b, c, d, e, f) in the SVG column-vector
convention:

    x' = a*x + c*y + e
    y' = b*x + d*y + f

Identity is (1, 0, 0, 1, 0, 0).  Matrices are built per transform attribute,
composed down the element tree and discarded once baked into geometry.
"""

import logging
import math
import re
from typing import List, Tuple

logger = logging.getLogger(__name__)

TransformMatrix = Tuple[float, float, float, float, float, float]
IDENTITY_MATRIX: TransformMatrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

_FUNCTION_RE = re.compile(r"([A-Za-z]+)\s*\(([^)]*)\)")
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


# ---------------------------------------------------------------------------
# Number formatting
# ---------------------------------------------------------------------------


def format_number(value: float) -> str:
    """Shortest exact text for *value*; integral values drop the decimal point."""
    value = float(value)
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


# ---------------------------------------------------------------------------
# Matrix algebra
# ---------------------------------------------------------------------------


def compose_transforms(outer: TransformMatrix, inner: TransformMatrix) -> TransformMatrix:
    """Compose two affine transforms: apply *inner* first, then *outer*.

    Equivalent to the matrix product outer * inner, so a child element's
    absolute matrix is ``compose_transforms(parent_matrix, child_matrix)``.
    """
    a1, b1, c1, d1, e1, f1 = outer
    a2, b2, c2, d2, e2, f2 = inner
    return (
        a1 * a2 + c1 * b2,       # a
        b1 * a2 + d1 * b2,       # b
        a1 * c2 + c1 * d2,       # c
        b1 * c2 + d1 * d2,       # d
        a1 * e2 + c1 * f2 + e1,  # e
        b1 * e2 + d1 * f2 + f1,  # f
    )


def apply_transform(matrix: TransformMatrix, x: float, y: float) -> Tuple[float, float]:
    """Apply affine transform matrix (a, b, c, d, e, f) to point (x, y)."""
    a, b, c, d, e, f = matrix
    return (a * x + c * y + e, b * x + d * y + f)


def is_identity(matrix: TransformMatrix, tolerance: float = 0.0) -> bool:
    return all(abs(m - i) <= tolerance for m, i in zip(matrix, IDENTITY_MATRIX))


def translation(tx: float, ty: float) -> TransformMatrix:
    return (1.0, 0.0, 0.0, 1.0, tx, ty)


def rotation(angle_deg: float, cx: float = 0.0, cy: float = 0.0) -> TransformMatrix:
    """Rotation by *angle_deg* about (cx, cy).

    translate(cx, cy) * rotate(angle) * translate(-cx, -cy)
    """
    a = math.radians(angle_deg)
    ca, sa = math.cos(a), math.sin(a)
    return (ca, sa, -sa, ca, cx - cx * ca + cy * sa, cy - cx * sa - cy * ca)


# ---------------------------------------------------------------------------
# Transform attribute parsing
# ---------------------------------------------------------------------------


def _function_matrix(func: str, args: List[float]) -> TransformMatrix:
    """Matrix for one transform function; raises ValueError on bad arity."""
    n = len(args)
    if func == "matrix":
        if n != 6:
            raise ValueError(f"matrix() needs 6 values, got {n}")
        return tuple(args)  # type: ignore[return-value]
    if func == "translate":
        if n not in (1, 2):
            raise ValueError(f"translate() needs 1 or 2 values, got {n}")
        return translation(args[0], args[1] if n == 2 else 0.0)
    if func == "scale":
        if n not in (1, 2):
            raise ValueError(f"scale() needs 1 or 2 values, got {n}")
        sx = args[0]
        sy = args[1] if n == 2 else sx
        return (sx, 0.0, 0.0, sy, 0.0, 0.0)
    if func == "rotate":
        if n == 1:
            return rotation(args[0])
        if n == 3:
            return rotation(args[0], args[1], args[2])
        raise ValueError(f"rotate() needs 1 or 3 values, got {n}")
    if func == "skewX":
        if n != 1:
            raise ValueError(f"skewX() needs 1 value, got {n}")
        return (1.0, 0.0, math.tan(math.radians(args[0])), 1.0, 0.0, 0.0)
    if func == "skewY":
        if n != 1:
            raise ValueError(f"skewY() needs 1 value, got {n}")
        return (1.0, math.tan(math.radians(args[0])), 0.0, 1.0, 0.0, 0.0)
    raise ValueError(f"unrecognised transform function {func!r}")


def parse_transform(transform_str: str) -> TransformMatrix:
    """Parse an SVG transform attribute into a single composed matrix.

    Handles matrix, translate, scale, rotate, skewX, skewY and lists of them
    separated by whitespace or commas.  The functions compose left to right
    in the order they are written, so ``translate(10) rotate(45)`` rotates
    first and translates second.

    Malformed or unrecognised functions contribute the identity matrix and a
    warning is logged; this function never raises.
    """
    if not transform_str or not transform_str.strip():
        return IDENTITY_MATRIX

    result: TransformMatrix = IDENTITY_MATRIX

    for match in _FUNCTION_RE.finditer(transform_str):
        func = match.group(1)
        args_str = match.group(2)
        leftover = _NUMBER_RE.sub("", args_str).replace(",", " ").strip()
        if leftover:
            logger.warning(f"Unreadable transform args in: {match.group(0)!r}")
            continue
        args = [float(v) for v in _NUMBER_RE.findall(args_str)]
        try:
            t = _function_matrix(func, args)
        except ValueError as exc:
            logger.warning(f"Ignoring transform {match.group(0)!r}: {exc}")
            continue
        result = compose_transforms(outer=result, inner=t)

    return result

