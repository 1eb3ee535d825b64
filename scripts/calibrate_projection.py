"""
calibrate_projection.py — Recover how a projected world map was placed on the page.

The source drawing is assumed to be a known projection (Wagner VII by default)
placed on the page with an unknown origin, scale and a small horizontal shear:

    u = (x - origin_x - shear_x * (y - origin_y)) / scale_x
    v = (y - origin_y) / scale_y

where (u, v) are coordinates of the unit projection (scale 1, no translate).

Evidence, best first:
    1. A red horizontal stroke drawn along the equator from -180 to +180.
       Gives origin and scale_x exactly.
    2. Otherwise the bounding box of all drawn vertices (coarse; no
       refinement is attempted).

After (1), the meridian group (default "Längengrade") refines scale_y and
shear_x: every meridian should inverse-project to a single longitude, so the
parameters are chosen to minimise the mean squared longitude spread.

All searches run a fixed number of iterations, so results are deterministic.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from xml.etree import ElementTree as ET

import numpy as np

from projections import Projection
from svg_densify import densify_path
from svg_paths import Path, Point, parse_points, path_vertices, to_absolute
from svg_tree import find_group, iter_local, style_value

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_MERIDIAN_GROUP = "Längengrade"

# Stroke values that mark the equator line (compared lower-case, no spaces).
EQUATOR_STROKES = frozenset({"red", "#f00", "#ff0000", "rgb(255,0,0)"})
EQUATOR_FLATNESS: float = 1e-3

MIN_BOUNDS_POINTS: int = 10

MERIDIAN_SEGMENT_LENGTH: float = 6.0
MERIDIAN_MIN_POINTS: int = 8
MERIDIAN_EQUATOR_DISTANCE: float = 8.0   # nearest vertex to the equator, device units
EQUATOR_EXCLUSION: float = 20.0          # samples this close to the equator carry no shape
MAX_SAMPLES_PER_MERIDIAN: int = 60
MIN_SAMPLES_PER_MERIDIAN: int = 6
MIN_MERIDIANS: int = 3
MIN_RESIDUAL_SAMPLES: int = 50           # strictly more are needed

SCALE_SWEEP_POINTS: int = 41
SCALE_SWEEP_FACTOR: float = 4.0
SCALE_SWEEP_WINDOW: int = 2
SCALE_Y_ITERATIONS: int = 40

SHEAR_RANGE: Tuple[float, float] = (-0.05, 0.05)
SHEAR_ITERATIONS: int = 50

_INV_PHI = (math.sqrt(5.0) - 1.0) / 2.0


class CalibrationError(RuntimeError):
    """Not enough of the drawing to place the projection at all."""


@dataclass(frozen=True)
class CalibrationParams:
    origin_x: float
    origin_y: float
    scale_x: float
    scale_y: float
    shear_x: float = 0.0

    def to_unit(self, xs, ys):
        """Device coordinates -> unit-projection coordinates (scalars or arrays)."""
        dy = ys - self.origin_y
        return (xs - self.origin_x - self.shear_x * dy) / self.scale_x, dy / self.scale_y

    def describe(self) -> str:
        return (
            f"origin=({self.origin_x:.3f}, {self.origin_y:.3f}) "
            f"scale_x={self.scale_x:.5f} scale_y={self.scale_y:.5f} shear_x={self.shear_x:.5f}"
        )


@dataclass
class MeridianSamples:
    """Device-space points on meridians with the longitude each should map to."""
    xs: np.ndarray
    ys: np.ndarray
    ref_lons: np.ndarray
    meridians: int

    def __len__(self):
        return len(self.xs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def wrap180(angle):
    """Wrap degrees into (-180, 180]."""
    wrapped = np.mod(np.asarray(angle, dtype=float) + 180.0, 360.0) - 180.0
    return np.where(wrapped == -180.0, 180.0, wrapped)


def golden_section_search(fn: Callable[[float], float], lo: float, hi: float,
                          iterations: int) -> Tuple[float, float]:
    """Minimise *fn* on [lo, hi] with exactly *iterations* golden-section steps.

    Returns (argmin, min) of the better of the two final evaluation points.
    """
    a, b = lo, hi
    c = b - _INV_PHI * (b - a)
    d = a + _INV_PHI * (b - a)
    fc, fd = fn(c), fn(d)
    for _ in range(iterations):
        if fc < fd:
            b, d, fd = d, c, fc
            c = b - _INV_PHI * (b - a)
            fc = fn(c)
        else:
            a, c, fc = c, d, fd
            d = a + _INV_PHI * (b - a)
            fd = fn(d)
    return (c, fc) if fc < fd else (d, fd)


def _x180(unit: Projection) -> Optional[float]:
    """Half width of the unit projection along the equator."""
    edge = unit.forward(180.0, 0.0)
    if edge is None or not abs(edge[0]) > 1e-9:
        return None
    return abs(edge[0])


def is_equator_stroke(elem: ET.Element) -> bool:
    stroke = style_value(elem, "stroke")
    if not stroke:
        return False
    return "".join(stroke.lower().split()) in EQUATOR_STROKES


def drawing_vertices(root: ET.Element) -> List[Point]:
    """Every path, polygon and polyline vertex below *root*."""
    points: List[Point] = []
    for elem in iter_local(root, "path", "polygon", "polyline"):
        if elem.get("d") is not None:
            points.extend(path_vertices(to_absolute(elem.get("d"))))
        elif elem.get("points") is not None:
            points.extend(parse_points(elem.get("points")))
    return [p for p in points if math.isfinite(p[0]) and math.isfinite(p[1])]


# ---------------------------------------------------------------------------
# Initial placement
# ---------------------------------------------------------------------------


def calibrate_from_equator(candidates: Iterable[ET.Element], unit: Projection) -> Optional[CalibrationParams]:
    """Placement from the first red, horizontal equator stroke among *candidates*."""
    x180 = _x180(unit)
    if x180 is None:
        logger.warning("Unit projection has no finite x at longitude 180")
        return None

    for elem in candidates:
        if not is_equator_stroke(elem):
            continue
        vertices = path_vertices(to_absolute(elem.get("d", "")))
        if len(vertices) < 2:
            continue
        (x1, y1), (x2, y2) = vertices[0], vertices[1]
        if abs(y1 - y2) > EQUATOR_FLATNESS:
            logger.debug(f"Red stroke {elem.get('id', '')!r} is not horizontal (dy={y2 - y1:.4g})")
            continue
        x_left, x_right = min(x1, x2), max(x1, x2)
        scale = (x_right - x_left) / (2 * x180)
        if not (math.isfinite(scale) and scale > 0):
            continue
        params = CalibrationParams(
            origin_x=(x_left + x_right) / 2,
            origin_y=y1,
            scale_x=scale,
            scale_y=scale,
        )
        logger.info(f"Equator line {elem.get('id', '')!r}: {params.describe()}")
        return params
    return None


def calibrate_from_bounds(points: Sequence[Point], unit: Projection) -> CalibrationParams:
    """Coarse placement that assumes the drawing spans exactly -180..180."""
    if len(points) < MIN_BOUNDS_POINTS:
        raise CalibrationError(
            f"Only {len(points)} drawn vertices; at least {MIN_BOUNDS_POINTS} are needed to calibrate"
        )
    x180 = _x180(unit)
    if x180 is None:
        raise CalibrationError("Unit projection has no finite x at longitude 180")

    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    width = max(xs) - min(xs)
    scale = width / (2 * x180)
    if not (math.isfinite(scale) and scale > 0):
        raise CalibrationError(f"Drawing has no horizontal extent (width={width})")
    params = CalibrationParams(
        origin_x=(min(xs) + max(xs)) / 2,
        origin_y=(min(ys) + max(ys)) / 2,
        scale_x=scale,
        scale_y=scale,
    )
    logger.info(f"Bounding box placement: {params.describe()}")
    return params


# ---------------------------------------------------------------------------
# Meridian refinement
# ---------------------------------------------------------------------------


def collect_meridian_samples(paths: Iterable[Path], params: CalibrationParams,
                             unit: Projection) -> Optional[MeridianSamples]:
    """Sample points along each meridian, tagged with the meridian's longitude.

    The longitude comes from where the meridian crosses the equator, which the
    initial placement already gets right.  Returns None with fewer than
    MIN_MERIDIANS usable meridians.
    """
    xs: List[float] = []
    ys: List[float] = []
    refs: List[float] = []
    meridians = 0

    for path in paths:
        points = path_vertices(densify_path(path, MERIDIAN_SEGMENT_LENGTH))
        if len(points) < MERIDIAN_MIN_POINTS:
            continue

        crossing = min(points, key=lambda p: abs(p[1] - params.origin_y))
        if abs(crossing[1] - params.origin_y) > MERIDIAN_EQUATOR_DISTANCE:
            continue
        geo = unit.inverse((crossing[0] - params.origin_x) / params.scale_x, 0.0)
        if geo is None:
            continue

        stride = max(1, len(points) // MAX_SAMPLES_PER_MERIDIAN)
        picked = [p for p in points[::stride] if abs(p[1] - params.origin_y) >= EQUATOR_EXCLUSION]
        picked = picked[:MAX_SAMPLES_PER_MERIDIAN]
        if len(picked) < MIN_SAMPLES_PER_MERIDIAN:
            continue

        xs.extend(p[0] for p in picked)
        ys.extend(p[1] for p in picked)
        refs.extend([geo[0]] * len(picked))
        meridians += 1

    if meridians < MIN_MERIDIANS:
        logger.debug(f"Only {meridians} usable meridian(s)")
        return None
    return MeridianSamples(np.array(xs), np.array(ys), np.array(refs), meridians)


def meridian_residual(samples: MeridianSamples, params: CalibrationParams, unit: Projection) -> float:
    """Mean squared longitude error of *samples* under *params*; inf if too few invert."""
    if not (math.isfinite(params.scale_y) and params.scale_y > 0 and math.isfinite(params.shear_x)):
        return math.inf
    us, vs = params.to_unit(samples.xs, samples.ys)
    lons, _ = unit.inverse_array(us, vs)
    valid = np.isfinite(lons)
    if int(valid.sum()) <= MIN_RESIDUAL_SAMPLES:
        return math.inf
    errors = wrap180(lons[valid] - samples.ref_lons[valid])
    return float(np.mean(errors * errors))


def fit_scale_y(samples: MeridianSamples, params: CalibrationParams, unit: Projection) -> Optional[float]:
    """Best vertical scale: log sweep, then golden-section around the best sweep point."""
    lo = params.scale_x / SCALE_SWEEP_FACTOR
    hi = params.scale_x * SCALE_SWEEP_FACTOR
    grid = lo * (hi / lo) ** (np.arange(SCALE_SWEEP_POINTS) / (SCALE_SWEEP_POINTS - 1))

    def score(scale_y: float) -> float:
        return meridian_residual(samples, replace(params, scale_y=float(scale_y)), unit)

    scores = [score(s) for s in grid]
    best = int(np.argmin(scores))
    if not math.isfinite(scores[best]):
        return None

    window_lo = float(grid[max(0, best - SCALE_SWEEP_WINDOW)])
    window_hi = float(grid[min(len(grid) - 1, best + SCALE_SWEEP_WINDOW)])
    scale_y, residual = golden_section_search(score, window_lo, window_hi, SCALE_Y_ITERATIONS)
    if not math.isfinite(residual):
        return None
    logger.debug(f"scale_y={scale_y:.5f} residual={residual:.6g}")
    return scale_y


def fit_shear_x(samples: MeridianSamples, params: CalibrationParams, unit: Projection) -> Optional[float]:
    """Best horizontal shear with scale_y held."""
    def score(shear: float) -> float:
        return meridian_residual(samples, replace(params, shear_x=shear), unit)

    shear, residual = golden_section_search(score, SHEAR_RANGE[0], SHEAR_RANGE[1], SHEAR_ITERATIONS)
    if not math.isfinite(residual):
        return None
    logger.debug(f"shear_x={shear:.5f} residual={residual:.6g}")
    return shear


def refine_calibration(params: CalibrationParams, samples: MeridianSamples,
                       unit: Projection) -> CalibrationParams:
    """scale_y, then shear_x, then scale_y again with the shear held."""
    scale_y = fit_scale_y(samples, params, unit)
    if scale_y is None:
        logger.warning("Vertical scale fit failed; keeping isotropic scale")
        scale_y = params.scale_x
    params = replace(params, scale_y=scale_y)

    shear = fit_shear_x(samples, params, unit)
    if shear is None:
        logger.warning("Shear fit failed; assuming no shear")
        shear = 0.0
    params = replace(params, shear_x=shear)

    refit = fit_scale_y(samples, params, unit)
    if refit is not None:
        params = replace(params, scale_y=refit)

    logger.info(
        f"Refined with {samples.meridians} meridians / {len(samples)} samples: {params.describe()} "
        f"(residual {meridian_residual(samples, params, unit):.6g} deg^2)"
    )
    return params


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def calibrate(root: ET.Element, unit: Projection,
              meridian_group: str = DEFAULT_MERIDIAN_GROUP) -> CalibrationParams:
    """Work out the source placement for the (flattened) drawing under *root*.

    Raises CalibrationError when neither an equator line nor enough drawn
    vertices are present.
    """
    params = calibrate_from_equator(iter_local(root, "path"), unit)
    if params is None:
        logger.warning("No red equator line found; falling back to the drawing's bounding box")
        return calibrate_from_bounds(drawing_vertices(root), unit)

    group = find_group(root, meridian_group)
    if group is None:
        logger.warning(f"No meridian group {meridian_group!r}; keeping isotropic scale and no shear")
        return params

    meridians = [to_absolute(elem.get("d", "")) for elem in iter_local(group, "path")]
    samples = collect_meridian_samples(meridians, params, unit)
    if samples is None:
        logger.warning(f"Too few usable meridians in {meridian_group!r}; keeping isotropic scale and no shear")
        return params
    return refine_calibration(params, samples, unit)
