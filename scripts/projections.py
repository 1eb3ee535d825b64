"""
Map projections for the reprojection scripts, backed by PROJ through pyproj.

A Projection places PROJ's unit-sphere output on a screen the way d3-geo
does:

    x = translate_x + scale * px
    y = translate_y - scale * py      (screen y grows downward)

With scale 1 and translate (0, 0) this is the "unit projection" the
calibration works in.

PROJ has no inverse for some projections (Wagner VII among them).  For those
the inverse is solved numerically: a fixed number of Newton steps on the
PROJ forward, vectorised over all points, with a finite-difference Jacobian.
Each point starts from the nearest node of a coarse forward-projected grid and
each step is halved until the residual shrinks.  Points that do not converge (outside the projection's outline) come back as
NaN, or None from the scalar helpers.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np
from pyproj import Proj

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Projection definitions (unit sphere)
# ---------------------------------------------------------------------------

WAGNER_VII   = "+proj=wag7 +R=1"
PLATE_CARREE = "+proj=eqc +R=1"

# ---------------------------------------------------------------------------
# Numerical inverse
# ---------------------------------------------------------------------------

NEWTON_ITERATIONS: int = 25
NEWTON_TOLERANCE: float = 1e-9   # unit-sphere units
DERIVATIVE_STEP: float = 1e-6    # degrees

NEWTON_HALVINGS: int = 12
SEED_GRID_STEP: float = 10.0     # degrees

_LON_LIMIT = 180.0
_LAT_LIMIT = 90.0
# The Jacobian is singular on the pole line, so iterates stop just short of it.
_LAT_ITERATE_LIMIT = _LAT_LIMIT - 1e-7
_DOMAIN_SLACK = 1e-9
_SEED_CHUNK = 1024


class Projection:
    """Forward/inverse projection with a screen scale and translate."""

    def __init__(self, definition: str, scale: float = 1.0,
                 translate: Tuple[float, float] = (0.0, 0.0)):
        self.definition = definition
        self.scale = float(scale)
        self.translate = (float(translate[0]), float(translate[1]))
        self._proj = Proj(definition)
        self._exact_inverse = bool(self._proj.has_inverse)
        if not self._exact_inverse:
            logger.debug(f"PROJ has no inverse for {definition!r}; using Newton iteration")

        self._seed_lons = self._seed_lats = None
        self._seed_x = self._seed_y = None

    def __repr__(self):
        return f"Projection({self.definition!r}, scale={self.scale!r}, translate={self.translate!r})"

    # -- raw PROJ ----------------------------------------------------------

    def _raw_forward(self, lons: np.ndarray, lats: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        px, py = self._proj(lons, lats, errcheck=False)
        return np.asarray(px, dtype=float), np.asarray(py, dtype=float)

    def _raw_inverse(self, px: np.ndarray, py: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if self._exact_inverse:
            lons, lats = self._proj(px, py, inverse=True, errcheck=False)
            return np.asarray(lons, dtype=float), np.asarray(lats, dtype=float)
        return self._newton_inverse(px, py)

    def _seed(self, px: np.ndarray, py: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Start each point at the nearest node of a coarse forward-projected grid."""
        if self._seed_x is None:
            grid_lons, grid_lats = np.meshgrid(
                np.arange(-_LON_LIMIT, _LON_LIMIT + SEED_GRID_STEP / 2, SEED_GRID_STEP),
                np.arange(-_LAT_LIMIT + SEED_GRID_STEP / 2, _LAT_LIMIT, SEED_GRID_STEP),
            )
            grid_lons, grid_lats = grid_lons.ravel(), grid_lats.ravel()
            gx, gy = self._raw_forward(grid_lons, grid_lats)
            keep = np.isfinite(gx) & np.isfinite(gy)
            self._seed_lons, self._seed_lats = grid_lons[keep], grid_lats[keep]
            self._seed_x, self._seed_y = gx[keep], gy[keep]

        lons = np.empty(px.shape)
        lats = np.empty(px.shape)
        for start in range(0, px.size, _SEED_CHUNK):
            part = slice(start, start + _SEED_CHUNK)
            dist = (np.subtract.outer(px[part], self._seed_x) ** 2
                    + np.subtract.outer(py[part], self._seed_y) ** 2)
            nearest = np.argmin(dist, axis=1)
            lons[part] = self._seed_lons[nearest]
            lats[part] = self._seed_lats[nearest]
        return lons, lats

    def _newton_inverse(self, px: np.ndarray, py: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        lons, lats = self._seed(px, py)
        # Difference steps point inward at the domain edges so PROJ never
        # sees a longitude past the antimeridian or a latitude past a pole.
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            for _ in range(NEWTON_ITERATIONS):
                fx, fy = self._raw_forward(lons, lats)
                h_lon = np.where(lons + DERIVATIVE_STEP > _LON_LIMIT, -DERIVATIVE_STEP, DERIVATIVE_STEP)
                h_lat = np.where(lats + DERIVATIVE_STEP > _LAT_LIMIT, -DERIVATIVE_STEP, DERIVATIVE_STEP)
                ax, ay = self._raw_forward(lons + h_lon, lats)
                bx, by = self._raw_forward(lons, lats + h_lat)

                j11, j21 = (ax - fx) / h_lon, (ay - fy) / h_lon
                j12, j22 = (bx - fx) / h_lat, (by - fy) / h_lat
                det = j11 * j22 - j12 * j21
                rx, ry = fx - px, fy - py
                d_lon = (j22 * rx - j12 * ry) / det
                d_lat = (j11 * ry - j21 * rx) / det
                ok = np.isfinite(d_lon) & np.isfinite(d_lat)
                d_lon = np.where(ok, d_lon, 0.0)
                d_lat = np.where(ok, d_lat, 0.0)

                # Halve the step until the residual goes down.
                residual = np.hypot(rx, ry)
                pending = ok & (residual > 0)
                factor = np.ones(lons.shape)
                next_lons, next_lats = lons, lats
                for _ in range(NEWTON_HALVINGS):
                    trial_lons = np.clip(lons - factor * d_lon, -_LON_LIMIT, _LON_LIMIT)
                    trial_lats = np.clip(lats - factor * d_lat, -_LAT_ITERATE_LIMIT, _LAT_ITERATE_LIMIT)
                    tx, ty = self._raw_forward(trial_lons, trial_lats)
                    better = pending & (np.hypot(tx - px, ty - py) < residual)
                    next_lons = np.where(better, trial_lons, next_lons)
                    next_lats = np.where(better, trial_lats, next_lats)
                    pending &= ~better
                    if not pending.any():
                        break
                    factor = np.where(pending, factor * 0.5, factor)
                lons, lats = next_lons, next_lats

            fx, fy = self._raw_forward(lons, lats)
            error = np.hypot(fx - px, fy - py)
        converged = np.isfinite(error) & (error <= NEWTON_TOLERANCE)
        return np.where(converged, lons, np.nan), np.where(converged, lats, np.nan)

    # -- screen placement ----------------------------------------------------

    def forward_array(self, lons, lats) -> Tuple[np.ndarray, np.ndarray]:
        """Geographic degrees -> screen coordinates; NaN where PROJ fails."""
        lons = np.atleast_1d(np.asarray(lons, dtype=float))
        lats = np.atleast_1d(np.asarray(lats, dtype=float))
        xs = np.full(lons.shape, np.nan)
        ys = np.full(lons.shape, np.nan)
        valid = np.isfinite(lons) & np.isfinite(lats)
        if valid.any():
            px, py = self._raw_forward(lons[valid], lats[valid])
            xs[valid] = self.translate[0] + self.scale * px
            ys[valid] = self.translate[1] - self.scale * py
        bad = ~(np.isfinite(xs) & np.isfinite(ys))
        xs[bad] = np.nan
        ys[bad] = np.nan
        return xs, ys

    def inverse_array(self, xs, ys) -> Tuple[np.ndarray, np.ndarray]:
        """Screen coordinates -> geographic degrees; NaN where there is no inverse."""
        xs = np.atleast_1d(np.asarray(xs, dtype=float))
        ys = np.atleast_1d(np.asarray(ys, dtype=float))
        lons = np.full(xs.shape, np.nan)
        lats = np.full(xs.shape, np.nan)
        valid = np.isfinite(xs) & np.isfinite(ys)
        if valid.any():
            px = (xs[valid] - self.translate[0]) / self.scale
            py = -(ys[valid] - self.translate[1]) / self.scale
            lons[valid], lats[valid] = self._raw_inverse(px, py)
        in_domain = (
            np.isfinite(lons) & np.isfinite(lats)
            & (np.abs(lons) <= _LON_LIMIT + _DOMAIN_SLACK)
            & (np.abs(lats) <= _LAT_LIMIT + _DOMAIN_SLACK)
        )
        lons[~in_domain] = np.nan
        lats[~in_domain] = np.nan
        return lons, lats

    def forward(self, lon: float, lat: float) -> Optional[Tuple[float, float]]:
        xs, ys = self.forward_array(lon, lat)
        if not (math.isfinite(xs[0]) and math.isfinite(ys[0])):
            return None
        return (float(xs[0]), float(ys[0]))

    def inverse(self, x: float, y: float) -> Optional[Tuple[float, float]]:
        lons, lats = self.inverse_array(x, y)
        if not (math.isfinite(lons[0]) and math.isfinite(lats[0])):
            return None
        return (float(lons[0]), float(lats[0]))


def canvas_projection(definition: str, width: float, height: float) -> Projection:
    """Projection filling a width x height canvas: 360 degrees of longitude span the width."""
    return Projection(definition, scale=width / (2 * math.pi), translate=(width / 2, height / 2))
