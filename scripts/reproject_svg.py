"""
reproject_svg.py — Re-project a flattened Wagner VII map SVG into Plate Carree.

Steps:
    1. (optional, --flatten) bake all transforms, as flatten_svg.py does
    2. calibrate the source placement from the red equator line and the
       meridian group (see calibrate_projection.py)
    3. densify every path and move each vertex through
       source inverse -> geographic -> destination forward
    4. reposition images, circles and text anchors
    5. set the viewport to the destination canvas and replace the ocean
       background with a full-canvas rect

Vertices that do not invert (outside the source outline) lift the pen, and a
horizontal jump of more than half the canvas (crossing the antimeridian)
starts a new subpath, so no segment is drawn across the map.

Usage:
    python scripts/reproject_svg.py [flat.svg] [plate.svg] [--flatten]
        [--meridian-group NAME] [--max-segment 2.0]
        [--width 1800] [--height 900]
        [--source-proj "+proj=wag7 +R=1"] [--target-proj "+proj=eqc +R=1"]
        [--keep-background] [--verbose]
"""

import argparse
import logging
import math
import sys
from collections import Counter
from pathlib import Path
from typing import Optional, Sequence, Tuple
from xml.etree import ElementTree as ET

import numpy as np
from pyproj.exceptions import CRSError

from calibrate_projection import DEFAULT_MERIDIAN_GROUP, CalibrationError, CalibrationParams, calibrate
from flatten_svg import FlattenError, flatten_tree
from projections import PLATE_CARREE, WAGNER_VII, Projection, canvas_projection
from svg_densify import DEFAULT_MAX_SEGMENT_LENGTH, densify_path
from svg_paths import (
    Close, LineTo, MoveTo, Path as SvgPath,
    parse_numbers, path_vertices, points_to_path, serialize, to_absolute,
)
from svg_transforms import format_number
from svg_tree import (
    copy_attributes, elements_with_parents, find_svg_root, float_attr,
    iter_local, local_name, register_namespaces, replace_node, style_value, svg_tag,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_INPUT  = Path("flat.svg")
DEFAULT_OUTPUT = Path("plate.svg")

CANVAS_WIDTH:  int = 1800
CANVAS_HEIGHT: int = 900

# Horizontal jumps wider than this fraction of the canvas cross the seam.
SEAM_FRACTION: float = 0.5

# A filled path whose box spans this much of the canvas width and height is
# the background.
BACKGROUND_COVERAGE: float = 0.97

# Presentation attributes the background rect inherits from the path it replaces.
BACKGROUND_SKIP_ATTRS = frozenset({"d", "transform"})


# ---------------------------------------------------------------------------
# Source mapping
# ---------------------------------------------------------------------------


class SourceMapping:
    """Device coordinates of the source drawing -> geographic degrees."""

    def __init__(self, calibration: CalibrationParams, unit: Projection):
        self.calibration = calibration
        self.unit = unit

    def inverse_array(self, xs, ys) -> Tuple[np.ndarray, np.ndarray]:
        us, vs = self.calibration.to_unit(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        return self.unit.inverse_array(us, vs)

    def inverse(self, x: float, y: float) -> Optional[Tuple[float, float]]:
        lons, lats = self.inverse_array([x], [y])
        if not (math.isfinite(lons[0]) and math.isfinite(lats[0])):
            return None
        return (float(lons[0]), float(lats[0]))


def remap_points(xs, ys, source: SourceMapping, destination: Projection) -> Tuple[np.ndarray, np.ndarray]:
    """Source device points -> destination device points; NaN where either step fails."""
    lons, lats = source.inverse_array(xs, ys)
    return destination.forward_array(lons, lats)


def remap_point(x: float, y: float, source: SourceMapping,
                destination: Projection) -> Optional[Tuple[float, float]]:
    mx, my = remap_points([x], [y], source, destination)
    if not (math.isfinite(mx[0]) and math.isfinite(my[0])):
        return None
    return (float(mx[0]), float(my[0]))


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def remap_path(path: SvgPath, source: SourceMapping, destination: Projection,
               canvas_width: float) -> SvgPath:
    """Reproject an absolute, densified path.

    Curved commands are not expected here; if present only their endpoints
    are used.  The output never joins two vertices across an invalid point
    or the seam.
    """
    vertices = path_vertices(path)
    if not vertices:
        return []
    mx, my = remap_points([p[0] for p in vertices], [p[1] for p in vertices], source, destination)
    mapped = iter(zip(mx.tolist(), my.tolist()))
    seam = canvas_width * SEAM_FRACTION

    out: SvgPath = []
    pen_down = False
    intact = False           # output subpath still continuous since its source MoveTo
    after_close = False
    last_x = 0.0
    subpath_start: Optional[Tuple[float, float]] = None

    for cmd in path:
        if isinstance(cmd, Close):
            if pen_down and intact:
                out.append(Close())
            pen_down = False
            after_close = True
            continue

        x, y = next(mapped)
        valid = math.isfinite(x) and math.isfinite(y)

        if isinstance(cmd, MoveTo):
            subpath_start = (x, y) if valid else None
            intact = valid
            pen_down = False
        elif after_close:
            # Drawing after Z continues from the start of the closed subpath.
            if subpath_start is not None:
                out.append(MoveTo(subpath_start))
                pen_down = True
                last_x = subpath_start[0]
            intact = subpath_start is not None
        after_close = False

        if not valid:
            pen_down = False
            intact = False
            continue
        if pen_down and abs(x - last_x) > seam:
            pen_down = False
            intact = False

        out.append(LineTo((x, y)) if pen_down else MoveTo((x, y)))
        pen_down = True
        last_x = x

    return out


def _is_drawable(path: SvgPath) -> bool:
    return any(isinstance(cmd, LineTo) for cmd in path)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


def polygons_to_paths(root: ET.Element) -> int:
    """Replace every polygon/polyline with an equivalent <path>."""
    converted = 0
    for parent, elem in elements_with_parents(root, "polygon", "polyline"):
        path = points_to_path(elem.get("points", ""), closed=local_name(elem.tag) == "polygon")
        if not path:
            continue
        new = ET.Element(svg_tag(elem, "path"))
        copy_attributes(elem, new, skip={"points"})
        new.set("d", serialize(path))
        new.text = elem.text
        new.extend(list(elem))
        replace_node(parent, elem, new)
        converted += 1
    return converted


def _reproject_image(elem: ET.Element, source: SourceMapping, destination: Projection) -> bool:
    x, y = float_attr(elem, "x"), float_attr(elem, "y")
    w, h = float_attr(elem, "width"), float_attr(elem, "height")
    corner1 = remap_point(x, y, source, destination)
    corner2 = remap_point(x + w, y + h, source, destination)
    if corner1 is None or corner2 is None:
        logger.debug(f"Image {elem.get('id', '')!r} lies outside the source projection; left unchanged")
        return False
    elem.set("x", format_number(min(corner1[0], corner2[0])))
    elem.set("y", format_number(min(corner1[1], corner2[1])))
    elem.set("width", format_number(abs(corner2[0] - corner1[0])))
    elem.set("height", format_number(abs(corner2[1] - corner1[1])))
    return True


def _reproject_anchor(elem: ET.Element, x_attr: str, y_attr: str,
                      source: SourceMapping, destination: Projection) -> bool:
    """Move an x/y anchor (or per-glyph anchor lists); unchanged unless every pair maps."""
    xs = parse_numbers(elem.get(x_attr) or "")
    ys = parse_numbers(elem.get(y_attr) or "")
    if not xs or not ys:
        return False
    n = max(len(xs), len(ys))
    xs = xs + [xs[-1]] * (n - len(xs))
    ys = ys + [ys[-1]] * (n - len(ys))
    mx, my = remap_points(xs, ys, source, destination)
    if not (np.isfinite(mx).all() and np.isfinite(my).all()):
        return False
    elem.set(x_attr, " ".join(format_number(v) for v in mx.tolist()))
    elem.set(y_attr, " ".join(format_number(v) for v in my.tolist()))
    return True


def reproject_tree(root: ET.Element, source: SourceMapping, destination: Projection,
                   width: float = CANVAS_WIDTH, height: float = CANVAS_HEIGHT,
                   max_segment_length: float = DEFAULT_MAX_SEGMENT_LENGTH) -> Counter:
    """Reproject every drawn element under *root* in place.

    Returns a Counter of element kinds that were moved.
    """
    counts: Counter = Counter()
    converted = polygons_to_paths(root)
    if converted:
        logger.debug(f"Converted {converted} polygon/polyline element(s) to paths")

    for elem in iter_local(root, "path"):
        d = elem.get("d")
        if not d:
            continue
        dense = densify_path(to_absolute(d), max_segment_length)
        mapped = remap_path(dense, source, destination, width)
        if not _is_drawable(mapped):
            logger.warning(f"Path {elem.get('id', '')!r} has nothing inside the source projection; left as is")
            counts["skipped"] += 1
            continue
        elem.set("d", serialize(mapped))
        counts["path"] += 1

    for elem in iter_local(root, "image"):
        if _reproject_image(elem, source, destination):
            counts["image"] += 1
    for elem in iter_local(root, "circle"):
        if _reproject_anchor(elem, "cx", "cy", source, destination):
            counts["circle"] += 1
    for elem in iter_local(root, "text", "tspan"):
        if _reproject_anchor(elem, "x", "y", source, destination):
            counts[local_name(elem.tag)] += 1

    root.set("viewBox", f"0 0 {format_number(width)} {format_number(height)}")
    root.set("width", format_number(width))
    root.set("height", format_number(height))
    return counts


def replace_background(root: ET.Element, width: float = CANVAS_WIDTH,
                       height: float = CANVAS_HEIGHT) -> Optional[ET.Element]:
    """Swap the filled path covering (nearly) the whole canvas for a full-canvas rect.

    Reprojection leaves the ocean outline ragged at the map edge; a rect
    fills the canvas exactly.  Returns the new rect, or None if no path
    qualifies.
    """
    best: Optional[Tuple[ET.Element, ET.Element]] = None
    best_area = 0.0
    for parent, elem in elements_with_parents(root, "path"):
        fill = style_value(elem, "fill")
        if not fill or fill == "none":
            continue
        vertices = path_vertices(to_absolute(elem.get("d", "")))
        if not vertices:
            continue
        xs = [p[0] for p in vertices]
        ys = [p[1] for p in vertices]
        box_width = max(xs) - min(xs)
        box_height = max(ys) - min(ys)
        if box_width < BACKGROUND_COVERAGE * width or box_height < BACKGROUND_COVERAGE * height:
            continue
        area = box_width * box_height
        if area > best_area:
            best, best_area = (parent, elem), area

    if best is None:
        return None
    parent, elem = best
    rect = ET.Element(svg_tag(elem, "rect"))
    copy_attributes(elem, rect, skip=BACKGROUND_SKIP_ATTRS)
    rect.set("x", "0")
    rect.set("y", "0")
    rect.set("width", format_number(width))
    rect.set("height", format_number(height))
    replace_node(parent, elem, rect)
    logger.info(f"Replaced background path {elem.get('id', '')!r} with a full-canvas rect")
    return rect


def reproject_document(root: ET.Element, *,
                       flatten: bool = False,
                       meridian_group: str = DEFAULT_MERIDIAN_GROUP,
                       source_definition: str = WAGNER_VII,
                       target_definition: str = PLATE_CARREE,
                       width: float = CANVAS_WIDTH,
                       height: float = CANVAS_HEIGHT,
                       max_segment_length: float = DEFAULT_MAX_SEGMENT_LENGTH,
                       background: bool = True) -> CalibrationParams:
    """Calibrate and reproject the document under *root* in place."""
    svg = find_svg_root(root)
    if svg is None:
        raise FlattenError("No <svg> root element found")

    if flatten:
        baked = flatten_tree(svg)
        logger.info(f"Flattened {sum(baked.values())} element(s)")
    elif any(elem.get("transform") for elem in svg.iter()):
        logger.warning("Document still has transform attributes; geometry is read as-is (use --flatten)")

    unit = Projection(source_definition)
    calibration = calibrate(svg, unit, meridian_group)
    source = SourceMapping(calibration, unit)
    destination = canvas_projection(target_definition, width, height)

    counts = reproject_tree(svg, source, destination, width, height, max_segment_length)
    for kind, count in sorted(counts.items()):
        logger.info("  %-8s %d", kind, count)

    if background and replace_background(svg, width, height) is None:
        logger.debug("No background path covers the canvas")
    return calibration


def reproject_file(input_path: Path, output_path: Path, **options) -> CalibrationParams:
    """Read, reproject and write an SVG file."""
    register_namespaces()
    tree = ET.parse(str(input_path))
    calibration = reproject_document(tree.getroot(), **options)
    tree.write(str(output_path), encoding="utf-8", xml_declaration=True)
    return calibration


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(
        description="Calibrate a projected map SVG and re-project it onto a Plate Carree canvas.",
    )
    p.add_argument(
        "input", nargs="?", type=Path, default=DEFAULT_INPUT,
        help=f"Flattened source SVG (default: {DEFAULT_INPUT})",
    )
    p.add_argument(
        "output", nargs="?", type=Path, default=DEFAULT_OUTPUT,
        help=f"Re-projected SVG to write (default: {DEFAULT_OUTPUT})",
    )
    p.add_argument(
        "--flatten", action="store_true",
        help="Bake transforms first (input need not be pre-flattened).",
    )
    p.add_argument(
        "--meridian-group", default=DEFAULT_MERIDIAN_GROUP,
        help=f"id or inkscape:label of the meridian group (default: {DEFAULT_MERIDIAN_GROUP})",
    )
    p.add_argument(
        "--max-segment", type=float, default=DEFAULT_MAX_SEGMENT_LENGTH,
        help=f"Longest straight segment when densifying (default: {DEFAULT_MAX_SEGMENT_LENGTH})",
    )
    p.add_argument(
        "--width", type=float, default=CANVAS_WIDTH,
        help=f"Output canvas width (default: {CANVAS_WIDTH})",
    )
    p.add_argument(
        "--height", type=float, default=CANVAS_HEIGHT,
        help=f"Output canvas height (default: {CANVAS_HEIGHT})",
    )
    p.add_argument(
        "--source-proj", default=WAGNER_VII,
        help=f"PROJ string of the source map on a unit sphere (default: {WAGNER_VII!r})",
    )
    p.add_argument(
        "--target-proj", default=PLATE_CARREE,
        help=f"PROJ string of the output map on a unit sphere (default: {PLATE_CARREE!r})",
    )
    p.add_argument(
        "--keep-background", action="store_true",
        help="Do not replace the canvas-covering background path with a rect.",
    )
    p.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable DEBUG-level logging.",
    )
    return p.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.input.exists():
        logger.error("Source SVG not found: %s", args.input)
        return 1
    if args.max_segment <= 0 or args.width <= 0 or args.height <= 0:
        logger.error("--max-segment, --width and --height must be positive")
        return 1

    try:
        calibration = reproject_file(
            args.input, args.output,
            flatten=args.flatten,
            meridian_group=args.meridian_group,
            source_definition=args.source_proj,
            target_definition=args.target_proj,
            width=args.width,
            height=args.height,
            max_segment_length=args.max_segment,
            background=not args.keep_background,
        )
    except (OSError, ET.ParseError, CRSError, FlattenError, CalibrationError) as exc:
        logger.error("%s", exc)
        return 1

    logger.info("Calibration: %s", calibration.describe())
    logger.info("Wrote %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
