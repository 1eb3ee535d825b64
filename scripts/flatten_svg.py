"""
flatten_svg.py — Bake every SVG transform into absolute coordinates.

Reads an SVG map, inlines <use> references, walks the element tree composing
each element's transform with its ancestors' and writes the geometry back in
root coordinates.  Afterwards no element carries a ``transform`` attribute.

What happens per element:
    path               d rewritten as absolute commands in root space
    polygon/polyline   every points pair transformed
    rect/line/ellipse  replaced by an equivalent <path>
    circle             center transformed, radius left unscaled
    image              x/y/width/height set to the transformed box's bounds
    text/tspan         x/y anchor transformed

Known limitations (accepted for map drawings):
    - arcs keep their radii, so arc shape is wrong under anisotropic scale
    - circle radii and text glyphs ignore scale and rotation
    - nested <svg> viewports and symbol viewBox scaling are not applied

Usage:
    python scripts/flatten_svg.py [input.svg] [output.svg] [--verbose]
"""

import argparse
import copy
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence
from xml.etree import ElementTree as ET

from svg_paths import (
    ArcTo, Close, LineTo, MoveTo, Path as SvgPath,
    format_points, parse_numbers, parse_points, serialize, to_absolute, transform_path,
)
from svg_transforms import (
    IDENTITY_MATRIX, TransformMatrix,
    apply_transform, compose_transforms, format_number, parse_transform,
)
from svg_tree import (
    XLINK_HREF,
    copy_attributes, elements_with_parents, find_svg_root, float_attr,
    local_name, register_namespaces, remove_node, replace_node, svg_tag,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_INPUT  = Path("carta.svg")
DEFAULT_OUTPUT = Path("flat.svg")

# A <use> may point at content that itself contains <use>; each pass resolves
# one level.  Anything left after this many passes is a reference cycle.
MAX_USE_PASSES: int = 16

# Attributes consumed when a primitive shape is rewritten as a <path>.
SHAPE_GEOMETRY_ATTRS = frozenset({
    "x", "y", "width", "height",
    "x1", "y1", "x2", "y2",
    "cx", "cy", "r", "rx", "ry",
    "points", "transform",
})

# Attributes of a <use> that describe the reference itself rather than
# presentation inherited by the instance.
USE_REFERENCE_ATTRS = frozenset({"x", "y", "width", "height", "href"})


class FlattenError(RuntimeError):
    """The document cannot be flattened at all."""


# ---------------------------------------------------------------------------
# Matrix accumulation
# ---------------------------------------------------------------------------


def effective_matrix(parent_matrix: TransformMatrix, elem: ET.Element) -> TransformMatrix:
    """Matrix mapping *elem*'s local coordinates to root coordinates."""
    transform_str = elem.get("transform", "")
    if not transform_str:
        return parent_matrix
    return compose_transforms(outer=parent_matrix, inner=parse_transform(transform_str))


# ---------------------------------------------------------------------------
# <use> inlining
# ---------------------------------------------------------------------------


def _use_target_id(use: ET.Element) -> Optional[str]:
    href = use.get(XLINK_HREF) or use.get("href") or ""
    href = href.strip()
    if href.startswith("#") and len(href) > 1:
        return href[1:]
    return None


def _instantiate(use: ET.Element, target: ET.Element) -> ET.Element:
    """Group standing in for *use*: its presentation, its offset, a clone of *target*.

    The group's transform is ``<use transform> translate(x, y)`` and the
    clone keeps its own transform, which is how SVG positions an instance.
    """
    clone = copy.deepcopy(target)
    clone.tail = None
    clone.attrib.pop("id", None)
    if local_name(clone.tag) == "symbol":
        clone.tag = svg_tag(clone, "g")
        clone.attrib.pop("viewBox", None)
        clone.attrib.pop("preserveAspectRatio", None)

    wrapper = ET.Element(svg_tag(use, "g"))
    copy_attributes(use, wrapper, skip=USE_REFERENCE_ATTRS)

    x = float_attr(use, "x")
    y = float_attr(use, "y")
    transforms = [use.get("transform", "").strip()]
    if x or y:
        transforms.append(f"translate({format_number(x)},{format_number(y)})")
    transform_str = " ".join(t for t in transforms if t)
    if transform_str:
        wrapper.set("transform", transform_str)
    else:
        wrapper.attrib.pop("transform", None)

    wrapper.append(clone)
    return wrapper


def _references_ancestor(use: ET.Element, target: ET.Element, parents: Dict[ET.Element, ET.Element]) -> bool:
    """True when *target* is *use* itself or one of the groups containing it."""
    node = use
    while node is not None:
        if node is target:
            return True
        node = parents.get(node)
    return False


def inline_uses(root: ET.Element) -> int:
    """Replace every <use> below *root* with a clone of what it references.

    References to a missing id, and references to the use itself or to one of
    its ancestors, are dropped.  Returns the number of instances inlined.
    """
    inlined = 0
    for _ in range(MAX_USE_PASSES):
        uses = elements_with_parents(root, "use")
        if not uses:
            return inlined
        by_id = {elem.get("id"): elem for elem in root.iter() if elem.get("id")}
        parents = {child: parent for parent in root.iter() for child in parent}
        for parent, use in uses:
            target_id = _use_target_id(use)
            target = by_id.get(target_id) if target_id else None
            if target is None:
                logger.warning(f"Dropping <use> with unresolved reference {target_id or '(none)'!r}")
                remove_node(parent, use)
                continue
            if _references_ancestor(use, target, parents):
                logger.warning(f"Dropping <use> of {target_id!r}, which contains the <use> itself")
                remove_node(parent, use)
                continue
            replace_node(parent, use, _instantiate(use, target))
            inlined += 1

    leftovers = elements_with_parents(root, "use")
    if leftovers:
        logger.warning(
            f"{len(leftovers)} <use> element(s) still unresolved after "
            f"{MAX_USE_PASSES} passes (circular references?); dropping them"
        )
        for parent, use in leftovers:
            remove_node(parent, use)
    return inlined


# ---------------------------------------------------------------------------
# Shape baking
# ---------------------------------------------------------------------------


def _replace_with_path(parent: ET.Element, elem: ET.Element, path: SvgPath) -> ET.Element:
    """Swap *elem* for a <path> drawing *path*, keeping non-geometric attributes."""
    new = ET.Element(svg_tag(elem, "path"))
    copy_attributes(elem, new, skip=SHAPE_GEOMETRY_ATTRS)
    new.set("d", serialize(path))
    new.text = elem.text
    new.extend(list(elem))
    replace_node(parent, elem, new)
    return new


def _bake_path(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    d = elem.get("d")
    if d is None:
        return
    elem.set("d", serialize(transform_path(to_absolute(d), matrix)))


def _bake_points(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    points = elem.get("points")
    if points is None:
        return
    elem.set("points", format_points([apply_transform(matrix, x, y) for x, y in parse_points(points)]))


def _bake_rect(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    x, y = float_attr(elem, "x"), float_attr(elem, "y")
    w, h = float_attr(elem, "width"), float_attr(elem, "height")
    local: SvgPath = [
        MoveTo((x, y)),
        LineTo((x + w, y)),
        LineTo((x + w, y + h)),
        LineTo((x, y + h)),
        Close(),
    ]
    _replace_with_path(parent, elem, transform_path(local, matrix))


def _bake_line(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    local: SvgPath = [
        MoveTo((float_attr(elem, "x1"), float_attr(elem, "y1"))),
        LineTo((float_attr(elem, "x2"), float_attr(elem, "y2"))),
    ]
    _replace_with_path(parent, elem, transform_path(local, matrix))


def _bake_ellipse(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    # Two half arcs left -> right -> left; sweep 0 passes through the top
    # then the bottom of the ellipse.
    cx, cy = float_attr(elem, "cx"), float_attr(elem, "cy")
    rx, ry = float_attr(elem, "rx"), float_attr(elem, "ry")
    left, right = (cx - rx, cy), (cx + rx, cy)
    local: SvgPath = [
        MoveTo(left),
        ArcTo(rx, ry, 0.0, True, False, right),
        ArcTo(rx, ry, 0.0, True, False, left),
        Close(),
    ]
    _replace_with_path(parent, elem, transform_path(local, matrix))


def _bake_circle(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    cx, cy = apply_transform(matrix, float_attr(elem, "cx"), float_attr(elem, "cy"))
    elem.set("cx", format_number(cx))
    elem.set("cy", format_number(cy))


def _bake_image(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    x, y = float_attr(elem, "x"), float_attr(elem, "y")
    w, h = float_attr(elem, "width"), float_attr(elem, "height")
    corners = [apply_transform(matrix, px, py) for px, py in ((x, y), (x + w, y), (x, y + h), (x + w, y + h))]
    xs = [p[0] for p in corners]
    ys = [p[1] for p in corners]
    elem.set("x", format_number(min(xs)))
    elem.set("y", format_number(min(ys)))
    elem.set("width", format_number(max(xs) - min(xs)))
    elem.set("height", format_number(max(ys) - min(ys)))


def _coordinate_list(value: Optional[str]) -> List[float]:
    return parse_numbers(value or "")


def _bake_text(parent: ET.Element, elem: ET.Element, matrix: TransformMatrix):
    """Move the text anchor(s); glyphs are not rotated or scaled."""
    has_x, has_y = elem.get("x") is not None, elem.get("y") is not None
    if not (has_x or has_y):
        if local_name(elem.tag) == "tspan":
            return
        xs, ys = [0.0], [0.0]
    else:
        xs = _coordinate_list(elem.get("x")) or [0.0]
        ys = _coordinate_list(elem.get("y")) or [0.0]

    n = max(len(xs), len(ys))
    xs = xs + [xs[-1]] * (n - len(xs))
    ys = ys + [ys[-1]] * (n - len(ys))
    moved = [apply_transform(matrix, x, y) for x, y in zip(xs, ys)]
    elem.set("x", " ".join(format_number(p[0]) for p in moved))
    elem.set("y", " ".join(format_number(p[1]) for p in moved))


_BAKERS: Dict[str, Callable[[ET.Element, ET.Element, TransformMatrix], None]] = {
    "path": _bake_path,
    "polygon": _bake_points,
    "polyline": _bake_points,
    "rect": _bake_rect,
    "line": _bake_line,
    "ellipse": _bake_ellipse,
    "circle": _bake_circle,
    "image": _bake_image,
    "text": _bake_text,
    "tspan": _bake_text,
}


# ---------------------------------------------------------------------------
# Tree walk
# ---------------------------------------------------------------------------


def _flatten_children(parent: ET.Element, parent_matrix: TransformMatrix, baked: Counter):
    """Depth-first: matrices flow down, geometry is rewritten children first."""
    for child in list(parent):
        if not isinstance(child.tag, str):
            continue
        matrix = effective_matrix(parent_matrix, child)
        _flatten_children(child, matrix, baked)

        name = local_name(child.tag)
        baker = _BAKERS.get(name)
        if baker is not None:
            baker(parent, child, matrix)
            baked[name] += 1
        child.attrib.pop("transform", None)


def flatten_tree(root: ET.Element) -> Counter:
    """Flatten the document under *root* in place.

    Returns a Counter of element kinds that were rewritten.  Raises
    FlattenError if there is no <svg> element.
    """
    svg = find_svg_root(root)
    if svg is None:
        raise FlattenError("No <svg> root element found")

    inlined = inline_uses(svg)
    if inlined:
        logger.info(f"Inlined {inlined} <use> reference(s)")

    baked: Counter = Counter()
    _flatten_children(svg, effective_matrix(IDENTITY_MATRIX, svg), baked)
    svg.attrib.pop("transform", None)
    return baked


def flatten_file(input_path: Path, output_path: Path) -> Counter:
    """Read, flatten and write an SVG file."""
    register_namespaces()
    tree = ET.parse(str(input_path))
    baked = flatten_tree(tree.getroot())
    tree.write(str(output_path), encoding="utf-8", xml_declaration=True)
    return baked


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(
        description="Bake all SVG transforms into absolute coordinates.",
    )
    p.add_argument(
        "input", nargs="?", type=Path, default=DEFAULT_INPUT,
        help=f"Source SVG (default: {DEFAULT_INPUT})",
    )
    p.add_argument(
        "output", nargs="?", type=Path, default=DEFAULT_OUTPUT,
        help=f"Flattened SVG to write (default: {DEFAULT_OUTPUT})",
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

    try:
        baked = flatten_file(args.input, args.output)
    except (OSError, ET.ParseError, FlattenError) as exc:
        logger.error("%s", exc)
        return 1

    for kind, count in sorted(baked.items()):
        logger.info("  %-8s %d", kind, count)
    logger.info("Wrote %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
