"""
ElementTree helpers shared by the flatten and reproject scripts.

ElementTree elements have no parent pointer, so every operation that swaps
one node for another takes the parent explicitly.
"""

import logging
import re
from typing import Iterable, Iterator, List, Optional, Tuple
from xml.etree import ElementTree as ET

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# XML namespaces
# ---------------------------------------------------------------------------

NS_SVG      = "http://www.w3.org/2000/svg"
NS_INKSCAPE = "http://www.inkscape.org/namespaces/inkscape"
NS_SODIPODI = "http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd"
NS_XLINK    = "http://www.w3.org/1999/xlink"

INKSCAPE_LABEL = f"{{{NS_INKSCAPE}}}label"
XLINK_HREF     = f"{{{NS_XLINK}}}href"


def register_namespaces() -> None:
    """Keep the usual prefixes when a tree is written back out."""
    ET.register_namespace("",         NS_SVG)
    ET.register_namespace("inkscape", NS_INKSCAPE)
    ET.register_namespace("sodipodi", NS_SODIPODI)
    ET.register_namespace("xlink",    NS_XLINK)


def local_name(tag) -> str:
    """Tag without its namespace; comments and processing instructions give ''."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def svg_tag(elem: ET.Element, name: str) -> str:
    """Tag for a new element *name* in the same namespace as *elem*."""
    if isinstance(elem.tag, str) and elem.tag.startswith("{"):
        return elem.tag.split("}", 1)[0] + "}" + name
    return name


def find_svg_root(root: ET.Element) -> Optional[ET.Element]:
    """The outermost <svg> element at or below *root*."""
    for elem in root.iter():
        if local_name(elem.tag) == "svg":
            return elem
    return None


def iter_local(root: ET.Element, *names: str) -> Iterator[ET.Element]:
    """Every element below *root* whose local name is one of *names*."""
    wanted = set(names)
    for elem in root.iter():
        if local_name(elem.tag) in wanted:
            yield elem


def find_group(root: ET.Element, name: str) -> Optional[ET.Element]:
    """A <g> whose id or inkscape:label equals *name*."""
    for elem in iter_local(root, "g"):
        if elem.get("id") == name or elem.get(INKSCAPE_LABEL) == name:
            return elem
    return None


def replace_node(parent: ET.Element, old: ET.Element, new: ET.Element) -> None:
    """Put *new* where *old* was under *parent*, keeping *old*'s tail text."""
    index = list(parent).index(old)
    new.tail = old.tail
    parent.remove(old)
    parent.insert(index, new)


def remove_node(parent: ET.Element, old: ET.Element) -> None:
    """Remove *old*, handing its tail text to the previous sibling or parent."""
    if old.tail:
        siblings = list(parent)
        index = siblings.index(old)
        if index > 0:
            prev = siblings[index - 1]
            prev.tail = (prev.tail or "") + old.tail
        else:
            parent.text = (parent.text or "") + old.tail
    parent.remove(old)


def copy_attributes(source: ET.Element, target: ET.Element, skip: Iterable[str]) -> None:
    """Copy every attribute of *source* onto *target* except the *skip* names.

    Names in *skip* are compared by local name, so 'href' also skips
    xlink:href.
    """
    skipped = set(skip)
    for name, value in source.attrib.items():
        if local_name(name) in skipped:
            continue
        target.set(name, value)


# ---------------------------------------------------------------------------
# Attribute parsing
# ---------------------------------------------------------------------------

_LENGTH_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


def float_attr(elem: ET.Element, name: str, default: float = 0.0) -> float:
    """Numeric attribute value; units are ignored and bad values give *default*."""
    value = elem.get(name)
    if value is None:
        return default
    match = _LENGTH_RE.match(value)
    if not match:
        logger.warning(f"Unreadable {name}={value!r} on <{local_name(elem.tag)}>; using {default}")
        return default
    return float(match.group(1))


def style_value(elem: ET.Element, key: str) -> Optional[str]:
    """Presentation value from the attribute or the inline ``style`` declaration."""
    direct = elem.get(key)
    if direct is not None:
        return direct.strip()
    for declaration in (elem.get("style") or "").split(";"):
        name, sep, value = declaration.partition(":")
        if sep and name.strip() == key:
            return value.strip()
    return None


def elements_with_parents(root: ET.Element, *names: str) -> List[Tuple[ET.Element, ET.Element]]:
    """(parent, element) pairs for every *names* element below *root*, as a list."""
    wanted = set(names)
    return [
        (parent, child)
        for parent in root.iter()
        for child in parent
        if local_name(child.tag) in wanted
    ]
