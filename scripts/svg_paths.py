"""
SVG path data: parsing to absolute commands, serialization and point mapping.

A path is a list of command objects (MoveTo, LineTo, CubicTo, QuadTo, ArcTo,
Close) whose coordinates are all absolute.  ``to_absolute`` accepts the full
path grammar (M L H V C S Q T A Z, absolute and relative, implicit repeats)
and ``serialize`` writes one command letter per command back out, so
``to_absolute(serialize(path)) == path``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from svg_transforms import TransformMatrix, apply_transform, format_number

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

_COMMAND_LETTERS = frozenset("MmZzLlHhVvCcSsQqTtAa")
_SEPARATORS = frozenset(" \t\r\n\f,")
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


# ---------------------------------------------------------------------------
# Path commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MoveTo:
    end: Point


@dataclass(frozen=True)
class LineTo:
    end: Point


@dataclass(frozen=True)
class CubicTo:
    c1: Point
    c2: Point
    end: Point


@dataclass(frozen=True)
class QuadTo:
    c1: Point
    end: Point


@dataclass(frozen=True)
class ArcTo:
    """Elliptical arc; radii, rotation and flags are kept as written."""
    rx: float
    ry: float
    rotation: float
    large_arc: bool
    sweep: bool
    end: Point


@dataclass(frozen=True)
class Close:
    pass


PathCommand = Union[MoveTo, LineTo, CubicTo, QuadTo, ArcTo, Close]
Path = List[PathCommand]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class _PathScanner:
    """Reads command letters, numbers and arc flags from raw path data."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _skip_separators(self):
        while self.pos < len(self.text) and self.text[self.pos] in _SEPARATORS:
            self.pos += 1

    def at_end(self) -> bool:
        self._skip_separators()
        return self.pos >= len(self.text)

    def command(self) -> Optional[str]:
        """Consume and return a command letter, or None if a number is next."""
        self._skip_separators()
        if self.pos < len(self.text) and self.text[self.pos] in _COMMAND_LETTERS:
            self.pos += 1
            return self.text[self.pos - 1]
        return None

    def number(self) -> float:
        self._skip_separators()
        match = _NUMBER_RE.match(self.text, self.pos)
        if not match:
            raise ValueError(f"expected a number at offset {self.pos}")
        self.pos = match.end()
        return float(match.group(0))

    def flag(self) -> bool:
        # Arc flags may be written without separators ("a1 1 0 0110 10").
        self._skip_separators()
        if self.pos < len(self.text) and self.text[self.pos] in "01":
            self.pos += 1
            return self.text[self.pos - 1] == "1"
        raise ValueError(f"expected an arc flag at offset {self.pos}")

    def skip_to_command(self):
        while self.pos < len(self.text) and self.text[self.pos] not in _COMMAND_LETTERS:
            self.pos += 1


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass
class _ParseState:
    """Accumulator threaded through parsing.

    ``last_kind`` is the upper-case letter of the previous command and
    ``last_control`` its final control point; together they decide how the
    S and T shorthands reflect.
    """
    current: Point = (0.0, 0.0)
    start: Point = (0.0, 0.0)
    last_kind: str = ""
    last_control: Optional[Point] = None

    def reflected_control(self, family: str) -> Point:
        if self.last_kind in family and self.last_control is not None:
            cx, cy = self.current
            px, py = self.last_control
            return (2 * cx - px, 2 * cy - py)
        return self.current


def _read_command(scanner: _PathScanner, letter: str, state: _ParseState) -> PathCommand:
    """Read one instance of *letter* and advance *state*.

    All operands are read before *state* changes, so a ValueError leaves the
    state as it was.
    """
    upper = letter.upper()
    relative = letter != upper
    cx, cy = state.current

    def point() -> Point:
        x = scanner.number()
        y = scanner.number()
        return (x + cx, y + cy) if relative else (x, y)

    control: Optional[Point] = None
    command: PathCommand

    if upper == "M":
        command = MoveTo(point())
        state.start = command.end
    elif upper == "L":
        command = LineTo(point())
    elif upper == "H":
        x = scanner.number()
        command = LineTo((x + cx if relative else x, cy))
    elif upper == "V":
        y = scanner.number()
        command = LineTo((cx, y + cy if relative else y))
    elif upper == "C":
        c1, c2, end = point(), point(), point()
        command = CubicTo(c1, c2, end)
        control = c2
    elif upper == "S":
        c2, end = point(), point()
        command = CubicTo(state.reflected_control("CS"), c2, end)
        control = c2
    elif upper == "Q":
        c1, end = point(), point()
        command = QuadTo(c1, end)
        control = c1
    elif upper == "T":
        end = point()
        c1 = state.reflected_control("QT")
        command = QuadTo(c1, end)
        control = c1
    elif upper == "A":
        rx = scanner.number()
        ry = scanner.number()
        rotation = scanner.number()
        large_arc = scanner.flag()
        sweep = scanner.flag()
        command = ArcTo(rx, ry, rotation, large_arc, sweep, point())
    else:
        raise ValueError(f"unsupported command {letter!r}")

    state.current = command.end
    state.last_kind = upper
    state.last_control = control
    return command


def to_absolute(raw: str) -> Path:
    """Parse path data into absolute commands.

    H/V become LineTo, S/T become CubicTo/QuadTo with their reflected control
    point spelled out, and coordinate pairs repeated after a MoveTo become
    LineTo.  Malformed data drops the offending command (with a warning) and
    parsing resumes at the next command letter.
    """
    path: Path = []
    if not raw:
        return path

    scanner = _PathScanner(raw)
    state = _ParseState()
    command: Optional[str] = None

    while not scanner.at_end():
        letter = scanner.command()
        if letter is not None:
            command = letter
            if command in "Zz":
                path.append(Close())
                state.current = state.start
                state.last_kind = "Z"
                state.last_control = None
                continue
        elif command is None or command in "Zz":
            logger.warning(f"Path data has numbers without a command near offset {scanner.pos}: {raw[:40]!r}")
            scanner.skip_to_command()
            command = None
            continue

        try:
            path.append(_read_command(scanner, command, state))
        except ValueError as exc:
            logger.warning(f"Dropping malformed '{command}' command ({exc}) in {raw[:40]!r}")
            scanner.skip_to_command()
            command = None
            continue

        if command == "M":
            command = "L"
        elif command == "m":
            command = "l"

    return path


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _fmt_point(p: Point) -> str:
    return f"{format_number(p[0])} {format_number(p[1])}"


def serialize(path: Path) -> str:
    """Write *path* as absolute path data, one letter per command."""
    parts: List[str] = []
    for cmd in path:
        if isinstance(cmd, MoveTo):
            parts.append(f"M {_fmt_point(cmd.end)}")
        elif isinstance(cmd, LineTo):
            parts.append(f"L {_fmt_point(cmd.end)}")
        elif isinstance(cmd, CubicTo):
            parts.append(f"C {_fmt_point(cmd.c1)} {_fmt_point(cmd.c2)} {_fmt_point(cmd.end)}")
        elif isinstance(cmd, QuadTo):
            parts.append(f"Q {_fmt_point(cmd.c1)} {_fmt_point(cmd.end)}")
        elif isinstance(cmd, ArcTo):
            parts.append(
                f"A {format_number(cmd.rx)} {format_number(cmd.ry)} {format_number(cmd.rotation)} "
                f"{int(cmd.large_arc)} {int(cmd.sweep)} {_fmt_point(cmd.end)}"
            )
        elif isinstance(cmd, Close):
            parts.append("Z")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Point mapping
# ---------------------------------------------------------------------------


def map_points(path: Path, fn: Callable[[Point], Point]) -> Path:
    """Return a copy of *path* with *fn* applied to every coordinate pair.

    Arc radii, rotation and flags are not touched; only the arc endpoint
    moves, so arc shape is not corrected under anisotropic scale or shear.
    """
    out: Path = []
    for cmd in path:
        if isinstance(cmd, MoveTo):
            out.append(MoveTo(fn(cmd.end)))
        elif isinstance(cmd, LineTo):
            out.append(LineTo(fn(cmd.end)))
        elif isinstance(cmd, CubicTo):
            out.append(CubicTo(fn(cmd.c1), fn(cmd.c2), fn(cmd.end)))
        elif isinstance(cmd, QuadTo):
            out.append(QuadTo(fn(cmd.c1), fn(cmd.end)))
        elif isinstance(cmd, ArcTo):
            out.append(ArcTo(cmd.rx, cmd.ry, cmd.rotation, cmd.large_arc, cmd.sweep, fn(cmd.end)))
        else:
            out.append(cmd)
    return out


def transform_path(path: Path, matrix: TransformMatrix) -> Path:
    """Apply an affine matrix to every point of an absolute path."""
    return map_points(path, lambda p: apply_transform(matrix, p[0], p[1]))


def path_vertices(path: Path) -> List[Point]:
    """On-curve vertices (command endpoints) in drawing order."""
    return [cmd.end for cmd in path if not isinstance(cmd, Close)]


# ---------------------------------------------------------------------------
# polygon / polyline points
# ---------------------------------------------------------------------------


def parse_numbers(text: str) -> List[float]:
    return [float(v) for v in _NUMBER_RE.findall(text)]


def parse_points(points_str: str) -> List[Point]:
    """Parse a polygon/polyline ``points`` attribute into (x, y) pairs."""
    nums = parse_numbers(points_str or "")
    if len(nums) % 2:
        logger.warning(f"Odd number of coordinates in points {points_str[:40]!r}; dropping the last one")
        nums = nums[:-1]
    return [(nums[i], nums[i + 1]) for i in range(0, len(nums), 2)]


def format_points(points: List[Point]) -> str:
    return " ".join(f"{format_number(x)},{format_number(y)}" for x, y in points)


def points_to_path(points_str: str, closed: bool) -> Path:
    """Path equivalent of a polygon (*closed*) or polyline."""
    points = parse_points(points_str)
    if not points:
        return []
    path: Path = [MoveTo(points[0])]
    path.extend(LineTo(p) for p in points[1:])
    if closed:
        path.append(Close())
    return path
