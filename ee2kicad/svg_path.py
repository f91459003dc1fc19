"""SVG path sub-grammar used inside EasyEDA shape strings.

Supports M, L, H, V, A and Z in absolute and relative form, with implicit
repeated coordinates.  Circular arcs are folded into the bulge of the vertex
they start from.  Curves (C, Q, S, T) and elliptical arcs have no faithful
KiCad counterpart and raise UnsupportedPrimitive.
"""

import math
import re
from dataclasses import dataclass, field

from .cad_model import Vertex
from .errors import MalformedShape, UnsupportedPrimitive
from .utils import svg_arc_to_bulge

_TOKEN_RE = re.compile(
    r"([MmLlHhVvAaZzCcQqSsTt])|([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)|([\s,]+)|(.)")

_ARG_COUNTS = {"M": 2, "L": 2, "H": 1, "V": 1, "A": 7, "Z": 0}

# Relative tolerance under which rx and ry are taken as one radius
ELLIPSE_TOLERANCE = 1e-3


@dataclass
class Subpath:
    vertices: list = field(default_factory=list)  # list of Vertex
    closed: bool = False


def _tokenize(d: str):
    tokens = []
    for m in _TOKEN_RE.finditer(d):
        cmd, num, _sep, junk = m.groups()
        if cmd:
            if cmd.upper() in "CQST":
                raise UnsupportedPrimitive(
                    f"curve command '{cmd}' has no KiCad equivalent", token=d)
            tokens.append(cmd)
        elif num:
            value = float(num)
            if not math.isfinite(value):
                raise MalformedShape(f"non-finite number '{num}' in path", token=d)
            tokens.append(value)
        elif junk:
            raise MalformedShape(f"unexpected character {junk!r} in path", token=d)
    return tokens


def parse_path(d: str) -> list:
    """Parse an SVG path string into a list of Subpath."""
    tokens = _tokenize(d)
    if not tokens:
        raise MalformedShape("empty path", token=d)
    if not isinstance(tokens[0], str) or tokens[0] not in "Mm":
        raise MalformedShape("path must start with a move command", token=d)

    subpaths = []
    current = None
    cx = cy = 0.0
    start_x = start_y = 0.0
    cmd = None
    i = 0

    def add_point(x, y):
        nonlocal current
        if current is None:
            current = Subpath(vertices=[Vertex(start_x, start_y)])
            subpaths.append(current)
        current.vertices.append(Vertex(x, y))

    while i < len(tokens):
        tok = tokens[i]
        if isinstance(tok, str):
            cmd = tok
            i += 1
        elif cmd is None or cmd in "Zz":
            raise MalformedShape("coordinates without a command", token=d)

        upper = cmd.upper()
        relative = cmd.islower()
        nargs = _ARG_COUNTS[upper]
        args = tokens[i:i + nargs]
        if len(args) < nargs or any(isinstance(a, str) for a in args):
            raise MalformedShape(f"command '{cmd}' needs {nargs} numbers", token=d)
        i += nargs

        if upper == "M":
            x, y = args
            if relative:
                x, y = cx + x, cy + y
            cx, cy = start_x, start_y = x, y
            current = Subpath(vertices=[Vertex(x, y)])
            subpaths.append(current)
            # Implicit pairs after a move are line-tos
            cmd = "l" if relative else "L"
        elif upper == "L":
            x, y = args
            if relative:
                x, y = cx + x, cy + y
            add_point(x, y)
            cx, cy = x, y
        elif upper == "H":
            x = args[0] + cx if relative else args[0]
            add_point(x, cy)
            cx = x
        elif upper == "V":
            y = args[0] + cy if relative else args[0]
            add_point(cx, y)
            cy = y
        elif upper == "A":
            rx, ry, _rot, large, sweep, x, y = args
            if relative:
                x, y = cx + x, cy + y
            rx, ry = abs(rx), abs(ry)
            if rx > 0 and ry > 0 and abs(rx - ry) > ELLIPSE_TOLERANCE * max(rx, ry):
                raise UnsupportedPrimitive("elliptical arc has no KiCad equivalent", token=d)
            bulge = 0.0
            if rx > 0 and ry > 0:
                bulge = svg_arc_to_bulge(cx, cy, x, y, (rx + ry) / 2,
                                         large != 0, sweep != 0)
            add_point(x, y)
            current.vertices[-2].bulge = bulge
            cx, cy = x, y
        else:  # Z
            if current is not None:
                current.closed = True
                first, last = current.vertices[0], current.vertices[-1]
                # Drop an explicit closing point that duplicates the first
                if len(current.vertices) > 2 and math.isclose(first.x, last.x) \
                        and math.isclose(first.y, last.y):
                    current.vertices.pop()
            current = None
            cx, cy = start_x, start_y

    return subpaths


def parse_points(s: str) -> list:
    """Parse a whitespace/comma separated coordinate list into Vertex objects."""
    parts = [p for p in re.split(r"[\s,]+", s.strip()) if p]
    if len(parts) % 2:
        raise MalformedShape("odd number of coordinates in point list", token=s)
    values = []
    for p in parts:
        try:
            v = float(p)
        except ValueError:
            raise MalformedShape(f"bad coordinate '{p}' in point list", token=s)
        if not math.isfinite(v):
            raise MalformedShape(f"non-finite coordinate '{p}' in point list", token=s)
        values.append(v)
    return [Vertex(values[k], values[k + 1]) for k in range(0, len(values), 2)]
