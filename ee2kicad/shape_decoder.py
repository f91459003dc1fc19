"""EasyEDA shape-command decoder.

Each entry of a record's ``shape`` list is one ``~``-separated string whose
first field names the primitive kind.  decode_shape() turns one such string
into one typed primitive from cad_model, still in source canvas units.

Shape string reference (fields after the kind token):
  R       x~y~rx~ry~width~height~stroke_color~stroke_width~stroke_style~fill_color~id~locked
  E       cx~cy~rx~ry~stroke_color~stroke_width~stroke_style~fill_color~id~locked
  C       cx~cy~r~stroke_color~stroke_width~stroke_style~fill_color~id~locked
  A       path~helper_dots~stroke_color~stroke_width~stroke_style~fill_color~id~locked
  PL/PG   points~stroke_color~stroke_width~stroke_style~fill_color~id~locked
  PT      path~stroke_color~stroke_width~stroke_style~fill_color~id~locked
  T       mark~x~y~rotation~color~font~font_size~weight~style~baseline~type~text~visible~anchor~id~locked
  P       ^^-separated segments, see _decode_pin()
  PAD     shape~cx~cy~width~height~layer~net~number~hole_radius~points~rotation~id~hole_length~hole_point~plated~locked
  TRACK   width~layer~net~points~id~locked
  VIA     cx~cy~diameter~net~hole_radius~id~locked
  HOLE    cx~cy~radius~id~locked
  CIRCLE  cx~cy~radius~width~layer~id~locked
  ARC     width~layer~net~path~helper_dots~id~locked
  RECT    x~y~width~height~layer~id~locked~stroke_width
  TEXT    type~x~y~width~rotation~mirror~layer~net~font_size~text~text_path~display~id~locked
  SOLIDREGION  layer~net~path~type~id~locked
  COPPERAREA   width~layer~net~path~clearance~fill_style~id~thermal~keep_island~copper_zone~locked
  SVGNODE JSON object
  LIB     x~y~attrs~rotation~import~id~locked, then #@$-separated sub-shapes
"""

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from .cad_model import (
    Arc, Circle, Ellipse, Hole, Line, Model3D, Pad, PadShape, Pin, PinType,
    Point, Polygon, Polyline, Rectangle, SolidRegion, Text, Track, Via,
)
from .errors import MalformedShape, UnsupportedPrimitive
from .layers import MULTI_LAYER, SYMBOL_LAYER
from .svg_path import ELLIPSE_TOLERANCE, parse_path, parse_points

log = logging.getLogger(__name__)

FIELD_SEP = "~"
PIN_SEGMENT_SEP = "^^"
LIB_SHAPE_SEP = "#@$"
LIB_ATTR_SEP = "`"


class ShapeKind(Enum):
    # Symbol
    RECT_SYM = "R"
    ELLIPSE_SYM = "E"
    CIRCLE_SYM = "C"
    ARC_SYM = "A"
    POLYLINE_SYM = "PL"
    POLYGON_SYM = "PG"
    PATH_SYM = "PT"
    TEXT_SYM = "T"
    PIN = "P"
    PIE = "PI"
    IMAGE = "I"
    # Footprint / board
    PAD = "PAD"
    TRACK = "TRACK"
    VIA = "VIA"
    HOLE = "HOLE"
    CIRCLE = "CIRCLE"
    ARC = "ARC"
    RECT = "RECT"
    TEXT = "TEXT"
    SOLID_REGION = "SOLIDREGION"
    COPPER_AREA = "COPPERAREA"
    SVG_NODE = "SVGNODE"
    LIB = "LIB"
    DIMENSION = "DIMENSION"
    PROTRACTOR = "PROTRACTOR"


# Accepted field counts after the kind token, one per format revision
FIELD_COUNTS = {
    ShapeKind.RECT_SYM: {11, 12},
    ShapeKind.ELLIPSE_SYM: {9, 10},
    ShapeKind.CIRCLE_SYM: {8, 9},
    ShapeKind.ARC_SYM: {7, 8},
    ShapeKind.POLYLINE_SYM: {6, 7},
    ShapeKind.POLYGON_SYM: {6, 7},
    ShapeKind.PATH_SYM: {6, 7},
    ShapeKind.TEXT_SYM: {15, 16},
    ShapeKind.PIN: {7, 8},
    ShapeKind.PAD: {12, 13, 15, 16},
    ShapeKind.TRACK: {5, 6},
    ShapeKind.VIA: {6, 7},
    ShapeKind.HOLE: {4, 5},
    ShapeKind.CIRCLE: {6, 7},
    ShapeKind.ARC: {6, 7},
    ShapeKind.RECT: {6, 7, 8},
    ShapeKind.TEXT: {13, 14, 15},
    ShapeKind.SOLID_REGION: {5, 6},
    ShapeKind.COPPER_AREA: {10, 11},
    ShapeKind.LIB: {6, 7},
}

_PIN_TYPES = {
    "1": PinType.INPUT,
    "2": PinType.OUTPUT,
    "3": PinType.BIDIRECTIONAL,
    "4": PinType.POWER,
}

_PAD_SHAPES = {
    "RECT": PadShape.RECT,
    "OVAL": PadShape.OVAL,
    "POLYGON": PadShape.POLYGON,
}


@dataclass
class RawPlacement:
    """A ``LIB`` shape: one footprint placed on a board, sub-shapes undecoded."""
    x: float = 0.0
    y: float = 0.0
    attrs: dict = field(default_factory=dict)
    rotation: float = 0.0
    uid: str = ""
    shapes: list = field(default_factory=list)  # list of shape strings


# ── Field helpers ────────────────────────────────────────────────────


def _num(value: str, what: str, token: str, optional: bool = False) -> float:
    """Parse a numeric field; blank optional fields read as 0."""
    value = value.strip()
    if optional and value == "":
        return 0.0
    try:
        result = float(value)
    except ValueError:
        raise MalformedShape(f"{what}: '{value}' is not a number", token=token)
    if not math.isfinite(result):
        raise MalformedShape(f"{what}: '{value}' is not finite", token=token)
    return result


def _layer(value: str, token: str) -> int:
    return int(_num(value, "layer", token))


def _filled(fill_color: str) -> bool:
    return fill_color.strip().lower() not in ("", "none", "transparent")


def _font_size(value: str, token: str):
    """Return (size, in_points) for a symbol font size like ``7pt``."""
    value = value.strip()
    if value.endswith("pt"):
        return _num(value[:-2], "font size", token), True
    return _num(value, "font size", token, optional=True), False


def _check_arity(kind: ShapeKind, fields: list, token: str):
    counts = FIELD_COUNTS[kind]
    if len(fields) - 1 not in counts:
        expected = "/".join(str(c) for c in sorted(counts))
        raise MalformedShape(
            f"{kind.value} expects {expected} fields, got {len(fields) - 1}", token=token)


def _single_subpath(d: str, token: str):
    subpaths = parse_path(d)
    if len(subpaths) != 1:
        raise UnsupportedPrimitive("compound path with several contours", token=token)
    return subpaths[0]


def _path_primitive(d: str, token: str, layer: int, stroke_width: float, fill: bool, uid: str):
    """Arc when the path is one curved segment, otherwise polyline/polygon."""
    sub = _single_subpath(d, token)
    verts = sub.vertices
    if len(verts) < 2:
        raise MalformedShape("path has fewer than two points", token=token)
    if len(verts) == 2 and not sub.closed and verts[0].bulge != 0:
        return Arc(layer=layer, stroke_width=stroke_width, uid=uid,
                   start=Point(verts[0].x, verts[0].y),
                   end=Point(verts[1].x, verts[1].y), bulge=verts[0].bulge)
    cls = Polygon if sub.closed else Polyline
    return cls(layer=layer, stroke_width=stroke_width, fill=fill and sub.closed,
               uid=uid, vertices=verts)


# ── Symbol shapes ────────────────────────────────────────────────────


def _decode_rect_sym(f, token):
    rx = _num(f[3], "rx", token, optional=True)
    ry = _num(f[4], "ry", token, optional=True)
    if abs(rx - ry) > ELLIPSE_TOLERANCE * max(rx, ry, 1e-12):
        raise UnsupportedPrimitive("rectangle with unequal corner radii", token=token)
    return Rectangle(
        layer=SYMBOL_LAYER,
        x=_num(f[1], "x", token), y=_num(f[2], "y", token),
        width=_num(f[5], "width", token), height=_num(f[6], "height", token),
        corner_radius=rx,
        stroke_width=_num(f[8], "stroke width", token, optional=True),
        fill=_filled(f[10]), uid=f[11],
    )


def _decode_ellipse_sym(f, token):
    center = Point(_num(f[1], "cx", token), _num(f[2], "cy", token))
    rx = _num(f[3], "rx", token)
    ry = _num(f[4], "ry", token)
    common = dict(layer=SYMBOL_LAYER,
                  stroke_width=_num(f[6], "stroke width", token, optional=True),
                  fill=_filled(f[8]), uid=f[9])
    if abs(rx - ry) <= ELLIPSE_TOLERANCE * max(rx, ry, 1e-12):
        return Circle(center=center, radius=(rx + ry) / 2, **common)
    return Ellipse(center=center, rx=rx, ry=ry, **common)


def _decode_circle_sym(f, token):
    return Circle(
        layer=SYMBOL_LAYER,
        center=Point(_num(f[1], "cx", token), _num(f[2], "cy", token)),
        radius=_num(f[3], "r", token),
        stroke_width=_num(f[5], "stroke width", token, optional=True),
        fill=_filled(f[7]), uid=f[8],
    )


def _decode_arc_sym(f, token):
    return _path_primitive(f[1], token, SYMBOL_LAYER,
                           _num(f[4], "stroke width", token, optional=True),
                           _filled(f[6]), f[7])


def _decode_polyline_sym(f, token, closed=False):
    verts = parse_points(f[1])
    if len(verts) < 2:
        raise MalformedShape("polyline needs at least two points", token=token)
    cls = Polygon if closed else Polyline
    return cls(layer=SYMBOL_LAYER, vertices=verts,
               stroke_width=_num(f[3], "stroke width", token, optional=True),
               fill=closed and _filled(f[5]), uid=f[6])


def _decode_polygon_sym(f, token):
    return _decode_polyline_sym(f, token, closed=True)


def _decode_path_sym(f, token):
    return _path_primitive(f[1], token, SYMBOL_LAYER,
                           _num(f[3], "stroke width", token, optional=True),
                           _filled(f[5]), f[6])


def _decode_text_sym(f, token):
    size, in_points = _font_size(f[7], token)
    anchor = f[14].strip() or "start"
    return Text(
        layer=SYMBOL_LAYER,
        x=_num(f[2], "x", token), y=_num(f[3], "y", token),
        rotation=_num(f[4], "rotation", token, optional=True),
        size=size, size_in_points=in_points,
        text_type=f[1] or "L", text=f[12],
        visible=f[13].strip() != "0",
        anchor=anchor if anchor in ("start", "middle", "end") else "start",
        uid=f[15],
    )


def _decode_pin(shape: str):
    """Decode a pin.

    Segments: settings(P~show~electric~number~x~y~rotation~id~locked),
    dot(x~y), path(path~color), name(show~x~y~rotation~text~anchor~font~size),
    [number(show~x~y~rotation~text~anchor~font~size),] inverted dot(show~cx~cy),
    clock(show~path).  Older records omit the number segment.
    """
    segments = shape.split(PIN_SEGMENT_SEP)
    if len(segments) not in (6, 7):
        raise MalformedShape(f"pin expects 6/7 segments, got {len(segments)}", token=shape)
    settings = segments[0].split(FIELD_SEP)
    _check_arity(ShapeKind.PIN, settings, shape)
    path_seg = segments[2].split(FIELD_SEP)
    name_seg = segments[3].split(FIELD_SEP)
    if len(name_seg) < 5:
        raise MalformedShape("pin name segment too short", token=shape)
    if len(segments) == 7:
        number_seg = segments[4].split(FIELD_SEP)
        dot_seg, clock_seg = segments[5].split(FIELD_SEP), segments[6].split(FIELD_SEP)
    else:
        number_seg = None
        dot_seg, clock_seg = segments[4].split(FIELD_SEP), segments[5].split(FIELD_SEP)

    x = _num(settings[4], "pin x", shape)
    y = _num(settings[5], "pin y", shape)
    settings_rotation = _num(settings[6], "pin rotation", shape, optional=True)

    # Lead runs from the connection point to the body
    length = 0.0
    far = Point(x, y)
    if path_seg[0].strip():
        sub = _single_subpath(path_seg[0], shape)
        first, last = sub.vertices[0], sub.vertices[-1]
        if math.hypot(first.x - x, first.y - y) > math.hypot(last.x - x, last.y - y):
            first, last = last, first
        far = Point(last.x, last.y)
        length = math.hypot(far.x - x, far.y - y)
    if length > 1e-9:
        direction = math.degrees(math.atan2(far.y - y, far.x - x))
    else:
        direction = settings_rotation + 180
    rotation = (round(direction / 90.0) * 90) % 360

    # Pin label sizes are kept in points; anything else falls back to the default
    name_size = number_size = 0.0
    if len(name_seg) > 7:
        size, in_points = _font_size(name_seg[7], shape)
        name_size = size if in_points else 0.0
    show_number = True
    if number_seg is not None:
        show_number = number_seg[0].strip() != "0"
        if len(number_seg) > 7:
            size, in_points = _font_size(number_seg[7], shape)
            number_size = size if in_points else 0.0

    return Pin(
        layer=SYMBOL_LAYER,
        number=settings[3].strip(),
        name=name_seg[4],
        position=Point(x, y),
        rotation=float(rotation),
        pin_type=_PIN_TYPES.get(settings[2].strip(), PinType.PASSIVE),
        length=length,
        lead=Line(layer=SYMBOL_LAYER, start=Point(x, y), end=far),
        show_name=name_seg[0].strip() != "0",
        show_number=show_number,
        inverted=dot_seg[0].strip() == "1",
        clock=clock_seg[0].strip() == "1",
        name_size=name_size,
        number_size=number_size,
        uid=settings[7],
    )


# ── Footprint / board shapes ─────────────────────────────────────────


def _decode_pad(f, token):
    shape_name = f[1].strip().upper()
    width = _num(f[4], "pad width", token)
    height = _num(f[5], "pad height", token)
    if shape_name == "ELLIPSE":
        shape = PadShape.CIRCLE if math.isclose(width, height) else PadShape.OVAL
    elif shape_name in _PAD_SHAPES:
        shape = _PAD_SHAPES[shape_name]
    else:
        raise UnsupportedPrimitive(f"pad shape '{f[1]}'", token=token, structural=True)

    hole_radius = _num(f[9], "hole radius", token, optional=True)
    outline = []
    if shape == PadShape.POLYGON:
        outline = [Point(v.x, v.y) for v in parse_points(f[10])]
        if len(outline) < 3:
            raise MalformedShape("polygon pad needs at least three points", token=token)
    hole_length = _num(f[13], "hole length", token, optional=True) if len(f) > 13 else 0.0
    plated_field = f[15].strip().upper() if len(f) > 15 else ""

    return Pad(
        layer=_layer(f[6], token),
        shape=shape,
        position=Point(_num(f[2], "pad x", token), _num(f[3], "pad y", token)),
        size_x=width, size_y=height,
        net=f[7],
        number=f[8].strip(),
        drill=hole_radius * 2,
        outline=outline,
        rotation=_num(f[11], "pad rotation", token, optional=True),
        uid=f[12],
        slot_length=hole_length if hole_length > hole_radius * 2 else 0.0,
        plated=plated_field not in ("N", "FALSE", "0"),
    )


def _decode_track(f, token):
    verts = parse_points(f[4])
    if len(verts) < 2:
        raise MalformedShape("track needs at least two points", token=token)
    return Track(stroke_width=_num(f[1], "track width", token), layer=_layer(f[2], token),
                 net=f[3], vertices=verts, uid=f[5])


def _decode_via(f, token):
    return Via(
        layer=MULTI_LAYER,
        center=Point(_num(f[1], "via x", token), _num(f[2], "via y", token)),
        diameter=_num(f[3], "via diameter", token),
        net=f[4],
        drill=_num(f[5], "via hole radius", token) * 2,
        uid=f[6],
    )


def _decode_hole(f, token):
    return Hole(layer=MULTI_LAYER,
                center=Point(_num(f[1], "hole x", token), _num(f[2], "hole y", token)),
                radius=_num(f[3], "hole radius", token), uid=f[4])


def _decode_circle(f, token):
    return Circle(
        center=Point(_num(f[1], "cx", token), _num(f[2], "cy", token)),
        radius=_num(f[3], "radius", token),
        stroke_width=_num(f[4], "stroke width", token),
        layer=_layer(f[5], token), uid=f[6],
    )


def _decode_arc(f, token):
    return _path_primitive(f[4], token, _layer(f[2], token),
                           _num(f[1], "stroke width", token), False, f[6])


def _decode_rect(f, token):
    stroke = _num(f[8], "stroke width", token, optional=True) if len(f) > 8 else 0.0
    return Rectangle(
        x=_num(f[1], "x", token), y=_num(f[2], "y", token),
        width=_num(f[3], "width", token), height=_num(f[4], "height", token),
        layer=_layer(f[5], token), uid=f[6],
        stroke_width=stroke, fill=stroke == 0,
    )


def _decode_text(f, token):
    return Text(
        text_type=f[1] or "L",
        x=_num(f[2], "x", token), y=_num(f[3], "y", token),
        stroke_width=_num(f[4], "stroke width", token, optional=True),
        rotation=_num(f[5], "rotation", token, optional=True),
        mirror=f[6].strip() == "1",
        layer=_layer(f[7], token),
        size=_num(f[9], "font size", token, optional=True),
        text=f[10],
        visible=f[12].strip().lower() != "none",
        anchor="middle",
        uid=f[13],
    )


def _decode_solid_region(f, token):
    sub = _single_subpath(f[3], token)
    if len(sub.vertices) < 3:
        raise MalformedShape("region needs at least three points", token=token)
    return SolidRegion(layer=_layer(f[1], token), net=f[2], vertices=sub.vertices,
                       region_type=f[4].strip() or "solid", fill=True, uid=f[5])


def _decode_copper_area(f, token):
    sub = _single_subpath(f[4], token)
    if len(sub.vertices) < 3:
        raise MalformedShape("copper area needs at least three points", token=token)
    return SolidRegion(
        stroke_width=_num(f[1], "stroke width", token, optional=True),
        layer=_layer(f[2], token), net=f[3], vertices=sub.vertices,
        clearance=_num(f[5], "clearance", token, optional=True),
        region_type="zone", fill=f[6].strip().lower() != "none", uid=f[7],
    )


def _decode_svg_node(shape: str):
    _, _, payload = shape.partition(FIELD_SEP)
    try:
        node = json.loads(payload)
        attrs = node["attrs"]
    except (ValueError, KeyError, TypeError):
        raise MalformedShape("SVGNODE payload is not a JSON object with attrs", token=shape)
    if not isinstance(attrs, dict):
        raise MalformedShape("SVGNODE attrs is not an object", token=shape)
    if attrs.get("c_etype") != "outline3D":
        raise UnsupportedPrimitive(f"SVGNODE of type {attrs.get('c_etype')!r}", token=shape)

    def triple(value, what):
        parts = [p for p in str(value or "").replace(" ", "").split(",") if p]
        return tuple(_num(p, what, shape) for p in parts)

    origin = triple(attrs.get("c_origin"), "model origin")
    if len(origin) != 2:
        raise MalformedShape("model origin must be 'x,y'", token=shape)
    rotation = triple(attrs.get("c_rotation") or "0,0,0", "model rotation")
    if len(rotation) != 3:
        raise MalformedShape("model rotation must be 'x,y,z'", token=shape)
    z = _num(str(attrs.get("z") or "0"), "model z", shape)
    return Model3D(
        name=str(attrs.get("title", "")),
        uuid=str(attrs.get("uuid", "")),
        offset=(origin[0], origin[1], z),
        rotation=rotation,
    )


def _decode_lib(shape: str):
    head, *subshapes = shape.split(LIB_SHAPE_SEP)
    f = head.split(FIELD_SEP)
    _check_arity(ShapeKind.LIB, f, shape)
    parts = f[3].split(LIB_ATTR_SEP)
    attrs = {parts[k]: parts[k + 1] for k in range(0, len(parts) - 1, 2) if parts[k]}
    return RawPlacement(
        x=_num(f[1], "x", shape), y=_num(f[2], "y", shape),
        attrs=attrs,
        rotation=_num(f[4], "rotation", shape, optional=True),
        uid=f[6],
        shapes=[s for s in subshapes if s],
    )


def _unsupported(f, token):
    raise UnsupportedPrimitive(f"'{f[0]}' has no KiCad equivalent", token=token)


_FIELD_DECODERS = {
    ShapeKind.RECT_SYM: _decode_rect_sym,
    ShapeKind.ELLIPSE_SYM: _decode_ellipse_sym,
    ShapeKind.CIRCLE_SYM: _decode_circle_sym,
    ShapeKind.ARC_SYM: _decode_arc_sym,
    ShapeKind.POLYLINE_SYM: _decode_polyline_sym,
    ShapeKind.POLYGON_SYM: _decode_polygon_sym,
    ShapeKind.PATH_SYM: _decode_path_sym,
    ShapeKind.TEXT_SYM: _decode_text_sym,
    ShapeKind.PAD: _decode_pad,
    ShapeKind.TRACK: _decode_track,
    ShapeKind.VIA: _decode_via,
    ShapeKind.HOLE: _decode_hole,
    ShapeKind.CIRCLE: _decode_circle,
    ShapeKind.ARC: _decode_arc,
    ShapeKind.RECT: _decode_rect,
    ShapeKind.TEXT: _decode_text,
    ShapeKind.SOLID_REGION: _decode_solid_region,
    ShapeKind.COPPER_AREA: _decode_copper_area,
    ShapeKind.PIE: _unsupported,
    ShapeKind.IMAGE: _unsupported,
    ShapeKind.DIMENSION: _unsupported,
    ShapeKind.PROTRACTOR: _unsupported,
}

# Kinds that look at the raw string rather than a flat field list
_RAW_DECODERS = {
    ShapeKind.PIN: _decode_pin,
    ShapeKind.SVG_NODE: _decode_svg_node,
    ShapeKind.LIB: _decode_lib,
}


def shape_kind(shape: str) -> ShapeKind:
    token = shape.split(FIELD_SEP, 1)[0].strip()
    try:
        return ShapeKind(token)
    except ValueError:
        raise UnsupportedPrimitive(f"unknown shape kind '{token}'", token=shape)


def decode_shape(shape: str):
    """Decode one shape string into a primitive (or Model3D / RawPlacement).

    Raises MalformedShape for a wrong field count or a bad number and
    UnsupportedPrimitive for kinds with no KiCad counterpart.
    """
    if not isinstance(shape, str) or not shape.strip():
        raise MalformedShape("empty shape string", token=str(shape))
    kind = shape_kind(shape)
    raw_decoder = _RAW_DECODERS.get(kind)
    if raw_decoder is not None:
        return raw_decoder(shape)
    decoder = _FIELD_DECODERS.get(kind)
    if decoder is None:
        raise UnsupportedPrimitive(f"no decoder for '{kind.value}'", token=shape)
    fields = shape.split(FIELD_SEP)
    if kind in FIELD_COUNTS:
        _check_arity(kind, fields, shape)
    primitive = decoder(fields, shape)
    log.debug("Decoded %s -> %s", kind.value, type(primitive).__name__)
    return primitive
