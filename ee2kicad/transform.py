"""Unit and coordinate-system normalization.

normalize() is the only place where source canvas units become millimetres,
origins shift and the symbol Y axis flips.  It rewrites the entity in place
and must run exactly once per entity: the entity is flagged as normalized and
a second call raises UnitConversionError rather than double-converting.

Conventions:
  * EasyEDA canvas is Y+ down.  KiCad footprints and boards are Y+ down too;
    KiCad symbols are Y+ up, so symbol Y is negated.
  * EasyEDA angles turn clockwise on screen, KiCad angles counter-clockwise,
    so every rotation is negated and folded into [0, 360).
  * Bulges are dimensionless: unchanged by scaling and rotation, negated by
    the symbol Y flip.
"""

import logging
import math

from .cad_model import (
    Arc, Board, Circle, Ellipse, Footprint, Hole, Line, Model3D, Pad, Pin,
    PlacedFootprint, Point, Polygon, PrimitiveKind, Rectangle,
    SolidRegion, Symbol, Text, Track, Vertex, Via, compute_bbox,
)
from .config import POINT_TO_MM, ConversionConfig
from .errors import UnitConversionError
from .utils import normalize_angle, rotate_point

log = logging.getLogger(__name__)


class _Frame:
    """Maps source coordinates of one entity (or placed footprint) to mm."""

    def __init__(self, origin: Point, config: ConversionConfig, entity: str,
                 flip_y: bool = False, unrotate: float = 0.0):
        self.ox = origin.x
        self.oy = origin.y
        self.scale = config.unit_to_mm
        self.flip_y = flip_y
        self.unrotate = unrotate
        self.max_mm = config.max_coordinate_mm
        self.entity = entity

    def _check(self, value: float, what: str) -> float:
        if not math.isfinite(value) or abs(value) > self.max_mm:
            raise UnitConversionError(
                f"{what} {value!r} mm is out of range (limit {self.max_mm} mm)",
                entity=self.entity)
        return value

    def xy(self, x: float, y: float):
        dx = (x - self.ox) * self.scale
        dy = (y - self.oy) * self.scale
        if self.flip_y:
            dy = -dy
        if self.unrotate:
            dx, dy = rotate_point(dx, dy, self.unrotate)
        return self._check(dx, "x"), self._check(dy, "y")

    def point(self, p: Point) -> Point:
        return Point(*self.xy(p.x, p.y))

    def vertex(self, v: Vertex) -> Vertex:
        x, y = self.xy(v.x, v.y)
        return Vertex(x, y, self.bulge(v.bulge))

    def length(self, value: float, what: str = "length") -> float:
        return self._check(value * self.scale, what)

    def bulge(self, value: float) -> float:
        return -value if self.flip_y else value

    @staticmethod
    def angle(value: float) -> float:
        return normalize_angle(-value)


# ── Primitives ───────────────────────────────────────────────────────


def _line(p: Line, fr: _Frame):
    p.start, p.end = fr.point(p.start), fr.point(p.end)
    return p


def _arc(p: Arc, fr: _Frame):
    p.start, p.end = fr.point(p.start), fr.point(p.end)
    p.bulge = fr.bulge(p.bulge)
    return p


def _circle(p: Circle, fr: _Frame):
    p.center = fr.point(p.center)
    p.radius = fr.length(p.radius, "radius")
    return p


def _ellipse(p: Ellipse, fr: _Frame):
    p.center = fr.point(p.center)
    p.rx = fr.length(p.rx, "rx")
    p.ry = fr.length(p.ry, "ry")
    return p


def _rectangle(p: Rectangle, fr: _Frame):
    if fr.unrotate:
        # No longer axis aligned in the footprint frame
        poly = Polygon(layer=p.layer, stroke_width=p.stroke_width, fill=p.fill,
                       uid=p.uid, vertices=p.outline())
        return _polyline(poly, fr)
    x, y = fr.xy(p.x, p.y)
    x2, y2 = fr.xy(p.x + p.width, p.y + p.height)
    p.x, p.y, p.width, p.height = x, y, x2 - x, y2 - y
    p.corner_radius = fr.length(p.corner_radius, "corner radius")
    return p


def _polyline(p, fr: _Frame):
    p.vertices = [fr.vertex(v) for v in p.vertices]
    return p


def _text(p: Text, fr: _Frame):
    p.x, p.y = fr.xy(p.x, p.y)
    p.rotation = fr.angle(p.rotation)
    if p.size_in_points:
        p.size = p.size * POINT_TO_MM
        p.size_in_points = False
    else:
        p.size = fr.length(p.size, "text size")
    return p


def _pin(p: Pin, fr: _Frame):
    p.position = fr.point(p.position)
    if p.lead is not None:
        _line(p.lead, fr)
    p.length = fr.length(p.length, "pin length")
    p.rotation = fr.angle(p.rotation)
    p.name_size *= POINT_TO_MM
    p.number_size *= POINT_TO_MM
    return p


def _pad(p: Pad, fr: _Frame):
    p.position = fr.point(p.position)
    p.size_x = fr.length(p.size_x, "pad width")
    p.size_y = fr.length(p.size_y, "pad height")
    p.drill = fr.length(p.drill, "drill")
    p.slot_length = fr.length(p.slot_length, "slot length")
    p.outline = [fr.point(q) for q in p.outline]
    p.rotation = fr.angle(p.rotation)
    return p


def _track(p: Track, fr: _Frame):
    return _polyline(p, fr)


def _via(p: Via, fr: _Frame):
    p.center = fr.point(p.center)
    p.diameter = fr.length(p.diameter, "via diameter")
    p.drill = fr.length(p.drill, "via drill")
    return p


def _hole(p: Hole, fr: _Frame):
    p.center = fr.point(p.center)
    p.radius = fr.length(p.radius, "hole radius")
    return p


def _region(p: SolidRegion, fr: _Frame):
    _polyline(p, fr)
    p.clearance = fr.length(p.clearance, "clearance")
    return p


_TRANSFORMS = {
    PrimitiveKind.LINE: _line,
    PrimitiveKind.ARC: _arc,
    PrimitiveKind.CIRCLE: _circle,
    PrimitiveKind.ELLIPSE: _ellipse,
    PrimitiveKind.RECTANGLE: _rectangle,
    PrimitiveKind.POLYLINE: _polyline,
    PrimitiveKind.POLYGON: _polyline,
    PrimitiveKind.TEXT: _text,
    PrimitiveKind.PIN: _pin,
    PrimitiveKind.PAD: _pad,
    PrimitiveKind.VIA: _via,
    PrimitiveKind.TRACK: _track,
    PrimitiveKind.HOLE: _hole,
    PrimitiveKind.SOLID_REGION: _region,
}


def transform_primitive(prim, fr: _Frame):
    """Convert one primitive; returns it (or its replacement)."""
    prim = _TRANSFORMS[prim.kind](prim, fr)
    prim.stroke_width = fr.length(prim.stroke_width, "stroke width")
    return prim


def _model(model: Model3D, fr: _Frame):
    ox, oy, oz = model.offset
    x, y = fr.xy(ox, oy)
    # Relative to the footprint origin, Y up
    model.offset = (x, -y, fr.length(oz, "model z"))
    model.rotation = tuple(normalize_angle(-r) for r in model.rotation)


# ── Entities ─────────────────────────────────────────────────────────


def _begin(entity):
    if entity.normalized:
        raise UnitConversionError(
            "entity is already normalized; converting twice would double-scale it",
            entity=entity.name)
    entity.normalized = True


def _normalize_symbol(symbol: Symbol, config: ConversionConfig):
    fr = _Frame(symbol.origin, config, symbol.name, flip_y=True)
    symbol.pins = {num: transform_primitive(pin, fr) for num, pin in symbol.pins.items()}
    symbol.graphics = [transform_primitive(g, fr) for g in symbol.graphics]
    symbol.bbox = compute_bbox(list(symbol.pins.values()) + symbol.graphics)
    symbol.origin = Point()


def _normalize_footprint_items(footprint: Footprint, fr: _Frame):
    footprint.pads = [transform_primitive(p, fr) for p in footprint.pads]
    footprint.graphics = [transform_primitive(g, fr) for g in footprint.graphics]
    if footprint.model is not None:
        _model(footprint.model, fr)
    footprint.bbox = compute_bbox(footprint.pads + footprint.graphics)
    footprint.origin = Point()


def _normalize_footprint(footprint: Footprint, config: ConversionConfig):
    fr = _Frame(footprint.origin, config, footprint.name)
    _normalize_footprint_items(footprint, fr)


def _normalize_placed(placed: PlacedFootprint, board_frame: _Frame, config: ConversionConfig):
    footprint = placed.footprint
    placed.position = board_frame.point(placed.position)
    placed.rotation = board_frame.angle(placed.rotation)
    # Children are stored relative to the placement, unrotated
    fr = _Frame(footprint.origin, config, board_frame.entity, unrotate=placed.rotation)
    _normalize_footprint_items(footprint, fr)
    footprint.normalized = True


def _include_placed(bbox, placed: PlacedFootprint):
    """Grow a board bbox by a placed footprint's children, mapped onto the board."""
    px, py = placed.position.x, placed.position.y
    for prim in placed.footprint.pads + placed.footprint.graphics:
        for x, y in prim.extent_points():
            dx, dy = rotate_point(x, y, -placed.rotation)
            bbox.include(px + dx, py + dy)


def _normalize_board(board: Board, config: ConversionConfig):
    fr = _Frame(board.origin, config, board.name)
    for placed in board.footprints:
        _normalize_placed(placed, fr, config)
    board.tracks = [transform_primitive(t, fr) for t in board.tracks]
    board.vias = [transform_primitive(v, fr) for v in board.vias]
    board.zones = [transform_primitive(z, fr) for z in board.zones]
    board.graphics = [transform_primitive(g, fr) for g in board.graphics]
    board.holes = [transform_primitive(h, fr) for h in board.holes]
    board.bbox = compute_bbox(board.tracks + board.vias + board.zones
                              + board.graphics + board.holes)
    for placed in board.footprints:
        _include_placed(board.bbox, placed)
    board.origin = Point()


_NORMALIZERS = {
    Symbol: _normalize_symbol,
    Footprint: _normalize_footprint,
    Board: _normalize_board,
}


def normalize(entity, config: ConversionConfig):
    """Convert an assembled entity to millimetres and KiCad axes, in place.

    Not idempotent: raises UnitConversionError when called a second time on
    the same entity, and for any non-finite or out-of-range result.
    """
    _begin(entity)
    _NORMALIZERS[type(entity)](entity, config)
    log.debug("Normalized %s %s (scale %g mm/unit)",
              entity.entity_kind.value, entity.name, config.unit_to_mm)
    return entity
