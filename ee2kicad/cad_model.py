"""Intermediate data model for EasyEDA to KiCad conversion.

Pure data: no knowledge of either file format.  Coordinates are in source
canvas units until transform.normalize() runs, millimetres afterwards.
Layers are EasyEDA layer ids; see layers.py for the KiCad side.
"""

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import ClassVar, Optional

from .utils import QUARTER_BULGE, bulge_to_center, bulge_to_mid, sweep_from_bulge


class PrimitiveKind(Enum):
    LINE = auto()
    ARC = auto()
    CIRCLE = auto()
    ELLIPSE = auto()
    RECTANGLE = auto()
    POLYLINE = auto()
    POLYGON = auto()
    TEXT = auto()
    PIN = auto()
    PAD = auto()
    VIA = auto()
    TRACK = auto()
    HOLE = auto()
    SOLID_REGION = auto()


# Kinds whose loss makes the entity unusable
STRUCTURAL_KINDS = frozenset({PrimitiveKind.PIN, PrimitiveKind.PAD})


class PadShape(Enum):
    CIRCLE = auto()
    RECT = auto()
    ROUNDRECT = auto()
    OVAL = auto()
    POLYGON = auto()


class PinType(Enum):
    INPUT = "input"
    OUTPUT = "output"
    BIDIRECTIONAL = "bidirectional"
    POWER = "power_in"
    PASSIVE = "passive"
    NO_CONNECT = "no_connect"
    UNSPECIFIED = "unspecified"


class LayerType(Enum):
    COPPER = auto()
    SILKSCREEN = auto()
    MASK = auto()
    PASTE = auto()
    EDGE_CUTS = auto()
    COMMENT = auto()
    FAB = auto()
    MECHANICAL = auto()


class EntityKind(Enum):
    SYMBOL = "symbol"
    FOOTPRINT = "footprint"
    BOARD = "board"


@dataclass
class Point:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Vertex:
    """Polyline vertex; bulge describes the segment to the next vertex."""
    x: float = 0.0
    y: float = 0.0
    bulge: float = 0.0


@dataclass
class BoundingBox:
    min_x: float = math.inf
    min_y: float = math.inf
    max_x: float = -math.inf
    max_y: float = -math.inf

    def include(self, x: float, y: float):
        self.min_x = min(self.min_x, x)
        self.min_y = min(self.min_y, y)
        self.max_x = max(self.max_x, x)
        self.max_y = max(self.max_y, y)

    def is_empty(self) -> bool:
        return self.min_x > self.max_x

    @property
    def center(self) -> Point:
        return Point((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)


def compute_bbox(primitives) -> BoundingBox:
    """Fold primitive extents into one bounding box."""
    bbox = BoundingBox()
    for prim in primitives:
        for x, y in prim.extent_points():
            bbox.include(x, y)
    return bbox


# ── Primitives ───────────────────────────────────────────────────────


@dataclass
class Primitive:
    """Common fields of every primitive variant."""
    kind: ClassVar[PrimitiveKind]

    layer: int = 0
    stroke_width: float = 0.0
    fill: bool = False
    uid: str = ""

    def extent_points(self):
        """Points whose bounding box covers the primitive."""
        return []


@dataclass
class Line(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.LINE
    start: Point = field(default_factory=Point)
    end: Point = field(default_factory=Point)

    def extent_points(self):
        return [(self.start.x, self.start.y), (self.end.x, self.end.y)]


@dataclass
class Arc(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.ARC
    start: Point = field(default_factory=Point)
    end: Point = field(default_factory=Point)
    bulge: float = 0.0

    @property
    def center(self) -> Point:
        cx, cy, _ = bulge_to_center(self.start.x, self.start.y,
                                    self.end.x, self.end.y, self.bulge)
        return Point(cx, cy)

    @property
    def radius(self) -> float:
        return bulge_to_center(self.start.x, self.start.y,
                               self.end.x, self.end.y, self.bulge)[2]

    @property
    def mid(self) -> Point:
        mx, my = bulge_to_mid(self.start.x, self.start.y,
                              self.end.x, self.end.y, self.bulge)
        return Point(mx, my)

    @property
    def sweep(self) -> float:
        """Signed included angle in degrees."""
        return math.degrees(sweep_from_bulge(self.bulge))

    @property
    def start_angle(self) -> float:
        c = self.center
        return math.degrees(math.atan2(self.start.y - c.y, self.start.x - c.x))

    @property
    def end_angle(self) -> float:
        return self.start_angle + self.sweep

    def extent_points(self):
        m = self.mid
        return [(self.start.x, self.start.y), (m.x, m.y), (self.end.x, self.end.y)]


@dataclass
class Circle(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.CIRCLE
    center: Point = field(default_factory=Point)
    radius: float = 0.0

    def extent_points(self):
        c, r = self.center, self.radius
        return [(c.x - r, c.y - r), (c.x + r, c.y + r)]


@dataclass
class Ellipse(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.ELLIPSE
    center: Point = field(default_factory=Point)
    rx: float = 0.0
    ry: float = 0.0

    def extent_points(self):
        c = self.center
        return [(c.x - self.rx, c.y - self.ry), (c.x + self.rx, c.y + self.ry)]


@dataclass
class Rectangle(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.RECTANGLE
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    corner_radius: float = 0.0

    def extent_points(self):
        return [(self.x, self.y), (self.x + self.width, self.y + self.height)]

    def outline(self) -> list:
        """Closed outline as vertices; rounded corners become quarter arcs."""
        x0, x1 = sorted((self.x, self.x + self.width))
        y0, y1 = sorted((self.y, self.y + self.height))
        r = min(self.corner_radius, (x1 - x0) / 2, (y1 - y0) / 2)
        if r <= 0:
            return [Vertex(x0, y0), Vertex(x1, y0), Vertex(x1, y1), Vertex(x0, y1)]
        b = QUARTER_BULGE
        return [
            Vertex(x0 + r, y0), Vertex(x1 - r, y0, b),
            Vertex(x1, y0 + r), Vertex(x1, y1 - r, b),
            Vertex(x1 - r, y1), Vertex(x0 + r, y1, b),
            Vertex(x0, y1 - r), Vertex(x0, y0 + r, b),
        ]


@dataclass
class Polyline(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.POLYLINE
    vertices: list = field(default_factory=list)  # list of Vertex

    def extent_points(self):
        return [(v.x, v.y) for v in self.vertices]


@dataclass
class Polygon(Polyline):
    """Closed outline: the last vertex connects back to the first."""
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.POLYGON


@dataclass
class Text(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.TEXT
    x: float = 0.0
    y: float = 0.0
    text: str = ""
    rotation: float = 0.0
    size: float = 0.0
    # "N" reference, "P" value, "L" plain label
    text_type: str = "L"
    mirror: bool = False
    visible: bool = True
    # "start", "middle", "end"
    anchor: str = "start"
    # Size is in typographic points rather than canvas units
    size_in_points: bool = False

    def extent_points(self):
        return [(self.x, self.y)]


@dataclass
class Track(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.TRACK
    vertices: list = field(default_factory=list)  # list of Vertex
    net: str = ""

    def extent_points(self):
        return [(v.x, v.y) for v in self.vertices]


@dataclass
class Via(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.VIA
    center: Point = field(default_factory=Point)
    diameter: float = 0.0
    drill: float = 0.0
    net: str = ""

    def extent_points(self):
        c, r = self.center, self.diameter / 2
        return [(c.x - r, c.y - r), (c.x + r, c.y + r)]


@dataclass
class Hole(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.HOLE
    center: Point = field(default_factory=Point)
    radius: float = 0.0

    def extent_points(self):
        c, r = self.center, self.radius
        return [(c.x - r, c.y - r), (c.x + r, c.y + r)]


@dataclass
class SolidRegion(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.SOLID_REGION
    vertices: list = field(default_factory=list)  # list of Vertex
    # "solid", "cutout", "npth" or "zone" (copper pour outline)
    region_type: str = "solid"
    net: str = ""
    clearance: float = 0.0

    def extent_points(self):
        return [(v.x, v.y) for v in self.vertices]


@dataclass
class Pin(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.PIN
    number: str = ""
    name: str = ""
    # Connection point
    position: Point = field(default_factory=Point)
    # Direction from the connection point toward the body: 0, 90, 180, 270
    rotation: float = 0.0
    pin_type: PinType = PinType.PASSIVE
    length: float = 0.0
    lead: Optional[Line] = None
    show_name: bool = True
    show_number: bool = True
    inverted: bool = False
    clock: bool = False
    name_size: float = 0.0
    number_size: float = 0.0

    def extent_points(self):
        if self.lead is not None:
            return self.lead.extent_points()
        return [(self.position.x, self.position.y)]


@dataclass
class Pad(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.PAD
    number: str = ""
    shape: PadShape = PadShape.RECT
    position: Point = field(default_factory=Point)
    size_x: float = 0.0
    size_y: float = 0.0
    rotation: float = 0.0
    # Drill diameter (0 = SMD)
    drill: float = 0.0
    # Oblong drill length along the pad's long axis (0 = round drill)
    slot_length: float = 0.0
    plated: bool = True
    # EasyEDA layer ids the pad occupies (copper, paste, mask)
    layer_set: tuple = ()
    # Polygon pads: outline in the same frame as position
    outline: list = field(default_factory=list)  # list of Point
    roundrect_ratio: float = 0.0
    net: str = ""

    @property
    def is_smd(self) -> bool:
        return self.drill <= 0

    def extent_points(self):
        if self.outline:
            return [(p.x, p.y) for p in self.outline]
        hx, hy = self.size_x / 2, self.size_y / 2
        if self.rotation % 180:
            hx = hy = max(hx, hy)
        p = self.position
        return [(p.x - hx, p.y - hy), (p.x + hx, p.y + hy)]


# ── Entities ─────────────────────────────────────────────────────────


@dataclass
class Model3D:
    name: str = ""
    uuid: str = ""
    offset: tuple = (0.0, 0.0, 0.0)
    rotation: tuple = (0.0, 0.0, 0.0)
    scale: tuple = (1.0, 1.0, 1.0)


@dataclass
class Symbol:
    name: str = ""
    prefix: str = "U"
    package: str = ""
    datasheet: str = ""
    lcsc_id: str = ""
    manufacturer: str = ""
    manufacturer_part: str = ""
    part_class: str = ""  # JLCPCB "Basic Part" or "Extended Part"
    pins: dict = field(default_factory=dict)  # number -> Pin
    graphics: list = field(default_factory=list)  # list of Primitive
    bbox: Optional[BoundingBox] = None
    origin: Point = field(default_factory=Point)
    normalized: bool = False

    entity_kind: ClassVar[EntityKind] = EntityKind.SYMBOL


@dataclass
class Footprint:
    name: str = ""
    pads: list = field(default_factory=list)  # list of Pad
    graphics: list = field(default_factory=list)  # list of Primitive
    model: Optional[Model3D] = None
    layers: set = field(default_factory=set)  # EasyEDA layer ids used
    origin: Point = field(default_factory=Point)
    smd: bool = True
    bbox: Optional[BoundingBox] = None
    description: str = ""
    normalized: bool = False

    entity_kind: ClassVar[EntityKind] = EntityKind.FOOTPRINT


@dataclass
class PlacedFootprint:
    footprint: Footprint = field(default_factory=Footprint)
    reference: str = ""
    value: str = ""
    position: Point = field(default_factory=Point)
    rotation: float = 0.0
    mirrored: bool = False
    uid: str = ""


@dataclass
class BoardLayer:
    id: int = 0
    name: str = ""
    layer_type: LayerType = LayerType.COPPER
    source_name: str = ""


@dataclass
class Board:
    name: str = ""
    footprints: list = field(default_factory=list)  # list of PlacedFootprint
    tracks: list = field(default_factory=list)  # list of Track
    vias: list = field(default_factory=list)  # list of Via
    zones: list = field(default_factory=list)  # list of SolidRegion
    graphics: list = field(default_factory=list)  # list of Primitive
    holes: list = field(default_factory=list)  # list of Hole
    layers: list = field(default_factory=list)  # list of BoardLayer
    # Net names; the index is the KiCad net number, 0 is the unnamed net
    nets: list = field(default_factory=lambda: [""])
    origin: Point = field(default_factory=Point)
    bbox: Optional[BoundingBox] = None
    normalized: bool = False

    entity_kind: ClassVar[EntityKind] = EntityKind.BOARD

    def net_index(self, name: str) -> int:
        try:
            return self.nets.index(name)
        except ValueError:
            return 0
