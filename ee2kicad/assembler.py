"""Entity assembly.

Turns an EntityRecord's shape strings and metadata into a populated Symbol,
Footprint or Board, still in source canvas units.  Numbering and layer
invariants are enforced here; dropped primitives are reported as
ConversionWarning entries in the caller's warning list.
"""

import logging

from .cad_model import (
    STRUCTURAL_KINDS, Board, BoundingBox, EntityKind, Footprint, Hole, Model3D,
    Pad, PadShape, PlacedFootprint, Point, Polyline, Primitive, PrimitiveKind,
    Symbol, compute_bbox,
)
from .errors import (
    ConversionError, ConversionWarning, MalformedShape, NumberingCollision,
    UnsupportedPrimitive,
)
from .layers import (
    BOARD_OUTLINE, BOTTOM_COPPER, BOTTOM_SILK, MULTI_LAYER, THT_LAYERS, TOP_COPPER, TOP_SILK,
    default_board_layers, has_kicad_layer, is_copper, pad_layer_set,
    parse_layer_string,
)
from .shape_decoder import RawPlacement, ShapeKind, decode_shape, shape_kind
from .utils import parse_float

log = logging.getLogger(__name__)

# Shape kinds whose loss makes the entity unusable
_STRUCTURAL_TOKENS = {ShapeKind.PIN, ShapeKind.PAD, ShapeKind.LIB}

# Graphic kinds that can appear in a symbol body
SYMBOL_GRAPHIC_KINDS = frozenset({
    PrimitiveKind.LINE, PrimitiveKind.ARC, PrimitiveKind.CIRCLE,
    PrimitiveKind.ELLIPSE, PrimitiveKind.RECTANGLE, PrimitiveKind.POLYLINE,
    PrimitiveKind.POLYGON, PrimitiveKind.TEXT,
})

FOOTPRINT_GRAPHIC_KINDS = SYMBOL_GRAPHIC_KINDS | {PrimitiveKind.SOLID_REGION}

# Canvas descriptor fields holding the board origin
CANVAS_ORIGIN_X = 16
CANVAS_ORIGIN_Y = 17


def _warn(warnings: list, err: ConversionError, entity: str):
    warning = ConversionWarning.from_error(err, entity)
    warnings.append(warning)
    log.warning("%s", warning)


def _is_structural_shape(shape) -> bool:
    try:
        return shape_kind(str(shape)) in _STRUCTURAL_TOKENS
    except UnsupportedPrimitive:
        return False


def decode_shapes(shapes: list, entity: str, warnings: list) -> list:
    """Decode every shape string, dropping the ones that cannot be converted.

    Returns a list of (index, item).  MalformedShape and decorative
    UnsupportedPrimitive are recorded as warnings; UnsupportedPrimitive on a
    pin, pad or placed footprint propagates and fails the entity.
    """
    decoded = []
    for index, shape in enumerate(shapes):
        try:
            item = decode_shape(shape)
            if isinstance(item, Primitive) and not has_kicad_layer(item.layer):
                raise UnsupportedPrimitive(
                    f"layer {item.layer} has no KiCad equivalent", token=str(shape),
                    structural=item.kind in STRUCTURAL_KINDS)
        except MalformedShape as e:
            _warn(warnings, e.with_context(entity, index), entity)
            continue
        except UnsupportedPrimitive as e:
            e.with_context(entity, index)
            if e.structural or _is_structural_shape(shape):
                e.structural = True
                raise
            _warn(warnings, e, entity)
            continue
        decoded.append((index, item))
    return decoded


def _head_origin(head: dict):
    if "x" in head and "y" in head:
        x = parse_float(head.get("x"), None)
        y = parse_float(head.get("y"), None)
        if x is not None and y is not None:
            return Point(x, y)
    return None


def _drop_unmappable(item, entity_kind: EntityKind, index: int, entity: str, warnings: list):
    kind = getattr(item, "kind", None)
    what = kind.name if kind is not None else type(item).__name__
    _warn(warnings, UnsupportedPrimitive(
        f"{what} has no counterpart in a KiCad {entity_kind.value}",
        entity=entity, index=index), entity)


def _as_polyline(track) -> Polyline:
    return Polyline(layer=track.layer, stroke_width=track.stroke_width,
                    uid=track.uid, vertices=track.vertices)


def _route_drawn(item, entity_kind: EntityKind, index: int, entity: str, warnings: list):
    """Fix up a drawn item's layer, or return None after warning that it was dropped.

    A non-plated solid region is a board cut and goes to the outline layer.
    A cutout only means something as a copper keepout on a board.  Nothing
    drawn can stay on the multi-layer, which KiCad only has for pads.
    """
    if item.kind == PrimitiveKind.SOLID_REGION and item.region_type == "npth":
        item.layer = BOARD_OUTLINE
        item.fill = False
        return item
    if item.kind == PrimitiveKind.SOLID_REGION and item.region_type == "cutout":
        if entity_kind != EntityKind.BOARD or not is_copper(item.layer) \
                or item.layer == MULTI_LAYER:
            _warn(warnings, UnsupportedPrimitive(
                f"cutout region on layer {item.layer} has no KiCad {entity_kind.value} "
                "counterpart", entity=entity, index=index), entity)
            return None
        return item
    if item.layer == MULTI_LAYER:
        _warn(warnings, UnsupportedPrimitive(
            f"{item.kind.name} on the multi-layer has no KiCad layer",
            entity=entity, index=index), entity)
        return None
    return item


def _hole_pad(hole: Hole) -> Pad:
    """Non-plated hole as an unnumbered through-hole pad."""
    size = hole.radius * 2
    return Pad(layer=hole.layer, number="", shape=PadShape.CIRCLE,
               position=Point(hole.center.x, hole.center.y),
               size_x=size, size_y=size, drill=size, plated=False,
               layer_set=THT_LAYERS, uid=hole.uid)


# ── Symbols ──────────────────────────────────────────────────────────


def assemble_symbol(record, warnings: list) -> Symbol:
    name = record.name
    meta = record.metadata
    symbol = Symbol(
        name=name,
        prefix=meta.get("prefix") or "U",
        package=meta.get("package", ""),
        datasheet=meta.get("datasheet", ""),
        lcsc_id=meta.get("lcsc_id", ""),
        manufacturer=meta.get("manufacturer", ""),
        manufacturer_part=meta.get("manufacturer_part", ""),
        part_class=meta.get("part_class", ""),
    )
    for index, item in decode_shapes(record.shapes, name, warnings):
        if isinstance(item, Primitive) and item.kind == PrimitiveKind.PIN:
            if item.number in symbol.pins:
                raise NumberingCollision(
                    f"pin number '{item.number}' used twice", entity=name, index=index)
            symbol.pins[item.number] = item
        elif isinstance(item, Primitive) and item.kind in SYMBOL_GRAPHIC_KINDS:
            symbol.graphics.append(item)
        else:
            _drop_unmappable(item, EntityKind.SYMBOL, index, name, warnings)

    symbol.bbox = compute_bbox(list(symbol.pins.values()) + symbol.graphics)

    # Anchor: head x/y, else the centre of the pin cluster
    origin = _head_origin(record.head)
    if origin is None:
        pin_box = BoundingBox()
        for pin in symbol.pins.values():
            pin_box.include(pin.position.x, pin.position.y)
        box = pin_box if not pin_box.is_empty() else symbol.bbox
        origin = box.center if not box.is_empty() else Point()
    symbol.origin = origin

    log.info("Symbol %s: %d pins, %d graphics", name, len(symbol.pins), len(symbol.graphics))
    return symbol


# ── Footprints ───────────────────────────────────────────────────────


def _add_pad(footprint: Footprint, pad: Pad, index: int, seen: set):
    if pad.number:
        if pad.number in seen:
            raise NumberingCollision(
                f"pad number '{pad.number}' used twice", entity=footprint.name, index=index)
        seen.add(pad.number)
    if not pad.layer_set:
        pad.layer_set = pad_layer_set(pad.layer)
    if not pad.layer_set:
        raise UnsupportedPrimitive(
            f"pad on layer {pad.layer} is neither copper nor multi-layer",
            entity=footprint.name, index=index, structural=True)
    footprint.pads.append(pad)
    footprint.layers.update(pad.layer_set)


def _fill_footprint(footprint: Footprint, decoded: list, warnings: list):
    """Sort decoded items into pads, graphics and the 3D model."""
    seen = set()
    for index, item in decoded:
        if isinstance(item, Model3D):
            if footprint.model is None:
                footprint.model = item
            else:
                _warn(warnings, UnsupportedPrimitive(
                    "second 3D model ignored", entity=footprint.name, index=index),
                    footprint.name)
            continue
        if not isinstance(item, Primitive):
            _drop_unmappable(item, EntityKind.FOOTPRINT, index, footprint.name, warnings)
            continue

        kind = item.kind
        if kind == PrimitiveKind.PAD:
            _add_pad(footprint, item, index, seen)
        elif kind == PrimitiveKind.HOLE:
            _add_pad(footprint, _hole_pad(item), index, seen)
        elif kind == PrimitiveKind.TRACK or kind in FOOTPRINT_GRAPHIC_KINDS:
            item = _route_drawn(item, EntityKind.FOOTPRINT, index, footprint.name, warnings)
            if item is not None:
                footprint.graphics.append(_as_polyline(item) if kind == PrimitiveKind.TRACK
                                          else item)
                footprint.layers.add(item.layer)
        else:
            _drop_unmappable(item, EntityKind.FOOTPRINT, index, footprint.name, warnings)

    footprint.smd = all(p.is_smd for p in footprint.pads)
    footprint.bbox = compute_bbox(footprint.pads + footprint.graphics)


def assemble_footprint(record, warnings: list) -> Footprint:
    name = record.name
    footprint = Footprint(name=name, description=record.metadata.get("description", ""))
    _fill_footprint(footprint, decode_shapes(record.shapes, name, warnings), warnings)
    footprint.origin = _head_origin(record.head) or Point()
    log.info("Footprint %s: %d pads, %d graphics%s", name, len(footprint.pads),
             len(footprint.graphics), ", 3D model" if footprint.model else "")
    return footprint


# ── Boards ───────────────────────────────────────────────────────────


def _canvas_origin(canvas: str):
    fields = canvas.split("~") if canvas else []
    if len(fields) > CANVAS_ORIGIN_Y:
        x = parse_float(fields[CANVAS_ORIGIN_X], None)
        y = parse_float(fields[CANVAS_ORIGIN_Y], None)
        if x is not None and y is not None:
            return Point(x, y)
    return None


def _is_mirrored(footprint: Footprint) -> bool:
    """A placed footprint is on the bottom when its copper (or silk) lives there."""
    copper = {p.layer for p in footprint.pads if p.layer in (TOP_COPPER, BOTTOM_COPPER)}
    if copper:
        return copper == {BOTTOM_COPPER}
    silk = {g.layer for g in footprint.graphics if g.layer in (TOP_SILK, BOTTOM_SILK)}
    return silk == {BOTTOM_SILK}


def _place_footprint(raw: RawPlacement, board_name: str, index: int,
                     warnings: list) -> PlacedFootprint:
    name = raw.attrs.get("package") or f"Placed_{raw.uid or index}"
    entity = f"{board_name}/{name}"
    footprint = Footprint(name=name, origin=Point(raw.x, raw.y))
    decoded = decode_shapes(raw.shapes, entity, warnings)

    reference = value = ""
    for _, item in decoded:
        if isinstance(item, Primitive) and item.kind == PrimitiveKind.TEXT:
            if item.text_type == "N" and not reference:
                reference = item.text
            elif item.text_type == "P" and not value:
                value = item.text
    try:
        _fill_footprint(footprint, decoded, warnings)
    except ConversionError as e:
        raise e.with_context(board_name, index)

    return PlacedFootprint(
        footprint=footprint,
        reference=reference,
        value=value or name,
        position=Point(raw.x, raw.y),
        rotation=raw.rotation,
        mirrored=_is_mirrored(footprint),
        uid=raw.uid,
    )


def _free_pad(pad: Pad, index: int) -> PlacedFootprint:
    """KiCad boards cannot hold a bare pad; give it a one-pad footprint."""
    footprint = Footprint(name=f"FreePad_{pad.uid or index}",
                          origin=Point(pad.position.x, pad.position.y))
    if not pad.layer_set:
        pad.layer_set = pad_layer_set(pad.layer)
    footprint.pads.append(pad)
    footprint.layers.update(pad.layer_set)
    footprint.smd = pad.is_smd
    footprint.bbox = compute_bbox(footprint.pads)
    return PlacedFootprint(footprint=footprint, value=footprint.name,
                           position=Point(pad.position.x, pad.position.y),
                           mirrored=pad.layer == BOTTOM_COPPER, uid=pad.uid)


def _collect_nets(board: Board) -> list:
    names = set()
    for item in board.tracks + board.vias + board.zones:
        names.add(item.net)
    for placed in board.footprints:
        for pad in placed.footprint.pads:
            names.add(pad.net)
    names.discard("")
    return [""] + sorted(names)


def assemble_board(record, warnings: list) -> Board:
    name = record.name
    board = Board(name=name)

    layers = [parse_layer_string(s) for s in record.layers if isinstance(s, str)]
    board.layers = [layer for layer in layers if layer is not None] or default_board_layers()

    for index, item in decode_shapes(record.shapes, name, warnings):
        if isinstance(item, RawPlacement):
            board.footprints.append(_place_footprint(item, name, index, warnings))
            continue
        if not isinstance(item, Primitive):
            _drop_unmappable(item, EntityKind.BOARD, index, name, warnings)
            continue

        kind = item.kind
        if kind == PrimitiveKind.TRACK or kind in FOOTPRINT_GRAPHIC_KINDS:
            item = _route_drawn(item, EntityKind.BOARD, index, name, warnings)
            if item is None:
                continue
        if kind == PrimitiveKind.TRACK:
            if is_copper(item.layer):
                board.tracks.append(item)
            else:
                board.graphics.append(_as_polyline(item))
        elif kind == PrimitiveKind.VIA:
            board.vias.append(item)
        elif kind == PrimitiveKind.HOLE:
            board.holes.append(item)
        elif kind == PrimitiveKind.PAD:
            board.footprints.append(_free_pad(item, index))
        elif kind == PrimitiveKind.SOLID_REGION:
            # Copper fills and cutouts become zones; cutouts are encoded as keepouts
            if is_copper(item.layer) and item.region_type in ("zone", "solid", "cutout"):
                board.zones.append(item)
            else:
                board.graphics.append(item)
        elif kind in SYMBOL_GRAPHIC_KINDS:
            board.graphics.append(item)
        else:
            _drop_unmappable(item, EntityKind.BOARD, index, name, warnings)

    board.nets = _collect_nets(board)
    board.origin = (_canvas_origin(record.canvas) or _head_origin(record.head) or Point())

    extents = board.tracks + board.vias + board.zones + board.graphics + board.holes
    for placed in board.footprints:
        extents.extend(placed.footprint.pads)
        extents.extend(placed.footprint.graphics)
    board.bbox = compute_bbox(extents)

    log.info("Board %s: %d footprints, %d tracks, %d vias, %d zones, %d nets",
             name, len(board.footprints), len(board.tracks), len(board.vias),
             len(board.zones), len(board.nets) - 1)
    return board


_ASSEMBLERS = {
    EntityKind.SYMBOL: assemble_symbol,
    EntityKind.FOOTPRINT: assemble_footprint,
    EntityKind.BOARD: assemble_board,
}


def assemble(record, warnings: list):
    """Build the entity described by an EntityRecord."""
    return _ASSEMBLERS[record.kind](record, warnings)
