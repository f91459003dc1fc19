"""KiCad S-expression encoder.

Renders a normalized Symbol, Footprint or Board into KiCad's text grammar
for one FormatVersion.  The encoder never mutates the entity.  Primitives
that have no KiCad item for the entity kind raise UnsupportedPrimitive:
decorative ones are dropped and recorded as warnings, structural ones (pins,
pads) fail the entity.
"""

import logging
from typing import Optional

from .cad_model import (
    Board, Footprint, Pad, PadShape, PlacedFootprint, PrimitiveKind, Symbol, Text,
)
from .config import ConversionConfig
from .errors import ConversionWarning, UnsupportedPrimitive
from .layers import (
    LAYER_TABLE, MULTI_LAYER, TOP_ASSEMBLY, TOP_SILK, flip_layer, is_bottom,
    kicad_layer_name, pad_layer_names,
)
from .utils import (
    arc_points_from_bulge, bulge_to_mid, fmt, make_uuid, normalize_angle,
    rotate_point, safe_name,
)

log = logging.getLogger(__name__)

# Non-copper layers every board declares (KiCad ids 32-49)
BOARD_USER_LAYERS = [
    (32, "B.Adhes", "B.Adhesive"),
    (33, "F.Adhes", "F.Adhesive"),
    (34, "B.Paste", ""),
    (35, "F.Paste", ""),
    (36, "B.SilkS", "B.Silkscreen"),
    (37, "F.SilkS", "F.Silkscreen"),
    (38, "B.Mask", ""),
    (39, "F.Mask", ""),
    (40, "Dwgs.User", "User.Drawings"),
    (41, "Cmts.User", "User.Comments"),
    (42, "Eco1.User", "User.Eco1"),
    (43, "Eco2.User", "User.Eco2"),
    (44, "Edge.Cuts", ""),
    (45, "Margin", ""),
    (46, "B.CrtYd", "B.Courtyard"),
    (47, "F.CrtYd", "F.Courtyard"),
    (48, "B.Fab", ""),
    (49, "F.Fab", ""),
]

_PAD_SHAPES = {
    PadShape.CIRCLE: "circle",
    PadShape.RECT: "rect",
    PadShape.ROUNDRECT: "roundrect",
    PadShape.OVAL: "oval",
    PadShape.POLYGON: "custom",
}

_JUSTIFY = {"start": "left", "end": "right"}


def quote(s: str) -> str:
    """Quote a string for an S-expression."""
    s = str(s).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{s}"'


def kicad_pin_name(name: str) -> str:
    """EasyEDA marks an active-low name with a leading ``~``; KiCad overbars ``~{...}``."""
    if name.startswith("~") and len(name) > 1 and not name.startswith("~{"):
        return "~{" + name[1:] + "}"
    return name or "~"


def generator_clauses(config: ConversionConfig) -> list:
    """Generator clauses of a file header; KiCad 8 quotes the name and adds a version."""
    fv = config.format_version
    if fv.generator_version:
        return [f"(generator {quote(config.generator)})",
                f"(generator_version {quote(fv.generator_version)})"]
    return [f"(generator {config.generator})"]


def _segments(vertices: list, closed: bool):
    """Yield (start, end, bulge) for each segment of a vertex chain."""
    count = len(vertices) if closed else len(vertices) - 1
    for i in range(count):
        a = vertices[i]
        b = vertices[(i + 1) % len(vertices)]
        yield a, b, a.bulge


def _has_bulge(vertices: list, closed: bool) -> bool:
    return any(abs(bulge) > 1e-12 for _, _, bulge in _segments(vertices, closed))


class KicadEncoder:
    """Encoder for one entity; item uuids are derived from the entity name."""

    def __init__(self, config: ConversionConfig, warnings: Optional[list] = None,
                 entity: str = ""):
        self.config = config
        self.fv = config.format_version
        self.warnings = warnings if warnings is not None else []
        self.entity = entity
        self._counter = 0

    # ── Formatting helpers ───────────────────────────────────────────

    def n(self, value: float) -> str:
        return fmt(value, self.config.precision)

    def xy(self, x: float, y: float) -> str:
        return f"{self.n(x)} {self.n(y)}"

    def lib_id(self, name: str) -> str:
        """``library:item`` with both parts reduced to the names written on disk."""
        return f"{safe_name(self.config.library_name)}:{safe_name(name)}"

    def _uuid(self, kind: str) -> str:
        self._counter += 1
        u = make_uuid(self.entity, kind, self._counter)
        return f'(uuid "{u}")' if self.fv.uses_uuid else f"(tstamp {u})"

    def _hide(self) -> str:
        return "(hide yes)" if self.fv.hide_as_clause else "hide"

    def _generator(self, indent: str) -> list:
        return [indent + clause for clause in generator_clauses(self.config)]

    def _font(self, size: float, thickness: Optional[float] = None) -> str:
        size = size if size > 0 else self.config.default_text_size_mm
        s = self.n(size)
        if thickness is None:
            return f"(font (size {s} {s}))"
        return f"(font (size {s} {s}) (thickness {self.n(thickness)}))"

    def _layer(self, layer_id: int) -> str:
        try:
            return kicad_layer_name(layer_id)
        except KeyError:
            raise UnsupportedPrimitive(f"layer {layer_id} has no KiCad equivalent",
                                       entity=self.entity)

    def _tail(self, width: float, layer: str, fill: Optional[bool] = None) -> str:
        """Stroke, fill, layer and uuid clauses in the order the version expects."""
        fill_clause = ""
        if fill is not None:
            fill_clause = " (fill solid)" if fill else " (fill none)"
        uid = self._uuid("item")
        if self.fv.graphic_stroke:
            return (f"(stroke (width {self.n(width)}) (type solid)){fill_clause}"
                    f' (layer "{layer}") {uid}')
        return f'(layer "{layer}") (width {self.n(width)}){fill_clause} {uid}'

    def _warn(self, err: UnsupportedPrimitive):
        warning = ConversionWarning.from_error(err, self.entity)
        self.warnings.append(warning)
        log.warning("%s", warning)

    def _guarded(self, render, item, *args) -> list:
        """Render an item, dropping it with a warning when it is decorative."""
        try:
            return render(item, *args)
        except UnsupportedPrimitive as e:
            e.with_context(self.entity)
            if e.structural or item.kind in (PrimitiveKind.PIN, PrimitiveKind.PAD):
                e.structural = True
                raise
            self._warn(e)
            return []

    # ── Symbols ──────────────────────────────────────────────────────

    def _sym_stroke(self, width: float) -> str:
        return f"(stroke (width {self.n(width)}) (type default))"

    def _sym_fill(self, filled: bool) -> str:
        return "(fill (type background))" if filled else "(fill (type none))"

    def _sym_pts(self, points) -> str:
        return " ".join(f"(xy {self.xy(x, y)})" for x, y in points)

    def _sym_chain(self, vertices: list, closed: bool, width: float, filled: bool) -> list:
        """Polyline items, with bulged segments split out as arcs."""
        if not _has_bulge(vertices, closed):
            pts = [(v.x, v.y) for v in vertices]
            if closed:
                pts.append(pts[0])
            return [f"(polyline (pts {self._sym_pts(pts)}) {self._sym_stroke(width)} "
                    f"{self._sym_fill(filled)})"]
        items = []
        run = []
        for a, b, bulge in _segments(vertices, closed):
            if abs(bulge) > 1e-12:
                if len(run) > 1:
                    items.append(f"(polyline (pts {self._sym_pts(run)}) "
                                 f"{self._sym_stroke(width)} {self._sym_fill(False)})")
                run = []
                mx, my = bulge_to_mid(a.x, a.y, b.x, b.y, bulge)
                items.append(f"(arc (start {self.xy(a.x, a.y)}) (mid {self.xy(mx, my)}) "
                             f"(end {self.xy(b.x, b.y)}) {self._sym_stroke(width)} "
                             f"{self._sym_fill(False)})")
            else:
                if not run:
                    run.append((a.x, a.y))
                run.append((b.x, b.y))
        if len(run) > 1:
            items.append(f"(polyline (pts {self._sym_pts(run)}) "
                         f"{self._sym_stroke(width)} {self._sym_fill(False)})")
        return items

    def _sym_graphic(self, g) -> list:
        kind = g.kind
        w = g.stroke_width
        if kind == PrimitiveKind.LINE:
            return [f"(polyline (pts {self._sym_pts([(g.start.x, g.start.y), (g.end.x, g.end.y)])}) "
                    f"{self._sym_stroke(w)} {self._sym_fill(False)})"]
        if kind == PrimitiveKind.ARC:
            m = g.mid
            return [f"(arc (start {self.xy(g.start.x, g.start.y)}) (mid {self.xy(m.x, m.y)}) "
                    f"(end {self.xy(g.end.x, g.end.y)}) {self._sym_stroke(w)} "
                    f"{self._sym_fill(g.fill)})"]
        if kind == PrimitiveKind.CIRCLE:
            return [f"(circle (center {self.xy(g.center.x, g.center.y)}) (radius {self.n(g.radius)}) "
                    f"{self._sym_stroke(w)} {self._sym_fill(g.fill)})"]
        if kind == PrimitiveKind.RECTANGLE:
            if g.corner_radius > 0:
                return self._sym_chain(g.outline(), True, w, g.fill)
            return [f"(rectangle (start {self.xy(g.x, g.y)}) "
                    f"(end {self.xy(g.x + g.width, g.y + g.height)}) "
                    f"{self._sym_stroke(w)} {self._sym_fill(g.fill)})"]
        if kind in (PrimitiveKind.POLYLINE, PrimitiveKind.POLYGON):
            closed = kind == PrimitiveKind.POLYGON
            return self._sym_chain(g.vertices, closed, w, g.fill and closed)
        if kind == PrimitiveKind.TEXT:
            return [self._sym_text(g)]
        if kind == PrimitiveKind.ELLIPSE:
            raise UnsupportedPrimitive("ellipse with unequal radii has no KiCad equivalent")
        raise UnsupportedPrimitive(f"{kind.name} has no KiCad symbol item")

    def _sym_text(self, t: Text) -> str:
        # Symbol text only reads horizontally or vertically; angle in tenths
        a = normalize_angle(t.rotation) % 180
        angle = 900 if 45 <= a < 135 else 0
        justify = _JUSTIFY.get(t.anchor)
        effects = self._font(t.size)
        if justify:
            effects += f" (justify {justify})"
        if not t.visible:
            effects += f" {self._hide()}"
        return f"(text {quote(t.text)} (at {self.xy(t.x, t.y)} {angle}) (effects {effects}))"

    def _pin(self, pin) -> list:
        if pin.inverted and pin.clock:
            style = "inverted_clock"
        elif pin.inverted:
            style = "inverted"
        elif pin.clock:
            style = "clock"
        else:
            style = "line"
        rotation = int(round(normalize_angle(pin.rotation) / 90.0)) * 90 % 360
        name_size = pin.name_size or self.config.default_text_size_mm
        number_size = pin.number_size or self.config.default_text_size_mm
        return [
            f"(pin {pin.pin_type.value} {style} (at {self.xy(pin.position.x, pin.position.y)} {rotation})"
            f" (length {self.n(pin.length)})",
            f"  (name {quote(kicad_pin_name(pin.name))} (effects {self._font(name_size)}))",
            f"  (number {quote(pin.number)} (effects {self._font(number_size)}))",
            ")",
        ]

    def _property(self, key: str, value: str, prop_id: int, x: float, y: float,
                  hidden: bool = False) -> str:
        id_clause = f" (id {prop_id})" if self.fv.property_ids else ""
        effects = self._font(self.config.default_text_size_mm)
        if hidden:
            effects += f" {self._hide()}"
        return (f"(property {quote(key)} {quote(value)}{id_clause} "
                f"(at {self.xy(x, y)} 0) (effects {effects}))")

    def encode_symbol(self, symbol: Symbol) -> str:
        """Render one ``(symbol ...)`` entry of a symbol library."""
        self.entity = self.entity or symbol.name
        bbox = symbol.bbox
        top = bbox.max_y if bbox and not bbox.is_empty() else 0.0
        bottom = bbox.min_y if bbox and not bbox.is_empty() else 0.0
        pins = [symbol.pins[k] for k in sorted(symbol.pins, key=_pin_sort_key)]

        lines = [f"(symbol {quote(symbol.name)}"]
        flags = []
        if pins and not any(p.show_name for p in pins):
            flags.append(self._hide())
        lines.append(f"  (pin_names (offset 1.016){''.join(' ' + f for f in flags)})")
        if pins and not any(p.show_number for p in pins):
            lines.append(f"  (pin_numbers {self._hide()})")
        if self.fv.name == "8":
            lines.append("  (exclude_from_sim no)")
        lines.append("  (in_bom yes)")
        lines.append("  (on_board yes)")

        footprint = self.lib_id(symbol.package) if symbol.package else ""
        props = [
            ("Reference", symbol.prefix, 0, top + 2.54, False),
            ("Value", symbol.name, 0, bottom - 2.54, False),
            ("Footprint", footprint, 0, 0.0, True),
            ("Datasheet", symbol.datasheet, 0, 0.0, True),
        ]
        if symbol.lcsc_id:
            props.append(("LCSC Part", symbol.lcsc_id, 0, 0.0, True))
        if symbol.manufacturer:
            props.append(("Manufacturer", symbol.manufacturer, 0, 0.0, True))
        if symbol.manufacturer_part:
            props.append(("MPN", symbol.manufacturer_part, 0, 0.0, True))
        if symbol.part_class:
            extended = "true" if symbol.part_class == "Extended Part" else "false"
            props.append(("Extended", extended, 0, 0.0, True))
        for prop_id, (key, value, x, y, hidden) in enumerate(props):
            lines.append("  " + self._property(key, value, prop_id, x, y, hidden))

        lines.append(f"  (symbol {quote(symbol.name + '_0_1')}")
        for g in symbol.graphics:
            for item in self._guarded(self._sym_graphic, g):
                lines.append(f"    {item}")
        lines.append("  )")

        lines.append(f"  (symbol {quote(symbol.name + '_1_1')}")
        for pin in pins:
            for item in self._guarded(self._pin, pin):
                lines.append(f"    {item}")
        lines.append("  )")
        lines.append(")")
        return "\n".join(lines)

    # ── Footprint items ──────────────────────────────────────────────

    def _chain_items(self, prefix: str, vertices: list, closed: bool, width: float,
                     layer: str) -> list:
        """Individual line/arc items for a vertex chain."""
        items = []
        for a, b, bulge in _segments(vertices, closed):
            if abs(bulge) > 1e-12:
                mx, my = bulge_to_mid(a.x, a.y, b.x, b.y, bulge)
                items.append(f"({prefix}_arc (start {self.xy(a.x, a.y)}) (mid {self.xy(mx, my)}) "
                             f"(end {self.xy(b.x, b.y)}) {self._tail(width, layer)})")
            else:
                items.append(f"({prefix}_line (start {self.xy(a.x, a.y)}) "
                             f"(end {self.xy(b.x, b.y)}) {self._tail(width, layer)})")
        return items

    def _poly_pts(self, vertices: list, arcs: bool) -> str:
        """``pts`` body of a closed outline; bulged segments as arc items when allowed."""
        items = []
        prev_arc = False
        for a, b, bulge in _segments(vertices, True):
            if arcs and abs(bulge) > 1e-12:
                mx, my = bulge_to_mid(a.x, a.y, b.x, b.y, bulge)
                items.append(f"(arc (start {self.xy(a.x, a.y)}) (mid {self.xy(mx, my)}) "
                             f"(end {self.xy(b.x, b.y)}))")
                prev_arc = True
            elif abs(bulge) > 1e-12:
                pts = arc_points_from_bulge(a.x, a.y, b.x, b.y, bulge)
                items.extend(f"(xy {self.xy(x, y)})" for x, y in pts[:-1])
                prev_arc = False
            else:
                if not prev_arc:
                    items.append(f"(xy {self.xy(a.x, a.y)})")
                prev_arc = False
        # The first point is already the end of a closing arc
        if prev_arc and items and items[0].startswith("(xy"):
            items.pop(0)
        return " ".join(items)

    def _poly(self, prefix: str, vertices: list, width: float, layer: str, fill: bool) -> list:
        if _has_bulge(vertices, True) and not self.fv.poly_arcs and not fill:
            return self._chain_items(prefix, vertices, True, width, layer)
        pts = self._poly_pts(vertices, self.fv.poly_arcs)
        return [f"({prefix}_poly (pts {pts}) {self._tail(width, layer, fill)})"]

    def _text_item(self, prefix: str, t: Text, kind: str = "user", text: str = None) -> str:
        layer = self._layer(t.layer)
        effects = self._font(t.size, t.stroke_width or self.config.default_stroke_mm)
        mirror = t.mirror or is_bottom(t.layer)
        if mirror:
            effects += " (justify mirror)"
        hide = "" if t.visible else f" {self._hide()}"
        rot = f" {self.n(t.rotation)}" if t.rotation else ""
        body = quote(t.text if text is None else text)
        head = f"({prefix}_text {kind} {body}" if prefix == "fp" else f"(gr_text {body}"
        return (f"{head} (at {self.xy(t.x, t.y)}{rot}) (layer \"{layer}\"){hide} "
                f"{self._uuid('text')} (effects {effects}))")

    def _graphic(self, g, prefix: str) -> list:
        kind = g.kind
        layer = self._layer(g.layer)
        filled = g.fill
        w = g.stroke_width if g.stroke_width > 0 or filled else self.config.default_stroke_mm
        if kind == PrimitiveKind.LINE:
            return [f"({prefix}_line (start {self.xy(g.start.x, g.start.y)}) "
                    f"(end {self.xy(g.end.x, g.end.y)}) {self._tail(w, layer)})"]
        if kind == PrimitiveKind.ARC:
            m = g.mid
            return [f"({prefix}_arc (start {self.xy(g.start.x, g.start.y)}) (mid {self.xy(m.x, m.y)}) "
                    f"(end {self.xy(g.end.x, g.end.y)}) {self._tail(w, layer)})"]
        if kind == PrimitiveKind.CIRCLE:
            c = g.center
            return [f"({prefix}_circle (center {self.xy(c.x, c.y)}) (end {self.xy(c.x + g.radius, c.y)}) "
                    f"{self._tail(w, layer, filled)})"]
        if kind == PrimitiveKind.RECTANGLE:
            if g.corner_radius > 0:
                return self._poly(prefix, g.outline(), w, layer, filled)
            return [f"({prefix}_rect (start {self.xy(g.x, g.y)}) "
                    f"(end {self.xy(g.x + g.width, g.y + g.height)}) {self._tail(w, layer, filled)})"]
        if kind == PrimitiveKind.POLYLINE or kind == PrimitiveKind.TRACK:
            return self._chain_items(prefix, g.vertices, False, w, layer)
        if kind in (PrimitiveKind.POLYGON, PrimitiveKind.SOLID_REGION):
            return self._poly(prefix, g.vertices, w, layer, filled)
        if kind == PrimitiveKind.TEXT:
            return [self._text_item(prefix, g)]
        if kind == PrimitiveKind.ELLIPSE:
            raise UnsupportedPrimitive("ellipse with unequal radii has no KiCad equivalent")
        raise UnsupportedPrimitive(f"{kind.name} has no KiCad {prefix}_ item")

    def _pad(self, pad: Pad, board: Optional[Board] = None, frame_rotation: float = 0.0) -> list:
        if pad.drill > 0:
            pad_type = "thru_hole" if pad.plated else "np_thru_hole"
        else:
            pad_type = "smd"
        shape = _PAD_SHAPES[pad.shape]
        p = pad.position
        rot = f" {self.n(pad.rotation)}" if pad.rotation else ""
        if pad.shape == PadShape.CIRCLE:
            size = f"{self.n(pad.size_x)} {self.n(pad.size_x)}"
        elif pad.shape == PadShape.POLYGON:
            # Anchor pad; the copper is the primitive polygon
            anchor = min(pad.size_x, pad.size_y) / 2 if pad.size_x > 0 and pad.size_y > 0 else 0.1
            size = f"{self.n(anchor)} {self.n(anchor)}"
        else:
            size = f"{self.n(pad.size_x)} {self.n(pad.size_y)}"

        parts = [f"(pad {quote(pad.number)} {pad_type} {shape} (at {self.xy(p.x, p.y)}{rot}) (size {size})"]
        if pad.drill > 0:
            if pad.slot_length > pad.drill:
                if pad.size_x >= pad.size_y:
                    parts.append(f"(drill oval {self.n(pad.slot_length)} {self.n(pad.drill)})")
                else:
                    parts.append(f"(drill oval {self.n(pad.drill)} {self.n(pad.slot_length)})")
            else:
                parts.append(f"(drill {self.n(pad.drill)})")
        if pad_type == "np_thru_hole" or MULTI_LAYER in pad.layer_set:
            layers = ["*.Cu", "*.Mask"]
        else:
            layers = pad_layer_names(pad.layer_set)
        parts.append("(layers " + " ".join(quote(n) for n in layers) + ")")
        if pad.shape == PadShape.ROUNDRECT:
            parts.append(f"(roundrect_rratio {self.n(pad.roundrect_ratio)})")
        if board is not None and pad.net:
            idx = board.net_index(pad.net)
            if idx:
                parts.append(f"(net {idx} {quote(pad.net)})")
        if pad.shape == PadShape.POLYGON:
            # Primitives live in the pad frame: relative to the pad, unrotated
            local = [rotate_point(q.x - p.x, q.y - p.y, pad.rotation - frame_rotation)
                     for q in pad.outline]
            pts = " ".join(f"(xy {self.xy(x, y)})" for x, y in local)
            parts.append("(options (clearance outline) (anchor circle))")
            parts.append(f"(primitives (gr_poly (pts {pts}) (width 0) (fill yes)))")
        parts.append(self._uuid("pad") + ")")
        return [" ".join(parts)]

    def _model(self, model) -> list:
        path = f"{self.config.model_dir}/{model.name}.step"
        ox, oy, oz = model.offset
        rx, ry, rz = model.rotation
        sx, sy, sz = model.scale
        return [
            f"(model {quote(path)}",
            f"  (offset (xyz {self.n(ox)} {self.n(oy)} {self.n(oz)}))",
            f"  (scale (xyz {self.n(sx)} {self.n(sy)} {self.n(sz)}))",
            f"  (rotate (xyz {self.n(rx)} {self.n(ry)} {self.n(rz)}))",
            ")",
        ]

    def _ref_value(self, footprint: Footprint, reference: str, value: str,
                   mirrored: bool) -> list:
        """Reference and value fields, placed where the source put them."""
        sources = {}
        for g in footprint.graphics:
            if g.kind == PrimitiveKind.TEXT and g.text_type in ("N", "P"):
                sources.setdefault(g.text_type, g)
        bbox = footprint.bbox
        has_bbox = bbox is not None and not bbox.is_empty()
        top = bbox.min_y - 1.0 if has_bbox else -1.0
        bottom = bbox.max_y + 1.0 if has_bbox else 1.0
        lines = []
        for key, kind, text, layer, y in (("N", "reference", reference, TOP_SILK, top),
                                          ("P", "value", value, TOP_ASSEMBLY, bottom)):
            t = sources.get(key)
            if t is None:
                t = Text(y=y, size=1.0, stroke_width=0.15,
                         layer=flip_layer(layer) if mirrored else layer)
            if self.fv.footprint_properties:
                effects = self._font(t.size, t.stroke_width or 0.15)
                if t.mirror or is_bottom(t.layer):
                    effects += " (justify mirror)"
                hide = "" if t.visible else f" {self._hide()}"
                lines.append(f"(property {quote(kind.capitalize())} {quote(text)} "
                             f"(at {self.xy(t.x, t.y)} {self.n(t.rotation)}) "
                             f"(layer \"{self._layer(t.layer)}\"){hide} "
                             f"{self._uuid('property')} (effects {effects}))")
            else:
                lines.append(self._text_item("fp", t, kind=kind, text=text))
        return lines

    def encode_footprint(self, footprint: Footprint, placed: Optional[PlacedFootprint] = None,
                         board: Optional[Board] = None) -> str:
        """Render a ``(footprint ...)``: a library module, or a placement on a board."""
        self.entity = self.entity or footprint.name
        fv = self.fv
        lines = []
        if placed is None:
            lines.append(f"(footprint {quote(safe_name(footprint.name))}")
            lines.append(f"  (version {fv.footprint_version})")
            lines.extend(self._generator("  "))
            lines.append('  (layer "F.Cu")')
            reference, value, mirrored, frame_rotation = "REF**", footprint.name, False, 0.0
        else:
            lines.append(f"(footprint {quote(self.lib_id(footprint.name))}")
            lines.append(f'  (layer "{"B.Cu" if placed.mirrored else "F.Cu"}")')
            lines.append(f"  {self._uuid('footprint')}")
            rot = f" {self.n(placed.rotation)}" if placed.rotation else ""
            lines.append(f"  (at {self.xy(placed.position.x, placed.position.y)}{rot})")
            reference, value = placed.reference, placed.value
            mirrored, frame_rotation = placed.mirrored, placed.rotation
        if footprint.description:
            lines.append(f"  (descr {quote(footprint.description)})")

        if not footprint.pads:
            attr = "board_only"
        else:
            attr = "smd" if footprint.smd else "through_hole"
        ref_value = self._ref_value(footprint, reference, value, mirrored)
        if fv.footprint_properties:
            lines.extend(f"  {item}" for item in ref_value)
            lines.append(f"  (attr {attr})")
        else:
            lines.append(f"  (attr {attr})")
            lines.extend(f"  {item}" for item in ref_value)

        # Graphics first, then pads, then the model: the order KiCad writes
        ref_texts = set()
        for g in footprint.graphics:
            if g.kind == PrimitiveKind.TEXT and g.text_type in ("N", "P") \
                    and g.text_type not in ref_texts:
                ref_texts.add(g.text_type)
                continue
            for item in self._guarded(self._graphic, g, "fp"):
                lines.append(f"  {item}")
        for pad in footprint.pads:
            for item in self._guarded(self._pad, pad, board, frame_rotation):
                lines.append(f"  {item}")
        if footprint.model is not None:
            lines.extend(f"  {item}" for item in self._model(footprint.model))
        lines.append(")")
        return "\n".join(lines)

    # ── Boards ───────────────────────────────────────────────────────

    def _board_layers(self, board: Board) -> list:
        copper = {0: "F.Cu", 31: "B.Cu"}
        for layer in board.layers:
            info = LAYER_TABLE.get(layer.id)
            if info is not None and info.kicad_name.endswith(".Cu"):
                copper[info.kicad_id] = info.kicad_name
        lines = ["  (layers"]
        for kid in sorted(copper):
            lines.append(f"    ({kid} {quote(copper[kid])} signal)")
        for kid, name, user_name in BOARD_USER_LAYERS:
            suffix = f" {quote(user_name)}" if user_name else ""
            lines.append(f"    ({kid} {quote(name)} user{suffix})")
        lines.append("  )")
        return lines

    def _track(self, track, board: Board) -> list:
        layer = self._layer(track.layer)
        net = board.net_index(track.net)
        w = self.n(track.stroke_width)
        items = []
        for a, b, bulge in _segments(track.vertices, False):
            if abs(bulge) > 1e-12:
                mx, my = bulge_to_mid(a.x, a.y, b.x, b.y, bulge)
                items.append(f"(arc (start {self.xy(a.x, a.y)}) (mid {self.xy(mx, my)}) "
                             f"(end {self.xy(b.x, b.y)}) (width {w}) (layer \"{layer}\") "
                             f"(net {net}) {self._uuid('arc')})")
            else:
                items.append(f"(segment (start {self.xy(a.x, a.y)}) (end {self.xy(b.x, b.y)}) "
                             f"(width {w}) (layer \"{layer}\") (net {net}) {self._uuid('segment')})")
        return items

    def _via(self, via, board: Board) -> list:
        return [f"(via (at {self.xy(via.center.x, via.center.y)}) (size {self.n(via.diameter)}) "
                f"(drill {self.n(via.drill)}) (layers \"F.Cu\" \"B.Cu\") "
                f"(net {board.net_index(via.net)}) {self._uuid('via')})"]

    def _zone(self, zone, board: Board) -> list:
        layer = self._layer(zone.layer)
        keepout = zone.region_type == "cutout"
        net = 0 if keepout else board.net_index(zone.net)
        pts = []
        for a, b, bulge in _segments(zone.vertices, True):
            if abs(bulge) > 1e-12:
                pts.extend(arc_points_from_bulge(a.x, a.y, b.x, b.y, bulge)[:-1])
            else:
                pts.append((a.x, a.y))
        if keepout:
            clearance = 0.0
        else:
            clearance = zone.clearance if zone.clearance > 0 else 0.5
        filled = zone.fill and not keepout
        fill = "(fill yes (thermal_gap 0.5) (thermal_bridge_width 0.5))" if filled \
            else "(fill (thermal_gap 0.5) (thermal_bridge_width 0.5))"
        lines = [
            f"(zone (net {net}) (net_name {quote(board.nets[net])}) (layer \"{layer}\") "
            f"{self._uuid('zone')} (hatch edge 0.5)",
            f"  (connect_pads (clearance {self.n(clearance)}))",
            "  (min_thickness 0.25)",
        ]
        if keepout:
            lines.append("  (keepout (tracks allowed) (vias allowed) (pads allowed) "
                         "(copperpour not_allowed) (footprints allowed))")
        lines.extend([
            f"  {fill}",
            "  (polygon (pts " + " ".join(f"(xy {self.xy(x, y)})" for x, y in pts) + "))",
            ")",
        ])
        return lines

    def _hole_footprint(self, hole) -> list:
        d = self.n(hole.radius * 2)
        name = self.lib_id(f"MountingHole_{d}mm")
        return [
            f"(footprint {quote(name)} (layer \"F.Cu\") {self._uuid('hole')}",
            f"  (at {self.xy(hole.center.x, hole.center.y)})",
            "  (attr exclude_from_pos_files exclude_from_bom)",
            f'  (pad "" np_thru_hole circle (at 0 0) (size {d} {d}) (drill {d}) '
            f'(layers "*.Cu" "*.Mask") {self._uuid("pad")})',
            ")",
        ]

    def encode_board(self, board: Board) -> str:
        """Render a complete ``(kicad_pcb ...)`` file body."""
        self.entity = self.entity or board.name
        lines = ["(kicad_pcb", f"  (version {self.fv.board_version})"]
        lines.extend(self._generator("  "))
        lines.append("  (general (thickness 1.6))")
        lines.append('  (paper "A4")')
        lines.extend(self._board_layers(board))
        lines.append("  (setup (pad_to_mask_clearance 0))")
        for i, name in enumerate(board.nets):
            lines.append(f"  (net {i} {quote(name)})")

        for placed in board.footprints:
            text = self.encode_footprint(placed.footprint, placed=placed, board=board)
            lines.extend("  " + line for line in text.splitlines())
        for hole in board.holes:
            lines.extend("  " + line for line in self._hole_footprint(hole))
        for g in board.graphics:
            for item in self._guarded(self._graphic, g, "gr"):
                lines.append(f"  {item}")
        for track in board.tracks:
            for item in self._guarded(self._track, track, board):
                lines.append(f"  {item}")
        for via in board.vias:
            for item in self._guarded(self._via, via, board):
                lines.append(f"  {item}")
        for zone in board.zones:
            for item in self._guarded(self._zone, zone, board):
                lines.append(f"  {item}")
        lines.append(")")
        return "\n".join(lines) + "\n"


def _pin_sort_key(number: str):
    """Numeric pin numbers in numeric order, then the rest alphabetically."""
    if number.isdecimal():
        return (0, int(number), "")
    return (1, 0, number)


def encode(entity, config: ConversionConfig, warnings: Optional[list] = None) -> str:
    """Encode a normalized entity with a fresh encoder."""
    encoder = KicadEncoder(config, warnings, entity.name)
    if isinstance(entity, Symbol):
        return encoder.encode_symbol(entity)
    if isinstance(entity, Footprint):
        return encoder.encode_footprint(entity) + "\n"
    if isinstance(entity, Board):
        return encoder.encode_board(entity)
    raise TypeError(f"cannot encode {type(entity).__name__}")
