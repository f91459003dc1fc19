"""
Preview rendering of converted entities with matplotlib.

Draws a normalized Symbol, Footprint or Board to an image file (PNG or SVG,
chosen by suffix) so a converted part can be checked by eye.  Coordinates
are the KiCad millimetre coordinates the encoder writes: symbols are Y-up,
footprints and boards Y-down.
"""

import logging
import math
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
from matplotlib.patches import Polygon as PolygonPatch

from .cad_model import (
    Board, Footprint, PadShape, PrimitiveKind, Rectangle, Symbol,
)
from .layers import kicad_layer_name
from .utils import arc_points_from_bulge, rotate_point

log = logging.getLogger(__name__)

# KiCad layer name -> hex color for rendering
LAYER_COLORS = {
    "F.Cu":     "#CC0000",
    "B.Cu":     "#0000CC",
    "In1.Cu":   "#C2C200",
    "In2.Cu":   "#00C2C2",
    "In3.Cu":   "#C200C2",
    "In4.Cu":   "#008000",
    "F.SilkS":  "#C2C200",
    "B.SilkS":  "#800080",
    "F.Mask":   "#800080",
    "B.Mask":   "#008080",
    "F.Paste":  "#808000",
    "B.Paste":  "#006060",
    "F.Fab":    "#CCCC00",
    "B.Fab":    "#0000AA",
    "F.CrtYd":  "#A0A0A0",
    "B.CrtYd":  "#606060",
    "Edge.Cuts": "#C8C800",
    "Dwgs.User": "#808080",
    "Cmts.User": "#404040",
}

SYMBOL_BODY_COLOR = "#840000"
SYMBOL_PIN_COLOR = "#A00000"
PAD_THT_COLOR = "#C2A200"
DRILL_COLOR = "#1a1a1a"
VIA_COLOR = "#C0C0C0"
BOARD_BACKGROUND = "#001023"


def layer_color(layer_id):
    """Return a hex color for an EasyEDA layer id."""
    try:
        return LAYER_COLORS.get(kicad_layer_name(layer_id), "#808080")
    except KeyError:
        return "#808080"


def _circle_points(cx, cy, r, n=48):
    return [(cx + r * math.cos(2 * math.pi * i / n), cy + r * math.sin(2 * math.pi * i / n))
            for i in range(n + 1)]


def _chain(vertices, closed):
    """Vertex chain as points, bulged segments interpolated."""
    if not vertices:
        return []
    pts = [(vertices[0].x, vertices[0].y)]
    count = len(vertices) if closed else len(vertices) - 1
    for i in range(count):
        a = vertices[i]
        b = vertices[(i + 1) % len(vertices)]
        pts.extend(arc_points_from_bulge(a.x, a.y, b.x, b.y, a.bulge, n=12)[1:])
    return pts


def primitive_points(prim):
    """Outline of a graphic primitive as (x, y) points; empty when not drawable."""
    kind = prim.kind
    if kind == PrimitiveKind.LINE:
        return [(prim.start.x, prim.start.y), (prim.end.x, prim.end.y)]
    if kind == PrimitiveKind.ARC:
        return arc_points_from_bulge(prim.start.x, prim.start.y,
                                     prim.end.x, prim.end.y, prim.bulge, n=24)
    if kind == PrimitiveKind.CIRCLE:
        return _circle_points(prim.center.x, prim.center.y, prim.radius)
    if kind == PrimitiveKind.ELLIPSE:
        c = prim.center
        return [(c.x + prim.rx * math.cos(2 * math.pi * i / 48),
                 c.y + prim.ry * math.sin(2 * math.pi * i / 48)) for i in range(49)]
    if kind == PrimitiveKind.RECTANGLE:
        return _chain(prim.outline(), True)
    if kind in (PrimitiveKind.POLYLINE, PrimitiveKind.TRACK):
        return _chain(prim.vertices, False)
    if kind in (PrimitiveKind.POLYGON, PrimitiveKind.SOLID_REGION):
        return _chain(prim.vertices, True)
    return []


def pad_points(pad, frame_rotation=0.0):
    """Pad copper outline in its own footprint frame.

    Pad angles are absolute on a board, so a placed footprint passes its own
    rotation to take it back out.
    """
    if pad.shape == PadShape.POLYGON and pad.outline:
        return [(p.x, p.y) for p in pad.outline]
    p = pad.position
    if pad.shape == PadShape.CIRCLE:
        return _circle_points(p.x, p.y, pad.size_x / 2)
    w, h = pad.size_x, pad.size_y
    radius = 0.0
    if pad.shape == PadShape.OVAL:
        radius = min(w, h) / 2
    elif pad.shape == PadShape.ROUNDRECT:
        radius = min(w, h) * pad.roundrect_ratio
    outline = _chain(Rectangle(x=-w / 2, y=-h / 2, width=w, height=h,
                               corner_radius=radius).outline(), True)
    # KiCad pad angles turn counter-clockwise on a Y-down screen
    return [(p.x + dx, p.y + dy)
            for dx, dy in (rotate_point(x, y, frame_rotation - pad.rotation)
                           for x, y in outline)]


class _Canvas:
    """Figure plus the mapping from entity coordinates to drawing coordinates."""

    def __init__(self, title, background="white"):
        self.fig = Figure(figsize=(8, 8), facecolor=background)
        FigureCanvasAgg(self.fig)
        self.ax = self.fig.add_subplot(111)
        self.ax.set_facecolor(background)
        self.ax.set_aspect("equal")
        self.ax.set_axis_off()
        self.ax.set_title(title, color="#808080" if background != "white" else "black")

    def line(self, pts, color, width=0.1, zorder=2):
        if len(pts) < 2:
            return
        xs, ys = zip(*pts)
        # Line widths are given in mm; matplotlib wants points
        self.ax.plot(xs, ys, color=color, linewidth=max(0.5, width * 72 / 25.4),
                     solid_capstyle="round", zorder=zorder)

    def fill(self, pts, color, alpha=1.0, zorder=1):
        if len(pts) < 3:
            return
        self.ax.add_patch(PolygonPatch(pts, closed=True, facecolor=color,
                                       edgecolor=color, alpha=alpha, zorder=zorder))

    def text(self, x, y, s, color, rotation=0.0, size=6):
        self.ax.text(x, y, s, color=color, fontsize=size, rotation=rotation,
                     ha="center", va="center", zorder=5)

    def save(self, path, y_down, dpi):
        self.ax.autoscale_view()
        if y_down:
            self.ax.invert_yaxis()
        self.fig.savefig(str(path), dpi=dpi, facecolor=self.fig.get_facecolor())


def _draw_graphic(canvas, g, color, to_board=None):
    if g.kind == PrimitiveKind.TEXT:
        x, y = (g.x, g.y) if to_board is None else to_board(g.x, g.y)
        canvas.text(x, y, g.text, color, rotation=g.rotation)
        return
    pts = primitive_points(g)
    if to_board is not None:
        pts = [to_board(x, y) for x, y in pts]
    if g.fill and g.kind in (PrimitiveKind.POLYGON, PrimitiveKind.SOLID_REGION,
                             PrimitiveKind.RECTANGLE, PrimitiveKind.CIRCLE):
        canvas.fill(pts, color, alpha=0.6)
    else:
        canvas.line(pts, color, g.stroke_width)


def _draw_symbol(canvas, symbol):
    for g in symbol.graphics:
        _draw_graphic(canvas, g, SYMBOL_BODY_COLOR)
    for pin in symbol.pins.values():
        p = pin.position
        a = math.radians(pin.rotation)
        end = (p.x + pin.length * math.cos(a), p.y + pin.length * math.sin(a))
        canvas.line([(p.x, p.y), end], SYMBOL_PIN_COLOR, 0.15)
        canvas.text(p.x, p.y, pin.number, SYMBOL_PIN_COLOR, size=5)
        if pin.show_name and pin.name:
            canvas.text(end[0], end[1], pin.name, SYMBOL_BODY_COLOR, size=5)


def _draw_footprint(canvas, footprint, to_board=None, frame_rotation=0.0):
    for g in footprint.graphics:
        _draw_graphic(canvas, g, layer_color(g.layer), to_board)
    for pad in footprint.pads:
        pts = pad_points(pad, frame_rotation)
        center = (pad.position.x, pad.position.y)
        if to_board is not None:
            pts = [to_board(x, y) for x, y in pts]
            center = to_board(*center)
        color = PAD_THT_COLOR if pad.drill > 0 else layer_color(pad.layer)
        canvas.fill(pts, color, zorder=3)
        if pad.drill > 0:
            canvas.fill(_circle_points(center[0], center[1], pad.drill / 2), DRILL_COLOR, zorder=4)


def _placement_mapping(placed):
    px, py, rot = placed.position.x, placed.position.y, placed.rotation

    def to_board(x, y):
        dx, dy = rotate_point(x, y, -rot)
        return px + dx, py + dy
    return to_board


def _draw_board(canvas, board):
    for zone in board.zones:
        canvas.fill(primitive_points(zone), layer_color(zone.layer), alpha=0.3, zorder=0)
    for g in board.graphics:
        _draw_graphic(canvas, g, layer_color(g.layer))
    for track in board.tracks:
        canvas.line(primitive_points(track), layer_color(track.layer), track.stroke_width)
    for placed in board.footprints:
        _draw_footprint(canvas, placed.footprint, _placement_mapping(placed), placed.rotation)
    for via in board.vias:
        c = via.center
        canvas.fill(_circle_points(c.x, c.y, via.diameter / 2), VIA_COLOR, zorder=4)
        canvas.fill(_circle_points(c.x, c.y, via.drill / 2), DRILL_COLOR, zorder=5)
    for hole in board.holes:
        canvas.fill(_circle_points(hole.center.x, hole.center.y, hole.radius), DRILL_COLOR, zorder=5)


def render_preview(entity, path, dpi=150):
    """Render a normalized entity to ``path``; the suffix picks PNG or SVG."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(entity, Symbol):
        canvas = _Canvas(entity.name)
        _draw_symbol(canvas, entity)
        canvas.save(path, y_down=False, dpi=dpi)
    elif isinstance(entity, Footprint):
        canvas = _Canvas(entity.name, BOARD_BACKGROUND)
        _draw_footprint(canvas, entity)
        canvas.save(path, y_down=True, dpi=dpi)
    elif isinstance(entity, Board):
        canvas = _Canvas(entity.name, BOARD_BACKGROUND)
        _draw_board(canvas, entity)
        canvas.save(path, y_down=True, dpi=dpi)
    else:
        raise TypeError(f"cannot preview {type(entity).__name__}")
    log.info("Preview written to %s", path)
    return path
