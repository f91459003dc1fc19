"""Utility functions for EasyEDA to KiCad conversion.

Handles unit conversion, number formatting, arc geometry, and UUID generation.

Arcs are carried through the pipeline as a *bulge*: the tangent of a quarter
of the signed included angle of a segment.  A positive bulge sweeps from
+X toward +Y of whatever frame the points are expressed in, so the value is
unchanged by uniform scaling and changes sign when one axis is flipped.
"""

import math
import re
import uuid

# Namespace UUID for deterministic UUID generation
_NAMESPACE = uuid.UUID("5c1e0d2a-7b43-4f0e-9a61-ee2c1cad0001")

# Characters not allowed in file and library item names
_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')

# Bulge of a quarter circle (90 degree included angle).
QUARTER_BULGE = math.tan(math.pi / 8)


def make_uuid(*parts) -> str:
    """Generate a deterministic UUID from the item's path within its entity."""
    name = "/".join(str(p) for p in parts) or "ee2kicad"
    return str(uuid.uuid5(_NAMESPACE, name))


def normalize_angle(angle: float) -> float:
    """Fold an angle in degrees into [0, 360)."""
    a = math.fmod(angle, 360.0)
    if a < 0:
        a += 360.0
    # fmod(-1e-17, 360) + 360 rounds to exactly 360
    if a >= 360.0 or abs(a) < 1e-9 or abs(a - 360.0) < 1e-9:
        a = 0.0
    return a


def fmt(value: float, precision: int = 6) -> str:
    """Format a float for KiCad output: fixed decimals, strip trailing zeros."""
    s = f"{value:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s in ("-0", ""):
        s = "0"
    return s


def rotate_point(x: float, y: float, angle_deg: float):
    """Rotate point (x,y) around origin by angle_deg (counter-clockwise)."""
    if abs(angle_deg) < 0.001:
        return x, y
    rad = math.radians(angle_deg)
    cos_a = math.cos(rad)
    sin_a = math.sin(rad)
    return x * cos_a - y * sin_a, x * sin_a + y * cos_a


def parse_float(s: str, default: float = 0.0) -> float:
    """Parse an optional float field, falling back on blank or junk input."""
    try:
        value = float(s)
    except (ValueError, TypeError):
        return default
    return value if math.isfinite(value) else default


# ── Arc geometry ──────────────────────────────────────────────────────


def bulge_from_sweep(sweep_rad: float) -> float:
    return math.tan(sweep_rad / 4.0)


def sweep_from_bulge(bulge: float) -> float:
    """Signed included angle (radians) of a bulged segment."""
    return 4.0 * math.atan(bulge)


def svg_arc_to_bulge(x1: float, y1: float, x2: float, y2: float,
                     radius: float, large_arc: bool, sweep: bool) -> float:
    """Convert an SVG circular arc (endpoint parameterization) to a bulge.

    ``sweep`` is the SVG sweep flag: True means the angle increases from the
    start point, i.e. the arc turns from +X toward +Y.  A radius too small to
    span the chord is scaled up, as SVG prescribes.
    """
    chord = math.hypot(x2 - x1, y2 - y1)
    if chord < 1e-12:
        return 0.0
    radius = max(abs(radius), chord / 2.0)
    ratio = min(1.0, chord / (2.0 * radius))
    included = 2.0 * math.asin(ratio)
    if large_arc:
        included = 2.0 * math.pi - included
    if not sweep:
        included = -included
    return bulge_from_sweep(included)


def bulge_to_center(x1: float, y1: float, x2: float, y2: float, bulge: float):
    """Return (cx, cy, radius) of the circle a bulged segment lies on."""
    dx, dy = x2 - x1, y2 - y1
    chord = math.hypot(dx, dy)
    if abs(bulge) < 1e-12 or chord < 1e-12:
        raise ValueError("segment has no curvature")
    ux, uy = dx / chord, dy / chord
    nx, ny = uy, -ux
    mx, my = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    offset = chord * (bulge * bulge - 1.0) / (4.0 * bulge)
    radius = chord * (1.0 + bulge * bulge) / (4.0 * abs(bulge))
    return mx + offset * nx, my + offset * ny, radius


def bulge_to_mid(x1: float, y1: float, x2: float, y2: float, bulge: float):
    """Return the point halfway along a bulged segment (the arc midpoint)."""
    dx, dy = x2 - x1, y2 - y1
    chord = math.hypot(dx, dy)
    mx, my = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    if chord < 1e-12:
        return mx, my
    sagitta = bulge * chord / 2.0
    return mx + sagitta * dy / chord, my - sagitta * dx / chord


def arc_points_from_bulge(x1: float, y1: float, x2: float, y2: float,
                          bulge: float, n: int = 16):
    """Interpolate a bulged segment into n line segments (for extents/preview)."""
    if abs(bulge) < 1e-12:
        return [(x1, y1), (x2, y2)]
    cx, cy, r = bulge_to_center(x1, y1, x2, y2, bulge)
    a0 = math.atan2(y1 - cy, x1 - cx)
    sweep = sweep_from_bulge(bulge)
    return [(cx + r * math.cos(a0 + sweep * i / n),
             cy + r * math.sin(a0 + sweep * i / n)) for i in range(n + 1)]


def safe_name(name: str) -> str:
    """Make a name usable as a file name and as a KiCad library item name."""
    cleaned = _UNSAFE_CHARS.sub("_", str(name)).strip(" .")
    return cleaned or "unnamed"
