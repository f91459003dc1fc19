"""Conversion settings passed explicitly through every stage.

Nothing here is module-level mutable state: a batch builds one
ConversionConfig and hands it to the decoder, transformer, encoder and
writer, so conversions targeting different KiCad versions can run side by
side.
"""

from dataclasses import dataclass, field, replace


# Source canvas unit as documented for the shape records: a tenth of a mil.
TENTH_MIL_TO_MM = 0.00254

# EasyEDA's editor canvas unit (10 mil).  Select with --unit-scale 0.254.
TEN_MIL_TO_MM = 0.254

POINT_TO_MM = 25.4 / 72


@dataclass(frozen=True)
class FormatVersion:
    """One KiCad file-format generation.

    The version tokens are the dates KiCad writes into the top-level
    ``(version ...)`` clause; the flags switch the few clauses that differ
    between generations.
    """

    name: str
    symbol_version: int
    footprint_version: int
    board_version: int
    uses_uuid: bool = True
    """KiCad 8 writes ``(uuid ...)``; KiCad 6 and 7 write ``(tstamp ...)``."""
    poly_arcs: bool = True
    """``(arc ...)`` items are allowed inside ``fp_poly``/``gr_poly`` pts."""
    footprint_properties: bool = False
    """Reference/Value are ``(property ...)`` instead of ``(fp_text ...)``."""
    generator_version: str = ""
    hide_as_clause: bool = False
    """``(hide yes)`` instead of the bare ``hide`` flag."""
    property_ids: bool = False
    """Symbol properties carry an ``(id N)`` clause."""
    graphic_stroke: bool = True
    """Footprint/board graphics use ``(stroke ...)`` rather than ``(width ...)``."""


FORMAT_VERSIONS = {
    "6": FormatVersion(
        name="6",
        symbol_version=20211014,
        footprint_version=20211014,
        board_version=20211014,
        uses_uuid=False,
        poly_arcs=False,
        property_ids=True,
        graphic_stroke=False,
    ),
    "7": FormatVersion(
        name="7",
        symbol_version=20220914,
        footprint_version=20221018,
        board_version=20221018,
        uses_uuid=False,
        property_ids=True,
    ),
    "8": FormatVersion(
        name="8",
        symbol_version=20231120,
        footprint_version=20240108,
        board_version=20240108,
        footprint_properties=True,
        generator_version="8.0",
        hide_as_clause=True,
    ),
}

DEFAULT_FORMAT_VERSION = "8"


def get_format_version(name: str) -> FormatVersion:
    try:
        return FORMAT_VERSIONS[str(name)]
    except KeyError:
        known = ", ".join(sorted(FORMAT_VERSIONS))
        raise ValueError(f"Unknown KiCad format version {name!r} (known: {known})")


@dataclass(frozen=True)
class ConversionConfig:
    """Settings for one conversion run.

    Lengths in the source records are multiplied by ``unit_to_mm``.
    """

    unit_to_mm: float = TENTH_MIL_TO_MM
    precision: int = 4
    """Decimal places written for millimetre values (trailing zeros trimmed)."""

    format_version: FormatVersion = field(
        default_factory=lambda: FORMAT_VERSIONS[DEFAULT_FORMAT_VERSION])

    generator: str = "ee2kicad"
    library_name: str = "ee2kicad"

    model_dir: str = "${KIPRJMOD}/ee2kicad.3dshapes"
    """Directory the footprint ``(model ...)`` clause points into."""

    overwrite: bool = False
    workers: int = 4
    max_coordinate_mm: float = 10000.0
    """Any converted coordinate beyond this magnitude is rejected."""

    default_text_size_mm: float = 1.27
    default_stroke_mm: float = 0.1524

    def with_overrides(self, **kwargs) -> "ConversionConfig":
        """Return a copy with some fields replaced (None values are ignored)."""
        changes = {k: v for k, v in kwargs.items() if v is not None}
        if isinstance(changes.get("format_version"), str):
            changes["format_version"] = get_format_version(changes["format_version"])
        return replace(self, **changes)


DEFAULT_CONFIG = ConversionConfig()
