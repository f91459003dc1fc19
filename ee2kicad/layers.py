"""EasyEDA layer ids and their KiCad counterparts.

EasyEDA numbers its PCB layers; KiCad names them.  Layers with no KiCad
counterpart (ratlines, the 3D model layer, hole/via display layers) are
absent from the table, and anything drawn on them is dropped by the
assembler.
"""

from dataclasses import dataclass
from typing import Optional

from .cad_model import BoardLayer, LayerType

# Logical layer of symbol graphics; symbols have no layer stack.
SYMBOL_LAYER = 0

TOP_COPPER = 1
BOTTOM_COPPER = 2
TOP_SILK = 3
BOTTOM_SILK = 4
TOP_PASTE = 5
BOTTOM_PASTE = 6
TOP_MASK = 7
BOTTOM_MASK = 8
RATLINES = 9
BOARD_OUTLINE = 10
MULTI_LAYER = 11
DOCUMENT = 12
TOP_ASSEMBLY = 13
BOTTOM_ASSEMBLY = 14
MECHANICAL = 15
MODEL_3D = 19
INNER_FIRST = 21
INNER_LAST = 50
COMPONENT_SHAPE = 99
LEAD_SHAPE = 100
COMPONENT_MARKING = 101


@dataclass(frozen=True)
class LayerInfo:
    kicad_name: str
    kicad_id: int
    layer_type: LayerType
    source_name: str


def _inner(n: int) -> LayerInfo:
    return LayerInfo(f"In{n}.Cu", n, LayerType.COPPER, f"Inner{n}")


LAYER_TABLE = {
    TOP_COPPER: LayerInfo("F.Cu", 0, LayerType.COPPER, "TopLayer"),
    BOTTOM_COPPER: LayerInfo("B.Cu", 31, LayerType.COPPER, "BottomLayer"),
    TOP_SILK: LayerInfo("F.SilkS", 37, LayerType.SILKSCREEN, "TopSilkLayer"),
    BOTTOM_SILK: LayerInfo("B.SilkS", 36, LayerType.SILKSCREEN, "BottomSilkLayer"),
    TOP_PASTE: LayerInfo("F.Paste", 35, LayerType.PASTE, "TopPasteMaskLayer"),
    BOTTOM_PASTE: LayerInfo("B.Paste", 34, LayerType.PASTE, "BottomPasteMaskLayer"),
    TOP_MASK: LayerInfo("F.Mask", 39, LayerType.MASK, "TopSolderMaskLayer"),
    BOTTOM_MASK: LayerInfo("B.Mask", 38, LayerType.MASK, "BottomSolderMaskLayer"),
    BOARD_OUTLINE: LayerInfo("Edge.Cuts", 44, LayerType.EDGE_CUTS, "BoardOutLine"),
    DOCUMENT: LayerInfo("Cmts.User", 41, LayerType.COMMENT, "Document"),
    TOP_ASSEMBLY: LayerInfo("F.Fab", 49, LayerType.FAB, "TopAssembly"),
    BOTTOM_ASSEMBLY: LayerInfo("B.Fab", 48, LayerType.FAB, "BottomAssembly"),
    MECHANICAL: LayerInfo("Dwgs.User", 40, LayerType.MECHANICAL, "Mechanical"),
    COMPONENT_SHAPE: LayerInfo("F.CrtYd", 47, LayerType.MECHANICAL, "ComponentShapeLayer"),
    LEAD_SHAPE: LayerInfo("F.Fab", 49, LayerType.FAB, "LeadShapeLayer"),
    COMPONENT_MARKING: LayerInfo("F.SilkS", 37, LayerType.SILKSCREEN, "ComponentPolarityLayer"),
}
for _n in range(1, INNER_LAST - INNER_FIRST + 2):
    LAYER_TABLE[INNER_FIRST + _n - 1] = _inner(_n)

# Bottom-side layer for each top-side layer, and back
_FLIP = {
    TOP_COPPER: BOTTOM_COPPER,
    TOP_SILK: BOTTOM_SILK,
    TOP_PASTE: BOTTOM_PASTE,
    TOP_MASK: BOTTOM_MASK,
    TOP_ASSEMBLY: BOTTOM_ASSEMBLY,
}
_FLIP.update({v: k for k, v in list(_FLIP.items())})

# Pad layer sets keyed by the pad's own layer id
SMD_TOP_LAYERS = (TOP_COPPER, TOP_PASTE, TOP_MASK)
SMD_BOTTOM_LAYERS = (BOTTOM_COPPER, BOTTOM_PASTE, BOTTOM_MASK)
THT_LAYERS = (MULTI_LAYER, TOP_MASK, BOTTOM_MASK)


def has_kicad_layer(layer_id: int) -> bool:
    return layer_id in LAYER_TABLE or layer_id in (SYMBOL_LAYER, MULTI_LAYER)


def kicad_layer_name(layer_id: int) -> str:
    """KiCad layer name for an EasyEDA layer id.

    Raises KeyError for layers with no KiCad counterpart; the assembler
    filters those out before anything reaches the encoder.
    """
    if layer_id == MULTI_LAYER:
        return "*.Cu"
    return LAYER_TABLE[layer_id].kicad_name


def is_copper(layer_id: int) -> bool:
    info = LAYER_TABLE.get(layer_id)
    return layer_id == MULTI_LAYER or (info is not None and info.layer_type == LayerType.COPPER)


def is_bottom(layer_id: int) -> bool:
    return layer_id in (BOTTOM_COPPER, BOTTOM_SILK, BOTTOM_PASTE, BOTTOM_MASK, BOTTOM_ASSEMBLY)


def flip_layer(layer_id: int) -> int:
    return _FLIP.get(layer_id, layer_id)


def pad_layer_set(layer_id: int) -> tuple:
    """Copper, paste and mask layers occupied by a pad on layer_id."""
    if layer_id == TOP_COPPER:
        return SMD_TOP_LAYERS
    if layer_id == BOTTOM_COPPER:
        return SMD_BOTTOM_LAYERS
    if layer_id == MULTI_LAYER:
        return THT_LAYERS
    return ()


def pad_layer_names(layer_set) -> list:
    """KiCad layer names for a pad layer set; multi-layer pads span all copper."""
    names = []
    for layer_id in layer_set:
        if layer_id == MULTI_LAYER:
            names.append("*.Cu")
        elif layer_id in (TOP_MASK, BOTTOM_MASK) and MULTI_LAYER in layer_set:
            if "*.Mask" not in names:
                names.append("*.Mask")
        else:
            names.append(kicad_layer_name(layer_id))
    return names


def parse_layer_string(s: str) -> Optional[BoardLayer]:
    """Parse one entry of a board record's ``layers`` list.

    Format: ``id~name~color~visible~active~config``.  Returns None for
    layers that are not in use or have no KiCad equivalent.
    """
    fields = s.split("~")
    try:
        layer_id = int(fields[0])
    except (ValueError, IndexError):
        return None
    info = LAYER_TABLE.get(layer_id)
    if info is None:
        return None
    # Inner layers are listed whether or not the board uses them
    in_use = len(fields) < 6 or fields[5] != "false"
    if info.layer_type == LayerType.COPPER and layer_id >= INNER_FIRST and not in_use:
        return None
    name = fields[1] if len(fields) > 1 else info.source_name
    return BoardLayer(id=layer_id, name=info.kicad_name,
                      layer_type=info.layer_type, source_name=name)


def default_board_layers() -> list:
    """Two-layer stack used when a board record carries no layer list."""
    ids = (TOP_COPPER, BOTTOM_COPPER, TOP_SILK, BOTTOM_SILK, TOP_PASTE,
           BOTTOM_PASTE, TOP_MASK, BOTTOM_MASK, BOARD_OUTLINE, DOCUMENT,
           TOP_ASSEMBLY, BOTTOM_ASSEMBLY, MECHANICAL, COMPONENT_SHAPE)
    return [BoardLayer(id=i, name=LAYER_TABLE[i].kicad_name,
                       layer_type=LAYER_TABLE[i].layer_type,
                       source_name=LAYER_TABLE[i].source_name) for i in ids]
