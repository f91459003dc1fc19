#!/usr/bin/env python3
"""Tests for KiCad S-expression output across format versions."""

import re
import sys
import unittest
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ee2kicad.assembler import assemble
from ee2kicad.cad_model import EntityKind
from ee2kicad.config import DEFAULT_CONFIG
from ee2kicad.errors import NumberingCollision
from ee2kicad.importer import EntityRecord, records_from_json
from ee2kicad.kicad_encoder import encode, generator_clauses, kicad_pin_name, quote
from ee2kicad.transform import normalize

PIN_VCC = ("P~show~0~1~-70~0~180~gge31~0^^-70~0^^M -70 0 h 20~#880000"
           "^^1~-45~3~0~VCC~start~~~#0000FF^^1~-55~-1~0~1~end~~~#0000FF"
           "^^0~-47~0^^0~M -50 -3 L -53 0 L -50 3")
PIN_RST = ("P~show~1~2~70~0~0~gge32~0^^70~0^^M 70 0 h -20~#880000"
           "^^1~45~3~0~RST~end~~~#0000FF^^1~55~-1~0~2~start~~~#0000FF"
           "^^1~47~0^^0~M 50 -3 L 53 0 L 50 3")
BODY = "R~-50~-50~~~100~100~#880000~1~0~none~gge30~0"

PAD_1 = "PAD~RECT~-100~0~60~40~1~~1~0~~0~gge40~0~~Y~0"
PAD_2 = "PAD~RECT~100~0~60~40~1~~2~0~~0~gge41~0~~Y~0"

SVG_NODE = ('SVGNODE~{"gId":"g1","nodeName":"g","nodeType":1,"layerid":"19",'
            '"attrs":{"c_width":"10","c_height":"10","c_rotation":"0,0,90","z":"5",'
            '"c_origin":"0,0","uuid":"abc","c_etype":"outline3D","id":"g1",'
            '"title":"MODEL_1","layerid":"19"},"childNodes":[]}')

BOARD_DOC = {
    "head": {"docType": "3", "x": "0", "y": "0"},
    "title": "demo",
    "canvas": "CA~1000~1000~#000000~yes~#FFFFFF~10~1000~1000~line~0.5~mil~1~45~visible~0.5~400~300~0~yes",
    "layers": [
        "1~TopLayer~#FF0000~true~true~true~",
        "2~BottomLayer~#0000FF~true~false~true~",
        "3~TopSilkLayer~#FFCC00~true~false~true~",
        "10~BoardOutLine~#FF00FF~true~false~true~",
    ],
    "shape": [
        "TRACK~10~1~GND~400 300 500 300~gge50~0",
        "VIA~500~300~24~GND~6~gge51~0",
        "HOLE~450~350~10~gge52~0",
        "COPPERAREA~1~2~GND~M 400 300 L 600 300 L 600 400 L 400 400 Z~10~solid~gge53~spoke~yes~~0",
        "LIB~450~300~package`R0603`~0~~gge54~0"
        "#@$PAD~RECT~440~300~20~20~1~GND~1~0~~0~gge55~0~~Y~0"
        "#@$PAD~RECT~460~300~20~20~1~~2~0~~0~gge56~0~~Y~0"
        "#@$TEXT~N~450~290~0.8~0~0~3~~4.5~R1~M 0 0~~gge57~0",
        "TRACK~5~10~~400 300 600 300 600 400~gge58~0",
    ],
}


def convert(kind, shapes, config=DEFAULT_CONFIG, name="TEST", metadata=None):
    """Assemble, normalize and encode one record; returns (text, warnings)."""
    record = EntityRecord(kind=kind, name=name, head={"x": "0", "y": "0"},
                          shapes=shapes, metadata=metadata or {})
    warnings = []
    entity = assemble(record, warnings)
    normalize(entity, config)
    return encode(entity, config, warnings), warnings


def v(name):
    return DEFAULT_CONFIG.with_overrides(format_version=name)


class TestHelpers(unittest.TestCase):

    def test_quote(self):
        self.assertEqual(quote('a"b\\c'), '"a\\"b\\\\c"')
        self.assertEqual(quote("line\nbreak"), '"line\\nbreak"')

    def test_pin_name_overbar(self):
        self.assertEqual(kicad_pin_name("~RST"), "~{RST}")
        self.assertEqual(kicad_pin_name("~{RST}"), "~{RST}")
        self.assertEqual(kicad_pin_name("VCC"), "VCC")
        self.assertEqual(kicad_pin_name(""), "~")

    def test_generator_clauses(self):
        self.assertEqual(generator_clauses(v("6")), ["(generator ee2kicad)"])
        self.assertEqual(generator_clauses(v("8")),
                         ['(generator "ee2kicad")', '(generator_version "8.0")'])


class TestSymbolOutput(unittest.TestCase):

    def _symbol(self, config=DEFAULT_CONFIG, shapes=None):
        return convert(EntityKind.SYMBOL, shapes or [PIN_VCC, PIN_RST, BODY], config,
                       name="NE555", metadata={"prefix": "U", "package": "SOIC-8",
                                               "lcsc_id": "C7593"})

    def test_pins(self):
        text, warnings = self._symbol()
        self.assertIn("(pin passive line (at -0.1778 0 0) (length 0.0508)", text)
        self.assertIn("(pin input inverted (at 0.1778 0 180) (length 0.0508)", text)
        self.assertIn('(name "RST"', text)
        self.assertIn('(number "2"', text)
        self.assertEqual(warnings, [])

    def test_pins_sorted_by_number(self):
        text, _ = self._symbol(shapes=[PIN_RST, PIN_VCC])
        self.assertLess(text.index('(number "1"'), text.index('(number "2"'))

    def test_body_rectangle_flipped(self):
        text, _ = self._symbol()
        self.assertIn("(rectangle (start -0.127 0.127) (end 0.127 -0.127)", text)

    def test_units(self):
        text, _ = self._symbol()
        self.assertTrue(text.startswith('(symbol "NE555"'))
        self.assertIn('(symbol "NE555_0_1"', text)
        self.assertIn('(symbol "NE555_1_1"', text)

    def test_properties_v8(self):
        text, _ = self._symbol()
        self.assertIn('(property "Reference" "U" (at 0 ', text)
        self.assertIn('(property "Footprint" "ee2kicad:SOIC-8"', text)
        self.assertIn('(property "LCSC Part" "C7593"', text)
        self.assertIn("(exclude_from_sim no)", text)
        self.assertIn("(hide yes)", text)
        self.assertNotIn("(id ", text)

    def test_extended_property(self):
        for part_class, expected in [("Extended Part", "true"), ("Basic Part", "false")]:
            text, _ = convert(EntityKind.SYMBOL, [PIN_VCC], name="X",
                              metadata={"part_class": part_class})
            self.assertIn(f'(property "Extended" "{expected}"', text)
        text, _ = convert(EntityKind.SYMBOL, [PIN_VCC], name="X")
        self.assertNotIn('"Extended"', text)

    def test_footprint_property_matches_file_name(self):
        config = DEFAULT_CONFIG.with_overrides(library_name="my:lib")
        text, _ = convert(EntityKind.SYMBOL, [PIN_VCC], config, name="X",
                          metadata={"package": "SOT-23/5"})
        self.assertIn('(property "Footprint" "my_lib:SOT-23_5"', text)

    def test_pin_number_not_plain_digits(self):
        superscript = PIN_VCC.replace("~1~-70~0~180~", "~²~-70~0~180~")
        text, _ = convert(EntityKind.SYMBOL, [superscript, PIN_RST], name="X")
        self.assertIn('(number "²"', text)
        self.assertLess(text.index('(number "2"'), text.index('(number "²"'))

    def test_properties_v6(self):
        text, _ = self._symbol(v("6"))
        self.assertIn('(property "Reference" "U" (id 0)', text)
        self.assertIn('(property "Value" "NE555" (id 1)', text)
        self.assertNotIn("exclude_from_sim", text)
        self.assertNotIn("(hide yes)", text)
        self.assertRegex(text, r"\(effects \(font \(size 1\.27 1\.27\)\) hide\)")

    def test_arc_mid(self):
        text, _ = self._symbol(shapes=[PIN_VCC, "A~M 0 0 A 10 10 0 0 1 20 0~~#880000~1~0~none~gge12~0"])
        self.assertIn("(arc (start 0 0) (mid 0.0254 0.0254) (end 0.0508 0)", text)

    def test_text(self):
        text, _ = self._symbol(shapes=[PIN_VCC, "T~L~10~20~0~#000~Arial~7pt~~~~comment~Hello~1~start~gge12~0"])
        self.assertIn('(text "Hello" (at 0.0254 -0.0508 0)', text)
        self.assertIn("(justify left)", text)

    def test_ellipse_dropped_with_warning(self):
        text, warnings = self._symbol(shapes=[PIN_VCC, "E~0~0~10~20~#000~1~0~none~gge3~0"])
        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0].kind, "UnsupportedPrimitive")
        self.assertEqual(warnings[0].entity, "NE555")
        self.assertIn("(pin passive line", text)

    def test_pin_number_collision(self):
        with self.assertRaises(NumberingCollision):
            self._symbol(shapes=[PIN_VCC, PIN_VCC])


class TestFootprintOutput(unittest.TestCase):

    def test_rect_v8(self):
        text, _ = convert(EntityKind.FOOTPRINT, ["RECT~0~0~1000~500~3~gge1~0"], name="FP")
        self.assertIn('(fp_rect (start 0 0) (end 2.54 1.27) (stroke (width 0) (type solid)) '
                      '(fill solid) (layer "F.SilkS") (uuid "', text)
        self.assertIn('(generator "ee2kicad")', text)
        self.assertIn('(generator_version "8.0")', text)
        self.assertIn('(property "Reference" "REF**"', text)
        self.assertIn('(property "Value" "FP"', text)
        self.assertIn("(attr board_only)", text)
        self.assertTrue(text.endswith(")\n"))

    def test_rect_v6(self):
        text, _ = convert(EntityKind.FOOTPRINT, ["RECT~0~0~1000~500~3~gge1~0"], v("6"), name="FP")
        self.assertIn("(version 20211014)", text)
        self.assertIn("(generator ee2kicad)", text)
        self.assertIn('(fp_rect (start 0 0) (end 2.54 1.27) (layer "F.SilkS") (width 0) '
                      '(fill solid) (tstamp ', text)
        self.assertIn('(fp_text reference "REF**"', text)
        self.assertNotIn("(uuid", text)

    def test_v7_uses_tstamp_and_stroke(self):
        text, _ = convert(EntityKind.FOOTPRINT, ["RECT~0~0~1000~500~3~gge1~0"], v("7"), name="FP")
        self.assertIn("(version 20221018)", text)
        self.assertIn("(stroke (width 0) (type solid))", text)
        self.assertIn("(tstamp ", text)
        self.assertIn("(fp_text value", text)

    def test_deterministic(self):
        a, _ = convert(EntityKind.FOOTPRINT, [PAD_1, PAD_2], name="FP")
        b, _ = convert(EntityKind.FOOTPRINT, [PAD_1, PAD_2], name="FP")
        self.assertEqual(a, b)

    def test_smd_pads(self):
        text, _ = convert(EntityKind.FOOTPRINT, [PAD_1, PAD_2], name="FP")
        self.assertIn('(pad "1" smd rect (at -0.254 0) (size 0.1524 0.1016) '
                      '(layers "F.Cu" "F.Paste" "F.Mask")', text)
        self.assertIn("(attr smd)", text)

    def test_tht_pad(self):
        text, _ = convert(EntityKind.FOOTPRINT,
                          ["PAD~ELLIPSE~0~0~60~60~11~~1~15~~0~gge6~0~~Y~0"], name="FP")
        self.assertIn('(pad "1" thru_hole circle (at 0 0) (size 0.1524 0.1524) (drill 0.0762) '
                      '(layers "*.Cu" "*.Mask")', text)
        self.assertIn("(attr through_hole)", text)

    def test_slot_pad(self):
        text, _ = convert(EntityKind.FOOTPRINT,
                          ["PAD~OVAL~0~0~100~60~11~~2~15~~0~gge7~80~~Y~0"], name="FP")
        self.assertIn("(drill oval 0.2032 0.0762)", text)

    def test_nonplated_hole(self):
        text, _ = convert(EntityKind.FOOTPRINT, [PAD_1, "HOLE~0~0~10~gge9~0"], name="FP")
        self.assertIn('(pad "" np_thru_hole circle (at 0 0) (size 0.0508 0.0508) (drill 0.0508) '
                      '(layers "*.Cu" "*.Mask")', text)

    def test_polygon_pad(self):
        text, _ = convert(EntityKind.FOOTPRINT,
                          ["PAD~POLYGON~0~0~20~20~1~~1~0~-10 -10 10 -10 0 10~0~gge8~0~~Y~0"],
                          name="FP")
        self.assertIn('(pad "1" smd custom (at 0 0) (size 0.0254 0.0254)', text)
        self.assertIn("(primitives (gr_poly (pts (xy -0.0254 -0.0254) (xy 0.0254 -0.0254) "
                      "(xy 0 0.0254)) (width 0) (fill yes)))", text)

    def test_solid_region_vertices_kept(self):
        config = DEFAULT_CONFIG.with_overrides(unit_to_mm=1.0)
        text, _ = convert(EntityKind.FOOTPRINT,
                          ["SOLIDREGION~3~~M 0 0 L 10 0 L 10 10 Z~solid~gge60~0"], config, name="FP")
        poly = next(line for line in text.splitlines() if "(fp_poly" in line)
        self.assertEqual(poly.count("(xy "), 3)
        self.assertIn("(xy 10 10)", poly)
        self.assertIn('(layer "F.SilkS")', poly)

    def test_bulged_outline_v6_v8(self):
        shape = "SOLIDREGION~3~~M 0 0 L 100 0 A 50 50 0 0 1 100 100 L 0 100 Z~solid~gge61~0"
        text8, _ = convert(EntityKind.FOOTPRINT, [shape], name="FP")
        text6, _ = convert(EntityKind.FOOTPRINT, [shape], v("6"), name="FP")
        self.assertIn("(pts (xy 0 0) (arc (start 0.254 0)", text8)
        poly6 = next(line for line in text6.splitlines() if "(fp_poly" in line)
        self.assertNotIn("(arc", poly6)
        self.assertGreater(poly6.count("(xy "), 4)

    def test_pad_number_collision(self):
        with self.assertRaises(NumberingCollision):
            convert(EntityKind.FOOTPRINT, [PAD_1, PAD_1], name="FP")

    def test_malformed_shape_dropped(self):
        text, warnings = convert(EntityKind.FOOTPRINT, [PAD_1, "RECT~0~0~10~3"], name="FP")
        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0].kind, "MalformedShape")
        self.assertEqual(warnings[0].index, 1)
        self.assertIn('(pad "1"', text)


class TestBoardOutput(unittest.TestCase):

    def _board(self, config=DEFAULT_CONFIG):
        record = records_from_json(BOARD_DOC, "demo.json")[0]
        warnings = []
        board = assemble(record, warnings)
        normalize(board, config)
        return encode(board, config, warnings), warnings

    def test_header(self):
        text, warnings = self._board()
        self.assertTrue(text.startswith("(kicad_pcb\n  (version 20240108)"))
        self.assertTrue(text.endswith(")\n"))
        self.assertIn('(0 "F.Cu" signal)', text)
        self.assertIn('(31 "B.Cu" signal)', text)
        self.assertIn('(net 0 "")', text)
        self.assertIn('(net 1 "GND")', text)
        self.assertEqual(warnings, [])

    def test_tracks_and_vias(self):
        text, _ = self._board()
        self.assertIn('(segment (start 0 0) (end 0.254 0) (width 0.0254) (layer "F.Cu") (net 1)', text)
        self.assertIn("(via (at 0.254 0)", text)

    def test_placed_footprint(self):
        text, _ = self._board()
        self.assertIn('(footprint "ee2kicad:R0603"', text)
        self.assertIn("(at 0.127 0)", text)
        self.assertIn('(property "Reference" "R1"', text)
        pad = next(line for line in text.splitlines() if line.strip().startswith('(pad "1"'))
        self.assertIn("(at -0.0254 0)", pad)
        self.assertIn('(net 1 "GND")', pad)
        pad2 = next(line for line in text.splitlines() if line.strip().startswith('(pad "2"'))
        self.assertNotIn("(net ", pad2)

    def test_zone_and_outline(self):
        text, _ = self._board()
        self.assertIn('(zone (net 1) (net_name "GND") (layer "B.Cu")', text)
        self.assertIn('(gr_line (start 0 0) (end 0.508 0) (stroke (width 0.0127) (type solid)) '
                      '(layer "Edge.Cuts")', text)

    def test_hole(self):
        text, _ = self._board()
        self.assertIn('(footprint "ee2kicad:MountingHole_0.0508mm"', text)
        self.assertIn("np_thru_hole circle (at 0 0) (size 0.0508 0.0508)", text)

    def test_v6_board(self):
        text, _ = self._board(v("6"))
        self.assertIn("(version 20211014)", text)
        self.assertIn("(generator ee2kicad)", text)
        self.assertIn('(layer "Edge.Cuts") (width 0.0127) (tstamp ', text)
        self.assertIsNone(re.search(r"\(uuid ", text))

def items(text, token):
    """Stripped output lines that open a ``token`` item."""
    return [line.strip() for line in text.splitlines()
            if line.strip().startswith(f"({token} ")]


# (shape string, KiCad item token, item count, (xy ...) points in the output, layer fragment)
SYMBOL_KINDS = [
    ("R~-50~-50~~~100~100~#880000~1~0~none~gge30~0", "rectangle", 1, 0, None),
    ("E~0~0~10~10~#000~1~0~#FF0000~gge3~0", "circle", 1, 0, None),
    ("C~0~0~10~#000~1~0~none~gge4~0", "circle", 1, 0, None),
    ("A~M 0 0 A 10 10 0 0 1 10 10~~#880000~1~0~none~gge12~0", "arc", 1, 0, None),
    ("PL~0 0 10 0 10 10~#880000~1~0~none~gge13~0", "polyline", 1, 3, None),
    ("PG~0 0 10 0 10 10~#880000~1~0~#880000~gge14~0", "polyline", 1, 4, None),
    ("PT~M 0 0 L 10 0 L 10 10 Z~#880000~1~0~none~gge15~0", "polyline", 1, 4, None),
    ("T~L~10~20~0~#000~Arial~7pt~~~~comment~Hello~1~start~gge12~0", "text", 1, 0, None),
    (PIN_VCC, "pin", 1, 0, None),
]

FOOTPRINT_KINDS = [
    (PAD_1, "pad", 1, 0, '(layers "F.Cu" '),
    ("TRACK~1~3~~0 0 100 0 100 100~gge8~0", "fp_line", 2, 0, '(layer "F.SilkS")'),
    ("CIRCLE~0~0~5~1~3~gge1~0", "fp_circle", 1, 0, '(layer "F.SilkS")'),
    ("ARC~1~3~~M 0 0 A 10 10 0 0 1 20 0~~gge11~0", "fp_arc", 1, 0, '(layer "F.SilkS")'),
    ("RECT~0~0~1000~500~3~gge1~0", "fp_rect", 1, 0, '(layer "F.SilkS")'),
    ("TEXT~L~10~20~0.8~0~0~3~~4.5~Hello~M 0 0~~gge22~0", "fp_text", 1, 0, '(layer "F.SilkS")'),
    ("SOLIDREGION~3~~M 0 0 L 10 0 L 10 10 Z~solid~gge60~0", "fp_poly", 1, 3, '(layer "F.SilkS")'),
    ("HOLE~0~0~10~gge52~0", "pad", 1, 0, "np_thru_hole"),
    (SVG_NODE, "model", 1, 0, None),
]

BOARD_KINDS = [
    ("TRACK~10~1~GND~400 300 500 300~gge50~0", "segment", 1, 0, '(layer "F.Cu")'),
    ("VIA~500~300~24~GND~6~gge51~0", "via", 1, 0, '(layers "F.Cu" "B.Cu")'),
    ("COPPERAREA~1~1~GND~M 400 300 L 600 300 L 600 400 L 400 400 Z~10~solid~gge53~spoke~yes~~0",
     "zone", 1, 4, '(layer "F.Cu")'),
    ("LIB~450~300~package`R0603`~0~~gge54~0#@$" + PAD_1, "footprint", 1, 0, None),
    ("HOLE~450~350~10~gge52~0", "footprint", 1, 0, None),
    ("TRACK~5~10~~400 300 600 300 600 400~gge58~0", "gr_line", 2, 0, '(layer "Edge.Cuts")'),
    ("CIRCLE~450~300~5~1~3~gge59~0", "gr_circle", 1, 0, '(layer "F.SilkS")'),
]


class TestEveryShapeKind(unittest.TestCase):
    """One source shape of each kind through the whole pipeline."""

    def _check(self, kind, table):
        for shape, token, count, xy, layer in table:
            with self.subTest(shape=shape[:20]):
                text, warnings = convert(kind, [shape])
                found = items(text, token)
                self.assertEqual(len(found), count)
                self.assertEqual(text.count("(xy "), xy)
                if layer:
                    self.assertIn(layer, found[0])
                self.assertEqual(warnings, [])

    def test_symbol_kinds(self):
        self._check(EntityKind.SYMBOL, SYMBOL_KINDS)

    def test_footprint_kinds(self):
        self._check(EntityKind.FOOTPRINT, FOOTPRINT_KINDS)

    def test_board_kinds(self):
        self._check(EntityKind.BOARD, BOARD_KINDS)


class TestRegionsAndMultiLayer(unittest.TestCase):
    """Solid region types and items drawn on the multi-layer."""

    REGION = "SOLIDREGION~{layer}~~M 0 0 L 100 0 L 100 100 Z~{type}~gge70~0"

    def test_npth_region_is_board_cut(self):
        for kind in (EntityKind.FOOTPRINT, EntityKind.BOARD):
            shapes = [self.REGION.format(layer=1, type="npth")]
            if kind == EntityKind.FOOTPRINT:
                shapes.append(PAD_1)
            text, warnings = convert(kind, shapes)
            prefix = "fp" if kind == EntityKind.FOOTPRINT else "gr"
            poly = items(text, f"{prefix}_poly")
            self.assertEqual(len(poly), 1)
            self.assertIn('(layer "Edge.Cuts")', poly[0])
            self.assertIn("(fill none)", poly[0])
            self.assertEqual(warnings, [])

    def test_cutout_on_board_is_keepout(self):
        text, warnings = convert(EntityKind.BOARD, [self.REGION.format(layer=1, type="cutout")])
        self.assertEqual(warnings, [])
        self.assertEqual(items(text, "gr_poly"), [])
        self.assertIn('(zone (net 0) (net_name "") (layer "F.Cu")', text)
        self.assertIn("(connect_pads (clearance 0))", text)
        self.assertIn("(keepout (tracks allowed) (vias allowed) (pads allowed) "
                      "(copperpour not_allowed) (footprints allowed))", text)
        self.assertNotIn("(fill yes", text)

    def test_cutout_in_footprint_dropped(self):
        text, warnings = convert(EntityKind.FOOTPRINT,
                                 [PAD_1, self.REGION.format(layer=1, type="cutout")])
        self.assertEqual(items(text, "fp_poly"), [])
        self.assertEqual([w.kind for w in warnings], ["UnsupportedPrimitive"])
        self.assertEqual(warnings[0].index, 1)

    def test_solid_copper_region_on_board_is_zone(self):
        text, _ = convert(EntityKind.BOARD, [self.REGION.format(layer=1, type="solid")])
        self.assertEqual(len(items(text, "zone")), 1)
        self.assertNotIn("keepout", text)

    def test_multi_layer_graphics_dropped(self):
        shapes = [PAD_1, "CIRCLE~0~0~5~1~11~gge1~0", "TRACK~1~11~~0 0 100 0~gge2~0",
                  self.REGION.format(layer=11, type="solid")]
        text, warnings = convert(EntityKind.FOOTPRINT, shapes)
        self.assertEqual(items(text, "fp_circle") + items(text, "fp_line")
                         + items(text, "fp_poly"), [])
        self.assertEqual([w.index for w in warnings], [1, 2, 3])

        text, warnings = convert(EntityKind.BOARD, shapes[1:])
        self.assertEqual(items(text, "segment") + items(text, "zone")
                         + items(text, "gr_circle"), [])
        self.assertEqual(len(warnings), 3)


if __name__ == "__main__":
    unittest.main()
