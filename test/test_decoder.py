#!/usr/bin/env python3
"""Tests for shape-string decoding and the SVG path grammar."""

import math
import sys
import unittest
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ee2kicad.cad_model import (
    Arc, Circle, Ellipse, PadShape, PinType, Polygon, Polyline, Rectangle,
    Text, Track, Via,
)
from ee2kicad.errors import MalformedShape, UnsupportedPrimitive
from ee2kicad.shape_decoder import RawPlacement, ShapeKind, decode_shape, shape_kind
from ee2kicad.svg_path import parse_path, parse_points

PIN_7 = ("P~show~0~1~100~200~180~gge10~0^^100~200^^M 100 200 h 20~#880000"
         "^^1~125~203~0~VCC~start~~7pt~#0000FF^^1~115~199~0~1~end~~7pt~#0000FF"
         "^^0~123~200^^0~M 120 197 L 117 200 L 120 203")

PIN_6 = ("P~show~4~3~0~0~0~gge11~0^^0~0^^M 0 0 v -30~#880000"
         "^^0~0~-35~0~VDD~start~~~#0000FF^^1~-3~0^^1~M -3 -3 L 0 0 L 3 -3")

SVG_NODE = ('SVGNODE~{"gId":"g1","nodeName":"g","nodeType":1,"layerid":"19",'
            '"attrs":{"c_width":"10","c_height":"10","c_rotation":"0,0,90","z":"5",'
            '"c_origin":"100,200","uuid":"abc","c_etype":"outline3D","id":"g1",'
            '"title":"MODEL_1","layerid":"19"},"childNodes":[]}')

LIB = ("LIB~100~200~package`SOT-23`nameAlias`Model`~90~~gge20~0"
       "#@$PAD~RECT~110~200~20~10~1~~1~0~~0~gge21~0~~Y~0"
       "#@$TEXT~N~100~180~0.8~0~0~3~~4.5~U1~M 0 0~~gge22~0")


class TestSvgPath(unittest.TestCase):
    """Path sub-grammar."""

    def test_closed_polygon(self):
        subpaths = parse_path("M 0 0 L 10 0 L 10 10 Z")
        self.assertEqual(len(subpaths), 1)
        self.assertTrue(subpaths[0].closed)
        self.assertEqual([(v.x, v.y) for v in subpaths[0].vertices],
                         [(0, 0), (10, 0), (10, 10)])

    def test_closing_point_dropped(self):
        sub = parse_path("M 0 0 L 10 0 L 10 10 L 0 0 Z")[0]
        self.assertEqual(len(sub.vertices), 3)

    def test_implicit_line_to(self):
        sub = parse_path("M0,0 10,0 10,10")[0]
        self.assertEqual(len(sub.vertices), 3)
        self.assertFalse(sub.closed)

    def test_relative_commands(self):
        sub = parse_path("m 10 10 l 5 0 v 5 h -5")[0]
        self.assertEqual([(v.x, v.y) for v in sub.vertices],
                         [(10, 10), (15, 10), (15, 15), (10, 15)])

    def test_arc_becomes_bulge(self):
        sub = parse_path("M 0 0 A 10 10 0 0 1 20 0")[0]
        self.assertEqual(len(sub.vertices), 2)
        # Half circle, positive sweep
        self.assertAlmostEqual(sub.vertices[0].bulge, 1.0)
        self.assertEqual(sub.vertices[1].bulge, 0.0)

    def test_arc_sweep_flag_sign(self):
        sub = parse_path("M 0 0 A 10 10 0 0 0 10 10")[0]
        self.assertAlmostEqual(sub.vertices[0].bulge, -math.tan(math.pi / 8))

    def test_small_radius_is_scaled_up(self):
        sub = parse_path("M 0 0 A 1 1 0 0 1 20 0")[0]
        self.assertAlmostEqual(sub.vertices[0].bulge, 1.0)

    def test_curves_unsupported(self):
        for d in ("M 0 0 C 1 1 2 2 3 3", "M 0 0 Q 1 1 2 2", "M 0 0 S 1 1 2 2", "M 0 0 T 1 1"):
            with self.assertRaises(UnsupportedPrimitive):
                parse_path(d)

    def test_elliptical_arc_unsupported(self):
        with self.assertRaises(UnsupportedPrimitive):
            parse_path("M 0 0 A 10 5 0 0 1 20 0")

    def test_malformed_paths(self):
        for d in ("", "L 1 1", "M 0 0 L 1", "M 0 0 Z 5 5", "M 0 0 L 1 x"):
            with self.assertRaises(MalformedShape):
                parse_path(d)

    def test_points(self):
        verts = parse_points("0 0, 10 0 10 10")
        self.assertEqual(len(verts), 3)
        with self.assertRaises(MalformedShape):
            parse_points("1 2 3")
        with self.assertRaises(MalformedShape):
            parse_points("1 2 3 nan")


class TestSymbolShapes(unittest.TestCase):
    """Symbol shape kinds."""

    def test_rectangle(self):
        r = decode_shape("R~-50~-50~~~100~100~#880000~1~0~none~gge30~0")
        self.assertIsInstance(r, Rectangle)
        self.assertEqual((r.x, r.y, r.width, r.height), (-50, -50, 100, 100))
        self.assertEqual(r.stroke_width, 1)
        self.assertFalse(r.fill)

    def test_ellipse_with_equal_radii_is_circle(self):
        c = decode_shape("E~0~0~10~10~#000~1~0~#FF0000~gge3~0")
        self.assertIsInstance(c, Circle)
        self.assertEqual(c.radius, 10)
        self.assertTrue(c.fill)

    def test_ellipse(self):
        e = decode_shape("E~0~0~10~20~#000~1~0~none~gge3~0")
        self.assertIsInstance(e, Ellipse)

    def test_arc(self):
        a = decode_shape("A~M 0 0 A 10 10 0 0 1 10 10~~#880000~1~0~none~gge12~0")
        self.assertIsInstance(a, Arc)
        self.assertAlmostEqual(a.sweep, 90.0)

    def test_polyline_and_polygon(self):
        pl = decode_shape("PL~0 0 10 0 10 10~#880000~1~0~none~gge13~0")
        pg = decode_shape("PG~0 0 10 0 10 10~#880000~1~0~#880000~gge14~0")
        self.assertIsInstance(pl, Polyline)
        self.assertNotIsInstance(pl, Polygon)
        self.assertIsInstance(pg, Polygon)
        self.assertTrue(pg.fill)

    def test_path_closed_is_polygon(self):
        p = decode_shape("PT~M 0 0 L 10 0 L 10 10 Z~#880000~1~0~none~gge15~0")
        self.assertIsInstance(p, Polygon)

    def test_text(self):
        t = decode_shape("T~L~10~20~0~#000~Arial~7pt~~~~comment~Hello~1~start~gge12~0")
        self.assertIsInstance(t, Text)
        self.assertEqual(t.text, "Hello")
        self.assertEqual(t.size, 7)
        self.assertTrue(t.size_in_points)

    def test_pin_with_number_segment(self):
        pin = decode_shape(PIN_7)
        self.assertEqual(pin.number, "1")
        self.assertEqual(pin.name, "VCC")
        self.assertEqual((pin.position.x, pin.position.y), (100, 200))
        self.assertEqual(pin.rotation, 0.0)
        self.assertAlmostEqual(pin.length, 20)
        self.assertEqual(pin.pin_type, PinType.PASSIVE)
        self.assertEqual(pin.name_size, 7)
        self.assertEqual(pin.number_size, 7)
        self.assertFalse(pin.inverted)
        self.assertFalse(pin.clock)

    def test_pin_without_number_segment(self):
        pin = decode_shape(PIN_6)
        self.assertEqual(pin.number, "3")
        self.assertEqual(pin.pin_type, PinType.POWER)
        # Lead goes up the screen (-Y)
        self.assertEqual(pin.rotation, 270.0)
        self.assertFalse(pin.show_name)
        self.assertTrue(pin.inverted)
        self.assertTrue(pin.clock)
        self.assertEqual(pin.name_size, 0.0)

    def test_pin_segment_count(self):
        with self.assertRaises(MalformedShape):
            decode_shape("P~show~0~1~0~0~0~gge1~0^^0~0^^M 0 0 h 10~#000")


class TestFootprintShapes(unittest.TestCase):
    """Footprint and board shape kinds."""

    def test_rect(self):
        r = decode_shape("RECT~0~0~1000~500~3~gge1~0")
        self.assertIsInstance(r, Rectangle)
        self.assertEqual(r.layer, 3)
        self.assertTrue(r.fill)

    def test_wrong_field_count(self):
        with self.assertRaises(MalformedShape):
            decode_shape("RECT~0~0~1000~3")

    def test_bad_number(self):
        with self.assertRaises(MalformedShape):
            decode_shape("CIRCLE~abc~0~10~1~3~gge2~0")
        with self.assertRaises(MalformedShape):
            decode_shape("CIRCLE~inf~0~10~1~3~gge2~0")

    def test_unknown_and_unsupported_kinds(self):
        with self.assertRaises(UnsupportedPrimitive):
            decode_shape("FOO~1~2")
        with self.assertRaises(UnsupportedPrimitive):
            decode_shape("PI~0~0~10")
        with self.assertRaises(UnsupportedPrimitive):
            decode_shape("DIMENSION~3~0~0")

    def test_shape_kind(self):
        self.assertEqual(shape_kind("TRACK~1~1~~0 0 1 1~g~0"), ShapeKind.TRACK)

    def test_smd_pad(self):
        pad = decode_shape("PAD~RECT~50~60~20~10~1~GND~1~0~~90~gge5~0~~Y~0")
        self.assertEqual(pad.shape, PadShape.RECT)
        self.assertEqual(pad.number, "1")
        self.assertEqual(pad.net, "GND")
        self.assertEqual(pad.rotation, 90)
        self.assertTrue(pad.is_smd)

    def test_tht_round_pad(self):
        pad = decode_shape("PAD~ELLIPSE~0~0~60~60~11~~1~15~~0~gge6~0~~Y~0")
        self.assertEqual(pad.shape, PadShape.CIRCLE)
        self.assertEqual(pad.drill, 30)
        self.assertEqual(pad.slot_length, 0)
        self.assertTrue(pad.plated)

    def test_slotted_pad(self):
        pad = decode_shape("PAD~OVAL~0~0~100~60~11~~2~15~~0~gge7~80~~N~0")
        self.assertEqual(pad.shape, PadShape.OVAL)
        self.assertEqual(pad.slot_length, 80)
        self.assertFalse(pad.plated)

    def test_polygon_pad(self):
        pad = decode_shape("PAD~POLYGON~0~0~20~20~1~~1~0~-10 -10 10 -10 0 10~0~gge8~0~~Y~0")
        self.assertEqual(pad.shape, PadShape.POLYGON)
        self.assertEqual(len(pad.outline), 3)

    def test_unknown_pad_shape_is_structural(self):
        with self.assertRaises(UnsupportedPrimitive) as ctx:
            decode_shape("PAD~STAR~0~0~20~20~1~~1~0~~0~gge9~0~~Y~0")
        self.assertTrue(ctx.exception.structural)

    def test_track(self):
        t = decode_shape("TRACK~10~1~GND~0 0 100 0 100 100~gge8~0")
        self.assertIsInstance(t, Track)
        self.assertEqual(len(t.vertices), 3)
        with self.assertRaises(MalformedShape):
            decode_shape("TRACK~10~1~GND~0 0 100~gge9~0")

    def test_via(self):
        v = decode_shape("VIA~500~300~24~GND~6~gge51~0")
        self.assertIsInstance(v, Via)
        self.assertEqual(v.drill, 12)

    def test_footprint_arc(self):
        a = decode_shape("ARC~1~3~~M 0 0 A 10 10 0 0 1 20 0~~gge11~0")
        self.assertIsInstance(a, Arc)
        self.assertAlmostEqual(a.bulge, 1.0)
        self.assertEqual(a.layer, 3)

    def test_copper_area(self):
        z = decode_shape("COPPERAREA~1~1~GND~M 0 0 L 10 0 L 10 10 Z~10~solid~gge53~spoke~yes~~0")
        self.assertEqual(z.region_type, "zone")
        self.assertEqual(z.clearance, 10)
        self.assertEqual(len(z.vertices), 3)

    def test_svg_node_model(self):
        model = decode_shape(SVG_NODE)
        self.assertEqual(model.name, "MODEL_1")
        self.assertEqual(model.offset, (100, 200, 5))
        self.assertEqual(model.rotation, (0, 0, 90))

    def test_svg_node_other_type(self):
        with self.assertRaises(UnsupportedPrimitive):
            decode_shape('SVGNODE~{"attrs":{"c_etype":"image"}}')
        with self.assertRaises(MalformedShape):
            decode_shape("SVGNODE~not json")

    def test_svg_node_attrs_not_object(self):
        for payload in ('{"attrs":"outline3D"}', '{"attrs":[1,2]}', "[1]", "null"):
            with self.assertRaises(MalformedShape):
                decode_shape("SVGNODE~" + payload)

    def test_lib_placement(self):
        raw = decode_shape(LIB)
        self.assertIsInstance(raw, RawPlacement)
        self.assertEqual((raw.x, raw.y, raw.rotation), (100, 200, 90))
        self.assertEqual(raw.attrs["package"], "SOT-23")
        self.assertEqual(raw.uid, "gge20")
        self.assertEqual(len(raw.shapes), 2)


if __name__ == "__main__":
    unittest.main()
