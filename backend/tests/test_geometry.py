from __future__ import annotations

from shapely.geometry import LinearRing, Point, Polygon

from geoindex.solr.geometry import (
    MAX_COORDINATES,
    _coordinate_count,
    geometry_to_wkt,
    process_geometry,
    wkt_to_geometry,
)


def test_wkt_is_two_dimensional():
    assert geometry_to_wkt(Point(1, 2, 3)) == "POINT (1 2)"


def test_linear_ring_is_written_as_linestring():
    ring = LinearRing([(0, 0), (1, 0), (1, 1), (0, 0)])
    assert geometry_to_wkt(ring).startswith("LINESTRING")


def test_small_geometry_is_kept():
    poly = Polygon([(0, 0), (10, 0), (10, 10), (0, 10)])
    assert wkt_to_geometry(process_geometry(poly)).equals(poly)


def test_large_geometry_is_simplified():
    circle = Point(0, 0).buffer(1000, quad_segs=500)
    assert _coordinate_count(circle) > MAX_COORDINATES

    simplified = wkt_to_geometry(process_geometry(circle))
    assert simplified.geom_type == "Polygon"
    assert _coordinate_count(simplified) <= MAX_COORDINATES
    # topology preserving, so the area barely changes
    assert abs(simplified.area - circle.area) / circle.area < 0.01


def test_simplification_can_be_skipped():
    circle = Point(0, 0).buffer(1000, quad_segs=500)
    assert _coordinate_count(wkt_to_geometry(process_geometry(circle, simplify_geometry=False))) > MAX_COORDINATES


def test_non_geometry_values():
    assert process_geometry(None) is None
    assert process_geometry("POINT (1 1)") == "POINT (1 1)"


def test_invalid_wkt_is_none():
    assert wkt_to_geometry("not a geometry") is None
    assert wkt_to_geometry("") is None
