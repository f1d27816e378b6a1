import math

import pytest
from shapely.geometry import MultiPolygon, Point, Polygon, shape

from servicezones.exceptions import GeometryDegradation
from servicezones.services import geometry
from servicezones.utils.geo import bbox_around, haversine_meters
from servicezones.utils.slug import composite_shop_slug, next_free_slug, slugify

from factories import square


def test_normalize_wraps_polygon_in_multipolygon():
    result = geometry.normalize(shape(square(31.0, 30.0)))
    assert isinstance(result, MultiPolygon)
    assert len(result.geoms) == 1


def test_normalize_keeps_non_polygonal_input_and_warns():
    with pytest.warns(GeometryDegradation):
        result = geometry.normalize(Point(31.0, 30.0))
    assert result.equals(Point(31.0, 30.0))


def test_simplify_never_adds_vertices():
    detailed = Point(31.2, 30.1).buffer(0.2, 64)
    for tolerance in (0.0005, 0.001, 0.005, 0.01):
        simplified = geometry.simplify(detailed, tolerance)
        assert isinstance(simplified, MultiPolygon)
        assert geometry.vertex_count(simplified) <= geometry.vertex_count(detailed)


def test_simplify_with_zero_tolerance_returns_normalized_input():
    detailed = shape(square(31.0, 30.0))
    assert geometry.simplify(detailed, 0).equals(MultiPolygon([detailed]))


def test_repair_fixes_self_intersecting_ring():
    bowtie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1), (0, 0)])
    assert not bowtie.is_valid
    repaired = geometry.repair(bowtie)
    assert repaired is not None
    assert repaired.is_valid
    assert repaired.area > 0


def test_union_of_adjacent_parts_covers_every_part():
    parts = [shape(square(31.0, 30.0)), shape(square(31.25, 30.0)), shape(square(31.0, 30.25))]
    merged = geometry.union(parts)

    assert isinstance(merged, MultiPolygon)
    for part in parts:
        assert merged.covers(part.representative_point())
    assert merged.area == pytest.approx(sum(p.area for p in parts))


def test_union_skips_missing_parts():
    assert geometry.union([]) is None
    assert geometry.union([None]) is None
    single = geometry.union([None, shape(square(31.0, 30.0))])
    assert isinstance(single, MultiPolygon)


def test_from_geojson_returns_none_for_unreadable_input():
    assert geometry.from_geojson(None) is None
    assert geometry.from_geojson({"type": "Hexagon", "coordinates": []}) is None


def test_geodesic_area_of_one_degree_cell_at_equator():
    area = geometry.geodesic_area_m2(shape(square(0.0, 0.0, 1.0)))
    assert 1.2e10 < area < 1.25e10


def test_haversine_one_degree_of_longitude_at_equator():
    assert haversine_meters(0.0, 0.0, 0.0, 1.0) == pytest.approx(2 * math.pi * 6371008.8 / 360, abs=0.01)


def test_bbox_around_contains_the_circle():
    box = bbox_around(30.0, 31.0, 5000)
    for bearing in range(0, 360, 15):
        # Points just inside the radius along several bearings
        dlat = math.degrees(4999 * math.cos(math.radians(bearing)) / 6371008.8)
        dlon = math.degrees(4999 * math.sin(math.radians(bearing)) / (6371008.8 * math.cos(math.radians(30.0))))
        assert box.contains_point(30.0 + dlat, 31.0 + dlon)


def test_slugify():
    assert slugify("  Al-Haram   Street! ") == "al-haram-street"
    assert slugify("Café Auto") == "cafe-auto"
    assert len(slugify("x" * 400)) == 150


def test_composite_and_next_free_slug():
    base = composite_shop_slug("quick-fix", "central-zone")
    assert base == "quick-fix-in-central-zone"
    assert next_free_slug(base, set()) == base
    assert next_free_slug(base, {base, f"{base}-1"}) == f"{base}-2"
    long_slug = composite_shop_slug("y" * 300, "central-zone")
    assert long_slug.endswith("-in-central-zone")
    assert len(long_slug) <= 250
