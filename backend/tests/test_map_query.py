import pytest

from servicezones.domain import BoundingBox, ShopCategory
from servicezones.exceptions import QueryValidationError
from servicezones.services.aggregation import AggregateRefresher
from servicezones.services.assignment import AreaAssigner
from servicezones.services.map_query import MapFilters, MapQueryEngine, validate_viewport

from factories import build_world, shop_seed, store_factory

WHOLE_VIEW = BoundingBox(min_lat=29.5, min_lon=30.5, max_lat=31.0, max_lon=32.5)


async def crowded_store(store, count=240):
    await build_world(store)
    seeds = []
    for i in range(count):
        # Spread over a grid inside Giza (EG01), with every fifth shop a car wash
        lat = 30.01 + (i // 20) * 0.035
        lon = 31.01 + (i % 20) * 0.02
        seeds.append(shop_seed(f"Garage {i}", lat, lon, "giza-governorate", category=2 if i % 5 == 0 else 1))
    seeds.append(shop_seed("Suez Tyres", 30.2, 31.7, "east-district", category=3))
    result = await AreaAssigner(store).assign_batch(seeds)
    assert result.inserted == count + 1
    return store


@pytest.mark.anyio
async def test_low_zoom_returns_one_row_per_region_not_per_shop(store):
    await crowded_store(store)
    await AggregateRefresher(store_factory(store)).run_once("test")

    response = await MapQueryEngine(store, zoom_threshold=9).query(WHOLE_VIEW, 6)

    assert response.mode == "aggregate"
    assert len(response.features) == 2
    counts = {f.name_en: f.shop_count for f in response.features}
    assert counts == {"Giza": 240, "Suez": 1}
    for feature in response.features:
        assert feature.type == "admin_aggregate"
        assert feature.last_updated_at is not None


@pytest.mark.anyio
async def test_aggregates_without_cached_counts_report_zero(store):
    await crowded_store(store, count=10)

    response = await MapQueryEngine(store).query(WHOLE_VIEW, 5)

    assert [f.shop_count for f in response.features] == [0, 0]


@pytest.mark.anyio
async def test_aggregates_only_include_regions_in_view(store):
    await crowded_store(store, count=10)
    east_only = BoundingBox(min_lat=30.1, min_lon=31.6, max_lat=30.4, max_lon=31.9)

    response = await MapQueryEngine(store).query(east_only, 5)

    assert [f.name_en for f in response.features] == ["Suez"]


@pytest.mark.anyio
async def test_high_zoom_returns_points_ordered_by_id_and_capped(store):
    await crowded_store(store)

    response = await MapQueryEngine(store, max_shops=50).query(WHOLE_VIEW, 12)

    assert response.mode == "points"
    assert response.truncated
    assert len(response.features) == 50
    ids = [f.id for f in response.features]
    assert ids == sorted(ids)
    for feature in response.features:
        assert WHOLE_VIEW.contains_point(feature.lat, feature.lon)


@pytest.mark.anyio
async def test_points_are_filtered_by_category(store):
    await crowded_store(store)

    response = await MapQueryEngine(store).query(WHOLE_VIEW, 14, MapFilters(category=ShopCategory.CAR_WASH))

    assert len(response.features) == 48
    assert not response.truncated
    assert {f.category for f in response.features} == {"car-wash"}


@pytest.mark.anyio
async def test_points_outside_the_viewport_are_excluded(store):
    await crowded_store(store, count=10)
    east_only = BoundingBox(min_lat=30.1, min_lon=31.6, max_lat=30.4, max_lon=31.9)

    response = await MapQueryEngine(store).query(east_only, 15)

    assert [f.name_en for f in response.features] == ["Suez Tyres"]


def test_validate_viewport_rejects_inverted_box_and_bad_zoom():
    with pytest.raises(QueryValidationError) as ctx:
        validate_viewport(31.0, 30.0, 30.0, 32.0, 30)

    assert ctx.value.error_code == "INVALID_BOUNDING_BOX"
    fields = {e["field"] for e in ctx.value.errors}
    assert fields == {"min_lat", "zoom_level"}


def test_validate_viewport_rejects_out_of_range_coordinates():
    with pytest.raises(QueryValidationError) as ctx:
        validate_viewport(-95.0, 30.0, 30.0, 190.0, 5)
    assert {e["field"] for e in ctx.value.errors} == {"min_lat", "max_lon"}


def test_validate_viewport_returns_bounding_box():
    assert validate_viewport(29.5, 30.5, 31.0, 32.5, 9) == WHOLE_VIEW
