import pytest

from servicezones.config import get_settings
from servicezones.domain import AdminDerivedGeometry, CustomGeometry, GeometrySource
from servicezones.schemas.area import AreaDefinition
from servicezones.services import geometry
from servicezones.services.assignment import AreaAssigner
from servicezones.services.synthesis import AreaSynthesizer, area_slug, load_area_definitions

from factories import area_definitions, build_boundaries, shop_seed


@pytest.mark.anyio
async def test_composite_area_from_three_parts(store):
    await build_boundaries(store)
    definition = area_definitions()[1]

    result = await AreaSynthesizer(store).synthesize([definition])

    assert result.inserted == 1
    assert await store.count_areas() == 1
    area = await store.get_area_by_slug("central-zone")
    assert area.slug == area_slug(AreaDefinition.model_validate(definition))
    assert area.geometry_source == GeometrySource.CUSTOM
    assert isinstance(area.geometry, CustomGeometry)
    assert area.display_level == "Zone"


@pytest.mark.anyio
async def test_composite_geometry_is_the_union_of_its_parts(store):
    await build_boundaries(store)
    await AreaSynthesizer(store).synthesize([area_definitions()[1]])

    area = await store.get_area_by_slug("central-zone")
    parts = (await store.get_boundaries_by_codes(2, ["EG0101", "EG0102", "EG0103"])).values()
    merged = area.geometry.boundary

    for part in parts:
        assert merged.covers(part.boundary.representative_point())
    assert geometry.geodesic_area_m2(merged) == pytest.approx(
        sum(geometry.geodesic_area_m2(p.boundary) for p in parts), rel=1e-3
    )
    assert geometry.vertex_count(area.geometry.simplified_boundary) <= geometry.vertex_count(merged)
    assert merged.covers(geometry.centroid_of(merged))


@pytest.mark.anyio
async def test_composite_context_points_at_level1_ancestor(store):
    await build_boundaries(store)
    definition = dict(area_definitions()[1])
    definition.pop("context_code")

    await AreaSynthesizer(store).synthesize([definition])

    area = await store.get_area_by_slug("central-zone")
    giza = (await store.get_boundaries_by_codes(1, ["EG01"]))["EG01"]
    assert area.primary_administrative_boundary_id == giza.id


@pytest.mark.anyio
async def test_whole_region_and_direct_areas_reference_their_boundary(store):
    await build_boundaries(store)
    definitions = area_definitions()

    await AreaSynthesizer(store).synthesize([definitions[0], definitions[2]])

    settings = get_settings()
    giza = await store.get_area_by_slug("giza-governorate")
    assert isinstance(giza.geometry, AdminDerivedGeometry)
    assert giza.display_level == "Governorate"
    boundary = await store.get_boundary(giza.primary_administrative_boundary_id)
    assert boundary.official_code == "EG01"
    assert settings.MIN_DEFAULT_SEARCH_RADIUS_METERS <= giza.default_search_radius_meters
    assert giza.default_search_radius_meters <= settings.MAX_DEFAULT_SEARCH_RADIUS_METERS
    assert giza.default_search_radius_meters % 500 == 0

    east = await store.get_area_by_slug("east-district")
    assert east.geometry_source == GeometrySource.DERIVED_FROM_ADMIN
    boundary = await store.get_boundary(east.primary_administrative_boundary_id)
    assert boundary.official_code == "EG0201"
    assert (await store.resolve_area_geometry(east)).equals(boundary.boundary)


def test_whole_region_slug_is_not_doubled():
    plain = AreaDefinition(kind="whole_region", name_en="Giza", codes=["EG01"])
    suffixed = AreaDefinition(kind="whole_region", name_en="Giza Governorate", codes=["EG01"])
    explicit = AreaDefinition(kind="whole_region", name_en="Giza", slug="Greater Giza", codes=["EG01"])

    assert area_slug(plain) == "giza-governorate"
    assert area_slug(suffixed) == "giza-governorate"
    assert area_slug(explicit) == "greater-giza"


@pytest.mark.anyio
async def test_composite_with_some_missing_codes_is_still_created(store):
    await build_boundaries(store)
    definition = {"kind": "composite", "name_en": "West Zone", "codes": ["EG0101", "EG0999"]}

    result = await AreaSynthesizer(store).synthesize([definition])

    assert result.inserted == 1
    assert await store.get_area_by_slug("west-zone") is not None


@pytest.mark.anyio
async def test_unresolvable_and_invalid_definitions_are_skipped(store):
    await build_boundaries(store)
    definitions = [
        {"kind": "composite", "name_en": "Ghost Zone", "codes": ["EG0998", "EG0999"]},
        {"kind": "whole_region", "name_en": "Two Regions", "codes": ["EG01", "EG02"]},
        {"kind": "direct", "name_en": "Missing District", "codes": ["EG0999"]},
        area_definitions()[2],
    ]

    result = await AreaSynthesizer(store).synthesize(definitions)

    assert result.inserted == 1
    assert result.skipped == 3
    assert await store.area_slugs() == {"east-district"}


@pytest.mark.anyio
async def test_rerun_is_a_noop_and_never_duplicates_slugs(store):
    await build_boundaries(store)
    synthesizer = AreaSynthesizer(store)
    await synthesizer.synthesize(area_definitions())

    again = await synthesizer.synthesize(area_definitions())

    assert again.noop
    assert await store.count_areas() == 3


@pytest.mark.anyio
async def test_rerun_creates_only_missing_areas(store):
    await build_boundaries(store)
    synthesizer = AreaSynthesizer(store)
    await synthesizer.synthesize(area_definitions()[:1])

    result = await synthesizer.synthesize(area_definitions())

    assert not result.noop
    assert result.inserted == 2
    assert result.skipped == 1
    assert await store.count_areas() == 3


@pytest.mark.anyio
async def test_force_reset_deletes_shops_and_recreates_areas(store):
    await build_boundaries(store)
    synthesizer = AreaSynthesizer(store)
    await synthesizer.synthesize(area_definitions())
    await AreaAssigner(store).assign_batch([shop_seed("Quick Fix", 30.1, 31.1, "central-zone")])

    result = await synthesizer.synthesize(area_definitions(), force_reset=True)

    assert result.inserted == 3
    assert await store.count_areas() == 3
    area = await store.get_area_by_slug("central-zone")
    assert await store.shop_slugs_in_area(area.id) == set()


def test_load_area_definitions_requires_a_list(tmp_path):
    path = tmp_path / "areas.json"
    path.write_text('{"kind": "direct"}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_area_definitions(path)
