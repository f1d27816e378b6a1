import asyncio

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from servicezones.api.v1.admin import normalize_ip
from servicezones.config import Settings, get_settings
from servicezones.main import app
from servicezones.services.aggregation import AggregateRefresher, get_refresher
from servicezones.services.assignment import AreaAssigner
from servicezones.services.store import get_store
from servicezones.services.store_memory import InMemoryBoundaryStore

from factories import build_world, shop_seed, store_factory

TRIGGER = "/api/v1/admin/tasks/aggregate-shop-counts"


class FakeRefresher:
    def __init__(self, starts):
        self.starts = starts
        self.triggers = []

    async def try_trigger(self, trigger="admin"):
        self.triggers.append(trigger)
        return self.starts


async def _seed(store):
    await build_world(store)
    await AreaAssigner(store).assign_batch([
        shop_seed("Quick Fix", 30.1, 31.1, "central-zone", category="general-maintenance"),
        shop_seed("Auto Spa", 30.11, 31.1, "central-zone", category="car-wash"),
        shop_seed("Suez Tyres", 30.2, 31.7, "east-district", category="tire-services"),
    ])
    await AggregateRefresher(store_factory(store)).run_once("test")


@pytest.fixture
def seeded():
    store = InMemoryBoundaryStore()
    asyncio.run(_seed(store))
    return store


@pytest.fixture
def client(seeded):
    app.dependency_overrides[get_store] = lambda: seeded
    yield TestClient(app)
    app.dependency_overrides.clear()


def admin_settings(**overrides):
    return lambda: Settings(**{"ADMIN_TRIGGER_KEY": "s3cret", "ALLOWED_ADMIN_TRIGGER_IPS": "", **overrides})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_map_data_switches_on_zoom(client):
    params = {"minLat": 29.5, "minLon": 30.5, "maxLat": 31.0, "maxLon": 32.5}

    low = client.get("/api/v1/map-data", params={**params, "zoomLevel": 5}).json()
    high = client.get("/api/v1/map-data", params={**params, "zoomLevel": 14, "category": "car-wash"}).json()

    assert low["mode"] == "aggregate"
    assert sorted(f["shop_count"] for f in low["features"]) == [1, 2]
    assert high["mode"] == "points"
    assert [f["name_en"] for f in high["features"]] == ["Auto Spa"]


def test_map_data_rejects_bad_viewport(client):
    response = client.get(
        "/api/v1/map-data",
        params={"minLat": 31.0, "minLon": 30.5, "maxLat": 29.5, "maxLon": 32.5, "zoomLevel": 5},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "INVALID_BOUNDING_BOX"


def test_map_data_rejects_unknown_category(client):
    response = client.get(
        "/api/v1/map-data",
        params={"minLat": 29.5, "minLon": 30.5, "maxLat": 31.0, "maxLon": 32.5, "zoomLevel": 14,
                "category": "spaceships"},
    )
    assert response.status_code == 400


def test_nearby_shops(client):
    response = client.get("/api/v1/shops/nearby", params={"lat": 30.1, "lon": 31.1, "radius": 2000})

    assert response.status_code == 200
    body = response.json()
    assert [item["name_en"] for item in body["items"]] == ["Quick Fix", "Auto Spa"]
    assert body["items"][1]["category"] == "car-wash"
    assert all(item["distance_meters"] <= 2000 for item in body["items"])
    assert body["total_count"] == 2
    assert body["effective_radius_meters"] == 2000


def test_nearby_shops_validation_and_unknown_area(client):
    bad_sort = client.get("/api/v1/shops/nearby", params={"lat": 30.1, "lon": 31.1, "sort": "rating"})
    unknown = client.get("/api/v1/shops/nearby", params={"lat": 30.1, "lon": 31.1, "areaSlug": "atlantis"})

    assert bad_sort.status_code == 400
    assert bad_sort.json()["detail"]["error_code"] == "INVALID_QUERY"
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["error_code"] == "AREA_NOT_FOUND"


def test_area_category_shops(client):
    response = client.get("/api/v1/operational-areas/central-zone/categories/car-wash/shops")
    missing = client.get("/api/v1/operational-areas/central-zone/categories/spaceships/shops")

    assert response.status_code == 200
    assert [item["name_en"] for item in response.json()["items"]] == ["Auto Spa"]
    assert missing.status_code == 404
    assert missing.json()["detail"]["error_code"] == "CATEGORY_NOT_FOUND"


def test_area_shop_detail(client):
    listing = client.get("/api/v1/operational-areas/central-zone/categories/car-wash/shops").json()
    shop_id = listing["items"][0]["id"]

    found = client.get(f"/api/v1/operational-areas/central-zone/shops/{shop_id}")
    wrong_area = client.get(f"/api/v1/operational-areas/east-district/shops/{shop_id}")

    assert found.status_code == 200
    assert found.json()["slug"] == "auto-spa-in-central-zone"
    assert wrong_area.status_code == 404


def test_area_subcategories(client):
    everything = client.get("/api/v1/operational-areas/central-zone/subcategories").json()
    maintenance = client.get(
        "/api/v1/operational-areas/central-zone/subcategories", params={"concept": "maintenance"}
    ).json()
    unknown = client.get("/api/v1/operational-areas/atlantis/subcategories")

    assert {item["slug"]: item["shop_count"] for item in everything["items"]} == {
        "general-maintenance": 1,
        "car-wash": 1,
    }
    assert {item["concept"] for item in maintenance["items"]} == {"maintenance"}
    assert unknown.status_code == 404


def test_operational_areas_for_map(client):
    areas = client.get("/api/v1/operational-areas-for-map").json()
    zones = client.get("/api/v1/operational-areas-for-map", params={"displayLevel": "Zone"}).json()

    assert [a["slug"] for a in areas] == ["central-zone", "east-district", "giza-governorate"]
    assert all(a["geometry"]["type"] == "MultiPolygon" for a in areas)
    assert {a["slug"]: a["geometry_source"] for a in areas}["central-zone"] == "custom"
    assert [a["slug"] for a in zones] == ["central-zone"]


def test_region_boundaries(client):
    body = client.get("/api/v1/regions/boundaries", params={"level": 2}).json()

    assert body["type"] == "FeatureCollection"
    assert len(body["features"]) == 5
    assert body["features"][0]["properties"]["official_code"] == "EG0101"


def test_admin_trigger_requires_configured_key(client):
    app.dependency_overrides[get_settings] = admin_settings(ADMIN_TRIGGER_KEY=None)
    app.dependency_overrides[get_refresher] = lambda: FakeRefresher(True)

    response = client.post(TRIGGER, headers={"X-Admin-Trigger-Key": "anything"})

    assert response.status_code == 500


def test_admin_trigger_rejects_missing_and_wrong_key(client):
    app.dependency_overrides[get_settings] = admin_settings()
    refresher = FakeRefresher(True)
    app.dependency_overrides[get_refresher] = lambda: refresher

    missing = client.post(TRIGGER)
    wrong = client.post(TRIGGER, headers={"X-Admin-Trigger-Key": "guess"})

    assert missing.status_code == 401
    assert wrong.status_code == 403
    assert refresher.triggers == []


def test_admin_trigger_starts_a_run(client):
    app.dependency_overrides[get_settings] = admin_settings()
    refresher = FakeRefresher(True)
    app.dependency_overrides[get_refresher] = lambda: refresher

    response = client.post(TRIGGER, headers={"X-Admin-Trigger-Key": "s3cret"})

    assert response.status_code == 202
    assert response.json() == {"message": "Shop count aggregation process initiated."}
    assert refresher.triggers == ["admin"]


def test_admin_trigger_conflicts_while_running(client):
    app.dependency_overrides[get_settings] = admin_settings()
    app.dependency_overrides[get_refresher] = lambda: FakeRefresher(False)

    response = client.post(TRIGGER, headers={"X-Admin-Trigger-Key": "s3cret"})

    assert response.status_code == 409
    assert response.json()["detail"]["error_code"] == "AGGREGATION_IN_PROGRESS"


def test_admin_trigger_reports_unreachable_lock(client):
    class UnreachableRefresher:
        async def try_trigger(self, trigger="admin"):
            raise RedisConnectionError("connection refused")

    app.dependency_overrides[get_settings] = admin_settings()
    app.dependency_overrides[get_refresher] = lambda: UnreachableRefresher()

    response = client.post(TRIGGER, headers={"X-Admin-Trigger-Key": "s3cret"})

    assert response.status_code == 503
    assert response.json()["detail"]["error_code"] == "AGGREGATION_LOCK_UNAVAILABLE"


def test_admin_trigger_enforces_ip_allow_list(client):
    app.dependency_overrides[get_settings] = admin_settings(ALLOWED_ADMIN_TRIGGER_IPS="10.0.0.1, ::ffff:10.0.0.2")
    app.dependency_overrides[get_refresher] = lambda: FakeRefresher(True)

    response = client.post(TRIGGER, headers={"X-Admin-Trigger-Key": "s3cret"})

    assert response.status_code == 403
    assert response.json()["detail"]["error_code"] == "ADMIN_IP_FORBIDDEN"


def test_normalize_ip():
    assert normalize_ip("::ffff:10.0.0.2") == "10.0.0.2"
    assert normalize_ip(" 10.0.0.1 ") == "10.0.0.1"
    assert normalize_ip("2001:db8::1") == "2001:db8::1"
    assert normalize_ip("testclient") is None
