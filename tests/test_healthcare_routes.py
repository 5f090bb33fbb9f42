"""
test_healthcare_routes.py — Tests for /api/v1/healthcare/search and /directions.

The facility aggregator runs on a StubAdapter seeded with OSM-style records.
"""

import pytest

from airwatch.models.poi import GeoPoint, PoiCategory
from airwatch.routes.healthcare import directions_url, waze_url
from airwatch.services.aggregator import Aggregator
from airwatch.services.ttl_cache import TtlCache

KL = {"lat": 3.139, "lon": 101.6869}


@pytest.fixture()
def facilities(record_factory):
    return [
        record_factory("Hospital Kuala Lumpur", 3.1718, 101.7000, source="osm",
                       category=PoiCategory.HOSPITAL, emergency=1.0),
        record_factory("Prince Court Medical Centre", 3.1490, 101.7310, source="osm",
                       category=PoiCategory.HOSPITAL, emergency=0.0),
        record_factory("Klinik Kesihatan Jalan Perak", 3.1500, 101.6950, source="osm",
                       category=PoiCategory.CLINIC, emergency=0.0),
        record_factory("Klinik Bandar", 3.1420, 101.6900, source="osm",
                       category=PoiCategory.HEALTH_CENTER, emergency=0.0),
        record_factory("Farmasi Alpro", 3.1395, 101.6875, source="osm",
                       category=PoiCategory.PHARMACY, emergency=0.0),
    ]


@pytest.fixture()
def osm(stub_adapter_cls, facilities):
    return stub_adapter_cls("osm", facilities)


@pytest.fixture()
async def hc_client(client, osm):
    from airwatch.core.services import get_facility_aggregator
    from airwatch.main import app

    aggregator = Aggregator([osm], TtlCache(ttl_seconds=600), max_pages=1, name="healthcare")
    app.dependency_overrides[get_facility_aggregator] = lambda: aggregator
    yield client


# ── Search types ─────────────────────────────────────────────────────────────

class TestFacilitySearch:

    async def test_all_nearest_first(self, hc_client):
        r = await hc_client.post("/api/v1/healthcare/search", json={**KL, "radius_m": 10000})
        assert r.status_code == 200
        data = r.json()

        names = [f["name"] for f in data["facilities"]]
        assert names[0] == "Farmasi Alpro"
        assert len(names) == 5
        assert data["message"] == "Found 5 healthcare facilities within 10km"
        assert data["search_radius_m"] == 10000
        assert data["search_location"] == {"lat": 3.139, "lon": 101.6869}

    async def test_closest_hospital(self, hc_client):
        r = await hc_client.post("/api/v1/healthcare/search", json={**KL, "type": "hospital", "radius_m": 10000})
        data = r.json()
        assert [f["name"] for f in data["facilities"]] == ["Hospital Kuala Lumpur"]
        assert data["message"].startswith("Found closest hospital: Hospital Kuala Lumpur (")

    async def test_closest_clinic_includes_health_centres(self, hc_client):
        r = await hc_client.post("/api/v1/healthcare/search", json={**KL, "type": "clinic"})
        data = r.json()
        assert [f["name"] for f in data["facilities"]] == ["Klinik Bandar"]
        assert data["message"].startswith("Found closest clinic: Klinik Bandar")

    async def test_emergency_departments_first(self, hc_client):
        r = await hc_client.post("/api/v1/healthcare/search", json={**KL, "type": "emergency", "radius_m": 10000})
        data = r.json()
        assert [f["name"] for f in data["facilities"]] == [
            "Hospital Kuala Lumpur",
            "Prince Court Medical Centre",
        ]
        assert data["message"] == "Found 2 emergency facilities"

    async def test_no_hospital_in_range(self, hc_client):
        r = await hc_client.post("/api/v1/healthcare/search", json={**KL, "type": "hospital", "radius_m": 500})
        data = r.json()
        assert data["facilities"] == []
        assert data["message"] == "No hospitals found within the specified radius."

    async def test_lng_alias_accepted(self, hc_client):
        r = await hc_client.post("/api/v1/healthcare/search", json={"lat": 3.139, "lng": 101.6869})
        assert r.status_code == 200
        assert r.json()["search_location"]["lon"] == 101.6869

    async def test_radius_and_limit_clamped(self, hc_client, osm):
        r = await hc_client.post(
            "/api/v1/healthcare/search", json={**KL, "radius_m": 250000, "limit": 500}
        )
        assert r.status_code == 200
        assert r.json()["search_radius_m"] == 50000
        assert osm.calls[0][1] == 50

    async def test_directory_unavailable(self, client, stub_adapter_cls):
        from airwatch.core.services import get_facility_aggregator
        from airwatch.main import app

        aggregator = Aggregator([stub_adapter_cls("osm", fail=True)], TtlCache(ttl_seconds=600))
        app.dependency_overrides[get_facility_aggregator] = lambda: aggregator

        r = await client.post("/api/v1/healthcare/search", json=KL)
        assert r.status_code == 200
        data = r.json()
        assert data["facilities"] == []
        assert data["coverage"]["no_data"] is True
        assert "temporarily unavailable" in data["message"]

    async def test_get_variant_with_lng(self, hc_client):
        r = await hc_client.get(
            "/api/v1/healthcare/search",
            params={"lat": 3.139, "lng": 101.6869, "type": "hospital", "radius_m": 10000},
        )
        assert r.status_code == 200
        assert r.json()["facilities"][0]["name"] == "Hospital Kuala Lumpur"

    async def test_get_variant_requires_longitude(self, hc_client):
        r = await hc_client.get("/api/v1/healthcare/search", params={"lat": 3.139})
        assert r.status_code == 422

    @pytest.mark.parametrize("body", [
        {"lat": -91, "lon": 101.6869},
        {**KL, "type": "dentist"},
        {**KL, "radius_m": 0},
    ])
    async def test_invalid_input(self, hc_client, body):
        r = await hc_client.post("/api/v1/healthcare/search", json=body)
        assert r.status_code == 422


# ── Directions ───────────────────────────────────────────────────────────────

class TestDirections:

    def test_url_builders(self):
        origin = GeoPoint(lat=3.139, lon=101.6869)
        dest = GeoPoint(lat=3.1718, lon=101.7)
        assert directions_url(origin, dest) == (
            "https://www.google.com/maps/dir/?api=1&origin=3.139,101.6869"
            "&destination=3.1718,101.7&travelmode=driving"
        )
        assert waze_url(dest) == "https://waze.com/ul?ll=3.1718,101.7&navigate=yes"

    async def test_directions_endpoint(self, client):
        r = await client.get(
            "/api/v1/healthcare/directions",
            params={"from_lat": 3.139, "from_lon": 101.6869, "to_lat": 3.1718, "to_lon": 101.7},
        )
        assert r.status_code == 200
        data = r.json()
        assert "destination=3.1718,101.7" in data["google_maps_url"]
        assert data["waze_url"].endswith("navigate=yes")
