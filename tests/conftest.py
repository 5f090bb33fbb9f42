"""
pytest configuration and shared fixtures for the AirWatch API tests.

Key concern: tests must not require a live MongoDB or reach any upstream
provider. We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops and
     setting db_client.client = None, so the health check reports
     "disconnected" (a valid test-mode state).
  2. Swapping the aggregator / ledger dependencies for instances built on
     StubAdapter and InMemoryPassportStore via app.dependency_overrides.
  3. Resetting the slowapi limiter between tests so rate limits never leak.
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WAQI_TOKEN", "")
os.environ.setdefault("ADMIN_TOKEN", "")

from airwatch.core.errors import ProviderUnavailable  # noqa: E402
from airwatch.models.poi import BoundingBox, GeoPoint, PoiCategory, PoiRecord  # noqa: E402
from airwatch.providers.base import ProviderAdapter, ProviderPage  # noqa: E402


# ── Stub provider ────────────────────────────────────────────────────────────

def make_record(
    name: str,
    lat: float,
    lon: float,
    source: str = "stub",
    category: PoiCategory = PoiCategory.AIR_QUALITY_STATION,
    **metrics: Optional[float],
) -> PoiRecord:
    return PoiRecord(
        id=f"{source}:{name.lower().replace(' ', '-')}",
        name=name,
        location=GeoPoint(lat=lat, lon=lon),
        category=category,
        metrics=dict(metrics),
        last_updated=datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc),
        source=source,
    )


class StubAdapter(ProviderAdapter):
    """
    In-memory adapter. `records` is served in pages of `limit`; `fail=True`
    makes every call raise ProviderUnavailable (absorbed by the base class).
    """

    def __init__(self, source: str, records=(), fail: bool = False, delay: float = 0.0):
        super().__init__(http=None)
        self.source = source
        self.records = list(records)
        self.fail = fail
        self.delay = delay
        self.calls: list[tuple[BoundingBox, int, int]] = []
        self.point_calls = 0

    async def _fetch_page(self, box: BoundingBox, limit: int, page: int) -> ProviderPage:
        self.calls.append((box, limit, page))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderUnavailable(self.source, "HTTP 503")
        start = (page - 1) * limit
        chunk = self.records[start:start + limit]
        return ProviderPage(
            records=chunk,
            total_available=len(self.records),
            has_more=start + limit < len(self.records),
        )

    async def _fetch_point(self, point: GeoPoint, radius_m: float, limit: int) -> list[PoiRecord]:
        self.point_calls += 1
        if self.fail:
            raise ProviderUnavailable(self.source, "HTTP 503")
        return self.records[:limit]


@pytest.fixture()
def stub_adapter_cls():
    return StubAdapter


@pytest.fixture()
def record_factory():
    return make_record


# ── App fixtures ─────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo / close_mongo_connection → no-op AsyncMock
    - db_client.client / db_client.db → None
    """
    with (
        patch("airwatch.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("airwatch.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import airwatch.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture(autouse=True)
def reset_rate_limits():
    from airwatch.core.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 — mock_db must run first
    """
    HTTPX async test client wired to the FastAPI app.

    ASGITransport does not run the lifespan, so no real services are built;
    route tests install their own via app.dependency_overrides.
    """
    from airwatch.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
