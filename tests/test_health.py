"""
test_health.py — Liveness, root metadata and degraded-mode behaviour.

The conftest mocks MongoDB as disconnected and the lifespan never runs under
ASGITransport, so these tests see the API exactly as it looks when started
without a database or any registered services.
"""

import pytest


# ── /health ──────────────────────────────────────────────────────────────────

class TestHealth:

    async def test_alive_without_database(self, client):
        r = await client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "ok"
        assert data["database"] == "disconnected"

    async def test_payload_fields(self, client):
        data = (await client.get("/health")).json()
        assert data["version"] == "0.1.0"
        assert data["environment"] == "test"
        assert set(data) == {"status", "version", "database", "passport_store", "environment"}

    async def test_passport_store_unavailable_without_ledger(self, client):
        data = (await client.get("/health")).json()
        assert data["passport_store"] == "unavailable"

    async def test_reports_configured_backend(self, client, monkeypatch):
        from airwatch.core import services as services_module
        from airwatch.core.config import settings
        from airwatch.services.passport_ledger import PassportLedger
        from airwatch.services.passport_store import InMemoryPassportStore

        monkeypatch.setattr(services_module.registry, "passport_ledger", PassportLedger(InMemoryPassportStore()))
        monkeypatch.setattr(settings, "passport_store_backend", "memory")

        data = (await client.get("/health")).json()
        assert data["passport_store"] == "memory"

    async def test_failed_ping_reports_disconnected(self, client, monkeypatch):
        import airwatch.core.database as db_module

        class Admin:
            async def command(self, _name):
                raise ConnectionError("server selection timeout")

        class Client:
            admin = Admin()

        monkeypatch.setattr(db_module.db_client, "client", Client())
        r = await client.get("/health")
        assert r.status_code == 200
        assert r.json()["database"] == "disconnected"


# ── Root, docs, unknown routes ───────────────────────────────────────────────

class TestAppSurface:

    async def test_root_metadata(self, client):
        r = await client.get("/")
        assert r.status_code == 200
        assert r.json() == {
            "name": "AirWatch API",
            "version": "0.1.0",
            "status": "running",
            "environment": "test",
            "docs": "/docs",
        }

    async def test_docs_served_outside_production(self, client):
        assert (await client.get("/docs")).status_code == 200

    async def test_unknown_route_is_404(self, client):
        assert (await client.get("/api/v1/nowhere")).status_code == 404


# ── Degraded mode ────────────────────────────────────────────────────────────

class TestDegradedMode:

    @pytest.mark.parametrize("path", [
        "/api/v1/air/search?lat=3.139&lon=101.6869",
        "/api/v1/air/point?lat=3.139&lon=101.6869",
        "/api/v1/healthcare/search?lat=3.139&lon=101.6869",
    ])
    async def test_unregistered_aggregators_return_503(self, client, path):
        assert (await client.get(path)).status_code == 503

    async def test_passport_without_store_returns_503(self, client):
        r = await client.get("/api/v1/passport/u-1")
        assert r.status_code == 503
        assert r.json()["detail"] == "Exposure not recorded: passport store unavailable"
