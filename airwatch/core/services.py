"""
Service wiring — one ServiceRegistry per running app.

The lifespan in main.py calls build_services() on startup and
close_services() on shutdown. Routes never touch the registry directly:
they depend on get_air_aggregator / get_facility_aggregator /
get_passport_ledger, which tests replace via app.dependency_overrides.

  http_client        — shared httpx.AsyncClient for every provider adapter
  air_aggregator     — WAQI + OpenAQ stations, live-reading cache
  facility_aggregator — Overpass healthcare POIs, facility cache
  passport_ledger    — None when the configured store is unreachable
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import HTTPException

from airwatch.core import database as db_module
from airwatch.core.config import Settings, settings
from airwatch.providers.openaq_adapter import OpenAqAdapter
from airwatch.providers.overpass_adapter import OverpassAdapter
from airwatch.providers.waqi_adapter import WaqiAdapter
from airwatch.services.aggregator import Aggregator, CachedQuery
from airwatch.services.passport_ledger import PassportLedger
from airwatch.services.passport_store import InMemoryPassportStore, MongoPassportStore
from airwatch.services.ttl_cache import TtlCache

logger = logging.getLogger(__name__)

USER_AGENT = "AirWatch/0.1 (+https://github.com/airwatch)"


@dataclass
class ServiceRegistry:
    http_client: Optional[httpx.AsyncClient] = None
    air_aggregator: Optional[Aggregator] = None
    facility_aggregator: Optional[Aggregator] = None
    passport_ledger: Optional[PassportLedger] = None


# Module-level singleton, populated by the lifespan
registry = ServiceRegistry()


def build_passport_ledger(config: Settings) -> Optional[PassportLedger]:
    if config.passport_store_backend == "memory":
        store = InMemoryPassportStore()
        logger.info("Passport store: in-memory (data is lost on restart)")
    elif db_module.db_client.db is not None:
        store = MongoPassportStore(db_module.db_client.db)
        logger.info("Passport store: MongoDB")
    else:
        logger.warning("Passport store unavailable — passport endpoints will return 503.")
        return None
    return PassportLedger(
        store,
        timezone=config.passport_timezone,
        base_points=config.passport_base_points,
    )


def build_services(config: Settings = settings) -> ServiceRegistry:
    """Create the shared client, caches, aggregators and ledger."""
    http_client = httpx.AsyncClient(
        timeout=config.http_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )

    registry.http_client = http_client
    registry.air_aggregator = Aggregator(
        [
            WaqiAdapter(http_client, config.waqi_token, config.waqi_base_url),
            OpenAqAdapter(http_client, config.openaq_api_key, config.openaq_base_url),
        ],
        TtlCache[CachedQuery](config.cache_ttl_live_seconds),
        max_pages=config.max_pages,
        adapter_timeout=config.provider_timeout_seconds,
        name="air",
    )
    registry.facility_aggregator = Aggregator(
        [OverpassAdapter(http_client, config.overpass_url)],
        TtlCache[CachedQuery](config.cache_ttl_facility_seconds),
        max_pages=1,
        adapter_timeout=config.provider_timeout_seconds,
        name="healthcare",
    )
    registry.passport_ledger = build_passport_ledger(config)
    return registry


async def close_services() -> None:
    if registry.http_client is not None:
        await registry.http_client.aclose()
    registry.http_client = None
    registry.air_aggregator = None
    registry.facility_aggregator = None
    registry.passport_ledger = None


# ── FastAPI dependencies ─────────────────────────────────────────────────────

def get_air_aggregator() -> Aggregator:
    if registry.air_aggregator is None:
        raise HTTPException(status_code=503, detail="Air quality service not initialised")
    return registry.air_aggregator


def get_facility_aggregator() -> Aggregator:
    if registry.facility_aggregator is None:
        raise HTTPException(status_code=503, detail="Healthcare service not initialised")
    return registry.facility_aggregator


def get_passport_ledger() -> PassportLedger:
    if registry.passport_ledger is None:
        raise HTTPException(
            status_code=503,
            detail="Exposure not recorded: passport store unavailable",
        )
    return registry.passport_ledger
