"""
air_quality.py — Air-quality station search routes.

Routes:
  POST /api/v1/air/search  — radius or bounding-box search across WAQI + OpenAQ (60/minute)
  GET  /api/v1/air/search  — same query as query parameters (60/minute)
  GET  /api/v1/air/point   — single nearest station with readings (WAQI, then OpenAQ)

HOW A SEARCH IS ANSWERED
────────────────────────
1. `bounds` (or all four of north/south/east/west on GET) wins over the radius.
2. Otherwise radius_km defaults to settings.default_radius_km around (lat, lon).
3. The air aggregator serves from its TTL cache or fans out to both providers.
4. A provider outage never fails the request: it shows up in
   coverage.providers_failed, and coverage.no_data is set when both are down.

TESTING YOUR CHANGES
─────────────────────
  pytest tests/test_air_routes.py -v

  curl -X POST http://localhost:8000/api/v1/air/search \\
    -H 'Content-Type: application/json' \\
    -d '{"lat": 3.139, "lon": 101.6869, "radius_km": 10, "limit": 5}'

  curl "http://localhost:8000/api/v1/air/point?lat=3.139&lon=101.6869"
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from airwatch.core.config import settings
from airwatch.core.errors import InvalidQuery
from airwatch.core.rate_limit import limiter
from airwatch.core.services import get_air_aggregator
from airwatch.models.poi import (
    BoundingBox,
    PoiCategory,
    PoiRecord,
    PoiSearchRequest,
    PoiSearchResponse,
    StationReading,
)
from airwatch.services.aggregator import Aggregator, validated_box, validated_point

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/air", tags=["air-quality"])


async def _run_search(payload: PoiSearchRequest, aggregator: Aggregator) -> PoiSearchResponse:
    limit = payload.limit or settings.default_limit
    if payload.bounds is not None:
        result = await aggregator.search_bounds(
            payload.bounds, limit, category=payload.category, summary_metric=payload.metric
        )
    else:
        origin = validated_point(payload.lat, payload.lon)
        result = await aggregator.search_radius(
            origin,
            payload.radius_km or settings.default_radius_km,
            limit,
            category=payload.category,
            summary_metric=payload.metric,
        )
    return PoiSearchResponse(records=result.records, summary=result.summary, coverage=result.coverage)


def _reading_from_record(record: PoiRecord) -> StationReading:
    return StationReading(
        location=record.name,
        city=record.attributes.get("city", ""),
        country=record.attributes.get("country", ""),
        pm25=record.metrics.get("pm25"),
        no2=record.metrics.get("no2"),
        co=record.metrics.get("co"),
        aqi=record.metrics.get("aqi"),
        last_updated=record.last_updated,
        source=record.source,
    )


# ── POST /api/v1/air/search ──────────────────────────────────────────────────

@router.post("/search", response_model=PoiSearchResponse)
@limiter.limit("60/minute")
async def search_stations(
    request: Request,
    payload: PoiSearchRequest,
    aggregator: Aggregator = Depends(get_air_aggregator),
):
    """Stations within a radius (or box), nearest first, with summary and coverage."""
    return await _run_search(payload, aggregator)


# ── GET /api/v1/air/search ───────────────────────────────────────────────────

@router.get("/search", response_model=PoiSearchResponse)
@limiter.limit("60/minute")
async def search_stations_query(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_km: Optional[float] = Query(default=None, gt=0, le=2500),
    north: Optional[float] = Query(default=None),
    south: Optional[float] = Query(default=None),
    east: Optional[float] = Query(default=None),
    west: Optional[float] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    category: Optional[PoiCategory] = Query(default=None),
    metric: str = Query(default="pm25", min_length=2, max_length=20),
    aggregator: Aggregator = Depends(get_air_aggregator),
):
    """Query-parameter variant of POST /search."""
    edges = (north, south, east, west)
    bounds: Optional[BoundingBox] = None
    if any(e is not None for e in edges):
        if any(e is None for e in edges):
            raise InvalidQuery("north, south, east and west must be given together")
        bounds = validated_box(north, south, east, west)

    payload = PoiSearchRequest(
        lat=lat,
        lon=lon,
        radius_km=radius_km,
        bounds=bounds,
        limit=limit,
        category=category,
        metric=metric,
    )
    return await _run_search(payload, aggregator)


# ── GET /api/v1/air/point ────────────────────────────────────────────────────

@router.get("/point", response_model=StationReading)
async def nearest_station(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    aggregator: Aggregator = Depends(get_air_aggregator),
):
    """Nearest station with at least one reading. 502 when no provider has data."""
    record = await aggregator.nearest_station(validated_point(lat, lon))
    if record is None:
        logger.warning("No station data near (%s, %s) from any provider", lat, lon)
        raise HTTPException(status_code=502, detail="No air-quality provider returned data for this location")
    return _reading_from_record(record)
