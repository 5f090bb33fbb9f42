"""
healthcare.py — Nearby healthcare facility routes (OpenStreetMap via Overpass).

Routes:
  POST /api/v1/healthcare/search      — facilities near a point
  GET  /api/v1/healthcare/search      — query-parameter variant
  GET  /api/v1/healthcare/directions  — Google Maps + Waze links to a facility

Search types:
  all        every facility within radius_m, nearest first (up to `limit`)
  hospital   the single closest hospital
  clinic     the single closest clinic or health centre
  emergency  hospitals, emergency departments first, then by distance

radius_m is capped at 50 km and limit at 50; larger values are clamped,
not rejected.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from airwatch.core.errors import InvalidQuery
from airwatch.core.services import get_facility_aggregator
from airwatch.models.poi import (
    DirectionsResponse,
    FacilitySearchRequest,
    FacilitySearchResponse,
    FacilitySearchType,
    GeoPoint,
    PoiCategory,
)
from airwatch.services.aggregator import AggregateResult, Aggregator, validated_point
from airwatch.services.geo_math import format_distance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/healthcare", tags=["healthcare"])

MAX_RADIUS_M = 50_000
MAX_LIMIT = 50

_CLINIC_CATEGORIES = frozenset({PoiCategory.CLINIC, PoiCategory.HEALTH_CENTER})


def directions_url(origin: GeoPoint, destination: GeoPoint) -> str:
    return (
        "https://www.google.com/maps/dir/?api=1"
        f"&origin={origin.lat},{origin.lon}"
        f"&destination={destination.lat},{destination.lon}"
        "&travelmode=driving"
    )


def waze_url(destination: GeoPoint) -> str:
    return f"https://waze.com/ul?ll={destination.lat},{destination.lon}&navigate=yes"


def _closest_message(result: AggregateResult, label: str, plural: str) -> str:
    if not result.records:
        return f"No {plural} found within the specified radius."
    nearest = result.records[0]
    return f"Found closest {label}: {nearest.name} ({format_distance(nearest.distance_m)})"


async def _run_search(payload: FacilitySearchRequest, aggregator: Aggregator) -> FacilitySearchResponse:
    origin = validated_point(payload.lat, payload.lon)
    radius_m = min(payload.radius_m, MAX_RADIUS_M)
    limit = min(payload.limit, MAX_LIMIT)
    radius_km = radius_m / 1000

    if payload.type == FacilitySearchType.HOSPITAL:
        result = await aggregator.search_closest(
            origin, radius_km, PoiCategory.HOSPITAL, summary_metric="emergency"
        )
        message = _closest_message(result, "hospital", "hospitals")
    elif payload.type == FacilitySearchType.CLINIC:
        result = await aggregator.search_closest(
            origin, radius_km, _CLINIC_CATEGORIES, summary_metric="emergency"
        )
        message = _closest_message(result, "clinic", "clinics")
    elif payload.type == FacilitySearchType.EMERGENCY:
        result = await aggregator.emergency_first(origin, radius_km, limit)
        message = f"Found {len(result.records)} emergency facilities"
    else:
        result = await aggregator.search_radius(origin, radius_km, limit, summary_metric="emergency")
        message = f"Found {len(result.records)} healthcare facilities within {radius_km:g}km"

    if result.coverage.no_data:
        message = "Healthcare directory is temporarily unavailable. Please try again shortly."

    return FacilitySearchResponse(
        message=message,
        facilities=result.records,
        search_location=origin,
        search_radius_m=radius_m,
        coverage=result.coverage,
        timestamp=datetime.now(timezone.utc),
    )


# ── POST /api/v1/healthcare/search ───────────────────────────────────────────

@router.post("/search", response_model=FacilitySearchResponse)
async def search_facilities(
    payload: FacilitySearchRequest,
    aggregator: Aggregator = Depends(get_facility_aggregator),
):
    """Find healthcare facilities near a point. Accepts `lon` or `lng`."""
    return await _run_search(payload, aggregator)


# ── GET /api/v1/healthcare/search ────────────────────────────────────────────

@router.get("/search", response_model=FacilitySearchResponse)
async def search_facilities_query(
    lat: float = Query(..., ge=-90, le=90),
    lon: Optional[float] = Query(default=None, ge=-180, le=180),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    type: FacilitySearchType = Query(default=FacilitySearchType.ALL),
    radius_m: float = Query(default=5000, gt=0),
    limit: int = Query(default=20, ge=1),
    aggregator: Aggregator = Depends(get_facility_aggregator),
):
    longitude = lon if lon is not None else lng
    if longitude is None:
        raise InvalidQuery("lon (or lng) is required")
    payload = FacilitySearchRequest(lat=lat, lon=longitude, type=type, radius_m=radius_m, limit=limit)
    return await _run_search(payload, aggregator)


# ── GET /api/v1/healthcare/directions ────────────────────────────────────────

@router.get("/directions", response_model=DirectionsResponse)
async def get_directions(
    from_lat: float = Query(..., ge=-90, le=90),
    from_lon: float = Query(..., ge=-180, le=180),
    to_lat: float = Query(..., ge=-90, le=90),
    to_lon: float = Query(..., ge=-180, le=180),
):
    """Turn-by-turn links from the user's position to a facility."""
    origin = GeoPoint(lat=from_lat, lon=from_lon)
    destination = GeoPoint(lat=to_lat, lon=to_lon)
    return DirectionsResponse(
        google_maps_url=directions_url(origin, destination),
        waze_url=waze_url(destination),
    )
