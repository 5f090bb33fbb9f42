"""
poi.py — Pydantic models for the canonical point-of-interest record and the
radius / bounding-box query API.

Every upstream provider (WAQI, OpenAQ, Overpass) maps its own payload into
PoiRecord. Records are frozen: the aggregator annotates distance with
model_copy() and never mutates a record in place.

Canonical metric units
──────────────────────
  pm25   µg/m³
  no2    µg/m³
  co     mg/m³
  aqi    US EPA index (unitless)
  emergency  1.0 | 0.0  (facilities only)
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class PoiCategory(str, Enum):
    """Closed set of POI kinds. Anything unrecognised maps to UNKNOWN."""

    AIR_QUALITY_STATION = "air_quality_station"
    HOSPITAL = "hospital"
    CLINIC = "clinic"
    PHARMACY = "pharmacy"
    HEALTH_CENTER = "health_center"
    UNKNOWN = "unknown"


class GeoPoint(BaseModel):
    """WGS84 coordinates in degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class BoundingBox(BaseModel):
    """
    Rectangular lat/lon region.

    Antimeridian wraparound is not supported: east must be greater than west.
    A box crossing ±180° must be split by the caller.
    """

    model_config = ConfigDict(frozen=True)

    north: float = Field(..., ge=-90, le=90)
    south: float = Field(..., ge=-90, le=90)
    east:  float = Field(..., ge=-180, le=180)
    west:  float = Field(..., ge=-180, le=180)

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.north <= self.south:
            raise ValueError("north must be greater than south")
        if self.east <= self.west:
            raise ValueError("east must be greater than west (no antimeridian wraparound)")
        return self

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(lat=(self.north + self.south) / 2, lon=(self.east + self.west) / 2)

    def contains(self, point: GeoPoint) -> bool:
        return self.south <= point.lat <= self.north and self.west <= point.lon <= self.east


class PoiRecord(BaseModel):
    """A station or facility, normalised from one provider."""

    model_config = ConfigDict(frozen=True)

    id:       str                 # "<source>:<native id>" or "<source>:geo-<hash>"
    name:     str
    location: GeoPoint
    category: PoiCategory = PoiCategory.UNKNOWN
    metrics:    dict[str, Optional[float]] = Field(default_factory=dict)
    attributes: dict[str, str]             = Field(default_factory=dict)
    last_updated: Optional[datetime] = None
    distance_m:   Optional[float]    = None   # relative to the query origin; never persisted
    source:   str


# ── Query API ────────────────────────────────────────────────────────────────

class QuerySummary(BaseModel):
    """Aggregate statistics over one metric of the returned records."""

    total_stations: int
    metric:         str
    average_metric: Optional[float] = None
    min_metric:     Optional[float] = None
    max_metric:     Optional[float] = None


class Coverage(BaseModel):
    """Which providers answered and how fresh the data is."""

    providers_queried: list[str] = Field(default_factory=list)
    providers_failed:  list[str] = Field(default_factory=list)
    complete: bool = True     # no provider failed
    no_data:  bool = False    # every provider failed
    from_cache: bool = False
    cache_age_seconds: Optional[float] = None


class PoiSearchRequest(BaseModel):
    """Request body for POST /api/v1/air/search."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    radius_km: Optional[float] = Field(default=None, gt=0, le=2500)
    bounds:    Optional[BoundingBox] = None
    limit:     Optional[int] = Field(default=None, ge=1, le=500)
    category:  Optional[PoiCategory] = None
    metric:    str = Field(default="pm25", min_length=2, max_length=20)


class PoiSearchResponse(BaseModel):
    """Response for the air-quality search endpoints."""

    records:  list[PoiRecord]
    summary:  QuerySummary
    coverage: Coverage


class StationReading(BaseModel):
    """Single-station reading returned by GET /api/v1/air/point."""

    location:     str
    city:         str = ""
    country:      str = ""
    pm25:         Optional[float] = None
    no2:          Optional[float] = None
    co:           Optional[float] = None
    aqi:          Optional[float] = None
    last_updated: Optional[datetime] = None
    source:       str


# ── Healthcare API ───────────────────────────────────────────────────────────

class FacilitySearchType(str, Enum):
    ALL = "all"
    HOSPITAL = "hospital"
    CLINIC = "clinic"
    EMERGENCY = "emergency"


class FacilitySearchRequest(BaseModel):
    """Request body for POST /api/v1/healthcare/search."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lon", "lng"))
    type: FacilitySearchType = FacilitySearchType.ALL
    radius_m: float = Field(default=5000, gt=0)
    limit:    int   = Field(default=20, ge=1)


class FacilitySearchResponse(BaseModel):
    """Response for the healthcare search endpoints."""

    message: str
    facilities: list[PoiRecord]
    search_location: GeoPoint
    search_radius_m: float
    coverage: Coverage
    timestamp: datetime


class DirectionsResponse(BaseModel):
    google_maps_url: str
    waze_url: str
