"""
OpenAqAdapter — OpenAQ community sensor network (API v2).

Endpoint used:
  GET /latest?bbox=W,S,E,N&limit&page&parameter=pm25,no2,co&order_by=distance&sort=asc
  GET /latest?coordinates=LAT,LON&radius=M&limit&parameter=…     (point lookup)

Upstream schema (fields we read):
  meta      → {found: int | ">1000", page, limit}
  results[] → {locationId?, location, city, country,
               coordinates: {latitude, longitude},
               measurements: [{parameter, value, unit, lastUpdated}]}

The API truncates results, so `has_more` is page · limit < found and the
aggregator walks subsequent pages. Concentrations arrive in mixed units and
are normalised (see units.py).
"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from airwatch.core.errors import ProviderUnavailable
from airwatch.models.poi import BoundingBox, GeoPoint, PoiCategory, PoiRecord
from airwatch.providers.base import (
    ProviderAdapter,
    ProviderPage,
    as_float,
    geo_record_id,
    parse_timestamp,
)
from airwatch.providers.units import normalise_concentration

logger = logging.getLogger(__name__)

DEFAULT_PARAMETERS = ("pm25", "no2", "co")
# The v2 API rejects radius above 25 km for coordinate searches
_MAX_POINT_RADIUS_M = 25_000


def _parse_found(value: Any) -> int:
    """meta.found is an int, or a string like '>1000' on large result sets."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        digits = value.lstrip(">").strip()
        if digits.isdigit():
            return int(digits) + (1 if value.startswith(">") else 0)
    return 0


class OpenAqAdapter(ProviderAdapter):
    source = "openaq"
    categories = frozenset({PoiCategory.AIR_QUALITY_STATION})

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str = "",
        base_url: str = "https://api.openaq.org/v2",
        parameters: tuple[str, ...] = DEFAULT_PARAMETERS,
    ) -> None:
        super().__init__(http)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.parameters = parameters

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    async def _fetch_page(self, box: BoundingBox, limit: int, page: int) -> ProviderPage:
        payload = await self._request_json(
            "GET",
            f"{self.base_url}/latest",
            params={
                "bbox": f"{box.west},{box.south},{box.east},{box.north}",
                "limit": limit,
                "page": page,
                "parameter": ",".join(self.parameters),
                "order_by": "distance",
                "sort": "asc",
            },
            headers=self._headers,
        )
        if not isinstance(payload, dict):
            raise ProviderUnavailable(self.source, "payload is not an object")

        records = self._parse_all(payload.get("results", []), self._parse_result)
        meta = payload.get("meta") or {}
        found = _parse_found(meta.get("found"))
        page_no = int(as_float(meta.get("page")) or page)
        page_limit = int(as_float(meta.get("limit")) or limit)
        return ProviderPage(
            records=records,
            total_available=found,
            has_more=page_no * page_limit < found,
        )

    async def _fetch_point(self, point: GeoPoint, radius_m: float, limit: int) -> list[PoiRecord]:
        payload = await self._request_json(
            "GET",
            f"{self.base_url}/latest",
            params={
                "coordinates": f"{point.lat},{point.lon}",
                "radius": int(min(radius_m, _MAX_POINT_RADIUS_M)),
                "limit": limit,
                "parameter": ",".join(self.parameters),
            },
            headers=self._headers,
        )
        if not isinstance(payload, dict):
            raise ProviderUnavailable(self.source, "payload is not an object")
        return self._parse_all(payload.get("results", []), self._parse_result)

    # ── Parsing ──────────────────────────────────────────────────────────────

    def _parse_result(self, result: dict) -> PoiRecord:
        coords = result["coordinates"]
        lat = float(coords["latitude"])
        lon = float(coords["longitude"])

        metrics: dict[str, Optional[float]] = {p: None for p in self.parameters}
        freshest: Optional[datetime] = None
        for m in result.get("measurements") or []:
            parameter = m.get("parameter")
            value = as_float(m.get("value"))
            if parameter not in metrics or value is None:
                continue
            metrics[parameter] = normalise_concentration(parameter, value, m.get("unit", ""))
            ts = parse_timestamp(m.get("lastUpdated"))
            if ts is not None and (freshest is None or ts > freshest):
                freshest = ts

        native_id = result.get("locationId") or result.get("id")
        record_id = f"{self.source}:{native_id}" if native_id else geo_record_id(self.source, lat, lon)

        attributes = {
            k: str(result[k]) for k in ("city", "country") if result.get(k)
        }
        return PoiRecord(
            id=record_id,
            name=result.get("location") or "OpenAQ Station",
            location=GeoPoint(lat=lat, lon=lon),
            category=PoiCategory.AIR_QUALITY_STATION,
            metrics=metrics,
            attributes=attributes,
            last_updated=freshest,
            source=self.source,
        )
