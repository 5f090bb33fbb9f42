"""
WaqiAdapter — World Air Quality Index (aqicn.org) stations.

Endpoints used:
  GET /map/bounds/?latlng=S,W,N,E&token=…   all stations in a box (AQI only)
  GET /feed/geo:LAT;LON/?token=…            nearest station with sub-indices

Upstream schema (fields we read):
  map/bounds  data[] → {uid, lat, lon, aqi: "57" | "-", station: {name, time}}
  feed/geo    data   → {idx, aqi, city: {geo: [lat, lon], name},
                        iaqi: {pm25: {v}, no2: {v}, co: {v}}, time: {iso}}

WAQI reports US-EPA sub-indices rather than concentrations. The raw
sub-indices are kept as `<pollutant>_aqi` metrics and inverted to
canonical concentrations (see units.py).

The bounds endpoint is not paginated: one page holding every station in the
box. `limit` is not applied here.

Graceful degradation: without WAQI_TOKEN every call returns an empty page
with a logged warning.
"""

import logging
from typing import Any, Optional

import httpx

from airwatch.core.errors import ProviderUnavailable
from airwatch.models.poi import BoundingBox, GeoPoint, PoiCategory, PoiRecord
from airwatch.providers.base import ProviderAdapter, ProviderPage, as_float, parse_timestamp
from airwatch.providers.units import aqi_to_concentration

logger = logging.getLogger(__name__)

_SUB_INDICES = ("pm25", "no2", "co")


class WaqiAdapter(ProviderAdapter):
    source = "waqi"
    categories = frozenset({PoiCategory.AIR_QUALITY_STATION})

    def __init__(self, http: httpx.AsyncClient, token: str, base_url: str = "https://api.waqi.info") -> None:
        super().__init__(http)
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.enabled = bool(token)
        if not self.enabled:
            logger.warning("WAQI_TOKEN not set — WAQI stations disabled.")

    async def _fetch_page(self, box: BoundingBox, limit: int, page: int) -> ProviderPage:
        if not self.enabled:
            raise ProviderUnavailable(self.source, "token not configured")
        if page > 1:
            # Single-page endpoint: nothing beyond the first page
            return ProviderPage()

        payload = await self._request_json(
            "GET",
            f"{self.base_url}/map/bounds/",
            params={
                "latlng": f"{box.south},{box.west},{box.north},{box.east}",
                "token": self.token,
            },
        )
        data = self._unwrap(payload)
        # Entries arrive in no distance order; the aggregator sorts and cuts
        records = self._parse_all(data, self._parse_bounds_entry)
        return ProviderPage(
            records=records,
            total_available=len(records),
            has_more=False,
        )

    async def _fetch_point(self, point: GeoPoint, radius_m: float, limit: int) -> list[PoiRecord]:
        if not self.enabled:
            raise ProviderUnavailable(self.source, "token not configured")

        payload = await self._request_json(
            "GET",
            f"{self.base_url}/feed/geo:{point.lat};{point.lon}/",
            params={"token": self.token},
        )
        data = self._unwrap(payload)
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.source, "feed payload is not an object")
        return self._parse_all([data], self._parse_feed)[:limit]

    # ── Parsing ──────────────────────────────────────────────────────────────

    def _unwrap(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or payload.get("status") != "ok":
            status = payload.get("status") if isinstance(payload, dict) else None
            raise ProviderUnavailable(self.source, f"status={status!r}")
        return payload.get("data")

    def _parse_bounds_entry(self, item: dict) -> PoiRecord:
        station = item.get("station") or {}
        return PoiRecord(
            id=f"{self.source}:{item['uid']}",
            name=station.get("name") or "WAQI station",
            location=GeoPoint(lat=float(item["lat"]), lon=float(item["lon"])),
            category=PoiCategory.AIR_QUALITY_STATION,
            metrics={"aqi": as_float(item.get("aqi"))},
            last_updated=parse_timestamp(station.get("time")),
            source=self.source,
        )

    def _parse_feed(self, data: dict) -> PoiRecord:
        city = data.get("city") or {}
        geo = city["geo"]
        iaqi = data.get("iaqi") or {}

        metrics: dict[str, Optional[float]] = {"aqi": as_float(data.get("aqi"))}
        for name in _SUB_INDICES:
            sub_index = as_float((iaqi.get(name) or {}).get("v"))
            metrics[f"{name}_aqi"] = sub_index
            metrics[name] = aqi_to_concentration(name, sub_index) if sub_index is not None else None

        name = city.get("name") or "WAQI station"
        return PoiRecord(
            id=f"{self.source}:{data['idx']}",
            name=name,
            location=GeoPoint(lat=float(geo[0]), lon=float(geo[1])),
            category=PoiCategory.AIR_QUALITY_STATION,
            metrics=metrics,
            attributes={"city": name},
            last_updated=parse_timestamp((data.get("time") or {}).get("iso")),
            source=self.source,
        )
