"""
OverpassAdapter — healthcare facilities from OpenStreetMap via Overpass.

One POST per query with an Overpass QL body selecting hospitals, clinics,
doctors, any `healthcare=*` feature and pharmacies. Ways and relations are
returned with `out center` so every element carries a point.

Upstream schema (fields we read):
  elements[] → {type, id, lat?, lon?, center?: {lat, lon},
                tags?: {name, name:en, name:ms, operator, amenity, healthcare,
                        addr:full, addr:street, addr:city, addr:postcode,
                        phone, website, opening_hours, emergency}}

Overpass has no cursor, so results arrive in a single page. Output is never
capped server-side: `out center N` cuts in element-id order, not by distance.
Sorting and truncation happen after the fetch.
"""

import logging
from typing import Optional

import httpx

from airwatch.core.errors import ProviderUnavailable
from airwatch.models.poi import BoundingBox, GeoPoint, PoiCategory, PoiRecord
from airwatch.providers.base import ProviderAdapter, ProviderPage
from airwatch.services.geo_math import distance_meters

logger = logging.getLogger(__name__)

# Server-side evaluation budget (seconds) declared in the QL header
_QUERY_TIMEOUT = 25

# (element types, tag filter) pairs selected by every query
_SELECTORS = [
    (("node", "way", "relation"), '["amenity"="hospital"]'),
    (("node", "way"), '["amenity"="clinic"]'),
    (("node", "way"), '["amenity"="doctors"]'),
    (("node", "way"), '["healthcare"]'),
    (("node", "way"), '["amenity"="pharmacy"]'),
]

_HEALTH_CENTER_VALUES = {"centre", "center"}


def build_overpass_query(area_filter: str) -> str:
    """
    Build the Overpass QL body for one area filter, e.g.
    "(around:5000,3.139,101.6869)" or "(2.9,101.5,3.3,101.9)".
    """
    lines = [f"[out:json][timeout:{_QUERY_TIMEOUT}];", "("]
    for element_types, tag_filter in _SELECTORS:
        for element_type in element_types:
            lines.append(f"  {element_type}{tag_filter}{area_filter};")
    lines.append(");")
    lines.append("out center;")
    return "\n".join(lines)


def facility_category(tags: dict) -> PoiCategory:
    """Map OSM amenity/healthcare tags onto the closed category enum."""
    amenity = (tags.get("amenity") or "").lower()
    healthcare = (tags.get("healthcare") or "").lower()

    if amenity == "hospital" or healthcare == "hospital":
        return PoiCategory.HOSPITAL
    if amenity == "pharmacy" or healthcare == "pharmacy":
        return PoiCategory.PHARMACY
    if healthcare in _HEALTH_CENTER_VALUES:
        return PoiCategory.HEALTH_CENTER
    if amenity in ("clinic", "doctors") or healthcare:
        return PoiCategory.CLINIC
    return PoiCategory.UNKNOWN


def facility_address(tags: dict) -> Optional[str]:
    if tags.get("addr:full"):
        return tags["addr:full"]
    parts = [tags[k] for k in ("addr:street", "addr:city", "addr:postcode") if tags.get(k)]
    return ", ".join(parts) if parts else None


class OverpassAdapter(ProviderAdapter):
    source = "osm"
    categories = frozenset({
        PoiCategory.HOSPITAL,
        PoiCategory.CLINIC,
        PoiCategory.PHARMACY,
        PoiCategory.HEALTH_CENTER,
    })

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str = "https://overpass-api.de/api/interpreter",
    ) -> None:
        super().__init__(http)
        self.url = url

    async def _fetch_page(self, box: BoundingBox, limit: int, page: int) -> ProviderPage:
        if page > 1:
            return ProviderPage()
        area = f"({box.south},{box.west},{box.north},{box.east})"
        records = await self._run(build_overpass_query(area))
        return ProviderPage(
            records=records,
            total_available=len(records),
            has_more=False,
        )

    async def _fetch_point(self, point: GeoPoint, radius_m: float, limit: int) -> list[PoiRecord]:
        area = f"(around:{int(radius_m)},{point.lat},{point.lon})"
        records = await self._run(build_overpass_query(area))
        records.sort(key=lambda r: (distance_meters(point, r.location), r.id))
        return records[:limit]

    async def _run(self, query: str) -> list[PoiRecord]:
        payload = await self._request_json(
            "POST",
            self.url,
            data={"data": query},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not isinstance(payload, dict):
            raise ProviderUnavailable(self.source, "payload is not an object")
        return self._parse_all(payload.get("elements", []), self._parse_element)

    # ── Parsing ──────────────────────────────────────────────────────────────

    def _parse_element(self, element: dict) -> Optional[PoiRecord]:
        center = element.get("center") or {}
        lat = element.get("lat", center.get("lat"))
        lon = element.get("lon", center.get("lon"))
        if lat is None or lon is None:
            return None

        tags = element.get("tags") or {}
        name = (
            tags.get("name")
            or tags.get("name:en")
            or tags.get("name:ms")
            or tags.get("operator")
            or "Unknown Facility"
        )

        attributes = {
            "address":       facility_address(tags),
            "phone":         tags.get("phone"),
            "website":       tags.get("website"),
            "opening_hours": tags.get("opening_hours"),
            "amenity":       tags.get("amenity") or tags.get("healthcare"),
        }
        return PoiRecord(
            id=f"{self.source}:{element['type']}/{element['id']}",
            name=name,
            location=GeoPoint(lat=float(lat), lon=float(lon)),
            category=facility_category(tags),
            metrics={"emergency": 1.0 if tags.get("emergency") == "yes" else 0.0},
            attributes={k: v for k, v in attributes.items() if v},
            source=self.source,
        )
