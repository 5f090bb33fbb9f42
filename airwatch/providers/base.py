"""
ProviderAdapter — common contract for upstream POI providers.

Each adapter turns a canonical BoundingBox / GeoPoint into one provider's
native query, maps the payload into PoiRecord and tags every record with
its source. Adapters share one injected httpx.AsyncClient whose lifecycle
belongs to the app lifespan (or the test).

Failure semantics
─────────────────
  - Transport errors, non-2xx statuses and malformed payloads raise
    ProviderUnavailable inside _fetch_page / _fetch_point.
  - The public search() / search_point() absorb it: an empty result with
    `error` set. A single provider never fails a whole query.
  - A malformed individual record is skipped and logged; parsing continues.
  - Adapters never retry. Retry policy belongs to the caller.

To add a provider:
  1. Subclass ProviderAdapter, set `source` and `categories`.
  2. Implement _fetch_page() and _fetch_point().
  3. Register it in airwatch/core/services.py.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from airwatch.core.errors import ProviderUnavailable
from airwatch.models.poi import BoundingBox, GeoPoint, PoiCategory, PoiRecord

logger = logging.getLogger(__name__)


@dataclass
class ProviderPage:
    """One page of results from one provider."""

    records: list[PoiRecord] = field(default_factory=list)
    total_available: int = 0
    has_more: bool = False
    truncated: bool = False      # provider held back results it cannot page to
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "ProviderPage":
        return cls(records=[], total_available=0, has_more=False, error=error)


def geo_record_id(source: str, lat: float, lon: float) -> str:
    """Stable id for providers without a native id (coords rounded to ~11 m)."""
    digest = hashlib.sha1(f"{lat:.4f},{lon:.4f}".encode()).hexdigest()[:12]
    return f"{source}:geo-{digest}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 upstream timestamp; None when absent or unparsable."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def as_float(value: Any) -> Optional[float]:
    """Numeric upstream value → float; '-' / '' / None / garbage → None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result == result else None   # drop NaN


class ProviderAdapter:
    """Base class for upstream adapters."""

    source: str = "unknown"
    categories: frozenset[PoiCategory] = frozenset({PoiCategory.UNKNOWN})

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    # ── Public contract ──────────────────────────────────────────────────────

    async def search(self, box: BoundingBox, limit: int, page: int = 1) -> ProviderPage:
        """Records inside box; page is 1-based. Never raises for upstream failures."""
        try:
            return await self._fetch_page(box, limit, page)
        except ProviderUnavailable as exc:
            logger.warning("Provider %s unavailable (page %d): %s", self.source, page, exc.reason)
            return ProviderPage.failed(exc.reason)

    async def search_point(self, point: GeoPoint, radius_m: float, limit: int) -> list[PoiRecord]:
        """Records near point. Returns [] on upstream failure."""
        try:
            return await self._fetch_point(point, radius_m, limit)
        except ProviderUnavailable as exc:
            logger.warning("Provider %s point lookup unavailable: %s", self.source, exc.reason)
            return []

    # ── Subclass hooks ───────────────────────────────────────────────────────

    async def _fetch_page(self, box: BoundingBox, limit: int, page: int) -> ProviderPage:
        raise NotImplementedError

    async def _fetch_point(self, point: GeoPoint, radius_m: float, limit: int) -> list[PoiRecord]:
        raise NotImplementedError

    # ── HTTP helper ──────────────────────────────────────────────────────────

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Perform one HTTP request and decode JSON.

        Raises:
            ProviderUnavailable: on transport error, non-2xx or non-JSON body.
        """
        try:
            response = await self.http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailable(
                self.source, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.source, f"{type(exc).__name__}: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderUnavailable(self.source, "malformed JSON payload") from exc

    def _parse_all(self, items: Any, parse_one) -> list[PoiRecord]:
        """Apply parse_one to each item, skipping (and logging) malformed ones."""
        if not isinstance(items, list):
            raise ProviderUnavailable(self.source, "expected a list of results")
        records: list[PoiRecord] = []
        skipped = 0
        for item in items:
            try:
                record = parse_one(item)
            except (KeyError, TypeError, ValueError) as exc:
                skipped += 1
                logger.debug("Skipping malformed %s record: %s", self.source, exc)
                continue
            if record is not None:
                records.append(record)
        if skipped:
            logger.info("Skipped %d malformed %s record(s)", skipped, self.source)
        return records
