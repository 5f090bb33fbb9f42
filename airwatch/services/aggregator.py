"""
aggregator.py — Concurrent multi-provider POI search with dedup and caching.

Pipeline for one query:
  1. Validate and build a canonical query key.
  2. Serve from the TTL cache when a fresh entry can satisfy `limit`.
  3. Otherwise fan out to every adapter concurrently, each wrapped in its own
     timeout; pages within one adapter are fetched sequentially.
  4. Merge in adapter order, dedupe on (name, lat, lon), annotate distance,
     drop records outside the query area and sort nearest first.
  5. Cache the full sorted set, then apply the category filter and limit.

Identical concurrent queries share one upstream fan-out. A provider that
fails or times out contributes nothing and is reported in `coverage`; it never
fails the query.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

from pydantic import ValidationError

from airwatch.core.errors import InvalidQuery
from airwatch.models.poi import (
    BoundingBox,
    Coverage,
    GeoPoint,
    PoiCategory,
    PoiRecord,
    QuerySummary,
)
from airwatch.providers.base import ProviderAdapter
from airwatch.services.geo_math import bounding_box_from_radius, distance_meters
from airwatch.services.ttl_cache import TtlCache

logger = logging.getLogger(__name__)

# Records fetched when the caller only wants the single closest match
_CLOSEST_FETCH_LIMIT = 50

CategoryFilter = Union[PoiCategory, Iterable[PoiCategory], None]


def validated_point(lat: float, lon: float) -> GeoPoint:
    """GeoPoint from raw coordinates; InvalidQuery when out of range."""
    try:
        return GeoPoint(lat=lat, lon=lon)
    except ValidationError as exc:
        raise InvalidQuery(f"Invalid coordinates ({lat}, {lon})") from exc


def validated_box(north: float, south: float, east: float, west: float) -> BoundingBox:
    """BoundingBox from raw edges; InvalidQuery when inverted or out of range."""
    try:
        return BoundingBox(north=north, south=south, east=east, west=west)
    except ValidationError as exc:
        raise InvalidQuery(f"Invalid bounding box: {exc.errors()[0]['msg']}") from exc


@dataclass
class CachedQuery:
    """What the cache stores: the full filtered, sorted set for one key."""

    records: list[PoiRecord]
    fetch_limit: int
    exhaustive: bool              # every provider answered with everything it had
    providers_queried: list[str]
    providers_failed: list[str]

    def serves(self, limit: int) -> bool:
        return self.exhaustive or limit <= self.fetch_limit


@dataclass
class AggregateResult:
    records: list[PoiRecord]
    summary: QuerySummary
    coverage: Coverage


@dataclass
class _AdapterOutcome:
    source: str
    records: list[PoiRecord] = field(default_factory=list)
    error: Optional[str] = None
    exhausted: bool = False


def dedupe_key(record: PoiRecord) -> tuple[str, float, float]:
    return (
        record.name.strip().lower(),
        round(record.location.lat, 4),
        round(record.location.lon, 4),
    )


def summarise(records: Sequence[PoiRecord], metric: str) -> QuerySummary:
    values = [r.metrics[metric] for r in records if r.metrics.get(metric) is not None]
    if not values:
        return QuerySummary(total_stations=len(records), metric=metric)
    return QuerySummary(
        total_stations=len(records),
        metric=metric,
        average_metric=round(sum(values) / len(values), 2),
        min_metric=min(values),
        max_metric=max(values),
    )


def _category_set(category: CategoryFilter) -> Optional[frozenset[PoiCategory]]:
    if category is None:
        return None
    if isinstance(category, PoiCategory):
        return frozenset({category})
    return frozenset(category) or None


class Aggregator:
    """
    Fans one query out to a fixed list of adapters.

    Args:
        adapters:        queried concurrently; their order decides dedup winners.
        cache:           TTL cache owned by this aggregator.
        max_pages:       page cap per adapter per query.
        adapter_timeout: seconds allowed for one adapter, all pages included.
        name:            label used in log lines.
    """

    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        cache: TtlCache[CachedQuery],
        *,
        max_pages: int = 5,
        adapter_timeout: float = 8.0,
        name: str = "aggregator",
    ) -> None:
        self.adapters = list(adapters)
        self.cache = cache
        self.max_pages = max_pages
        self.adapter_timeout = adapter_timeout
        self.name = name
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def sources(self) -> list[str]:
        return [a.source for a in self.adapters]

    # ── Public queries ───────────────────────────────────────────────────────

    async def search_radius(
        self,
        origin: GeoPoint,
        radius_km: float,
        limit: int,
        category: CategoryFilter = None,
        summary_metric: str = "pm25",
    ) -> AggregateResult:
        """Records within radius_km of origin, nearest first."""
        _check_limit(limit)
        if not isinstance(radius_km, (int, float)) or not math.isfinite(radius_km):
            raise InvalidQuery(f"radius_km must be a finite number, got {radius_km!r}")
        if radius_km <= 0:
            return self._empty(summary_metric)

        try:
            box = bounding_box_from_radius(origin, radius_km)
        except ValidationError:
            # Radius below float resolution collapses the box to a line
            logger.debug("[%s] degenerate radius %r at %s", self.name, radius_km, origin)
            return self._empty(summary_metric)

        key = self._radius_key(origin, radius_km)
        max_distance_m = radius_km * 1000

        return await self._search(
            key,
            limit,
            fetch=lambda fetch_limit: self._fan_out(
                box, fetch_limit, origin, keep=lambda r: r.distance_m <= max_distance_m
            ),
            categories=_category_set(category),
            summary_metric=summary_metric,
        )

    async def search_bounds(
        self,
        box: BoundingBox,
        limit: int,
        category: CategoryFilter = None,
        summary_metric: str = "pm25",
    ) -> AggregateResult:
        """Records inside box, ordered by distance from its centre."""
        _check_limit(limit)
        key = self._bounds_key(box)
        centre = box.center

        return await self._search(
            key,
            limit,
            fetch=lambda fetch_limit: self._fan_out(
                box, fetch_limit, centre, keep=lambda r: box.contains(r.location)
            ),
            categories=_category_set(category),
            summary_metric=summary_metric,
        )

    async def search_closest(
        self,
        origin: GeoPoint,
        max_radius_km: float,
        categories: CategoryFilter = None,
        summary_metric: str = "pm25",
    ) -> AggregateResult:
        """At most one record: the nearest match within range."""
        result = await self.search_radius(
            origin, max_radius_km, _CLOSEST_FETCH_LIMIT, category=categories,
            summary_metric=summary_metric,
        )
        records = result.records[:1]
        return AggregateResult(
            records=records,
            summary=summarise(records, summary_metric),
            coverage=result.coverage,
        )

    async def closest(
        self,
        origin: GeoPoint,
        max_radius_km: float,
        categories: CategoryFilter = None,
    ) -> Optional[PoiRecord]:
        result = await self.search_closest(origin, max_radius_km, categories)
        return result.records[0] if result.records else None

    async def emergency_first(
        self,
        origin: GeoPoint,
        max_radius_km: float,
        limit: int = 20,
    ) -> AggregateResult:
        """Hospitals within range, emergency departments first, then by distance."""
        result = await self.search_radius(
            origin,
            max_radius_km,
            max(limit, _CLOSEST_FETCH_LIMIT),
            category=PoiCategory.HOSPITAL,
            summary_metric="emergency",
        )
        ordered = sorted(
            result.records,
            key=lambda r: (r.metrics.get("emergency") != 1.0, r.distance_m, r.id),
        )[:limit]
        return AggregateResult(
            records=ordered,
            summary=summarise(ordered, "emergency"),
            coverage=result.coverage,
        )

    async def nearest_station(self, point: GeoPoint, radius_m: float = 25_000) -> Optional[PoiRecord]:
        """
        First record with at least one reading, trying adapters in order.

        Used for single-station lookups where one provider is preferred and the
        rest are fallbacks.
        """
        for adapter in self.adapters:
            try:
                records = await asyncio.wait_for(
                    adapter.search_point(point, radius_m, 1), self.adapter_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("[%s] %s point lookup timed out", self.name, adapter.source)
                continue
            except Exception:
                logger.exception("[%s] %s point lookup raised unexpectedly", self.name, adapter.source)
                continue
            for record in records:
                if any(v is not None for v in record.metrics.values()):
                    annotated = record.model_copy(
                        update={"distance_m": distance_meters(point, record.location)}
                    )
                    return annotated
        return None

    # ── Cache + in-flight sharing ────────────────────────────────────────────

    async def _search(
        self,
        key: str,
        limit: int,
        fetch: Callable[[int], Awaitable[CachedQuery]],
        categories: Optional[frozenset[PoiCategory]],
        summary_metric: str,
    ) -> AggregateResult:
        entry = self.cache.get_entry(key)
        if entry is not None and entry.payload.serves(limit):
            age = self.cache.age_of(entry)
            logger.debug("[%s] cache hit %s (age %.1fs)", self.name, key, age)
            return self._finish(entry.payload, limit, categories, summary_metric, age)

        logger.debug("[%s] cache miss %s", self.name, key)
        flight_key = f"{key}|{limit}"
        task = self._in_flight.get(flight_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(key, limit, fetch))
            self._in_flight[flight_key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(flight_key, None))
        else:
            logger.debug("[%s] joining in-flight query %s", self.name, flight_key)

        cached = await asyncio.shield(task)
        return self._finish(cached, limit, categories, summary_metric, None)

    async def _fetch_and_store(
        self,
        key: str,
        limit: int,
        fetch: Callable[[int], Awaitable[CachedQuery]],
    ) -> CachedQuery:
        cached = await fetch(limit)
        if cached.providers_queried and len(cached.providers_failed) == len(cached.providers_queried):
            logger.warning("[%s] every provider failed for %s; not caching", self.name, key)
        else:
            self.cache.put(key, cached)
        return cached

    def _finish(
        self,
        cached: CachedQuery,
        limit: int,
        categories: Optional[frozenset[PoiCategory]],
        summary_metric: str,
        cache_age: Optional[float],
    ) -> AggregateResult:
        records = cached.records
        if categories is not None:
            records = [r for r in records if r.category in categories]
        records = records[:limit]

        failed = list(cached.providers_failed)
        queried = list(cached.providers_queried)
        coverage = Coverage(
            providers_queried=queried,
            providers_failed=failed,
            complete=not failed,
            no_data=bool(queried) and len(failed) == len(queried),
            from_cache=cache_age is not None,
            cache_age_seconds=round(cache_age, 3) if cache_age is not None else None,
        )
        return AggregateResult(
            records=records,
            summary=summarise(records, summary_metric),
            coverage=coverage,
        )

    def _empty(self, summary_metric: str) -> AggregateResult:
        return AggregateResult(
            records=[],
            summary=summarise([], summary_metric),
            coverage=Coverage(),
        )

    # ── Upstream fan-out ─────────────────────────────────────────────────────

    async def _fan_out(
        self,
        box: BoundingBox,
        limit: int,
        origin: GeoPoint,
        keep: Callable[[PoiRecord], bool],
    ) -> CachedQuery:
        outcomes = await asyncio.gather(
            *(self._run_adapter(adapter, box, limit) for adapter in self.adapters)
        )

        seen: set[tuple[str, float, float]] = set()
        kept: list[PoiRecord] = []
        failed: list[str] = []
        exhaustive = True
        duplicates = 0

        for outcome in outcomes:
            if outcome.error is not None:
                failed.append(outcome.source)
            if not outcome.exhausted:
                exhaustive = False
            for record in outcome.records:
                dk = dedupe_key(record)
                if dk in seen:
                    duplicates += 1
                    continue
                seen.add(dk)
                annotated = record.model_copy(
                    update={"distance_m": distance_meters(origin, record.location)}
                )
                if keep(annotated):
                    kept.append(annotated)

        kept.sort(key=lambda r: (r.distance_m, r.id))
        logger.info(
            "[%s] %d record(s) kept, %d duplicate(s), failed=%s",
            self.name, len(kept), duplicates, failed or "none",
        )
        return CachedQuery(
            records=kept,
            fetch_limit=limit,
            exhaustive=exhaustive and not failed,
            providers_queried=self.sources,
            providers_failed=failed,
        )

    async def _run_adapter(self, adapter: ProviderAdapter, box: BoundingBox, limit: int) -> _AdapterOutcome:
        try:
            return await asyncio.wait_for(
                self._collect_pages(adapter, box, limit), self.adapter_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "[%s] %s timed out after %.1fs", self.name, adapter.source, self.adapter_timeout
            )
            return _AdapterOutcome(source=adapter.source, error="timeout")
        except Exception as exc:
            logger.exception("[%s] %s raised unexpectedly", self.name, adapter.source)
            return _AdapterOutcome(source=adapter.source, error=f"{type(exc).__name__}: {exc}")

    async def _collect_pages(self, adapter: ProviderAdapter, box: BoundingBox, limit: int) -> _AdapterOutcome:
        outcome = _AdapterOutcome(source=adapter.source)
        target = 2 * limit

        for page_no in range(1, self.max_pages + 1):
            page = await adapter.search(box, limit, page_no)
            outcome.records.extend(page.records)
            if page.error is not None:
                outcome.error = page.error
                return outcome
            if not page.has_more:
                outcome.exhausted = not page.truncated
                return outcome
            if len(outcome.records) >= target:
                return outcome

        logger.debug("[%s] %s hit the %d-page cap", self.name, adapter.source, self.max_pages)
        return outcome

    # ── Keys ─────────────────────────────────────────────────────────────────

    def _params(self) -> str:
        return ",".join(sorted(self.sources))

    def _radius_key(self, origin: GeoPoint, radius_km: float) -> str:
        return (
            f"radius|lat={origin.lat:.4f}|lon={origin.lon:.4f}"
            f"|r={radius_km:.3f}|params={self._params()}"
        )

    def _bounds_key(self, box: BoundingBox) -> str:
        return (
            f"bounds|n={box.north:.4f}|s={box.south:.4f}"
            f"|e={box.east:.4f}|w={box.west:.4f}|params={self._params()}"
        )


def _check_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidQuery(f"limit must be a positive integer, got {limit!r}")
