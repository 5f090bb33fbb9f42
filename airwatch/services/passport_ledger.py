"""
passport_ledger.py — Exposure passport state machine.

Each logged exposure is scored, then folded into the user's profile:

  last_active_date == today      → streak unchanged
  last_active_date == today - 1  → streak + 1
  last_active_date >  today      → back-dated event: streak and date unchanged
  anything else (incl. never)    → streak = 1

  best_streak      = max(best_streak, streak)
  last_active_date = max(last_active_date, today)
  points          += base_points + round(score / 10)

"today" is the event timestamp's calendar date in the ledger timezone.

Writes for one user are serialised by a per-user asyncio.Lock; the store's
version check catches writers in other processes. A LedgerConflict triggers
one full re-read / re-compute / re-commit before it is surfaced.
"""

import asyncio
import logging
import uuid
import weakref
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from airwatch.core.errors import LedgerConflict
from airwatch.models.passport import (
    DailyInsight,
    EnsureProfileRequest,
    ExposureEvent,
    ExposureLogRequest,
    ExposureOutcome,
    InsightsResponse,
    PassportResponse,
    Profile,
    ProfileOut,
)
from airwatch.models.poi import GeoPoint
from airwatch.services.exposure_scoring import compute_risk_level, score_exposure
from airwatch.services.passport_store import PassportStore

logger = logging.getLogger(__name__)


def advance_streak(profile: Profile, today: date) -> Profile:
    """Apply the day-boundary rules for one event dated `today`."""
    last = date.fromisoformat(profile.last_active_date) if profile.last_active_date else None

    if last is None:
        streak = 1
    elif last == today:
        streak = profile.streak
    elif last > today:
        return profile.model_copy()
    elif last == today - timedelta(days=1):
        streak = profile.streak + 1
    else:
        streak = 1

    return profile.model_copy(update={
        "streak": streak,
        "best_streak": max(profile.best_streak, streak),
        "last_active_date": today.isoformat(),
    })


class PassportLedger:
    """
    Args:
        store:       persistence backend (memory or Mongo).
        timezone:    IANA zone that defines streak day boundaries.
        base_points: points awarded per event before the score bonus.
        clock:       returns the current tz-aware time; injectable for tests.
    """

    def __init__(
        self,
        store: PassportStore,
        *,
        timezone: str = "UTC",
        base_points: int = 10,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.tz = ZoneInfo(timezone)
        self.base_points = base_points
        self._clock = clock or _utcnow
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_key: str) -> asyncio.Lock:
        lock = self._locks.get(user_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_key] = lock
        return lock

    def local_date(self, moment: datetime) -> date:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).date()

    def points_for(self, score: float) -> int:
        return self.base_points + round(score / 10)

    # ── Writes ───────────────────────────────────────────────────────────────

    async def log_exposure(self, request: ExposureLogRequest) -> ExposureOutcome:
        """Score one exposure and apply it to the user's passport."""
        assessment = score_exposure(pm25=request.pm25, no2=request.no2, co=request.co)
        timestamp = request.timestamp or self._clock()
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        today = self.local_date(timestamp)
        points_awarded = self.points_for(assessment.score)

        async with self._lock_for(request.user_key):
            try:
                return await self._apply(request, assessment, timestamp, today, points_awarded)
            except LedgerConflict:
                logger.warning("Passport conflict for %s; retrying once", request.user_key)
                return await self._apply(request, assessment, timestamp, today, points_awarded)

    async def _apply(self, request, assessment, timestamp, today, points_awarded) -> ExposureOutcome:
        current = await self.store.load_profile(request.user_key)
        if current is None:
            current = Profile(user_key=request.user_key)

        updated = advance_streak(current, today).model_copy(update={
            "points": current.points + points_awarded,
            "updated_at": self._clock(),
        })
        event = ExposureEvent(
            event_id=uuid.uuid4().hex,
            user_key=request.user_key,
            location=GeoPoint(lat=request.lat, lon=request.lon),
            location_name=request.location_name,
            pm25=request.pm25,
            no2=request.no2,
            co=request.co,
            mode=request.mode,
            timestamp=timestamp,
            activity_date=today.isoformat(),
            risk_level=assessment.risk_level,
            tips=list(assessment.tips),
            score=assessment.score,
            points_awarded=points_awarded,
        )

        stored = await self.store.commit(current.version, updated, event)
        logger.info(
            "Exposure logged for %s: score=%.1f streak=%d points=%d",
            request.user_key, event.score, stored.streak, stored.points,
        )
        return ExposureOutcome(
            score=event.score,
            risk_level=event.risk_level,
            tips=event.tips,
            streak=stored.streak,
            best_streak=stored.best_streak,
            points=stored.points,
            points_awarded=points_awarded,
            event_id=event.event_id,
        )

    async def ensure_profile(self, request: EnsureProfileRequest) -> ProfileOut:
        fields = request.model_dump(include={"nickname", "home_city"}, exclude_none=True)
        profile = await self.store.ensure_profile(request.user_key, fields)
        return ProfileOut.from_profile(profile)

    async def reset(self, user_key: str) -> bool:
        async with self._lock_for(user_key):
            removed = await self.store.delete_profile(user_key)
        if removed:
            logger.info("Passport reset for %s", user_key)
        return removed

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_passport(self, user_key: str, limit: int = 10) -> Optional[PassportResponse]:
        profile = await self.store.load_profile(user_key)
        if profile is None:
            return None
        events = await self.store.recent_events(user_key, limit)
        return PassportResponse(profile=ProfileOut.from_profile(profile), recent_events=events)

    async def insights(
        self,
        user_key: str,
        now: Optional[datetime] = None,
        window_days: int = 7,
    ) -> Optional[InsightsResponse]:
        """
        Rolling summary over the last `window_days` calendar days (today included).

        Returns None when the user has no profile. current_streak is 0 when the
        last active day is older than yesterday, since the streak is already broken.
        """
        profile = await self.store.load_profile(user_key)
        if profile is None:
            return None

        now = now or self._clock()
        today = self.local_date(now)
        first_day = today - timedelta(days=window_days - 1)
        window_start = datetime.combine(first_day, datetime.min.time(), tzinfo=self.tz)

        events = await self.store.events_since(user_key, window_start.astimezone(timezone.utc))
        events = [e for e in events if e.activity_date >= first_day.isoformat()]

        by_day: dict[str, list[float]] = defaultdict(list)
        for event in events:
            by_day[event.activity_date].append(event.score)
        daily = [
            DailyInsight(date=day, average_score=round(sum(s) / len(s), 1), events=len(s))
            for day, s in sorted(by_day.items())
        ]

        average = round(sum(e.score for e in events) / len(events), 1) if events else None
        modes = Counter(e.mode for e in events if e.mode)
        last = date.fromisoformat(profile.last_active_date) if profile.last_active_date else None
        streak_alive = last is not None and last >= today - timedelta(days=1)

        return InsightsResponse(
            user_key=user_key,
            window_days=window_days,
            event_count=len(events),
            average_score=average,
            risk_level=compute_risk_level(average) if average is not None else None,
            most_common_mode=modes.most_common(1)[0][0] if modes else None,
            current_streak=profile.streak if streak_alive else 0,
            daily=daily,
        )


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)
