"""
test_passport_ledger.py — Streaks, points, conflict retry and insights.

All tests use InMemoryPassportStore and explicit event timestamps, so day
boundaries are deterministic.

Run:
    pytest tests/test_passport_ledger.py -v
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from airwatch.core.errors import InvalidQuery, LedgerConflict
from airwatch.models.passport import EnsureProfileRequest, ExposureLogRequest, Profile
from airwatch.services.passport_ledger import PassportLedger, advance_streak
from airwatch.services.passport_store import InMemoryPassportStore

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


def at(day: int, hour: int = 9) -> datetime:
    return datetime(2026, 3, day, hour, 0, tzinfo=timezone.utc)


def exposure(user_key: str = "u-1", when: datetime = None, **readings) -> ExposureLogRequest:
    return ExposureLogRequest(
        user_key=user_key,
        lat=3.139,
        lon=101.6869,
        location_name="Jalan Ampang",
        timestamp=when,
        **readings,
    )


class FlakyStore(InMemoryPassportStore):
    """Raises LedgerConflict on the first `conflicts` commits."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.remaining = conflicts
        self.commits = 0

    async def commit(self, expected_version, profile, event):
        self.commits += 1
        if self.remaining:
            self.remaining -= 1
            raise LedgerConflict(profile.user_key)
        return await super().commit(expected_version, profile, event)


@pytest.fixture()
def store():
    return InMemoryPassportStore()


@pytest.fixture()
def ledger(store):
    return PassportLedger(store, clock=lambda: NOW)


# ── advance_streak ───────────────────────────────────────────────────────────

class TestAdvanceStreak:

    def test_first_activity(self):
        profile = advance_streak(Profile(user_key="u"), date(2026, 3, 1))
        assert (profile.streak, profile.best_streak, profile.last_active_date) == (1, 1, "2026-03-01")

    def test_consecutive_day(self):
        start = Profile(user_key="u", streak=3, best_streak=3, last_active_date="2026-03-01")
        profile = advance_streak(start, date(2026, 3, 2))
        assert profile.streak == 4
        assert profile.best_streak == 4

    def test_gap_resets_but_keeps_best(self):
        start = Profile(user_key="u", streak=5, best_streak=7, last_active_date="2026-03-01")
        profile = advance_streak(start, date(2026, 3, 5))
        assert profile.streak == 1
        assert profile.best_streak == 7

    def test_same_day_unchanged(self):
        start = Profile(user_key="u", streak=2, best_streak=2, last_active_date="2026-03-02")
        assert advance_streak(start, date(2026, 3, 2)).streak == 2

    def test_back_dated_leaves_state_alone(self):
        start = Profile(user_key="u", streak=2, best_streak=4, last_active_date="2026-03-04")
        profile = advance_streak(start, date(2026, 3, 1))
        assert (profile.streak, profile.best_streak, profile.last_active_date) == (2, 4, "2026-03-04")

    def test_does_not_mutate_input(self):
        start = Profile(user_key="u")
        advance_streak(start, date(2026, 3, 1))
        assert start.streak == 0


# ── log_exposure ─────────────────────────────────────────────────────────────

class TestLogExposure:

    async def test_streak_scenario(self, ledger):
        day1 = await ledger.log_exposure(exposure(when=at(1)))
        assert (day1.streak, day1.best_streak) == (1, 1)

        day2 = await ledger.log_exposure(exposure(when=at(2)))
        assert (day2.streak, day2.best_streak) == (2, 2)

        # Nothing on day 3
        day4 = await ledger.log_exposure(exposure(when=at(4)))
        assert (day4.streak, day4.best_streak) == (1, 2)

    async def test_same_day_earns_points_not_streak(self, ledger):
        first = await ledger.log_exposure(exposure(when=at(1, 8)))
        second = await ledger.log_exposure(exposure(when=at(1, 18)))
        assert second.streak == first.streak == 1
        assert second.points == first.points + second.points_awarded

    async def test_points_from_score(self, ledger):
        clean = await ledger.log_exposure(exposure(when=at(1)))
        assert clean.score == 100.0
        assert clean.points_awarded == 20

        # 71.8 → 10 + round(7.18)
        dirty = await ledger.log_exposure(exposure(when=at(1), pm25=42, no2=18))
        assert dirty.points_awarded == 17
        assert dirty.points == 37

    async def test_points_stay_within_bounds(self, ledger):
        worst = await ledger.log_exposure(exposure(when=at(1), pm25=500, no2=500, co=50))
        assert worst.score == 0.0
        assert worst.points_awarded == 10
        assert worst.risk_level == "high"

    async def test_back_dated_event(self, ledger, store):
        await ledger.log_exposure(exposure(when=at(4)))
        late = await ledger.log_exposure(exposure(when=at(2)))

        assert late.streak == 1
        assert late.points == 40
        profile = await store.load_profile("u-1")
        assert profile.last_active_date == "2026-03-04"

    async def test_timestamp_defaults_to_clock(self, ledger, store):
        outcome = await ledger.log_exposure(exposure())
        events = await store.recent_events("u-1", 1)
        assert events[0].event_id == outcome.event_id
        assert events[0].timestamp == NOW
        assert events[0].activity_date == "2026-03-04"

    async def test_naive_timestamp_treated_as_utc(self, ledger, store):
        await ledger.log_exposure(exposure(when=datetime(2026, 3, 1, 23, 30)))
        profile = await store.load_profile("u-1")
        assert profile.last_active_date == "2026-03-01"

    async def test_event_is_recorded_with_score_and_tips(self, ledger, store):
        outcome = await ledger.log_exposure(exposure(when=at(1), pm25=42, no2=18, mode="walk"))
        [event] = await store.recent_events("u-1", 5)
        assert event.score == outcome.score == 71.8
        assert event.risk_level == "moderate"
        assert event.tips == outcome.tips
        assert event.mode == "walk"
        assert event.points_awarded == 17

    async def test_rejected_reading_writes_nothing(self, ledger, store):
        # The request model already rejects negatives; construct past it
        request = exposure(when=at(1)).model_copy(update={"pm25": float("nan")})
        with pytest.raises(InvalidQuery):
            await ledger.log_exposure(request)
        assert await store.load_profile("u-1") is None

    async def test_users_are_independent(self, ledger):
        await ledger.log_exposure(exposure("alice", at(1)))
        bob = await ledger.log_exposure(exposure("bob", at(1)))
        assert bob.points == 20


# ── Day boundaries in a non-UTC zone ─────────────────────────────────────────

class TestTimezone:

    async def test_kuala_lumpur_day_boundary(self, store):
        ledger = PassportLedger(store, timezone="Asia/Kuala_Lumpur", clock=lambda: NOW)

        # 10:00Z = 18:00 local on 1 March; 20:00Z = 04:00 local on 2 March
        first = await ledger.log_exposure(exposure(when=at(1, 10)))
        second = await ledger.log_exposure(exposure(when=at(1, 20)))

        assert first.streak == 1
        assert second.streak == 2
        profile = await store.load_profile("u-1")
        assert profile.last_active_date == "2026-03-02"

    async def test_same_utc_instant_different_local_date(self, store):
        utc = PassportLedger(store)
        kl = PassportLedger(store, timezone="Asia/Kuala_Lumpur")
        moment = at(1, 20)
        assert utc.local_date(moment) == date(2026, 3, 1)
        assert kl.local_date(moment) == date(2026, 3, 2)


# ── Concurrency ──────────────────────────────────────────────────────────────

class TestConcurrency:

    async def test_conflict_retried_once(self):
        store = FlakyStore(conflicts=1)
        ledger = PassportLedger(store, clock=lambda: NOW)

        outcome = await ledger.log_exposure(exposure(when=at(1)))

        assert store.commits == 2
        assert outcome.points == 20
        assert len(await store.recent_events("u-1", 10)) == 1

    async def test_second_conflict_propagates(self):
        store = FlakyStore(conflicts=2)
        ledger = PassportLedger(store, clock=lambda: NOW)

        with pytest.raises(LedgerConflict):
            await ledger.log_exposure(exposure(when=at(1)))

        assert store.commits == 2
        assert await store.load_profile("u-1") is None

    async def test_parallel_logs_for_one_user_all_count(self, ledger, store):
        outcomes = await asyncio.gather(
            *(ledger.log_exposure(exposure(when=at(1))) for _ in range(10))
        )
        profile = await store.load_profile("u-1")
        assert profile.points == 200
        assert profile.streak == 1
        assert profile.version == 10
        assert sorted(o.points for o in outcomes) == list(range(20, 201, 20))
        assert len(await store.recent_events("u-1", 50)) == 10

    async def test_two_ledgers_sharing_a_store(self, store):
        first = PassportLedger(store, clock=lambda: NOW)
        second = PassportLedger(store, clock=lambda: NOW)
        await asyncio.gather(
            first.log_exposure(exposure(when=at(1))),
            second.log_exposure(exposure(when=at(1))),
        )
        profile = await store.load_profile("u-1")
        assert profile.points == 40

    async def test_stale_version_rejected_by_store(self, store, ledger):
        await ledger.log_exposure(exposure(when=at(1)))
        current = await store.load_profile("u-1")
        [event] = await store.recent_events("u-1", 1)
        with pytest.raises(LedgerConflict):
            await store.commit(current.version - 1, current, event)


# ── Profiles, reads and reset ────────────────────────────────────────────────

class TestProfiles:

    async def test_ensure_profile_creates_and_updates(self, ledger):
        created = await ledger.ensure_profile(EnsureProfileRequest(user_key="u-1", nickname="Aisyah"))
        assert created.nickname == "Aisyah"
        assert created.points == 0

        await ledger.log_exposure(exposure(when=at(1)))
        updated = await ledger.ensure_profile(EnsureProfileRequest(user_key="u-1", home_city="Kuala Lumpur"))

        assert updated.nickname == "Aisyah"
        assert updated.home_city == "Kuala Lumpur"
        assert updated.points == 20

    async def test_logging_keeps_profile_fields(self, ledger, store):
        await ledger.ensure_profile(EnsureProfileRequest(user_key="u-1", nickname="Aisyah"))
        await ledger.log_exposure(exposure(when=at(1)))
        profile = await store.load_profile("u-1")
        assert profile.nickname == "Aisyah"
        assert profile.version == 1

    async def test_get_passport(self, ledger):
        await ledger.log_exposure(exposure(when=at(1)))
        await ledger.log_exposure(exposure(when=at(2)))
        await ledger.log_exposure(exposure(when=at(3)))

        passport = await ledger.get_passport("u-1", limit=2)

        assert passport.profile.streak == 3
        assert [e.activity_date for e in passport.recent_events] == ["2026-03-03", "2026-03-02"]

    async def test_get_passport_unknown_user(self, ledger):
        assert await ledger.get_passport("nobody") is None

    async def test_reset(self, ledger):
        await ledger.log_exposure(exposure(when=at(1)))
        assert await ledger.reset("u-1") is True
        assert await ledger.get_passport("u-1") is None
        assert await ledger.reset("u-1") is False

        fresh = await ledger.log_exposure(exposure(when=at(2)))
        assert (fresh.points, fresh.streak) == (20, 1)


# ── Insights ─────────────────────────────────────────────────────────────────

class TestInsights:

    @pytest.fixture()
    async def history(self, ledger):
        await ledger.log_exposure(exposure(when=at(1), pm25=42, no2=18, mode="walk"))
        await ledger.log_exposure(exposure(when=at(2), mode="walk"))
        await ledger.log_exposure(exposure(when=at(4), pm25=42, no2=18, mode="cycle"))
        return ledger

    async def test_window_summary(self, history):
        insights = await history.insights("u-1", now=NOW)

        assert insights.event_count == 3
        assert insights.average_score == pytest.approx(81.2)
        assert insights.risk_level == "low"
        assert insights.most_common_mode == "walk"
        assert insights.current_streak == 1
        assert [d.date for d in insights.daily] == ["2026-03-01", "2026-03-02", "2026-03-04"]
        assert insights.daily[1].average_score == 100.0

    async def test_old_events_fall_out_of_window(self, history):
        insights = await history.insights("u-1", now=datetime(2026, 3, 10, 12, tzinfo=timezone.utc))

        assert insights.event_count == 1
        assert insights.average_score == pytest.approx(71.8)
        assert insights.risk_level == "moderate"
        assert insights.current_streak == 0

    async def test_streak_alive_through_yesterday(self, history):
        insights = await history.insights("u-1", now=datetime(2026, 3, 5, 7, tzinfo=timezone.utc))
        assert insights.current_streak == 1

    async def test_empty_window(self, ledger):
        await ledger.ensure_profile(EnsureProfileRequest(user_key="u-1"))
        insights = await ledger.insights("u-1", now=NOW)
        assert insights.event_count == 0
        assert insights.average_score is None
        assert insights.risk_level is None
        assert insights.daily == []

    async def test_unknown_user(self, ledger):
        assert await ledger.insights("nobody", now=NOW) is None
