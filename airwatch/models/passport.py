"""
passport.py — Pydantic schemas for the exposure passport.

Separation of concerns:
  Profile           — per-user running state (points, streak, best streak)
  ExposureEvent     — one immutable, scored exposure log entry
  ExposureLogRequest / ExposureOutcome — POST /api/v1/passport/exposures
  EnsureProfileRequest                 — POST /api/v1/passport/profile
  PassportResponse / InsightsResponse  — read-side views
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from airwatch.models.poi import GeoPoint

RISK_LEVELS = ("low", "moderate", "high")


# ── Stored state ─────────────────────────────────────────────────────────────

class Profile(BaseModel):
    """Per-user passport state as stored."""

    user_key:  str
    nickname:  Optional[str] = None
    home_city: Optional[str] = None
    points:      int = Field(default=0, ge=0)
    streak:      int = Field(default=0, ge=0)
    best_streak: int = Field(default=0, ge=0)
    last_active_date: Optional[str] = None     # ISO date; None = never active
    version: int = 0                           # bumped on every commit
    pending_event_id: Optional[str] = None     # commit protocol marker (Mongo store)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class ExposureEvent(BaseModel):
    """One scored exposure log entry. Append-only."""

    event_id: str
    user_key: str
    location: GeoPoint
    location_name: str
    pm25: Optional[float] = None
    no2:  Optional[float] = None
    co:   Optional[float] = None
    mode: Optional[str]   = None
    timestamp:     datetime
    activity_date: str            # ISO date in the ledger timezone
    risk_level: str
    tips:  list[str]
    score: float
    points_awarded: int


# ── Requests ─────────────────────────────────────────────────────────────────

class EnsureProfileRequest(BaseModel):
    """Payload for POST /api/v1/passport/profile."""

    user_key:  str = Field(..., min_length=1, max_length=128)
    nickname:  Optional[str] = Field(default=None, max_length=64)
    home_city: Optional[str] = Field(default=None, max_length=128)


class ExposureLogRequest(BaseModel):
    """Payload for POST /api/v1/passport/exposures."""

    user_key: str = Field(..., min_length=1, max_length=128)
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    location_name: str = Field(..., min_length=1, max_length=200)
    pm25: Optional[float] = Field(default=None, ge=0)
    no2:  Optional[float] = Field(default=None, ge=0)
    co:   Optional[float] = Field(default=None, ge=0)
    mode: Optional[str]   = Field(default=None, max_length=32)   # walk | cycle | drive | transit ...
    timestamp: Optional[datetime] = None                          # defaults to call time


# ── Responses ────────────────────────────────────────────────────────────────

class ExposureOutcome(BaseModel):
    """Result of logging one exposure."""

    score: float
    risk_level: str
    tips: list[str]
    streak: int
    best_streak: int
    points: int
    points_awarded: int
    event_id: str


class ProfileOut(BaseModel):
    """Public profile view (no concurrency bookkeeping)."""

    user_key:  str
    nickname:  Optional[str] = None
    home_city: Optional[str] = None
    points: int
    streak: int
    best_streak: int
    last_active_date: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileOut":
        return cls(**profile.model_dump(include=set(cls.model_fields)))


class PassportResponse(BaseModel):
    profile: ProfileOut
    recent_events: list[ExposureEvent]


class DailyInsight(BaseModel):
    date: str
    average_score: float
    events: int


class InsightsResponse(BaseModel):
    user_key: str
    window_days: int
    event_count: int
    average_score: Optional[float] = None
    risk_level: Optional[str] = None
    most_common_mode: Optional[str] = None
    current_streak: int = 0
    daily: list[DailyInsight] = Field(default_factory=list)
