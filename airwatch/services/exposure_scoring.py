"""
exposure_scoring.py — Pollutant readings → exposure score, risk tier, tips.

A weighted linear penalty against a baseline of 100, clamped to [0, 100]:

    score = 100 − (pm25 / 2 + no2 / 2.5 + co × 8)

Units: pm25 and no2 in µg/m³, co in mg/m³. A pollutant that was not
supplied contributes no penalty, and no tip ever describes it — absent is
not the same as clean.

Pure and deterministic: identical inputs always give identical output.

USAGE
─────
    from airwatch.services.exposure_scoring import score_exposure

    assessment = score_exposure(pm25=42.0, no2=18.0)
    # assessment.score      → 71.8
    # assessment.risk_level → "moderate"
    # assessment.tips[0]    → "PM2.5 is elevated ..."
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from airwatch.core.errors import InvalidQuery

# ── Penalty weights ──────────────────────────────────────────────────────────

_PM25_DIVISOR = 2.0
_NO2_DIVISOR  = 2.5
_CO_WEIGHT    = 8.0

# ── Tip thresholds ───────────────────────────────────────────────────────────

PM25_HIGH       = 35.0   # µg/m³ — unhealthy for sensitive groups
PM25_GUIDELINE  = 15.0   # µg/m³ — WHO 24-h guideline
NO2_GUIDELINE   = 40.0   # µg/m³
CO_GUIDELINE    = 4.0    # mg/m³ — WHO 24-h guideline

# ── Risk tiers (ties go to the safer tier) ───────────────────────────────────

_RISK_THRESHOLDS = [
    (80.0, "low"),
    (50.0, "moderate"),
    (0.0,  "high"),
]

_POLLUTANT_LABELS = (("pm25", "PM2.5"), ("no2", "NO₂"), ("co", "CO"))


@dataclass(frozen=True)
class ExposureAssessment:
    score: float
    risk_level: str
    tips: list[str] = field(default_factory=list)


def compute_exposure_score(
    pm25: Optional[float] = None,
    no2: Optional[float] = None,
    co: Optional[float] = None,
) -> float:
    """Score in [0, 100], rounded to one decimal. Higher = cleaner air."""
    penalty = 0.0
    if pm25 is not None:
        penalty += pm25 / _PM25_DIVISOR
    if no2 is not None:
        penalty += no2 / _NO2_DIVISOR
    if co is not None:
        penalty += co * _CO_WEIGHT
    return round(max(0.0, min(100.0, 100.0 - penalty)), 1)


def compute_risk_level(score: float) -> str:
    """Map a score to 'low' | 'moderate' | 'high'."""
    for threshold, level in _RISK_THRESHOLDS:
        if score >= threshold:
            return level
    return "high"


def generate_tips(
    risk_level: str,
    pm25: Optional[float] = None,
    no2: Optional[float] = None,
    co: Optional[float] = None,
) -> list[str]:
    """
    Ordered advisory tips. Only thresholds of supplied readings are checked.
    """
    tips: list[str] = []

    if pm25 is not None:
        if pm25 > PM25_HIGH:
            tips.append(
                "PM2.5 is elevated — wear a well-fitted N95 mask outdoors and "
                "move strenuous activity indoors."
            )
        elif pm25 > PM25_GUIDELINE:
            tips.append(
                "PM2.5 is above the WHO guideline — keep outdoor sessions short "
                "and take breaks away from traffic."
            )

    if no2 is not None and no2 > NO2_GUIDELINE:
        tips.append(
            "NO₂ is elevated — avoid busy roads and choose side streets or parks "
            "for your route."
        )

    if co is not None and co > CO_GUIDELINE:
        tips.append(
            "CO is elevated — ventilate enclosed spaces and avoid idling traffic "
            "or parking garages."
        )

    if risk_level == "high":
        tips.append(
            "Overall exposure is high — children, older adults and people with "
            "heart or lung conditions should stay indoors where possible."
        )

    if tips:
        return tips

    readings = {"pm25": pm25, "no2": no2, "co": co}
    supplied = [label for key, label in _POLLUTANT_LABELS if readings[key] is not None]
    if supplied and risk_level == "moderate":
        tips.append(
            f"Measured levels ({', '.join(supplied)}) are each within guideline values, "
            "but their combined load is moderate — pace longer outdoor sessions."
        )
    elif supplied:
        tips.append(
            f"Measured levels ({', '.join(supplied)}) are within guideline values — "
            "a good time to be outside."
        )
    else:
        tips.append(
            "No pollutant readings were supplied — check a nearby monitoring "
            "station before heading out."
        )
    return tips


def score_exposure(
    pm25: Optional[float] = None,
    no2: Optional[float] = None,
    co: Optional[float] = None,
) -> ExposureAssessment:
    """
    Score one set of readings.

    Raises:
        InvalidQuery: if any supplied reading is negative or not finite.
    """
    for name, value in (("pm25", pm25), ("no2", no2), ("co", co)):
        if value is None:
            continue
        if not math.isfinite(value):
            raise InvalidQuery(f"{name} must be a finite number")
        if value < 0:
            raise InvalidQuery(f"{name} must not be negative")

    score = compute_exposure_score(pm25, no2, co)
    risk  = compute_risk_level(score)
    return ExposureAssessment(score=score, risk_level=risk, tips=generate_tips(risk, pm25, no2, co))
