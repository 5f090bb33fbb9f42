"""
passport.py — Exposure passport routes.

Routes:
  POST   /api/v1/passport/profile              — create / patch a profile
  POST   /api/v1/passport/exposures            — log + score one exposure (30/minute)
  GET    /api/v1/passport/{user_key}           — profile + recent events
  GET    /api/v1/passport/{user_key}/insights  — rolling 7-day summary
  DELETE /api/v1/passport/{user_key}           — admin reset (X-Admin-Token)

user_key is supplied by the auth layer in front of this service and is
trusted as-is.

Failure modes (mapped in main.py):
  InvalidQuery        → 422
  LedgerConflict      → 409 "Exposure not recorded: concurrent update, please resubmit"
  PassportStoreError  → 503 "Exposure not recorded: passport store unavailable"
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from airwatch.core.config import settings
from airwatch.core.rate_limit import limiter
from airwatch.core.services import get_passport_ledger
from airwatch.models.passport import (
    EnsureProfileRequest,
    ExposureLogRequest,
    ExposureOutcome,
    InsightsResponse,
    PassportResponse,
    ProfileOut,
)
from airwatch.services.passport_ledger import PassportLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/passport", tags=["passport"])


@router.post("/profile", response_model=ProfileOut)
async def ensure_profile(
    payload: EnsureProfileRequest,
    ledger: PassportLedger = Depends(get_passport_ledger),
):
    """Create the profile if it does not exist; update nickname / home_city if given."""
    return await ledger.ensure_profile(payload)


@router.post("/exposures", response_model=ExposureOutcome, status_code=201)
@limiter.limit("30/minute")
async def log_exposure(
    request: Request,
    payload: ExposureLogRequest,
    ledger: PassportLedger = Depends(get_passport_ledger),
):
    """Score the readings, update streak and points, and append the event."""
    return await ledger.log_exposure(payload)


@router.get("/{user_key}", response_model=PassportResponse)
async def get_passport(
    user_key: str,
    limit: int = Query(default=10, ge=1, le=100),
    ledger: PassportLedger = Depends(get_passport_ledger),
):
    passport = await ledger.get_passport(user_key, limit=limit)
    if passport is None:
        raise HTTPException(status_code=404, detail="Passport not found")
    return passport


@router.get("/{user_key}/insights", response_model=InsightsResponse)
async def get_insights(
    user_key: str,
    window_days: int = Query(default=7, ge=1, le=90),
    ledger: PassportLedger = Depends(get_passport_ledger),
):
    insights = await ledger.insights(user_key, window_days=window_days)
    if insights is None:
        raise HTTPException(status_code=404, detail="Passport not found")
    return insights


@router.delete("/{user_key}")
async def reset_passport(
    user_key: str,
    x_admin_token: Optional[str] = Header(default=None),
    ledger: PassportLedger = Depends(get_passport_ledger),
):
    """Delete a profile and its events. Disabled unless ADMIN_TOKEN is configured."""
    expected = settings.admin_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("Rejected passport reset for %s: bad or missing admin token", user_key)
        raise HTTPException(status_code=403, detail="Admin token required")

    if not await ledger.reset(user_key):
        raise HTTPException(status_code=404, detail="Passport not found")
    return {"user_key": user_key, "deleted": True}
