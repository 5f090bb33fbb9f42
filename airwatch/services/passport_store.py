"""
passport_store.py — Persistence for passport profiles and exposure events.

Two backends share one async interface:
  InMemoryPassportStore — dicts behind an asyncio.Lock (tests, local demos)
  MongoPassportStore    — Motor collections passport_profiles / passport_exposures

commit() is the only write path for scored events. It applies the profile
update and appends the event as one unit, guarded by the profile `version`
(optimistic concurrency). A stale version raises LedgerConflict.

Mongo commit protocol (no transactions or replica set required):
  1. insert the event with committed=False            (invisible to readers)
  2. update_one({user_key, version: expected}) → $set state, version+1,
     pending_event_id=<event>                          (the commit point)
  3. mark the event committed, clear pending_event_id

If step 2 matches nothing the pending event is deleted and LedgerConflict is
raised. A crash between 2 and 3 is repaired by load_profile(), which rolls a
leftover pending_event_id forward. A crash between 1 and 2 leaves an event
that readers never see.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from airwatch.core.database import EXPOSURES_COLLECTION, PROFILES_COLLECTION
from airwatch.core.errors import LedgerConflict, PassportStoreError
from airwatch.models.passport import ExposureEvent, Profile

logger = logging.getLogger(__name__)

# Profile fields written by commit(); nickname / home_city belong to ensure()
_STATE_FIELDS = ("points", "streak", "best_streak", "last_active_date", "updated_at")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class PassportStore:
    """Async interface implemented by every backend."""

    async def load_profile(self, user_key: str) -> Optional[Profile]:
        raise NotImplementedError

    async def ensure_profile(self, user_key: str, fields: dict[str, Any]) -> Profile:
        """Create the profile if missing, then $set the supplied fields."""
        raise NotImplementedError

    async def commit(self, expected_version: int, profile: Profile, event: ExposureEvent) -> Profile:
        """Persist profile state + event atomically; returns the stored profile."""
        raise NotImplementedError

    async def recent_events(self, user_key: str, limit: int) -> list[ExposureEvent]:
        """Newest-first committed events."""
        raise NotImplementedError

    async def events_since(self, user_key: str, since: datetime) -> list[ExposureEvent]:
        """Committed events with timestamp >= since, oldest first."""
        raise NotImplementedError

    async def delete_profile(self, user_key: str) -> bool:
        """Remove the profile and all its events. False if there was no profile."""
        raise NotImplementedError


# ── In-memory ────────────────────────────────────────────────────────────────

class InMemoryPassportStore(PassportStore):

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._profiles: dict[str, Profile] = {}
        self._events: dict[str, list[ExposureEvent]] = {}

    async def load_profile(self, user_key: str) -> Optional[Profile]:
        async with self._lock:
            profile = self._profiles.get(user_key)
            return profile.model_copy() if profile is not None else None

    async def ensure_profile(self, user_key: str, fields: dict[str, Any]) -> Profile:
        async with self._lock:
            profile = self._profiles.get(user_key) or Profile(user_key=user_key)
            if fields:
                profile = profile.model_copy(update={**fields, "updated_at": _utcnow()})
            self._profiles[user_key] = profile
            return profile.model_copy()

    async def commit(self, expected_version: int, profile: Profile, event: ExposureEvent) -> Profile:
        async with self._lock:
            current = self._profiles.get(profile.user_key)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise LedgerConflict(profile.user_key)

            base = current if current is not None else profile
            stored = base.model_copy(update={
                **{f: getattr(profile, f) for f in _STATE_FIELDS},
                "version": expected_version + 1,
            })
            self._profiles[profile.user_key] = stored
            self._events.setdefault(profile.user_key, []).append(event)
            return stored.model_copy()

    async def recent_events(self, user_key: str, limit: int) -> list[ExposureEvent]:
        async with self._lock:
            events = sorted(self._events.get(user_key, []), key=lambda e: e.timestamp, reverse=True)
            return events[:limit]

    async def events_since(self, user_key: str, since: datetime) -> list[ExposureEvent]:
        async with self._lock:
            events = [e for e in self._events.get(user_key, []) if e.timestamp >= since]
            return sorted(events, key=lambda e: e.timestamp)

    async def delete_profile(self, user_key: str) -> bool:
        async with self._lock:
            self._events.pop(user_key, None)
            return self._profiles.pop(user_key, None) is not None


# ── MongoDB ──────────────────────────────────────────────────────────────────

def _as_utc(value: datetime) -> datetime:
    # Motor returns naive datetimes that are UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _profile_from_doc(doc: dict) -> Profile:
    doc = {k: v for k, v in doc.items() if k != "_id"}
    for key in ("created_at", "updated_at"):
        if isinstance(doc.get(key), datetime):
            doc[key] = _as_utc(doc[key])
    return Profile(**doc)


def _event_from_doc(doc: dict) -> ExposureEvent:
    doc = {k: v for k, v in doc.items() if k not in ("_id", "committed")}
    doc["timestamp"] = _as_utc(doc["timestamp"])
    return ExposureEvent(**doc)


class MongoPassportStore(PassportStore):
    """
    Motor-backed store.

    Args:
        db: AsyncIOMotorDatabase with the indexes from core.database.ensure_indexes.
    """

    def __init__(self, db) -> None:
        self.db = db
        self.profiles = db[PROFILES_COLLECTION]
        self.exposures = db[EXPOSURES_COLLECTION]

    async def load_profile(self, user_key: str) -> Optional[Profile]:
        try:
            doc = await self.profiles.find_one({"user_key": user_key})
            if doc is None:
                return None
            if doc.get("pending_event_id"):
                await self._roll_forward(user_key, doc["pending_event_id"])
                doc["pending_event_id"] = None
        except PyMongoError as exc:
            raise PassportStoreError(f"load_profile failed: {exc}") from exc
        return _profile_from_doc(doc)

    async def ensure_profile(self, user_key: str, fields: dict[str, Any]) -> Profile:
        now = _utcnow()
        on_insert = Profile(user_key=user_key, created_at=now, updated_at=now).model_dump()
        for key in list(fields) + ["updated_at"]:
            on_insert.pop(key, None)
        try:
            try:
                doc = await self.profiles.find_one_and_update(
                    {"user_key": user_key},
                    {"$setOnInsert": on_insert, "$set": {**fields, "updated_at": now}},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Lost an upsert race; the other writer created it
                doc = await self.profiles.find_one_and_update(
                    {"user_key": user_key},
                    {"$set": {**fields, "updated_at": now}},
                    return_document=ReturnDocument.AFTER,
                )
        except PyMongoError as exc:
            raise PassportStoreError(f"ensure_profile failed: {exc}") from exc
        return _profile_from_doc(doc)

    async def commit(self, expected_version: int, profile: Profile, event: ExposureEvent) -> Profile:
        user_key = profile.user_key
        event_doc = {**event.model_dump(), "committed": False}
        state = {f: getattr(profile, f) for f in _STATE_FIELDS}

        try:
            await self.exposures.insert_one(event_doc)

            result = await self.profiles.update_one(
                {"user_key": user_key, "version": expected_version},
                {"$set": {**state, "version": expected_version + 1, "pending_event_id": event.event_id}},
            )
            if result.matched_count == 0:
                if expected_version != 0:
                    await self._discard(event.event_id)
                    raise LedgerConflict(user_key)
                await self._insert_new(profile, event)

            await self._roll_forward(user_key, event.event_id)
        except (LedgerConflict, PassportStoreError):
            raise
        except PyMongoError as exc:
            raise PassportStoreError(f"commit failed: {exc}") from exc

        return profile.model_copy(update={"version": expected_version + 1, "pending_event_id": None})

    async def recent_events(self, user_key: str, limit: int) -> list[ExposureEvent]:
        try:
            cursor = (
                self.exposures.find({"user_key": user_key, "committed": True})
                .sort("timestamp", DESCENDING)
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise PassportStoreError(f"recent_events failed: {exc}") from exc
        return [_event_from_doc(d) for d in docs]

    async def events_since(self, user_key: str, since: datetime) -> list[ExposureEvent]:
        try:
            cursor = self.exposures.find(
                {"user_key": user_key, "committed": True, "timestamp": {"$gte": since}}
            ).sort("timestamp", 1)
            docs = await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise PassportStoreError(f"events_since failed: {exc}") from exc
        return [_event_from_doc(d) for d in docs]

    async def delete_profile(self, user_key: str) -> bool:
        try:
            result = await self.profiles.delete_one({"user_key": user_key})
            await self.exposures.delete_many({"user_key": user_key})
        except PyMongoError as exc:
            raise PassportStoreError(f"delete_profile failed: {exc}") from exc
        return result.deleted_count > 0

    # ── Commit protocol helpers ──────────────────────────────────────────────

    async def _insert_new(self, profile: Profile, event: ExposureEvent) -> None:
        doc = profile.model_dump()
        doc.update(version=1, pending_event_id=event.event_id)
        try:
            await self.profiles.insert_one(doc)
        except DuplicateKeyError as exc:
            await self._discard(event.event_id)
            raise LedgerConflict(profile.user_key) from exc

    async def _roll_forward(self, user_key: str, event_id: str) -> None:
        await self.exposures.update_one({"event_id": event_id}, {"$set": {"committed": True}})
        await self.profiles.update_one(
            {"user_key": user_key, "pending_event_id": event_id},
            {"$set": {"pending_event_id": None}},
        )
        logger.debug("Committed exposure %s for %s", event_id, user_key)

    async def _discard(self, event_id: str) -> None:
        await self.exposures.delete_one({"event_id": event_id, "committed": False})
