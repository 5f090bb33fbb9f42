"""
MongoDB connection management using Motor (async driver).

A single DatabaseClient instance is shared across all requests via a
module-level singleton. The lifespan hands `db_client.db` to the passport
store (see core/services.py); routes never touch it directly.

The only durable state owned by this service is the exposure passport:
  passport_profiles   — one document per user_key (unique index)
  passport_exposures  — append-only exposure events, indexed by owner

The connection is opened in FastAPI's lifespan (startup) and closed
on shutdown.
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from airwatch.core.config import settings

logger = logging.getLogger(__name__)

PROFILES_COLLECTION = "passport_profiles"
EXPOSURES_COLLECTION = "passport_exposures"


class DatabaseClient:
    """
    Holds the Motor client and selected database.

    Tests replace .client and .db directly on the singleton.
    """

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


# Module-level singleton — all app code references this object
db_client = DatabaseClient()


async def connect_to_mongo() -> None:
    """
    Create the MongoDB connection, validate it with a ping and make sure
    the passport indexes exist.

    Fails gracefully if MongoDB is unavailable — the API keeps serving
    provider queries and the passport routes report 503.
    """
    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    try:
        db_client.client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            tlsCAFile=certifi.where(),
        )
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        await ensure_indexes(db_client.db)
        logger.info("MongoDB connection established (db: %s)", settings.mongo_db_name)
    except Exception as exc:
        logger.warning(
            "MongoDB unavailable at startup: %s. "
            "API running in degraded mode — passport endpoints will fail.",
            exc,
        )
        db_client.client = None
        db_client.db = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Idempotently create the indexes the passport store relies on."""
    await db[PROFILES_COLLECTION].create_index("user_key", unique=True)
    await db[EXPOSURES_COLLECTION].create_index(
        [("user_key", ASCENDING), ("timestamp", DESCENDING)]
    )
    await db[EXPOSURES_COLLECTION].create_index("event_id", unique=True)


async def close_mongo_connection() -> None:
    """Close the MongoDB connection gracefully on app shutdown."""
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
