"""
Health check endpoint.

Used by:
  - Container HEALTHCHECK instruction
  - Load balancers / orchestrators
  - Front-end to check API connectivity

Returns status + DB connectivity so callers can distinguish between
"API down" and "API up but DB unreachable". Provider reachability is not
probed here: upstream outages are reported per query in `coverage`.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from airwatch.core import database as db_module
from airwatch.core import services as services_module
from airwatch.core.config import API_VERSION, settings

logger = logging.getLogger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    database: str  # "connected" | "disconnected"
    passport_store: str  # "mongo" | "memory" | "unavailable"
    environment: str


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check() -> HealthResponse:
    """
    Liveness of the API and its database connection.

    HTTP 200 even when the database is disconnected.
    """
    db_status = "disconnected"
    try:
        # Access via module reference so tests can patch db_module.db_client
        if db_module.db_client.client is not None:
            await db_module.db_client.client.admin.command("ping")
            db_status = "connected"
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)

    if services_module.registry.passport_ledger is None:
        store = "unavailable"
    else:
        store = settings.passport_store_backend

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=db_status,
        passport_store=store,
        environment=settings.environment,
    )
