"""
AirWatch API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups, and
manages the MongoDB connection and provider client lifecycle.

Extension points:
  - Add new route groups with app.include_router() below
  - Add providers in airwatch/core/services.py
  - Change startup behaviour in the lifespan context manager
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from airwatch.core import database as db_module
from airwatch.core import services as services_module
from airwatch.core.config import API_VERSION, settings
from airwatch.core.errors import InvalidQuery, LedgerConflict, PassportStoreError
from airwatch.core.rate_limit import limiter
from airwatch.routes.air_quality import router as air_quality_router
from airwatch.routes.health import router as health_router
from airwatch.routes.healthcare import router as healthcare_router
from airwatch.routes.passport import router as passport_router

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: connect MongoDB (degraded mode if unreachable), then build the
    shared httpx client, caches, aggregators and passport ledger.
    Shutdown: close them in reverse order.
    """
    logger.info("Starting AirWatch API (env: %s)", settings.environment)
    await db_module.connect_to_mongo()
    services_module.build_services(settings)
    yield
    logger.info("Shutting down AirWatch API")
    await services_module.close_services()
    await db_module.close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="AirWatch API",
    description=(
        "Air-quality stations and healthcare facilities near you, plus a "
        "personal exposure passport. Provider data is best-effort: check "
        "`coverage` on every search response."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    # Disable docs in production to reduce attack surface
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Routes opt-in with @limiter.limit("N/minute") + request: Request parameter.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Error mapping ─────────────────────────────────────────────────────────────
@app.exception_handler(InvalidQuery)
async def invalid_query_handler(request: Request, exc: InvalidQuery):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(LedgerConflict)
async def ledger_conflict_handler(request: Request, exc: LedgerConflict):
    logger.warning("Giving up on passport write: %s", exc)
    return JSONResponse(
        status_code=409,
        content={"detail": "Exposure not recorded: concurrent update, please resubmit"},
    )


@app.exception_handler(PassportStoreError)
async def passport_store_error_handler(request: Request, exc: PassportStoreError):
    logger.error("Passport store failure: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Exposure not recorded: passport store unavailable"},
    )


# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(air_quality_router)
app.include_router(healthcare_router)
app.include_router(passport_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "AirWatch API",
        "version": API_VERSION,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
