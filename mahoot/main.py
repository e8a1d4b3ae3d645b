"""
Mahoot Feed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Connect to Redis (per-user feed leases)
  4. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from mahoot.clients.redis_client import close_redis, init_redis
from mahoot.config import settings
from mahoot.database import init_db
from mahoot.errors import MahootError, StorageError
from mahoot.routers import feed, followees, preferences, stats
from mahoot.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Mahoot Feed API (env=%s)", settings.environment)

    await init_db()
    await init_redis()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await close_redis()


app = FastAPI(
    title="Mahoot Feed API",
    description=(
        "Time-bounded feed: a daily post budget per user and a fair, "
        "per-followee daily quota (the Mahoot number)."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(preferences.router, prefix="/preferences", tags=["Preferences"])
app.include_router(followees.router, prefix="/followees", tags=["Followees"])
app.include_router(stats.router, prefix="/stats", tags=["Stats"])


# ── Error mapping ──────────────────────────────────────────────────────────
@app.exception_handler(MahootError)
async def mahoot_error_handler(request: Request, exc: MahootError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics — scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
