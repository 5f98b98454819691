import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from activity_overview.config import settings
from activity_overview.database import create_all_tables, engine
from activity_overview.dependencies import llm_client
from activity_overview.routers.health import router as health_router
from activity_overview.routers.overview import router as overview_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── STARTUP ──────────────────────────────────────────────────────────────
    await create_all_tables()
    logger.info("Database tables ready (LLM provider: %s)", settings.LLM_PROVIDER)

    yield

    # ── SHUTDOWN ─────────────────────────────────────────────────────────────
    await llm_client.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ── Session middleware: signed cookie carries user_id ─────────
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(overview_router)
app.include_router(health_router)


# ── Request logging middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s → %d [%.1fms]",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


# ── Global 500 handler ────────────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse({"error": "Internal server error."}, status_code=500)
