# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn app.main:app --reload
#
# DESIGN DECISION: Single worker process.
# The RateLimitManager keeps the provider budget in process memory. Running
# several workers would give each its own budget and overrun the provider's
# real limits, so deploy with one worker per provider key.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import analyze, documents, rate_limit
from app.api.deps import get_progressive_controller
from app.config import settings
from app.models.responses import HealthResponse
from app.services.rate_limiter import get_rate_limit_manager

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    yield
    logger.info("Shutting down: cancelling background analyses")
    await get_progressive_controller().shutdown()
    await get_rate_limit_manager().shutdown()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Analyses parsed UK property documents with an LLM under a shared "
        "rate budget and traces every finding to a quoted excerpt."
    ),
    lifespan=lifespan,
)

app.include_router(documents.router)
app.include_router(analyze.router)
app.include_router(rate_limit.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
