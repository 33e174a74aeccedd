# =============================================================================
# API Dependencies: FastAPI Dependency Injection
# =============================================================================
#
# Every route resolves its collaborators through these functions so tests
# can swap them with app.dependency_overrides:
#
#   get_session_id()             — X-Session-Id header (required)
#   get_user_id()                — X-User-Id header (default "anonymous")
#   get_result_store()           — ResultStore bound to the request's session
#   get_orchestrator()           — AnalysisOrchestrator on the shared limiter
#   get_progressive_controller() — process-wide controller (tracks runs)
#
# ERROR MAPPING: AnalysisError subclasses carry their own HTTP status and
# detail body; to_http_exception() converts them for route handlers.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException

from app.agents.orchestrator import AnalysisOrchestrator
from app.agents.progressive import ProgressiveController
from app.services.errors import AnalysisError
from app.services.kv_store import KeyValueStore, get_kv_store
from app.services.rate_limiter import RateLimitManager, get_rate_limit_manager
from app.services.result_store import ResultStore, validate_session_id

logger = logging.getLogger(__name__)


def get_session_id(x_session_id: str | None = Header(default=None)) -> str:
    if not x_session_id or not x_session_id.strip():
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Missing X-Session-Id header.",
                "code": "VALIDATION_ERROR",
            },
        )
    try:
        return validate_session_id(x_session_id.strip())
    except AnalysisError as e:
        raise to_http_exception(e) from e


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    return (x_user_id or "").strip() or "anonymous"


def get_result_store(
    session_id: str = Depends(get_session_id),
    kv: KeyValueStore = Depends(get_kv_store),
) -> ResultStore:
    return ResultStore(session_id, kv)


def get_orchestrator(
    rate_limiter: RateLimitManager = Depends(get_rate_limit_manager),
) -> AnalysisOrchestrator:
    # The provider is resolved lazily so a missing API key surfaces as a
    # ProviderConfigError on the first analysis, not on every request.
    return AnalysisOrchestrator(rate_limiter=rate_limiter)


_controller: ProgressiveController | None = None


def get_progressive_controller() -> ProgressiveController:
    global _controller
    if _controller is None:
        _controller = ProgressiveController(
            get_kv_store(),
            AnalysisOrchestrator(rate_limiter=get_rate_limit_manager()),
        )
    return _controller


def to_http_exception(error: AnalysisError) -> HTTPException:
    """HTTPException carrying the error's status, detail and Retry-After."""
    headers = None
    if error.retry_after is not None:
        headers = {"Retry-After": str(int(error.retry_after))}
    return HTTPException(
        status_code=error.status_code,
        detail=error.to_detail(),
        headers=headers,
    )
