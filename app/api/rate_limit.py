# =============================================================================
# Rate Limit Status API
# =============================================================================
#
# GET /rate-limit-status returns a read-only snapshot of the shared
# provider budget plus the caller's queue position, so clients can show
# expected waits before starting an analysis.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_user_id
from app.models.responses import RateLimitStatusResponse
from app.services.rate_limiter import RateLimitManager, get_rate_limit_manager

router = APIRouter(tags=["Rate Limits"])


@router.get(
    "/rate-limit-status",
    response_model=RateLimitStatusResponse,
    summary="Current provider budget, queue and recommendations",
)
async def rate_limit_status(
    user_id: str = Depends(get_user_id),
    manager: RateLimitManager = Depends(get_rate_limit_manager),
) -> RateLimitStatusResponse:
    return RateLimitStatusResponse(
        status=manager.get_rate_limit_status(),
        user_id=user_id,
        queue_position=manager.get_queue_position(user_id),
    )
