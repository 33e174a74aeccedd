# =============================================================================
# API Response Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API. Domain
# models (findings, sessions, stats) are returned as-is; the wrappers here
# add the request-level metadata clients need alongside them.
# =============================================================================

from pydantic import BaseModel, Field

from app.models.domain import (
    AnalysisResult,
    AnalysisSession,
    DocumentChunk,
    GroupedFindings,
    RateLimitStatus,
)


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class DocumentSummary(BaseModel):
    """Document listing entry. Omits the full text."""

    id: str
    filename: str
    mime_type: str
    size: int
    confidence: float
    chunk_count: int


class StoreDocumentResponse(BaseModel):
    """Response for POST /documents."""

    document_id: str
    session_id: str
    chunk_count: int = Field(description="Number of citation chunks created")


class SearchResponse(BaseModel):
    query: str
    results: list[DocumentChunk]


class AnalyzeResponse(BaseModel):
    """Response for POST /analyze."""

    success: bool = True
    analysis: AnalysisResult
    session_id: str
    documents_analyzed: int
    model: str = Field(description="Model configured for analysis")


class ProgressiveAnalysisResponse(BaseModel):
    """
    Response for POST /analyze/progressive.

    Returned as soon as the quick scan finishes. Poll
    GET /analyze/sessions/{session_id} for the detailed phase.
    """

    success: bool = True
    session: AnalysisSession
    documents_analyzed: int
    total_documents: int
    next_phase: str | None = "detailed"


class FindingsResponse(BaseModel):
    session_id: str
    findings: GroupedFindings
    total: int


class RateLimitStatusResponse(BaseModel):
    """Response for GET /rate-limit-status."""

    status: RateLimitStatus
    user_id: str
    queue_position: int = Field(
        description="1-based position of this user's first queued request, -1 if none",
    )
