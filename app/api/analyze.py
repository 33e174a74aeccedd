# =============================================================================
# Analyze API: full and progressive document analysis
# =============================================================================
#
#   POST /analyze                       — run the full graph, wait for it
#   POST /analyze/progressive           — quick scan now, detailed later
#   GET  /analyze/sessions/{session_id} — poll progressive state
#   GET  /analyze/findings              — stored findings grouped by type
#
# This layer is thin: validate, delegate, map AnalysisError subclasses to
# their HTTP status (429 RATE_LIMITED, 503 SERVICE_OVERLOADED,
# 408 REQUEST_TIMEOUT, ...) with retry hints in the body and Retry-After.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.agents.orchestrator import AnalysisOrchestrator
from app.agents.progressive import ProgressiveController
from app.api.deps import (
    get_orchestrator,
    get_progressive_controller,
    get_result_store,
    get_user_id,
    to_http_exception,
)
from app.config import settings
from app.models.domain import AnalysisSession
from app.models.requests import AnalysisOptions, AnalyzeRequest
from app.models.responses import (
    AnalyzeResponse,
    FindingsResponse,
    ProgressiveAnalysisResponse,
)
from app.services.errors import AnalysisError, ValidationError
from app.services.result_store import ResultStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyze", tags=["Analysis"])


def _with_user(options: AnalysisOptions, user_id: str) -> AnalysisOptions:
    if options.user_id == "anonymous" and user_id != "anonymous":
        return options.model_copy(update={"user_id": user_id})
    return options


@router.post(
    "",
    response_model=AnalyzeResponse,
    summary="Analyze stored documents",
    description=(
        "Classify, analyse and summarise the given documents. Every LLM call "
        "passes through the shared rate limiter, so this request may wait in "
        "the queue when the provider budget is exhausted."
    ),
)
async def analyze(
    request: AnalyzeRequest,
    store: ResultStore = Depends(get_result_store),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(get_user_id),
) -> AnalyzeResponse:
    options = _with_user(request.options, user_id)
    logger.info(
        "Analyze request: session=%s, documents=%d, type=%s",
        store.session_id, len(request.document_ids), options.analysis_type,
    )

    try:
        documents = []
        for document_id in dict.fromkeys(request.document_ids):
            document = await store.get_document(document_id)
            if document is not None:
                documents.append(document)
        if not documents:
            raise ValidationError("No valid documents found.")

        result = await orchestrator.analyze_documents(documents, options)

        await store.clear_analysis_results()
        for finding in result.findings:
            await store.store_analysis_result(finding)
    except AnalysisError as e:
        logger.warning("Analysis failed for session %s: %s", store.session_id, e.message)
        raise to_http_exception(e) from e

    return AnalyzeResponse(
        analysis=result,
        session_id=store.session_id,
        documents_analyzed=len(documents),
        model=settings.llm_model,
    )


@router.post(
    "/progressive",
    response_model=ProgressiveAnalysisResponse,
    status_code=202,
    summary="Start a progressive analysis",
)
async def analyze_progressive(
    request: AnalyzeRequest,
    store: ResultStore = Depends(get_result_store),
    controller: ProgressiveController = Depends(get_progressive_controller),
    user_id: str = Depends(get_user_id),
) -> ProgressiveAnalysisResponse:
    options = _with_user(request.options, user_id)
    try:
        run = await controller.start(store.session_id, request.document_ids, options)
    except AnalysisError as e:
        raise to_http_exception(e) from e

    session = run.session
    return ProgressiveAnalysisResponse(
        session=session,
        documents_analyzed=session.documents_analyzed,
        total_documents=len(session.document_ids),
        next_phase="detailed",
    )


@router.get(
    "/sessions/{session_id}",
    response_model=AnalysisSession,
    summary="Poll a progressive analysis session",
)
async def get_session(
    session_id: str,
    controller: ProgressiveController = Depends(get_progressive_controller),
) -> AnalysisSession:
    try:
        session = await controller.get_session(session_id)
    except AnalysisError as e:
        raise to_http_exception(e) from e
    if session is None:
        raise HTTPException(
            status_code=404, detail=f"No analysis found for session {session_id}",
        )
    return session


@router.get(
    "/findings",
    response_model=FindingsResponse,
    summary="Stored findings grouped by type",
)
async def get_findings(
    store: ResultStore = Depends(get_result_store),
) -> FindingsResponse:
    grouped = await store.get_analysis_results()
    return FindingsResponse(
        session_id=store.session_id,
        findings=grouped,
        total=len(grouped.all()),
    )
