# =============================================================================
# Documents API: session-scoped document storage
# =============================================================================
#
# Documents arrive already extracted (ParsedDocument JSON). Storing one
# chunks it for citation lookup. All routes are scoped to the session in
# the X-Session-Id header.
#
#   POST   /documents            — store (or replace) a parsed document
#   GET    /documents            — list stored documents
#   GET    /documents/stats      — counts and average extraction confidence
#   GET    /documents/search     — naive substring search over chunks
#   GET    /documents/{id}       — one document with full text
#   DELETE /documents            — clear the session
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_result_store, to_http_exception
from app.models.domain import DocumentStats, ParsedDocument
from app.models.responses import (
    DocumentSummary,
    SearchResponse,
    StoreDocumentResponse,
)
from app.services.errors import AnalysisError
from app.services.result_store import ResultStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.post(
    "",
    response_model=StoreDocumentResponse,
    status_code=201,
    summary="Store a parsed document in the session",
)
async def store_document(
    document: ParsedDocument,
    store: ResultStore = Depends(get_result_store),
) -> StoreDocumentResponse:
    try:
        chunks = await store.store_document(document)
    except AnalysisError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        # Chunker configuration errors
        raise HTTPException(status_code=400, detail=str(e)) from e

    return StoreDocumentResponse(
        document_id=document.id,
        session_id=store.session_id,
        chunk_count=len(chunks),
    )


@router.get("", response_model=list[DocumentSummary], summary="List stored documents")
async def list_documents(
    store: ResultStore = Depends(get_result_store),
) -> list[DocumentSummary]:
    summaries = []
    for document in await store.get_all_documents():
        summaries.append(DocumentSummary(
            id=document.id,
            filename=document.filename,
            mime_type=document.mime_type,
            size=document.size,
            confidence=document.quality.confidence,
            chunk_count=len(await store.get_chunks(document.id)),
        ))
    return summaries


@router.get("/stats", response_model=DocumentStats, summary="Document statistics")
async def document_stats(
    store: ResultStore = Depends(get_result_store),
) -> DocumentStats:
    return await store.get_document_stats()


@router.get("/search", response_model=SearchResponse, summary="Search document chunks")
async def search_documents(
    q: str = Query(..., min_length=1, description="Case-insensitive substring"),
    max_results: int = Query(default=10, ge=1, le=100),
    store: ResultStore = Depends(get_result_store),
) -> SearchResponse:
    results = await store.search_documents(q, max_results=max_results)
    return SearchResponse(query=q, results=results)


@router.get("/{document_id}", response_model=ParsedDocument, summary="Get one document")
async def get_document(
    document_id: str,
    store: ResultStore = Depends(get_result_store),
) -> ParsedDocument:
    document = await store.get_document(document_id)
    if document is None:
        raise HTTPException(
            status_code=404,
            detail=f"Document {document_id} not found in session {store.session_id}",
        )
    return document


@router.delete("", summary="Clear all documents and results in the session")
async def clear_documents(
    store: ResultStore = Depends(get_result_store),
) -> dict:
    await store.clear_documents()
    logger.info("Session %s cleared via API", store.session_id)
    return {"session_id": store.session_id, "cleared": True}
