# =============================================================================
# Result Store: session-scoped documents, chunks and findings
# =============================================================================
#
# One ResultStore instance serves one session. All state lives in a
# KeyValueStore under session-prefixed keys, so any backend satisfying the
# protocol (in-memory, Redis) works unchanged.
#
# KEY LAYOUT:
#   session:{sid}:documents               → {document_id: StoredDocument}
#   session:{sid}:results:{document_id}   → [Finding, ...]
#   session:{sid}:results:_unattributed   → findings citing no document
#   session:{sid}:analysis                → AnalysisSession
#
# FAN-OUT: a finding is written to the result list of every document its
# citations reference. Reads de-duplicate by finding id, so a finding that
# cites three documents is still returned once.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
import weakref
from datetime import UTC, datetime

from pydantic import BaseModel, Field, TypeAdapter

from app.models.domain import (
    SEVERITY_RANK,
    AnalysisSession,
    Citation,
    DocumentChunk,
    DocumentStats,
    Finding,
    GroupedFindings,
    ParsedDocument,
)
from app.services.chunker import chunk_document
from app.services.errors import ValidationError
from app.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_UNATTRIBUTED = "_unattributed"

# Session ids become part of every key, so they must not contain the key
# separator or Redis glob characters.
_SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_.-]{1,128}")

# One lock per (backend, session), shared by every ResultStore instance for
# that session. Entries disappear once no store holds the lock.
_session_locks: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def validate_session_id(session_id: str) -> str:
    """
    Raises:
        ValidationError: If the id is empty, longer than 128 characters or
            contains anything besides letters, digits, '_', '.' and '-'.
    """
    if not session_id or not _SESSION_ID_PATTERN.fullmatch(session_id):
        raise ValidationError(
            "Session ids must be 1-128 characters of letters, digits, "
            "'_', '.' or '-'."
        )
    return session_id


def _session_lock(kv: KeyValueStore, session_id: str) -> asyncio.Lock:
    locks = _session_locks.setdefault(kv, weakref.WeakValueDictionary())
    lock = locks.get(session_id)
    if lock is None:
        lock = asyncio.Lock()
        locks[session_id] = lock
    return lock


class StoredDocument(BaseModel):
    """A parsed document together with its citation chunks."""

    document: ParsedDocument
    chunks: list[DocumentChunk] = Field(default_factory=list)
    stored_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


_DocumentMap = TypeAdapter(dict[str, StoredDocument])
_FindingList = TypeAdapter(list[Finding])


class ResultStore:
    """Persistence and query surface for one analysis session."""

    def __init__(self, session_id: str, kv: KeyValueStore) -> None:
        self.session_id = validate_session_id(session_id)
        self._kv = kv
        self._lock = _session_lock(kv, session_id)

    # -----------------------------------------------------------------------
    # Keys
    # -----------------------------------------------------------------------

    @property
    def _documents_key(self) -> str:
        return f"session:{self.session_id}:documents"

    @property
    def _analysis_key(self) -> str:
        return f"session:{self.session_id}:analysis"

    @property
    def _results_prefix(self) -> str:
        return f"session:{self.session_id}:results:"

    def _results_key(self, document_id: str) -> str:
        return f"{self._results_prefix}{document_id}"

    # -----------------------------------------------------------------------
    # Documents
    # -----------------------------------------------------------------------

    async def _load_documents(self) -> dict[str, StoredDocument]:
        raw = await self._kv.get(self._documents_key)
        if raw is None:
            return {}
        return _DocumentMap.validate_json(raw)

    async def _save_documents(self, documents: dict[str, StoredDocument]) -> None:
        await self._kv.set(
            self._documents_key, _DocumentMap.dump_json(documents).decode(),
        )

    async def store_document(self, document: ParsedDocument) -> list[DocumentChunk]:
        """Chunk and persist a document. Re-storing an id replaces it."""
        chunks = chunk_document(document)
        async with self._lock:
            documents = await self._load_documents()
            documents[document.id] = StoredDocument(document=document, chunks=chunks)
            await self._save_documents(documents)

        logger.info(
            "Stored document '%s' (%s) in session %s with %d chunks",
            document.filename, document.id, self.session_id, len(chunks),
        )
        return chunks

    async def get_document(self, document_id: str) -> ParsedDocument | None:
        stored = (await self._load_documents()).get(document_id)
        return stored.document if stored else None

    async def get_all_documents(self) -> list[ParsedDocument]:
        return [s.document for s in (await self._load_documents()).values()]

    async def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        stored = (await self._load_documents()).get(document_id)
        return list(stored.chunks) if stored else []

    async def clear_documents(self) -> None:
        """Delete every document, result list and session record."""
        async with self._lock:
            for key in await self._kv.keys(f"session:{self.session_id}:"):
                await self._kv.delete(key)
        logger.info("Cleared all documents for session %s", self.session_id)

    # -----------------------------------------------------------------------
    # Findings
    # -----------------------------------------------------------------------

    async def _load_results(self, key: str) -> list[Finding]:
        raw = await self._kv.get(key)
        return _FindingList.validate_json(raw) if raw else []

    async def store_analysis_result(self, finding: Finding) -> None:
        """
        Upsert a finding by id under every document it cites.

        A finding re-stored with different citations is removed from the
        documents it no longer cites.

        Raises:
            ValidationError: If a citation references a document that is not
                part of this session.
        """
        async with self._lock:
            documents = await self._load_documents()
            targets = finding.document_ids
            unknown = [d for d in targets if d not in documents]
            if unknown:
                raise ValidationError(
                    f"Finding '{finding.title}' cites documents outside "
                    f"session {self.session_id}: {unknown}"
                )

            target_keys = [self._results_key(d) for d in targets or [_UNATTRIBUTED]]
            for key in await self._kv.keys(self._results_prefix):
                if key in target_keys:
                    continue
                results = await self._load_results(key)
                kept = [f for f in results if f.id != finding.id]
                if len(kept) == len(results):
                    continue
                if kept:
                    await self._kv.set(key, _FindingList.dump_json(kept).decode())
                else:
                    await self._kv.delete(key)

            for key in target_keys:
                results = await self._load_results(key)
                for i, existing in enumerate(results):
                    if existing.id == finding.id:
                        results[i] = finding
                        break
                else:
                    results.append(finding)
                await self._kv.set(key, _FindingList.dump_json(results).decode())

    async def get_document_results(self, document_id: str) -> list[Finding]:
        return await self._load_results(self._results_key(document_id))

    async def _all_findings(self) -> list[Finding]:
        seen: dict[str, Finding] = {}
        for key in await self._kv.keys(self._results_prefix):
            for finding in await self._load_results(key):
                seen.setdefault(finding.id, finding)
        return list(seen.values())

    async def get_analysis_results(self) -> GroupedFindings:
        """
        All findings grouped by type.

        positive and red_flag are ordered by confidence (desc); concern and
        risk by severity (desc), then confidence (desc).
        """
        findings = await self._all_findings()

        def by_confidence(items: list[Finding]) -> list[Finding]:
            return sorted(items, key=lambda f: -f.confidence)

        def by_severity(items: list[Finding]) -> list[Finding]:
            return sorted(
                items, key=lambda f: (-SEVERITY_RANK[f.severity], -f.confidence),
            )

        def of_type(kind: str) -> list[Finding]:
            return [f for f in findings if f.type == kind]

        return GroupedFindings(
            positive=by_confidence(of_type("positive")),
            concern=by_severity(of_type("concern")),
            risk=by_severity(of_type("risk")),
            red_flag=by_confidence(of_type("red_flag")),
        )

    async def clear_analysis_results(self) -> None:
        """Drop every stored finding, keeping documents."""
        async with self._lock:
            for key in await self._kv.keys(self._results_prefix):
                await self._kv.delete(key)

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def store_session(self, session: AnalysisSession) -> None:
        await self._kv.set(self._analysis_key, session.model_dump_json())

    async def get_session(self) -> AnalysisSession | None:
        raw = await self._kv.get(self._analysis_key)
        return AnalysisSession.model_validate_json(raw) if raw else None

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def get_document_stats(self) -> DocumentStats:
        documents = list((await self._load_documents()).values())
        by_type: dict[str, int] = {}
        for stored in documents:
            mime = stored.document.mime_type
            by_type[mime] = by_type.get(mime, 0) + 1

        average = (
            sum(s.document.quality.confidence for s in documents) / len(documents)
            if documents else 0.0
        )
        return DocumentStats(
            total_documents=len(documents),
            total_chunks=sum(len(s.chunks) for s in documents),
            documents_by_type=by_type,
            average_confidence=average,
        )

    async def search_documents(
        self, query: str, max_results: int = 10,
    ) -> list[DocumentChunk]:
        """
        Naive case-insensitive substring search over all chunks.

        Ordered by chunk confidence (desc), then document/chunk order.
        """
        needle = query.strip().lower()
        if not needle:
            return []

        matches = [
            chunk
            for stored in (await self._load_documents()).values()
            for chunk in stored.chunks
            if needle in chunk.content.lower()
        ]
        matches.sort(key=lambda c: -c.confidence)
        return matches[:max_results]

    async def export_citation_map(self) -> dict[str, Citation]:
        """One chunk-level citation per chunk, keyed by chunk id."""
        citation_map: dict[str, Citation] = {}
        for stored in (await self._load_documents()).values():
            for chunk in stored.chunks:
                citation_map[chunk.id] = Citation(
                    document_id=stored.document.id,
                    document_name=stored.document.filename,
                    page_number=chunk.page_number,
                    line_number=chunk.line_number,
                    section_title=chunk.section_title or "Unknown Section",
                    excerpt=chunk.content[:200],
                    confidence=chunk.confidence,
                    context=chunk.content,
                )
        return citation_map
