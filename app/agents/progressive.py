# =============================================================================
# Progressive Analysis: quick scan now, detailed analysis in the background
# =============================================================================
#
# PHASES:
#   1. quick_scan — classify and prioritise all documents, analyse the top
#      N (settings.quick_scan_document_count) concurrently in cheap mode,
#      persist a PARTIAL session and return it to the caller.
#   2. detailed — an asyncio.Task runs the full orchestrator over every
#      document. On success its findings REPLACE the quick-scan findings
#      and the session becomes COMPLETE. On failure the session becomes
#      FAILED and the quick-scan findings stay queryable.
#
# STATE MACHINE (see SessionStatus):
#   partial ──▶ complete
#           └─▶ failed
# Progress never decreases. Any other move raises InvalidTransition.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from app.agents.analyst import dedupe_findings, fallback_finding
from app.agents.classifier import prioritize_documents
from app.agents.orchestrator import AnalysisOrchestrator
from app.config import settings
from app.models.domain import (
    AnalysisSession,
    Finding,
    ParsedDocument,
    SessionStatus,
)
from app.models.requests import AnalysisOptions
from app.services.errors import AnalysisError, InvalidTransition, ValidationError
from app.services.kv_store import KeyValueStore
from app.services.result_store import ResultStore
from app.services.summary import quick_summary

logger = logging.getLogger(__name__)

QUICK_FALLBACK_TITLE = "Document Review Needed"


def advance_session(
    session: AnalysisSession,
    status: SessionStatus,
    **changes,
) -> AnalysisSession:
    """
    Return a copy of `session` moved to `status`.

    Raises:
        InvalidTransition: If the session is already terminal or the
            update would lower its progress.
    """
    if session.status is not SessionStatus.PARTIAL:
        raise InvalidTransition(
            f"Session {session.session_id} is {session.status.value}; "
            f"cannot move to {status.value}."
        )
    progress = changes.get("progress", session.progress)
    if progress < session.progress:
        raise InvalidTransition(
            f"Session {session.session_id} progress cannot go from "
            f"{session.progress} to {progress}."
        )
    return session.model_copy(update={
        **changes,
        "status": status,
        "updated_at": datetime.now(UTC),
    })


@dataclass
class ProgressiveRun:
    """Handle to a running progressive analysis."""

    session: AnalysisSession  # quick-scan snapshot
    task: asyncio.Task

    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> bool:
        return self.task.cancel()

    async def wait(self, timeout: float | None = None) -> AnalysisSession:
        """Wait for the detailed phase and return the final session."""
        return await asyncio.wait_for(asyncio.shield(self.task), timeout=timeout)


class ProgressiveController:
    """Drives the orchestrator twice per session and persists both phases."""

    def __init__(
        self,
        kv: KeyValueStore,
        orchestrator: AnalysisOrchestrator,
    ) -> None:
        self._kv = kv
        self._orchestrator = orchestrator
        self._runs: dict[str, ProgressiveRun] = {}
        self._starting: set[str] = set()

    async def start(
        self,
        session_id: str,
        document_ids: Sequence[str],
        options: AnalysisOptions | None = None,
    ) -> ProgressiveRun:
        """
        Run the quick scan and launch the detailed phase.

        Raises:
            ValidationError: No ids given, or none of them is stored in
                this session.
            InvalidTransition: A progressive run for this session is still
                in progress, or the stored session already finished.
        """
        if not document_ids:
            raise ValidationError("No document IDs provided.")
        options = options or AnalysisOptions()
        store = ResultStore(session_id, self._kv)

        documents: list[ParsedDocument] = []
        for document_id in dict.fromkeys(document_ids):
            document = await store.get_document(document_id)
            if document is not None:
                documents.append(document)
            else:
                logger.warning(
                    "Ignoring unknown document %s in session %s",
                    document_id, session_id,
                )
        if not documents:
            raise ValidationError("No valid documents found.")

        running = self._runs.get(session_id)
        if session_id in self._starting or (running is not None and not running.done()):
            raise InvalidTransition(
                f"Progressive analysis already in progress for session {session_id}."
            )
        self._starting.add(session_id)
        try:
            previous = await store.get_session()
            if previous is not None and previous.status is not SessionStatus.PARTIAL:
                raise InvalidTransition(
                    f"Session {session_id} is already {previous.status.value}; "
                    "clear its documents to analyse it again."
                )
            session = await self._quick_scan(store, documents, options)
            task = asyncio.create_task(
                self._run_detailed(store, session, documents, options),
                name=f"progressive-{session_id}",
            )
            run = ProgressiveRun(session=session, task=task)
            self._runs[session_id] = run
            task.add_done_callback(lambda _: self._forget(session_id, run))
        finally:
            self._starting.discard(session_id)
        return run

    def _forget(self, session_id: str, run: ProgressiveRun) -> None:
        if self._runs.get(session_id) is run:
            del self._runs[session_id]

    async def get_session(self, session_id: str) -> AnalysisSession | None:
        return await ResultStore(session_id, self._kv).get_session()

    async def shutdown(self) -> None:
        """Cancel every detailed phase still running."""
        pending = [run.task for run in self._runs.values() if not run.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._runs.clear()

    # -----------------------------------------------------------------------
    # Phase 1
    # -----------------------------------------------------------------------

    async def _quick_scan(
        self,
        store: ResultStore,
        documents: list[ParsedDocument],
        options: AnalysisOptions,
    ) -> AnalysisSession:
        ordered = prioritize_documents(documents)
        selected = [doc for doc, _ in ordered[: settings.quick_scan_document_count]]
        quick_options = options.quick_scan()

        batches = await asyncio.gather(*(
            self._quick_scan_document(doc, quick_options) for doc in selected
        ))
        findings = dedupe_findings(
            f for batch in batches
            for f in batch[: settings.quick_scan_findings_per_document]
        )

        analyzed, total = len(selected), len(documents)
        session = AnalysisSession(
            session_id=store.session_id,
            document_ids=[d.id for d in documents],
            findings=findings,
            summary=quick_summary(findings, analyzed, total),
            status=SessionStatus.PARTIAL,
            progress=round(analyzed / total * 100),
            phase="quick_scan",
            documents_analyzed=analyzed,
        )

        await store.clear_analysis_results()
        for finding in findings:
            await store.store_analysis_result(finding)
        await store.store_session(session)

        logger.info(
            "Quick scan complete for session %s: %d/%d documents, %d findings",
            store.session_id, analyzed, total, len(findings),
        )
        return session

    async def _quick_scan_document(
        self,
        document: ParsedDocument,
        options: AnalysisOptions,
    ) -> list[Finding]:
        try:
            return await self._orchestrator.analyze_document(document, options)
        except AnalysisError as e:
            logger.warning(
                "Quick scan failed for '%s' (%s): %s",
                document.filename, e.code, e.message,
            )
            return [fallback_finding(document, title=QUICK_FALLBACK_TITLE, confidence=0.5)]

    # -----------------------------------------------------------------------
    # Phase 2
    # -----------------------------------------------------------------------

    async def _run_detailed(
        self,
        store: ResultStore,
        session: AnalysisSession,
        documents: list[ParsedDocument],
        options: AnalysisOptions,
    ) -> AnalysisSession:
        try:
            result = await self._orchestrator.analyze_documents(documents, options)
        except asyncio.CancelledError:
            await self._fail(store, session, "Detailed analysis was cancelled.")
            raise
        except Exception as e:
            # Background task boundary: the failure is recorded on the session
            logger.exception(
                "Detailed analysis failed for session %s", store.session_id,
            )
            message = e.message if isinstance(e, AnalysisError) else str(e)
            return await self._fail(store, session, message or type(e).__name__)

        completed = advance_session(
            session,
            SessionStatus.COMPLETE,
            findings=result.findings,
            questions=result.questions,
            summary=result.summary,
            progress=100,
            phase="detailed",
            documents_analyzed=len(documents),
        )

        await store.clear_analysis_results()
        for finding in result.findings:
            await store.store_analysis_result(finding)
        await store.store_session(completed)

        logger.info(
            "Detailed analysis complete for session %s: %d findings, %d questions",
            store.session_id, len(result.findings), len(result.questions),
        )
        return completed

    async def _fail(
        self,
        store: ResultStore,
        session: AnalysisSession,
        message: str,
    ) -> AnalysisSession:
        failed = advance_session(session, SessionStatus.FAILED, error=message)
        await store.store_session(failed)
        return failed
