# =============================================================================
# Unit Tests — Progressive Analysis
# =============================================================================
#
# A five-document session (TA6, SURVEY, SEARCH, TITLE, GENERAL) is analysed
# against a fake provider: the quick scan must pick the two highest-priority
# documents, and the detailed phase must replace its findings.
# =============================================================================

import asyncio
import re

import pytest

from app.agents.orchestrator import AnalysisOrchestrator
from app.agents.progressive import ProgressiveController, advance_session
from app.agents.prompts import QUESTION_GENERATION_FUNCTION
from app.models.domain import (
    AnalysisSession,
    DocumentQuality,
    ParsedDocument,
    SessionStatus,
)
from app.services.errors import InvalidTransition, ProviderConfigError, ValidationError
from app.services.kv_store import InMemoryKeyValueStore
from app.services.llm import FunctionCallResponse
from app.services.rate_limiter import RateLimitConfig, RateLimitManager
from app.services.result_store import ResultStore


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _doc(doc_id: str, filename: str, text: str) -> ParsedDocument:
    return ParsedDocument(
        id=doc_id, filename=filename, text=text,
        quality=DocumentQuality(confidence=0.9),
    )


# Deliberately stored in reverse priority order
DOCUMENTS = [
    _doc("doc_notes", "notes.pdf", "Miscellaneous notes\nVendor disclosed nothing else."),
    _doc("doc_title", "title_register.pdf",
         "Land Registry title register\nVendor disclosed a restrictive covenant."),
    _doc("doc_search", "local_search.pdf",
         "Local authority search results\nVendor disclosed no planning enforcement."),
    _doc("doc_survey", "survey_report.pdf",
         "Structural survey report\nVendor disclosed damp in the cellar."),
    _doc("doc_ta6", "ta6_form.pdf",
         "Property Information Form\nVendor disclosed a boundary dispute."),
]
DOCUMENT_IDS = [d.id for d in DOCUMENTS]


class FakeProvider:
    """
    One cited finding per analysed document.

    After `succeed_first` analysis calls, later calls either raise `error`
    or block until `gate` is set.
    """

    def __init__(self, succeed_first: int | None = None, error: Exception | None = None):
        self.analysed: list[str] = []
        self.succeed_first = succeed_first
        self.error = error
        self.gate = asyncio.Event()

    async def call_function(self, messages, function, system=None, temperature=None, max_tokens=None):
        if function.name == QUESTION_GENERATION_FUNCTION.name:
            return FunctionCallResponse(
                name=function.name, model="fake",
                arguments={"questions": [{
                    "question": "Has the boundary dispute been resolved?",
                    "category": "legal", "priority": "high", "context": "",
                }]},
            )

        filename = re.search(r"Filename: (.+)", messages[0]["content"]).group(1)
        self.analysed.append(filename)
        if self.succeed_first is not None and len(self.analysed) > self.succeed_first:
            if self.error is not None:
                raise self.error
            await self.gate.wait()

        return FunctionCallResponse(
            name=function.name, model="fake",
            arguments={"findings": [{
                "type": "concern",
                "title": f"Disclosure in {filename}",
                "description": "Vendor disclosure needs follow-up.",
                "severity": "medium",
                "confidence": 0.7,
                "citations": ["Vendor disclosed"],
            }]},
        )


async def _setup(provider: FakeProvider, session_id: str = "sess-1"):
    kv = InMemoryKeyValueStore()
    store = ResultStore(session_id, kv)
    for doc in DOCUMENTS:
        await store.store_document(doc)
    manager = RateLimitManager(RateLimitConfig(
        requests_per_minute=100, tokens_per_minute=10_000_000, max_concurrent_requests=10,
    ))
    orchestrator = AnalysisOrchestrator(llm=provider, rate_limiter=manager)
    return ProgressiveController(kv, orchestrator), store


class TestProgressiveAnalysis:
    def test_quick_scan_then_detailed(self):
        async def scenario():
            provider = FakeProvider()
            controller, store = await _setup(provider)

            run = await controller.start("sess-1", DOCUMENT_IDS)
            quick_calls = list(provider.analysed)
            quick_stored = (await store.get_analysis_results()).all()

            final = await run.wait(timeout=5)
            final_stored = (await store.get_analysis_results()).all()
            polled = await controller.get_session("sess-1")
            return run.session, quick_calls, quick_stored, final, final_stored, polled

        quick, quick_calls, quick_stored, final, final_stored, polled = _run(scenario())

        # Phase 1: the two highest-priority documents only
        assert sorted(quick_calls) == ["survey_report.pdf", "ta6_form.pdf"]
        assert quick.status is SessionStatus.PARTIAL
        assert quick.phase == "quick_scan"
        assert quick.progress == 40
        assert quick.documents_analyzed == 2
        assert {f.citations[0].document_id for f in quick.findings} == {"doc_ta6", "doc_survey"}
        assert len(quick_stored) == 2
        assert quick.summary.executive_summary.startswith("Quick scan of 2 priority documents")

        # Phase 2: every document, quick-scan findings replaced
        assert final.status is SessionStatus.COMPLETE
        assert final.phase == "detailed"
        assert final.progress == 100
        assert final.documents_analyzed == 5
        assert len(final.findings) == 5
        assert len(final.questions) == 1
        assert {f.id for f in final_stored} == {f.id for f in final.findings}
        assert polled.status is SessionStatus.COMPLETE

    def test_failed_detailed_phase_keeps_quick_findings(self):
        async def scenario():
            provider = FakeProvider(succeed_first=2, error=ProviderConfigError("key revoked"))
            controller, store = await _setup(provider)

            run = await controller.start("sess-1", DOCUMENT_IDS)
            final = await run.wait(timeout=5)
            stored = (await store.get_analysis_results()).all()
            return run.session, final, stored

        quick, final, stored = _run(scenario())

        assert final.status is SessionStatus.FAILED
        assert final.error
        assert final.progress == 40
        assert {f.id for f in stored} == {f.id for f in quick.findings}

    def test_second_start_while_running_rejected(self):
        async def scenario():
            provider = FakeProvider(succeed_first=2)
            controller, _ = await _setup(provider)

            run = await controller.start("sess-1", DOCUMENT_IDS)
            try:
                await controller.start("sess-1", DOCUMENT_IDS)
            except InvalidTransition as e:
                error = e
            else:
                error = None

            provider.gate.set()
            final = await run.wait(timeout=5)
            return error, final

        error, final = _run(scenario())
        assert isinstance(error, InvalidTransition)
        assert final.status is SessionStatus.COMPLETE

    def test_cancelled_detailed_phase_marks_failure(self):
        async def scenario():
            provider = FakeProvider(succeed_first=2)
            controller, _ = await _setup(provider)

            run = await controller.start("sess-1", DOCUMENT_IDS)
            await asyncio.sleep(0.05)
            await controller.shutdown()
            return run.done(), await controller.get_session("sess-1")

        done, session = _run(scenario())
        assert done
        assert session.status is SessionStatus.FAILED
        assert session.error

    def test_finished_session_cannot_restart(self):
        async def scenario():
            controller, _ = await _setup(FakeProvider())

            run = await controller.start("sess-1", DOCUMENT_IDS)
            await run.wait(timeout=5)
            try:
                await controller.start("sess-1", DOCUMENT_IDS)
            except InvalidTransition as e:
                error = e
            else:
                error = None
            return error, await controller.get_session("sess-1")

        error, session = _run(scenario())
        assert isinstance(error, InvalidTransition)
        assert session.status is SessionStatus.COMPLETE
        assert session.progress == 100

    def test_finished_runs_are_released(self):
        async def scenario():
            controller, _ = await _setup(FakeProvider())

            run = await controller.start("sess-1", DOCUMENT_IDS)
            tracked_while_running = "sess-1" in controller._runs
            await run.wait(timeout=5)
            await asyncio.sleep(0)
            return tracked_while_running, dict(controller._runs)

        tracked_while_running, remaining = _run(scenario())
        assert tracked_while_running
        assert remaining == {}

    def test_unknown_documents_rejected(self):
        async def scenario():
            controller, _ = await _setup(FakeProvider())
            await controller.start("sess-1", ["doc_missing"])

        with pytest.raises(ValidationError):
            _run(scenario())

    def test_empty_ids_rejected(self):
        async def scenario():
            controller, _ = await _setup(FakeProvider())
            await controller.start("sess-1", [])

        with pytest.raises(ValidationError):
            _run(scenario())


class TestSessionTransitions:
    def _session(self, **overrides) -> AnalysisSession:
        return AnalysisSession(session_id="s", document_ids=["d"], progress=40, **overrides)

    def test_partial_to_complete(self):
        done = advance_session(self._session(), SessionStatus.COMPLETE, progress=100)
        assert done.status is SessionStatus.COMPLETE
        assert done.progress == 100

    def test_terminal_states_are_final(self):
        done = self._session(status=SessionStatus.COMPLETE)
        with pytest.raises(InvalidTransition):
            advance_session(done, SessionStatus.FAILED)

    def test_progress_never_decreases(self):
        with pytest.raises(InvalidTransition):
            advance_session(self._session(), SessionStatus.COMPLETE, progress=10)
