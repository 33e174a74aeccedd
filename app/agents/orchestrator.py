# =============================================================================
# LangGraph Orchestrator: Analysis Graph Assembly
# =============================================================================
#
# The orchestrator wires the classify, analyse, questions and summarise
# steps into a LangGraph StateGraph.
#
# GRAPH TOPOLOGY:
#   START ──▶ classify ──▶ analyse ──┬──▶ questions ──▶ summarise ──▶ END
#                                    └──────────────────▶ summarise
#
#   - classify:  rule-based DocumentType per document (no LLM call)
#   - analyse:   one function call per document, fanned out with
#                asyncio.gather; every call passes the rate limiter
#                independently. Findings are de-duplicated afterwards.
#                A document whose call fails with a budget error gets
#                the fallback finding; the batch fails only when every
#                document failed, or on ProviderConfigError.
#   - questions: only when options.generate_questions is set
#   - summarise: derived locally from the findings
#
# DESIGN DECISION: Collaborators travel in the state.
# The LLM provider and the RateLimitManager are injected per run, the same
# way the provider override is, so one compiled graph serves every session
# and tests can pass fakes. Not JSON-serialisable; no checkpointer is
# configured on the graph.
#
# DESIGN DECISION: Graph compiled once at module level.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.analyst import analyze_document, dedupe_findings, fallback_finding
from app.agents.classifier import classify_document
from app.agents.questions import generate_questions
from app.models.domain import (
    AnalysisResult,
    AnalysisSummary,
    DocumentType,
    Finding,
    ParsedDocument,
    Question,
)
from app.models.requests import AnalysisOptions
from app.services.errors import AnalysisError, ProviderConfigError, ValidationError
from app.services.llm import LLMProvider, get_llm_provider
from app.services.rate_limiter import RateLimitManager, get_rate_limit_manager
from app.services.summary import generate_summary, overall_confidence

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Agent State Schema
# ---------------------------------------------------------------------------


class AnalysisState(TypedDict, total=False):
    """
    State that flows through the analysis graph.

    Uses total=False so nodes only need to return the keys they update.
    """

    # --- Input (set by caller) ---
    documents: list[ParsedDocument]
    options: AnalysisOptions
    llm: LLMProvider
    rate_limiter: RateLimitManager

    # --- Intermediate (set by nodes) ---
    classified: list[tuple[ParsedDocument, DocumentType]]

    # --- Output ---
    findings: list[Finding]
    questions: list[Question]
    summary: AnalysisSummary


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def classify_node(state: AnalysisState) -> dict:
    classified = [(doc, classify_document(doc)) for doc in state["documents"]]
    for doc, doc_type in classified:
        logger.info("Classified '%s' as %s", doc.filename, doc_type.value)
    return {"classified": classified}


async def analyse_node(state: AnalysisState) -> dict:
    options = state["options"]
    classified = state["classified"]
    outcomes = await asyncio.gather(
        *(
            analyze_document(doc, doc_type, options, state["llm"], state["rate_limiter"])
            for doc, doc_type in classified
        ),
        return_exceptions=True,
    )

    batches: list[list[Finding]] = []
    failures: list[AnalysisError] = []
    for (doc, _), outcome in zip(classified, outcomes):
        if not isinstance(outcome, BaseException):
            batches.append(outcome)
            continue
        if isinstance(outcome, ProviderConfigError) or not isinstance(outcome, AnalysisError):
            raise outcome
        logger.warning(
            "Analysis of '%s' hit %s: %s. Using fallback finding.",
            doc.filename, outcome.code, outcome.message,
        )
        failures.append(outcome)
        batches.append([fallback_finding(doc)])

    # Nothing got through at all: report the budget error instead of a
    # result made only of placeholders.
    if failures and len(failures) == len(classified):
        raise failures[0]

    findings = dedupe_findings(f for batch in batches for f in batch)
    logger.info(
        "Analysed %d documents (%d failed): %d findings after de-duplication",
        len(batches), len(failures), len(findings),
    )
    return {"findings": findings}


async def questions_node(state: AnalysisState) -> dict:
    questions = await generate_questions(
        state["findings"], state["options"], state["llm"], state["rate_limiter"],
    )
    return {"questions": questions}


async def summarise_node(state: AnalysisState) -> dict:
    summary = generate_summary(
        state["findings"],
        documents_analyzed=len(state["documents"]),
        document_types=[t.value for _, t in state["classified"]],
    )
    return {"summary": summary}


def _after_analyse(state: AnalysisState) -> str:
    return "questions" if state["options"].generate_questions else "summarise"


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(AnalysisState)
_builder.add_node("classify", classify_node)
_builder.add_node("analyse", analyse_node)
_builder.add_node("questions", questions_node)
_builder.add_node("summarise", summarise_node)

_builder.add_edge(START, "classify")
_builder.add_edge("classify", "analyse")
_builder.add_conditional_edges(
    "analyse", _after_analyse, {"questions": "questions", "summarise": "summarise"},
)
_builder.add_edge("questions", "summarise")
_builder.add_edge("summarise", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class AnalysisOrchestrator:
    """
    Runs the analysis graph over a batch of documents.

    Collaborators default to the process singletons; pass explicit ones
    to run against a different provider or a test double.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        rate_limiter: RateLimitManager | None = None,
    ) -> None:
        self._llm = llm
        self._rate_limiter = rate_limiter

    @property
    def llm(self) -> LLMProvider:
        if self._llm is None:
            self._llm = get_llm_provider()
        return self._llm

    @property
    def rate_limiter(self) -> RateLimitManager:
        if self._rate_limiter is None:
            self._rate_limiter = get_rate_limit_manager()
        return self._rate_limiter

    async def analyze_documents(
        self,
        documents: Sequence[ParsedDocument],
        options: AnalysisOptions | None = None,
    ) -> AnalysisResult:
        """
        Classify, analyse, optionally question and summarise `documents`.

        Raises:
            ValidationError: If `documents` is empty.
            RateLimited, ServiceOverloaded, QueueTimeout, ProviderConfigError:
                Systemic failures from the provider path.
        """
        if not documents:
            raise ValidationError("No documents provided for analysis.")
        options = options or AnalysisOptions()
        started = time.perf_counter()

        logger.info(
            "Invoking analysis graph: %d documents, type=%s, user=%s",
            len(documents), options.analysis_type, options.user_id,
        )

        result = await graph.ainvoke({
            "documents": list(documents),
            "options": options,
            "llm": self.llm,
            "rate_limiter": self.rate_limiter,
        })

        findings = result.get("findings", [])
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Analysis graph complete: %d findings, %d questions in %dms",
            len(findings), len(result.get("questions", [])), elapsed_ms,
        )

        return AnalysisResult(
            document_ids=[d.id for d in documents],
            findings=findings,
            summary=result["summary"],
            questions=result.get("questions", []),
            confidence=overall_confidence(findings),
            analysis_type=options.analysis_type,
            processing_time_ms=elapsed_ms,
        )

    async def analyze_document(
        self,
        document: ParsedDocument,
        options: AnalysisOptions | None = None,
    ) -> list[Finding]:
        """Findings for a single document, without questions or summary."""
        options = options or AnalysisOptions()
        return await analyze_document(
            document, classify_document(document), options,
            self.llm, self.rate_limiter,
        )
