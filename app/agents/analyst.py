# =============================================================================
# Analyst Agent: per-document findings via function calling
# =============================================================================
#
# For one document the analyst:
# 1. Builds the type-specific prompt
# 2. Issues ONE analyze_property_document call through the rate limiter
# 3. Validates the arguments into DocumentAnalysisCall
# 4. Turns every quoted excerpt into a located Citation
#
# FAILURE HANDLING:
#   - Malformed arguments or a provider timeout affect only this document:
#     the analyst returns a single low-confidence "Document Analysis Issue"
#     finding so the document is never silently dropped.
#   - Budget errors (RateLimited, ServiceOverloaded, QueueTimeout) and
#     ProviderConfigError propagate to the orchestrator, which isolates
#     budget errors per document and lets ProviderConfigError abort the run.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable

from app.agents.prompts import (
    ANALYST_SYSTEM_PROMPT,
    DOCUMENT_ANALYSIS_FUNCTION,
    build_analysis_prompt,
)
from app.config import settings
from app.models.domain import DocumentType, Finding, ParsedDocument
from app.models.function_calls import DocumentAnalysisCall, parse_function_call
from app.models.requests import AnalysisOptions
from app.services.citations import build_citation, document_citation
from app.services.errors import MalformedProviderResponse, RequestTimeout
from app.services.llm import LLMProvider
from app.services.rate_limiter import RateLimitManager
from app.services.summary import default_recommendations
from app.services.tokens import estimate_request_tokens

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Document Analysis Issue"
FALLBACK_CONFIDENCE = 0.3


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def analyze_document(
    document: ParsedDocument,
    doc_type: DocumentType,
    options: AnalysisOptions,
    llm: LLMProvider,
    rate_limiter: RateLimitManager,
) -> list[Finding]:
    """
    Extract findings for one document.

    Returns:
        The converted findings (possibly empty), or exactly one fallback
        finding if the provider answer was unusable.
    """
    prompt = build_analysis_prompt(document, doc_type, options)
    estimated = estimate_request_tokens(
        ANALYST_SYSTEM_PROMPT, prompt, completion_tokens=settings.llm_max_tokens,
    )

    logger.info(
        "Analyst analysing '%s' as %s (~%d tokens, priority=%s)",
        document.filename, doc_type.value, estimated, options.priority,
    )

    try:
        response = await rate_limiter.execute_with_rate_limit(
            options.user_id,
            lambda: llm.call_function(
                messages=[{"role": "user", "content": prompt}],
                function=DOCUMENT_ANALYSIS_FUNCTION,
                system=ANALYST_SYSTEM_PROMPT,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            ),
            priority=options.priority,
            estimated_tokens=estimated,
            max_wait_time=settings.rate_limit_default_max_wait_seconds,
        )
        call = parse_function_call(DocumentAnalysisCall, response)
    except (MalformedProviderResponse, RequestTimeout) as e:
        logger.warning(
            "Analysis failed for '%s' (%s): %s. Using fallback finding.",
            document.filename, e.code, e.message,
        )
        return [fallback_finding(document)]

    findings = convert_findings(call, document, options)
    logger.info(
        "Analyst complete for '%s': %d findings (model=%s, tokens=%d+%d)",
        document.filename, len(findings), response.model,
        response.input_tokens, response.output_tokens,
    )
    return findings


def convert_findings(
    call: DocumentAnalysisCall,
    document: ParsedDocument,
    options: AnalysisOptions,
) -> list[Finding]:
    """
    Map validated function arguments to Findings citing `document`.

    With require_citations, findings that quote nothing are dropped: a
    finding without a traceable excerpt cannot be shown to the buyer.
    """
    findings: list[Finding] = []
    for item in call.findings:
        quotes = [q.strip() for q in item.citations if q and q.strip()]
        if options.require_citations and not quotes:
            logger.info("Dropping uncited finding '%s'", item.title)
            continue

        confidence = (
            item.confidence if options.include_confidence_scores
            else document.quality.confidence
        )
        findings.append(Finding(
            type=item.type,
            title=item.title.strip(),
            description=item.description.strip(),
            severity=item.severity,
            confidence=confidence,
            citations=[build_citation(document, q, confidence) for q in quotes],
            recommendations=(
                item.recommendations
                or default_recommendations(item.type, item.severity)
            ),
            professional_advice_required=(
                item.severity == "high" or item.type == "red_flag"
            ),
        ))

        if len(findings) >= options.findings_limit:
            break
    return findings


def fallback_finding(
    document: ParsedDocument,
    title: str = FALLBACK_TITLE,
    confidence: float = FALLBACK_CONFIDENCE,
) -> Finding:
    """Placeholder concern for a document whose analysis failed."""
    return Finding(
        type="concern",
        title=title,
        description=(
            f"Analysis incomplete for {document.filename}. The document may "
            "contain important information that requires manual review."
        ),
        severity="medium",
        confidence=confidence,
        citations=[document_citation(document, confidence)],
        recommendations=default_recommendations("concern", "medium"),
        professional_advice_required=True,
    )


def dedupe_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Drop findings repeating an earlier (title, type), case-insensitively."""
    seen: set[tuple[str, str]] = set()
    unique: list[Finding] = []
    for finding in findings:
        key = (finding.title.strip().lower(), finding.type)
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique
