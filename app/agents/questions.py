# =============================================================================
# Question Generator: questions for solicitors and surveyors
# =============================================================================
#
# A second, cheaper function call (generate_property_questions) turns the
# finding set into questions. Question generation is advisory: ANY failure
# (budget, timeout, malformed arguments) falls back to a deterministic
# question set derived from the findings, so a run never fails here.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from app.agents.prompts import (
    QUESTION_GENERATION_FUNCTION,
    QUESTION_SYSTEM_PROMPT,
    build_question_prompt,
)
from app.config import settings
from app.models.domain import Finding, Question
from app.models.function_calls import QuestionGenerationCall, parse_function_call
from app.models.requests import AnalysisOptions
from app.services.errors import AnalysisError
from app.services.llm import LLMProvider
from app.services.rate_limiter import RateLimitManager
from app.services.tokens import estimate_request_tokens

logger = logging.getLogger(__name__)

MAX_FALLBACK_QUESTIONS = 5


async def generate_questions(
    findings: Sequence[Finding],
    options: AnalysisOptions,
    llm: LLMProvider,
    rate_limiter: RateLimitManager,
) -> list[Question]:
    """Questions for the buyer's professionals, never empty when findings exist."""
    if not findings:
        return fallback_questions(findings)

    prompt = build_question_prompt(findings)
    estimated = estimate_request_tokens(
        QUESTION_SYSTEM_PROMPT, prompt, completion_tokens=settings.question_max_tokens,
    )

    try:
        response = await rate_limiter.execute_with_rate_limit(
            options.user_id,
            lambda: llm.call_function(
                messages=[{"role": "user", "content": prompt}],
                function=QUESTION_GENERATION_FUNCTION,
                system=QUESTION_SYSTEM_PROMPT,
                temperature=settings.question_temperature,
                max_tokens=settings.question_max_tokens,
            ),
            priority="medium",
            estimated_tokens=estimated,
            max_wait_time=settings.question_max_wait_seconds,
        )
        call = parse_function_call(QuestionGenerationCall, response)
    except AnalysisError as e:
        logger.warning(
            "Question generation failed (%s): %s. Using fallback questions.",
            e.code, e.message,
        )
        return fallback_questions(findings)

    questions = [
        Question(
            category=q.category,
            question=q.question.strip(),
            priority=q.priority,
            context=q.context.strip(),
            related_findings=_related_findings(f"{q.question} {q.context}", findings),
        )
        for q in call.questions
    ]
    if not questions:
        logger.warning("Provider returned no questions. Using fallback questions.")
        return fallback_questions(findings)

    logger.info("Generated %d questions", len(questions))
    return questions


# Finding keywords that earn a targeted question, matched against title and
# description. Categories with a targeted question skip their standard one.
_KEYWORD_QUESTIONS: dict[str, tuple[tuple[str, ...], str, str]] = {
    "structural": (
        ("damp", "subsidence", "crack", "roof", "movement"),
        "What repairs do the structural issues identified need, and what "
        "would they cost?",
        "Structural defects were reported and should be costed before exchange.",
    ),
    "legal": (
        ("covenant", "boundary", "easement", "right of way", "lease"),
        "How do the restrictions and rights in the title affect my use of "
        "the property?",
        "Title matters were reported that a solicitor should explain.",
    ),
    "environmental": (
        ("flood", "contamination", "radon", "knotweed"),
        "What do the environmental risks identified mean for insurance and "
        "mortgage approval?",
        "Environmental risks were reported that may affect insurability.",
    ),
}

_STANDARD_QUESTIONS: dict[str, tuple[str, str]] = {
    "legal": (
        "Are there any legal restrictions or covenants that could limit my "
        "use of the property?",
        "Understanding legal limitations is crucial for property ownership.",
    ),
    "structural": (
        "What are the estimated costs for addressing any structural or "
        "maintenance issues identified?",
        "Budget planning requires understanding potential additional costs.",
    ),
    "environmental": (
        "Are there any environmental concerns or planning restrictions I "
        "should be aware of?",
        "Environmental factors could impact property value and enjoyment.",
    ),
}


def _related_findings(text: str, findings: Sequence[Finding]) -> list[str]:
    lowered = text.lower()
    return [f.id for f in findings if f.title.lower() in lowered]


def _keyword_matches(keywords: tuple[str, ...], findings: Sequence[Finding]) -> list[str]:
    matched = []
    for finding in findings:
        text = f"{finding.title} {finding.description}".lower()
        if any(keyword in text for keyword in keywords):
            matched.append(finding.id)
    return matched


def fallback_questions(findings: Sequence[Finding]) -> list[Question]:
    """
    Deterministic questions built from the findings alone.

    Severity questions come first, then one targeted question per category
    whose keywords appear in the findings, then the standard question for
    each category not yet covered.
    """
    questions: list[Question] = []
    critical = [f.id for f in findings if f.severity == "critical"]
    high = [f.id for f in findings if f.severity == "high"]

    if critical:
        questions.append(Question(
            category="other",
            priority="high",
            question=(
                "What are the immediate risks identified in the property "
                "documents, and how should they be addressed?"
            ),
            context="Critical issues were identified that need urgent professional attention.",
            related_findings=critical,
        ))
    if high:
        questions.append(Question(
            category="other",
            priority="high",
            question="What are the high-priority concerns that could affect my purchase decision?",
            context="Several significant issues require professional review before proceeding.",
            related_findings=high,
        ))

    covered = set()
    for category, (keywords, question, context) in _KEYWORD_QUESTIONS.items():
        related = _keyword_matches(keywords, findings)
        if related:
            covered.add(category)
            questions.append(Question(
                category=category,
                priority="medium",
                question=question,
                context=context,
                related_findings=related,
            ))

    for category, (question, context) in _STANDARD_QUESTIONS.items():
        if category not in covered:
            questions.append(Question(
                category=category, priority="medium", question=question, context=context,
            ))
    return questions[:MAX_FALLBACK_QUESTIONS]
