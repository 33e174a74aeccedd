# =============================================================================
# Summary Derivation: aggregate views over a finding set
# =============================================================================
#
# Summaries are never produced by the LLM. They are recomputed from the
# current findings every time, so they cannot drift from what is stored.
#
#   generate_summary() — full summary after a detailed run
#   quick_summary()    — partial summary after the progressive quick scan
# =============================================================================

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from app.models.domain import AnalysisSummary, Finding

MAX_KEY_FINDINGS = 3
MAX_RECOMMENDED_ACTIONS = 5

_STRUCTURAL_TERMS = ("structural", "damp", "subsidence")
_LEGAL_TERMS = ("covenant", "boundary", "dispute")
_PLANNING_TERMS = ("planning", "enforcement")


def default_recommendations(finding_type: str, severity: str) -> list[str]:
    """Fallback advice for findings the model gave no recommendations for."""
    if severity == "critical" or finding_type == "red_flag":
        return [
            "Seek immediate professional legal advice",
            "Consider whether to proceed with purchase",
        ]
    if severity == "high":
        return [
            "Discuss with solicitor before exchange",
            "Obtain specialist assessment if needed",
        ]
    if severity == "medium":
        return [
            "Raise question with professional advisor",
            "Request additional information if necessary",
        ]
    return ["Note for discussion during conveyancing process"]


def risk_breakdown(findings: Sequence[Finding]) -> dict[str, int]:
    return dict(Counter(f.severity for f in findings))


def overall_risk(findings: Sequence[Finding]) -> str:
    """
    critical if any critical finding; high if more than one high;
    medium if any high or more than two medium; otherwise low.
    """
    counts = risk_breakdown(findings)
    if counts.get("critical", 0) > 0:
        return "critical"
    if counts.get("high", 0) > 1:
        return "high"
    if counts.get("high", 0) > 0 or counts.get("medium", 0) > 2:
        return "medium"
    return "low"


def overall_confidence(findings: Sequence[Finding]) -> float:
    """Mean finding confidence rounded to 2 places, 0.5 with no findings."""
    if not findings:
        return 0.5
    return round(sum(f.confidence for f in findings) / len(findings), 2)


def completeness(documents_analyzed: int) -> float:
    if documents_analyzed >= 4:
        return 0.9
    return documents_analyzed / 4


def _titles_with(findings: Sequence[Finding], terms: tuple[str, ...]) -> bool:
    return any(term in f.title.lower() for f in findings for term in terms)


def smart_recommendations(findings: Sequence[Finding], risk: str) -> list[str]:
    actions: list[str] = []
    if risk in ("high", "critical"):
        actions.append("URGENT: Seek immediate professional legal advice before proceeding")
        actions.append("Consider whether to continue with this purchase")
    if _titles_with(findings, _STRUCTURAL_TERMS):
        actions.append("Obtain detailed structural survey from qualified surveyor")
    if _titles_with(findings, _LEGAL_TERMS):
        actions.append("Discuss legal issues with conveyancing solicitor immediately")
    if _titles_with(findings, _PLANNING_TERMS):
        actions.append("Verify planning permissions with local authority")
    actions.append("Review all findings with qualified professionals")
    actions.append("Request additional documentation for unclear areas")
    return actions[:MAX_RECOMMENDED_ACTIONS]


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def executive_summary(
    findings: Sequence[Finding],
    document_types: Sequence[str],
    risk: str,
    documents_analyzed: int,
) -> str:
    high = sum(1 for f in findings if f.severity in ("high", "critical"))
    medium = sum(1 for f in findings if f.severity == "medium")
    positive = sum(1 for f in findings if f.type == "positive")
    types = ", ".join(dict.fromkeys(document_types))

    parts = [f"Analysis of {_plural(documents_analyzed, 'property document')} ({types})"]
    if risk in ("high", "critical"):
        parts[0] += " identifies HIGH RISK areas requiring immediate professional attention."
    elif risk == "medium":
        parts[0] += " shows moderate concerns requiring professional guidance."
    else:
        parts[0] += " indicates a relatively low-risk purchase opportunity."

    if high:
        parts.append(f"{_plural(high, 'high-priority issue')} identified.")
    if medium:
        parts.append(f"{_plural(medium, 'moderate concern')} flagged.")
    if positive:
        parts.append(f"{_plural(positive, 'positive aspect')} noted.")
    parts.append("Professional legal and surveying advice strongly recommended before proceeding.")
    return " ".join(parts)


def generate_summary(
    findings: Sequence[Finding],
    documents_analyzed: int,
    document_types: Sequence[str] = (),
) -> AnalysisSummary:
    """Full summary for a completed analysis run."""
    risk = overall_risk(findings)
    severe = [f for f in findings if f.severity in ("critical", "high")]
    medium = [f for f in findings if f.severity == "medium"]
    key_findings = [f.title for f in severe[:2]] + [f.title for f in medium[:2]]

    return AnalysisSummary(
        overall_risk=risk,
        key_findings=key_findings[:MAX_KEY_FINDINGS],
        documents_analyzed=documents_analyzed,
        completeness=completeness(documents_analyzed),
        recommended_actions=smart_recommendations(findings, risk),
        executive_summary=executive_summary(
            findings, document_types, risk, documents_analyzed,
        ),
        risk_breakdown=risk_breakdown(findings),
        positive_aspects=[f.title for f in findings if f.type == "positive"][:3],
    )


def quick_summary(
    findings: Sequence[Finding],
    documents_analyzed: int,
    total_documents: int,
) -> AnalysisSummary:
    """Partial summary shown while the detailed phase is still running."""
    counts = risk_breakdown(findings)
    if counts.get("critical", 0) > 0:
        risk = "critical"
    elif counts.get("high", 0) > 0:
        risk = "high"
    elif counts.get("medium", 0) > 1:
        risk = "medium"
    else:
        risk = "low"

    return AnalysisSummary(
        overall_risk=risk,
        key_findings=[f.title for f in findings[:MAX_KEY_FINDINGS]],
        documents_analyzed=documents_analyzed,
        completeness=documents_analyzed / total_documents if total_documents else 0.0,
        recommended_actions=[
            "Initial scan complete - detailed analysis in progress",
            "Review preliminary findings below",
            "Full analysis will provide more comprehensive insights",
        ],
        executive_summary=(
            f"Quick scan of {_plural(documents_analyzed, 'priority document')} "
            f"completed. {_plural(len(findings), 'initial finding')} identified. "
            "Detailed analysis continuing in background."
        ),
        risk_breakdown=counts,
        positive_aspects=[f.title for f in findings if f.type == "positive"][:3],
    )
