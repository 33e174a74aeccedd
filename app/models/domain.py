# =============================================================================
# Domain Models: documents, chunks, findings, sessions
# =============================================================================
#
# Pydantic V2 models shared by the services, the agents and the API layer.
# Values that are created once and never edited (documents, chunks,
# citations) are frozen. Findings and sessions are mutable only through the
# result store and the progressive controller.
#
# Everything here must round-trip through JSON: the result store persists
# these models as strings in a key-value backend.
# =============================================================================

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FindingType = Literal["positive", "concern", "risk", "red_flag"]
Severity = Literal["low", "medium", "high", "critical"]
QualityTier = Literal["high", "medium", "low"]
QuestionCategory = Literal["legal", "structural", "financial", "environmental", "other"]
QuestionPriority = Literal["high", "medium", "low"]
RiskLevel = Literal["low", "medium", "high", "critical"]
AnalysisPhase = Literal["quick_scan", "detailed"]

# Higher rank = more severe. Used for sorting and risk aggregation.
SEVERITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    """Short random identifier, e.g. 'finding_3f2a9c1b0d'."""
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


class DocumentType(str, enum.Enum):
    """
    Property document categories recognised by the classifier.

    Declaration order is the classification order: the first type whose
    keywords match wins.
    """

    TA6 = "TA6"
    SURVEY = "SURVEY"
    SEARCH = "SEARCH"
    TITLE = "TITLE"
    LEASE = "LEASE"
    EPC = "EPC"
    GENERAL = "GENERAL"


class SessionStatus(str, enum.Enum):
    """
    Progressive analysis session state.

    State machine:
        PARTIAL → COMPLETE
                → FAILED
    COMPLETE and FAILED are terminal.
    """

    PARTIAL = "partial"
    COMPLETE = "complete"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Parsed documents (produced by the external extraction collaborator)
# ---------------------------------------------------------------------------


class DocumentQuality(BaseModel):
    """Extraction quality assessment attached to every parsed document."""

    model_config = ConfigDict(frozen=True)

    confidence: float = Field(ge=0.0, le=1.0)
    tier: QualityTier = "medium"
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class DocumentSection(BaseModel):
    """A logical section detected by the extractor."""

    model_config = ConfigDict(frozen=True)

    title: str
    content: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    page_number: int | None = None


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_digital: bool = True
    has_ocr: bool = False
    extraction_method: str = "unknown"
    sections: list[DocumentSection] = Field(default_factory=list)


class ParsedDocument(BaseModel):
    """
    Text and quality metadata for one uploaded file.

    Immutable once created. The analysis pipeline never re-extracts text.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    mime_type: str = "application/pdf"
    size: int = 0
    text: str
    quality: DocumentQuality
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    created_at: datetime = Field(default_factory=_utcnow)


class DocumentChunk(BaseModel):
    """
    An overlapping, citation-addressable slice of a document's text.

    `document_id` is a back-reference only; chunks never own documents.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    content: str
    start_index: int
    end_index: int
    page_number: int = 1
    line_number: int = 1
    section_title: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Findings and citations
# ---------------------------------------------------------------------------


class Citation(BaseModel):
    """Exact excerpt plus location metadata tying a finding to its source."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    document_name: str
    page_number: int | None = None
    line_number: int | None = None
    section_title: str = "Content Analysis"
    excerpt: str
    confidence: float = Field(ge=0.0, le=1.0)
    context: str = ""


class Finding(BaseModel):
    """A single extracted insight with severity, confidence and citations."""

    id: str = Field(default_factory=lambda: new_id("finding"))
    type: FindingType
    title: str
    description: str
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    citations: list[Citation] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    professional_advice_required: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def document_ids(self) -> list[str]:
        """Distinct cited document ids, in citation order."""
        return list(dict.fromkeys(c.document_id for c in self.citations))


class Question(BaseModel):
    """A question the buyer should put to a professional."""

    id: str = Field(default_factory=lambda: new_id("question"))
    category: QuestionCategory
    question: str
    priority: QuestionPriority
    context: str = ""
    related_findings: list[str] = Field(default_factory=list)


class AnalysisSummary(BaseModel):
    """Aggregate view, always derived from the current finding set."""

    overall_risk: RiskLevel
    key_findings: list[str] = Field(default_factory=list)
    documents_analyzed: int = 0
    completeness: float = Field(default=0.0, ge=0.0, le=1.0)
    recommended_actions: list[str] = Field(default_factory=list)
    executive_summary: str = ""
    risk_breakdown: dict[str, int] = Field(default_factory=dict)
    positive_aspects: list[str] = Field(default_factory=list)


class GroupedFindings(BaseModel):
    """Findings bucketed by type, each bucket pre-sorted."""

    positive: list[Finding] = Field(default_factory=list)
    concern: list[Finding] = Field(default_factory=list)
    risk: list[Finding] = Field(default_factory=list)
    red_flag: list[Finding] = Field(default_factory=list)

    def all(self) -> list[Finding]:
        return [*self.red_flag, *self.risk, *self.concern, *self.positive]


class DocumentStats(BaseModel):
    total_documents: int
    total_chunks: int
    documents_by_type: dict[str, int]
    average_confidence: float


# ---------------------------------------------------------------------------
# Analysis runs
# ---------------------------------------------------------------------------


class AnalysisResult(BaseModel):
    """Output of one orchestrator run over a batch of documents."""

    id: str = Field(default_factory=lambda: new_id("analysis"))
    document_ids: list[str]
    findings: list[Finding] = Field(default_factory=list)
    summary: AnalysisSummary
    questions: list[Question] = Field(default_factory=list)
    confidence: float = 0.5
    analysis_type: str = "comprehensive"
    processing_time_ms: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class AnalysisSession(BaseModel):
    """
    Progressive analysis state for one buyer session.

    Mutated only by the progressive controller.
    """

    session_id: str
    document_ids: list[str]
    findings: list[Finding] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    summary: AnalysisSummary | None = None
    status: SessionStatus = SessionStatus.PARTIAL
    progress: int = Field(default=0, ge=0, le=100)
    phase: AnalysisPhase = "quick_scan"
    documents_analyzed: int = 0
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Rate limit snapshot
# ---------------------------------------------------------------------------


class WindowUsage(BaseModel):
    used: int
    limit: int
    remaining: int


class RateLimitStatus(BaseModel):
    """Read-only snapshot of the shared provider budget."""

    requests_per_minute: WindowUsage
    tokens_per_minute: WindowUsage
    requests_per_day: WindowUsage
    queue_length: int
    active_requests: int
    estimated_wait_time_ms: int
    circuit_breaker_open: bool = False
    recommendations: list[str] = Field(default_factory=list)
