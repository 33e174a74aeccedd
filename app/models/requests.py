# =============================================================================
# API Request Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API. AnalysisOptions
# and UserContext double as the orchestrator's run configuration, so the
# HTTP body and the Python call take exactly the same options.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings

AnalysisType = Literal["basic", "comprehensive", "focused", "quick"]
RiskTolerance = Literal["conservative", "moderate", "aggressive"]


class UserContext(BaseModel):
    """
    Buyer profile used to tailor prompts.

    Unknown survey fields are accepted and ignored by the prompt builder.
    """

    model_config = ConfigDict(extra="allow")

    property_type: str | None = Field(default=None, examples=["semi_detached_house"])
    risk_tolerance: RiskTolerance | None = None
    timeline_urgency: str = Field(default="standard", examples=["standard", "urgent"])
    first_time_buyer: bool = False
    has_solicitor: bool = False
    has_surveyor: bool = False
    purchase_stage: str | None = None
    budget_range: str | None = None
    priorities: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)


class AnalysisOptions(BaseModel):
    """
    How one orchestrator run behaves.

    `quick` and `basic` runs are the cheap mode used by the progressive
    quick scan: no questions, fewer findings per document.
    """

    analysis_type: AnalysisType = "comprehensive"
    include_confidence_scores: bool = True
    generate_questions: bool = True
    require_citations: bool = True
    max_findings_per_document: int | None = Field(default=None, ge=1, le=10)
    risk_tolerance: RiskTolerance = "moderate"
    user_id: str = "anonymous"
    user_context: UserContext | None = None
    priority: Literal["high", "medium", "low"] = "high"

    @property
    def findings_limit(self) -> int:
        if self.max_findings_per_document is not None:
            return self.max_findings_per_document
        if self.analysis_type in ("quick", "basic"):
            return settings.quick_scan_findings_per_document
        return settings.detailed_findings_per_document

    def quick_scan(self) -> "AnalysisOptions":
        """Copy of these options reduced to the cheap quick-scan mode."""
        return self.model_copy(update={
            "analysis_type": "basic",
            "include_confidence_scores": False,
            "generate_questions": False,
            "max_findings_per_document": settings.quick_scan_findings_per_document,
        })


class AnalyzeRequest(BaseModel):
    """
    Request body for POST /analyze and POST /analyze/progressive.

    Example:
        {
            "document_ids": ["doc_ta6", "doc_survey"],
            "options": {"analysis_type": "comprehensive", "risk_tolerance": "conservative"}
        }
    """

    document_ids: list[str] = Field(
        ...,
        min_length=1,
        description="Ids of documents previously stored in this session",
    )
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "document_ids": ["doc_ta6", "doc_survey"],
                    "options": {
                        "analysis_type": "comprehensive",
                        "risk_tolerance": "conservative",
                        "user_context": {
                            "property_type": "semi_detached_house",
                            "first_time_buyer": True,
                        },
                    },
                }
            ]
        }
    )
