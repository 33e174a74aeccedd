# =============================================================================
# Function-Call Boundary Models
# =============================================================================
#
# The provider returns the pinned function's arguments as a JSON object.
# These models are the ONLY place that object is interpreted: arguments are
# validated straight into them, and out-of-enum values are normalised here
# so nothing downstream ever sees a value outside the domain enums.
#
# NORMALISATION RULES:
#   finding severity  "critical"/"severe" → "high", "moderate" → "medium"
#   finding type      unknown → rejected (whole call is malformed)
#   question category unknown ("general", "planning", ...) → "other"
#   question priority "critical"/"urgent" → "high", unknown → "medium"
#   confidence        missing → 0.5, clamped to [0, 1]
# =============================================================================

from __future__ import annotations

from typing import Any, Literal, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.domain import FindingType, QuestionCategory, QuestionPriority
from app.services.errors import MalformedProviderResponse
from app.services.llm import FunctionCallResponse

_SEVERITY_ALIASES = {
    "critical": "high",
    "severe": "high",
    "major": "high",
    "moderate": "medium",
    "minor": "low",
}
_PRIORITY_ALIASES = {"critical": "high", "urgent": "high"}
_CATEGORIES = {"legal", "structural", "financial", "environmental", "other"}
_PRIORITIES = {"high", "medium", "low"}


def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return value


def _as_token(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower().replace(" ", "_").replace("-", "_")
    return value


# ---------------------------------------------------------------------------
# analyze_property_document
# ---------------------------------------------------------------------------


class LLMFinding(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: FindingType
    title: str = Field(min_length=1)
    description: str = ""
    severity: Literal["low", "medium", "high"] = "medium"
    confidence: float = 0.5
    citations: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> Any:
        return _as_token(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value: Any) -> Any:
        if value is None:
            return "medium"
        value = _as_token(value)
        return _SEVERITY_ALIASES.get(value, value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if value is None:
            return 0.5
        try:
            return max(0.0, min(1.0, float(value)))
        except (TypeError, ValueError):
            return value

    @field_validator("citations", "recommendations", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        return _as_list(value)


class DocumentAnalysisCall(BaseModel):
    """Arguments of analyze_property_document."""

    model_config = ConfigDict(extra="ignore")

    findings: list[LLMFinding]
    overall_risk: Literal["low", "medium", "high"] | None = None
    key_findings: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)

    @field_validator("overall_risk", mode="before")
    @classmethod
    def _normalise_risk(cls, value: Any) -> Any:
        value = _as_token(value)
        if value not in (None, "low", "medium", "high"):
            return _SEVERITY_ALIASES.get(value)
        return value

    @field_validator("key_findings", "recommended_actions", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        return _as_list(value)


# ---------------------------------------------------------------------------
# generate_property_questions
# ---------------------------------------------------------------------------


class LLMQuestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: str = Field(min_length=1)
    category: QuestionCategory = "other"
    priority: QuestionPriority = "medium"
    context: str = ""

    @field_validator("category", mode="before")
    @classmethod
    def _normalise_category(cls, value: Any) -> Any:
        value = _as_token(value)
        return value if value in _CATEGORIES else "other"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, value: Any) -> Any:
        value = _as_token(value)
        value = _PRIORITY_ALIASES.get(value, value)
        return value if value in _PRIORITIES else "medium"

    @field_validator("context", mode="before")
    @classmethod
    def _default_context(cls, value: Any) -> Any:
        return "" if value is None else value


class QuestionGenerationCall(BaseModel):
    """Arguments of generate_property_questions."""

    model_config = ConfigDict(extra="ignore")

    questions: list[LLMQuestion]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

CallT = TypeVar("CallT", bound=BaseModel)


def parse_function_call(
    model: type[CallT],
    response: FunctionCallResponse,
) -> CallT:
    """
    Validate a provider function call into `model`.

    Raises:
        MalformedProviderResponse: If the arguments violate the schema.
    """
    try:
        return model.model_validate(response.arguments)
    except pydantic.ValidationError as e:
        raise MalformedProviderResponse(
            f"Arguments for '{response.name}' failed validation: "
            f"{e.error_count()} error(s), first: {e.errors()[0]['msg']}"
        ) from e
