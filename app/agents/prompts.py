# =============================================================================
# Prompts & Function Schemas
# =============================================================================
#
# Two forced function calls drive the LLM side of the pipeline:
#   analyze_property_document   — findings for one document
#   generate_property_questions — questions for professionals
#
# Each prompt follows the same pattern:
# 1. Buyer context (when a profile is supplied)
# 2. Document identity and text (truncated to settings.prompt_char_limit)
# 3. Requirements, including the exact enum values the schema allows
# 4. Type-specific focus areas
#
# The JSON schemas below are what the provider sees. Arguments coming back
# are validated by app/models/function_calls.py, which also normalises the
# enum values models most often get wrong.
# =============================================================================

from __future__ import annotations

import json
from collections.abc import Sequence

from app.config import settings
from app.models.domain import DocumentType, Finding, ParsedDocument
from app.models.requests import AnalysisOptions
from app.services.llm import FunctionSpec

ANALYST_SYSTEM_PROMPT = (
    "You are a UK property analysis expert. Analyze the document and call "
    "the analyze_property_document function with your findings."
)

QUESTION_SYSTEM_PROMPT = (
    "You are an expert UK property advisor. Generate specific, actionable "
    "questions buyers should ask professionals."
)

# ---------------------------------------------------------------------------
# Function Schemas
# ---------------------------------------------------------------------------

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

DOCUMENT_ANALYSIS_FUNCTION = FunctionSpec(
    name="analyze_property_document",
    description="Analyze a UK property document and return structured findings",
    parameters={
        "type": "object",
        "properties": {
            "findings": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {
                            "type": "string",
                            "enum": ["positive", "concern", "risk", "red_flag"],
                            "description": "Type of finding",
                        },
                        "title": {
                            "type": "string",
                            "description": "Brief descriptive title",
                        },
                        "description": {
                            "type": "string",
                            "description": "Detailed description under 100 words",
                        },
                        "severity": {
                            "type": "string",
                            "enum": ["low", "medium", "high"],
                            "description": "Severity level (only low, medium, high - no critical)",
                        },
                        "confidence": {
                            "type": "number",
                            "minimum": 0,
                            "maximum": 1,
                            "description": "Confidence score between 0 and 1",
                        },
                        "citations": {
                            **_STRING_LIST,
                            "description": "Direct quotes copied verbatim from the document",
                        },
                        "recommendations": {
                            **_STRING_LIST,
                            "description": "Specific actionable recommendations",
                        },
                    },
                    "required": [
                        "type", "title", "description", "severity",
                        "confidence", "citations", "recommendations",
                    ],
                },
            },
            "overall_risk": {
                "type": "string",
                "enum": ["low", "medium", "high"],
                "description": "Overall risk assessment (only low, medium, high - no critical)",
            },
            "key_findings": {**_STRING_LIST, "description": "List of key findings"},
            "recommended_actions": {
                **_STRING_LIST, "description": "List of recommended actions",
            },
        },
        "required": ["findings", "overall_risk", "key_findings", "recommended_actions"],
    },
)

QUESTION_GENERATION_FUNCTION = FunctionSpec(
    name="generate_property_questions",
    description=(
        "Generate specific questions for property professionals based on "
        "analysis findings"
    ),
    parameters={
        "type": "object",
        "properties": {
            "questions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "question": {
                            "type": "string",
                            "description": "Specific actionable question",
                        },
                        "category": {
                            "type": "string",
                            "enum": ["legal", "structural", "financial", "environmental", "other"],
                            "description": "Question category",
                        },
                        "priority": {
                            "type": "string",
                            "enum": ["high", "medium", "low"],
                            "description": "Question priority (only high, medium, or low)",
                        },
                        "context": {
                            "type": "string",
                            "description": "Why this question is important",
                        },
                    },
                    "required": ["question", "category", "priority", "context"],
                },
            },
        },
        "required": ["questions"],
    },
)

# ---------------------------------------------------------------------------
# Type-Specific Guidance
# ---------------------------------------------------------------------------

FOCUS_AREAS: dict[DocumentType, list[str]] = {
    DocumentType.TA6: [
        "Disputes with neighbors",
        "Building work and planning permissions",
        "Environmental issues",
        "Utilities and services",
        "Any disclosed problems",
    ],
    DocumentType.SURVEY: [
        "Structural integrity issues",
        "Damp, moisture, or water damage",
        "Roof and foundation problems",
        "Electrical and heating systems",
        "Safety concerns (asbestos, etc.)",
    ],
    DocumentType.SEARCH: [
        "Planning restrictions or enforcement",
        "Environmental risks",
        "Contaminated land issues",
        "Future development plans",
        "Road and infrastructure changes",
    ],
    DocumentType.TITLE: [
        "Ownership complications",
        "Restrictive covenants",
        "Rights of way or easements",
        "Boundary disputes",
        "Mortgage or charge issues",
    ],
    DocumentType.LEASE: [
        "Remaining lease term",
        "Ground rent and review clauses",
        "Service charges and major works",
        "Restrictions requiring landlord consent",
        "Forfeiture and break clauses",
    ],
    DocumentType.EPC: [
        "Current and potential energy rating",
        "Recommended improvements and their costs",
        "Minimum energy efficiency standards for letting",
        "Heating system and insulation",
    ],
}

RISK_GUIDANCE: dict[str, str] = {
    "conservative": "flag all issues, even minor ones",
    "moderate": "focus on significant issues",
    "aggressive": "only major concerns",
}


def _buyer_context(options: AnalysisOptions) -> str:
    context = options.user_context
    if context is None:
        return ""

    tolerance = context.risk_tolerance or options.risk_tolerance
    property_type = (context.property_type or "property").replace("_", " ")
    timeline = context.timeline_urgency or "standard"

    lines = [
        "BUYER PROFILE & CONTEXT:",
        f"Property Type: {property_type}",
        f"Risk Tolerance: {tolerance} ({RISK_GUIDANCE.get(tolerance, RISK_GUIDANCE['moderate'])})",
        f"Timeline: {timeline}" + (" - prioritize deal-breaking issues" if timeline == "urgent" else ""),
    ]
    if context.first_time_buyer:
        lines.append("First-Time Buyer: YES - provide extra explanations for complex issues")
    lines.append(
        "Professional Support: "
        + ("Solicitor instructed" if context.has_solicitor else "No solicitor yet")
        + " | "
        + ("Surveyor arranged" if context.has_surveyor else "No survey arranged")
    )
    if context.concerns:
        lines.append(f"Buyer Concerns: {', '.join(context.concerns)}")
    lines.append("")
    lines.append(
        "Tailor your analysis to this buyer's specific context and risk tolerance level."
    )
    return "\n".join(lines)


def build_analysis_prompt(
    document: ParsedDocument,
    doc_type: DocumentType,
    options: AnalysisOptions,
) -> str:
    """User message for analyze_property_document."""
    requirements = [
        f"- Maximum {options.findings_limit} findings only",
        "- Keep descriptions under 100 words",
        "- Provide specific citations: quote the document text word for word",
        "- Give actionable recommendations",
        "- type must be exactly one of: positive, concern, risk, red_flag",
        "- severity must be exactly one of: low, medium, high (never critical)",
    ]
    if options.include_confidence_scores:
        requirements.append("- Give each finding a calibrated confidence between 0 and 1")
    if options.user_context is not None:
        requirements.append("- Consider the buyer's profile when assessing severity")

    sections = [
        _buyer_context(options),
        f"Document Type: {doc_type.value}",
        f"Filename: {document.filename}",
        f"Risk Tolerance: {options.risk_tolerance}",
        "",
        "Document Content:",
        document.text[: settings.prompt_char_limit],
        "",
        "Analyze this UK property document for issues, risks, and positive aspects.",
        "",
        "REQUIREMENTS:",
        *requirements,
    ]

    focus = FOCUS_AREAS.get(doc_type)
    if focus:
        sections += ["", "Focus specifically on:", *(f"- {item}" for item in focus)]

    return "\n".join(sections).strip()


def build_question_prompt(findings: Sequence[Finding]) -> str:
    """User message for generate_property_questions."""
    findings_summary = [
        {"type": f.type, "title": f.title, "severity": f.severity}
        for f in findings
    ]
    return (
        "Based on these property analysis findings, generate 5-7 specific "
        "questions that a property buyer should ask their solicitor, "
        "surveyor, or other professionals.\n\n"
        f"Findings Summary:\n{json.dumps(findings_summary, indent=2)}\n\n"
        "Generate questions that are:\n"
        "1. Specific and actionable\n"
        "2. Appropriate for the professional (solicitor vs surveyor)\n"
        "3. Help clarify or resolve the identified issues\n"
        "4. Prioritized by importance\n\n"
        "STRICT SCHEMA REQUIREMENTS:\n"
        '- priority: MUST be exactly "high", "medium", or "low" (never "critical")\n'
        '- category: MUST be exactly "legal", "structural", "financial", '
        '"environmental", or "other" (never "general", "planning", or anything else)'
    )
