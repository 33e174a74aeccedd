# =============================================================================
# Document Classifier: rule-based property document typing
# =============================================================================
#
# Keyword heuristics over the lower-cased text and filename. Rules are
# checked in DocumentType declaration order and the first match wins, so
# a survey that mentions a "search" is still a SURVEY.
#
# DESIGN DECISION: Rule-based over LLM classification.
# Zero cost and zero budget: classification must not spend any of the
# scarce provider requests the rate limiter guards.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from app.models.domain import DocumentType, ParsedDocument

logger = logging.getLogger(__name__)

# (text keywords, filename keywords) per type
_RULES: dict[DocumentType, tuple[tuple[str, ...], tuple[str, ...]]] = {
    DocumentType.TA6: (("property information form", "ta6"), ("ta6",)),
    DocumentType.SURVEY: (("survey", "structural"), ("survey",)),
    DocumentType.SEARCH: (("local authority", "search"), ("search",)),
    DocumentType.TITLE: (("title", "land registry"), ("title",)),
    DocumentType.LEASE: (("lease", "leasehold"), ("lease",)),
    DocumentType.EPC: (("energy performance", "epc"), ("epc",)),
}

# Progressive analysis order. Types not listed rank last.
DOCUMENT_PRIORITY: dict[DocumentType, int] = {
    DocumentType.TA6: 1,
    DocumentType.SURVEY: 2,
    DocumentType.SEARCH: 3,
    DocumentType.TITLE: 4,
    DocumentType.EPC: 5,
    DocumentType.GENERAL: 6,
}
_UNLISTED_PRIORITY = 10


def classify_document(document: ParsedDocument) -> DocumentType:
    """Return the first DocumentType whose keywords occur in text or filename."""
    text = document.text.lower()
    filename = document.filename.lower()

    for doc_type, (text_keywords, filename_keywords) in _RULES.items():
        if any(kw in text for kw in text_keywords) or any(
            kw in filename for kw in filename_keywords
        ):
            return doc_type
    return DocumentType.GENERAL


def document_priority(doc_type: DocumentType) -> int:
    return DOCUMENT_PRIORITY.get(doc_type, _UNLISTED_PRIORITY)


def prioritize_documents(
    documents: Sequence[ParsedDocument],
) -> list[tuple[ParsedDocument, DocumentType]]:
    """
    Classify and order documents for progressive analysis.

    Stable: documents of equal priority keep their input order.
    """
    classified = [(doc, classify_document(doc)) for doc in documents]
    ordered = sorted(classified, key=lambda pair: document_priority(pair[1]))
    logger.info(
        "Prioritized %d documents: %s",
        len(ordered), [t.value for _, t in ordered],
    )
    return ordered
