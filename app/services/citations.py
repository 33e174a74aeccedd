# =============================================================================
# Citation Locator: map quoted excerpts back to document positions
# =============================================================================
#
# The LLM quotes the raw (truncated) document text, not the chunk index, so
# citations point at the source document. This module finds the quote in the
# document with a naive case-insensitive substring search and fills in page,
# line, section and surrounding context.
#
# Duplicate matches: the FIRST occurrence (lowest offset) wins. A quote that
# cannot be found still becomes a citation, without page/line, under the
# "Content Analysis" section.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass

from app.config import settings
from app.models.domain import Citation, ParsedDocument
from app.services.chunker import iter_lines

_QUOTE_CHARS = "\"'“”‘’`"
_UNLOCATED_SECTION = "Content Analysis"


@dataclass
class ExcerptLocation:
    """Where an excerpt sits in the document text."""

    start: int
    end: int
    page_number: int
    line_number: int
    section_title: str


def _clean_excerpt(excerpt: str) -> str:
    return excerpt.strip().strip(_QUOTE_CHARS).strip()


def _find(text: str, excerpt: str) -> tuple[int, int] | None:
    """First case-insensitive match, tolerating reflowed whitespace."""
    index = text.lower().find(excerpt.lower())
    if index != -1:
        return index, index + len(excerpt)

    words = excerpt.split()
    if not words:
        return None
    pattern = r"\s+".join(re.escape(w) for w in words)
    match = re.search(pattern, text, re.IGNORECASE)
    if match:
        return match.start(), match.end()
    return None


def locate_excerpt(document: ParsedDocument, excerpt: str) -> ExcerptLocation | None:
    """Locate `excerpt` in the document, or None if it does not occur."""
    cleaned = _clean_excerpt(excerpt)
    if not cleaned:
        return None

    span = _find(document.text, cleaned)
    if span is None:
        return None
    start, end = span

    page, line_number, section = 1, 1, ""
    for line in iter_lines(document.text):
        if line.start > start:
            break
        page, line_number, section = line.page, line.number, line.section

    return ExcerptLocation(
        start=start,
        end=end,
        page_number=page,
        line_number=line_number,
        section_title=section or _UNLOCATED_SECTION,
    )


def build_citation(
    document: ParsedDocument,
    excerpt: str,
    confidence: float,
) -> Citation:
    """Wrap a quoted excerpt into a Citation pointing at `document`."""
    cleaned = _clean_excerpt(excerpt) or excerpt
    location = locate_excerpt(document, cleaned)
    confidence = max(0.0, min(1.0, confidence))

    if location is None:
        return Citation(
            document_id=document.id,
            document_name=document.filename,
            section_title=_UNLOCATED_SECTION,
            excerpt=cleaned,
            confidence=confidence,
        )

    radius = settings.citation_context_chars
    context = document.text[
        max(0, location.start - radius): location.end + radius
    ]
    return Citation(
        document_id=document.id,
        document_name=document.filename,
        page_number=location.page_number,
        line_number=location.line_number,
        section_title=location.section_title,
        excerpt=document.text[location.start:location.end],
        confidence=confidence,
        context=context.strip(),
    )


def document_citation(document: ParsedDocument, confidence: float) -> Citation:
    """
    Document-level citation used by fallback findings.

    Quotes the first non-empty line (or the filename for empty documents).
    """
    lines = iter_lines(document.text)
    if lines:
        first = lines[0]
        excerpt = first.text[:200]
        return Citation(
            document_id=document.id,
            document_name=document.filename,
            page_number=first.page,
            line_number=first.number,
            section_title=first.section or "Document Content",
            excerpt=excerpt,
            confidence=max(0.0, min(1.0, confidence)),
            context=document.text[:400].strip(),
        )
    return Citation(
        document_id=document.id,
        document_name=document.filename,
        section_title="Document Content",
        excerpt=document.filename,
        confidence=max(0.0, min(1.0, confidence)),
    )
