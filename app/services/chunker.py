# =============================================================================
# Citation Chunker: overlapping, line-aligned character windows
# =============================================================================
#
# Splits a parsed document's text into overlapping chunks that can be cited
# back to a page, line and section. Each chunk carries exact start/end
# offsets into the original text.
#
# DESIGN DECISION: Character windows grown line by line, not token windows.
# Chunks are never embedded; they exist so that a finding can point at a
# location. Whole lines keep excerpts readable and guarantee that every
# non-empty line of the source lands in at least one chunk.
#
# ALGORITHM:
# 1. Walk the text line by line, keeping each line's offset in the original
# 2. Track the current page (page-number markers) and section (header
#    heuristic) as lines go by
# 3. Append non-empty lines to the open window; once the window spans
#    chunk_size characters, emit it
# 4. Start the next window chunk_overlap characters before the end of the
#    previous one
# 5. Emit whatever is left, provided it holds at least one new line
#
# Every chunk inherits the parent document's quality confidence verbatim.
# =============================================================================

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.config import settings
from app.models.domain import DocumentChunk, ParsedDocument

logger = logging.getLogger(__name__)

# "Page 3", "- Page 3 -", "PAGE 3 of 12", or a bare page number on its own line
_PAGE_MARKER = re.compile(
    r"^[-\s]*page\s+(\d+)(?:\s+of\s+\d+)?[-\s]*$|^(\d+)$",
    re.IGNORECASE,
)
_LEADING_ORDINAL = re.compile(r"^\d+\.")
_MAX_HEADER_LENGTH = 100


# ---------------------------------------------------------------------------
# Line Heuristics (shared with app/services/citations.py)
# ---------------------------------------------------------------------------


def page_marker(line: str) -> int | None:
    """Return the page number if `line` is a page marker, else None."""
    match = _PAGE_MARKER.match(line.strip())
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def is_section_header(line: str) -> bool:
    """
    Heuristic section header detection.

    A header is a short line that is mostly uppercase, ends with a colon,
    or starts with an ordinal such as "3.". Page markers are never headers.
    """
    stripped = line.strip()
    if not stripped or len(stripped) >= _MAX_HEADER_LENGTH:
        return False
    if page_marker(stripped) is not None:
        return False

    letters = [c for c in stripped if c.isalpha()]
    mostly_upper = bool(letters) and (
        sum(1 for c in letters if c.isupper()) / len(letters) > 0.5
    )
    return (
        mostly_upper
        or stripped.endswith(":")
        or bool(_LEADING_ORDINAL.match(stripped))
    )


@dataclass
class _Line:
    """A non-empty source line with its position and running context."""

    text: str
    start: int
    end: int
    number: int
    page: int
    section: str


def iter_lines(text: str) -> list[_Line]:
    """
    Annotate every non-empty line with offsets, line number, page and section.

    Line numbers count blank lines too, so they match the source text.
    """
    lines: list[_Line] = []
    offset = 0
    page = 1
    section = ""

    for number, raw in enumerate(text.splitlines(keepends=True), 1):
        start = offset
        offset += len(raw)
        stripped = raw.strip()
        if not stripped:
            continue

        marker = page_marker(stripped)
        if marker is not None:
            page = marker
        elif is_section_header(stripped):
            section = stripped

        # End offset excludes the line terminator
        end = start + len(raw.rstrip("\r\n"))
        lines.append(_Line(stripped, start, end, number, page, section))

    return lines


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_document(
    document: ParsedDocument,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> list[DocumentChunk]:
    """
    Split a parsed document into overlapping citation chunks.

    Args:
        document: The parsed document.
        chunk_size: Target characters per chunk (default settings.chunk_size).
        chunk_overlap: Characters shared with the previous chunk
            (default settings.chunk_overlap).

    Returns:
        Chunks in document order. Empty or whitespace-only text gives [];
        any other text gives at least one chunk.

    Raises:
        ValueError: If the overlap is not smaller than the chunk size.
    """
    size = chunk_size if chunk_size is not None else settings.chunk_size
    overlap = chunk_overlap if chunk_overlap is not None else settings.chunk_overlap
    if size <= 0 or overlap < 0 or overlap >= size:
        raise ValueError(
            f"Invalid chunking parameters: chunk_size={size}, "
            f"chunk_overlap={overlap}"
        )

    text = document.text
    lines = iter_lines(text)
    if not lines:
        logger.warning("No content to chunk in '%s'", document.filename)
        return []

    confidence = document.quality.confidence
    chunks: list[DocumentChunk] = []

    window_start: int | None = None
    window_lines: list[_Line] = []

    def emit(end: int) -> None:
        first = window_lines[0]
        section = first.section or next(
            (ln.section for ln in window_lines if ln.section), "",
        )
        chunks.append(DocumentChunk(
            id=f"{document.id}_chunk_{len(chunks)}",
            document_id=document.id,
            content=text[window_start:end].strip(),
            start_index=window_start,
            end_index=end,
            page_number=first.page,
            line_number=first.number,
            section_title=section,
            confidence=confidence,
        ))

    for line in lines:
        if window_start is None:
            window_start = line.start
        window_lines.append(line)

        if line.end - window_start >= size:
            emit(line.end)
            # Seed the next window with the tail of this one
            window_start = max(window_start + 1, line.end - overlap)
            window_lines = []

    # Remaining lines that have not been emitted yet
    if window_lines:
        emit(window_lines[-1].end)

    logger.info(
        "Chunked '%s' into %d chunks (size=%d, overlap=%d)",
        document.filename, len(chunks), size, overlap,
    )
    return chunks
