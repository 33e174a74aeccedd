# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the line-based chunking and heuristics without external dependencies.
# No API keys, databases, or network calls needed.
# =============================================================================

import pytest

from app.models.domain import DocumentQuality, ParsedDocument
from app.services.chunker import (
    chunk_document,
    is_section_header,
    iter_lines,
    page_marker,
)


def _make_doc(text: str, confidence: float = 0.8, doc_id: str = "doc1") -> ParsedDocument:
    """Helper to build a ParsedDocument from raw text."""
    return ParsedDocument(
        id=doc_id,
        filename="test.pdf",
        text=text,
        quality=DocumentQuality(confidence=confidence),
    )


class TestChunkDocument:
    """Tests for chunk_document()."""

    def test_empty_document_returns_no_chunks(self):
        assert chunk_document(_make_doc(""), chunk_size=64, chunk_overlap=10) == []

    def test_whitespace_only_returns_no_chunks(self):
        doc = _make_doc("   \n\n\t  \n")
        assert chunk_document(doc, chunk_size=64, chunk_overlap=10) == []

    def test_single_short_line_produces_one_chunk(self):
        chunks = chunk_document(
            _make_doc("This is a short sentence."), chunk_size=64, chunk_overlap=10,
        )
        assert len(chunks) == 1
        assert chunks[0].content == "This is a short sentence."
        assert chunks[0].id == "doc1_chunk_0"
        assert chunks[0].page_number == 1
        assert chunks[0].line_number == 1

    def test_chunk_ids_are_sequential(self):
        text = "\n".join(f"Line number {i} of the document body." for i in range(30))
        chunks = chunk_document(_make_doc(text), chunk_size=100, chunk_overlap=20)
        assert len(chunks) > 1
        for i, chunk in enumerate(chunks):
            assert chunk.id == f"doc1_chunk_{i}"

    def test_every_non_empty_line_is_covered(self):
        lines = [f"Clause {i}: the vendor confirms item {i}." for i in range(40)]
        text = "\n\n".join(lines)
        chunks = chunk_document(_make_doc(text), chunk_size=120, chunk_overlap=20)
        for line in lines:
            assert any(line in c.content for c in chunks), line

    def test_chunks_inherit_document_confidence(self):
        text = "\n".join("Some survey text goes here." for _ in range(50))
        chunks = chunk_document(
            _make_doc(text, confidence=0.42), chunk_size=80, chunk_overlap=10,
        )
        assert chunks
        assert all(c.confidence == 0.42 for c in chunks)

    def test_offsets_point_into_original_text(self):
        text = "First line here.\nSecond line here.\nThird line here."
        doc = _make_doc(text)
        for chunk in chunk_document(doc, chunk_size=20, chunk_overlap=5):
            assert doc.text[chunk.start_index:chunk.end_index].strip() == chunk.content

    def test_page_and_section_tracking(self):
        text = "SECTION A\n" + "a" * 40 + "\nPage 2\n" + "b" * 40
        chunks = chunk_document(_make_doc(text), chunk_size=30, chunk_overlap=5)

        assert len(chunks) == 2
        assert chunks[0].page_number == 1
        assert chunks[0].section_title == "SECTION A"
        assert chunks[1].page_number == 2
        assert chunks[1].line_number == 3
        assert chunks[1].section_title == "SECTION A"

    def test_consecutive_chunks_overlap(self):
        text = "SECTION A\n" + "a" * 40 + "\nPage 2\n" + "b" * 40
        chunks = chunk_document(_make_doc(text), chunk_size=30, chunk_overlap=5)
        assert chunks[1].start_index < chunks[0].end_index

    def test_overlap_not_smaller_than_size_raises(self):
        with pytest.raises(ValueError):
            chunk_document(_make_doc("text"), chunk_size=50, chunk_overlap=50)

    def test_defaults_come_from_settings(self):
        text = "\n".join("A fairly ordinary line of text." for _ in range(60))
        chunks = chunk_document(_make_doc(text))
        # 60 lines of ~31 chars is well over the default 500-char window
        assert len(chunks) >= 3


class TestLineHeuristics:
    """Tests for page marker and section header detection."""

    @pytest.mark.parametrize(
        "line, expected",
        [
            ("Page 3", 3),
            ("PAGE 3 of 12", 3),
            ("- Page 4 -", 4),
            ("17", 17),
            ("Page three", None),
            ("The page 3 reference", None),
        ],
    )
    def test_page_marker(self, line, expected):
        assert page_marker(line) == expected

    @pytest.mark.parametrize(
        "line",
        ["THE PROPERTY", "Boundaries:", "1. Introduction", "SECTION 2 - SERVICES"],
    )
    def test_headers_detected(self, line):
        assert is_section_header(line)

    @pytest.mark.parametrize(
        "line",
        [
            "This is a normal sentence.",
            "Page 3",
            "X" * 120,
            "",
        ],
    )
    def test_non_headers(self, line):
        assert not is_section_header(line)

    def test_iter_lines_counts_blank_lines(self):
        lines = iter_lines("first\n\n\nfourth")
        assert [ln.number for ln in lines] == [1, 4]
        assert lines[1].text == "fourth"
        assert lines[1].start == 8
