"""Tests for text extraction from uploads."""

from pathlib import Path

import fitz
import pytest

from persona_kb.knowledge.extraction import (
    compute_content_hash,
    extract_text,
    guess_content_type,
    is_pdf,
    store_original_file,
)
from persona_kb.knowledge.models import ContentType


@pytest.fixture(scope="module")
def sample_pdf_bytes() -> bytes:
    """Create a two-page PDF in memory."""
    doc = fitz.open()

    page = doc.new_page()
    page.insert_text((72, 72), "Grand Slam Offers", fontsize=24)
    page.insert_text((72, 120), "Value equation explained on page one.", fontsize=12)

    page2 = doc.new_page()
    page2.insert_text((72, 72), "Pricing psychology on page two.", fontsize=12)

    data = doc.tobytes()
    doc.close()
    return data


class TestIsPdf:
    def test_magic_bytes(self, sample_pdf_bytes):
        assert is_pdf(sample_pdf_bytes)

    def test_mime_type(self):
        assert is_pdf(b"not really", "application/pdf")

    def test_plain_text(self):
        assert not is_pdf(b"hello", "text/plain")


class TestGuessContentType:
    def test_markdown_by_suffix(self):
        assert guess_content_type("notes.MD", b"# Title") == ContentType.MARKDOWN

    def test_markdown_by_mime(self):
        assert guess_content_type(None, b"# Title", "text/markdown") == ContentType.MARKDOWN

    def test_default_text(self):
        assert guess_content_type("notes.txt", b"hello") == ContentType.TEXT


class TestExtractText:
    def test_pdf(self, sample_pdf_bytes):
        result = extract_text(sample_pdf_bytes, "offers.pdf")

        assert result.content_type == ContentType.PDF
        assert result.page_count == 2
        assert "Value equation explained on page one." in result.text
        assert "Pricing psychology on page two." in result.text
        assert result.text.index("page one") < result.text.index("page two")

    def test_text_file(self):
        result = extract_text("Plain words.\n".encode(), "notes.txt", "text/plain")
        assert result.text == "Plain words.\n"
        assert result.content_type == ContentType.TEXT
        assert result.page_count is None

    def test_invalid_utf8_replaced(self):
        result = extract_text(b"caf\xe9 menu", "menu.txt")
        assert result.text == "caf� menu"

    def test_nul_bytes_stripped(self):
        result = extract_text(b"a\x00b", "x.txt")
        assert result.text == "ab"


class TestStoreOriginalFile:
    def test_writes_under_hash_prefixed_name(self, tmp_path):
        data = b"original bytes"
        path, file_hash = store_original_file(data, "notes.txt", tmp_path / "uploads")

        assert file_hash == compute_content_hash(data)
        assert Path(path) == tmp_path / "uploads" / f"{file_hash}_notes.txt"
        assert Path(path).read_bytes() == data

    def test_directory_components_dropped(self, tmp_path):
        path, _ = store_original_file(b"x", "../../escape.txt", tmp_path)
        assert Path(path).parent == tmp_path

    def test_same_content_same_path(self, tmp_path):
        first, _ = store_original_file(b"same", "a.txt", tmp_path)
        second, _ = store_original_file(b"same", "a.txt", tmp_path)
        assert first == second
