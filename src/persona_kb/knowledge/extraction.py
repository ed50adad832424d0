"""Plain-text extraction from uploaded files."""

import hashlib
import time
from pathlib import Path

import fitz  # PyMuPDF
from pydantic import BaseModel

from ..logger import logger
from .models import ContentType

PDF_MAGIC = b"%PDF-"
PDF_MIME_TYPE = "application/pdf"
MARKDOWN_SUFFIXES = (".md", ".markdown")


class ExtractedContent(BaseModel):
    text: str
    content_type: ContentType
    page_count: int | None = None


def is_pdf(data: bytes, mime_type: str | None = None) -> bool:
    """Treat the upload as PDF if it says so or starts with the PDF magic bytes."""
    return mime_type == PDF_MIME_TYPE or data[:5] == PDF_MAGIC


def extract_pdf_text(data: bytes) -> tuple[str, int]:
    """Extract the text of every page of a PDF.

    Args:
        data: Raw PDF bytes.

    Returns:
        Tuple of (text with pages joined by newlines, page count).
    """
    start = time.perf_counter()
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pages = [page.get_text() for page in doc]
        page_count = doc.page_count
    finally:
        doc.close()

    # PostgreSQL cannot store NUL (0x00) in text fields
    text = "\n".join(pages).replace("\x00", "")

    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "pdf text extracted",
        total_pages=page_count,
        total_chars=len(text),
        duration_ms=round(duration_ms, 2),
    )
    return text, page_count


def guess_content_type(filename: str | None, data: bytes, mime_type: str | None = None) -> ContentType:
    if is_pdf(data, mime_type):
        return ContentType.PDF
    if mime_type == "text/markdown" or (
        filename and filename.lower().endswith(MARKDOWN_SUFFIXES)
    ):
        return ContentType.MARKDOWN
    return ContentType.TEXT


def extract_text(
    data: bytes,
    filename: str | None = None,
    mime_type: str | None = None,
) -> ExtractedContent:
    """Extract plain text from an uploaded file.

    PDFs go through PyMuPDF; anything else is decoded as UTF-8.

    Args:
        data: Raw file bytes.
        filename: Original file name, used to recognise markdown.
        mime_type: Content type reported by the uploader.

    Returns:
        ExtractedContent with the text and detected content type.
    """
    content_type = guess_content_type(filename, data, mime_type)
    if content_type == ContentType.PDF:
        text, page_count = extract_pdf_text(data)
        return ExtractedContent(text=text, content_type=content_type, page_count=page_count)

    text = data.decode("utf-8", errors="replace").replace("\x00", "")
    return ExtractedContent(text=text, content_type=content_type)


def compute_content_hash(data: bytes) -> str:
    """Hex-encoded SHA-256 of the uploaded bytes."""
    return hashlib.sha256(data).hexdigest()


def store_original_file(data: bytes, filename: str, upload_dir: Path) -> tuple[str, str]:
    """Persist the uploaded original under `upload_dir`.

    Args:
        data: Raw file bytes.
        filename: Original file name. Only its final component is used.
        upload_dir: Directory to write into. Created if missing.

    Returns:
        Tuple of (stored file path, content hash).
    """
    file_hash = compute_content_hash(data)
    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / f"{file_hash}_{Path(filename).name}"
    if not target.exists():
        target.write_bytes(data)
    logger.info(
        "original file stored",
        file_path=str(target),
        file_hash=file_hash,
        size_bytes=len(data),
    )
    return str(target), file_hash
