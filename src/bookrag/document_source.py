"""
Document source: file path -> plain text.
PDF pages are extracted with PyMuPDF and joined with newlines so the
outline-aligned chunker can map page ranges onto lines.
"""
from __future__ import annotations

from contextlib import closing
from pathlib import Path

import fitz  # PyMuPDF

from .errors import InvalidInputError, NotFoundError
from .observability import get_logger

logger = get_logger(__name__)

TEXT_SUFFIXES = {".txt", ".md", ".text"}


def _load_pdf_text(path: Path) -> tuple[str, int]:
    pages = []
    with closing(fitz.open(str(path))) as pdf_doc:
        for pdf_page in pdf_doc:
            pages.append(pdf_page.get_text("text"))
    return "\n".join(pages), len(pages)


def load_document_text(path: str | Path) -> str:
    source = Path(path)
    if not source.is_file():
        raise NotFoundError(f"document file not found: {source}")

    suffix = source.suffix.lower()
    if suffix == ".pdf":
        text, pages = _load_pdf_text(source)
    elif suffix in TEXT_SUFFIXES:
        text = source.read_text(encoding="utf-8", errors="replace")
        pages = None
    else:
        raise InvalidInputError(f"unsupported document type: {source.name}")

    if not text.strip():
        raise InvalidInputError(f"no extractable text in {source.name}")

    logger.info("document_text_loaded", path=str(source), chars=len(text), pages=pages)
    return text
