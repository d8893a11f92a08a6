"""Text extraction from uploaded documents (text, PDF, DOCX, XLSX)."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

MAX_EXTRACTED_CHARS = 50_000

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_TEXT_MIMES = {"application/json", "application/xml", "application/x-yaml"}
_TEXT_EXTENSIONS = {".md", ".txt", ".csv", ".json", ".yaml", ".yml", ".toml", ".xml"}
_CODE_EXTENSIONS = {
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".c", ".cpp",
    ".go", ".rs", ".rb", ".php", ".sh", ".sql", ".html", ".css",
}


@dataclass
class ExtractionResult:
    """Outcome of extracting text from an uploaded document."""

    filename: str
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def _extract_pdf(data: bytes) -> tuple[str | None, dict[str, Any]]:
    """Extract text from a PDF using PyMuPDF."""
    import pymupdf

    doc = pymupdf.open(stream=data, filetype="pdf")
    try:
        pages = []
        for page in doc:
            text = page.get_text()
            if text.strip():
                pages.append(text.strip())
        return ("\n\n".join(pages) if pages else None), {"pages": doc.page_count}
    finally:
        doc.close()


def _extract_docx(data: bytes) -> tuple[str | None, dict[str, Any]]:
    """Extract text from a DOCX using python-docx."""
    import docx

    doc = docx.Document(io.BytesIO(data))
    paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
    return ("\n\n".join(paragraphs) if paragraphs else None), {}


def _extract_xlsx(data: bytes) -> tuple[str | None, dict[str, Any]]:
    """Extract text from an XLSX using openpyxl, rendered as CSV."""
    import openpyxl

    wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheets = wb.sheetnames
        multi_sheet = len(sheets) > 1
        parts: list[str] = []

        for name in sheets:
            ws = wb[name]
            lines: list[str] = []
            for row in ws.iter_rows(values_only=True):
                cells = [str(c) if c is not None else "" for c in row]
                if any(cells):
                    lines.append(",".join(cells))
            if lines:
                if multi_sheet:
                    parts.append(f"## Sheet: {name}\n" + "\n".join(lines))
                else:
                    parts.append("\n".join(lines))

        return ("\n\n".join(parts) if parts else None), {"sheets": len(sheets)}
    finally:
        wb.close()


def _decode_text(data: bytes) -> tuple[str | None, dict[str, Any]]:
    return data.decode("utf-8", errors="replace"), {}


_BINARY_EXTRACTORS = {
    "application/pdf": _extract_pdf,
    DOCX_MIME: _extract_docx,
    XLSX_MIME: _extract_xlsx,
}


def _pick_extractor(
    filename: str, mimetype: str
) -> tuple[Callable[[bytes], tuple[str | None, dict[str, Any]]] | None, str | None]:
    """Return (extractor, reported type) for a file, or (None, None)."""
    if mimetype in _BINARY_EXTRACTORS:
        return _BINARY_EXTRACTORS[mimetype], mimetype
    if mimetype.startswith("text/") or mimetype in _TEXT_MIMES:
        return _decode_text, mimetype

    suffix = PurePath(filename).suffix.lower()
    if suffix == ".md":
        return _decode_text, "text/markdown"
    if suffix in _TEXT_EXTENSIONS:
        return _decode_text, "text/plain"
    if suffix in _CODE_EXTENSIONS:
        return _decode_text, "text/code"
    return None, None


async def extract_document(data: bytes, filename: str, mimetype: str) -> ExtractionResult:
    """Extract plain text from an uploaded document.

    Text is truncated to MAX_EXTRACTED_CHARS. Unsupported formats and
    extraction failures come back as a result with ``error`` set.
    """
    mimetype = (mimetype or "").split(";")[0].strip().lower()
    extractor, doc_type = _pick_extractor(filename, mimetype)
    if extractor is None:
        return ExtractionResult(
            filename=filename,
            error=f"Unsupported file type: {mimetype or 'unknown'}",
        )

    try:
        text, extra = await asyncio.to_thread(extractor, data)
    except Exception as exc:
        logger.exception("Failed to extract text from %s", filename)
        return ExtractionResult(filename=filename, error=f"Failed to parse {filename}: {exc}")

    text = text or ""
    truncated = len(text) > MAX_EXTRACTED_CHARS
    if truncated:
        text = text[:MAX_EXTRACTED_CHARS]

    metadata = {"type": doc_type, "size": len(data), "truncated": truncated, **extra}
    return ExtractionResult(filename=filename, content=text, metadata=metadata)
