# docmind/utils/content_extractor.py
"""
Turn an uploaded blob into plain text according to its declared media type.

Pure functions over bytes: no I/O, no logging side effects beyond warnings.
Images are not handled here; the analysis step consumes their bytes directly.
"""

import csv
import io
import re
from typing import Iterable, List

import fitz  # PyMuPDF
from docx import Document
from openpyxl import load_workbook

from docmind.core.errors import ExtractionFailure, UnsupportedMediaType

PDF_TYPES = {"application/pdf"}
WORD_TYPES = {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}
SPREADSHEET_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}
CSV_TYPES = {"text/csv"}
CODE_TYPES = {
    "text/javascript",
    "text/typescript",
    "application/javascript",
    "application/typescript",
    "text/x-python",
    "text/x-java",
    "text/x-go",
    "text/x-rust",
    "application/json",
}
TEXT_TYPES = {"text/plain", "text/markdown", "application/xml", "text/xml"} | CODE_TYPES

SHEET_SEPARATOR = "\n\n"


def normalize_media_type(media_type: str) -> str:
    # "text/plain; charset=utf-8" -> "text/plain"
    return (media_type or "").split(";")[0].strip().lower()


def is_image(media_type: str) -> bool:
    return normalize_media_type(media_type).startswith("image/")


def is_extractable(media_type: str) -> bool:
    mt = normalize_media_type(media_type)
    return (
        mt in PDF_TYPES
        or mt in WORD_TYPES
        or mt in SPREADSHEET_TYPES
        or mt in CSV_TYPES
        or mt in TEXT_TYPES
        or mt.startswith("text/")
    )


def _clean_text(text: str) -> str:
    """
    Common text cleanup for extracted PDF text.
    """
    if not text:
        return ""

    # remove null characters
    text = text.replace("\x00", "")

    # normalize excessive newlines (keep paragraphs)
    text = re.sub(r"\n\s*\n+", "\n\n", text)

    # normalize spaces/tabs
    text = re.sub(r"[ \t]+", " ", text)

    return text.strip()


def _extract_pdf(data: bytes) -> str:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ExtractionFailure(f"Could not open PDF: {exc}") from exc

    try:
        pages = []
        for page_num in range(len(doc)):
            page = doc.load_page(page_num)

            # primary extraction
            page_text = page.get_text("text")

            # fallback if empty
            if not page_text.strip():
                blocks = page.get_text("blocks")
                page_text = "\n".join(block[4] for block in blocks if block[4].strip())

            page_text = _clean_text(page_text)
            if page_text:
                pages.append(page_text)
        return "\n\n".join(pages)
    finally:
        doc.close()


def _extract_docx(data: bytes) -> str:
    try:
        doc = Document(io.BytesIO(data))
    except Exception as exc:
        raise ExtractionFailure(f"Could not open Word document: {exc}") from exc

    parts = [p.text for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append("\t".join(cells))
    return "\n".join(parts)


def _rows_to_text(rows: Iterable[Iterable[object]]) -> List[str]:
    lines = []
    for row in rows:
        values = ["" if v is None else str(v) for v in row]
        if any(v.strip() for v in values):
            lines.append("\t".join(values).rstrip())
    return lines


def _extract_xlsx(data: bytes) -> str:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise ExtractionFailure(f"Could not open spreadsheet: {exc}") from exc

    try:
        sheets = []
        for sheet in workbook.worksheets:
            lines = _rows_to_text(sheet.iter_rows(values_only=True))
            sheets.append("\n".join([f"## Sheet: {sheet.title}"] + lines))
        return SHEET_SEPARATOR.join(sheets)
    finally:
        workbook.close()


def _extract_csv(data: bytes) -> str:
    text = _decode(data)
    try:
        rows = list(csv.reader(io.StringIO(text)))
    except csv.Error as exc:
        raise ExtractionFailure(f"Could not parse CSV: {exc}") from exc
    return "\n".join(_rows_to_text(rows))


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace").replace("\x00", "")


def extract_text(data: bytes, media_type: str) -> str:
    """
    Extract plain text from `data`.

    Raises:
        UnsupportedMediaType: images and binary formats we cannot read.
        ExtractionFailure: the document is malformed.
    """
    mt = normalize_media_type(media_type)

    if mt in PDF_TYPES:
        return _extract_pdf(data)
    if mt in WORD_TYPES:
        return _extract_docx(data)
    if mt in SPREADSHEET_TYPES:
        return _extract_xlsx(data)
    if mt in CSV_TYPES:
        return _extract_csv(data)
    if mt in TEXT_TYPES or mt.startswith("text/"):
        return _decode(data)

    raise UnsupportedMediaType(f"Cannot extract text from media type '{mt or 'unknown'}'")
