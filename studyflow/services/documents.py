"""Server-side document text extraction.

This is the remote half of the extraction pipeline: it backs the
``/extract-file-text`` route and the in-process extraction client.
"""
from __future__ import annotations

import base64
import io
import json
import os
from typing import Optional, Tuple
from urllib.parse import unquote_to_bytes

import PyPDF2
import docx

from studyflow.services.sentinels import (
    LEGACY_DOC,
    PDF_EXTRACTION_ERROR,
    UNABLE_TO_EXTRACT,
    UNSUPPORTED_TYPE,
)

MAX_EXTRACTED_CHARS = 20000

GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

TEXT_EXTENSIONS = (".txt", ".md", ".markdown", ".csv", ".text")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tif", ".tiff")


def clamp_text(s: str, limit: int) -> str:
    return (s or "")[:limit]


def sniff_kind(file_type: Optional[str], file_name: Optional[str]) -> str:
    """Map a declared MIME type (or, failing that, the extension) to a document kind.

    Returns one of: text, pdf, docx, doc, json, image, unknown.
    """
    t = (file_type or "").strip().lower().split(";", 1)[0]
    if t not in GENERIC_TYPES:
        if "pdf" in t:
            return "pdf"
        if "json" in t:
            return "json"
        if "wordprocessingml" in t:
            return "docx"
        if "msword" in t:
            return "doc"
        if t.startswith("text/"):
            return "text"
        if t.startswith("image/"):
            return "image"

    ext = os.path.splitext((file_name or "").strip().lower())[1]
    if ext in TEXT_EXTENSIONS:
        return "text"
    if ext == ".pdf":
        return "pdf"
    if ext == ".docx":
        return "docx"
    if ext == ".doc":
        return "doc"
    if ext == ".json":
        return "json"
    if ext in IMAGE_EXTENSIONS:
        return "image"
    return "unknown"


def is_data_url(source: Optional[str]) -> bool:
    return (source or "").startswith("data:")


def parse_data_url(url: str) -> Tuple[str, bytes]:
    """Split ``data:<mime>[;base64],<payload>`` into (mime, raw bytes)."""
    if not is_data_url(url) or "," not in url:
        raise ValueError("Not a data URL")
    header, payload = url[5:].split(",", 1)
    parts = header.split(";")
    mime = parts[0] or "text/plain"
    if "base64" in parts[1:]:
        return mime, base64.b64decode(payload)
    return mime, unquote_to_bytes(payload)


def to_data_url(data: bytes, mime: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime or 'application/octet-stream'};base64,{encoded}"


def decode_text(data: bytes) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def extract_pdf_text(file_storage) -> str:
    reader = PyPDF2.PdfReader(file_storage)
    parts = []
    for page in reader.pages:
        parts.append(page.extract_text() or "")
    return "\n".join(parts).strip()


def extract_docx_text(file_storage) -> str:
    d = docx.Document(file_storage)
    lines = [p.text for p in d.paragraphs if p.text]
    for table in d.tables:
        for row in table.rows:
            cells = [c.text.strip() for c in row.cells if c.text and c.text.strip()]
            if cells:
                lines.append(" | ".join(cells))
    return "\n".join(lines).strip()


def extract_document_text(data: bytes, file_type: Optional[str], file_name: Optional[str]) -> str:
    """Extract text the way the remote extraction endpoint does.

    Never raises for bad documents; failures come back as sentinel strings.
    """
    kind = sniff_kind(file_type, file_name)

    if kind == "text":
        text = decode_text(data)
    elif kind == "pdf":
        try:
            text = extract_pdf_text(io.BytesIO(data))
        except Exception as e:
            return f"{PDF_EXTRACTION_ERROR}: {e}]"
        if not text:
            return f"{UNABLE_TO_EXTRACT} from this PDF. It may be scanned or image-based.]"
    elif kind == "docx":
        try:
            text = extract_docx_text(io.BytesIO(data))
        except Exception as e:
            return f"{UNABLE_TO_EXTRACT} from this document: {e}]"
        if not text:
            return f"{UNABLE_TO_EXTRACT} from this document.]"
    elif kind == "doc":
        return f"{LEGACY_DOC}. Please save the file as .docx and upload it again.]"
    elif kind == "json":
        raw = decode_text(data)
        try:
            text = json.dumps(json.loads(raw), indent=2, ensure_ascii=False)
        except ValueError:
            text = raw
    else:
        return f"{UNSUPPORTED_TYPE} for text extraction. Please add text content manually.]"

    return clamp_text(text, MAX_EXTRACTED_CHARS)
