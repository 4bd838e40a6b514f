"""Bracketed placeholder strings that stand in for text we could not extract.

Anything starting with one of these prefixes is treated as "no content" by
every consumer: consolidation, transform gating and note display.
"""
from __future__ import annotations

from typing import Optional

MIN_USABLE_LENGTH = 10

UNABLE_TO_EXTRACT = "[Unable to extract text"
PDF_EXTRACTION_ERROR = "[Error extracting text from PDF"
LEGACY_DOC = "[Legacy .doc files are not supported"
UNSUPPORTED_TYPE = "[This file type is not supported"
NO_TEXT_FOUND = "[No text found"

SENTINEL_PREFIXES = (
    UNABLE_TO_EXTRACT,
    PDF_EXTRACTION_ERROR,
    LEGACY_DOC,
    UNSUPPORTED_TYPE,
    NO_TEXT_FOUND,
)


def is_sentinel(text: Optional[str]) -> bool:
    s = (text or "").lstrip()
    return s.startswith(SENTINEL_PREFIXES)


def has_usable_content(text: Optional[str]) -> bool:
    """True for real note text: non-empty and not a sentinel."""
    s = (text or "").strip()
    return bool(s) and not is_sentinel(s)


def is_usable_extraction(text: Optional[str]) -> bool:
    """Stricter check used between pipeline stages (also rejects tiny fragments)."""
    return has_usable_content(text) and len((text or "").strip()) >= MIN_USABLE_LENGTH
