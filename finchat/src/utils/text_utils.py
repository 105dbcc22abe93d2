"""
FinChat - Text Utilities
=========================
Helpers for text cleaning before embedding and for short, log-safe
previews of user content.

Stateless and side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata

# Control characters except \n, \r, \t, plus BOM / zero-width / soft hyphen
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")
_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_ANY_WS_RE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    """
    Normalise raw document text for chunking and embedding.

    Steps:
        1. Unicode NFKC normalisation (folds non-breaking spaces and
           full-width digits that are common in scraped filings).
        2. Strip non-printable / zero-width characters.
        3. Collapse runs of horizontal whitespace, *preserving* newlines.
        4. Strip every line.
        5. Collapse 3+ consecutive newlines to 2.
    """
    text = unicodedata.normalize("NFKC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.splitlines())
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def preview(text: str, limit: int = 100) -> str:
    """Single-line preview of *text*, truncated to *limit* chars with an ellipsis."""
    flat = _ANY_WS_RE.sub(" ", text).strip()
    if len(flat) <= limit:
        return flat
    return flat[:limit].rstrip() + "..."
