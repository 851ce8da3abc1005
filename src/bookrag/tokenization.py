"""
Shared tokenization and title-normalization helpers.
"""
from __future__ import annotations

import re

_UNICODE_WORD_RE = re.compile(r"\w+", flags=re.UNICODE)
_NON_WORD_RE = re.compile(r"[^\w]+", flags=re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def tokenize_for_matching(text: str, *, min_len: int = 1, limit: int | None = None) -> list[str]:
    """
    Tokenizes text with Unicode-aware word boundaries.
    Keeps letters/numbers from non-Latin scripts and normalizes via casefold().
    """
    safe_min_len = max(1, int(min_len))
    max_tokens = int(limit) if limit is not None else None

    out: list[str] = []
    for raw in _UNICODE_WORD_RE.findall(str(text or "").casefold()):
        token = raw.strip("_")
        if not token:
            continue
        if len(token) < safe_min_len:
            continue
        out.append(token)
        if max_tokens is not None and len(out) >= max_tokens:
            break
    return out


def split_words(text: str) -> list[str]:
    """Whitespace tokenization used by the sliding chunk window."""
    return str(text or "").split()


def normalize_title(text: str) -> str:
    """Trimmed, lower-cased, whitespace-collapsed form stored alongside every chunk."""
    return _WHITESPACE_RE.sub(" ", str(text or "")).strip().lower()


def normalize_for_match(text: str) -> str:
    """Punctuation-insensitive form used when comparing user input to stored titles."""
    normalized = _NON_WORD_RE.sub(" ", str(text or "").casefold())
    return _WHITESPACE_RE.sub(" ", normalized).strip()
