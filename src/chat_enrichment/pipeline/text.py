"""Deterministic text canonicalization for message enrichment."""

from __future__ import annotations

import hashlib
import math
import re

from chat_enrichment.pipeline.models import NormalizedText

_DISALLOWED_RE = re.compile(r"[^\u0400-\u04FFa-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_CYRILLIC_RE = re.compile(r"[\u0400-\u04FF]")
_LATIN_RE = re.compile(r"[a-z]")
_SR_MARKERS_RE = re.compile(r"[љњђћџ]")
TOKENS_PER_WORD = 1.3


def normalize_text(text: str | None) -> str:
    """Lowercase, keep Cyrillic/Latin letters and digits, collapse whitespace.

    The intent cache is keyed by the hash of this output, so the function
    must stay pure: identical input always yields identical output.
    """

    lowered = (text or "").lower()
    stripped = _DISALLOWED_RE.sub("", lowered)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def text_hash(normalized_text: str) -> str:
    return hashlib.md5(normalized_text.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324


def estimate_tokens(normalized_text: str) -> int:
    words = len(normalized_text.split()) if normalized_text else 0
    return math.ceil(words * TOKENS_PER_WORD)


def detect_language(text: str) -> str:
    """Detect language of normalized text by script counts.

    Returns one of: ``ru``, ``sr``, ``en``, ``unknown``.
    """

    if not text:
        return "unknown"
    cyrillic = len(_CYRILLIC_RE.findall(text))
    latin = len(_LATIN_RE.findall(text))
    if cyrillic == 0 and latin == 0:
        return "unknown"
    if cyrillic > latin:
        return "sr" if _SR_MARKERS_RE.search(text) else "ru"
    return "en"


def build_normalized(message_id: str, content: str) -> NormalizedText:
    normalized = normalize_text(content)
    return NormalizedText(
        message_id=message_id,
        normalized_text=normalized,
        text_hash=text_hash(normalized),
        language=detect_language(normalized),
        tokens_count=estimate_tokens(normalized),
    )
