"""Text normalization and edit-distance similarity shared by the scorers."""

from __future__ import annotations

import re
import unicodedata

from rapidfuzz.distance import Levenshtein

_PUNCTUATION_RE = re.compile(r"[.,;:!?()\[\]{}\"'\-]")
_WHITESPACE_RE = re.compile(r"\s+")


def remove_diacritics(text: str) -> str:
    """Strip combining marks ("Müller" -> "Muller")."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return unicodedata.normalize("NFC", stripped)


def normalize_for_matching(text: str | None) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace."""
    if not text:
        return ""
    normalized = remove_diacritics(text.strip().lower())
    normalized = _PUNCTUATION_RE.sub("", normalized)
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def levenshtein_similarity(a: str | None, b: str | None, normalize: bool = True) -> float:
    """Similarity in [0, 1] as 1 - distance / longest length.

    Two empty strings are identical (1.0); one empty string scores 0.0.
    """
    if normalize:
        a = normalize_for_matching(a)
        b = normalize_for_matching(b)
    else:
        a = a or ""
        b = b or ""

    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def significant_words(text: str, min_length: int = 3) -> set[str]:
    """Words of a normalized text long enough to carry meaning."""
    return {w for w in text.split(" ") if len(w) >= min_length}
