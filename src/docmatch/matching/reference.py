"""Reference scoring: transaction reference/note vs. document invoice number.

Hierarchy (first level that applies wins):

1. exact match after normalization          -> 1.0
2. transaction reference contains invoice   -> 0.8
3. invoice contains transaction reference   -> 0.7
4. shared significant number (>= 3 digits)  -> up to 0.6
5. same letter/digit skeleton               -> 0.3 flat, or similarity x 0.25 (<= 0.4)
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..schemas.models import Document, Transaction
from .text import levenshtein_similarity

if TYPE_CHECKING:
    from ..config import MatchingConfig

_PREFIXES = ("INV", "INVOICE", "REF", "REFERENCE", "NO", "NR", "NUM")
_SUFFIXES = (" INV", " INVOICE", " REF", " REFERENCE")
_GENERIC_REFERENCES = frozenset({"N/A", "NA", "NONE", "NULL", "UNKNOWN", "TBD", "PENDING"})

_WHITESPACE_RE = re.compile(r"\s+")
_HYPHENS_RE = re.compile(r"-+")
_NUMBER_RE = re.compile(r"\d+")
_TOKEN_RE = re.compile(r"\b(?:([A-Z]{1,5})-?)?(\d{3,}(?:[-/]\d+)*)\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"(?:19|20)\d\d")

NUMERIC_CAP = 0.6
PATTERN_CAP = 0.4
MIN_SIGNIFICANT_DIGITS = 3


def normalize_reference(reference: str | None) -> str:
    """Uppercase, drop one common prefix/suffix, unify separators."""
    if not reference or not reference.strip():
        return ""

    normalized = reference.strip().upper()

    for prefix in _PREFIXES:
        if any(normalized.startswith(prefix + sep) for sep in (" ", ".", "-", ":")):
            normalized = normalized[len(prefix):].lstrip(" .-:")
            break

    for suffix in _SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)].rstrip()
            break

    for sep in ("/", "_", "."):
        normalized = normalized.replace(sep, "-")
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    normalized = _HYPHENS_RE.sub("-", normalized)
    return normalized.strip()


def _significant_numbers(reference: str) -> list[str]:
    return [n for n in _NUMBER_RE.findall(reference) if len(n) >= MIN_SIGNIFICANT_DIGITS]


def _numeric_significance(number: str, ref1: str, ref2: str) -> float:
    length_score = min(len(number) / 10.0, 1.0)
    ratio_score = (len(number) / len(ref1) + len(number) / len(ref2)) / 2.0
    return length_score * 0.7 + ratio_score * 0.3


def _numerically_similar(num1: str, num2: str) -> bool:
    if len(num1) != len(num2):
        return False
    n1, n2 = int(num1), int(num2)
    threshold = max(1, int(max(n1, n2) * 0.01))
    return abs(n1 - n2) <= threshold


def _numeric_match(ref1: str, ref2: str) -> float:
    numbers1 = _significant_numbers(ref1)
    numbers2 = _significant_numbers(ref2)
    best = 0.0
    for num1 in numbers1:
        for num2 in numbers2:
            if num1 == num2:
                best = max(best, _numeric_significance(num1, ref1, ref2))
            elif _numerically_similar(num1, num2):
                best = max(best, _numeric_significance(num1, ref1, ref2) * 0.7)
    return best


def reference_pattern(reference: str) -> str:
    """Structural skeleton: letters -> L, digits -> #, punctuation kept."""
    pattern = []
    for char in reference:
        if char.isalpha():
            pattern.append("L")
        elif char.isdigit():
            pattern.append("#")
        elif unicodedata.category(char)[0] in ("P", "S"):
            pattern.append(char)
    return "".join(pattern)


def _pattern_match(ref1: str, ref2: str) -> float:
    pattern1 = reference_pattern(ref1)
    pattern2 = reference_pattern(ref2)
    if not pattern1 or not pattern2:
        return 0.0
    if pattern1 == pattern2:
        return 0.3
    similarity = levenshtein_similarity(pattern1, pattern2, normalize=False)
    if similarity >= 0.8:
        return similarity * 0.25
    return 0.0


def score_reference_text(transaction_ref: str | None, invoice_number: str | None) -> float:
    """Score one reference text against an invoice number."""
    ref1 = normalize_reference(transaction_ref)
    ref2 = normalize_reference(invoice_number)
    if not ref1 or not ref2:
        return 0.0

    if ref1 == ref2:
        return 1.0
    if ref2 in ref1:
        return 0.8
    if ref1 in ref2:
        return 0.7

    numeric = _numeric_match(ref1, ref2)
    if numeric > 0:
        return min(numeric, NUMERIC_CAP)

    pattern = _pattern_match(ref1, ref2)
    if pattern > 0:
        return min(pattern, PATTERN_CAP)

    return 0.0


def score_reference(
    transaction: Transaction, document: Document, config: MatchingConfig | None = None
) -> float:
    """Best reference score over the transaction's reference and note."""
    if not document.invoice_number or not document.invoice_number.strip():
        return 0.0
    scores = [score_reference_text(text, document.invoice_number) for text in transaction.reference_texts]
    return max(scores, default=0.0)


def is_valid_reference(reference: str | None) -> bool:
    """True if a reference looks meaningful enough to match on."""
    if not reference or not reference.strip():
        return False

    normalized = normalize_reference(reference)
    if len(normalized) < 3:
        return False
    if not any(c.isalnum() for c in normalized):
        return False
    if reference.strip().upper() in _GENERIC_REFERENCES or normalized in _GENERIC_REFERENCES:
        return False
    return True


def extract_reference_tokens(text: str | None) -> list[str]:
    """Pull invoice-number-like tokens out of free text.

    A token is a number of at least three digits (optionally continued with
    "-" or "/" groups) with an optional short letter prefix, e.g. "RG-2024-001",
    "ABC123" or "12345". Bare numbers need at least four digits and must not
    look like a year, so amounts like "100.00" do not count. Returned
    uppercase, distinct, in order of appearance.
    """
    if not text or not text.strip():
        return []

    tokens: list[str] = []
    for match in _TOKEN_RE.finditer(text):
        prefix, digits = match.group(1), match.group(2)
        if not prefix and (sum(c.isdigit() for c in digits) < 4 or _YEAR_RE.fullmatch(digits)):
            continue
        token = match.group(0).upper()
        if token not in tokens:
            tokens.append(token)
    return tokens


def token_matches_invoice(token: str, invoice_number: str | None) -> bool:
    """Exact or substring match (either direction) after normalization."""
    token_norm = normalize_reference(token)
    invoice_norm = normalize_reference(invoice_number)
    if not token_norm or not invoice_norm:
        return False
    if token_norm == invoice_norm:
        return True
    shorter = min(token_norm, invoice_norm, key=len)
    if len(shorter) < MIN_SIGNIFICANT_DIGITS:
        return False
    return token_norm in invoice_norm or invoice_norm in token_norm


def matched_tokens(tokens: Sequence[str], documents: Sequence[Document]) -> list[str]:
    """Tokens that match the invoice number of at least one document."""
    return [t for t in tokens if any(token_matches_invoice(t, d.invoice_number) for d in documents)]


def combination_reference_score(transaction: Transaction, documents: Sequence[Document]) -> float:
    """Aggregate reference score of a document set.

    The larger of the mean individual score and the share of documents whose
    invoice number matches a token extracted from the transaction.
    """
    if not documents:
        return 0.0

    individual = [score_reference(transaction, d) for d in documents]
    mean_score = sum(individual) / len(individual)

    tokens = [t for text in transaction.reference_texts for t in extract_reference_tokens(text)]
    coverage = 0.0
    if tokens:
        covered = sum(
            1 for d in documents if any(token_matches_invoice(t, d.invoice_number) for t in tokens)
        )
        coverage = covered / len(documents)

    return min(max(mean_score, coverage), 1.0)
