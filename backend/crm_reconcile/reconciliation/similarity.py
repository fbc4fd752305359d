"""Deterministic name similarity used when matching activities to deals."""

from __future__ import annotations

import re
from difflib import SequenceMatcher

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_MULTISPACE_RE = re.compile(r"\s+")


def normalize_company_name(value: str | None) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""

    collapsed = _MULTISPACE_RE.sub(" ", (value or "").strip().lower())
    cleaned = _NON_ALNUM_RE.sub("", collapsed)
    return _MULTISPACE_RE.sub(" ", cleaned).strip()


def token_overlap(left: str, right: str) -> float:
    """Jaccard overlap of normalized tokens, in [0, 1]."""

    left_tokens = set(normalize_company_name(left).split())
    right_tokens = set(normalize_company_name(right).split())
    if not left_tokens or not right_tokens:
        return 0.0
    return len(left_tokens & right_tokens) / len(left_tokens | right_tokens)


def company_similarity(left: str | None, right: str | None) -> float:
    """Best of sequence ratio and token overlap, in [0, 1]."""

    norm_left = normalize_company_name(left)
    norm_right = normalize_company_name(right)
    if not norm_left or not norm_right:
        return 0.0
    if norm_left == norm_right:
        return 1.0
    sequence = SequenceMatcher(a=norm_left, b=norm_right).ratio()
    return max(sequence, token_overlap(norm_left, norm_right))
