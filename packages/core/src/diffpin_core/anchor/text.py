"""Text normalization and similarity scoring.

Two flavours exist because the two sides being compared differ:

* ``normalize``/``score_text`` compare a reviewer's selection against diff
  lines, which still carry markdown syntax.
* ``normalize_render_text``/``score_render_anchor`` compare a comment's anchor
  text against the text content of rendered elements, where markup is already
  gone but punctuation is arbitrary.
"""

from __future__ import annotations

import re

_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_BACKTICKS_RE = re.compile(r"`+")
_HEADING_RE = re.compile(r"^\s*#{1,6}\s+")
_LIST_MARKER_RE = re.compile(r"^\s*([-*+]\s+|\d+\.\s+)")
_EMPHASIS_RE = re.compile(r"[*_~>#]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")


def _normalize_once(text: str) -> str:
    text = _IMAGE_RE.sub(r" \1 ", text)
    text = _LINK_RE.sub(r" \1 ", text)
    text = _BACKTICKS_RE.sub(" ", text)
    text = _HEADING_RE.sub(" ", text, count=1)
    text = _LIST_MARKER_RE.sub(" ", text, count=1)
    text = _EMPHASIS_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip().lower()


def normalize(text: str | None) -> str:
    """Strip markdown decoration, collapse whitespace and lowercase.

    A single pass can expose a new leading list marker or link (``"- - a"``,
    ``"[[a](b)](c)"``), so passes repeat until the text stops changing. Every
    changing pass makes the text shorter, which bounds the loop.
    """
    if not text:
        return ""
    result = _normalize_once(str(text))
    while True:
        again = _normalize_once(result)
        if again == result:
            return result
        result = again


def tokenize(text: str) -> set[str]:
    return {token for token in text.split() if token}


def token_overlap(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))


def score_text(target: str, candidate: str, target_tokens: set[str]) -> float:
    """Similarity of a diff window (``candidate``) to the normalized selection."""
    if not candidate:
        return 0.0
    if target in candidate:
        return 1.0
    if candidate in target:
        return max(0.3, len(candidate) / len(target))

    overlap = token_overlap(target_tokens, tokenize(candidate))
    length_term = 1 - min(0.5, abs(len(candidate) - len(target)) / max(len(target), 1))
    return overlap * 0.75 + length_term * 0.25


def normalize_render_text(text: str | None) -> str:
    if not text:
        return ""
    text = _NON_WORD_RE.sub(" ", str(text).lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def score_render_anchor(anchor: str, candidate: str) -> float:
    """Similarity of a rendered element's text to a comment's anchor text."""
    if not anchor or not candidate:
        return 0.0
    if anchor in candidate:
        return 1.0
    if candidate in anchor:
        return max(0.35, len(candidate) / max(len(anchor), 1))

    overlap = token_overlap(tokenize(anchor), tokenize(candidate))
    length_term = 1 - min(0.55, abs(len(candidate) - len(anchor)) / max(len(anchor), 1))
    return overlap * 0.8 + length_term * 0.2
