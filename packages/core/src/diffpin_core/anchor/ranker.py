"""Map a free-form text selection to candidate line ranges in a pull request's diff."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from diffpin_core.anchor.text import normalize, score_text, tokenize
from diffpin_core.errors import NoAnchorFound
from diffpin_core.models import AnchorCandidate, PatchLine, PullScope

if TYPE_CHECKING:
    from diffpin_core.session import ReviewSession

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 220


def rank_candidates(
    selected_text: str,
    lines: list[PatchLine],
    *,
    max_window: int = 12,
    min_score: float = 0.2,
) -> list[AnchorCandidate]:
    """
    Score every window of 1..max_window consecutive lines against the selection.

    Exact containment scores 1.0; otherwise token overlap and length similarity
    decide. Each extra line in a window costs 0.06 (capped at 0.28) so that the
    tightest matching range wins. Results are ordered best first, narrower
    windows first on ties, one entry per (start_line, line).
    """
    target = normalize(selected_text)
    if not target:
        return []

    target_tokens = tokenize(target)
    results: list[AnchorCandidate] = []

    for start in range(len(lines)):
        joined = ""
        for size in range(1, max_window + 1):
            if start + size > len(lines):
                break
            current = lines[start + size - 1]
            joined = f"{joined} {current.rendered}" if joined else current.rendered
            if not joined:
                continue

            span_penalty = min(0.28, (size - 1) * 0.06)
            similarity = score_text(target, joined, target_tokens) - span_penalty
            if similarity < min_score:
                continue

            results.append(
                AnchorCandidate(
                    score=similarity,
                    start_line=lines[start].line,
                    line=current.line,
                    preview=joined[:_PREVIEW_CHARS],
                )
            )

    results.sort(key=lambda c: (-c.score, c.span))

    deduped: list[AnchorCandidate] = []
    seen: set[tuple[int, int]] = set()
    for candidate in results:
        key = (candidate.start_line, candidate.line)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(candidate)
    return deduped


def _ordered_files(files: list[dict], requested_path: str) -> list[dict]:
    exact = [f for f in files if requested_path and f.get("filename") == requested_path]
    if not exact:
        return list(files)
    return exact + [f for f in files if f.get("filename") != requested_path]


def resolve_anchor_candidates(
    session: ReviewSession,
    scope: PullScope,
    selected_text: str,
    path: str | None = None,
) -> list[AnchorCandidate]:
    """Rank candidates across all changed files of a pull request.

    The file the selection was made in (``path``) is tried first and gets a
    small score boost. Raises NoAnchorFound when no file yields a candidate.
    """
    config = session.config
    requested_path = (path or "").strip()
    per_file_limit = (
        config["per_file_limit_with_path"] if requested_path else config["per_file_limit_without_path"]
    )

    merged: list[AnchorCandidate] = []
    for file in _ordered_files(session.pull_files(scope), requested_path):
        filename = file.get("filename")
        if not filename:
            continue
        lines = session.right_lines(scope, file)
        if not lines:
            logger.debug("Skipping %s: no right-side lines", filename)
            continue

        boost = config["path_boost"] if requested_path and filename == requested_path else 0.0
        ranked = rank_candidates(
            selected_text,
            lines,
            max_window=config["max_window"],
            min_score=config["window_min_score"],
        )[:per_file_limit]
        for candidate in ranked:
            candidate.score = min(1.0, candidate.score + boost)
            candidate.path = filename
            merged.append(candidate)

    if not merged:
        raise NoAnchorFound()

    merged.sort(key=lambda c: -c.score)

    deduped: list[AnchorCandidate] = []
    seen: set[tuple[str, int, int]] = set()
    for candidate in merged:
        key = (candidate.path, candidate.start_line, candidate.line)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(candidate)
        if len(deduped) >= config["max_candidates"]:
            break

    logger.debug("Resolved %d candidate(s) for selection in %s", len(deduped), scope.key)
    return deduped


rank = rank_candidates
