"""Listing of unresolved review comments, with anchor text and reply threads."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Iterable

from diffpin_core.anchor.patch import line_text_map
from diffpin_core.gh.pull_request import get_resolved_comment_ids, get_review_comments
from diffpin_core.models import PullScope, ReviewComment

if TYPE_CHECKING:
    from diffpin_core.session import ReviewSession

logger = logging.getLogger(__name__)

_ANCHOR_MAX_LINES = 4
_ANCHOR_MAX_CHARS = 320


def filter_out_resolved(items: Iterable, resolved_ids: set[int]) -> list:
    """Drop API items (dicts or comments) whose id belongs to a resolved thread."""
    kept = []
    for item in items or []:
        raw_id = item.get("id") if isinstance(item, dict) else getattr(item, "id", None)
        try:
            item_id = int(raw_id or 0)
        except (TypeError, ValueError):
            item_id = 0
        if item_id not in resolved_ids:
            kept.append(item)
    return kept


def anchor_text_for(comment: ReviewComment, line_map: dict[int, str]) -> str:
    """Join up to four current-revision lines covered by the comment's range."""
    numbers = [n for n in (comment.line, comment.start_line) if n]
    parts: list[str] = []
    if numbers:
        for number in range(min(numbers), max(numbers) + 1):
            if number in line_map:
                parts.append(line_map[number])
                if len(parts) >= _ANCHOR_MAX_LINES:
                    break
    if not parts:
        for number in (comment.line, comment.start_line):
            if number and number in line_map:
                parts = [line_map[number]]
                break
    return "\n".join(parts)[:_ANCHOR_MAX_CHARS]


def build_threads(flat: list[ReviewComment]) -> list[ReviewComment]:
    """Nest replies under their parent comment.

    Replies whose parent is not in ``flat`` (resolved, deleted or on another
    page) stay top-level. A reply to a reply joins the thread of the topmost
    comment in its chain. Root order follows the input.
    """
    clones = [replace(comment, replies=[]) for comment in flat]
    by_id = {clone.id: clone for clone in clones}

    roots: list[ReviewComment] = []
    for clone in clones:
        root = _thread_root(clone, by_id)
        if root is not None:
            root.replies.append(clone.to_reply())
            continue
        roots.append(clone)

    for root in roots:
        if len(root.replies) > 1:
            root.replies.sort(key=lambda reply: reply.created_at)
    return roots


def _thread_root(comment: ReviewComment, by_id: dict[int, ReviewComment]) -> ReviewComment | None:
    """Follow ``in_reply_to_id`` to the top of the chain.

    Returns None when the comment is itself a root, including when the chain
    loops back on itself.
    """
    seen = {comment.id}
    current = comment
    while current.in_reply_to_id in by_id:
        if current.in_reply_to_id in seen:
            return None
        seen.add(current.in_reply_to_id)
        current = by_id[current.in_reply_to_id]
    return current if current is not comment else None


class CommentRepository:
    def __init__(self, session: ReviewSession):
        self._session = session

    def list_comments(self, scope: PullScope, force_refresh: bool = False) -> list[ReviewComment]:
        cache = self._session.comments
        if force_refresh:
            cache.invalidate(scope.key)
        cached = cache.get(scope.key)
        if cached is not None:
            return cached

        config = self._session.config
        transport = self._session.transport
        items = get_review_comments(
            transport, scope, config["comments_page_size"], config["comments_max_pages"]
        )
        resolved = get_resolved_comment_ids(
            transport, scope, config["threads_page_size"], config["threads_max_pages"]
        )
        active = filter_out_resolved(items, resolved)

        comments = [ReviewComment.from_api(item) for item in active]
        comments.sort(key=lambda c: (c.path, c.current_line, c.created_at))
        self._attach_anchor_text(scope, comments)

        threads = build_threads(comments)
        cache.put(scope.key, threads)
        logger.info(
            "Loaded %d comment(s) in %d thread(s) for %s (%d resolved skipped)",
            len(comments),
            len(threads),
            scope.key,
            len(items) - len(active),
        )
        return threads

    def _attach_anchor_text(self, scope: PullScope, comments: list[ReviewComment]) -> None:
        if not comments:
            return
        files = {f.get("filename"): f for f in self._session.pull_files(scope)}
        line_maps: dict[str, dict[int, str]] = {}
        for comment in comments:
            file = files.get(comment.path)
            if file is None:
                continue
            if comment.path not in line_maps:
                line_maps[comment.path] = line_text_map(self._session.right_lines(scope, file))
            comment.anchor_text = anchor_text_for(comment, line_maps[comment.path])


def list_threaded_comments(
    session: ReviewSession, scope: PullScope, force_refresh: bool = False
) -> list[ReviewComment]:
    return CommentRepository(session).list_comments(scope, force_refresh)
