"""Per-process review context.

A ``ReviewSession`` owns everything that outlives a single call: the current
pull request scope, the scope-keyed caches and the DOM watcher handle. All
operations take the session explicitly instead of reaching for module state.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from typing import Any, Hashable
from urllib.parse import parse_qs, urlparse

from diffpin_core.anchor.patch import full_content_lines, parse_right_lines
from diffpin_core.comments import list_threaded_comments
from diffpin_core.config import DEFAULT_CONFIG
from diffpin_core.dom.watcher import RemapWatcher
from diffpin_core.gh.pull_request import (
    create_reply,
    create_review_comment,
    get_file_content,
    get_head_sha,
    get_pull_files,
)
from diffpin_core.gh.transport import JsonTransport
from diffpin_core.models import AnchorCandidate, PatchLine, PullScope, ReviewComment

logger = logging.getLogger(__name__)


class ScopeCache:
    """A dict of fetched values that hands out copies, so callers never mutate cached state."""

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[Hashable, Any] = {}

    def get(self, key: Hashable) -> Any | None:
        if key not in self._entries:
            logger.debug("%s cache miss: %s", self.name, key)
            return None
        logger.debug("%s cache hit: %s", self.name, key)
        return copy.deepcopy(self._entries[key])

    def put(self, key: Hashable, value: Any) -> None:
        self._entries[key] = copy.deepcopy(value)

    def invalidate(self, scope_key: str | None = None) -> None:
        """Drop entries for one scope (keys equal to it or tuples starting with it), or everything."""
        if scope_key is None:
            self._entries.clear()
            return
        for key in list(self._entries):
            if key == scope_key or (isinstance(key, tuple) and key and key[0] == scope_key):
                del self._entries[key]

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class RequestToken:
    scope_key: str
    serial: int


class ReviewSession:
    def __init__(self, transport: JsonTransport, config: dict | None = None):
        self.transport = transport
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.files = ScopeCache("files")
        self.comments = ScopeCache("comments")
        self.contents = ScopeCache("contents")
        self.scope: PullScope | None = None
        self.watcher: RemapWatcher | None = None
        self._serial = 0

    # -- lifecycle --------------------------------------------------------

    def attach(self, scope: PullScope) -> bool:
        """Point the session at a pull request. Returns True when the pull changed."""
        changed = self.scope is None or self.scope.key != scope.key
        self.scope = scope
        if changed:
            # Arriving on a pull always shows fresh comments.
            self.comments.invalidate(scope.key)
            self._serial += 1
            logger.debug("Session attached to %s", scope.key)
        return changed

    def detach(self) -> None:
        if self.watcher is not None:
            self.watcher.cancel()
            self.watcher = None
        self.scope = None
        self._serial += 1

    async def watch(self, source: AsyncIterable[Any], remap: Callable[[], int]) -> RemapWatcher:
        """Start re-mapping on page changes; replaces any previous watcher."""
        if self.watcher is not None:
            self.watcher.cancel()
        self.watcher = RemapWatcher(
            source,
            remap,
            quiet=self.config["remap_debounce_seconds"],
            retry_interval=self.config["remap_retry_interval"],
            max_retries=self.config["remap_max_retries"],
        )
        await self.watcher.start()
        return self.watcher

    def set_transport(self, transport: JsonTransport) -> None:
        """Swap credentials. Anything fetched with the previous ones is dropped."""
        self.transport = transport
        self.invalidate()

    def invalidate(self, scope: PullScope | None = None) -> None:
        key = scope.key if scope is not None else None
        for cache in (self.files, self.comments, self.contents):
            cache.invalidate(key)

    # -- staleness --------------------------------------------------------

    def begin_request(self) -> RequestToken:
        if self.scope is None:
            raise RuntimeError("Session is not attached to a pull request.")
        self._serial += 1
        return RequestToken(scope_key=self.scope.key, serial=self._serial)

    def is_current(self, token: RequestToken) -> bool:
        return self.scope is not None and self.scope.key == token.scope_key and self._serial == token.serial

    # -- fetches ----------------------------------------------------------

    def _require_scope(self, scope: PullScope | None) -> PullScope:
        scope = scope or self.scope
        if scope is None:
            raise RuntimeError("Session is not attached to a pull request.")
        return scope

    def pull_files(self, scope: PullScope | None = None, force_refresh: bool = False) -> list[dict]:
        scope = self._require_scope(scope)
        if force_refresh:
            self.files.invalidate(scope.key)
        cached = self.files.get(scope.key)
        if cached is not None:
            return cached
        files = get_pull_files(
            self.transport, scope, self.config["files_page_size"], self.config["files_max_pages"]
        )
        self.files.put(scope.key, files)
        return files

    def file_content(self, scope: PullScope, path: str, ref: str) -> str:
        key = (scope.key, path, ref)
        cached = self.contents.get(key)
        if cached is not None:
            return cached
        content = get_file_content(self.transport, scope, path, ref)
        self.contents.put(key, content)
        return content

    def right_lines(self, scope: PullScope, file: dict) -> list[PatchLine]:
        """Index a changed file's right side, reading the whole body for added files without a patch."""
        patch = file.get("patch")
        if patch:
            return parse_right_lines(patch)
        if not file.get("filename"):
            return []
        if file.get("status") != "added":
            # GitHub omits patches for binary and very large diffs.
            if file.get("changes"):
                logger.warning("No patch for %s; skipping it", file["filename"])
            return []
        ref = _ref_from_contents_url(file.get("contents_url")) or get_head_sha(self.transport, scope)
        logger.debug("No patch for added file %s; indexing full content at %s", file["filename"], ref)
        return full_content_lines(self.file_content(scope, file["filename"], ref))

    def load_comments(self, force_refresh: bool = False) -> list[ReviewComment] | None:
        """List comments for the attached pull, or None if the session moved on meanwhile."""
        token = self.begin_request()
        comments = list_threaded_comments(self, self.scope, force_refresh)
        if not self.is_current(token):
            logger.debug("Discarding stale comment list for %s", token.scope_key)
            return None
        return comments

    # -- writes -----------------------------------------------------------

    def post_comment(self, candidate: AnchorCandidate, body: str, scope: PullScope | None = None) -> dict:
        scope = self._require_scope(scope)
        _require_fields(body=body.strip() if body else "", path=candidate.path, line=candidate.line)
        head = get_head_sha(self.transport, scope)
        result = create_review_comment(
            self.transport,
            scope,
            body=body.strip(),
            commit_id=head,
            path=candidate.path,
            line=candidate.line,
            side=candidate.side,
            start_line=candidate.start_line,
        )
        self.comments.invalidate(scope.key)
        logger.info("Posted comment %s on %s %s", result["id"], candidate.path, candidate.line)
        return result

    def post_reply(self, comment_id: int, body: str, scope: PullScope | None = None) -> dict:
        scope = self._require_scope(scope)
        _require_fields(comment_id=comment_id, body=body.strip() if body else "")
        result = create_reply(self.transport, scope, comment_id, body.strip())
        self.comments.invalidate(scope.key)
        return result


def _require_fields(**fields) -> None:
    for name, value in fields.items():
        if value is None or value == "" or value == 0:
            raise ValueError(f"Missing required field: {name}")


def _ref_from_contents_url(url: str | None) -> str | None:
    if not url:
        return None
    refs = parse_qs(urlparse(url).query).get("ref")
    return refs[0] if refs else None
