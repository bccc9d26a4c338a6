"""Value objects passed between the anchor, comment and DOM layers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

_PULL_PATH_RE = re.compile(r"^/([^/]+)/([^/]+)/pull/(\d+)")


@dataclass(frozen=True)
class PullScope:
    """Identifies one pull request. ``key`` is the cache key for everything fetched for it."""

    owner: str
    repo: str
    number: int

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"

    @classmethod
    def parse(cls, repo: str, number: int) -> PullScope:
        """Build a scope from ``owner/name`` and a pull request number."""
        owner, sep, name = repo.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError(f"Repository must be in owner/name format, got {repo!r}.")
        return cls(owner=owner, repo=name, number=int(number))

    @classmethod
    def from_url(cls, url: str) -> PullScope | None:
        match = _PULL_PATH_RE.match(urlparse(url).path)
        if not match:
            return None
        return cls(owner=match.group(1), repo=match.group(2), number=int(match.group(3)))


@dataclass(frozen=True)
class PatchLine:
    line: int  # right-side (new file) line number, 1-based
    raw: str
    rendered: str
    op: str  # "+" | " "


@dataclass
class AnchorCandidate:
    score: float
    start_line: int
    line: int
    preview: str
    side: str = "RIGHT"
    path: str = ""

    @property
    def span(self) -> int:
        return self.line - self.start_line

    def to_dict(self) -> dict:
        return {
            "score": round(self.score, 4),
            "start_line": self.start_line,
            "line": self.line,
            "side": self.side,
            "preview": self.preview,
            "path": self.path,
        }


@dataclass
class CommentReply:
    id: int
    body: str
    user: str
    created_at: str
    updated_at: str
    html_url: str
    in_reply_to_id: int | None


@dataclass
class ReviewComment:
    """A pull request review comment as listed by the REST API.

    ``line``/``start_line`` point into the current revision. When both are None
    the comment is outdated and only ``original_line``/``original_start_line``
    are meaningful.
    """

    id: int
    path: str
    line: int | None = None
    start_line: int | None = None
    original_line: int | None = None
    original_start_line: int | None = None
    side: str = "RIGHT"
    body: str = ""
    user: str = ""
    created_at: str = ""
    updated_at: str = ""
    html_url: str = ""
    in_reply_to_id: int | None = None
    anchor_text: str = ""
    replies: list[CommentReply] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> ReviewComment:
        user = data.get("user") or {}
        return cls(
            id=int(data.get("id") or 0),
            path=data.get("path") or "",
            line=_positive(data.get("line")),
            start_line=_positive(data.get("start_line")),
            original_line=_positive(data.get("original_line")),
            original_start_line=_positive(data.get("original_start_line")),
            side=data.get("side") or "RIGHT",
            body=data.get("body") or "",
            user=user.get("login") or "unknown",
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
            html_url=data.get("html_url") or "",
            in_reply_to_id=_positive(data.get("in_reply_to_id")),
        )

    @property
    def current_line(self) -> int:
        return self.line or self.start_line or 0

    @property
    def original_line_hint(self) -> int:
        return self.original_line or self.original_start_line or 0

    @property
    def line_hint(self) -> int:
        return self.current_line or self.original_line_hint

    @property
    def line_label(self) -> str:
        start = self.start_line or self.original_start_line or 0
        end = self.line or self.original_line or 0
        if start > 0 and end > 0 and start != end:
            return f"L{start}-L{end}"
        if end > 0:
            return f"L{end}"
        if start > 0:
            return f"L{start}"
        return "(no line)"

    def to_reply(self) -> CommentReply:
        return CommentReply(
            id=self.id,
            body=self.body,
            user=self.user,
            created_at=self.created_at,
            updated_at=self.updated_at,
            html_url=self.html_url,
            in_reply_to_id=self.in_reply_to_id,
        )


def _positive(value) -> int | None:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None
