from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import quote

from diffpin_core.errors import ShapeError
from diffpin_core.gh.transport import JsonTransport
from diffpin_core.models import PullScope

logger = logging.getLogger(__name__)

REVIEW_THREADS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $pageSize: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      reviewThreads(first: $pageSize, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          isResolved
          comments(first: 100) { nodes { databaseId } }
        }
      }
    }
  }
}
"""


def _pull_path(scope: PullScope) -> str:
    return f"/repos/{quote(scope.owner, safe='')}/{quote(scope.repo, safe='')}/pulls/{int(scope.number)}"


def paginate(transport: JsonTransport, path: str, page_size: int = 100, max_pages: int = 10) -> list[dict]:
    """Fetch list pages one at a time until an empty or short page, or the page cap."""
    items: list[dict] = []
    for page in range(1, max_pages + 1):
        batch = transport.get(path, params={"per_page": page_size, "page": page})
        if not isinstance(batch, list) or not batch:
            break
        items.extend(batch)
        if len(batch) < page_size:
            break
    logger.debug("Fetched %d item(s) from %s", len(items), path)
    return items


def get_pull_files(transport: JsonTransport, scope: PullScope, page_size: int = 100, max_pages: int = 10) -> list[dict]:
    return paginate(transport, f"{_pull_path(scope)}/files", page_size, max_pages)


def get_review_comments(
    transport: JsonTransport, scope: PullScope, page_size: int = 100, max_pages: int = 10
) -> list[dict]:
    return paginate(transport, f"{_pull_path(scope)}/comments", page_size, max_pages)


def get_head_sha(transport: JsonTransport, scope: PullScope) -> str:
    pull = transport.get(_pull_path(scope))
    sha = ((pull or {}).get("head") or {}).get("sha") if isinstance(pull, dict) else None
    if not sha:
        raise ShapeError("Unable to resolve PR head commit SHA.")
    return sha


def get_file_content(transport: JsonTransport, scope: PullScope, path: str, ref: str) -> str:
    """Return a file's text at ``ref`` through the contents API."""
    data = transport.get(
        f"/repos/{quote(scope.owner, safe='')}/{quote(scope.repo, safe='')}/contents/{quote(path, safe='/')}",
        params={"ref": ref},
    )
    if not isinstance(data, dict) or not isinstance(data.get("content"), str):
        raise ShapeError(f"Contents API returned no content for {path}.")
    content = data["content"]
    if data.get("encoding") == "base64":
        try:
            return base64.b64decode(content).decode("utf-8", errors="replace")
        except binascii.Error as e:
            raise ShapeError(f"Contents API returned invalid base64 for {path}.") from e
    if data.get("encoding") in (None, "", "utf-8") and content:
        return content
    raise ShapeError(f"Unsupported content encoding {data.get('encoding')!r} for {path}.")


def collect_resolved_comment_ids(payload: dict) -> tuple[set[int], dict]:
    """Extract resolved comment ids and the pageInfo block from one reviewThreads page."""
    try:
        threads = payload["data"]["repository"]["pullRequest"]["reviewThreads"]
        nodes = threads["nodes"]
    except (KeyError, TypeError):
        nodes = None
    if not isinstance(nodes, list):
        raise ShapeError("Could not load review thread resolution state from GitHub GraphQL.")

    resolved: set[int] = set()
    for thread in nodes:
        if not thread or not thread.get("isResolved"):
            continue
        comments = (thread.get("comments") or {}).get("nodes")
        for comment in comments if isinstance(comments, list) else []:
            try:
                comment_id = int((comment or {}).get("databaseId") or 0)
            except (TypeError, ValueError):
                continue
            if comment_id > 0:
                resolved.add(comment_id)

    return resolved, threads.get("pageInfo") or {}


def get_resolved_comment_ids(
    transport: JsonTransport, scope: PullScope, page_size: int = 50, max_pages: int = 20
) -> set[int]:
    """Walk every reviewThreads page and return the ids of comments in resolved threads."""
    resolved: set[int] = set()
    cursor = None
    for _ in range(max_pages):
        payload = transport.graphql(
            REVIEW_THREADS_QUERY,
            {
                "owner": scope.owner,
                "repo": scope.repo,
                "number": int(scope.number),
                "pageSize": page_size,
                "cursor": cursor,
            },
        )
        ids, page_info = collect_resolved_comment_ids(payload)
        resolved |= ids
        if not page_info.get("hasNextPage"):
            break
        cursor = page_info.get("endCursor")
        if not cursor:
            break
    logger.debug("%d resolved comment id(s) for %s", len(resolved), scope.key)
    return resolved


def create_review_comment(
    transport: JsonTransport,
    scope: PullScope,
    *,
    body: str,
    commit_id: str,
    path: str,
    line: int,
    side: str = "RIGHT",
    start_line: int | None = None,
) -> dict:
    side = "LEFT" if side == "LEFT" else "RIGHT"
    payload = {"body": body, "commit_id": commit_id, "path": path, "line": int(line), "side": side}
    # GitHub rejects start_line == line; single-line comments omit it.
    if start_line and int(start_line) < int(line):
        payload["start_line"] = int(start_line)
        payload["start_side"] = side
    result = transport.post(f"{_pull_path(scope)}/comments", payload)
    return _posted_summary(result)


def create_reply(transport: JsonTransport, scope: PullScope, comment_id: int, body: str) -> dict:
    result = transport.post(f"{_pull_path(scope)}/comments/{int(comment_id)}/replies", {"body": body})
    return _posted_summary(result)


def _posted_summary(result) -> dict:
    if not isinstance(result, dict) or not result.get("id"):
        raise ShapeError("GitHub did not return the created comment.")
    return {
        "id": result["id"],
        "html_url": result.get("html_url", ""),
        "path": result.get("path", ""),
        "line": result.get("line"),
        "side": result.get("side"),
    }
