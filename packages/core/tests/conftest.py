"""Shared fixtures: a canned JsonTransport and GitHub payload builders."""

import pytest

from diffpin_core.models import PullScope
from diffpin_core.session import ReviewSession


def paged(*pages):
    """Route value serving ``pages[page - 1]`` for paginated list endpoints."""

    def serve(params):
        index = (params or {}).get("page", 1) - 1
        return pages[index] if index < len(pages) else []

    return serve


class FakeTransport:
    def __init__(self, routes=None, graphql_pages=None, post_result=None):
        self.routes = dict(routes or {})
        self.graphql_pages = list(graphql_pages or [])
        self.post_result = post_result
        self.gets = []
        self.posts = []
        self.queries = []

    def get(self, path, params=None):
        self.gets.append((path, dict(params or {})))
        value = self.routes.get(path)
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(params)
        return value

    def post(self, path, body):
        self.posts.append((path, body))
        if self.post_result is not None:
            return self.post_result
        return {"id": 9001, "html_url": f"https://github.com/x{path}", **body}

    def graphql(self, query, variables):
        self.queries.append(dict(variables))
        if not self.graphql_pages:
            return threads_page([])
        page = self.graphql_pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page


def threads_page(threads, has_next=False, cursor=None):
    """reviewThreads GraphQL payload; ``threads`` is a list of (is_resolved, [comment ids])."""
    return {
        "data": {
            "repository": {
                "pullRequest": {
                    "reviewThreads": {
                        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
                        "nodes": [
                            {"isResolved": resolved, "comments": {"nodes": [{"databaseId": i} for i in ids]}}
                            for resolved, ids in threads
                        ],
                    }
                }
            }
        }
    }


def api_comment(comment_id, path="README.md", line=None, **extra):
    data = {
        "id": comment_id,
        "path": path,
        "line": line,
        "body": f"comment {comment_id}",
        "user": {"login": "octocat"},
        "created_at": f"2024-01-01T00:00:{comment_id % 60:02d}Z",
        "html_url": f"https://github.com/octo/docs/pull/7#discussion_r{comment_id}",
    }
    data.update(extra)
    return data


PULL = "/repos/octo/docs/pulls/7"


@pytest.fixture
def scope():
    return PullScope("octo", "docs", 7)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def session(transport):
    return ReviewSession(transport)
