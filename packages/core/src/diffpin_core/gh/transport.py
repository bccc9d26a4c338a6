"""JSON transport to the GitHub REST and GraphQL APIs.

Everything above this module talks to ``JsonTransport`` only, so tests can
serve canned pages and alternative hosts can plug in their own client.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import requests
from github import Auth, Github, GithubException

from diffpin_core.errors import TransportError

logger = logging.getLogger(__name__)

_API_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


class JsonTransport(Protocol):
    def get(self, path: str, params: dict | None = None) -> Any: ...

    def post(self, path: str, body: dict) -> Any: ...

    def graphql(self, query: str, variables: dict) -> dict: ...


class GithubTransport:
    """``JsonTransport`` backed by PyGithub's requester (auth, base URL, rate-limit headers)."""

    def __init__(self, token: str | None, base_url: str | None = None):
        kwargs: dict[str, Any] = {}
        if token:
            kwargs["auth"] = Auth.Token(token)
        if base_url:
            kwargs["base_url"] = base_url
        self._requester = Github(**kwargs).requester

    def get(self, path: str, params: dict | None = None) -> Any:
        logger.debug("GET %s %s", path, params or "")
        return self._call("GET", path, parameters=params)

    def post(self, path: str, body: dict) -> Any:
        logger.debug("POST %s", path)
        return self._call("POST", path, input=body)

    def graphql(self, query: str, variables: dict) -> dict:
        logger.debug("GraphQL query with variables %s", variables)
        try:
            _, data = self._requester.graphql_query(query, variables)
        except GithubException as e:
            raise TransportError(e.status, error_detail(e.status, e.data)) from e
        except requests.RequestException as e:
            raise TransportError(None, f"GitHub GraphQL request failed: {e}") from e
        return data

    def _call(self, verb: str, path: str, **kwargs) -> Any:
        try:
            _, data = self._requester.requestJsonAndCheck(verb, path, headers=dict(_API_HEADERS), **kwargs)
        except GithubException as e:
            raise TransportError(e.status, error_detail(e.status, e.data)) from e
        except requests.RequestException as e:
            raise TransportError(None, f"GitHub API request failed: {e}") from e
        return data


def error_detail(status: int | None, body: Any) -> str:
    """Build the message for a failed call, enriched with the API's own message when readable."""
    detail = f"GitHub API failed ({status})."
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError:
            # Non-JSON error bodies carry nothing worth surfacing.
            return detail
    if isinstance(body, dict) and body.get("message"):
        detail = f"{detail} {body['message']}"
    return detail
