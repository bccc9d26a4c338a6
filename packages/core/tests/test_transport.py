"""Tests for the PyGithub-backed transport and its error mapping."""

import pytest
import requests
from github import Auth, GithubException

from diffpin_core.errors import TransportError
from diffpin_core.gh.transport import GithubTransport, error_detail


@pytest.fixture
def github_cls(mocker):
    return mocker.patch("diffpin_core.gh.transport.Github")


@pytest.fixture
def requester(github_cls):
    return github_cls.return_value.requester


class TestGithubTransport:
    def test_token_and_base_url_passed_to_github(self, github_cls):
        GithubTransport("tok", base_url="https://ghe.example.com/api/v3")
        kwargs = github_cls.call_args.kwargs
        assert isinstance(kwargs["auth"], Auth.Token)
        assert kwargs["auth"].token == "tok"
        assert kwargs["base_url"] == "https://ghe.example.com/api/v3"

    def test_anonymous_when_no_token(self, github_cls):
        GithubTransport(None)
        github_cls.assert_called_once_with()

    def test_get_passes_params_and_api_headers(self, requester):
        requester.requestJsonAndCheck.return_value = ({}, [{"filename": "a.md"}])
        result = GithubTransport("tok").get("/repos/o/r/pulls/1/files", params={"page": 2})

        assert result == [{"filename": "a.md"}]
        verb, path = requester.requestJsonAndCheck.call_args.args
        kwargs = requester.requestJsonAndCheck.call_args.kwargs
        assert (verb, path) == ("GET", "/repos/o/r/pulls/1/files")
        assert kwargs["parameters"] == {"page": 2}
        assert kwargs["headers"]["X-GitHub-Api-Version"] == "2022-11-28"

    def test_post_sends_json_input(self, requester):
        requester.requestJsonAndCheck.return_value = ({}, {"id": 1})
        GithubTransport("tok").post("/repos/o/r/pulls/1/comments", {"body": "hi"})
        assert requester.requestJsonAndCheck.call_args.kwargs["input"] == {"body": "hi"}

    def test_http_error_becomes_transport_error(self, requester):
        requester.requestJsonAndCheck.side_effect = GithubException(404, {"message": "Not Found"})
        with pytest.raises(TransportError) as exc_info:
            GithubTransport("tok").get("/repos/o/r/pulls/1")
        assert exc_info.value.status == 404
        assert exc_info.value.message == "GitHub API failed (404). Not Found"

    def test_network_error_becomes_transport_error(self, requester):
        requester.requestJsonAndCheck.side_effect = requests.ConnectionError("boom")
        with pytest.raises(TransportError) as exc_info:
            GithubTransport("tok").get("/x")
        assert exc_info.value.status is None

    def test_graphql_returns_payload(self, requester):
        requester.graphql_query.return_value = ({}, {"data": {"ok": True}})
        assert GithubTransport("tok").graphql("query { ok }", {"a": 1}) == {"data": {"ok": True}}
        requester.graphql_query.assert_called_once_with("query { ok }", {"a": 1})

    def test_graphql_error(self, requester):
        requester.graphql_query.side_effect = GithubException(502, "Bad gateway")
        with pytest.raises(TransportError, match=r"GitHub API failed \(502\)\."):
            GithubTransport("tok").graphql("query { ok }", {})


class TestErrorDetail:
    def test_message_from_dict(self):
        assert error_detail(422, {"message": "Validation Failed"}) == "GitHub API failed (422). Validation Failed"

    def test_message_from_json_string(self):
        assert error_detail(403, '{"message": "rate limited"}') == "GitHub API failed (403). rate limited"

    def test_unparseable_body_keeps_status_only(self):
        assert error_detail(500, "<html>oops</html>") == "GitHub API failed (500)."

    def test_body_without_message(self):
        assert error_detail(400, {"errors": []}) == "GitHub API failed (400)."
