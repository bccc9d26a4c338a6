"""Tests for the CLI entry point and commands."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from diffpin_cli.cli import _enterprise_hostname, main
from diffpin_cli.runtime import build_session
from diffpin_core.config import DEFAULT_CONFIG
from diffpin_core.dom.projector import AlignedItem, TargetDiagnosis
from diffpin_core.errors import NoAnchorFound, TransportError
from diffpin_core.models import AnchorCandidate, CommentReply, PullScope, ReviewComment
from diffpin_core.session import ReviewSession

PAGE = """
<html><body><div id="files">
  <div class="file" data-file-path="README.md">
    <table>
      <tr><td id="r11" data-line-number="11"></td><td>line b</td></tr>
    </table>
  </div>
</div></body></html>
"""


def _make_config(github_token="tok"):
    return {**DEFAULT_CONFIG, "github_token": github_token}


def _patch_common(mocker, config=None, token="tok"):
    """Patch load_config, resolve_github_token and build_session for most tests."""
    cfg = config or _make_config()
    mocker.patch("diffpin_core.config.load_config", return_value=cfg)
    mocker.patch("diffpin_cli.auth.resolve_github_token", return_value=token)
    session = MagicMock(spec=ReviewSession)
    session.config = dict(cfg)
    mocker.patch("diffpin_cli.runtime.build_session", return_value=session)
    return cfg, session


def _candidates():
    return [
        AnchorCandidate(score=1.0, start_line=11, line=11, preview="line b", path="README.md"),
        AnchorCandidate(score=0.94, start_line=10, line=11, preview="line a line b", path="README.md"),
    ]


def _thread():
    return ReviewComment(
        id=10,
        path="README.md",
        line=11,
        body="Please rephrase.\nMore detail.",
        user="octocat",
        replies=[CommentReply(11, "Done.", "hubot", "2024-01-02", "", "", 10)],
    )


class TestCLIValidation:
    def test_missing_github_token(self, mocker):
        _patch_common(mocker, config=_make_config(github_token=None), token=None)

        result = CliRunner().invoke(main, ["anchor", "--repo", "owner/repo", "--pr", "1", "--text", "x"])

        assert result.exit_code != 0
        assert "GITHUB_TOKEN" in result.output

    def test_bad_repo_format(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["anchor", "--repo", "just-a-name", "--pr", "1", "--text", "x"])

        assert result.exit_code != 0
        assert "owner/name" in result.output

    def test_pull_request_required(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["anchor", "--repo", "o/r", "--text", "x"])

        assert result.exit_code != 0
        assert "--url" in result.output

    def test_url_and_repo_are_exclusive(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(
            main, ["anchor", "--url", "https://github.com/o/r/pull/1", "--repo", "o/r", "--pr", "1", "--text", "x"]
        )

        assert result.exit_code != 0
        assert "not both" in result.output

    def test_url_must_name_a_pull_request(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["anchor", "--url", "https://github.com/o/r/issues/4", "--text", "x"])

        assert result.exit_code != 0
        assert "Not a pull request URL" in result.output

    def test_invalid_config_file(self, mocker):
        mocker.patch("diffpin_core.config.load_config", side_effect=ValueError("must contain a mapping"))
        mocker.patch("diffpin_cli.auth.resolve_github_token", return_value="tok")

        result = CliRunner().invoke(main, ["anchor", "--repo", "o/r", "--pr", "1", "--text", "x"])

        assert result.exit_code != 0
        assert "Invalid config file" in result.output

    def test_resolved_token_overrides_config(self, mocker):
        _, session = _patch_common(mocker, config=_make_config(github_token=None), token="from-gh")
        build = mocker.patch("diffpin_cli.runtime.build_session", return_value=session)
        mocker.patch("diffpin_cli.commands.anchor.resolve_anchor_candidates", return_value=_candidates())

        CliRunner().invoke(main, ["anchor", "--repo", "o/r", "--pr", "1", "--text", "line b"])

        assert build.call_args.args[0]["github_token"] == "from-gh"


# ---------------------------------------------------------------------------
# anchor
# ---------------------------------------------------------------------------


class TestAnchorCommand:
    def test_shows_candidates(self, mocker):
        _, session = _patch_common(mocker)
        resolve = mocker.patch(
            "diffpin_cli.commands.anchor.resolve_anchor_candidates", return_value=_candidates()
        )

        result = CliRunner().invoke(
            main, ["anchor", "--repo", "owner/repo", "--pr", "7", "--text", "line b", "--path", "README.md"]
        )

        assert result.exit_code == 0
        assert "README.md" in result.output
        assert "L10-L11" in result.output
        scope = resolve.call_args.args[1]
        assert scope.key == "owner/repo#7"
        assert resolve.call_args.args[2:] == ("line b", "README.md")
        assert resolve.call_args.args[0] is session

    def test_json_output(self, mocker):
        _patch_common(mocker)
        mocker.patch("diffpin_cli.commands.anchor.resolve_anchor_candidates", return_value=_candidates())

        result = CliRunner().invoke(main, ["anchor", "--repo", "o/r", "--pr", "1", "--text", "line b", "--json"])

        data = json.loads(result.output)
        assert data[0] == {
            "score": 1.0,
            "start_line": 11,
            "line": 11,
            "side": "RIGHT",
            "preview": "line b",
            "path": "README.md",
        }

    def test_no_anchor_found(self, mocker):
        _patch_common(mocker)
        mocker.patch("diffpin_cli.commands.anchor.resolve_anchor_candidates", side_effect=NoAnchorFound())

        result = CliRunner().invoke(main, ["anchor", "--repo", "o/r", "--pr", "1", "--text", "zzz"])

        assert result.exit_code == 1
        assert "shorter unique segment" in result.output

    def test_transport_error(self, mocker):
        _patch_common(mocker)
        mocker.patch(
            "diffpin_cli.commands.anchor.resolve_anchor_candidates",
            side_effect=TransportError(404, "GitHub API failed (404). Not Found"),
        )

        result = CliRunner().invoke(main, ["anchor", "--repo", "o/r", "--pr", "1", "--text", "x"])

        assert result.exit_code == 1
        assert "Not Found" in result.output


# ---------------------------------------------------------------------------
# post / reply
# ---------------------------------------------------------------------------


class TestPostCommand:
    ARGS = ["post", "--repo", "o/r", "--pr", "3", "--text", "line b", "--body", "Reword this."]

    def test_posts_first_candidate_with_yes(self, mocker):
        _, session = _patch_common(mocker)
        mocker.patch("diffpin_cli.commands.post.resolve_anchor_candidates", return_value=_candidates())
        session.post_comment.return_value = {"id": 5, "html_url": "https://github.com/o/r/pull/3#discussion_r5"}

        result = CliRunner().invoke(main, self.ARGS + ["--yes"])

        assert result.exit_code == 0
        candidate, body, scope = session.post_comment.call_args.args
        assert (candidate.start_line, candidate.line) == (11, 11)
        assert body == "Reword this."
        assert scope.key == "o/r#3"
        assert "discussion_r5" in result.output

    def test_pick_selects_candidate(self, mocker):
        _, session = _patch_common(mocker)
        mocker.patch("diffpin_cli.commands.post.resolve_anchor_candidates", return_value=_candidates())
        session.post_comment.return_value = {"id": 5, "html_url": ""}

        CliRunner().invoke(main, self.ARGS + ["--pick", "2", "--yes"])

        assert session.post_comment.call_args.args[0].start_line == 10

    def test_pick_out_of_range(self, mocker):
        _, session = _patch_common(mocker)
        mocker.patch("diffpin_cli.commands.post.resolve_anchor_candidates", return_value=_candidates())

        result = CliRunner().invoke(main, self.ARGS + ["--pick", "5", "--yes"])

        assert result.exit_code != 0
        assert "Only 2 candidate(s)" in result.output
        session.post_comment.assert_not_called()

    def test_declining_confirmation_posts_nothing(self, mocker):
        _, session = _patch_common(mocker)
        mocker.patch("diffpin_cli.commands.post.resolve_anchor_candidates", return_value=_candidates())

        result = CliRunner().invoke(main, self.ARGS, input="n\n")

        assert "Aborted" in result.output
        session.post_comment.assert_not_called()

    def test_empty_body_rejected(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(
            main, ["post", "--repo", "o/r", "--pr", "3", "--text", "x", "--body", "  ", "--yes"]
        )

        assert result.exit_code != 0
        assert "empty" in result.output


class TestReplyCommand:
    def test_posts_reply(self, mocker):
        _, session = _patch_common(mocker)
        session.post_reply.return_value = {"id": 12, "html_url": "https://github.com/o/r/pull/3#discussion_r12"}

        result = CliRunner().invoke(
            main, ["reply", "--repo", "o/r", "--pr", "3", "--comment-id", "10", "--body", "Fixed."]
        )

        assert result.exit_code == 0
        comment_id, body, scope = session.post_reply.call_args.args
        assert (comment_id, body, scope.number) == (10, "Fixed.", 3)
        assert "Reply posted" in result.output


# ---------------------------------------------------------------------------
# comments
# ---------------------------------------------------------------------------


class TestCommentsCommand:
    def test_lists_threads(self, mocker):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = [_thread()]

        result = CliRunner().invoke(main, ["comments", "--repo", "o/r", "--pr", "3"])

        assert result.exit_code == 0
        assert "README.md" in result.output
        assert "L11" in result.output
        assert "Please rephrase." in result.output
        assert "More detail." not in result.output
        assert "@hubot" in result.output
        session.attach.assert_called_once()
        session.load_comments.assert_called_once_with(force_refresh=False)

    def test_scope_from_pull_request_url(self, mocker):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = []

        result = CliRunner().invoke(main, ["comments", "--url", "https://github.com/octo/docs/pull/42/files"])

        assert result.exit_code == 0
        assert session.attach.call_args.args[0] == PullScope("octo", "docs", 42)

    def test_refresh_flag(self, mocker):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = []

        result = CliRunner().invoke(main, ["comments", "--repo", "o/r", "--pr", "3", "--refresh"])

        session.load_comments.assert_called_once_with(force_refresh=True)
        assert "No unresolved review comments" in result.output

    def test_json_output(self, mocker):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = [_thread()]

        result = CliRunner().invoke(main, ["comments", "--repo", "o/r", "--pr", "3", "--json"])

        data = json.loads(result.output)
        assert data[0]["id"] == 10
        assert data[0]["replies"][0]["user"] == "hubot"


# ---------------------------------------------------------------------------
# locate
# ---------------------------------------------------------------------------


class TestLocateCommand:
    @pytest.fixture
    def page(self, tmp_path):
        html_file = tmp_path / "page.html"
        html_file.write_text(PAGE, encoding="utf-8")
        return html_file

    def test_table_of_placements(self, mocker, page):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = [
            ReviewComment(id=1, path="README.md", line=11),
            ReviewComment(id=2, path="other.md", line=3),
        ]

        result = CliRunner().invoke(main, ["locate", "--repo", "o/r", "--pr", "3", "--html", str(page)])

        assert result.exit_code == 0
        assert "lineMatchCurrent" in result.output
        assert "fileRootNotFound" in result.output
        assert "1/2" in result.output

    def test_report_is_json(self, mocker, page):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = [ReviewComment(id=1, path="README.md", line=11)]

        result = CliRunner().invoke(
            main, ["locate", "--repo", "o/r", "--pr", "3", "--html", str(page), "--report", "--mode", "source"]
        )

        report = json.loads(result.output)
        assert report["rich_diff_mode"] is False
        assert report["summary"]["mapped_comments"] == 1
        assert report["pr"] == {"owner": "o", "repo": "r", "number": 3}

    def test_mode_passed_to_alignment(self, mocker, page):
        _, session = _patch_common(mocker)
        session.load_comments.return_value = [ReviewComment(id=1, path="README.md", original_line=9)]
        align = mocker.patch(
            "diffpin_cli.commands.locate.align_comments",
            return_value=[
                AlignedItem(
                    comment=ReviewComment(id=1, path="README.md", original_line=9),
                    diagnosis=TargetDiagnosis(comment_id=1, path="README.md", reason="outdatedNoCurrentLineInRich"),
                )
            ],
        )

        result = CliRunner().invoke(
            main, ["locate", "--repo", "o/r", "--pr", "3", "--html", str(page), "--mode", "rich"]
        )

        assert align.call_args.kwargs["rich"] is True
        assert align.call_args.kwargs["min_score"] == 0.24
        assert "0/1" in result.output

    def test_missing_html_file(self, mocker, tmp_path):
        _patch_common(mocker)

        result = CliRunner().invoke(
            main, ["locate", "--repo", "o/r", "--pr", "3", "--html", str(tmp_path / "nope.html")]
        )

        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# runtime helpers
# ---------------------------------------------------------------------------


class TestBuildSession:
    def test_uses_token_and_api_url(self, mocker):
        transport_cls = mocker.patch("diffpin_cli.runtime.GithubTransport")
        session = build_session({**DEFAULT_CONFIG, "github_token": "tok", "api_url": "https://ghe/api/v3"})

        transport_cls.assert_called_once_with("tok", base_url="https://ghe/api/v3")
        assert isinstance(session, ReviewSession)
        assert session.transport is transport_cls.return_value


@pytest.mark.parametrize(
    "api_url, host",
    [
        (None, None),
        ("https://api.github.com", None),
        ("https://ghe.example.com/api/v3", "ghe.example.com"),
    ],
)
def test_enterprise_hostname(api_url, host):
    assert _enterprise_hostname(api_url) == host


# ---------------------------------------------------------------------------
# auth.py
# ---------------------------------------------------------------------------


class TestResolveGithubToken:
    @pytest.fixture(autouse=True)
    def _clear_env(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)

    def test_returns_env_var_when_set(self, monkeypatch):
        from diffpin_cli.auth import resolve_github_token

        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert resolve_github_token() == "env-token"

    def test_gh_token_env_var(self, monkeypatch):
        from diffpin_cli.auth import resolve_github_token

        monkeypatch.setenv("GH_TOKEN", "gh-env-token")
        assert resolve_github_token() == "gh-env-token"

    def test_falls_back_to_gh_cli(self):
        from diffpin_cli.auth import resolve_github_token

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="gh-token\n")
            result = resolve_github_token()
        assert result == "gh-token"
        assert mock_run.call_args.args[0] == ["gh", "auth", "token"]

    def test_enterprise_hostname_passed_to_gh(self):
        from diffpin_cli.auth import resolve_github_token

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="ghe-token\n")
            resolve_github_token("ghe.example.com")
        assert mock_run.call_args.args[0] == ["gh", "auth", "token", "--hostname", "ghe.example.com"]

    def test_returns_none_when_gh_not_installed(self):
        from diffpin_cli.auth import resolve_github_token

        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert resolve_github_token() is None

    def test_returns_none_when_gh_times_out(self):
        from diffpin_cli.auth import resolve_github_token

        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=5)):
            assert resolve_github_token() is None

    def test_returns_none_when_gh_returns_error(self):
        from diffpin_cli.auth import resolve_github_token

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="")
            assert resolve_github_token() is None
