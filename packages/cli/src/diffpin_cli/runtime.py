"""Helpers shared by the CLI commands: session construction and error exits."""

from __future__ import annotations

from typing import NoReturn

import click
from rich.console import Console

from diffpin_core.gh.transport import GithubTransport
from diffpin_core.models import PullScope
from diffpin_core.session import ReviewSession

console = Console()


def build_session(config: dict) -> ReviewSession:
    transport = GithubTransport(config.get("github_token"), base_url=config.get("api_url"))
    return ReviewSession(transport, config)


def session_from_context(ctx: click.Context) -> ReviewSession:
    """Return the invocation's session, creating it on first use. Requires a token."""
    obj = ctx.find_root().ensure_object(dict)
    config = obj.get("config") or {}
    if not config.get("github_token"):
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    if obj.get("session") is None:
        obj["session"] = build_session(config)
    return obj["session"]


def pull_options(command):
    """Attach the options that name a pull request: --repo/--pr, or --url."""
    command = click.option("--url", default=None, help="Pull request URL, instead of --repo and --pr.")(command)
    command = click.option("--pr", "pr_number", type=int, default=None, help="Pull request number.")(command)
    return click.option("--repo", default=None, help="GitHub repository (owner/name).")(command)


def scope_from_options(repo: str | None, pr_number: int | None, url: str | None = None) -> PullScope:
    if url:
        if repo or pr_number is not None:
            raise click.UsageError("Pass either --url or --repo and --pr, not both.")
        scope = PullScope.from_url(url)
        if scope is None:
            raise click.BadParameter(f"Not a pull request URL: {url}", param_hint="--url")
        return scope
    if not repo or pr_number is None:
        raise click.UsageError("Pass --repo and --pr, or --url.")
    try:
        return PullScope.parse(repo, pr_number)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--repo") from e


def fail(error: Exception) -> NoReturn:
    console.print(f"[red]{error}[/red]")
    raise click.exceptions.Exit(1)
