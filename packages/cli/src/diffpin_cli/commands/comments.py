"""comments command: list a pull request's unresolved review threads."""

from __future__ import annotations

import dataclasses
import json

import click
from rich.console import Console

from diffpin_cli.runtime import fail, pull_options, scope_from_options, session_from_context
from diffpin_core.errors import DiffpinError

console = Console()


def _first_line(body: str, limit: int = 100) -> str:
    line = (body or "").strip().splitlines()[0] if (body or "").strip() else ""
    return line if len(line) <= limit else f"{line[: limit - 3]}..."


@click.command("comments")
@pull_options
@click.option("--refresh", is_flag=True, help="Ignore cached results and refetch.")
@click.option("--json", "as_json", is_flag=True, help="Print threads as JSON.")
@click.pass_context
def comments_cmd(
    ctx, repo: str | None, pr_number: int | None, url: str | None, refresh: bool, as_json: bool
):
    """Show unresolved review comments grouped into threads.

    Resolved threads are hidden. Each root comment is listed with the file
    and line it is attached to, followed by its replies in order.
    """
    scope = scope_from_options(repo, pr_number, url)
    session = session_from_context(ctx)
    session.attach(scope)

    try:
        threads = session.load_comments(force_refresh=refresh)
    except DiffpinError as e:
        fail(e)

    threads = threads or []
    if as_json:
        click.echo(json.dumps([dataclasses.asdict(t) for t in threads], indent=2))
        return

    if not threads:
        console.print("[yellow]No unresolved review comments.[/yellow]")
        return

    console.print(f"\n[bold]{len(threads)} thread(s) on [cyan]{scope.key}[/cyan][/bold]")
    for thread in threads:
        console.print(
            f"\n[bold]{thread.path}[/bold] [dim]{thread.line_label}[/dim]  "
            f"[cyan]@{thread.user}[/cyan] [dim]#{thread.id}[/dim]"
        )
        console.print(f"  {_first_line(thread.body)}")
        for reply in thread.replies:
            console.print(f"    [dim]↳[/dim] [cyan]@{reply.user}[/cyan] {_first_line(reply.body, 90)}")
