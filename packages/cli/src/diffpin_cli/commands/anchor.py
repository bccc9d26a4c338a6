"""anchor command: rank diff locations matching a piece of rendered text."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from diffpin_cli.runtime import fail, pull_options, scope_from_options, session_from_context
from diffpin_core.anchor.ranker import resolve_anchor_candidates
from diffpin_core.errors import DiffpinError
from diffpin_core.models import AnchorCandidate

console = Console()


def candidate_table(candidates: list[AnchorCandidate], title: str = "Anchor candidates") -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", width=3)
    table.add_column("Score", justify="right", width=6)
    table.add_column("File", max_width=50)
    table.add_column("Lines", width=12)
    table.add_column("Preview", max_width=60)

    for index, c in enumerate(candidates, start=1):
        lines = f"L{c.line}" if c.start_line == c.line else f"L{c.start_line}-L{c.line}"
        style = "green" if c.score >= 0.9 else "yellow" if c.score >= 0.5 else "white"
        table.add_row(str(index), f"[{style}]{c.score:.2f}[/{style}]", c.path, lines, c.preview[:60])
    return table


@click.command("anchor")
@pull_options
@click.option("--text", "selected_text", required=True, help="Text selected in the rendered view.")
@click.option("--path", default=None, help="File the selection was made in; ranked first.")
@click.option("--json", "as_json", is_flag=True, help="Print candidates as JSON.")
@click.pass_context
def anchor_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    url: str | None,
    selected_text: str,
    path: str | None,
    as_json: bool,
):
    """Find the diff lines a rendered selection came from.

    Every changed file is scored and the best line ranges are shown, most
    likely first. Pass --path to prefer the file the selection was made in.
    """
    scope = scope_from_options(repo, pr_number, url)
    session = session_from_context(ctx)

    try:
        candidates = resolve_anchor_candidates(session, scope, selected_text, path)
    except DiffpinError as e:
        fail(e)

    if as_json:
        click.echo(json.dumps([c.to_dict() for c in candidates], indent=2))
        return

    console.print(candidate_table(candidates, title=f"Anchor candidates for {scope.key}"))
