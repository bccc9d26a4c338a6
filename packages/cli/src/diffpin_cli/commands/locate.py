"""locate command: project review comments onto a saved rendered page."""

from __future__ import annotations

import json
import math

import click
from rich.console import Console
from rich.table import Table

from diffpin_cli.runtime import fail, pull_options, scope_from_options, session_from_context
from diffpin_core.dom.projector import align_comments, anchor_line_ranges, aligned_top, build_debug_report
from diffpin_core.dom.snapshot import HtmlSnapshot
from diffpin_core.errors import DiffpinError

console = Console()

_MODES = {"auto": None, "rich": True, "source": False}


@click.command("locate")
@pull_options
@click.option(
    "--html",
    "html_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Saved HTML of the pull request's files page.",
)
@click.option(
    "--layout",
    "layout_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML map of element id to {top, left, width, height}.",
)
@click.option(
    "--mode",
    type=click.Choice(list(_MODES)),
    default="auto",
    show_default=True,
    help="Diff view the page shows; auto detects it from the markup.",
)
@click.option("--report", is_flag=True, help="Print the JSON debug report instead of a table.")
@click.pass_context
def locate_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    url: str | None,
    html_path: str,
    layout_path: str | None,
    mode: str,
    report: bool,
):
    """Find where each unresolved comment belongs on a rendered page.

    Comments are matched by file, then by line number, then by the text of
    the lines they were written on. Use --report to see why a comment could
    not be placed.
    """
    scope = scope_from_options(repo, pr_number, url)
    session = session_from_context(ctx)
    session.attach(scope)

    try:
        dom = HtmlSnapshot.from_file(html_path, layout_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--html/--layout") from e

    try:
        comments = session.load_comments() or []
    except DiffpinError as e:
        fail(e)

    rich = _MODES[mode]
    aligned = align_comments(dom, comments, rich=rich, min_score=session.config["render_min_score"])

    if report:
        click.echo(json.dumps(build_debug_report(dom, comments, aligned, scope=scope, rich=rich), indent=2))
        return

    if not aligned:
        console.print("[yellow]No unresolved review comments.[/yellow]")
        return

    ranges = anchor_line_ranges(aligned)
    table = Table(title=f"Comment placement for {scope.key}", show_header=True, header_style="bold cyan")
    table.add_column("Comment", no_wrap=True)
    table.add_column("File", max_width=40)
    table.add_column("Line", no_wrap=True)
    table.add_column("Result", no_wrap=True)
    table.add_column("Target", max_width=50, overflow="fold")
    table.add_column("Top", justify="right", no_wrap=True)

    for item in aligned:
        top = aligned_top(dom, item, ranges)
        style = "green" if item.renderable else "red"
        table.add_row(
            f"#{item.comment.id}",
            item.comment.path,
            item.comment.line_label,
            f"[{style}]{item.diagnosis.reason}[/{style}]",
            item.diagnosis.final_target,
            f"{top:.0f}" if math.isfinite(top) else "-",
        )

    console.print(table)
    placed = sum(1 for item in aligned if item.renderable)
    console.print(f"\n[bold]{placed}/{len(aligned)}[/bold] comment(s) placed.")
