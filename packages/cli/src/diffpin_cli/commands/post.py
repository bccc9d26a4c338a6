"""post and reply commands: write review comments back to GitHub."""

from __future__ import annotations

import click
from rich.console import Console

from diffpin_cli.commands.anchor import candidate_table
from diffpin_cli.runtime import fail, pull_options, scope_from_options, session_from_context
from diffpin_core.anchor.ranker import resolve_anchor_candidates
from diffpin_core.errors import DiffpinError

console = Console()


@click.command("post")
@pull_options
@click.option("--text", "selected_text", required=True, help="Text selected in the rendered view.")
@click.option("--body", required=True, help="Comment body (markdown).")
@click.option("--path", default=None, help="File the selection was made in; ranked first.")
@click.option("--pick", type=click.IntRange(min=1), default=1, show_default=True, help="Candidate to post on.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Post without asking for confirmation.")
@click.pass_context
def post_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    url: str | None,
    selected_text: str,
    body: str,
    path: str | None,
    pick: int,
    assume_yes: bool,
):
    """Anchor a selection and post a review comment on it.

    The comment is posted on the head commit, spanning every line of the
    chosen candidate. Use `diffpin anchor` first to see the candidates.
    """
    if not body.strip():
        raise click.BadParameter("Comment body is empty.", param_hint="--body")

    scope = scope_from_options(repo, pr_number, url)
    session = session_from_context(ctx)

    try:
        candidates = resolve_anchor_candidates(session, scope, selected_text, path)
    except DiffpinError as e:
        fail(e)

    if pick > len(candidates):
        raise click.BadParameter(f"Only {len(candidates)} candidate(s) found.", param_hint="--pick")
    chosen = candidates[pick - 1]

    if not assume_yes:
        console.print(candidate_table(candidates))
        lines = f"L{chosen.line}" if chosen.start_line == chosen.line else f"L{chosen.start_line}-L{chosen.line}"
        if not click.confirm(f"Post comment on {chosen.path} {lines}?", default=True):
            console.print("[yellow]Aborted.[/yellow]")
            return

    try:
        result = session.post_comment(chosen, body, scope)
    except DiffpinError as e:
        fail(e)

    console.print(f"[green]Comment posted:[/green] {result.get('html_url') or result['id']}")


@click.command("reply")
@pull_options
@click.option("--comment-id", type=int, required=True, help="Id of the comment to reply to.")
@click.option("--body", required=True, help="Reply body (markdown).")
@click.pass_context
def reply_cmd(
    ctx, repo: str | None, pr_number: int | None, url: str | None, comment_id: int, body: str
):
    """Reply to an existing review comment thread."""
    if not body.strip():
        raise click.BadParameter("Reply body is empty.", param_hint="--body")

    scope = scope_from_options(repo, pr_number, url)
    session = session_from_context(ctx)

    try:
        result = session.post_reply(comment_id, body, scope)
    except DiffpinError as e:
        fail(e)

    console.print(f"[green]Reply posted:[/green] {result.get('html_url') or result['id']}")
