"""CLI entry point for diffpin.

Commands:
  anchor    rank diff locations for a piece of rendered text
  post      anchor a selection and post a review comment there
  reply     reply to an existing review comment
  comments  list unresolved review comments as threads
  locate    project comments onto a saved rendered page
"""

from __future__ import annotations

import importlib.metadata
import logging
from urllib.parse import urlparse

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler

from diffpin_cli.commands.anchor import anchor_cmd
from diffpin_cli.commands.comments import comments_cmd
from diffpin_cli.commands.locate import locate_cmd
from diffpin_cli.commands.post import post_cmd, reply_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _enterprise_hostname(api_url: str | None) -> str | None:
    """GitHub Enterprise API URLs name the host `gh auth token --hostname` expects."""
    if not api_url:
        return None
    host = urlparse(api_url).hostname
    if not host or host == "api.github.com":
        return None
    return host


@click.group()
@click.version_option(
    version=importlib.metadata.version("diffpin"),
    prog_name="diffpin",
)
@click.option(
    "--config",
    "config_path",
    default=".diffpin.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="DIFFPIN_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log API calls and cache activity.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Anchor review comments to rendered GitHub diffs."""
    from diffpin_cli.auth import resolve_github_token
    from diffpin_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except (ValueError, yaml.YAMLError) as e:
        raise click.UsageError(f"Invalid config file {config_path}: {e}") from e

    # Resolve once so every subcommand sees the same credentials.
    token = resolve_github_token(_enterprise_hostname(config.get("api_url")))
    if token:
        config["github_token"] = token

    ctx.obj["config"] = config
    ctx.obj["session"] = None


main.add_command(anchor_cmd)
main.add_command(post_cmd)
main.add_command(reply_cmd)
main.add_command(comments_cmd)
main.add_command(locate_cmd)
