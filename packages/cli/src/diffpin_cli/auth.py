"""GitHub token lookup for the CLI.

Sources, first hit wins:
  1. GITHUB_TOKEN (CI, explicit override)
  2. GH_TOKEN (the variable the GitHub CLI itself honours)
  3. `gh auth token`, optionally for a GitHub Enterprise hostname
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_github_token(hostname: str | None = None) -> str | None:
    """Return a token, or None when no source provides one. Never raises."""
    for name in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.environ.get(name, "").strip()
        if token:
            return token

    command = ["gh", "auth", "token"]
    if hostname:
        command += ["--hostname", hostname]
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("gh CLI unavailable; no token from gh auth")
        return None

    token = result.stdout.strip() if result.returncode == 0 else ""
    if token:
        logger.debug("Resolved GitHub token via gh CLI session.")
        return token
    return None
