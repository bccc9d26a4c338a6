import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "api_url": None,  # None = PyGithub default (https://api.github.com)
    # Anchor ranking. The thresholds are empirical; tune per repository.
    "window_min_score": 0.2,
    "max_window": 12,
    "per_file_limit_with_path": 5,
    "per_file_limit_without_path": 3,
    "max_candidates": 5,
    "path_boost": 0.05,
    # Rendered-page projection.
    "render_min_score": 0.24,
    # Pagination.
    "files_page_size": 100,
    "files_max_pages": 10,
    "comments_page_size": 100,
    "comments_max_pages": 10,
    "threads_page_size": 50,
    "threads_max_pages": 20,
    # DOM change handling.
    "remap_debounce_seconds": 0.09,
    "remap_retry_interval": 0.7,
    "remap_max_retries": 12,
}

_SCORE_KEYS = ("window_min_score", "render_min_score", "path_boost")
_COUNT_KEYS = (
    "max_window",
    "per_file_limit_with_path",
    "per_file_limit_without_path",
    "max_candidates",
    "files_page_size",
    "files_max_pages",
    "comments_page_size",
    "comments_max_pages",
    "threads_page_size",
    "threads_max_pages",
)


def load_config(config_path: str = ".diffpin.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Build the effective settings. Later sources win:
      1. DEFAULT_CONFIG
      2. the YAML file at ``config_path``, when it exists
      3. ``cli_overrides`` entries that are not None

    Raises ValueError for a file that is not a mapping or holds out-of-range values.
    """
    config = dict(DEFAULT_CONFIG)

    source = Path(config_path)
    if source.is_file():
        with open(source, encoding="utf-8") as f:
            from_file = yaml.safe_load(f) or {}
        if not isinstance(from_file, dict):
            raise ValueError(f"{config_path} must contain a mapping, got {type(from_file).__name__}.")
        config.update(from_file)

    config.update({key: value for key, value in (cli_overrides or {}).items() if value is not None})
    _check_ranges(config)

    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    return config


def _check_ranges(config: dict) -> None:
    for key in _SCORE_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
            raise ValueError(f"{key} must be a number between 0 and 1, got {value!r}.")
    for key in _COUNT_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key} must be a positive integer, got {value!r}.")
