import os
from pathlib import Path
from typing import Optional

import yaml

from prsift_core.errors import ReviewInputError
from prsift_core.prompt import DEFAULT_REVIEW_CRITERIA

PROVIDERS = ("anthropic", "openai")
STORES = ("noop", "sqlite", "files")

DEFAULT_CONFIG: dict = {
    "provider": "anthropic",
    "model": None,  # None = the provider's default model
    "max_files": 0,  # 0 = no limit
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "max_chunk_lines": 2000,
    "max_file_lines": 5000,
    "chunk_gap_threshold": 50,
    "review_criteria": list(DEFAULT_REVIEW_CRITERIA),
    "guidelines": None,  # None = no team guidelines; set to a markdown file path to add them
    "enable_summary": True,
    "enable_auto_fix": True,
    "line_policy": "clamp",  # "clamp" | "drop"
    "batch_size": 10,
    "file_concurrency": 3,
    "unit_concurrency": 2,
    "max_retries": 3,
    "retry_delay": 1.0,
    "max_retry_delay": 30.0,
    "rate_limit_delay": 1.0,
    "dedupe_line_window": 10,
    "dedupe_short_threshold": 0.8,
    "dedupe_long_threshold": 0.6,
    "dedupe_short_word_count": 6,
    "dedupe_min_shared_words": 3,
    "store": "noop",  # "noop" | "sqlite" | "files"
    "store_path": None,
    "cache_ttl_days": 7,
}


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return list(value)


def load_config(config_path: str = ".prsift.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prsift.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "exclude": list(DEFAULT_CONFIG["exclude"]),
        "review_criteria": list(DEFAULT_CONFIG["review_criteria"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Exclude patterns and criteria may be given as a comma-separated string
    config["exclude"] = _as_list(config.get("exclude"))
    config["review_criteria"] = _as_list(config.get("review_criteria")) or list(DEFAULT_REVIEW_CRITERIA)

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def validate_config(config: dict) -> None:
    """Raise ReviewInputError for settings the pipeline cannot run with."""
    provider = config.get("provider")
    if provider not in PROVIDERS:
        raise ReviewInputError(f"Unknown model provider: {provider!r}. Choose 'anthropic' or 'openai'.")
    if config.get("line_policy") not in ("clamp", "drop"):
        raise ReviewInputError(f"Unknown line_policy: {config.get('line_policy')!r}. Choose 'clamp' or 'drop'.")
    if config.get("store") not in STORES:
        raise ReviewInputError(f"Unknown store: {config.get('store')!r}. Choose one of {', '.join(STORES)}.")
    for key in ("max_chunk_lines", "max_file_lines", "batch_size", "file_concurrency", "unit_concurrency"):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ReviewInputError(f"{key} must be a positive integer, got {value!r}.")


def load_guidelines(config: dict) -> str:
    """
    Load team review guidelines.

    If ``guidelines`` is set in config, loads from that path (relative to cwd).
    Otherwise there are no extra guidelines and an empty string is returned.
    """
    custom_path = config.get("guidelines")
    if not custom_path:
        return ""
    p = Path(custom_path)
    if not p.exists():
        raise ReviewInputError(f"Guidelines file not found: {custom_path}")
    return p.read_text()
