"""CLI entry point for prsift.

Commands:
  review   run the LLM review on a pull request or a webhook event
  history  display past review records from the configured store
  stats    aggregate comment patterns across review history
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console

from prsift_cli.commands.history import history_cmd
from prsift_cli.commands.review import review_cmd
from prsift_cli.commands.stats import stats_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s" if verbose else "[%(levelname)s] %(message)s",
    )


def _build_store(config: dict):
    """Instantiate the configured store from .prsift.yml settings.

    Store selection:
      store: sqlite → SQLiteStore   (store_path or .prsift.db)
      store: files  → JsonFileStore (store_path or a temp directory)
      (default)     → NoOpStore     (no cache, no history)

    This factory lives in cli.py so neither prsift_core nor prsift_store
    know about the CLI config format.
    """
    from prsift_store.noop import NoOpStore

    store_type = config.get("store", "noop")
    ttl_days = config.get("cache_ttl_days", 7)

    if store_type == "sqlite":
        from prsift_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path") or ".prsift.db", ttl_days=ttl_days)

    if store_type == "files":
        from prsift_store.files import JsonFileStore

        return JsonFileStore(directory=config.get("store_path"), ttl_days=ttl_days)

    if store_type != "noop":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to no store.[/yellow]")
    return NoOpStore()


@click.group()
@click.version_option(
    version=importlib.metadata.version("prsift"),
    prog_name="prsift",
)
@click.option(
    "--config",
    "config_path",
    default=".prsift.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRSIFT_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """LLM-powered code review for pull requests and pushes."""
    from prsift_core.config import load_config
    from prsift_cli.auth import resolve_github_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(review_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
