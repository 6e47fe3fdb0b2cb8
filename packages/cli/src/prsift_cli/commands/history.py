"""history command: display past review records from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

_NO_STORE_MESSAGE = "No store configured. Add 'store: sqlite' or 'store: files' to .prsift.yml."


def require_store(ctx):
    from prsift_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError(_NO_STORE_MESSAGE)
    return store


@click.command("history")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Filter by PR number.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int | None, limit: int):
    """Show past review records for a repository."""
    store = require_store(ctx)

    records = store.list_reviews(repo, pr_number=pr_number)
    if not records:
        console.print("[yellow]No review records found.[/yellow]")
        return

    # Show most recent first, capped at --limit.
    records = list(reversed(records))[:limit]

    table = Table(title=f"Review History: {repo}", show_header=True, header_style="bold cyan")
    table.add_column("Change", style="bold", width=8)
    table.add_column("Title", max_width=40)
    table.add_column("SHA", width=8)
    table.add_column("Comments", justify="right", width=10)
    table.add_column("Published", justify="right", width=10)
    table.add_column("Reviewed At", width=20)

    for r in records:
        change = f"#{r.pr_number}" if r.pr_number is not None else r.kind
        published_style = "green" if r.published_comments == r.total_comments else "yellow"
        table.add_row(
            change,
            r.title[:40] if r.title else "",
            r.head_sha[:7],
            str(r.total_comments),
            f"[{published_style}]{r.published_comments}[/{published_style}]",
            r.reviewed_at[:19].replace("T", " "),
        )

    console.print(table)
