"""stats command: aggregate patterns across review history."""

from __future__ import annotations

from collections import Counter

import click
from rich.console import Console
from rich.table import Table

from prsift_cli.commands.history import require_store

console = Console()

_SEVERITY_STYLE = {"error": "red", "warning": "yellow", "info": "blue"}


def _severity_table(counts: Counter) -> Table:
    counted = sum(counts.values())
    table = Table(title="Severity Breakdown", show_header=True)
    table.add_column("Severity", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Share", justify="right")
    for severity, style in _SEVERITY_STYLE.items():
        count = counts.get(severity, 0)
        share = f"{count / counted:.1%}" if counted else "-"
        table.add_row(f"[{style}]{severity}[/{style}]", str(count), share)
    return table


def _ranking_table(title: str, label: str, counts: Counter, top: int) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column(label)
    table.add_column("Comments", justify="right")
    for key, count in counts.most_common(top):
        table.add_row(key, str(count))
    return table


@click.command("stats")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--top", default=10, show_default=True, help="Number of top entries to show per category.")
@click.pass_context
def stats_cmd(ctx, repo: str, top: int):
    """Show aggregated review statistics for a repository.

    Reports how reviews split between pull requests and pushes, how many
    findings made it to GitHub, the severity distribution, and the files
    and lines flagged most often.
    """
    store = require_store(ctx)

    records = store.list_reviews(repo)
    if not records:
        console.print("[yellow]No review records found for this repository.[/yellow]")
        return

    kinds = Counter(r.kind for r in records)
    total_comments = sum(r.total_comments for r in records)
    total_published = sum(r.published_comments for r in records)
    severities: Counter[str] = Counter()
    files: Counter[str] = Counter()
    hotspots: Counter[str] = Counter()
    for record in records:
        for comment in record.comments:
            severities[comment.severity] += 1
            files[comment.file] += 1
            hotspots[f"{comment.file}:{comment.line}"] += 1

    console.print(f"\n[bold]Review stats for [cyan]{repo}[/cyan][/bold]")
    console.print(f"  Reviews:   {len(records)} ({', '.join(f'{n} {k}' for k, n in sorted(kinds.items()))})")
    console.print(f"  Findings:  {total_comments} ({total_comments / len(records):.1f} per review)")
    if total_comments:
        console.print(f"  Published: {total_published} ({total_published / total_comments:.0%})")

    if severities:
        console.print(_severity_table(severities))
        console.print(_ranking_table(f"Top {top} Most Flagged Files", "File", files, top))
        # A line flagged in more than one review is a recurring problem.
        repeated = Counter({spot: n for spot, n in hotspots.items() if n > 1})
        if repeated:
            console.print(_ranking_table("Repeatedly Flagged Lines", "Location", repeated, top))
