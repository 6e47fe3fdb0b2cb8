"""review command: run the LLM review on a pull request or a webhook event."""

from __future__ import annotations

import asyncio

import click
from github import GithubException
from rich.console import Console

from prsift_core.errors import PublishError, ReviewInputError
from prsift_core.events import event_from_pull, load_event
from prsift_core.gh.pull_request import get_pull, get_pull_requests, get_repo
from prsift_core.reviewer import ReviewSummary, run_review
from prsift_store.models import CommentRecord, ReviewRecord

console = Console()


def _summary_to_record(summary: ReviewSummary, model: str) -> ReviewRecord:
    """Map a ReviewSummary returned by run_review() to a ReviewRecord for the store.

    The CLI layer owns this mapping: prsift_core has no store knowledge and
    prsift_store has no core knowledge. The CLI bridges the two.
    """
    return ReviewRecord(
        repo=summary.repo,
        pr_number=summary.number,
        title=summary.title,
        reviewer_model=model,
        head_sha=summary.head_sha,
        reviewed_at=summary.reviewed_at,
        kind=summary.kind,
        total_comments=summary.total_comments,
        published_comments=summary.published,
        files_reviewed=len(summary.reviewed_files),
        comments=[
            CommentRecord(file=c.path, line=c.line, severity=c.severity, comment=c.text or c.body)
            for c in summary.comments
        ],
    )


@click.command("review")
@click.option("--repo", default=None, help="GitHub repository in owner/name format.")
@click.option(
    "--pr",
    "pr_number",
    type=int,
    default=None,
    help="Pull request number. Omit (with no event file) to list open PRs interactively.",
)
@click.option(
    "--event",
    "event_path",
    default=None,
    envvar="GITHUB_EVENT_PATH",
    help="Path to a GitHub webhook event payload. Defaults to $GITHUB_EVENT_PATH.",
)
@click.option(
    "--provider",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="LLM provider. Overrides config file.",
)
@click.option("--model", default=None, help="Provider model name. Overrides config file.")
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print review comments without posting to GitHub.",
)
@click.pass_context
def review_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    event_path: str | None,
    provider: str | None,
    model: str | None,
    shadow: bool,
):
    """Review a pull request (or a push) and post inline comments.

    Slices the diff into review units, asks Claude or GPT for structured
    per-line feedback, validates and deduplicates it, and publishes the
    result as a GitHub review.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or INPUT_GITHUB_TOKEN, or the gh CLI)
      ANTHROPIC_API_KEY    Required when using --provider anthropic
      OPENAI_API_KEY       Required when using --provider openai
    """
    config = dict(ctx.obj["config"])
    for key, value in {"provider": provider, "model": model}.items():
        if value is not None:
            config[key] = value
    store = ctx.obj.get("store")

    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )

    if config["provider"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["provider"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    try:
        if pr_number is None and event_path:
            event = load_event(event_path, repository=repo)
            this_repo = get_repo(event.full_name, token=token)
        else:
            if not repo:
                raise click.UsageError("Pass --repo (with --pr) or --event.")
            this_repo = get_repo(repo, token=token)
            if pr_number is None:
                prs = list(get_pull_requests(this_repo))
                if not prs:
                    console.print("[yellow]No open pull requests found.[/yellow]")
                    return
                console.print("\nOpen pull requests:")
                for pr in prs:
                    console.print(f"  [bold]#{pr.number}[/bold]  {pr.title}")
                pr_number = click.prompt("\nEnter the pull request number", type=int)
            event = event_from_pull(repo, get_pull(this_repo, pr_number))

        summary = asyncio.run(run_review(event, config, repo_obj=this_repo, store=store, shadow=shadow))
    except (ReviewInputError, PublishError, GithubException) as e:
        raise click.ClickException(str(e))

    if store is not None:
        store.save(_summary_to_record(summary, config.get("model") or config["provider"]))
