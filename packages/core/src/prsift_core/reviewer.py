"""Core review orchestration: diff → units → model → comments → publication."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from github import GithubException
from rich.console import Console

from prsift_core.chunking import merge_hunks
from prsift_core.config import load_guidelines, validate_config
from prsift_core.dedupe import DeduplicationEngine
from prsift_core.diff import parse_diff
from prsift_core.errors import PublishError, ReviewInputError
from prsift_core.gh.pull_request import PullRequestTarget, fetch_diff_text, get_pull, get_repo
from prsift_core.models import SEVERITIES, ChangeEvent, Comment, FileDiff, Finding, ReviewUnit
from prsift_core.prompt import build_prompt
from prsift_core.providers.anthropic import AnthropicReviewer
from prsift_core.providers.openai import OpenAIReviewer
from prsift_core.publisher import ReviewPublisher
from prsift_core.ratelimit import RateLimiter, RetryPolicy, with_retry
from prsift_core.utils.code import is_code_file
from prsift_core.validation import ResponseValidator, parse_line_number

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class ReviewSummary:
    """Result returned by run_review; carries enough data for the CLI to persist history.

    Decoupled from prsift_store so prsift_core has no dependency on the store layer.
    The CLI converts this to a ReviewRecord before persisting.
    """

    repo: str
    kind: str  # "pull_request" | "push" | "other"
    number: int | None
    title: str
    head_sha: str
    reviewed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    errored_files: list[str] = field(default_factory=list)
    units_reviewed: int = 0
    units_skipped: int = 0
    units_failed: int = 0
    cache_hits: int = 0
    comments: list[Comment] = field(default_factory=list)
    published: int = 0
    failed: int = 0
    dropped: int = 0
    duration: float = 0.0
    reviewed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def total_comments(self) -> int:
        return len(self.comments)


@dataclass
class _Run:
    """Per-run state shared by the file and unit workers."""

    event: ChangeEvent
    config: dict
    reviewer: object
    validator: ResponseValidator
    criteria: list[str]
    guidelines: str
    store: object = None
    units_reviewed: int = 0
    units_skipped: int = 0
    units_failed: int = 0
    cache_hits: int = 0


def _get_reviewer(config: dict, policy: RetryPolicy | None = None):
    provider = config["provider"]
    limiter = RateLimiter(float(config.get("rate_limit_delay", 1.0)), name=f"{provider}-api")
    model = config.get("model")
    if provider == "anthropic":
        return AnthropicReviewer(api_key=config["anthropic_api_key"], model=model, limiter=limiter, policy=policy)
    if provider == "openai":
        return OpenAIReviewer(api_key=config["openai_api_key"], model=model, limiter=limiter, policy=policy)
    raise ReviewInputError(f"Unknown model provider: {provider!r}. Choose 'anthropic' or 'openai'.")


def _is_excluded(filename: str, patterns: list[str]) -> bool:
    """Return True if filename matches any exclude pattern.

    Supports:
    - fnmatch globs on the full path: "src/generated/*.py"
    - fnmatch globs on the basename: "*.lock", "*.min.js"
    - Directory names/prefixes: "migrations/", "tests" (matches any file within that tree)
    """
    for pattern in patterns:
        if fnmatch.fnmatch(filename, pattern):
            return True
        if fnmatch.fnmatch(filename.rsplit("/", 1)[-1], pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if filename.startswith(prefix) or ("/" + prefix) in filename:
            return True
    return False


def _groups(items: list, size: int) -> list[list]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


def _log_diff_overview(files: list[FileDiff]) -> None:
    logger.info("Found %d changed file(s):", len(files))
    for f in files:
        logger.info("- %s (+%d -%d)", f.path, f.additions, f.deletions)
    extensions = Counter(f.path.rsplit(".", 1)[-1] if "." in f.path.rsplit("/", 1)[-1] else "unknown" for f in files)
    logger.info("File types breakdown:")
    for ext, count in extensions.most_common():
        logger.info("- %s: %d file(s)", ext, count)


def select_files(files: list[FileDiff], config: dict) -> tuple[list[FileDiff], list[str]]:
    """Split parsed files into review targets and skipped paths."""
    patterns = config.get("exclude", [])
    targets, skipped = [], []
    for f in files:
        if f.is_deleted:
            logger.debug("Skipping deleted file: %s", f.path)
            skipped.append(f.path)
        elif _is_excluded(f.path, patterns) or not is_code_file(f.path):
            console.print(f"  Skipping: {f.path}")
            skipped.append(f.path)
        else:
            targets.append(f)

    max_files = config.get("max_files") or 0
    if max_files and len(targets) > max_files:
        logger.info("Limiting review to the first %d file(s) (%d excluded)", max_files, len(targets) - max_files)
        skipped.extend(f.path for f in targets[max_files:])
        targets = targets[:max_files]
    return targets, skipped


def _to_cached(finding: Finding, unit: ReviewUnit) -> dict:
    # Lines are stored relative to the unit so a hit still lands when the same code moves.
    data = finding.to_dict()
    line = parse_line_number(finding.line_number)
    if line is not None:
        del data["lineNumber"]
        data["lineOffset"] = line - unit.new_start
    return data


def _from_cached(data: dict, unit: ReviewUnit) -> Finding:
    offset = data.get("lineOffset")
    if isinstance(offset, int) and not isinstance(offset, bool):
        data = {**data, "lineNumber": unit.new_start + offset}
    return Finding.from_dict(data)


def _cache_get(run: _Run, unit: ReviewUnit) -> list[dict] | None:
    if run.store is None:
        return None
    try:
        return run.store.get_cached_review(run.event.full_name, unit.path, unit.code_text())
    except Exception as e:
        logger.warning("Cache lookup failed for %s: %s", unit.path, e)
        return None


def _cache_put(run: _Run, unit: ReviewUnit, findings: list[Finding]) -> None:
    if run.store is None:
        return
    try:
        results = [_to_cached(f, unit) for f in findings]
        run.store.cache_review(run.event.full_name, unit.path, unit.code_text(), results)
    except Exception as e:
        logger.warning("Could not cache review for %s: %s", unit.path, e)


async def process_unit(unit: ReviewUnit, run: _Run) -> list[Comment]:
    if unit.oversized:
        logger.warning(
            "Skipping %s:%d-%d, %d lines exceeds the %d line limit",
            unit.path,
            unit.new_start,
            unit.new_end,
            unit.total_lines,
            run.config.get("max_chunk_lines", 2000),
        )
        run.units_skipped += 1
        return []

    cached = _cache_get(run, unit)
    if cached is not None:
        logger.debug("Cache hit for %s:%d-%d", unit.path, unit.new_start, unit.new_end)
        run.cache_hits += 1
        findings = [_from_cached(d, unit) for d in cached]
    else:
        prompt = build_prompt(unit, run.event, run.criteria, run.guidelines)
        findings = await run.reviewer.review(prompt)
        if findings is None:
            logger.warning("No usable model response for %s:%d-%d", unit.path, unit.new_start, unit.new_end)
            run.units_failed += 1
            return []
        _cache_put(run, unit, findings)

    run.units_reviewed += 1
    return run.validator.validate_all(findings, unit)


async def process_file(file_diff: FileDiff, run: _Run) -> list[Comment] | None:
    """Review one file. Returns None when the file is skipped for size."""
    max_file_lines = run.config.get("max_file_lines", 5000)
    total_lines = sum(h.total_lines for h in file_diff.hunks)
    if total_lines > max_file_lines:
        logger.warning("Skipping %s: %d changed lines exceeds %d", file_diff.path, total_lines, max_file_lines)
        return None

    console.print(f"\nReviewing: {file_diff.path} (+{file_diff.additions} -{file_diff.deletions})")
    units = merge_hunks(
        file_diff,
        max_chunk_lines=run.config.get("max_chunk_lines", 2000),
        gap_threshold=run.config.get("chunk_gap_threshold", 50),
    )
    comments: list[Comment] = []
    for group in _groups(units, run.config.get("unit_concurrency", 2)):
        results = await asyncio.gather(*(process_unit(unit, run) for unit in group))
        for unit_comments in results:
            comments.extend(unit_comments)
    console.print(f"  {len(comments)} comment(s) found in {file_diff.path}.")
    return comments


async def _review_file_safely(file_diff: FileDiff, run: _Run, file_summary: list[dict]) -> list[Comment]:
    entry = {"filename": file_diff.path, "count": 0, "skipped": False, "error": None}
    file_summary.append(entry)
    try:
        comments = await process_file(file_diff, run)
    except Exception as e:
        # One failing file must not abort the run.
        logger.error("Error processing file %s: %s", file_diff.path, e)
        entry["error"] = str(e)
        return []
    if comments is None:
        entry["skipped"] = True
        return []
    entry["count"] = len(comments)
    return comments


def _build_summary(file_summary: list[dict], all_comments: list[Comment], elapsed_seconds: float) -> str:
    """Build the top-level review body posted with the last batch."""
    reviewed = [f for f in file_summary if not f["skipped"] and f["error"] is None]
    skipped = [f for f in file_summary if f["skipped"]]
    errors = [f for f in file_summary if f["error"] is not None]

    file_counts: dict[str, dict[str, int]] = {}
    for c in all_comments:
        counts = file_counts.setdefault(c.path, {s: 0 for s in SEVERITIES})
        counts[c.severity] = counts.get(c.severity, 0) + 1

    totals = {s: sum(counts.get(s, 0) for counts in file_counts.values()) for s in SEVERITIES}
    total_comments = sum(totals.values())

    elapsed_min = elapsed_seconds / 60
    time_str = f"{int(elapsed_seconds)}s" if elapsed_min < 1 else f"{elapsed_min:.1f} min"

    lines = ["## Review summary\n"]

    if total_comments == 0:
        verdict = "No issues found in the reviewed changes."
    else:
        issue_str = ", ".join(f"{totals[s]} {s}" for s in SEVERITIES if totals[s])
        flagged = sorted(file_counts, key=lambda p: sum(file_counts[p].values()), reverse=True)
        verdict = f"{issue_str} finding(s). Most flagged: `{flagged[0]}`."
    lines.append(f"> {verdict}\n")

    lines.append(
        f"**{len(reviewed)}** file(s) reviewed"
        + (f", **{len(skipped)}** skipped" if skipped else "")
        + (f", **{len(errors)}** error(s)" if errors else "")
        + f" · **{total_comments}** comment(s) · reviewed in {time_str}\n"
    )

    files_with_comments = [f for f in reviewed if f["count"] > 0]
    if files_with_comments:
        lines.append("| File | Error | Warning | Info | Total |")
        lines.append("|------|:-----:|:-------:|:----:|:-----:|")
        for f in files_with_comments:
            fc = file_counts.get(f["filename"], {})
            lines.append(
                f"| `{f['filename']}` "
                f"| {fc.get('error', 0) or '-'} "
                f"| {fc.get('warning', 0) or '-'} "
                f"| {fc.get('info', 0) or '-'} "
                f"| {f['count']} |"
            )

    if errors:
        lines.append("\n**Could not review:**")
        for f in errors:
            lines.append(f"- `{f['filename']}`: {f['error']}")

    return "\n".join(lines)


def print_shadow_comments(comments: list[Comment], title: str = "Shadow review") -> None:
    """Print review comments to the terminal without posting to GitHub."""
    _severity_color = {"error": "red", "warning": "yellow", "info": "blue"}
    if not comments:
        console.print(f"[yellow]{title}: no comments generated.[/yellow]")
        return
    console.print(f"\n[bold]{title}: {len(comments)} comment(s) (not posted)[/bold]\n")
    for c in comments:
        color = _severity_color.get(c.severity, "white")
        console.print(
            f"[bold cyan]{c.path}[/bold cyan]  line [bold]{c.line}[/bold]  " f"[{color}]{c.severity.upper()}[/{color}]"
        )
        console.print(f"  {c.text or c.body}")
        console.print()


def _log_comments(comments: list[Comment]) -> None:
    for c in comments:
        first_line = (c.text or c.body).split("\n")[0]
        logger.info("%s:%d - %s...", c.path, c.line, first_line)


async def _github(func, *args, policy: RetryPolicy, limiter: RateLimiter, name: str):
    return await with_retry(lambda: asyncio.to_thread(func, *args), policy=policy, limiter=limiter, name=name)


async def run_review(
    event: ChangeEvent,
    config: dict,
    repo_obj=None,
    store=None,
    shadow: bool = False,
) -> ReviewSummary:
    """Run the full review pipeline for one change event.

    Only ReviewInputError (bad input or configuration) and PublishError
    (nothing could be published) escape. Provider, parse and per-file
    failures are logged and counted in the returned summary.
    """
    validate_config(config)
    review_start = time.monotonic()
    policy = RetryPolicy.from_config(config)
    github_limiter = RateLimiter(float(config.get("rate_limit_delay", 1.0)), name="github-api")

    if repo_obj is not None:
        this_repo = repo_obj
    else:
        this_repo = await asyncio.to_thread(get_repo, event.full_name, config["github_token"])

    pr = None
    head_sha = event.head_sha or event.after or ""
    if event.is_pull_request:
        try:
            pr = await _github(
                get_pull, this_repo, event.number, policy=policy, limiter=github_limiter, name="github-pr"
            )
        except GithubException as e:
            raise ReviewInputError(f"PR #{event.number} not found in {event.full_name}.") from e
        head_sha = event.head_sha or pr.head.sha
        logger.info("Processing PR #%d in %s: %s", event.number, event.full_name, event.title)
    elif event.kind == "push":
        logger.info("Processing push to %s in %s", event.ref, event.full_name)

    summary = ReviewSummary(
        repo=event.full_name,
        kind=event.kind,
        number=event.number,
        title=event.title,
        head_sha=head_sha,
    )

    try:
        diff_text = await _github(
            fetch_diff_text, this_repo, event, policy=policy, limiter=github_limiter, name="github-diff"
        )
    except GithubException as e:
        raise ReviewInputError(f"Could not fetch the diff for {event.full_name}: {e}") from e
    if not diff_text:
        console.print("[yellow]No diff found or unsupported event. Nothing to do.[/yellow]")
        summary.duration = time.monotonic() - review_start
        return summary

    files = parse_diff(diff_text)
    _log_diff_overview(files)
    targets, skipped = select_files(files, config)
    logger.info("Reviewing %d file(s) after filtering (excluded %d)", len(targets), len(skipped))

    run = _Run(
        event=event,
        config=config,
        reviewer=_get_reviewer(config, policy),
        validator=ResponseValidator(
            line_policy=config.get("line_policy", "clamp"),
            enable_auto_fix=config.get("enable_auto_fix", True),
        ),
        criteria=config.get("review_criteria") or [],
        guidelines=load_guidelines(config),
        store=store,
    )

    file_summary: list[dict] = []
    candidates: list[Comment] = []
    for group in _groups(targets, config.get("file_concurrency", 3)):
        results = await asyncio.gather(*(_review_file_safely(f, run, file_summary) for f in group))
        for file_comments in results:
            candidates.extend(file_comments)

    publishing = pr is not None and not shadow
    target = PullRequestTarget(this_repo, pr) if pr is not None else None
    live = []
    if target is not None:
        try:
            live = await _github(
                target.get_existing_comments, policy=policy, limiter=github_limiter, name="github-comments"
            )
        except Exception as e:
            logger.warning("Could not fetch existing review comments: %s", e)

    dedupe = DeduplicationEngine.from_config(config)
    comments = await dedupe.run(
        candidates,
        live,
        store=store,
        repository=event.full_name,
        history_key=event.history_key,
        record=publishing,
    )

    summary.reviewed_files = [f["filename"] for f in file_summary if not f["skipped"] and f["error"] is None]
    summary.skipped_files = skipped + [f["filename"] for f in file_summary if f["skipped"]]
    summary.errored_files = [f["filename"] for f in file_summary if f["error"] is not None]
    summary.units_reviewed = run.units_reviewed
    summary.units_skipped = run.units_skipped
    summary.units_failed = run.units_failed
    summary.cache_hits = run.cache_hits
    summary.comments = comments

    if not publishing:
        if shadow:
            print_shadow_comments(comments)
        else:
            logger.info("This is a %s event, logging comments instead of creating a review", event.kind)
            _log_comments(comments)
    elif not comments:
        console.print("[green]No review comments to create.[/green]")
    else:
        body = ""
        if config.get("enable_summary", True):
            body = _build_summary(file_summary, comments, time.monotonic() - review_start)
        publisher = ReviewPublisher(
            target,
            batch_size=config.get("batch_size", 10),
            policy=policy,
            limiter=github_limiter,
        )
        try:
            result = await publisher.publish(comments, head_sha, body)
        except PublishError as e:
            logger.error("Failed to create review: %s", e)
            logger.info("Here are the comments that couldn't be submitted:")
            _log_comments(e.result.failed if e.result is not None and e.result.failed else comments)
            raise
        summary.head_sha = result.commit_sha or head_sha
        summary.published = result.success_count
        summary.failed = result.failure_count
        summary.dropped = len(result.dropped)
        if result.failed:
            logger.info("Here are the comments that couldn't be submitted:")
            _log_comments(result.failed)
        console.print(f"\n[green]Review posted: {result.success_count} comment(s).[/green]")

    summary.duration = time.monotonic() - review_start
    logger.info(
        "Review complete in %.2fs: %d file(s) reviewed, %d skipped, %d errored, "
        "%d unit(s) reviewed (%d cached, %d skipped, %d failed), %d comment(s), %d published",
        summary.duration,
        len(summary.reviewed_files),
        len(summary.skipped_files),
        len(summary.errored_files),
        summary.units_reviewed,
        summary.cache_hits,
        summary.units_skipped,
        summary.units_failed,
        summary.total_comments,
        summary.published,
    )
    return summary
