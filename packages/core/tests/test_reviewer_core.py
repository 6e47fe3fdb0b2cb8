"""Tests for the core review pipeline: process_unit, process_file and run_review."""

import types
from unittest.mock import AsyncMock, MagicMock

import pytest
from github import GithubException

from prsift_core.config import load_config
from prsift_core.errors import PublishError, ReviewInputError
from prsift_core.models import ChangeEvent, DiffLine, FileDiff, Finding, Hunk, ReviewUnit
from prsift_core.ratelimit import RateLimiter
from prsift_core.reviewer import (
    _get_reviewer,
    _Run,
    print_shadow_comments,
    process_file,
    process_unit,
    run_review,
)
from prsift_core.validation import ResponseValidator
from prsift_store.files import JsonFileStore

# One hunk covering new lines 1-5 with an added line at 2.
SIMPLE_PATCH = "@@ -1,4 +1,5 @@\n const a = 1;\n+let b = 2;\n const c = 3;\n const d = 4;\n const e = 5;"
SHA = "a" * 40


def make_gh_file(filename="a.ts", patch=SIMPLE_PATCH):
    return types.SimpleNamespace(filename=filename, status="modified", patch=patch, previous_filename=None)


def make_reviewer(findings):
    reviewer = MagicMock()
    if isinstance(findings, Exception):
        reviewer.review = AsyncMock(side_effect=findings)
    else:
        reviewer.review = AsyncMock(return_value=findings)
    return reviewer


def warning_at(line, text="Use const for b"):
    return Finding(line_number=line, comment=text, severity="warning")


@pytest.fixture
def config(tmp_path):
    cfg = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    cfg.update(
        {
            "github_token": "tok",
            "anthropic_api_key": "key",
            "rate_limit_delay": 0,
            "retry_delay": 0,
            "max_retries": 1,
        }
    )
    return cfg


@pytest.fixture
def pr_event():
    return ChangeEvent(owner="octo", repo="web", number=7, title="Bump b", head_sha=SHA)


@pytest.fixture
def gh():
    """A mocked repository whose PR #7 changes a.ts."""
    pr = MagicMock()
    pr.head.sha = SHA
    pr.get_files.return_value = [make_gh_file()]
    pr.get_review_comments.return_value = []
    repo = MagicMock()
    repo.get_pull.return_value = pr
    repo.compare.return_value.files = [make_gh_file()]
    return types.SimpleNamespace(repo=repo, pr=pr)


def use_reviewer(mocker, findings):
    reviewer = make_reviewer(findings)
    mocker.patch("prsift_core.reviewer._get_reviewer", return_value=reviewer)
    return reviewer


# ---------------------------------------------------------------------------
# process_unit / process_file
# ---------------------------------------------------------------------------


def make_run(config, reviewer, store=None):
    return _Run(
        event=ChangeEvent(owner="octo", repo="web", number=7),
        config=config,
        reviewer=reviewer,
        validator=ResponseValidator(),
        criteria=[],
        guidelines="",
        store=store,
    )


def make_unit(**overrides):
    fields = dict(
        path="a.ts",
        language="TypeScript",
        lines=[DiffLine("add", "let b = 2;", new_line=2)],
        new_start=1,
        new_end=5,
        added=1,
        total_lines=9,
    )
    fields.update(overrides)
    return ReviewUnit(**fields)


class TestProcessUnit:
    @pytest.mark.asyncio
    async def test_valid_finding_becomes_comment(self, config):
        run = make_run(config, make_reviewer([warning_at(2)]))
        comments = await process_unit(make_unit(), run)
        assert [(c.path, c.line, c.severity) for c in comments] == [("a.ts", 2, "warning")]
        assert run.units_reviewed == 1

    @pytest.mark.asyncio
    async def test_oversized_unit_skipped_without_model_call(self, config):
        reviewer = make_reviewer([warning_at(2)])
        run = make_run(config, reviewer)
        assert await process_unit(make_unit(oversized=True), run) == []
        reviewer.review.assert_not_called()
        assert run.units_skipped == 1

    @pytest.mark.asyncio
    async def test_failed_model_call_counted(self, config):
        run = make_run(config, make_reviewer(None))
        assert await process_unit(make_unit(), run) == []
        assert run.units_failed == 1
        assert run.units_reviewed == 0

    @pytest.mark.asyncio
    async def test_cache_hit_skips_model(self, config):
        reviewer = make_reviewer([])
        store = MagicMock()
        store.get_cached_review.return_value = [warning_at(3).to_dict()]
        run = make_run(config, reviewer, store)

        comments = await process_unit(make_unit(), run)

        reviewer.review.assert_not_called()
        assert [c.line for c in comments] == [3]
        assert run.cache_hits == 1

    @pytest.mark.asyncio
    async def test_fresh_findings_cached(self, config):
        store = MagicMock()
        store.get_cached_review.return_value = None
        run = make_run(config, make_reviewer([warning_at(2)]), store)

        await process_unit(make_unit(), run)

        repo, path, code, results = store.cache_review.call_args.args
        assert (repo, path) == ("octo/web", "a.ts")
        assert code == make_unit().code_text()
        assert results[0]["lineOffset"] == 1
        assert "lineNumber" not in results[0]

    @pytest.mark.asyncio
    async def test_cache_hit_follows_moved_code(self, config, tmp_path):
        store = JsonFileStore(directory=str(tmp_path))
        first = make_unit(lines=[DiffLine("add", "let b = 2;", new_line=11)], new_start=10, new_end=12)
        await process_unit(first, make_run(config, make_reviewer([warning_at(11)]), store))

        reviewer = make_reviewer([])
        moved = make_unit(lines=[DiffLine("add", "let b = 2;", new_line=31)], new_start=30, new_end=32)
        comments = await process_unit(moved, make_run(config, reviewer, store))

        reviewer.review.assert_not_called()
        assert [(c.line, c.adjusted) for c in comments] == [(31, False)]
        assert "_Note:" not in comments[0].body

    @pytest.mark.asyncio
    async def test_unparseable_line_cached_as_sent(self, config):
        store = MagicMock()
        store.get_cached_review.return_value = None
        run = make_run(config, make_reviewer([warning_at("near the top")]), store)

        await process_unit(make_unit(), run)

        results = store.cache_review.call_args.args[3]
        assert results[0]["lineNumber"] == "near the top"
        assert "lineOffset" not in results[0]

    @pytest.mark.asyncio
    async def test_failed_call_not_cached(self, config):
        store = MagicMock()
        store.get_cached_review.return_value = None
        await process_unit(make_unit(), make_run(config, make_reviewer(None), store))
        store.cache_review.assert_not_called()


class TestProcessFile:
    @pytest.mark.asyncio
    async def test_file_over_line_limit_skipped(self, config):
        config["max_file_lines"] = 5
        hunk = Hunk(1, 4, 1, 5, lines=[DiffLine("add", "x", new_line=1)])
        reviewer = make_reviewer([])
        assert await process_file(FileDiff(path="a.ts", hunks=[hunk]), make_run(config, reviewer)) is None
        reviewer.review.assert_not_called()

    @pytest.mark.asyncio
    async def test_each_unit_reviewed(self, config):
        hunks = [
            Hunk(1, 0, 1, 1, lines=[DiffLine("add", "x", new_line=1)]),
            Hunk(1, 0, 300, 1, lines=[DiffLine("add", "y", new_line=300)]),
        ]
        reviewer = make_reviewer([])
        assert await process_file(FileDiff(path="a.ts", hunks=hunks), make_run(config, reviewer)) == []
        assert reviewer.review.await_count == 2


# ---------------------------------------------------------------------------
# run_review
# ---------------------------------------------------------------------------


class TestRunReview:
    @pytest.mark.asyncio
    async def test_publishes_validated_comment(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(3)])

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        gh.pr.create_review.assert_called_once()
        kwargs = gh.pr.create_review.call_args.kwargs
        assert kwargs["event"] == "COMMENT"
        assert kwargs["comments"] == [
            {"path": "a.ts", "line": 3, "body": "**[WARNING]**\n\nUse const for b", "side": "RIGHT"}
        ]
        assert "## Review summary" in kwargs["body"]
        assert summary.published == 1
        assert summary.reviewed_files == ["a.ts"]
        assert summary.units_reviewed == 1
        assert summary.head_sha == SHA

    @pytest.mark.asyncio
    async def test_review_posted_on_head_after_force_push(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(3)])
        pr_event.head_sha = "0" * 40

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        gh.repo.get_commit.assert_called_once_with(SHA)
        assert summary.head_sha == SHA

    @pytest.mark.asyncio
    async def test_out_of_range_line_clamped(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(40)])

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        comment = summary.comments[0]
        assert (comment.line, comment.original_line) == (5, 40)
        assert gh.pr.create_review.call_args.kwargs["comments"][0]["line"] == 5

    @pytest.mark.asyncio
    async def test_shadow_mode_does_not_post(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(3)])
        store = MagicMock()
        store.get_cached_review.return_value = None
        store.load_history.return_value = []

        summary = await run_review(pr_event, config, repo_obj=gh.repo, store=store, shadow=True)

        gh.pr.create_review.assert_not_called()
        store.append_history.assert_not_called()
        assert summary.total_comments == 1
        assert summary.published == 0

    @pytest.mark.asyncio
    async def test_existing_comment_suppresses_duplicate(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(3)])
        gh.pr.get_review_comments.return_value = [
            types.SimpleNamespace(path="a.ts", line=3, original_line=3, body="**[WARNING]**\n\nUse const for b")
        ]

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        assert summary.comments == []
        gh.pr.create_review.assert_not_called()

    @pytest.mark.asyncio
    async def test_history_recorded_when_publishing(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(3)])
        store = MagicMock()
        store.get_cached_review.return_value = None
        store.load_history.return_value = []

        await run_review(pr_event, config, repo_obj=gh.repo, store=store)

        repo_name, key, comments = store.append_history.call_args.args
        assert (repo_name, key) == ("octo/web", "pr-7")
        assert [c.line for c in comments] == [3]

    @pytest.mark.asyncio
    async def test_push_event_logs_instead_of_posting(self, mocker, config, gh):
        use_reviewer(mocker, [warning_at(3)])
        event = ChangeEvent(owner="octo", repo="web", kind="push", before="b" * 40, after=SHA, ref="refs/heads/main")

        summary = await run_review(event, config, repo_obj=gh.repo)

        gh.repo.compare.assert_called_once_with("b" * 40, SHA)
        gh.repo.get_pull.assert_not_called()
        assert summary.total_comments == 1
        assert summary.published == 0

    @pytest.mark.asyncio
    async def test_failed_unit_counted_not_raised(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, None)

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        assert summary.units_failed == 1
        assert summary.comments == []
        gh.pr.create_review.assert_not_called()

    @pytest.mark.asyncio
    async def test_file_error_isolated(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, RuntimeError("boom"))

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        assert summary.errored_files == ["a.ts"]
        assert summary.reviewed_files == []

    @pytest.mark.asyncio
    async def test_empty_diff_returns_early(self, mocker, config, pr_event, gh):
        reviewer = use_reviewer(mocker, [])
        gh.pr.get_files.return_value = []

        summary = await run_review(pr_event, config, repo_obj=gh.repo)

        reviewer.review.assert_not_called()
        assert summary.reviewed_files == []

    @pytest.mark.asyncio
    async def test_pr_not_found_is_input_error(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [])
        gh.repo.get_pull.side_effect = GithubException(404, {"message": "Not Found"}, None)

        with pytest.raises(ReviewInputError, match="not found"):
            await run_review(pr_event, config, repo_obj=gh.repo)

    @pytest.mark.asyncio
    async def test_invalid_config_rejected(self, config, pr_event, gh):
        config["provider"] = "gemini"
        with pytest.raises(ReviewInputError):
            await run_review(pr_event, config, repo_obj=gh.repo)

    @pytest.mark.asyncio
    async def test_publish_failure_raises(self, mocker, config, pr_event, gh):
        use_reviewer(mocker, [warning_at(3)])
        gh.pr.create_review.side_effect = RuntimeError("boom")

        with pytest.raises(PublishError):
            await run_review(pr_event, config, repo_obj=gh.repo)


# ---------------------------------------------------------------------------
# _get_reviewer
# ---------------------------------------------------------------------------


class TestGetReviewer:
    def test_returns_anthropic_reviewer(self, mocker):
        mock_cls = mocker.patch("prsift_core.reviewer.AnthropicReviewer")
        _get_reviewer({"provider": "anthropic", "anthropic_api_key": "ant-key", "model": None})
        kwargs = mock_cls.call_args.kwargs
        assert kwargs["api_key"] == "ant-key"
        assert kwargs["model"] is None
        assert isinstance(kwargs["limiter"], RateLimiter)
        assert kwargs["limiter"].name == "anthropic-api"

    def test_returns_openai_reviewer(self, mocker):
        mock_cls = mocker.patch("prsift_core.reviewer.OpenAIReviewer")
        _get_reviewer({"provider": "openai", "openai_api_key": "oai-key", "model": "gpt-4.1"})
        assert mock_cls.call_args.kwargs["model"] == "gpt-4.1"

    def test_raises_for_unknown_provider(self):
        with pytest.raises(ReviewInputError, match="Unknown model provider"):
            _get_reviewer({"provider": "gemini"})


def test_print_shadow_comments_handles_empty(capsys):
    print_shadow_comments([])
    assert "no comments generated" in capsys.readouterr().out
