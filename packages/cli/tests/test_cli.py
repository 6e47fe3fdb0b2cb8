"""Tests for the CLI entry point."""

import json
import subprocess
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner

from prsift_cli.cli import _build_store, main
from prsift_core.errors import PublishError, ReviewInputError
from prsift_core.models import Comment
from prsift_core.reviewer import ReviewSummary
from prsift_store.files import JsonFileStore
from prsift_store.models import CommentRecord, ReviewRecord
from prsift_store.noop import NoOpStore
from prsift_store.sqlite import SQLiteStore

# Keep a developer's or CI runner's environment out of option defaults.
CLEAN_ENV = {"GITHUB_EVENT_PATH": None, "PRSIFT_CONFIG": None}


def invoke(args, **kwargs):
    return CliRunner().invoke(main, args, env=CLEAN_ENV, **kwargs)


def _make_config(github_token="tok", provider="anthropic", anthropic_key="ant", openai_key=None):
    return {
        "github_token": github_token,
        "provider": provider,
        "model": None,
        "anthropic_api_key": anthropic_key,
        "openai_api_key": openai_key,
        "guidelines": None,
        "exclude": [],
        "store": "noop",
    }


def _patch_common(mocker, config=None, token="tok"):
    """Patch load_config, resolve_github_token, and _build_store for most tests."""
    cfg = config or _make_config()
    mocker.patch("prsift_core.config.load_config", return_value=cfg)
    mocker.patch("prsift_cli.auth.resolve_github_token", return_value=token)
    # SQLiteStore spec so isinstance(store, NoOpStore) is False for history and stats.
    mock_store = MagicMock(spec=SQLiteStore)
    mock_store.list_reviews.return_value = []
    mocker.patch("prsift_cli.cli._build_store", return_value=mock_store)
    return cfg, mock_store


def _make_pull(number=42, title="Fix bug"):
    pr = MagicMock()
    pr.number = number
    pr.title = title
    pr.body = "Body"
    pr.head.sha = "a" * 40
    return pr


def _make_summary(**overrides):
    fields = dict(repo="owner/repo", kind="pull_request", number=42, title="Fix bug", head_sha="a" * 40)
    fields.update(overrides)
    return ReviewSummary(**fields)


def _patch_github(mocker, summary=None):
    mocker.patch("prsift_cli.commands.review.get_repo", return_value=MagicMock())
    mocker.patch("prsift_cli.commands.review.get_pull", return_value=_make_pull())
    return mocker.patch(
        "prsift_cli.commands.review.run_review",
        new_callable=AsyncMock,
        return_value=summary or _make_summary(),
    )


class TestCLIValidation:
    def test_missing_github_token(self, mocker):
        _patch_common(mocker, config=_make_config(github_token=None), token=None)

        result = invoke(["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "GITHUB_TOKEN" in result.output

    def test_missing_anthropic_key(self, mocker):
        _patch_common(mocker, config=_make_config(anthropic_key=None))

        result = invoke(["review", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "ANTHROPIC_API_KEY" in result.output

    def test_missing_openai_key(self, mocker):
        _patch_common(mocker)

        result = invoke(["review", "--repo", "owner/repo", "--pr", "1", "--provider", "openai"])
        assert result.exit_code != 0
        assert "OPENAI_API_KEY" in result.output

    def test_needs_repo_or_event(self, mocker):
        _patch_common(mocker)
        _patch_github(mocker)

        result = invoke(["review", "--pr", "1"])
        assert result.exit_code != 0
        assert "--repo" in result.output


class TestCLIRunReview:
    def test_calls_run_review_with_pull_request_event(self, mocker):
        _patch_common(mocker)
        mock_run = _patch_github(mocker)

        result = invoke(["review", "--repo", "owner/repo", "--pr", "42"])

        assert result.exit_code == 0, result.output
        mock_run.assert_awaited_once()
        event = mock_run.call_args.args[0]
        assert event.full_name == "owner/repo"
        assert event.number == 42
        assert event.title == "Fix bug"
        assert mock_run.call_args.kwargs["shadow"] is False

    def test_shadow_flag_passed_through(self, mocker):
        _patch_common(mocker)
        mock_run = _patch_github(mocker)

        invoke(["review", "--repo", "owner/repo", "--pr", "1", "--shadow"])

        assert mock_run.call_args.kwargs["shadow"] is True

    def test_provider_and_model_override_config(self, mocker):
        _patch_common(mocker, config=_make_config(openai_key="oai"))
        mock_run = _patch_github(mocker)

        invoke(["review", "--repo", "owner/repo", "--pr", "1", "--provider", "openai", "--model", "gpt-4.1"])

        config = mock_run.call_args.args[1]
        assert config["provider"] == "openai"
        assert config["model"] == "gpt-4.1"

    def test_event_file_used_without_pr(self, mocker, tmp_path):
        _patch_common(mocker)
        get_repo = mocker.patch("prsift_cli.commands.review.get_repo", return_value=MagicMock())
        mock_run = mocker.patch(
            "prsift_cli.commands.review.run_review", new_callable=AsyncMock, return_value=_make_summary()
        )
        payload = {
            "ref": "refs/heads/main",
            "before": "b" * 40,
            "after": "c" * 40,
            "commits": [{"id": "c" * 40, "message": "Tidy"}],
            "repository": {"name": "web", "owner": {"login": "octo"}},
        }
        event_file = tmp_path / "event.json"
        event_file.write_text(json.dumps(payload))

        result = invoke(["review", "--event", str(event_file)])

        assert result.exit_code == 0, result.output
        get_repo.assert_called_once_with("octo/web", token="tok")
        event = mock_run.call_args.args[0]
        assert event.kind == "push"
        assert event.after == "c" * 40

    def test_bad_event_file_is_a_clean_error(self, mocker, tmp_path):
        _patch_common(mocker)
        _patch_github(mocker)

        result = invoke(["review", "--event", str(tmp_path / "missing.json")])

        assert result.exit_code == 1
        assert "Event file not found" in result.output

    def test_review_summary_saved_to_store(self, mocker):
        summary = _make_summary(
            reviewed_files=["a.ts"],
            comments=[Comment(path="a.ts", line=3, body="**[INFO]**\n\nx", severity="info", text="x")],
            published=1,
        )
        _, mock_store = _patch_common(mocker)
        _patch_github(mocker, summary)

        invoke(["review", "--repo", "owner/repo", "--pr", "42"])

        mock_store.save.assert_called_once()
        record = mock_store.save.call_args.args[0]
        assert record.pr_number == 42
        assert record.reviewer_model == "anthropic"
        assert record.published_comments == 1
        assert record.comments == [CommentRecord(file="a.ts", line=3, severity="info", comment="x")]

    def test_pipeline_errors_become_click_errors(self, mocker):
        _patch_common(mocker)
        mock_run = _patch_github(mocker)
        for error in (ReviewInputError("Invalid diff"), PublishError("All 2 comment(s) failed to publish")):
            mock_run.side_effect = error
            result = invoke(["review", "--repo", "owner/repo", "--pr", "42"])
            assert result.exit_code == 1
            assert str(error) in result.output


class TestCLIInteractive:
    def test_lists_open_prs(self, mocker):
        _patch_common(mocker)
        _patch_github(mocker)
        mocker.patch("prsift_cli.commands.review.get_pull_requests", return_value=[_make_pull(7, "Fix login bug")])

        result = invoke(["review", "--repo", "owner/repo"], input="7\n")

        assert "#7" in result.output
        assert "Fix login bug" in result.output

    def test_no_open_prs_exits_early(self, mocker):
        _patch_common(mocker)
        mock_run = _patch_github(mocker)
        mocker.patch("prsift_cli.commands.review.get_pull_requests", return_value=[])

        result = invoke(["review", "--repo", "owner/repo"])

        assert "No open pull requests" in result.output
        mock_run.assert_not_called()


# ---------------------------------------------------------------------------
# auth.py
# ---------------------------------------------------------------------------


class TestResolveGithubToken:
    def test_returns_env_var_when_set(self, monkeypatch):
        from prsift_cli.auth import resolve_github_token

        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert resolve_github_token() == "env-token"

    def test_action_input_token(self, monkeypatch):
        from prsift_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.setenv("INPUT_GITHUB_TOKEN", "input-token")
        assert resolve_github_token() == "input-token"

    def test_falls_back_to_gh_cli(self, monkeypatch):
        from prsift_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("INPUT_GITHUB_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="gh-token\n")
            result = resolve_github_token()
        assert result == "gh-token"

    def test_returns_none_when_gh_not_installed(self, monkeypatch):
        from prsift_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("INPUT_GITHUB_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=FileNotFoundError):
            result = resolve_github_token()
        assert result is None

    def test_returns_none_when_gh_times_out(self, monkeypatch):
        from prsift_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("INPUT_GITHUB_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=5)):
            result = resolve_github_token()
        assert result is None

    def test_returns_none_when_gh_returns_error(self, monkeypatch):
        from prsift_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("INPUT_GITHUB_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="")
            result = resolve_github_token()
        assert result is None


# ---------------------------------------------------------------------------
# _build_store
# ---------------------------------------------------------------------------


class TestBuildStore:
    def test_returns_noop_by_default(self):
        assert isinstance(_build_store({}), NoOpStore)

    def test_returns_sqlite_store(self, tmp_path):
        store = _build_store({"store": "sqlite", "store_path": str(tmp_path / "test.db")})
        assert isinstance(store, SQLiteStore)
        store.close()

    def test_sqlite_uses_default_path_when_not_specified(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = _build_store({"store": "sqlite"})
        assert isinstance(store, SQLiteStore)
        store.close()
        assert (tmp_path / ".prsift.db").exists()

    def test_returns_file_store(self, tmp_path):
        store = _build_store({"store": "files", "store_path": str(tmp_path), "cache_ttl_days": 3})
        assert isinstance(store, JsonFileStore)
        assert store.ttl_days == 3

    def test_unknown_store_falls_back_to_noop(self):
        assert isinstance(_build_store({"store": "gist"}), NoOpStore)


# ---------------------------------------------------------------------------
# history command
# ---------------------------------------------------------------------------


def _make_review_record(repo="owner/repo", pr_number=1, kind="pull_request"):
    return ReviewRecord(
        repo=repo,
        pr_number=pr_number,
        title="Fix auth bug",
        reviewer_model="anthropic",
        head_sha="a" * 40,
        reviewed_at=datetime.now(timezone.utc).isoformat(),
        kind=kind,
        total_comments=2,
        published_comments=2,
        files_reviewed=1,
        comments=[
            CommentRecord(file="src/auth.py", line=10, severity="error", comment="x"),
            CommentRecord(file="src/auth.py", line=12, severity="info", comment="y"),
        ],
    )


class TestHistoryCommand:
    def test_shows_table_when_records_exist(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record()]

        result = invoke(["history", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "#1" in result.output

    def test_push_records_show_kind(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record(pr_number=None, kind="push")]

        result = invoke(["history", "--repo", "owner/repo"])

        assert "push" in result.output

    def test_shows_empty_message_when_no_records(self, mocker):
        _patch_common(mocker)

        result = invoke(["history", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "No review records found" in result.output

    def test_errors_when_noop_store(self, mocker):
        mocker.patch("prsift_core.config.load_config", return_value={"store": "noop"})
        mocker.patch("prsift_cli.auth.resolve_github_token", return_value="tok")
        mocker.patch("prsift_cli.cli._build_store", return_value=NoOpStore())

        result = invoke(["history", "--repo", "owner/repo"])

        assert result.exit_code != 0
        assert "No store configured" in result.output

    def test_filters_by_pr_number(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record(pr_number=5)]

        invoke(["history", "--repo", "owner/repo", "--pr", "5"])

        mock_store.list_reviews.assert_called_once_with("owner/repo", pr_number=5)

    def test_limit_applied(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record(pr_number=i) for i in range(10)]

        result = invoke(["history", "--repo", "owner/repo", "--limit", "3"])

        assert result.exit_code == 0
        assert result.output.count("#") == 3


# ---------------------------------------------------------------------------
# stats command
# ---------------------------------------------------------------------------


class TestStatsCommand:
    def test_shows_stats_when_records_exist(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record(), _make_review_record(pr_number=2)]

        result = invoke(["stats", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "Reviews:   2 (2 pull_request)" in result.output
        assert "Findings:  4 (2.0 per review)" in result.output
        assert "Published: 4 (100%)" in result.output
        assert "Severity Breakdown" in result.output
        assert "src/auth.py" in result.output

    def test_lines_flagged_in_several_reviews_listed(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record(), _make_review_record(kind="push")]

        result = invoke(["stats", "--repo", "owner/repo"])

        assert "1 pull_request, 1 push" in result.output
        assert "Repeatedly Flagged Lines" in result.output
        assert "src/auth.py:10" in result.output

    def test_no_repeated_lines_table_for_single_review(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_reviews.return_value = [_make_review_record()]

        result = invoke(["stats", "--repo", "owner/repo"])

        assert "Repeatedly Flagged Lines" not in result.output

    def test_shows_empty_message_when_no_records(self, mocker):
        _patch_common(mocker)

        result = invoke(["stats", "--repo", "owner/repo"])

        assert "No review records found" in result.output

    def test_errors_when_noop_store(self, mocker):
        mocker.patch("prsift_core.config.load_config", return_value={"store": "noop"})
        mocker.patch("prsift_cli.auth.resolve_github_token", return_value="tok")
        mocker.patch("prsift_cli.cli._build_store", return_value=NoOpStore())

        result = invoke(["stats", "--repo", "owner/repo"])

        assert result.exit_code != 0
        assert "No store configured" in result.output
