from __future__ import annotations

import logging

from github import Github

from prsift_core.diff import parse_diff
from prsift_core.models import ChangeEvent, Comment, ExistingComment, FileDiff

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pull_requests(repo, state: str = "open"):
    return repo.get_pulls(state=state)


def build_diff_text(files) -> str:
    """Rebuild a ``diff --git`` text from the per-file patches GitHub returns.

    Files without a patch (binary, or too large for the API) are left out.
    """
    parts = []
    for f in files:
        if not f.patch:
            logger.debug("No patch for %s, skipping", f.filename)
            continue
        old_name = getattr(f, "previous_filename", None) or f.filename
        source = "/dev/null" if f.status == "added" else f"a/{old_name}"
        target = "/dev/null" if f.status == "removed" else f"b/{f.filename}"
        # The mode lines are what mark a git-style section as an addition or deletion.
        mode = "new file mode 100644\n" if f.status == "added" else ""
        mode = "deleted file mode 100644\n" if f.status == "removed" else mode
        patch = f.patch if f.patch.endswith("\n") else f.patch + "\n"
        parts.append(f"diff --git a/{old_name} b/{f.filename}\n{mode}--- {source}\n+++ {target}\n{patch}")
    return "".join(parts)


def fetch_diff_text(repo, event: ChangeEvent) -> str:
    """Diff for a pull request, or between ``before`` and ``after`` for a push."""
    if event.is_pull_request:
        return build_diff_text(get_pull(repo, event.number).get_files())
    if event.kind == "push" and event.before and event.after:
        return build_diff_text(repo.compare(event.before, event.after).files)
    logger.warning("Unsupported event %r, nothing to review", event.kind)
    return ""


def to_existing_comments(review_comments) -> list[ExistingComment]:
    existing = []
    for c in review_comments:
        # c.line is None for comments whose line no longer exists in the current diff
        # (e.g. after a force-push). Fall back to original_line in that case.
        line = c.line if c.line is not None else getattr(c, "original_line", None)
        existing.append(ExistingComment(path=c.path, line=line, body=c.body or ""))
    return existing


class PullRequestTarget:
    """The publishing side of a pull request, as the publisher sees it."""

    def __init__(self, repo, pr):
        self.repo = repo
        self.pr = pr

    def refresh_head(self) -> str:
        """Re-read the pull request and return its current head commit SHA."""
        self.pr = self.repo.get_pull(self.pr.number)
        return self.pr.head.sha

    def get_diff_files(self) -> list[FileDiff]:
        return parse_diff(build_diff_text(self.pr.get_files()))

    def get_file_content(self, path: str, ref: str) -> str:
        contents = self.repo.get_contents(path, ref=ref)
        return contents.decoded_content.decode("utf-8", errors="replace")

    def get_existing_comments(self) -> list[ExistingComment]:
        return to_existing_comments(self.pr.get_review_comments())

    def create_review(self, commit_sha: str, comments: list[Comment], body: str = ""):
        return self.pr.create_review(
            commit=self.repo.get_commit(commit_sha),
            body=body,
            event="COMMENT",
            comments=[c.to_api() for c in comments],
        )
