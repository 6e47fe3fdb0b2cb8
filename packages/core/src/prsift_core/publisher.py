"""Publication of validated comments as pull request reviews.

The diff may have moved between review and publication (new pushes, long
model latency), so every comment is re-checked against a freshly fetched
diff before it is submitted. Comments are sent in small batches so one
rejected comment cannot sink the whole review.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from prsift_core.diff import find_file, line_in_hunks, nearest_hunk
from prsift_core.errors import PublishError
from prsift_core.models import Comment, FileDiff, PublishResult
from prsift_core.ratelimit import RateLimiter, RetryPolicy, with_retry
from prsift_core.validation import adjustment_note

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class ReviewPublisher:
    def __init__(
        self,
        target,
        batch_size: int = DEFAULT_BATCH_SIZE,
        policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
    ):
        self.target = target
        self.batch_size = max(1, batch_size)
        self.policy = policy or RetryPolicy()
        self.limiter = limiter

    async def _github(self, func, *args, name: str):
        return await with_retry(
            lambda: asyncio.to_thread(func, *args),
            policy=self.policy,
            limiter=self.limiter,
            name=name,
        )

    async def _file_line_count(self, path: str, commit_sha: str, cache: dict[str, int | None]) -> int | None:
        if path not in cache:
            try:
                content = await self._github(self.target.get_file_content, path, commit_sha, name="github-contents")
                cache[path] = len(content.splitlines())
            except Exception as e:
                logger.warning("Could not fetch %s at %s: %s", path, commit_sha[:7], e)
                cache[path] = None
        return cache[path]

    async def revalidate(self, comments: list[Comment], files: list[FileDiff], commit_sha: str, result: PublishResult):
        """Keep comments whose line is still in the diff; re-point or drop the rest."""
        kept = []
        line_counts: dict[str, int | None] = {}
        for comment in comments:
            file_diff = find_file(files, comment.path)
            if file_diff is None:
                logger.warning("Dropping comment on %s:%d, file is no longer in the diff", comment.path, comment.line)
                result.dropped.append(comment)
                continue
            if line_in_hunks(file_diff.hunks, comment.line):
                kept.append(comment)
                continue

            hunk = nearest_hunk(file_diff.hunks, comment.line)
            line_count = await self._file_line_count(comment.path, commit_sha, line_counts)
            if hunk is None or line_count is None or not 1 <= comment.line <= line_count:
                logger.warning("Dropping comment on %s:%d, line no longer exists", comment.path, comment.line)
                result.dropped.append(comment)
                continue

            note = adjustment_note(comment.line, hunk.new_start, "is no longer part of the diff")
            kept.append(replace(comment, line=hunk.new_start, body=note + comment.body, adjusted=True))
            result.repointed += 1
            logger.info("Re-pointed comment on %s from line %d to %d", comment.path, comment.line, hunk.new_start)
        return kept

    async def publish(self, comments: list[Comment], commit_sha: str, body: str = "") -> PublishResult:
        """Re-validate and submit ``comments`` in batches of ``batch_size``.

        Comments are anchored to the pull request's head as it is now;
        ``commit_sha`` is only used when the head cannot be re-read.
        Raises PublishError when there is nothing to publish, or when every
        submitted comment failed. ``body`` is attached to the last batch.
        """
        if not comments:
            raise PublishError("No comments to publish")

        result = PublishResult()
        try:
            current_sha = await self._github(self.target.refresh_head, name="github-pr")
        except Exception as e:
            logger.warning("Could not re-read the pull request head, using %s: %s", commit_sha[:7], e)
        else:
            if current_sha and current_sha != commit_sha:
                logger.info("Head moved from %s to %s since the review started", commit_sha[:7], current_sha[:7])
            commit_sha = current_sha or commit_sha
        result.commit_sha = commit_sha
        try:
            files = await self._github(self.target.get_diff_files, name="github-diff")
        except Exception as e:
            raise PublishError(f"Could not fetch the current diff: {e}", result) from e

        kept = await self.revalidate(comments, files, commit_sha, result)
        if not kept:
            logger.warning("None of %d comment(s) survived re-validation; nothing published", len(comments))
            return result

        batches = [kept[i : i + self.batch_size] for i in range(0, len(kept), self.batch_size)]
        for idx, batch in enumerate(batches, 1):
            batch_body = body if idx == len(batches) else ""
            try:
                await self._github(self.target.create_review, commit_sha, batch, batch_body, name="github-review")
            except Exception as e:
                logger.error("Batch %d/%d (%d comment(s)) failed: %s", idx, len(batches), len(batch), e)
                result.failure_count += len(batch)
                result.failed.extend(batch)
                continue
            result.success_count += len(batch)
            logger.info("Published batch %d/%d (%d comment(s))", idx, len(batches), len(batch))

        if result.success_count == 0:
            raise PublishError(f"All {result.failure_count} comment(s) failed to publish", result)
        return result
