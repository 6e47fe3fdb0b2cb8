"""Review cache, comment history and review record models.

Decoupled from prsift_core so the store layer can be used independently
and prsift_core has no knowledge of persistence concerns. Core objects are
read by attribute (``path``, ``line``, ``body``, ...) rather than imported.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field

DEFAULT_TTL_DAYS = 7
SECONDS_PER_DAY = 24 * 60 * 60

_BLANK_RUN_RE = re.compile(r"\n{3,}")


@dataclass
class CommentRecord:
    """A single inline review comment persisted to the store."""

    file: str
    line: int
    severity: str
    comment: str


@dataclass
class ReviewRecord:
    """A completed review run persisted to the store.

    Created by the CLI layer after run_review() returns a ReviewSummary.
    The CLI maps ReviewSummary → ReviewRecord before calling store.save().
    """

    repo: str
    pr_number: int | None
    title: str
    reviewer_model: str
    head_sha: str
    reviewed_at: str  # ISO-8601 UTC timestamp
    kind: str  # "pull_request" | "push"
    total_comments: int
    published_comments: int
    files_reviewed: int
    comments: list[CommentRecord] = field(default_factory=list)


@dataclass
class HistoryEntry:
    """A comment recorded for a (repository, change) pair."""

    path: str
    line: int
    body: str
    severity: str = "info"
    recorded_at: float = 0.0  # unix timestamp


@dataclass
class CacheEntry:
    timestamp: float  # unix timestamp
    ttl_days: int
    results: list[dict] = field(default_factory=list)

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl_days * SECONDS_PER_DAY


def normalize_code(code: str) -> str:
    """Drop trailing whitespace and collapse blank runs so cosmetic edits keep the key."""
    lines = [line.rstrip() for line in code.replace("\r\n", "\n").split("\n")]
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip()


def make_cache_key(repo: str, path: str, code: str) -> str:
    digest = hashlib.sha256()
    for part in (repo, path, normalize_code(code)):
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


def to_history_entries(comments, recorded_at: float) -> list[HistoryEntry]:
    """Build history entries from published comment objects."""
    return [
        HistoryEntry(
            path=c.path,
            line=c.line,
            body=getattr(c, "text", "") or c.body,
            severity=getattr(c, "severity", "info"),
            recorded_at=recorded_at,
        )
        for c in comments
    ]
