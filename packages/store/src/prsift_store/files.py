"""JsonFileStore: review cache and history as plain JSON files in one directory.

Layout::

    <directory>/cache/<sha256>.json        {"timestamp", "ttl_days", "results"}
    <directory>/history/<sha256>.json      [HistoryEntry, ...]
    <directory>/reviews.json               [ReviewRecord, ...]

The default directory lives under the system temp dir, so on ephemeral CI
runners the cache lasts for the job. Point ``store_path`` at a cached
directory to keep it across runs.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import asdict
from pathlib import Path

from prsift_store.base import BaseStore
from prsift_store.models import (
    DEFAULT_TTL_DAYS,
    SECONDS_PER_DAY,
    CacheEntry,
    CommentRecord,
    HistoryEntry,
    ReviewRecord,
    make_cache_key,
    to_history_entries,
)

logger = logging.getLogger(__name__)

_REVIEWS_FILENAME = "reviews.json"


def default_directory() -> Path:
    return Path(tempfile.gettempdir()) / "prsift-cache"


class JsonFileStore(BaseStore):
    def __init__(self, directory: str | None = None, ttl_days: int = DEFAULT_TTL_DAYS, clock=time.time):
        self.directory = Path(directory) if directory else default_directory()
        self.ttl_days = ttl_days
        self._clock = clock

    # ------------------------------------------------------------------ #
    # File helpers                                                         #
    # ------------------------------------------------------------------ #

    def _read_json(self, path: Path, default):
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s: %s", path, e)
            return default

    def _read_list(self, path: Path) -> list:
        data = self._read_json(path, [])
        if not isinstance(data, list):
            logger.warning("Ignoring %s: expected a JSON list, found %s", path, type(data).__name__)
            return []
        return data

    def _write_json(self, path: Path, data) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so a concurrent reader never sees a half-written file.
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not write %s: %s", path, e)

    def _history_path(self, repo: str, key: str) -> Path:
        name = hashlib.sha256(f"{repo}\0{key}".encode("utf-8")).hexdigest()
        return self.directory / "history" / f"{name}.json"

    def _cache_path(self, repo: str, path: str, code: str) -> Path:
        return self.directory / "cache" / f"{make_cache_key(repo, path, code)}.json"

    # ------------------------------------------------------------------ #
    # Review records                                                       #
    # ------------------------------------------------------------------ #

    def save(self, record: ReviewRecord) -> None:
        path = self.directory / _REVIEWS_FILENAME
        records = self._read_list(path)
        records.append(self._to_dict(record))
        self._write_json(path, records)

    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        records = self._read_list(self.directory / _REVIEWS_FILENAME)
        results = [self._from_dict(r) for r in records if isinstance(r, dict) and r.get("repo") == repo]
        if pr_number is not None:
            results = [r for r in results if r.pr_number == pr_number]
        return results

    # ------------------------------------------------------------------ #
    # Comment history                                                      #
    # ------------------------------------------------------------------ #

    def append_history(self, repo: str, key: str, comments) -> None:
        path = self._history_path(repo, key)
        existing = self._read_list(path)
        seen = {(e.get("path"), e.get("line"), e.get("body")) for e in existing if isinstance(e, dict)}
        for entry in to_history_entries(comments, self._clock()):
            if (entry.path, entry.line, entry.body) in seen:
                continue
            seen.add((entry.path, entry.line, entry.body))
            existing.append(asdict(entry))
        self._write_json(path, existing)

    def load_history(self, repo: str, key: str) -> list[HistoryEntry]:
        cutoff = self._clock() - self.ttl_days * SECONDS_PER_DAY
        entries = []
        for e in self._read_list(self._history_path(repo, key)):
            try:
                entry = HistoryEntry(**e)
            except TypeError:
                continue
            if entry.recorded_at >= cutoff:
                entries.append(entry)
        return entries

    # ------------------------------------------------------------------ #
    # Review cache                                                         #
    # ------------------------------------------------------------------ #

    def get_cached_review(self, repo: str, path: str, code: str) -> list[dict] | None:
        data = self._read_json(self._cache_path(repo, path, code), None)
        if not isinstance(data, dict):
            return None
        try:
            entry = CacheEntry(data["timestamp"], data["ttl_days"], data["results"])
        except KeyError:
            logger.warning("Discarding malformed cache entry for %s", path)
            return None
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry for %s expired", path)
            return None
        return entry.results

    def cache_review(self, repo: str, path: str, code: str, results: list[dict]) -> None:
        entry = CacheEntry(timestamp=self._clock(), ttl_days=self.ttl_days, results=results)
        self._write_json(self._cache_path(repo, path, code), asdict(entry))

    @staticmethod
    def _to_dict(record: ReviewRecord) -> dict:
        return {
            "repo": record.repo,
            "pr_number": record.pr_number,
            "title": record.title,
            "reviewer_model": record.reviewer_model,
            "head_sha": record.head_sha,
            "reviewed_at": record.reviewed_at,
            "kind": record.kind,
            "total_comments": record.total_comments,
            "published_comments": record.published_comments,
            "files_reviewed": record.files_reviewed,
            "comments": [
                {"file": c.file, "line": c.line, "severity": c.severity, "comment": c.comment} for c in record.comments
            ],
        }

    @staticmethod
    def _from_dict(d: dict) -> ReviewRecord:
        return ReviewRecord(
            repo=d.get("repo", ""),
            pr_number=d.get("pr_number"),
            title=d.get("title", ""),
            reviewer_model=d.get("reviewer_model", ""),
            head_sha=d.get("head_sha", ""),
            reviewed_at=d.get("reviewed_at", ""),
            kind=d.get("kind", ""),
            total_comments=d.get("total_comments", 0),
            published_comments=d.get("published_comments", 0),
            files_reviewed=d.get("files_reviewed", 0),
            comments=[
                CommentRecord(
                    file=c.get("file", ""),
                    line=c.get("line", 0),
                    severity=c.get("severity", "info"),
                    comment=c.get("comment", ""),
                )
                for c in d.get("comments", [])
            ],
        )
