"""SQLiteStore: local file-based store for single machines and CI caches.

Schema:
  reviews          one row per completed review run (comments as JSON)
  comment_history  published comments per (repo, change key), for deduplication
  review_cache     findings per hashed unit of code, with a TTL
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time

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

_SCHEMA = """
CREATE TABLE IF NOT EXISTS reviews (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    repo                TEXT NOT NULL,
    pr_number           INTEGER,
    title               TEXT,
    reviewer_model      TEXT,
    head_sha            TEXT,
    reviewed_at         TEXT,
    kind                TEXT,
    total_comments      INTEGER DEFAULT 0,
    published_comments  INTEGER DEFAULT 0,
    files_reviewed      INTEGER DEFAULT 0,
    comments_json       TEXT DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_reviews_repo ON reviews (repo);
CREATE INDEX IF NOT EXISTS idx_reviews_pr   ON reviews (repo, pr_number);

CREATE TABLE IF NOT EXISTS comment_history (
    repo         TEXT NOT NULL,
    history_key  TEXT NOT NULL,
    path         TEXT NOT NULL,
    line         INTEGER NOT NULL,
    body         TEXT NOT NULL,
    severity     TEXT,
    recorded_at  REAL NOT NULL,
    UNIQUE (repo, history_key, path, line, body)
);

CREATE TABLE IF NOT EXISTS review_cache (
    cache_key     TEXT PRIMARY KEY,
    timestamp     REAL NOT NULL,
    ttl_days      INTEGER NOT NULL,
    results_json  TEXT NOT NULL
);
"""


class SQLiteStore(BaseStore):
    """Stores records, history and cache entries in one SQLite database file.

    The database file path defaults to `.prsift.db` in the current working
    directory. Configure via .prsift.yml: `store_path: /path/to/prsift.db`.
    """

    def __init__(self, db_path: str = ".prsift.db", ttl_days: int = DEFAULT_TTL_DAYS, clock=time.time):
        self.ttl_days = ttl_days
        self._clock = clock
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------ #
    # Review records                                                       #
    # ------------------------------------------------------------------ #

    def save(self, record: ReviewRecord) -> None:
        comments_json = json.dumps(
            [{"file": c.file, "line": c.line, "severity": c.severity, "comment": c.comment} for c in record.comments]
        )
        try:
            self._conn.execute(
                """
                INSERT INTO reviews
                  (repo, pr_number, title, reviewer_model, head_sha, reviewed_at,
                   kind, total_comments, published_comments, files_reviewed, comments_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.repo,
                    record.pr_number,
                    record.title,
                    record.reviewer_model,
                    record.head_sha,
                    record.reviewed_at,
                    record.kind,
                    record.total_comments,
                    record.published_comments,
                    record.files_reviewed,
                    comments_json,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            logger.warning("SQLiteStore.save() failed: %s", e)

    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        try:
            if pr_number is not None:
                rows = self._conn.execute(
                    "SELECT * FROM reviews WHERE repo=? AND pr_number=? ORDER BY reviewed_at",
                    (repo, pr_number),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM reviews WHERE repo=? ORDER BY reviewed_at",
                    (repo,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.warning("SQLiteStore.list_reviews() failed: %s", e)
            return []
        return [self._row_to_record(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Comment history                                                      #
    # ------------------------------------------------------------------ #

    def append_history(self, repo: str, key: str, comments) -> None:
        entries = to_history_entries(comments, self._clock())
        try:
            self._conn.executemany(
                """
                INSERT OR IGNORE INTO comment_history
                  (repo, history_key, path, line, body, severity, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [(repo, key, e.path, e.line, e.body, e.severity, e.recorded_at) for e in entries],
            )
            self._conn.commit()
        except sqlite3.Error as e:
            logger.warning("SQLiteStore.append_history() failed: %s", e)

    def load_history(self, repo: str, key: str) -> list[HistoryEntry]:
        cutoff = self._clock() - self.ttl_days * SECONDS_PER_DAY
        try:
            rows = self._conn.execute(
                """
                SELECT path, line, body, severity, recorded_at FROM comment_history
                WHERE repo=? AND history_key=? AND recorded_at >= ?
                ORDER BY recorded_at, rowid
                """,
                (repo, key, cutoff),
            ).fetchall()
        except sqlite3.Error as e:
            logger.warning("SQLiteStore.load_history() failed: %s", e)
            return []
        return [
            HistoryEntry(
                path=r["path"],
                line=r["line"],
                body=r["body"],
                severity=r["severity"] or "info",
                recorded_at=r["recorded_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------ #
    # Review cache                                                         #
    # ------------------------------------------------------------------ #

    def get_cached_review(self, repo: str, path: str, code: str) -> list[dict] | None:
        key = make_cache_key(repo, path, code)
        try:
            row = self._conn.execute(
                "SELECT timestamp, ttl_days, results_json FROM review_cache WHERE cache_key=?",
                (key,),
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("SQLiteStore.get_cached_review() failed: %s", e)
            return None
        if row is None:
            return None

        try:
            entry = CacheEntry(row["timestamp"], row["ttl_days"], json.loads(row["results_json"]))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Discarding unreadable cache entry for %s: %s", path, e)
            return None
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry for %s expired", path)
            return None
        return entry.results

    def cache_review(self, repo: str, path: str, code: str, results: list[dict]) -> None:
        key = make_cache_key(repo, path, code)
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO review_cache (cache_key, timestamp, ttl_days, results_json) "
                "VALUES (?, ?, ?, ?)",
                (key, self._clock(), self.ttl_days, json.dumps(results)),
            )
            self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.warning("SQLiteStore.cache_review() failed: %s", e)

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReviewRecord:
        comments_data = json.loads(row["comments_json"] or "[]")
        comments = [
            CommentRecord(
                file=c.get("file", ""),
                line=c.get("line", 0),
                severity=c.get("severity", "info"),
                comment=c.get("comment", ""),
            )
            for c in comments_data
        ]
        return ReviewRecord(
            repo=row["repo"],
            pr_number=row["pr_number"],
            title=row["title"] or "",
            reviewer_model=row["reviewer_model"] or "",
            head_sha=row["head_sha"] or "",
            reviewed_at=row["reviewed_at"] or "",
            kind=row["kind"] or "",
            total_comments=row["total_comments"],
            published_comments=row["published_comments"],
            files_reviewed=row["files_reviewed"],
            comments=comments,
        )
