"""No-op store, the default when no store is configured.

Reviews are published but nothing is cached or remembered between runs.
Using a NoOpStore rather than None lets callers always call the store
without conditional checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prsift_store.base import BaseStore

if TYPE_CHECKING:
    from prsift_store.models import HistoryEntry, ReviewRecord


class NoOpStore(BaseStore):
    """Discards everything and always misses; zero configuration required.

    Teams that want caching, history and stats switch to SQLiteStore
    (``store: sqlite``) or JsonFileStore (``store: files``) in .prsift.yml.
    """

    def save(self, record: ReviewRecord) -> None:
        pass

    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        return []

    def append_history(self, repo: str, key: str, comments) -> None:
        pass

    def load_history(self, repo: str, key: str) -> list[HistoryEntry]:
        return []

    def get_cached_review(self, repo: str, path: str, code: str) -> list[dict] | None:
        return None

    def cache_review(self, repo: str, path: str, code: str, results: list[dict]) -> None:
        pass
