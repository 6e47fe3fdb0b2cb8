"""Abstract store interface.

Any storage backend (SQLite, a directory of JSON files, a team database)
implements this interface. The CLI and the pipeline depend on BaseStore,
not on a concrete backend, so backends are swappable without touching
either.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prsift_store.models import HistoryEntry, ReviewRecord


class BaseStore(ABC):
    """Pluggable persistence for review records, comment history and the review cache.

    Every method is best-effort: failures are logged and reported as a miss
    or an empty result. A store must never raise into the review pipeline.
    """

    @abstractmethod
    def save(self, record: ReviewRecord) -> None:
        """Persist a completed review record."""

    @abstractmethod
    def list_reviews(self, repo: str, pr_number: int | None = None) -> list[ReviewRecord]:
        """Return reviews for a repo, optionally filtered by PR number.

        Returns an empty list if no reviews exist; never raises.
        """

    @abstractmethod
    def append_history(self, repo: str, key: str, comments) -> None:
        """Record published comments for a change; exact duplicates are ignored."""

    @abstractmethod
    def load_history(self, repo: str, key: str) -> list[HistoryEntry]:
        """Return unexpired history entries for a change."""

    @abstractmethod
    def get_cached_review(self, repo: str, path: str, code: str) -> list[dict] | None:
        """Return cached findings for this code, or None on a miss or expiry."""

    @abstractmethod
    def cache_review(self, repo: str, path: str, code: str, results: list[dict]) -> None:
        """Store findings for this code."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional: subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
