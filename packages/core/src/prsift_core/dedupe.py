"""Suppression of comments that repeat live or previously published feedback.

Two passes per candidate:
  - exact: same path and line as a known comment
  - fuzzy: same path, within ``line_window`` lines, and textually similar

Accepted candidates immediately join the known set, so duplicates produced
by overlapping units in the same run are caught too.
"""

from __future__ import annotations

import logging
import re

from prsift_core.models import Comment, ExistingComment

logger = logging.getLogger(__name__)

_BADGE_RE = re.compile(r"\*\*\[(?:error|warning|info)\]\*\*", re.IGNORECASE)
_NOTE_RE = re.compile(r"_note: line \d+ [^_]*?; moved to line \d+\._", re.IGNORECASE)
_MARKDOWN_RE = re.compile(r"[`*_#>\[\]()~|]")
_WORD_RE = re.compile(r"[a-z0-9]+")
_SPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    text = _BADGE_RE.sub(" ", text or "")
    text = _NOTE_RE.sub(" ", text)
    text = _MARKDOWN_RE.sub(" ", text.lower())
    return _SPACE_RE.sub(" ", text).strip()


def significant_words(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text) if len(w) > 3}


def text_similarity(a: str, b: str) -> float:
    """1.0 on containment, else shared significant words over the smaller set."""
    na, nb = normalize_text(a), normalize_text(b)
    if not na or not nb:
        return 0.0
    if na in nb or nb in na:
        return 1.0
    wa, wb = significant_words(na), significant_words(nb)
    if not wa or not wb:
        return 0.0
    return len(wa & wb) / min(len(wa), len(wb))


class DeduplicationEngine:
    def __init__(
        self,
        line_window: int = 10,
        short_threshold: float = 0.8,
        long_threshold: float = 0.6,
        short_word_count: int = 6,
        min_shared_words: int = 3,
    ):
        self.line_window = line_window
        self.short_threshold = short_threshold
        self.long_threshold = long_threshold
        self.short_word_count = short_word_count
        self.min_shared_words = min_shared_words

    @classmethod
    def from_config(cls, config: dict) -> DeduplicationEngine:
        return cls(
            line_window=int(config.get("dedupe_line_window", 10)),
            short_threshold=float(config.get("dedupe_short_threshold", 0.8)),
            long_threshold=float(config.get("dedupe_long_threshold", 0.6)),
            short_word_count=int(config.get("dedupe_short_word_count", 6)),
            min_shared_words=int(config.get("dedupe_min_shared_words", 3)),
        )

    def is_similar(self, a: str, b: str) -> bool:
        similarity = text_similarity(a, b)
        if similarity == 0.0:
            return False
        if similarity == 1.0:
            return True
        wa, wb = significant_words(normalize_text(a)), significant_words(normalize_text(b))
        # Short comments share few words by chance, so they need a higher ratio.
        short = min(len(wa), len(wb)) < self.short_word_count
        threshold = self.short_threshold if short else self.long_threshold
        return similarity >= threshold or len(wa & wb) >= self.min_shared_words

    def _is_duplicate(self, candidate: Comment, known: list[ExistingComment]) -> bool:
        text = candidate.text or candidate.body
        for other in known:
            if other.path != candidate.path or other.line is None:
                continue
            if other.line == candidate.line:
                logger.debug("Duplicate at %s:%d (same line)", candidate.path, candidate.line)
                return True
            if abs(other.line - candidate.line) <= self.line_window and self.is_similar(text, other.body):
                logger.debug(
                    "Duplicate at %s:%d (similar to line %d)",
                    candidate.path,
                    candidate.line,
                    other.line,
                )
                return True
        return False

    def filter(self, candidates: list[Comment], existing: list[ExistingComment]) -> list[Comment]:
        known = list(existing)
        accepted = []
        for candidate in candidates:
            if self._is_duplicate(candidate, known):
                continue
            accepted.append(candidate)
            text = candidate.text or candidate.body
            known.append(ExistingComment(path=candidate.path, line=candidate.line, body=text))
        removed = len(candidates) - len(accepted)
        if removed:
            logger.info("Suppressed %d duplicate comment(s)", removed)
        return accepted

    async def run(
        self,
        candidates: list[Comment],
        live: list[ExistingComment],
        store=None,
        repository: str = "",
        history_key: str = "",
        record: bool = True,
    ) -> list[Comment]:
        """Filter against live comments and stored history, then record the survivors.

        Survivors are written to history before publication so a crash
        between the two cannot cause a repeat on the next run. Runs that
        will not publish (shadow mode, push events) pass ``record=False``.
        """
        history: list[ExistingComment] = []
        if store is not None:
            try:
                entries = store.load_history(repository, history_key)
                history = [ExistingComment(path=e.path, line=e.line, body=e.body) for e in entries]
            except Exception as e:
                logger.warning("Could not load comment history; continuing without it: %s", e)

        survivors = self.filter(candidates, list(live) + history)

        if record and store is not None and survivors:
            try:
                store.append_history(repository, history_key, survivors)
            except Exception as e:
                logger.warning("Could not record comment history: %s", e)
        return survivors
