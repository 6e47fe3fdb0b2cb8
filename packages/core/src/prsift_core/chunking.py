"""Hunk merging into review units.

Adjacent hunks are folded together left to right while the combined unit
stays comfortably under the chunk ceiling and the gap between them is
small, so the model sees related edits in one prompt. Hunks are never
split: a hunk that is already too large becomes its own unit, flagged
``oversized`` for the caller to skip.
"""

from __future__ import annotations

import logging

from prsift_core.models import DiffLine, FileDiff, Hunk, ReviewUnit
from prsift_core.utils.code import get_language

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_LINES = 2000
DEFAULT_GAP_THRESHOLD = 50
DEFAULT_MAX_GAP_LINES = 5

# Share of the ceiling a merged unit may reach; leaves room for the prompt.
_MERGE_BUDGET_RATIO = 0.8


class _Accumulator:
    def __init__(self, hunk: Hunk):
        self.new_start = hunk.new_start
        self.new_end = hunk.new_end
        self.total_lines = hunk.total_lines
        self.lines: list[DiffLine] = list(hunk.lines)
        self.hunks = [hunk]

    def absorb(self, hunk: Hunk, gap: int, max_gap_lines: int) -> None:
        if gap > 0:
            shown = min(gap, max_gap_lines)
            for _ in range(shown):
                self.lines.append(DiffLine(kind="gap", content=f"... {gap} unchanged line(s) not shown ..."))
        self.lines.extend(hunk.lines)
        self.new_end = hunk.new_end
        self.total_lines += hunk.total_lines
        self.hunks.append(hunk)

    def to_unit(self, path: str, language: str, max_chunk_lines: int) -> ReviewUnit:
        return ReviewUnit(
            path=path,
            language=language,
            lines=self.lines,
            new_start=self.new_start,
            new_end=self.new_end,
            added=sum(h.added for h in self.hunks),
            removed=sum(h.removed for h in self.hunks),
            total_lines=self.total_lines,
            hunk_ranges=[(h.new_start, h.new_end) for h in self.hunks if h.new_lines > 0],
            oversized=self.total_lines > max_chunk_lines,
        )


def merge_hunks(
    file_diff: FileDiff,
    max_chunk_lines: int = DEFAULT_MAX_CHUNK_LINES,
    gap_threshold: int = DEFAULT_GAP_THRESHOLD,
    max_gap_lines: int = DEFAULT_MAX_GAP_LINES,
) -> list[ReviewUnit]:
    """Fold a file's hunks into review units.

    A hunk joins the current unit only when both hold:
      - the combined line count stays within 80% of ``max_chunk_lines``
      - the gap since the unit's last new line is at most ``gap_threshold``

    Units without added lines are dropped; there is nothing new to review.
    """
    language = get_language(file_diff.path)
    merge_budget = max_chunk_lines * _MERGE_BUDGET_RATIO
    accumulators: list[_Accumulator] = []
    current: _Accumulator | None = None

    for hunk in file_diff.hunks:
        if current is None:
            current = _Accumulator(hunk)
            continue

        gap = hunk.new_start - (current.new_end + 1)
        too_large = current.total_lines + hunk.total_lines > merge_budget
        too_far = gap > gap_threshold

        if not too_large and not too_far:
            current.absorb(hunk, gap, max_gap_lines)
            continue

        if too_large:
            logger.debug(
                "%s: not merging at line %d, combined size %d exceeds %d",
                file_diff.path,
                hunk.new_start,
                current.total_lines + hunk.total_lines,
                int(merge_budget),
            )
        if too_far:
            logger.debug("%s: not merging at line %d, gap of %d lines", file_diff.path, hunk.new_start, gap)
        accumulators.append(current)
        current = _Accumulator(hunk)

    if current is not None:
        accumulators.append(current)

    units = []
    for acc in accumulators:
        unit = acc.to_unit(file_diff.path, language, max_chunk_lines)
        if unit.added == 0:
            logger.debug("%s: skipping lines %d-%d, no added lines", unit.path, unit.new_start, unit.new_end)
            continue
        units.append(unit)

    logger.debug("%s: merged %d hunk(s) into %d unit(s)", file_diff.path, len(file_diff.hunks), len(units))
    return units
