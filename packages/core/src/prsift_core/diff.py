"""Unified diff parsing.

Thin adapter over ``unidiff``: the pipeline only ever sees the
``FileDiff``/``Hunk``/``DiffLine`` model, so swapping the parser touches
this module alone.
"""

from __future__ import annotations

import logging

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from prsift_core.errors import ReviewInputError
from prsift_core.models import DiffLine, FileDiff, Hunk

logger = logging.getLogger(__name__)

_LINE_KINDS = {"+": "add", "-": "del", " ": "normal"}


def _file_status(patched_file) -> str:
    if patched_file.is_added_file:
        return "added"
    if patched_file.is_removed_file:
        return "removed"
    if patched_file.is_rename:
        return "renamed"
    return "modified"


def _strip_prefix(path: str | None) -> str | None:
    if path is None or path == "/dev/null":
        return None
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _convert_hunk(hunk) -> Hunk:
    lines = []
    for line in hunk:
        kind = _LINE_KINDS.get(line.line_type)
        if kind is None:
            # "\ No newline at end of file" markers and trailing blank separators
            continue
        lines.append(
            DiffLine(
                kind=kind,
                content=line.value.rstrip("\r\n"),
                new_line=line.target_line_no if kind != "del" else None,
                old_line=line.source_line_no if kind != "add" else None,
            )
        )
    return Hunk(
        old_start=hunk.source_start,
        old_lines=hunk.source_length,
        new_start=hunk.target_start,
        new_lines=hunk.target_length,
        lines=lines,
    )


def parse_diff(diff_text: str) -> list[FileDiff]:
    """Parse a ``diff --git`` unified diff into per-file hunks.

    Raises ReviewInputError when the text is not a parseable diff.
    """
    if not diff_text or not diff_text.strip():
        return []
    try:
        patch = PatchSet(diff_text)
    except UnidiffParseError as e:
        raise ReviewInputError(f"Could not parse diff: {e}") from e

    files = []
    for patched_file in patch:
        status = _file_status(patched_file)
        target = _strip_prefix(patched_file.target_file)
        source = _strip_prefix(patched_file.source_file)
        path = target or source or patched_file.path
        files.append(
            FileDiff(
                path=path,
                old_path=source if source != path else None,
                status=status,
                hunks=[_convert_hunk(h) for h in patched_file],
                additions=patched_file.added,
                deletions=patched_file.removed,
            )
        )
    logger.debug("Parsed diff into %d file(s)", len(files))
    return files


def find_file(files: list[FileDiff], path: str) -> FileDiff | None:
    for f in files:
        if f.path == path and not f.is_deleted:
            return f
    return None


def line_in_hunks(hunks: list[Hunk], line: int) -> bool:
    return any(h.contains(line) for h in hunks)


def nearest_hunk(hunks: list[Hunk], line: int) -> Hunk | None:
    """Hunk whose new-line range is closest to ``line``; earlier hunk wins ties."""
    best: Hunk | None = None
    best_distance: int | None = None
    for h in hunks:
        if h.new_lines <= 0:
            continue
        if h.contains(line):
            return h
        distance = h.new_start - line if line < h.new_start else line - h.new_end
        if best_distance is None or distance < best_distance:
            best, best_distance = h, distance
    return best
