"""Data model shared by every pipeline stage.

Kept as plain dataclasses so each stage can be tested by constructing its
inputs directly, without a diff, a provider or a GitHub connection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SEVERITIES = ("error", "warning", "info")


@dataclass
class DiffLine:
    """One row of a hunk.

    ``kind`` is ``"add"``, ``"del"``, ``"normal"`` or ``"gap"``. Gap lines are
    placeholders inserted between merged hunks and carry no line numbers.
    """

    kind: str
    content: str
    new_line: int | None = None
    old_line: int | None = None


@dataclass
class Hunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: list[DiffLine] = field(default_factory=list)

    @property
    def new_end(self) -> int:
        return self.new_start + self.new_lines - 1

    @property
    def total_lines(self) -> int:
        return self.new_lines + self.old_lines

    @property
    def added(self) -> int:
        return sum(1 for line in self.lines if line.kind == "add")

    @property
    def removed(self) -> int:
        return sum(1 for line in self.lines if line.kind == "del")

    def contains(self, line: int) -> bool:
        return self.new_lines > 0 and self.new_start <= line <= self.new_end


@dataclass
class FileDiff:
    path: str
    old_path: str | None = None
    status: str = "modified"  # "added" | "modified" | "removed" | "renamed"
    hunks: list[Hunk] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0

    @property
    def is_deleted(self) -> bool:
        return self.status == "removed"


@dataclass
class ReviewUnit:
    """A file-scoped, line-range-bounded slice of a diff sent as one prompt."""

    path: str
    language: str
    lines: list[DiffLine]
    new_start: int
    new_end: int
    added: int = 0
    removed: int = 0
    total_lines: int = 0
    hunk_ranges: list[tuple[int, int]] = field(default_factory=list)
    oversized: bool = False

    def code_text(self) -> str:
        """Raw changed code used as the cache key for this unit."""
        return "\n".join(f"{line.kind}:{line.content}" for line in self.lines if line.kind != "gap")


@dataclass
class Suggestion:
    code: str = ""
    description: str = ""


@dataclass
class Finding:
    """A model-proposed issue before validation. ``line_number`` is left as the model sent it."""

    line_number: Any
    comment: str
    severity: Any = "info"
    file_path: str | None = None
    suggestion: Suggestion | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Finding:
        suggestion = None
        raw_suggestion = data.get("suggestion")
        if isinstance(raw_suggestion, dict):
            suggestion = Suggestion(
                code=str(raw_suggestion.get("code") or ""),
                description=str(raw_suggestion.get("description") or ""),
            )
        elif isinstance(raw_suggestion, str) and raw_suggestion.strip():
            suggestion = Suggestion(code=raw_suggestion)

        comment = data.get("reviewComment")
        if comment is None:
            comment = data.get("comment", data.get("body", ""))
        line_number = data.get("lineNumber")
        if line_number is None:
            line_number = data.get("line")

        return cls(
            line_number=line_number,
            comment=comment if isinstance(comment, str) else "",
            severity=data.get("severity", "info"),
            file_path=data.get("filePath"),
            suggestion=suggestion,
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "lineNumber": self.line_number,
            "reviewComment": self.comment,
            "severity": self.severity,
            "filePath": self.file_path,
        }
        if self.suggestion is not None:
            data["suggestion"] = {"code": self.suggestion.code, "description": self.suggestion.description}
        return data


def looks_like_review(data: Any) -> bool:
    """True for a dict carrying at least a line reference and a comment."""
    if not isinstance(data, dict):
        return False
    has_line = "lineNumber" in data or "line" in data
    has_text = any(isinstance(data.get(k), str) for k in ("reviewComment", "comment", "body"))
    return has_line and has_text


@dataclass
class Comment:
    """A validated finding, ready to be published as an inline review comment."""

    path: str
    line: int
    body: str
    severity: str = "info"
    side: str = "RIGHT"
    text: str = ""
    original_line: int | None = None
    adjusted: bool = False

    def to_api(self) -> dict:
        return {"path": self.path, "line": self.line, "body": self.body, "side": self.side}


@dataclass
class ExistingComment:
    """A comment already on the pull request or recorded in history."""

    path: str
    line: int | None
    body: str


@dataclass
class ChangeEvent:
    """Normalized change descriptor handed to the pipeline by the host."""

    owner: str
    repo: str
    kind: str = "pull_request"  # "pull_request" | "push" | "other"
    number: int | None = None
    before: str | None = None
    after: str | None = None
    ref: str | None = None
    title: str = ""
    description: str = ""
    head_sha: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def is_pull_request(self) -> bool:
        return self.kind == "pull_request" and self.number is not None

    @property
    def history_key(self) -> str:
        if self.is_pull_request:
            return f"pr-{self.number}"
        return f"push-{self.ref or self.after or 'unknown'}"


@dataclass
class PublishResult:
    success_count: int = 0
    failure_count: int = 0
    failed: list[Comment] = field(default_factory=list)
    dropped: list[Comment] = field(default_factory=list)
    repointed: int = 0
    commit_sha: str = ""
