"""Validation of model findings against the unit they were produced for.

Model line numbers are self-reported and routinely drift outside the slice
the model was shown. Everything that reaches the publisher has passed
through ``ResponseValidator.validate``.
"""

from __future__ import annotations

import logging

from prsift_core.models import SEVERITIES, Comment, Finding, ReviewUnit
from prsift_core.utils.code import fence_tag

logger = logging.getLogger(__name__)

# GitHub rejects review comment bodies longer than this.
MAX_COMMENT_LENGTH = 65536

LINE_POLICIES = ("clamp", "drop")


def parse_line_number(value) -> int | None:
    """Positive integer from an int, an integral float or a digit string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        number = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            return None
        number = int(stripped)
    else:
        return None
    return number if number > 0 else None


def adjustment_note(original: int, line: int, reason: str = "was outside this change") -> str:
    return f"_Note: line {original} {reason}; moved to line {line}._\n\n"


def tag_code_fences(text: str, tag: str) -> str:
    """Give untagged opening fences the file's language tag."""
    if not tag:
        return text
    out = []
    in_fence = False
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith("```"):
            if not in_fence and stripped == "```":
                line = line.replace("```", f"```{tag}", 1)
            in_fence = not in_fence
        out.append(line)
    return "\n".join(out)


def format_body(severity: str, text: str, path: str, suggestion=None, note: str = "") -> str:
    body = f"**[{severity.upper()}]**\n\n{note}{tag_code_fences(text.strip(), fence_tag(path))}"
    if suggestion is not None and suggestion.code.strip():
        description = suggestion.description.strip()
        if description:
            body += f"\n\n{description}"
        body += f"\n\n```suggestion\n{suggestion.code.rstrip()}\n```"
    return body


class ResponseValidator:
    def __init__(
        self,
        line_policy: str = "clamp",
        max_body_length: int = MAX_COMMENT_LENGTH,
        enable_auto_fix: bool = True,
    ):
        if line_policy not in LINE_POLICIES:
            raise ValueError(f"Unknown line policy: {line_policy!r}. Choose 'clamp' or 'drop'.")
        self.line_policy = line_policy
        self.max_body_length = max_body_length
        self.enable_auto_fix = enable_auto_fix

    def validate(self, finding: Finding, unit: ReviewUnit) -> Comment | None:
        """Return a publishable comment, or None when the finding is rejected.

        Checks run in order: line number, line range, body, severity. The
        unit's path always wins over the model's ``filePath``.
        """
        original = parse_line_number(finding.line_number)
        if original is None:
            logger.debug("%s: rejected finding with invalid line %r", unit.path, finding.line_number)
            return None

        line = original
        note = ""
        if not unit.new_start <= original <= unit.new_end:
            if self.line_policy == "drop":
                logger.debug(
                    "%s: dropped finding at line %d outside %d-%d", unit.path, original, unit.new_start, unit.new_end
                )
                return None
            line = unit.new_start if original < unit.new_start else unit.new_end
            note = adjustment_note(original, line)
            logger.debug("%s: clamped finding from line %d to %d", unit.path, original, line)

        text = finding.comment.strip() if isinstance(finding.comment, str) else ""
        if not text:
            logger.debug("%s: rejected finding at line %d with empty comment", unit.path, original)
            return None

        severity = finding.severity.strip().lower() if isinstance(finding.severity, str) else None
        if severity not in SEVERITIES:
            logger.debug("%s: rejected finding at line %d with severity %r", unit.path, original, finding.severity)
            return None

        if finding.file_path and finding.file_path != unit.path:
            logger.debug("%s: finding named %s, using the unit's path", unit.path, finding.file_path)

        suggestion = finding.suggestion if self.enable_auto_fix else None
        body = format_body(severity, text, unit.path, suggestion, note)
        if len(body) > self.max_body_length:
            logger.debug("%s: rejected finding at line %d, body is %d chars", unit.path, original, len(body))
            return None

        return Comment(
            path=unit.path,
            line=line,
            body=body,
            severity=severity,
            text=text,
            original_line=original,
            adjusted=line != original,
        )

    def validate_all(self, findings: list[Finding], unit: ReviewUnit) -> list[Comment]:
        comments = []
        for finding in findings:
            comment = self.validate(finding, unit)
            if comment is not None:
                comments.append(comment)
        rejected = len(findings) - len(comments)
        if rejected:
            logger.warning("%s: rejected %d of %d finding(s)", unit.path, rejected, len(findings))
        return comments
