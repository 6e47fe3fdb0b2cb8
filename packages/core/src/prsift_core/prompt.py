"""Prompt construction for a single review unit.

The prompt is identical for every provider. Line numbers are rendered in
front of each row because the model has no other way to address a line;
those self-reported numbers are re-checked by the validator afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass

from prsift_core.models import ChangeEvent, ReviewUnit

DEFAULT_REVIEW_CRITERIA = [
    "code_quality",
    "bugs",
    "security",
    "performance",
    "maintainability",
    "testability",
]

CRITERIA_LABELS = {
    "code_quality": "Code quality and best practices",
    "bugs": "Potential bugs or logical errors",
    "security": "Security vulnerabilities",
    "performance": "Performance optimizations",
    "maintainability": "Maintainability and readability",
    "testability": "Testability",
    "documentation": "Missing or incorrect documentation",
    "accessibility": "Accessibility issues",
    "compatibility": "Browser or device compatibility",
    "dependencies": "Dependencies and their versions",
    "duplication": "Code duplication",
    "naming": "Naming conventions",
    "architecture": "Architectural concerns",
}

SYSTEM_PROMPT = (
    "You are a code review assistant. Your job is to analyze code changes and provide specific, "
    "actionable feedback. Focus ONLY on substantive issues like bugs, security vulnerabilities, and "
    "performance problems. DO NOT make generic observations about hardcoded values or suggest "
    "'verifying' configuration values without specific technical reasons. Always respond with a single "
    "valid JSON object containing a 'reviews' array."
)

OUTPUT_SCHEMA = """{{
  "reviews": [
    {{
      "lineNumber": <line number as integer, taken from the numbers shown in front of each line>,
      "reviewComment": "<your specific, actionable feedback for this line, in GitHub Markdown>",
      "severity": "<one of: error, warning, info>",
      "filePath": "{file_path}",
      "suggestion": {{
        "code": "<optional: replacement code for that line>",
        "description": "<optional: one sentence on what the replacement changes>"
      }}
    }}
  ]
}}"""


@dataclass
class Prompt:
    system: str
    user: str
    unit: ReviewUnit


def render_unit(unit: ReviewUnit) -> str:
    """Render unit rows as ``<line>: <marker><content>``.

    Removed rows show ``-`` instead of a number and gap placeholders show
    ``~``: neither can carry a comment.
    """
    rows = []
    for line in unit.lines:
        if line.kind == "add":
            rows.append(f"{line.new_line}: +{line.content}")
        elif line.kind == "normal":
            rows.append(f"{line.new_line}:  {line.content}")
        elif line.kind == "del":
            rows.append(f"-: -{line.content}")
        else:
            rows.append(f"~: {line.content}")
    return "\n".join(rows)


def _render_criteria(criteria: list[str]) -> str:
    items = criteria or DEFAULT_REVIEW_CRITERIA
    return "\n".join(f"{i}. {CRITERIA_LABELS.get(c, c)}" for i, c in enumerate(items, 1))


def build_prompt(
    unit: ReviewUnit,
    event: ChangeEvent,
    criteria: list[str] | None = None,
    guidelines: str = "",
) -> Prompt:
    guidelines_section = f"\nTeam guidelines:\n{guidelines.strip()}\n" if guidelines and guidelines.strip() else ""
    user = f"""Review the following code changes in {unit.language} file '{unit.path}' (lines {unit.new_start}-{unit.new_end}):

{render_unit(unit)}

Take the pull request title and description into account when writing the response.

Pull request title: {event.title}
Pull request description:

---
{event.description}
---

Analyze the code for SUBSTANTIVE issues related to:
{_render_criteria(criteria or [])}
{guidelines_section}
Rules:
- Focus ONLY on specific, actionable issues. Do not comment on purely stylistic matters or make unmotivated remarks.
- Do not give positive comments or compliments.
- Provide comments ONLY if there is something to improve, otherwise "reviews" must be an empty array.
- Write the comment in GitHub Markdown format.
- Use the given description only for the overall context and only comment the code.
- NEVER suggest adding comments to the code.
- For imports and variable declarations:
  * Only suggest removing an import or variable if it is newly added in this diff (lines with '+') and definitely unused.
  * Do not suggest removing existing imports or variables; they might be used elsewhere in the file.
- You are only seeing a portion of the file. Rows marked '-' were removed and rows marked '~' stand for unchanged code that is not shown; never use them as lineNumber.
- Only use line numbers between {unit.new_start} and {unit.new_end} that are shown above.
- If suggesting a code change, put the concrete replacement in "suggestion".

Provide your code review feedback as JSON with the following structure:
{OUTPUT_SCHEMA.format(file_path=unit.path)}
Return {{"reviews": []}} when there is nothing actionable. Do not return any text outside the JSON object."""
    return Prompt(system=SYSTEM_PROMPT, user=user, unit=unit)
