"""Normalize GitHub webhook payloads into ChangeEvents."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from prsift_core.errors import ReviewInputError
from prsift_core.models import ChangeEvent

logger = logging.getLogger(__name__)


def _split_repository(repository: str) -> tuple[str, str]:
    owner, sep, name = repository.partition("/")
    if not sep or not owner or not name:
        raise ReviewInputError(f"Invalid repository {repository!r}, expected 'owner/name'.")
    return owner, name


def _repository_from_payload(payload: dict, repository: str | None) -> tuple[str, str]:
    if repository:
        return _split_repository(repository)
    repo = payload.get("repository") or {}
    owner = (repo.get("owner") or {}).get("login")
    name = repo.get("name")
    if not owner or not name:
        raise ReviewInputError("Invalid event data: missing repository.")
    return owner, name


def _push_context(payload: dict) -> tuple[str, str]:
    commits = payload.get("commits") or []
    head = payload.get("head_commit") or (commits[-1] if commits else None)
    title = (head or {}).get("message") or "Push event"
    description = "\n".join(
        f"{i}. {c.get('message') or 'No message'} ({(c.get('id') or '')[:7]})" for i, c in enumerate(commits, 1)
    )
    return title, description


def parse_event(payload: dict, repository: str | None = None) -> ChangeEvent:
    owner, name = _repository_from_payload(payload, repository)

    pull = payload.get("pull_request")
    if pull is not None or payload.get("number") is not None:
        pull = pull or {}
        number = payload.get("number") or pull.get("number")
        if not isinstance(number, int) or isinstance(number, bool):
            raise ReviewInputError("Invalid event data: missing pull request number.")
        return ChangeEvent(
            owner=owner,
            repo=name,
            kind="pull_request",
            number=number,
            title=pull.get("title") or "",
            description=pull.get("body") or "",
            head_sha=(pull.get("head") or {}).get("sha"),
        )

    if payload.get("before") and payload.get("after"):
        title, description = _push_context(payload)
        logger.info("Push to %s with %d commit(s)", payload.get("ref"), len(payload.get("commits") or []))
        return ChangeEvent(
            owner=owner,
            repo=name,
            kind="push",
            before=payload["before"],
            after=payload["after"],
            ref=payload.get("ref"),
            title=title,
            description=description,
            head_sha=payload["after"],
        )

    logger.warning("Event for %s/%s is neither a pull request nor a push", owner, name)
    return ChangeEvent(owner=owner, repo=name, kind="other", title="Unknown event")


def load_event(path: str, repository: str | None = None) -> ChangeEvent:
    """Read a webhook payload file (``$GITHUB_EVENT_PATH``) into a ChangeEvent."""
    if not path:
        raise ReviewInputError("No event file given and GITHUB_EVENT_PATH is not set.")
    p = Path(path)
    if not p.exists():
        raise ReviewInputError(f"Event file not found: {path}")
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ReviewInputError(f"Event file is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ReviewInputError("Invalid event data: expected a JSON object.")
    return parse_event(payload, repository)


def event_from_pull(repository: str, pr) -> ChangeEvent:
    """ChangeEvent for a pull request fetched with PyGithub."""
    owner, name = _split_repository(repository)
    return ChangeEvent(
        owner=owner,
        repo=name,
        kind="pull_request",
        number=pr.number,
        title=pr.title or "",
        description=pr.body or "",
        head_sha=pr.head.sha,
    )
