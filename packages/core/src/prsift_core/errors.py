"""Errors that are allowed to end a review run.

Everything else (provider failures, malformed model output, invalid line
numbers, a single failing review batch) is recovered inside the stage that
produced it and never reaches the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prsift_core.models import PublishResult


class ReviewInputError(ValueError):
    """Missing or invalid event data, configuration or diff. Ends the run."""


class PublishError(RuntimeError):
    """Publication produced zero successful comments."""

    def __init__(self, message: str, result: PublishResult | None = None):
        super().__init__(message)
        self.result = result
