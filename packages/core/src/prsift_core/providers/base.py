"""Base reviewer implementing the Template Method pattern.

All providers share the same gateway algorithm:
    review() → _max_tokens()
             → _call_with_retry() → _call_api()   ← only this differs per provider
             → parse_reviews() → Finding.from_dict()

Subclasses implement two things only:
  - __init__: validate and store the async SDK client
  - _call_api: make one raw API call and return the text response

Retry, rate limiting and response parsing live here so every provider
behaves the same way when the model misbehaves.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from prsift_core.models import Finding, ReviewUnit
from prsift_core.parsing import ParseStage, parse_reviews
from prsift_core.prompt import Prompt
from prsift_core.ratelimit import RateLimiter, RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class BaseReviewer(ABC):
    MODEL: str = ""
    TEMPERATURE: float = 0.2
    MAX_TOKENS: int = 2500
    # Units above this many lines get TOKEN_MULTIPLIER times the base budget.
    LARGE_UNIT_LINES: int = 500
    TOKEN_MULTIPLIER: int = 3

    def __init__(
        self,
        model: str | None = None,
        limiter: RateLimiter | None = None,
        policy: RetryPolicy | None = None,
    ):
        self.model = model or self.MODEL
        self.limiter = limiter
        self.policy = policy or RetryPolicy()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def review(self, prompt: Prompt) -> list[Finding] | None:
        """Send one prompt and return the model's findings.

        ``None`` means no usable answer: the call failed after retries or the
        response could not be parsed at all. ``[]`` means the model had
        nothing to report. Never raises.
        """
        max_tokens = self._max_tokens(prompt.unit)
        raw = await self._call_with_retry(prompt, max_tokens)
        if raw is None:
            return None
        if not raw.strip():
            logger.warning("%s returned an empty response for %s", self.__class__.__name__, prompt.unit.path)
            return None

        parsed = parse_reviews(raw)
        if parsed.stage is ParseStage.EMPTY:
            return None
        findings = [Finding.from_dict(r) for r in parsed.reviews]
        logger.debug(
            "%s: %d finding(s) for %s:%d-%d (%s)",
            self.__class__.__name__,
            len(findings),
            prompt.unit.path,
            prompt.unit.new_start,
            prompt.unit.new_end,
            parsed.stage.value,
        )
        return findings

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _call_api(self, prompt: Prompt, max_tokens: int) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _base_tokens(self) -> int:
        return self.MAX_TOKENS

    def _max_tokens(self, unit: ReviewUnit) -> int:
        budget = self._base_tokens()
        if unit.total_lines > self.LARGE_UNIT_LINES:
            budget *= self.TOKEN_MULTIPLIER
        return budget

    async def _call_with_retry(self, prompt: Prompt, max_tokens: int) -> str | None:
        name = self.__class__.__name__
        try:
            return await with_retry(
                lambda: self._call_api(prompt, max_tokens),
                policy=self.policy,
                limiter=self.limiter,
                name=name,
            )
        except Exception as e:
            logger.error("%s API failed for %s: %s", name, prompt.unit.path, e)
            return None
