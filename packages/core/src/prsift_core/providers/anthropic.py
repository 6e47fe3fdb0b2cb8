from __future__ import annotations

from prsift_core.prompt import Prompt
from prsift_core.providers.base import BaseReviewer

# Output budget by model family; anything unrecognised gets the fallback.
_FAMILY_TOKENS = (("haiku", 800), ("sonnet", 4096), ("opus", 8192))
_FALLBACK_TOKENS = 1024


class AnthropicReviewer(BaseReviewer):
    MODEL = "claude-sonnet-4-20250514"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, model: str | None = None, limiter=None, policy=None):
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install anthropic"
            )
        super().__init__(model=model, limiter=limiter, policy=policy)
        self.client = AsyncAnthropic(api_key=api_key)

    def _base_tokens(self) -> int:
        model = self.model.lower()
        for family, tokens in _FAMILY_TOKENS:
            if family in model:
                return tokens
        return _FALLBACK_TOKENS

    async def _call_api(self, prompt: Prompt, max_tokens: int) -> str:
        # Deferred like the client import in __init__, which has already
        # confirmed the package is importable.
        from anthropic.types import TextBlock

        response = await self.client.messages.create(
            model=self.model,
            system=prompt.system,
            messages=[{"role": "user", "content": prompt.user}],
            temperature=self.TEMPERATURE,
            max_tokens=max_tokens,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
