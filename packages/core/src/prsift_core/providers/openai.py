from __future__ import annotations

try:
    from openai import AsyncOpenAI as _AsyncOpenAI
except ImportError:
    _AsyncOpenAI = None  # type: ignore[assignment,misc]

from prsift_core.prompt import Prompt
from prsift_core.providers.base import BaseReviewer

# Families that accept response_format={"type": "json_object"}.
_JSON_MODE_PREFIXES = ("gpt-4o", "gpt-4.1", "gpt-4-turbo")


def is_reasoning_model(model: str) -> bool:
    """o1, o3, o4-mini and friends: no temperature, max_completion_tokens."""
    return len(model) > 1 and model[0] == "o" and model[1].isdigit()


class OpenAIReviewer(BaseReviewer):
    MODEL = "gpt-4o"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, model: str | None = None, limiter=None, policy=None):
        if _AsyncOpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install openai"
            )
        super().__init__(model=model, limiter=limiter, policy=policy)
        self.client = _AsyncOpenAI(api_key=api_key)

    def _request_params(self, max_tokens: int) -> dict:
        params: dict = {"model": self.model}
        if is_reasoning_model(self.model):
            params["max_completion_tokens"] = max_tokens
        else:
            params["max_tokens"] = max_tokens
            params["temperature"] = self.TEMPERATURE
        if is_reasoning_model(self.model) or self.model.startswith(_JSON_MODE_PREFIXES):
            params["response_format"] = {"type": "json_object"}
        return params

    async def _call_api(self, prompt: Prompt, max_tokens: int) -> str:
        response = await self.client.chat.completions.create(
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            **self._request_params(max_tokens),
        )
        return (response.choices[0].message.content or "").strip()
