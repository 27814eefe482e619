"""OpenAI (GPT-4, o3) provider adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

import openai

from flynt.config import OPENAI_API_KEY
from flynt.models import ModelResponse, TokenUsage
from flynt.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class OpenAIAdapter(ProviderAdapter):
    def __init__(self, model: str = "gpt-4o"):
        self.model = model
        self.client = openai.AsyncOpenAI(api_key=OPENAI_API_KEY)

    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self._format_messages(messages, system),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if web_search:
            # Chat completions has no native search tool; the model answers from its own knowledge
            logger.debug(f"Web search requested but not supported by {self.model}")

        try:
            raw = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise

        return self._parse_response(raw)

    def count_tokens(self, messages: list[dict]) -> int:
        total = sum(len(json.dumps(m)) for m in messages)
        return total // 4

    def _format_messages(self, messages: list[dict], system: str | None = None) -> list[dict]:
        formatted = []
        if system:
            formatted.append({"role": "system", "content": system})

        for msg in messages:
            role = msg.get("role", "user")
            if role not in ("system", "assistant"):
                role = "user"
            formatted.append({"role": role, "content": str(msg.get("content", ""))})
        return formatted

    def _parse_response(self, raw: Any) -> ModelResponse:
        msg = raw.choices[0].message
        return ModelResponse(
            text=msg.content,
            usage=TokenUsage(raw.usage.prompt_tokens, raw.usage.completion_tokens),
            raw=raw,
        )
