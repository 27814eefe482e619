"""Anthropic (Claude) provider adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

import anthropic

from flynt.config import ANTHROPIC_API_KEY, NATIVE_SEARCH_MAX_USES
from flynt.models import Citation, ModelResponse, TokenUsage
from flynt.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class AnthropicAdapter(ProviderAdapter):
    def __init__(self, model: str = "claude-sonnet-4-5-20250929"):
        self.model = model
        self.client = anthropic.AsyncAnthropic(api_key=ANTHROPIC_API_KEY)

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
            "messages": self._format_messages(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        if system:
            kwargs["system"] = system
        if json_mode:
            # No native JSON mode, steer via the system prompt
            kwargs["system"] = (system or "") + "\n\nRespond with a single JSON object and nothing else."

        if web_search:
            kwargs["tools"] = [{
                "type": "web_search_20250305",
                "name": "web_search",
                "max_uses": NATIVE_SEARCH_MAX_USES,
            }]

        try:
            raw = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise

        return self._parse_response(raw)

    def count_tokens(self, messages: list[dict]) -> int:
        # Rough estimate: 4 chars per token
        total = sum(len(json.dumps(m)) for m in messages)
        return total // 4

    def _format_messages(self, messages: list[dict]) -> list[dict]:
        """Convert our internal format to Anthropic's format."""
        formatted = []
        for msg in messages:
            role = msg.get("role", "user")
            if role == "system":
                continue  # system messages go via the system parameter
            if role == "assistant":
                formatted.append({"role": "assistant", "content": str(msg.get("content", ""))})
            else:
                formatted.append({"role": "user", "content": str(msg.get("content", ""))})
        return formatted

    def _parse_response(self, raw: Any) -> ModelResponse:
        text_parts = []
        citations: list[Citation] = []
        seen_urls: set[str] = set()

        for block in raw.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "server_tool_use":
                query = getattr(block, "input", {}).get("query", "") if hasattr(block, "input") else ""
                logger.info(f"[WebSearch] query: {query}")
            elif block.type == "web_search_tool_result":
                results = block.content if isinstance(block.content, list) else []
                for result in results:
                    url = getattr(result, "url", None)
                    if url and url not in seen_urls:
                        seen_urls.add(url)
                        citations.append(Citation(title=getattr(result, "title", "") or url, url=url))

        return ModelResponse(
            text="\n".join(text_parts) if text_parts else None,
            usage=TokenUsage(raw.usage.input_tokens, raw.usage.output_tokens),
            citations=citations,
            raw=raw,
        )
