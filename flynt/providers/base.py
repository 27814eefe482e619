"""Base provider adapter: abstract interface for all LLM providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from flynt.models import ModelResponse

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Translates a plain chat request into a provider-specific API call."""

    model: str

    @abstractmethod
    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> ModelResponse:
        """Call the model and return a unified ModelResponse.
        web_search enables the provider's native search tool where it has one.
        json_mode asks for a bare JSON object where the provider supports it."""

    @abstractmethod
    def count_tokens(self, messages: list[dict]) -> int:
        """Estimate token count for messages."""


class ModelProvider:
    """Wraps a ProviderAdapter and remembers the model string."""

    def __init__(self, adapter: ProviderAdapter, model: str = ""):
        self.adapter = adapter
        self.model = model

    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> ModelResponse:
        return await self.adapter.generate(
            messages=messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            web_search=web_search,
            json_mode=json_mode,
        )

    def count_tokens(self, messages: list[dict]) -> int:
        return self.adapter.count_tokens(messages)
