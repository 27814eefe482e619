"""Agent executors: produce the output for a single task node."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from flynt.config import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    EXECUTOR_MODEL,
    MODEL_PRICING,
    SEARCH_MODEL,
)
from flynt.models import ExecutionResult, ModelResponse
from flynt.providers import ModelProvider, create_provider, qualified_name

logger = logging.getLogger(__name__)

SEARCH_TOOL = "Google Search"


class AgentExecutor(ABC):
    """Runs one task. Raises on failure; never touches caller state."""

    @abstractmethod
    async def run(
        self,
        agent_type: str,
        description: str,
        context: str,
        enabled_tools: list[str],
    ) -> str | ExecutionResult:
        """Execute the task and return its output (optionally with usage)."""


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float | None:
    """USD cost from the pricing table, or None for unknown models."""
    pricing = MODEL_PRICING.get(qualified_name(model))
    if pricing is None:
        return None
    input_price, output_price = pricing
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000


def build_system_instruction(agent_type: str, description: str, context: str, enabled_tools: list[str]) -> str:
    return (
        f"You are the {agent_type} within the Flynt Studio framework.\n"
        f"Mission Objective: {description}.\n"
        f"Active ecosystem tools: {', '.join(enabled_tools) or 'none'}.\n"
        f"Context from previous nodes: {context}.\n"
        "Produce a professional, technical output. Use Markdown for documentation and code blocks."
    )


class LLMAgentExecutor(AgentExecutor):
    """AgentExecutor backed by a chat model; switches to the search model when search is on."""

    def __init__(
        self,
        model: str = EXECUTOR_MODEL,
        search_model: str = SEARCH_MODEL,
        providers: dict[str, ModelProvider] | None = None,
    ):
        self.model = model
        self.search_model = search_model
        self._providers: dict[str, ModelProvider] = dict(providers or {})

    def _provider(self, model: str) -> ModelProvider:
        if model not in self._providers:
            self._providers[model] = create_provider(model)
        return self._providers[model]

    async def run(
        self,
        agent_type: str,
        description: str,
        context: str,
        enabled_tools: list[str],
    ) -> ExecutionResult:
        web_search = SEARCH_TOOL in enabled_tools
        model = self.search_model if web_search else self.model
        provider = self._provider(model)

        response = await provider.generate(
            messages=[{"role": "user", "content": description}],
            system=build_system_instruction(agent_type, description, context, enabled_tools),
            temperature=DEFAULT_TEMPERATURE,
            max_tokens=DEFAULT_MAX_TOKENS,
            web_search=web_search,
        )
        output = self._render(response)
        usage = response.usage
        logger.info(f"{agent_type} produced {len(output)} chars ({usage.total} tokens) via {model}")
        return ExecutionResult(
            output=output,
            tokens=usage.total,
            cost=estimate_cost(provider.model or model, usage.input_tokens, usage.output_tokens),
        )

    @staticmethod
    def _render(response: ModelResponse) -> str:
        output = response.text or ""
        if response.citations:
            output += "\n\n### References\n"
            for c in response.citations:
                output += f"- [{c.title}]({c.url})\n"
        return output
