"""Provider factory: resolve "provider/model" strings to adapters."""

from __future__ import annotations

from collections.abc import Callable

from flynt.providers.base import ModelProvider, ProviderAdapter

DEFAULT_PROVIDER = "anthropic"

# Bare model names are routed by prefix
_PREFIXES = (
    ("claude", "anthropic"),
    ("gpt", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
)


def parse_model_string(model: str) -> tuple[str, str]:
    """Split "provider/model-name"; infer the provider for bare names."""
    model = model.strip()
    provider, sep, name = model.partition("/")
    if sep:
        return provider.lower(), name
    for prefix, inferred in _PREFIXES:
        if model.startswith(prefix):
            return inferred, model
    return DEFAULT_PROVIDER, model


def qualified_name(model: str) -> str:
    """Canonical "provider/model" form, the key used for pricing."""
    return "/".join(parse_model_string(model))


def _anthropic(name: str) -> ProviderAdapter:
    from flynt.providers.anthropic_provider import AnthropicAdapter
    return AnthropicAdapter(model=name)


def _openai(name: str) -> ProviderAdapter:
    from flynt.providers.openai_provider import OpenAIAdapter
    return OpenAIAdapter(model=name)


# SDKs are imported on first use
ADAPTERS: dict[str, Callable[[str], ProviderAdapter]] = {
    "anthropic": _anthropic,
    "openai": _openai,
}


def create_adapter(model: str) -> ProviderAdapter:
    provider, name = parse_model_string(model)
    build = ADAPTERS.get(provider)
    if build is None:
        raise ValueError(f"Unknown provider '{provider}' in '{model}'. Known: {', '.join(sorted(ADAPTERS))}")
    return build(name)


def create_provider(model: str) -> ModelProvider:
    return ModelProvider(create_adapter(model), model=qualified_name(model))
