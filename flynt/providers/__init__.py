"""Provider adapter layer: model-agnostic LLM interface."""

from flynt.providers.base import ModelProvider, ProviderAdapter
from flynt.providers.factory import create_provider, qualified_name

__all__ = ["ModelProvider", "ProviderAdapter", "create_provider", "qualified_name"]
