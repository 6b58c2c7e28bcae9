"""
LLM provider implementations.

This module contains implementations for various LLM providers.
"""

from typing import Union

from ..schemas import ProviderType
from .base import LLMProvider
from .openai import OpenAIProvider
from .ollama import OllamaProvider


def get_provider(provider: Union[str, ProviderType]) -> LLMProvider:
    """
    Instantiate a built-in provider.

    Args:
        provider: "openai", "ollama" or a ProviderType

    Returns:
        The provider instance

    Raises:
        ValueError: For unknown or custom provider types
    """
    try:
        provider_type = ProviderType(provider.lower() if isinstance(provider, str) else provider)
    except ValueError:
        raise ValueError(f"Unsupported provider: {provider}")

    if provider_type == ProviderType.OPENAI:
        return OpenAIProvider()
    if provider_type == ProviderType.OLLAMA:
        return OllamaProvider()
    raise ValueError("Custom provider type requires a provider instance")


__all__ = [
    "LLMProvider",
    "OpenAIProvider",
    "OllamaProvider",
    "get_provider"
]
