"""
Base provider class for LLM requests.

This module provides the abstract base class for LLM providers. A provider
knows how to turn a ``ChatRequest`` into an HTTP call and how to read the
generated text back out of the raw response; the request pipeline does the
rest.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..schemas import ChatRequest, HttpRequest, ProviderType


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    provider_type: ProviderType = ProviderType.CUSTOM

    @property
    def name(self) -> str:
        return self.provider_type.value

    @abstractmethod
    def build_request(self, context: Any, request: ChatRequest) -> HttpRequest:
        """Build the HTTP call for a chat request."""
        pass

    @abstractmethod
    def extract_text(self, raw: Dict[str, Any]) -> str:
        """Return the generated text from a raw response, or an empty string."""
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
        pass

    async def embed_texts(self, context: Any, texts: List[str]) -> List[List[float]]:
        """Embed ``texts``, one vector per input."""
        raise NotImplementedError(f"{self.name} provider does not support embeddings")
