"""
Context for chat request pipelines, and helpers that build it from the
environment.
"""

import logging
from typing import Any, Dict, Optional, Union

import requests

from ..core.context import PipelineContext, PipelinePolicy
from ..core.env import (
    OLLAMA_API_KEY,
    OLLAMA_ENDPOINT,
    OLLAMA_MODEL,
    OPENAI_API_KEY,
    OPENAI_ENDPOINT,
    OPENAI_MODEL,
    get_env,
)
from .providers import LLMProvider, OllamaProvider, OpenAIProvider, get_provider
from .schemas import ProviderType

DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com"
DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"


class LLMContext(PipelineContext):
    """
    Pipeline context for chat requests.

    Carries the provider, its connection settings, a shared ``requests``
    session, and the policy used for retries and timeouts around the HTTP call.
    """

    def __init__(self,
                 provider: Union[str, ProviderType, LLMProvider],
                 endpoint: str,
                 model: Optional[str] = None,
                 api_key: Optional[str] = None,
                 policy: Optional[PipelinePolicy] = None,
                 logger: Optional[logging.Logger] = None,
                 session: Optional[requests.Session] = None,
                 request_timeout: float = 60.0,
                 check_retries: int = 0,
                 metadata: Optional[Dict[str, Any]] = None):
        """
        Initialize an LLM context.

        Args:
            provider: Provider instance, or the name of a built-in provider
            endpoint: Base URL of the API
            model: Model name (defaults to the provider's default)
            api_key: Optional API key
            policy: Retry/timeout policy for the HTTP call
            logger: Optional logger
            session: Optional requests session
            request_timeout: Socket timeout in seconds for each HTTP call
            check_retries: Extra full attempts when a response fails validation
            metadata: Optional run metadata
        """
        super().__init__(policy=policy, logger=logger or logging.getLogger("evopipelines.llm"),
                         metadata=metadata)
        self.provider = provider if isinstance(provider, LLMProvider) else get_provider(provider)
        self.endpoint = endpoint
        self.model = model or self.provider.get_default_model()
        self.api_key = api_key
        self.session = session or requests.Session()
        self.request_timeout = request_timeout
        self.check_retries = check_retries

    def __repr__(self) -> str:
        return f"LLMContext(provider={self.provider.name!r}, model={self.model!r}, endpoint={self.endpoint!r})"


def _merge_policy(defaults: PipelinePolicy, override: Optional[Union[PipelinePolicy, Dict[str, Any]]]) -> PipelinePolicy:
    if override is None:
        return defaults
    if isinstance(override, PipelinePolicy):
        return override
    merged = vars(defaults).copy()
    merged.update(override)
    return PipelinePolicy(**merged)


def create_openai_context(**overrides: Any) -> LLMContext:
    """
    Build an OpenAI context from the environment.

    Reads OPENAI_ENDPOINT, OPENAI_API_KEY and OPENAI_MODEL. Keyword arguments
    override any environment value or ``LLMContext`` parameter; ``policy``
    may be a ``PipelinePolicy`` or a dict of policy fields.

    Raises:
        MissingEnvironmentError: If no API key is configured
    """
    endpoint = overrides.pop("endpoint", None) or get_env(OPENAI_ENDPOINT, DEFAULT_OPENAI_ENDPOINT)
    api_key = overrides.pop("api_key", None) or get_env(OPENAI_API_KEY)
    model = overrides.pop("model", None) or get_env(OPENAI_MODEL, None)
    policy = _merge_policy(PipelinePolicy(), overrides.pop("policy", None))
    provider = overrides.pop("provider", None) or OpenAIProvider()
    return LLMContext(provider, endpoint, model=model, api_key=api_key, policy=policy, **overrides)


def create_ollama_context(**overrides: Any) -> LLMContext:
    """
    Build an Ollama context from the environment.

    Reads OLLAMA_ENDPOINT, OLLAMA_MODEL and OLLAMA_API_KEY. The default
    policy retries twice with a 12 second timeout.
    """
    endpoint = overrides.pop("endpoint", None) or get_env(OLLAMA_ENDPOINT, DEFAULT_OLLAMA_ENDPOINT)
    model = overrides.pop("model", None) or get_env(OLLAMA_MODEL, None)
    api_key = overrides.pop("api_key", None) or get_env(OLLAMA_API_KEY, None)
    policy = _merge_policy(PipelinePolicy(retries=2, timeout_ms=12_000), overrides.pop("policy", None))
    provider = overrides.pop("provider", None) or OllamaProvider()
    return LLMContext(provider, endpoint, model=model, api_key=api_key, policy=policy, **overrides)
