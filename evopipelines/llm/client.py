"""
LLM client for sending structured requests to chat model providers.

This module provides a small facade over the request pipeline in
``evopipelines.llm.steps``: it builds the context from the environment,
exposes async and sync completion calls, optionally validates responses
against a Pydantic model, and records each call on the context.
"""

import time
import asyncio
import logging
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel

from .context import LLMContext, create_ollama_context, create_openai_context
from .providers import LLMProvider
from .schemas import GenerationOptions, ProviderType
from .steps import CustomCheck, embed_texts, generate_prompt_and_send

logger = logging.getLogger(__name__)


class LLMClient:
    """
    A unified client for single-shot requests to an LLM provider.

    Features:
    - OpenAI and Ollama providers, or any custom ``LLMProvider``
    - Structured JSON responses, optionally parsed into Pydantic models
    - Async and sync interfaces
    - Per-call step logs on the context
    """

    def __init__(self,
                 provider: Union[str, ProviderType, LLMProvider] = ProviderType.OPENAI,
                 context: Optional[LLMContext] = None,
                 **context_overrides: Any):
        """
        Initialize the LLM client.

        Args:
            provider: "openai", "ollama", a ProviderType, or a provider instance
            context: Ready-made context; when given, ``provider`` and overrides are ignored
            **context_overrides: Passed to the context factory (model, api_key,
                endpoint, policy, session, request_timeout, check_retries, ...)
        """
        if context is None:
            context = self._create_context(provider, context_overrides)
        self.context = context
        logger.info(f"Initialized LLMClient with provider={context.provider.name}, model={context.model}")

    @staticmethod
    def _create_context(provider: Union[str, ProviderType, LLMProvider],
                        overrides: Dict[str, Any]) -> LLMContext:
        if isinstance(provider, LLMProvider):
            if provider.provider_type == ProviderType.OLLAMA:
                return create_ollama_context(provider=provider, **overrides)
            if provider.provider_type == ProviderType.OPENAI:
                return create_openai_context(provider=provider, **overrides)
            endpoint = overrides.pop("endpoint", None)
            if not endpoint:
                raise ValueError("Custom providers require an endpoint")
            return LLMContext(provider, endpoint, **overrides)

        try:
            provider_type = ProviderType(provider.lower() if isinstance(provider, str) else provider)
        except ValueError:
            raise ValueError(f"Unsupported provider: {provider}")

        if provider_type == ProviderType.OPENAI:
            return create_openai_context(**overrides)
        if provider_type == ProviderType.OLLAMA:
            return create_ollama_context(**overrides)
        raise ValueError("Custom provider type specified but no provider instance given")

    @property
    def model(self) -> str:
        return self.context.model

    async def acomplete(self,
                        system_prompt: str,
                        user_prompt: str,
                        options: Optional[Union[GenerationOptions, Dict[str, Any]]] = None,
                        custom_check: Optional[CustomCheck] = None,
                        response_model: Optional[Type[BaseModel]] = None,
                        step_name: str = "llm_call") -> Any:
        """
        Send one prompt and return the parsed response.

        Args:
            system_prompt: System message
            user_prompt: User message
            options: Generation options or a dict of them
            custom_check: Optional validation/transformation hook
            response_model: Optional Pydantic model; its JSON schema constrains
                the output and the result is validated into it
            step_name: Name recorded in the context's step logs

        Returns:
            Parsed JSON, or a ``response_model`` instance

        Raises:
            LLMRequestError: If the request fails or the response is rejected
            pydantic.ValidationError: If the response does not fit ``response_model``
        """
        if isinstance(options, dict):
            options = GenerationOptions.model_validate(options)
        options = options or GenerationOptions()
        if response_model is not None and options.json_schema is None:
            options = options.model_copy(update={
                "json_schema": response_model.model_json_schema(),
                "schema_name": options.schema_name or response_model.__name__,
            })

        start_time = time.time()
        request_metadata = {
            "provider": self.context.provider.name,
            "model": self.context.model,
            "prompt_length": len(user_prompt),
            "system_prompt_length": len(system_prompt),
        }
        if response_model:
            request_metadata["response_model"] = response_model.__name__

        try:
            result = await generate_prompt_and_send(
                self.context, system_prompt, user_prompt,
                options=options, custom_check=custom_check,
            )
            if response_model is not None:
                result = response_model.model_validate(result)
        except Exception as e:
            self.context.log_step(step_name, user_prompt, None, {
                "request": request_metadata,
                "error": str(e),
                "error_type": type(e).__name__,
                "success": False,
            })
            logger.error(f"LLM call failed: {e}")
            raise

        latency = time.time() - start_time
        self.context.log_step(step_name, user_prompt, result, {
            "request": request_metadata,
            "latency": latency,
            "success": True,
        })
        logger.info(f"LLM completion successful: {self.context.provider.name}/{self.context.model}, "
                    f"latency: {latency:.2f}s")
        return result

    def complete(self, *args: Any, **kwargs: Any) -> Any:
        """Synchronous wrapper around ``acomplete``."""
        return asyncio.run(self.acomplete(*args, **kwargs))

    async def aembed(self, texts: List[str]) -> List[List[float]]:
        """
        Embed texts with the configured provider.

        Raises:
            NotImplementedError: If the provider has no embedding endpoint
        """
        return await embed_texts(self.context, texts)
