"""
OpenAI provider implementation.

Builds chat completion calls for ``<endpoint>/v1/chat/completions``.
Structured output uses ``response_format`` with a strict JSON schema.
"""

import logging
from typing import Any, Dict

from ..schemas import ChatRequest, HttpRequest, ProviderType
from .base import LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Provider for OpenAI-compatible chat completion APIs."""

    provider_type = ProviderType.OPENAI

    def build_request(self, context: Any, request: ChatRequest) -> HttpRequest:
        """
        Build a chat completion call.

        Args:
            context: Context carrying ``endpoint``, ``api_key`` and ``model``
            request: Messages and generation options

        Returns:
            The HTTP request
        """
        opts = request.options
        body: Dict[str, Any] = {
            "model": context.model,
            "messages": [m.model_dump() for m in request.messages],
            "stream": False,
        }
        if opts.json_schema:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": opts.schema_name or "response_schema",
                    "strict": True,
                    "schema": opts.json_schema,
                },
            }
        body.update(opts.passthrough())

        logger.debug("OpenAI: payload prepared")
        return HttpRequest(
            url=f"{context.endpoint.rstrip('/')}/v1/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {context.api_key}",
            },
            body=body,
        )

    def extract_text(self, raw: Dict[str, Any]) -> str:
        choices = (raw or {}).get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    def get_default_model(self) -> str:
        return "gpt-4o-mini"
