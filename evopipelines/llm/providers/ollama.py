"""
Ollama provider implementation.

Builds chat calls for ``<endpoint>/api/chat`` (schema under ``format``) and
embeds texts through ``<endpoint>/api/embeddings``.
"""

import json
import asyncio
import logging
from typing import Any, Dict, List

from ...core.context import get_policy
from ...core.exceptions import LLMRequestError
from ..schemas import ChatRequest, HttpRequest, ProviderType
from .base import LLMProvider

logger = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """Provider for a local or proxied Ollama server."""

    provider_type = ProviderType.OLLAMA

    def __init__(self, embed_retry_delay: float = 1.0):
        """
        Initialize the Ollama provider.

        Args:
            embed_retry_delay: Seconds to wait between embedding attempts
        """
        self.embed_retry_delay = embed_retry_delay

    def _headers(self, context: Any) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if getattr(context, "api_key", None):
            headers["Authorization"] = f"Bearer {context.api_key}"
        return headers

    def build_request(self, context: Any, request: ChatRequest) -> HttpRequest:
        opts = request.options
        body: Dict[str, Any] = {
            "model": context.model,
            "messages": [m.model_dump() for m in request.messages],
            "stream": False,
        }
        if opts.json_schema:
            body["format"] = opts.json_schema
        body.update(opts.passthrough())

        return HttpRequest(
            url=f"{context.endpoint.rstrip('/')}/api/chat",
            headers=self._headers(context),
            body=body,
        )

    def extract_text(self, raw: Dict[str, Any]) -> str:
        message = (raw or {}).get("message") or {}
        return message.get("content") or ""

    def get_default_model(self) -> str:
        return "llama3.1"

    async def embed_texts(self, context: Any, texts: List[str]) -> List[List[float]]:
        """
        Embed each text with a separate request.

        Each input gets ``max(1, policy.retries) + 1`` attempts. A positive
        ``policy.timeout_ms`` bounds every HTTP call.

        Args:
            context: Context with ``endpoint``, ``model``, ``session`` and optional ``api_key``
            texts: Inputs to embed

        Returns:
            One embedding per input

        Raises:
            LLMRequestError: If an input cannot be embedded
        """
        url = f"{context.endpoint.rstrip('/')}/api/embeddings"
        headers = self._headers(context)
        policy = get_policy(context)
        attempts = max(1, policy.retries or 0) + 1
        timeout = policy.timeout_ms / 1000 if policy.timeout_ms and policy.timeout_ms > 0 else context.request_timeout
        log = context.logger

        vectors = []
        for text in texts:
            last_error = None
            for attempt in range(attempts):
                log.info(f'Ollama embed "{text[:48]}..." (attempt {attempt + 1}/{attempts})')
                try:
                    response = await asyncio.to_thread(
                        context.session.post, url, headers=headers,
                        json={"model": context.model, "prompt": text}, timeout=timeout,
                    )
                    if response.status_code >= 400:
                        log.error(f"Ollama HTTP {response.status_code}: {response.text[:160]}")
                        raise LLMRequestError("error", text, message=f"HTTP {response.status_code}")
                    embedding = json.loads(response.text).get("embedding")
                    if not isinstance(embedding, list):
                        raise ValueError("missing embedding")
                    vectors.append(embedding)
                    last_error = None
                    break
                except Exception as e:
                    last_error = e
                    log.warning(f"Embed failed: {e}")
                    if attempt + 1 < attempts:
                        await asyncio.sleep(self.embed_retry_delay)
            if last_error is not None:
                raise LLMRequestError(
                    "retryExceeded", text,
                    message=f'Embedding failed for "{text[:48]}...": {last_error}',
                )
        return vectors
