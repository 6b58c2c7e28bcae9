"""
Steps for a single request/response exchange with a chat model.

The request pipeline threads one document through five shapes:
``ChatRequest`` -> ``HttpRequest`` -> raw response dict -> sanitized text ->
parsed JSON. Only the HTTP call is retried and time-limited; the other steps
pause with reason ``"error"`` when they fail.

Parsed responses share the pipeline's reserved-field rule: a JSON object with
a boolean top-level ``done`` key is read as an outcome, not as a document.
Ask the model for a different field name.
"""

import re
import json
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.combinators import tap, with_error_handling, with_retry, with_timeout
from ..core.exceptions import LLMRequestError, ResponseValidationError
from ..core.pipeline import DoneEvent, PauseEvent, Pipeline
from ..core.steps import named
from .context import LLMContext
from .schemas import ChatMessage, ChatRequest, GenerationOptions, HttpRequest

logger = logging.getLogger(__name__)

CustomCheck = Callable[[Any], Any]

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[\]}])")
_NEWLINES = re.compile(r"\s*\n\s*")


def build_payload_step(ctx: LLMContext, request: ChatRequest) -> HttpRequest:
    """Turn a chat request into the provider's HTTP call."""
    return ctx.provider.build_request(ctx, request)


async def call_api_step(ctx: LLMContext, http: HttpRequest) -> Dict[str, Any]:
    """
    POST the request and return the decoded JSON body.

    The blocking ``requests`` call runs in a worker thread so the timeout
    combinator can stop waiting on it.

    Raises:
        requests.HTTPError: For status codes >= 400
    """
    response = await asyncio.to_thread(
        ctx.session.post, http.url, headers=http.headers, json=http.body,
        timeout=ctx.request_timeout,
    )
    if response.status_code >= 400:
        ctx.logger.error(f"{ctx.provider.name} HTTP {response.status_code}: {response.text[:200]}")
        response.raise_for_status()
    return response.json()


call_with_policies = named(with_retry(with_timeout(call_api_step)), "call_with_policies")


def sanitize_json_text(text: str) -> str:
    """
    Clean up common defects in model-produced JSON.

    Strips a surrounding ``` or ```json fence, drops trailing commas before a
    closing bracket, collapses newlines, and appends a closing brace when an
    object starts with ``{`` but does not end with ``}``.

    Args:
        text: Raw model output

    Returns:
        Text that is more likely to parse
    """
    cleaned = text.strip()
    fenced = _FENCE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1)
    cleaned = _TRAILING_COMMA.sub(r"\1", cleaned)
    cleaned = _NEWLINES.sub(" ", cleaned).strip()
    if cleaned.startswith("{") and not cleaned.endswith("}"):
        cleaned += "}"
    return cleaned


def extract_content_step(ctx: LLMContext, raw: Dict[str, Any]) -> str:
    """
    Read the generated text out of the provider's response envelope.

    Raises:
        ValueError: If the response carries no text
    """
    text = ctx.provider.extract_text(raw)
    if not text or not text.strip():
        raise ValueError(f"Empty response from {ctx.provider.name}")
    return sanitize_json_text(text)


def parse_json_step(ctx: LLMContext, text: str) -> Any:
    """Parse sanitized text as JSON."""
    return json.loads(text)


def _log_request(ctx: LLMContext, request: ChatRequest) -> None:
    ctx.logger.info(f"Sending {len(request.messages)} message(s) to {ctx.provider.name}/{ctx.model}")


def _log_response(ctx: LLMContext, parsed: Any) -> None:
    ctx.logger.debug(f"Parsed response from {ctx.provider.name}: {type(parsed).__name__}")


def build_request_pipeline(ctx: LLMContext) -> Pipeline:
    """Assemble the request pipeline for ``ctx``."""
    return (
        Pipeline(ctx, name=f"llm:{ctx.provider.name}")
        .add_step(tap(_log_request))
        .add_step(with_error_handling(build_payload_step))
        .add_step(call_with_policies)
        .add_step(with_error_handling(extract_content_step))
        .add_step(with_error_handling(parse_json_step))
        .add_step(tap(_log_response))
    )


async def _run_once(pipeline: Pipeline, request: ChatRequest) -> Any:
    events = pipeline.stream(request)
    try:
        async for event in events:
            if isinstance(event, PauseEvent):
                raise LLMRequestError(
                    event.info.reason, event.info.payload,
                    message=f"LLM request paused at step {event.step}: {event.info.reason}",
                )
            if isinstance(event, DoneEvent):
                return event.doc
    finally:
        await events.aclose()


async def generate_prompt_and_send(ctx: LLMContext,
                                   system_prompt: str,
                                   user_prompt: str,
                                   options: Optional[Union[GenerationOptions, Dict[str, Any]]] = None,
                                   custom_check: Optional[CustomCheck] = None) -> Any:
    """
    Send one prompt and return the parsed JSON response.

    ``custom_check(parsed)`` may be sync or async. Returning True accepts the
    parsed value, a falsy value rejects it, and any other value replaces it.
    A rejection re-runs the whole request up to ``ctx.check_retries`` more
    times.

    Args:
        ctx: Request context
        system_prompt: System message
        user_prompt: User message
        options: Generation options or a dict of them
        custom_check: Optional validation/transformation hook

    Returns:
        The parsed (and possibly transformed) response

    Raises:
        LLMRequestError: If the pipeline pauses (error, timeout, retries exhausted)
        ResponseValidationError: If every attempt is rejected by ``custom_check``
    """
    if isinstance(options, dict):
        options = GenerationOptions.model_validate(options)
    request = ChatRequest(
        messages=[
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_prompt),
        ],
        options=options or GenerationOptions(),
    )
    pipeline = build_request_pipeline(ctx)
    attempts = max(ctx.check_retries or 0, 0) + 1

    parsed = None
    for attempt in range(1, attempts + 1):
        parsed = await _run_once(pipeline, request)
        if custom_check is None:
            return parsed

        verdict = custom_check(parsed)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        if verdict is True:
            return parsed
        if verdict:
            return verdict
        ctx.logger.warning(f"Response rejected by custom check (attempt {attempt}/{attempts})")

    raise ResponseValidationError(parsed, attempts)


async def embed_texts(ctx: LLMContext, texts: List[str]) -> List[List[float]]:
    """Embed ``texts`` with the context's provider."""
    return await ctx.provider.embed_texts(ctx, texts)


def make_embed_fn(ctx: LLMContext) -> Callable[[List[str]], Any]:
    """Bind ``embed_texts`` to ``ctx`` for use as a chunker embedding function."""

    async def embed(texts: List[str]) -> List[List[float]]:
        return await embed_texts(ctx, texts)

    return embed
