"""
Adapters that consume a pipeline's event stream.

- ``dispatch_events``: callback-style consumer that stops at the first pause
- ``iter_json_lines``: turns a sequence of input documents into JSON lines,
  one per progress step
"""

import json
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

from .pipeline import DoneEvent, PauseEvent, Pipeline, ProgressEvent, ResumeState

logger = logging.getLogger(__name__)

Callback = Optional[Callable[..., Union[None, Awaitable[None]]]]


async def _notify(callback: Callback, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def dispatch_events(pipeline: Pipeline, doc: Any,
                          on_progress: Callback = None,
                          on_pause: Callback = None,
                          on_done: Callback = None,
                          on_error: Callback = None,
                          resume: Optional[ResumeState] = None) -> Optional[ResumeState]:
    """
    Drive ``pipeline.stream`` and route each event to a callback.

    Callbacks may be sync or async. Iteration stops at the first pause.

    Args:
        pipeline: Pipeline to drive
        doc: Initial document
        on_progress: Called with each ``ProgressEvent``
        on_pause: Called with the first ``PauseEvent``
        on_done: Called with the final document
        on_error: Called with an exception raised while streaming; without it
            the exception propagates
        resume: Optional resume token

    Returns:
        The pause event's resume token, or None when the pipeline finished
    """
    try:
        async for event in pipeline.stream(doc, resume):
            if isinstance(event, ProgressEvent):
                await _notify(on_progress, event)
            elif isinstance(event, PauseEvent):
                await _notify(on_pause, event)
                return event.resume
            elif isinstance(event, DoneEvent):
                await _notify(on_done, event.doc)
    except Exception as e:
        if on_error is None:
            raise
        logger.error(f"Pipeline '{pipeline.name}' failed: {e}")
        await _notify(on_error, e)
    return None


async def iter_json_lines(pipeline: Pipeline, docs: Iterable[Any],
                          on_pause: Callback = None) -> AsyncIterator[str]:
    """
    Run each input document through ``pipeline`` one step at a time.

    Every progress document is yielded as a newline-terminated JSON line.
    When a step pauses, ``on_pause`` is awaited with the event and the
    remaining steps for that input are skipped.

    Args:
        pipeline: Pipeline to drive
        docs: Input documents
        on_pause: Optional pause handler

    Yields:
        JSON lines
    """
    for doc in docs:
        current = doc
        resume = None
        while True:
            event = await pipeline.next(current, resume)
            if isinstance(event, PauseEvent):
                await _notify(on_pause, event)
                break
            if isinstance(event, DoneEvent):
                break
            current = event.doc
            resume = event.resume
            yield json.dumps(current, default=str) + "\n"
