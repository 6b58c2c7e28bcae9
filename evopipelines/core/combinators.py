"""
Step combinators.

Each combinator takes one or more steps and returns a new step with the same
``(context, doc)`` contract. Policy knobs (retries, timeout, cache, stop
condition) are read from ``context.policy`` at call time, so one wrapped step
can be shared between pipelines with different policies.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Hashable, Optional, Sequence

from .context import get_logger, get_policy
from .exceptions import NoStrategySucceededError
from .outcome import Done, Pause, to_outcome
from .steps import Step, call_step, named, step_name


def with_error_handling(step: Step) -> Step:
    """
    Convert exceptions raised by ``step`` into ``Pause("error", payload=doc)``.

    Args:
        step: The step to guard

    Returns:
        A step that never raises
    """
    name = step_name(step)

    async def guarded(context, doc):
        try:
            return await call_step(step, context, doc)
        except Exception as e:
            get_logger(context).warning(f"Step '{name}' failed: {type(e).__name__}: {e}")
            return Pause("error", doc)

    return named(guarded, f"with_error_handling({name})")


def with_retry(step: Step) -> Step:
    """
    Retry a step while it pauses with reason ``"error"``.

    The step is wrapped in ``with_error_handling`` so exceptions count as
    error pauses. It runs at most ``policy.retries + 1`` times. Other pauses
    and ``Done`` outcomes are returned as soon as they occur. When every
    attempt fails the result is ``Pause("retryExceeded", payload=doc)``.

    Args:
        step: The step to retry

    Returns:
        The retrying step
    """
    name = step_name(step)
    guarded = with_error_handling(step)

    async def retrying(context, doc):
        policy = get_policy(context)
        max_retries = max(policy.retries or 0, 0)
        log = get_logger(context)
        attempt = 0

        while attempt <= max_retries:
            result = await guarded(context, doc)
            outcome = to_outcome(result)
            if not isinstance(outcome, Pause) or outcome.reason != "error":
                return result

            attempt += 1
            if attempt <= max_retries:
                log.info(f"Step '{name}': retrying ({attempt}/{max_retries})")
                if policy.retry_delay_ms and policy.retry_delay_ms > 0:
                    await asyncio.sleep(policy.retry_delay_ms / 1000)

        log.error(f"Step '{name}': all {max_retries + 1} attempts failed")
        return Pause("retryExceeded", doc)

    return named(retrying, f"with_retry({name})")


def _consume_late_result(log: logging.Logger, name: str) -> Callable[[asyncio.Future], None]:
    def _callback(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.debug(f"Step '{name}' failed after its timeout: {exc!r}")
    return _callback


def with_timeout(step: Step) -> Step:
    """
    Race a step against ``policy.timeout_ms``.

    When the deadline passes first the result is ``Pause("timeout", payload=doc)``.
    The underlying work is not cancelled; it keeps running and its late result
    is discarded. ``timeout_ms <= 0`` disables the guard. A step that returns
    synchronously cannot be interrupted and its result is returned as-is.

    Args:
        step: The step to guard

    Returns:
        The time-limited step
    """
    name = step_name(step)

    async def timed(context, doc):
        timeout_ms = get_policy(context).timeout_ms or 0
        result = step(context, doc)
        if not inspect.isawaitable(result):
            return result
        if timeout_ms <= 0:
            return await result

        task = asyncio.ensure_future(result)
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        if task in done:
            return task.result()

        log = get_logger(context)
        log.warning(f"Step '{name}' timed out after {timeout_ms}ms")
        task.add_done_callback(_consume_late_result(log, name))
        return Pause("timeout", doc)

    return named(timed, f"with_timeout({name})")


def with_cache(step: Step, key_fn: Callable[[Any], Hashable]) -> Step:
    """
    Memoise a step's result in ``policy.cache`` keyed by ``key_fn(doc)``.

    Only plain documents are stored; outcomes are never cached. Without a
    configured cache the step runs unmemoised.

    Args:
        step: The step to memoise
        key_fn: Derives the cache key from the input document

    Returns:
        The caching step
    """
    name = step_name(step)

    async def cached(context, doc):
        cache = get_policy(context).cache
        if cache is None:
            return await call_step(step, context, doc)

        key = key_fn(doc)
        if key in cache:
            get_logger(context).debug(f"Step '{name}': cache hit for {key!r}")
            return cache[key]

        result = await call_step(step, context, doc)
        if to_outcome(result) is None:
            cache[key] = result
        return result

    return named(cached, f"with_cache({name})")


def tap(side_effect: Callable[[Any, Any], Any]) -> Step:
    """Run ``side_effect(context, doc)`` and pass the document through unchanged."""

    async def tapped(context, doc):
        result = side_effect(context, doc)
        if inspect.isawaitable(result):
            await result
        return doc

    return named(tapped, f"tap({step_name(side_effect)})")


async def _run_sequence(steps: Sequence[Step], context: Any, doc: Any,
                        stop_condition: Optional[Callable[[Any], bool]]) -> Any:
    log = get_logger(context)
    current = doc
    for i, sub in enumerate(steps):
        result = await call_step(sub, context, current)
        outcome = to_outcome(result)
        if isinstance(outcome, Pause):
            return outcome
        current = outcome.value if isinstance(outcome, Done) else result

        if stop_condition is not None and stop_condition(current):
            log.info(f"Short-circuited after sub-step #{i + 1}")
            break
    return current


def with_sequence(steps: Sequence[Step],
                  stop_condition: Optional[Callable[[Any], bool]] = None) -> Step:
    """
    Thread a document through ``steps`` in order as a single step.

    A pause from any sub-step is returned immediately and later sub-steps are
    skipped. ``Done`` results are unwrapped and fed forward. When
    ``stop_condition`` returns True after a successful sub-step, the rest are
    skipped.

    Args:
        steps: Sub-steps sharing one document type
        stop_condition: Optional early-stop predicate

    Returns:
        The composite step
    """
    steps = list(steps)

    async def sequence(context, doc):
        return await _run_sequence(steps, context, doc, stop_condition)

    return named(sequence, f"with_sequence({', '.join(step_name(s) for s in steps)})")


def pipe_steps(*steps: Step) -> Step:
    """Variadic form of ``with_sequence`` without a stop condition."""
    return with_sequence(steps)


def compose(*steps: Step) -> Step:
    """Right-to-left ``pipe_steps``: the last step given runs first."""
    return with_sequence(list(reversed(steps)))


def with_multi_strategy(steps: Sequence[Step]) -> Step:
    """Like ``with_sequence`` but the early-stop predicate is ``policy.stop_condition``."""
    steps = list(steps)

    async def multi_strategy(context, doc):
        return await _run_sequence(steps, context, doc, get_policy(context).stop_condition)

    return named(multi_strategy, f"with_multi_strategy({', '.join(step_name(s) for s in steps)})")


def with_alternatives(steps: Sequence[Step],
                      accept: Optional[Callable[[Any], bool]] = None) -> Step:
    """
    Try a chain of strategies, each refining the previous strategy's output.

    Each strategy receives the last successful output, or the input document
    for the first strategy. The first output for which ``accept`` (or
    ``policy.stop_condition`` when ``accept`` is None) returns True is the
    result. A pause is returned immediately. A strategy that raises is
    logged and skipped. If no output is accepted, the last successful output
    is returned.

    Args:
        steps: Strategies to try in order
        accept: Optional acceptance predicate

    Returns:
        The composite step

    Raises:
        ValueError: If ``steps`` is empty
        NoStrategySucceededError: At call time, if every strategy raised
    """
    steps = list(steps)
    if not steps:
        raise ValueError("with_alternatives requires at least one strategy")

    async def alternatives(context, doc):
        log = get_logger(context)
        predicate = accept if accept is not None else get_policy(context).stop_condition
        current = doc
        produced = False

        for i, strategy in enumerate(steps):
            name = step_name(strategy)
            try:
                result = await call_step(strategy, context, current)
            except Exception as e:
                log.warning(f"Strategy #{i + 1} '{name}' failed: {type(e).__name__}: {e}")
                continue

            outcome = to_outcome(result)
            if isinstance(outcome, Pause):
                return outcome
            current = outcome.value if isinstance(outcome, Done) else result
            produced = True

            if predicate is not None and predicate(current):
                log.info(f"Accepted output of strategy #{i + 1} '{name}'")
                return current

        if not produced:
            raise NoStrategySucceededError(f"All {len(steps)} strategies failed")
        log.info("No strategy output was accepted; returning the last successful output")
        return current

    return named(alternatives, f"with_alternatives({', '.join(step_name(s) for s in steps)})")
