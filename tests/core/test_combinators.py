"""
Unit tests for the step combinators.
"""

import asyncio
import unittest

from evopipelines.core.combinators import (
    compose,
    pipe_steps,
    tap,
    with_alternatives,
    with_cache,
    with_error_handling,
    with_multi_strategy,
    with_retry,
    with_sequence,
    with_timeout,
)
from evopipelines.core.context import PipelineContext, PipelinePolicy
from evopipelines.core.exceptions import NoStrategySucceededError
from evopipelines.core.outcome import Done, Pause
from evopipelines.core.pipeline import Pipeline
from evopipelines.core.steps import step_name


class FlakyStep:
    """Raises ``fail_count`` times, then appends a marker."""

    def __init__(self, fail_count: int):
        self.fail_count = fail_count
        self.calls = 0

    def __call__(self, ctx, doc):
        self.calls += 1
        if self.calls <= self.fail_count:
            raise ValueError(f"Simulated failure (attempt {self.calls})")
        return doc + ["ok"]


def context(**policy):
    return PipelineContext(policy=PipelinePolicy(**policy))


def identity(ctx, doc):
    return doc


class TestErrorHandling(unittest.IsolatedAsyncioTestCase):

    async def test_exception_becomes_error_pause(self):
        def boom(ctx, doc):
            raise KeyError("missing")

        result = await with_error_handling(boom)(context(), {"a": 1})

        self.assertEqual(result, Pause("error", {"a": 1}))

    async def test_async_exception_becomes_error_pause(self):
        async def boom(ctx, doc):
            raise RuntimeError("async boom")

        result = await with_error_handling(boom)(context(), "doc")
        self.assertEqual(result.reason, "error")

    async def test_success_passes_through(self):
        result = await with_error_handling(lambda ctx, doc: doc + 1)(context(), 1)
        self.assertEqual(result, 2)

    def test_wrapper_name_reflects_structure(self):
        wrapped = with_retry(with_timeout(identity))
        self.assertEqual(step_name(wrapped), "with_retry(with_timeout(identity))")


class TestRetry(unittest.IsolatedAsyncioTestCase):

    async def test_always_failing_step_runs_retries_plus_one(self):
        for retries in (0, 1, 3):
            step = FlakyStep(fail_count=100)
            result = await with_retry(step)(context(retries=retries), [])

            self.assertEqual(step.calls, retries + 1)
            self.assertEqual(result, Pause("retryExceeded", []))

    async def test_recovers_after_k_failures(self):
        for k in (0, 1, 2, 3):
            step = FlakyStep(fail_count=k)
            result = await with_retry(step)(context(retries=3), [])

            self.assertEqual(result, ["ok"])
            self.assertEqual(step.calls, k + 1)

    async def test_non_error_pause_is_not_retried(self):
        calls = []

        def waiting(ctx, doc):
            calls.append(doc)
            return Pause("awaiting-input", doc)

        result = await with_retry(waiting)(context(retries=5), "doc")

        self.assertEqual(result.reason, "awaiting-input")
        self.assertEqual(len(calls), 1)

    async def test_error_pause_is_retried(self):
        calls = []

        def paused(ctx, doc):
            calls.append(doc)
            return Pause("error", doc)

        result = await with_retry(paused)(context(retries=2), "doc")

        self.assertEqual(result.reason, "retryExceeded")
        self.assertEqual(len(calls), 3)

    async def test_done_is_returned_immediately(self):
        result = await with_retry(lambda ctx, doc: Done("final"))(context(retries=2), "doc")
        self.assertEqual(result, Done("final"))

    async def test_retry_inside_pipeline(self):
        step = FlakyStep(fail_count=2)
        pipeline = Pipeline(context(retries=2)).add_step(with_retry(step))

        self.assertEqual(await pipeline.run([]), ["ok"])
        self.assertEqual(step.calls, 3)


class TestTimeout(unittest.IsolatedAsyncioTestCase):

    @staticmethod
    async def slow(ctx, doc):
        await asyncio.sleep(0.05)
        return doc + "!"

    async def test_disabled_timeout_never_pauses(self):
        for timeout_ms in (0, -1):
            result = await with_timeout(self.slow)(context(timeout_ms=timeout_ms), "doc")
            self.assertEqual(result, "doc!")

    async def test_deadline_before_completion_pauses(self):
        result = await with_timeout(self.slow)(context(timeout_ms=5), "doc")
        self.assertEqual(result, Pause("timeout", "doc"))

    async def test_generous_deadline_returns_result(self):
        result = await with_timeout(self.slow)(context(timeout_ms=2000), "doc")
        self.assertEqual(result, "doc!")

    async def test_sync_step_is_not_interrupted(self):
        result = await with_timeout(lambda ctx, doc: doc * 2)(context(timeout_ms=1), 21)
        self.assertEqual(result, 42)

    async def test_timeout_pause_is_not_retried(self):
        calls = []

        async def slow(ctx, doc):
            calls.append(doc)
            await asyncio.sleep(0.05)
            return doc

        result = await with_retry(with_timeout(slow))(context(retries=3, timeout_ms=5), "doc")

        self.assertEqual(result.reason, "timeout")
        self.assertEqual(len(calls), 1)


class TestCache(unittest.IsolatedAsyncioTestCase):

    async def test_cache_hit_suppresses_reinvocation(self):
        calls = []

        def expensive(ctx, doc):
            calls.append(doc)
            return {"id": doc["id"], "value": doc["id"] * 10}

        ctx = context(cache={})
        pipeline = Pipeline(ctx).add_step(with_cache(expensive, lambda doc: doc["id"]))

        first = await pipeline.run({"id": 7})
        second = await pipeline.run({"id": 7})

        self.assertEqual(first, second)
        self.assertEqual(len(calls), 1)
        self.assertIn(7, ctx.policy.cache)

    async def test_pauses_are_not_cached(self):
        calls = []

        def pausing(ctx, doc):
            calls.append(doc)
            return Pause("error", doc)

        ctx = context(cache={})
        cached = with_cache(pausing, lambda doc: doc)

        await cached(ctx, "k")
        await cached(ctx, "k")

        self.assertEqual(len(calls), 2)
        self.assertEqual(ctx.policy.cache, {})

    async def test_no_cache_runs_unmemoised(self):
        calls = []
        cached = with_cache(lambda ctx, doc: calls.append(doc) or doc, lambda doc: doc)

        await cached(context(), "k")
        await cached(context(), "k")

        self.assertEqual(len(calls), 2)


class TestTap(unittest.IsolatedAsyncioTestCase):

    async def test_tap_returns_doc_unchanged(self):
        seen = []
        result = await tap(lambda ctx, doc: seen.append(doc))(context(), {"a": 1})
        self.assertEqual(result, {"a": 1})
        self.assertEqual(seen, [{"a": 1}])

    async def test_async_tap(self):
        seen = []

        async def record(ctx, doc):
            seen.append(doc)

        self.assertEqual(await tap(record)(context(), 3), 3)
        self.assertEqual(seen, [3])


class TestSequence(unittest.IsolatedAsyncioTestCase):

    async def test_pipe_steps_threads_document(self):
        step = pipe_steps(lambda ctx, doc: doc + 1, lambda ctx, doc: doc * 3)
        self.assertEqual(await step(context(), 1), 6)

    async def test_compose_runs_right_to_left(self):
        step = compose(lambda ctx, doc: doc + 1, lambda ctx, doc: doc * 3)
        self.assertEqual(await step(context(), 1), 4)

    async def test_done_is_fed_forward(self):
        step = with_sequence([lambda ctx, doc: Done(10), lambda ctx, doc: doc + 1])
        self.assertEqual(await step(context(), 0), 11)

    async def test_pause_stops_sequence(self):
        later = []
        step = with_sequence([
            lambda ctx, doc: Pause("timeout", doc),
            lambda ctx, doc: later.append(doc),
        ])
        result = await step(context(), "doc")
        self.assertEqual(result, Pause("timeout", "doc"))
        self.assertEqual(later, [])

    async def test_stop_condition(self):
        step = with_sequence(
            [lambda ctx, doc: doc + 1] * 5,
            stop_condition=lambda doc: doc >= 2,
        )
        self.assertEqual(await step(context(), 0), 2)

    async def test_multi_strategy_reads_policy_stop_condition(self):
        step = with_multi_strategy([lambda ctx, doc: doc + 1] * 5)
        self.assertEqual(await step(context(stop_condition=lambda doc: doc >= 3), 0), 3)
        self.assertEqual(await step(context(), 0), 5)


class TestAlternatives(unittest.IsolatedAsyncioTestCase):

    async def test_first_accepted_output_wins(self):
        later = []
        step = with_alternatives(
            [
                lambda ctx, doc: len(doc),
                lambda ctx, doc: doc * 2,
                lambda ctx, doc: later.append(doc),
            ],
            accept=lambda out: out > 5,
        )
        self.assertEqual(await step(context(), "abcd"), 8)
        self.assertEqual(later, [])

    async def test_falls_back_to_policy_stop_condition(self):
        step = with_alternatives([lambda ctx, doc: doc + 1, lambda ctx, doc: doc + 100])
        result = await step(context(stop_condition=lambda out: out == 1), 0)
        self.assertEqual(result, 1)

    async def test_returns_last_output_when_none_accepted(self):
        step = with_alternatives([lambda ctx, doc: doc + 1, lambda ctx, doc: doc + 2],
                                 accept=lambda out: False)
        self.assertEqual(await step(context(), 0), 3)

    async def test_failing_strategy_is_skipped(self):
        def boom(ctx, doc):
            raise ValueError("nope")

        step = with_alternatives([boom, lambda ctx, doc: doc + "!"])
        self.assertEqual(await step(context(), "x"), "x!")

    async def test_all_failing_raises(self):
        def boom(ctx, doc):
            raise ValueError("nope")

        step = with_alternatives([boom, boom])
        with self.assertRaises(NoStrategySucceededError):
            await step(context(), "x")

    async def test_pause_is_returned(self):
        step = with_alternatives([lambda ctx, doc: Pause("batch:in_progress", doc)])
        result = await step(context(), "x")
        self.assertEqual(result.reason, "batch:in_progress")

    def test_empty_strategy_list(self):
        with self.assertRaises(ValueError):
            with_alternatives([])


if __name__ == "__main__":
    unittest.main()
