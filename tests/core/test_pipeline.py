"""
Unit tests for the pipeline engine.

Tests event streaming, resume tokens, pauses, and the engine's handling of
failing steps.
"""

import json
import unittest
from typing import Any, Dict

from evopipelines.core.context import PipelineContext
from evopipelines.core.exceptions import StaleResumeError
from evopipelines.core.outcome import Done, Pause
from evopipelines.core.pipeline import (
    DoneEvent,
    PauseEvent,
    Pipeline,
    ProgressEvent,
    ResumeState,
)
from evopipelines.core.steps import PipelineStep


def add_one(ctx, doc):
    return doc + 1


async def double(ctx, doc):
    return doc * 2


class AddFieldStep(PipelineStep[Dict[str, Any], Dict[str, Any]]):
    """Class-based step that adds a field to the document."""

    def __init__(self, field_name: str, field_value: Any):
        self.field_name = field_name
        self.field_value = field_value

    def process(self, doc: Dict[str, Any], context: PipelineContext) -> Dict[str, Any]:
        result = dict(doc)
        result[self.field_name] = self.field_value
        return result


class PauseOnceStep(PipelineStep[int, int]):
    """Pauses on its first call and adds ten afterwards."""

    def __init__(self):
        self.calls = 0

    def process(self, doc: int, context: PipelineContext):
        self.calls += 1
        if self.calls == 1:
            return Pause("awaiting-input", {"seen": doc})
        return doc + 10


async def collect(pipeline, doc, resume=None):
    return [event async for event in pipeline.stream(doc, resume)]


class TestPipelineStream(unittest.IsolatedAsyncioTestCase):
    """Tests for Pipeline.stream."""

    async def test_events_in_step_order(self):
        """Every step yields a progress event, then a done event."""
        pipeline = Pipeline(PipelineContext()).add_step(add_one).add_step(double)

        events = await collect(pipeline, 1)

        self.assertEqual([e.type for e in events], ["progress", "progress", "done"])
        self.assertEqual(events[0].doc, 2)
        self.assertEqual(events[0].resume.next_step, 1)
        self.assertEqual(events[1].doc, 4)
        self.assertEqual(events[1].resume.next_step, 2)
        self.assertEqual(events[2].doc, 4)

    async def test_empty_pipeline_yields_done(self):
        events = await collect(Pipeline(PipelineContext()), "doc")
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], DoneEvent)
        self.assertEqual(events[0].doc, "doc")

    async def test_class_based_steps(self):
        pipeline = (
            Pipeline(PipelineContext())
            .add_step(AddFieldStep("a", 1))
            .add_step(AddFieldStep("b", 2))
        )
        result = await pipeline.run({"text": "hi"})
        self.assertEqual(result, {"text": "hi", "a": 1, "b": 2})

    async def test_done_is_unwrapped(self):
        pipeline = (
            Pipeline(PipelineContext())
            .add_step(lambda ctx, doc: Done(doc * 100))
            .add_step(add_one)
        )
        events = await collect(pipeline, 1)
        self.assertEqual(events[0].doc, 100)
        self.assertEqual(events[1].doc, 101)

    async def test_raising_step_is_a_no_op(self):
        """A step that raises is logged and the prior document carries forward."""
        def boom(ctx, doc):
            raise RuntimeError("boom")

        pipeline = Pipeline(PipelineContext()).add_step(boom).add_step(add_one)

        with self.assertLogs("evopipelines.pipeline", level="ERROR"):
            events = await collect(pipeline, 5)

        self.assertIsInstance(events[0], ProgressEvent)
        self.assertEqual(events[0].doc, 5)
        self.assertEqual(events[1].doc, 6)

    async def test_pause_event_carries_pre_step_doc(self):
        step = PauseOnceStep()
        pipeline = Pipeline(PipelineContext()).add_step(add_one).add_step(step).add_step(add_one)

        events = await collect(pipeline, 1)

        pause = events[1]
        self.assertIsInstance(pause, PauseEvent)
        self.assertEqual(pause.step, 1)
        self.assertEqual(pause.doc, 2)
        self.assertEqual(pause.info.reason, "awaiting-input")
        self.assertEqual(pause.info.payload, {"seen": 2})
        self.assertEqual(pause.resume.next_step, 1)
        self.assertEqual(pause.resume.doc, 2)
        # Iteration continues past a pause with the unchanged document
        self.assertEqual(events[2].doc, 3)
        self.assertIsInstance(events[3], DoneEvent)

    async def test_dict_pause_is_an_outcome(self):
        pipeline = Pipeline(PipelineContext()).add_step(
            lambda ctx, doc: {"done": False, "reason": "timeout"}
        )
        events = await collect(pipeline, {"x": 1})
        self.assertIsInstance(events[0], PauseEvent)
        self.assertEqual(events[0].info.reason, "timeout")


class TestResume(unittest.IsolatedAsyncioTestCase):
    """Tests for resume tokens."""

    def make_pipeline(self):
        return (
            Pipeline(PipelineContext())
            .add_step(add_one)
            .add_step(double)
            .add_step(add_one)
            .add_step(double)
        )

    async def test_resume_matches_continuous_run(self):
        """Resuming at index i is indistinguishable from reaching i naturally."""
        pipeline = self.make_pipeline()
        full = await collect(pipeline, 3)

        for i, event in enumerate(full[:-1]):
            resumed = await collect(pipeline, None, event.resume)
            self.assertEqual(
                [e.to_dict() for e in resumed],
                [e.to_dict() for e in full[i + 1:]],
            )

    async def test_resume_from_serialized_token(self):
        pipeline = self.make_pipeline()
        first = await pipeline.next(3)
        token = json.loads(json.dumps(first.resume.model_dump()))

        events = await collect(pipeline, None, token)

        self.assertEqual(events[-1].doc, ((3 + 1) * 2 + 1) * 2)

    async def test_paused_step_is_reentered(self):
        step = PauseOnceStep()
        pipeline = Pipeline(PipelineContext()).add_step(add_one).add_step(step)

        progress = await pipeline.next(1)
        pause = await pipeline.next(progress.doc, progress.resume)
        self.assertIsInstance(pause, PauseEvent)
        self.assertEqual(step.calls, 1)

        events = await collect(pipeline, None, pause.resume)

        self.assertGreater(step.calls, 1)
        self.assertEqual(events[0].step, 1)
        self.assertEqual(events[0].doc, 12)

    async def test_stale_fingerprint_is_rejected(self):
        pipeline = self.make_pipeline()
        first = await pipeline.next(3)
        pipeline.add_step(add_one)

        with self.assertRaises(StaleResumeError):
            await collect(pipeline, None, first.resume)

    async def test_out_of_range_step_is_rejected(self):
        pipeline = self.make_pipeline()
        with self.assertRaises(StaleResumeError):
            await collect(pipeline, 0, ResumeState(next_step=9, doc=0))

    async def test_token_without_fingerprint_is_accepted(self):
        pipeline = self.make_pipeline()
        events = await collect(pipeline, None, {"next_step": 3, "doc": 5})
        self.assertEqual(events[0].doc, 10)

    async def test_camel_case_token_is_accepted(self):
        pipeline = self.make_pipeline()
        events = await collect(pipeline, None, {"nextStep": 3, "doc": 5})

        self.assertEqual(events[0].step, 3)
        self.assertEqual(events[0].doc, 10)
        self.assertEqual(ResumeState.model_validate({"nextStep": 2}).next_step, 2)
        self.assertIn("next_step", events[0].resume.model_dump())

    def test_fingerprint_tracks_step_list(self):
        a = self.make_pipeline()
        b = self.make_pipeline()
        self.assertEqual(a.fingerprint, b.fingerprint)
        b.add_step(add_one)
        self.assertNotEqual(a.fingerprint, b.fingerprint)
        self.assertEqual(len(b), 5)


class TestRunAndNext(unittest.IsolatedAsyncioTestCase):
    """Tests for Pipeline.run and Pipeline.next."""

    async def test_run_returns_final_doc(self):
        pipeline = Pipeline(PipelineContext()).add_step(add_one).add_step(double)
        self.assertEqual(await pipeline.run(1), 4)

    async def test_run_stops_at_first_pause(self):
        pipeline = (
            Pipeline(PipelineContext())
            .add_step(add_one)
            .add_step(PauseOnceStep())
            .add_step(double)
        )
        self.assertEqual(await pipeline.run(1), 2)

    async def test_next_returns_one_event(self):
        pipeline = Pipeline(PipelineContext()).add_step(add_one).add_step(double)

        event = await pipeline.next(1)
        self.assertIsInstance(event, ProgressEvent)
        self.assertEqual(event.doc, 2)

        event = await pipeline.next(event.doc, event.resume)
        self.assertEqual(event.doc, 4)

        event = await pipeline.next(event.doc, event.resume)
        self.assertIsInstance(event, DoneEvent)

    async def test_add_multi_strategy_step(self):
        calls = []

        def strategy(label, value):
            def run(ctx, doc):
                calls.append(label)
                return doc + value
            return run

        pipeline = Pipeline(PipelineContext()).add_multi_strategy_step(
            [strategy("a", 1), strategy("b", 10), strategy("c", 100)],
            stop_condition=lambda doc: doc > 5,
        )

        self.assertEqual(await pipeline.run(0), 11)
        self.assertEqual(calls, ["a", "b"])

    async def test_multi_strategy_pause_short_circuits(self):
        later = []
        pipeline = Pipeline(PipelineContext()).add_multi_strategy_step([
            lambda ctx, doc: Pause("error", doc),
            lambda ctx, doc: later.append(doc) or doc,
        ])

        event = await pipeline.next(1)

        self.assertIsInstance(event, PauseEvent)
        self.assertEqual(later, [])


class TestPipelineContext(unittest.TestCase):
    """Tests for the PipelineContext class."""

    def test_init(self):
        context = PipelineContext(metadata={"test": "value"})
        self.assertEqual(context.metadata, {"test": "value"})
        self.assertEqual(context.step_logs, [])
        self.assertEqual(context.policy.retries, 0)

    def test_log_step(self):
        context = PipelineContext()
        context.log_step("TestStep", ["input"], ["output"], {"extra": "data"})

        self.assertEqual(len(context.step_logs), 1)
        log = context.step_logs[0]
        self.assertEqual(log["step"], "TestStep")
        self.assertEqual(log["input"], ["input"])
        self.assertEqual(log["output"], ["output"])
        self.assertEqual(log["extra"], {"extra": "data"})

    def test_serialization(self):
        context = PipelineContext(metadata={"run": "r1"})
        context.log_step("Step", "in", "out")

        restored = PipelineContext.from_json(context.to_json())

        self.assertEqual(restored.metadata, {"run": "r1"})
        self.assertEqual(restored.step_logs[0]["step"], "Step")


if __name__ == "__main__":
    unittest.main()
