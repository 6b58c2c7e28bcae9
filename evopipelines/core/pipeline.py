"""
Resumable pipeline engine.

A ``Pipeline`` owns one context and an ordered list of steps. Every step
receives the same context instance. Execution is exposed three ways:

- ``run(doc)``: drive to completion, giving up at the first pause
- ``stream(doc, resume)``: async generator of progress/pause/done events
- ``next(doc, resume)``: advance exactly one event, for caller-managed loops

Progress and pause events carry a ``ResumeState`` that can be serialized,
stored, and handed back to ``stream``/``next`` later, possibly in another
process, to continue at the same step.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Generic, List, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from .combinators import with_sequence
from .context import get_logger
from .exceptions import StaleResumeError
from .outcome import Done, Pause, to_outcome
from .steps import Step, call_step, step_name

C = TypeVar("C")
D = TypeVar("D")


class ResumeState(BaseModel):
    """
    Serializable checkpoint of a pipeline run.

    Attributes:
        next_step: Zero-based index of the step to run next
        doc: Document value at that point
        fingerprint: Identity of the step list that produced the token

    Tokens persisted with the camelCase key ``nextStep`` load as well.
    """
    model_config = ConfigDict(populate_by_name=True)

    next_step: int = Field(ge=0, alias="nextStep")
    doc: Any = None
    fingerprint: Optional[str] = None


@dataclass
class ProgressEvent(Generic[D]):
    """A step completed; ``resume`` points at the following step."""
    step: int
    doc: D
    resume: ResumeState
    type: str = field(default="progress", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "step": self.step, "doc": self.doc,
                "resume": self.resume.model_dump()}


@dataclass
class PauseEvent(Generic[D]):
    """A step paused; ``doc`` is the input it paused on and ``resume`` re-enters it."""
    step: int
    doc: D
    info: Pause
    resume: ResumeState
    type: str = field(default="pause", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "step": self.step, "doc": self.doc,
                "info": self.info.to_dict(), "resume": self.resume.model_dump()}


@dataclass
class DoneEvent(Generic[D]):
    """No steps remain."""
    doc: D
    type: str = field(default="done", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "doc": self.doc}


StreamEvent = Union[ProgressEvent, PauseEvent, DoneEvent]


class Pipeline(Generic[C, D]):
    """
    Ordered list of steps bound to a single context.

    Steps that raise are logged and treated as no-ops: the run continues with
    the unchanged document. Wrap a step in ``with_error_handling`` or
    ``with_retry`` to pause on errors instead.
    """

    def __init__(self, context: C, steps: Optional[Sequence[Step]] = None,
                 name: str = "pipeline"):
        """
        Initialize a pipeline.

        Args:
            context: Context passed to every step
            steps: Optional initial steps
            name: Name used in log messages
        """
        self.context = context
        self.name = name
        self._steps: List[Step] = list(steps or [])

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.context)

    @property
    def steps(self) -> List[Step]:
        return list(self._steps)

    @property
    def fingerprint(self) -> str:
        """Digest of the step count and step names."""
        names = "|".join(step_name(s) for s in self._steps)
        return hashlib.sha1(f"{len(self._steps)}:{names}".encode("utf-8")).hexdigest()[:16]

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"Pipeline(name={self.name!r}, steps={len(self._steps)})"

    def add_step(self, step: Step) -> 'Pipeline':
        """Append a step and return the pipeline for chaining."""
        self._steps.append(step)
        return self

    def add_multi_strategy_step(self, sub_steps: Sequence[Step],
                                stop_condition: Optional[Callable[[Any], bool]] = None) -> 'Pipeline':
        """
        Append a composite step that runs ``sub_steps`` in order on one document.

        A pause from any sub-step is returned at once. The composite stops early
        once ``stop_condition`` holds after a successful sub-step.

        Args:
            sub_steps: Strategies to run in order
            stop_condition: Optional early-stop predicate

        Returns:
            The pipeline, for chaining
        """
        return self.add_step(with_sequence(sub_steps, stop_condition=stop_condition))

    def _token(self, next_step: int, doc: Any) -> ResumeState:
        return ResumeState(next_step=next_step, doc=doc, fingerprint=self.fingerprint)

    def _resume_point(self, doc: Any, resume: Optional[Union[ResumeState, Dict[str, Any]]]):
        if resume is None:
            return 0, doc
        if not isinstance(resume, ResumeState):
            resume = ResumeState.model_validate(resume)
        if resume.fingerprint is not None and resume.fingerprint != self.fingerprint:
            raise StaleResumeError(
                f"Resume token was produced by a different step list "
                f"({resume.fingerprint} != {self.fingerprint})"
            )
        if resume.next_step > len(self._steps):
            raise StaleResumeError(
                f"Resume token points at step {resume.next_step} but pipeline has {len(self._steps)} steps"
            )
        return resume.next_step, (resume.doc if resume.doc is not None else doc)

    async def stream(self, doc: Any,
                     resume: Optional[Union[ResumeState, Dict[str, Any]]] = None) -> AsyncIterator[StreamEvent]:
        """
        Execute steps, yielding one event per step and a final ``DoneEvent``.

        A pausing step yields a ``PauseEvent`` and execution continues with the
        next step; consumers that need to suspend stop iterating at the pause.

        Args:
            doc: Initial document
            resume: Optional token from an earlier progress or pause event

        Yields:
            ProgressEvent, PauseEvent and finally DoneEvent

        Raises:
            StaleResumeError: If ``resume`` does not match this step list
        """
        index, current = self._resume_point(doc, resume)
        log = self.logger

        for index in range(index, len(self._steps)):
            step = self._steps[index]
            name = step_name(step)
            log.info(f"{self.name}: running step {index} '{name}'")

            try:
                result = await call_step(step, self.context, current)
            except Exception:
                log.exception(f"{self.name}: step {index} '{name}' raised; continuing with prior document")
                result = current

            outcome = to_outcome(result)
            if isinstance(outcome, Pause):
                log.warning(f"{self.name}: step {index} '{name}' paused ({outcome.reason})")
                yield PauseEvent(step=index, doc=current, info=outcome,
                                 resume=self._token(index, current))
                continue

            current = outcome.value if isinstance(outcome, Done) else result
            yield ProgressEvent(step=index, doc=current, resume=self._token(index + 1, current))

        log.info(f"{self.name}: completed")
        yield DoneEvent(doc=current)

    async def run(self, doc: Any) -> Any:
        """
        Drain ``stream(doc)`` and return the last progress document.

        Returns at the first pause with the document as it was before the
        pausing step. Use ``stream`` or ``next`` to tell a pause from success.
        """
        current = doc
        async for event in self.stream(doc):
            if isinstance(event, PauseEvent):
                return current
            if isinstance(event, ProgressEvent):
                current = event.doc
        return current

    async def next(self, doc: Any,
                   resume: Optional[Union[ResumeState, Dict[str, Any]]] = None) -> Union[StreamEvent, Done]:
        """
        Pull exactly one event from a fresh stream.

        Returns:
            The first event, or ``Done(doc)`` if the stream yields nothing
        """
        events = self.stream(doc, resume)
        try:
            return await events.__anext__()
        except StopAsyncIteration:
            return Done(doc)
        finally:
            await events.aclose()
