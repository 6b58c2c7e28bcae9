"""
Step contract.

A step is any callable ``step(context, doc)`` returning a new document, an
outcome, or an awaitable of either. Plain functions, coroutine functions,
lambdas and ``PipelineStep`` instances are all valid steps.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

InputType = TypeVar("InputType")
OutputType = TypeVar("OutputType")

Step = Callable[[Any, Any], Union[Any, Awaitable[Any]]]


class PipelineStep(Generic[InputType, OutputType], ABC):
    """
    Base class for class-based steps.

    Subclasses implement ``process(doc, context)``; instances are callable with
    the ``(context, doc)`` step signature, so they can be passed anywhere a
    function step is accepted. ``process`` may be sync or async.
    """

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def process(self, doc: InputType, context: Any) -> Any:
        """
        Transform one document.

        Args:
            doc: Input document
            context: Pipeline context

        Returns:
            The new document, a ``Pause``/``Done`` outcome, or an awaitable of either
        """
        raise NotImplementedError

    def __call__(self, context: Any, doc: InputType) -> Any:
        return self.process(doc, context)

    def __repr__(self) -> str:
        return f"{self.name}()"


async def call_step(step: Step, context: Any, doc: Any) -> Any:
    """Invoke a step and await its result if it returned an awaitable."""
    result = step(context, doc)
    if inspect.isawaitable(result):
        result = await result
    return result


def step_name(step: Any) -> str:
    """Human-readable name of a step, used in logs and resume fingerprints."""
    if isinstance(step, PipelineStep):
        return step.name
    name = getattr(step, "__qualname__", None) or getattr(step, "__name__", None)
    if name:
        return name
    return type(step).__name__


def named(step: Step, name: str) -> Step:
    """Attach a display name to a wrapper function."""
    step.__name__ = name
    step.__qualname__ = name
    return step
