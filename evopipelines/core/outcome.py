"""
Step outcomes.

A step either returns a new document or one of two outcomes:

- ``Done(value)``: the step finished early with an authoritative value.
- ``Pause(reason, payload)``: the step could not complete and the pipeline
  should suspend at this step.

Mappings with a boolean ``"done"`` key are accepted as outcomes too, so
steps can return plain dicts such as ``{"done": False, "reason": "timeout"}``.
A dict *document* with a top-level boolean ``done`` field is therefore
read as an outcome.
"""

from dataclasses import dataclass
from typing import Any, Generic, Mapping, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Pause:
    """Signals that a step suspended. ``reason`` is machine-readable."""
    reason: str
    payload: Any = None

    done = False

    def to_dict(self):
        return {"done": False, "reason": self.reason, "payload": self.payload}


@dataclass(frozen=True)
class Done(Generic[T]):
    """Signals that a step produced a final value."""
    value: T

    done = True

    def to_dict(self):
        return {"done": True, "value": self.value}


Outcome = Union[Pause, Done]


def is_outcome(value: Any) -> bool:
    """Return True if ``value`` is a Pause, a Done, or an outcome-shaped mapping."""
    if isinstance(value, (Pause, Done)):
        return True
    return isinstance(value, Mapping) and isinstance(value.get("done"), bool)


def to_outcome(value: Any) -> Optional[Outcome]:
    """
    Normalise an outcome-shaped value into ``Pause`` or ``Done``.

    Args:
        value: Any step result

    Returns:
        The outcome, or None when ``value`` is a plain document
    """
    if isinstance(value, (Pause, Done)):
        return value
    if not is_outcome(value):
        return None
    if value["done"]:
        return Done(value.get("value"))
    return Pause(value.get("reason", "error"), value.get("payload"))
