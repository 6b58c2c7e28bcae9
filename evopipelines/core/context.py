"""
Pipeline context and execution policy.

A single context object is shared by reference with every step of a pipeline
run. It carries the logger, the ``PipelinePolicy`` that the combinators read,
and an observability trail of step logs and metadata.
"""

import json
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, MutableMapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class PipelinePolicy:
    """
    Execution policy consulted by the combinators.

    Attributes:
        retries: Additional attempts made by ``with_retry`` after the first
        timeout_ms: Deadline for ``with_timeout``; values <= 0 disable it
        retry_delay_ms: Pause between retry attempts
        cache: Store used by ``with_cache``; None disables memoisation
        stop_condition: Early-stop predicate for multi-strategy steps
    """
    retries: int = 0
    timeout_ms: int = 0
    retry_delay_ms: int = 0
    cache: Optional[MutableMapping[Any, Any]] = None
    stop_condition: Optional[Callable[[Any], bool]] = None


class PipelineContext:
    """
    Shared state for a pipeline run.

    Stores:
    - The logger used by the engine and the combinators
    - The execution policy (retries, timeout, cache, stop condition)
    - Global metadata and per-step logs for observability

    Domain contexts subclass this and add their collaborators.
    """

    def __init__(self,
                 policy: Optional[PipelinePolicy] = None,
                 logger: Optional[logging.Logger] = None,
                 metadata: Optional[Dict[str, Any]] = None):
        """
        Initialize a new pipeline context.

        Args:
            policy: Execution policy; defaults to no retries, no timeout, no cache
            logger: Logger for the run; defaults to ``evopipelines.pipeline``
            metadata: Optional dictionary of global metadata for the run
        """
        self.policy = policy or PipelinePolicy()
        self.logger = logger or logging.getLogger("evopipelines.pipeline")
        self.metadata = metadata or {}
        self.step_logs = []

    def log_step(self, step_name: str, input_data: Any, output_data: Any,
                 extra: Optional[Dict[str, Any]] = None) -> None:
        """
        Record the execution of a step.

        Args:
            step_name: Name of the step
            input_data: Document the step received
            output_data: Document or outcome the step produced
            extra: Additional metadata about the execution
        """
        self.step_logs.append({
            "step": step_name,
            "input": input_data,
            "output": output_data,
            "extra": extra or {},
            "timestamp": time.time()
        })
        logger.debug(f"Logged step {step_name}")

    def add_metadata(self, key: str, value: Any) -> None:
        """Add or update a metadata field."""
        self.metadata[key] = value

    def to_json(self) -> str:
        """Serialize metadata and step logs to JSON."""
        return json.dumps({
            "metadata": self.metadata,
            "step_logs": self.step_logs,
        }, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> 'PipelineContext':
        """Reconstruct a context from JSON. Policy and logger take their defaults."""
        data = json.loads(json_str)
        context = cls(metadata=data.get("metadata", {}))
        context.step_logs = data.get("step_logs", [])
        return context


def get_policy(context: Any) -> PipelinePolicy:
    """Return the context's policy, or a default one when it has none."""
    policy = getattr(context, "policy", None)
    return policy if policy is not None else PipelinePolicy()


def get_logger(context: Any) -> logging.Logger:
    """Return the context's logger, falling back to the package logger."""
    ctx_logger = getattr(context, "logger", None)
    return ctx_logger if ctx_logger is not None else logging.getLogger("evopipelines.pipeline")
