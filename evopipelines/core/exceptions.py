"""
Exception hierarchy for evopipelines.

Steps report recoverable conditions as ``Pause`` outcomes. The exceptions
here are raised at the edges: by facades that turn a pause into a failure, and
by the engine when it is handed a resume token it cannot honour.
"""

from typing import Any


class PipelineError(Exception):
    """Base class for all evopipelines errors."""


class StaleResumeError(PipelineError):
    """Raised when a resume token does not belong to the pipeline it is given to."""


class NoStrategySucceededError(PipelineError):
    """Raised when every strategy of an alternatives step failed."""


class MissingEnvironmentError(PipelineError, KeyError):
    """Raised when a required environment variable is not set."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Missing environment variable: {self.key}"


class LLMRequestError(PipelineError):
    """
    Raised when a generative request pipeline pauses instead of producing a value.

    Attributes:
        reason: The pause reason (``"error"``, ``"timeout"``, ``"retryExceeded"``)
        payload: The pause payload, usually the document at the failing step
    """

    def __init__(self, reason: str, payload: Any = None, message: str = None):
        super().__init__(message or f"LLM request paused: {reason}")
        self.reason = reason
        self.payload = payload


class ResponseValidationError(LLMRequestError):
    """Raised when a parsed response keeps failing the caller's check."""

    def __init__(self, payload: Any = None, attempts: int = 1):
        super().__init__(
            "validation",
            payload,
            message=f"Response rejected by custom check after {attempts} attempt(s)",
        )
        self.attempts = attempts


class ChunkingError(PipelineError):
    """Raised when the chunker cannot embed its windows."""


class BatchJobError(PipelineError):
    """Raised by the batch driver when a job cannot make progress."""

    def __init__(self, reason: str, payload: Any = None):
        super().__init__(f"Batch job paused unrecoverably: {reason}")
        self.reason = reason
        self.payload = payload


class ClusteringError(PipelineError):
    """Raised when texts cannot be grouped because their embeddings failed."""
