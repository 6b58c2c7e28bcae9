"""
Core components for building resumable evolving-document pipelines.

This package provides the outcome model, the pipeline engine with its
resume tokens and stream events, and the combinators that add retry,
timeout, caching and fallback behavior to any step.
"""

from .outcome import Pause, Done, Outcome, is_outcome, to_outcome
from .context import PipelineContext, PipelinePolicy
from .steps import PipelineStep, call_step
from .pipeline import (
    Pipeline,
    ResumeState,
    ProgressEvent,
    PauseEvent,
    DoneEvent,
    StreamEvent
)
from .combinators import (
    with_error_handling,
    with_retry,
    with_timeout,
    with_cache,
    tap,
    with_sequence,
    pipe_steps,
    compose,
    with_multi_strategy,
    with_alternatives
)
from .adapters import dispatch_events, iter_json_lines
from .exceptions import (
    PipelineError,
    StaleResumeError,
    NoStrategySucceededError,
    MissingEnvironmentError,
    ClusteringError
)

__all__ = [
    # Outcomes
    'Pause',
    'Done',
    'Outcome',
    'is_outcome',
    'to_outcome',

    # Engine
    'PipelineContext',
    'PipelinePolicy',
    'PipelineStep',
    'call_step',
    'Pipeline',
    'ResumeState',
    'ProgressEvent',
    'PauseEvent',
    'DoneEvent',
    'StreamEvent',

    # Combinators
    'with_error_handling',
    'with_retry',
    'with_timeout',
    'with_cache',
    'tap',
    'with_sequence',
    'pipe_steps',
    'compose',
    'with_multi_strategy',
    'with_alternatives',

    # Adapters
    'dispatch_events',
    'iter_json_lines',

    # Errors
    'PipelineError',
    'StaleResumeError',
    'NoStrategySucceededError',
    'MissingEnvironmentError',
    'ClusteringError'
]
