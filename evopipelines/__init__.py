"""
evopipelines

Resumable, composable pipelines for LLM request cycles, batch jobs and
semantic text chunking.

Features:
- Steps of any document type, sync or async
- Pause and resume from a serializable token
- Retry, timeout, cache, tap and fallback combinators
- Ready-made step sets for chunking, OpenAI batch jobs and chat requests
"""

from .core import (
    Pipeline,
    PipelineContext,
    PipelinePolicy,
    PipelineStep,
    ResumeState,
    Pause,
    Done,
    is_outcome
)

__version__ = "0.1.0"

__all__ = [
    'Pipeline',
    'PipelineContext',
    'PipelinePolicy',
    'PipelineStep',
    'ResumeState',
    'Pause',
    'Done',
    'is_outcome'
]
