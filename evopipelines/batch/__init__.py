"""
OpenAI batch job lifecycle.

Builds a JSONL input file incrementally, submits it as a batch, polls
without blocking, downloads the results, and streams them back to a
per-record callback. Every stage is resumable from a serialized token.
"""

from .models import (
    BatchJob,
    BatchInfo,
    TERMINAL_STATUSES,
    CHAT_COMPLETIONS_ENDPOINT,
    EMBEDDINGS_ENDPOINT,
    batch_line
)
from .client import BatchAPIClient, OpenAIBatchClient, BatchClientError
from .steps import (
    BatchContext,
    build_input_incremental_step,
    upload_input_file_step,
    create_batch_step,
    wait_until_terminal_or_pause_step,
    capture_output_files_step,
    download_outputs_step,
    process_output_incremental_step,
    apply_processing_outputs_cursor
)
from .pipeline import (
    make_single_batch_pipeline,
    from_array,
    from_async,
    create_job,
    tick_batch,
    run_batch,
    BatchTick
)

__all__ = [
    # Models
    'BatchJob',
    'BatchInfo',
    'TERMINAL_STATUSES',
    'CHAT_COMPLETIONS_ENDPOINT',
    'EMBEDDINGS_ENDPOINT',
    'batch_line',

    # Clients
    'BatchAPIClient',
    'OpenAIBatchClient',
    'BatchClientError',

    # Steps
    'BatchContext',
    'build_input_incremental_step',
    'upload_input_file_step',
    'create_batch_step',
    'wait_until_terminal_or_pause_step',
    'capture_output_files_step',
    'download_outputs_step',
    'process_output_incremental_step',
    'apply_processing_outputs_cursor',

    # Drivers
    'make_single_batch_pipeline',
    'from_array',
    'from_async',
    'create_job',
    'tick_batch',
    'run_batch',
    'BatchTick'
]
