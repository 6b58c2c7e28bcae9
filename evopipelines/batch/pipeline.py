"""
Single-batch pipeline and its drivers.

- ``make_single_batch_pipeline``: the seven-step lifecycle pipeline
- ``from_array`` / ``from_async``: build a ``BatchContext`` from a producer
- ``create_job``: initial job document
- ``tick_batch``: advance one step (cron/serverless friendly)
- ``run_batch``: drive to completion in-process, sleeping between polls
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, List, Optional, Union

from ..core.combinators import with_retry
from ..core.exceptions import BatchJobError
from ..core.outcome import Done, Pause
from ..core.pipeline import DoneEvent, PauseEvent, Pipeline, ResumeState
from ..core.context import PipelinePolicy
from .client import BatchAPIClient
from .models import CHAT_COMPLETIONS_ENDPOINT, BatchJob
from .steps import (
    DEFAULT_IO_SLICE_BYTES,
    DEFAULT_MAX_PER_TICK,
    DEFAULT_MIN_POLL_INTERVAL_MS,
    BatchContext,
    OutputLineHandler,
    apply_processing_outputs_cursor,
    build_input_incremental_step,
    capture_output_files_step,
    create_batch_step,
    download_outputs_step,
    process_output_incremental_step,
    upload_input_file_step,
    wait_until_terminal_or_pause_step,
)

logger = logging.getLogger(__name__)

UNRECOVERABLE_REASONS = frozenset({"error", "timeout", "retryExceeded"})


def make_single_batch_pipeline(ctx: BatchContext) -> Pipeline:
    """
    Create the single-batch pipeline.

    Steps:
        0. Append input rows until the producer is exhausted
        1. Upload the input file
        2. Create the batch job
        3. Poll once; pause while the job is still running
        4. Capture output and error file ids
        5. Download output and error files
        6. Process the output file slice by slice

    Each step is wrapped in ``with_retry`` so client failures surface as
    ``retryExceeded`` pauses instead of being skipped. Step 6 only raises
    when no record of the slice was delivered yet, so a retry never hands a
    record to ``on_output_line`` twice.
    """
    return (
        Pipeline(ctx, name="single-batch")
        .add_step(with_retry(build_input_incremental_step))
        .add_step(with_retry(upload_input_file_step))
        .add_step(with_retry(create_batch_step))
        .add_step(with_retry(wait_until_terminal_or_pause_step))
        .add_step(with_retry(capture_output_files_step))
        .add_step(with_retry(download_outputs_step))
        .add_step(with_retry(process_output_incremental_step))
    )


def from_array(client: BatchAPIClient, rows: List[Any],
               on_output_line: Optional[OutputLineHandler] = None,
               max_per_tick: int = DEFAULT_MAX_PER_TICK,
               io_slice_bytes: int = DEFAULT_IO_SLICE_BYTES,
               min_poll_interval_ms: int = DEFAULT_MIN_POLL_INTERVAL_MS,
               policy: Optional[PipelinePolicy] = None,
               logger: Optional[logging.Logger] = None) -> BatchContext:
    """
    Build a batch context that feeds input from an in-memory list.

    Args:
        client: Batch API backend
        rows: Input rows; strings are written as-is, anything else as JSON
        on_output_line: Optional handler for each parsed output record
        max_per_tick: Rows appended per tick
        io_slice_bytes: Output bytes processed per tick
        min_poll_interval_ms: Delay suggested while the job runs
        policy: Execution policy for the steps
        logger: Optional logger

    Returns:
        A ready-to-use ``BatchContext``
    """
    position = 0

    def pull(max_items: int):
        nonlocal position
        take = min(max_items, len(rows) - position)
        items = rows[position:position + take]
        position += take
        return items, position >= len(rows)

    return BatchContext(client, pull, on_output_line=on_output_line, max_per_tick=max_per_tick,
                        io_slice_bytes=io_slice_bytes, min_poll_interval_ms=min_poll_interval_ms,
                        policy=policy, logger=logger)


def from_async(client: BatchAPIClient, src: AsyncIterable[Any],
               on_output_line: Optional[OutputLineHandler] = None,
               max_per_tick: int = DEFAULT_MAX_PER_TICK,
               io_slice_bytes: int = DEFAULT_IO_SLICE_BYTES,
               min_poll_interval_ms: int = DEFAULT_MIN_POLL_INTERVAL_MS,
               policy: Optional[PipelinePolicy] = None,
               logger: Optional[logging.Logger] = None) -> BatchContext:
    """
    Build a batch context that pulls input from an async iterable.

    Each tick pulls up to ``max_per_tick`` items from ``src``. Arguments are
    the same as ``from_array``.
    """
    iterator = src.__aiter__()

    async def pull(max_items: int):
        items = []
        while len(items) < max_items:
            try:
                items.append(await iterator.__anext__())
            except StopAsyncIteration:
                return items, True
        return items, False

    return BatchContext(client, pull, on_output_line=on_output_line, max_per_tick=max_per_tick,
                        io_slice_bytes=io_slice_bytes, min_poll_interval_ms=min_poll_interval_ms,
                        policy=policy, logger=logger)


def create_job(job_id: str, out_dir: str, endpoint: str = CHAT_COMPLETIONS_ENDPOINT,
               jsonl_path: Optional[str] = None, completion_window: str = "24h") -> BatchJob:
    """
    Create the initial document for a single-batch run.

    Args:
        job_id: Stable job id used in file names and logs
        out_dir: Directory for input and output artefacts
        endpoint: Target endpoint; must equal the ``url`` of every input line
        jsonl_path: Input file path (defaults to ``<out_dir>/<job_id>.input.jsonl``)
        completion_window: Batch completion window

    Returns:
        A fresh ``BatchJob``
    """
    return BatchJob(
        job_id=job_id,
        out_dir=out_dir,
        endpoint=endpoint,
        completion_window=completion_window,
        jsonl_path=jsonl_path or os.path.join(out_dir, f"{job_id}.input.jsonl"),
    )


@dataclass
class BatchTick:
    """Result of a non-final ``tick_batch`` call. Persist ``doc`` and ``resume``."""
    type: str
    doc: BatchJob
    resume: ResumeState
    info: Optional[Pause] = None

    done = False


def _as_job(doc: Union[BatchJob, Dict[str, Any]]) -> BatchJob:
    return doc if isinstance(doc, BatchJob) else BatchJob.model_validate(doc)


async def tick_batch(ctx: BatchContext, doc: Union[BatchJob, Dict[str, Any]],
                     resume: Optional[Union[ResumeState, Dict[str, Any]]] = None) -> Union[Done, BatchTick]:
    """
    Advance the batch pipeline by a single step.

    Pause cursors are already folded into the returned ``doc`` and
    ``resume.doc``. For ``batch:<status>`` pauses,
    ``info.payload["suggested_delay_ms"]`` tells the caller when to call again.

    Args:
        ctx: Batch context
        doc: Current job state, as a model or its ``model_dump()``
        resume: Token from the previous tick, as a model or a dict

    Returns:
        ``Done(job)`` once the job is fully processed, otherwise a ``BatchTick``
    """
    pipeline = make_single_batch_pipeline(ctx)
    job = _as_job(doc)
    if resume is not None:
        if not isinstance(resume, ResumeState):
            resume = ResumeState.model_validate(resume)
        if resume.doc is not None:
            resume = resume.model_copy(update={"doc": _as_job(resume.doc)})
    logger.debug(f"Ticking batch job {job.job_id} at step {resume.next_step if resume else 0}")

    event = await pipeline.next(job, resume)

    if isinstance(event, DoneEvent):
        return Done(event.doc)
    if isinstance(event, PauseEvent):
        updated = apply_processing_outputs_cursor(event.doc, event.info)
        return BatchTick("pause", updated, event.resume.model_copy(update={"doc": updated}), event.info)
    return BatchTick("progress", event.doc, event.resume)


async def run_batch(client: BatchAPIClient, endpoint: str, job_id: str, out_dir: str,
                    rows: List[Any],
                    on_output_line: Optional[OutputLineHandler] = None,
                    max_per_tick: int = DEFAULT_MAX_PER_TICK,
                    io_slice_bytes: int = DEFAULT_IO_SLICE_BYTES,
                    min_poll_interval_ms: int = DEFAULT_MIN_POLL_INTERVAL_MS,
                    policy: Optional[PipelinePolicy] = None,
                    logger: Optional[logging.Logger] = None,
                    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> BatchJob:
    """
    Run a single batch end to end in this process.

    Sleeps ``suggested_delay_ms`` between polls. Use ``tick_batch`` instead
    when the process should not stay alive while the job runs.

    Args:
        client: Batch API backend
        endpoint: Target endpoint
        job_id: Job id
        out_dir: Directory for artefacts
        rows: Input rows
        on_output_line: Optional handler for each parsed output record
        max_per_tick: Rows appended per tick
        io_slice_bytes: Output bytes processed per tick
        min_poll_interval_ms: Poll interval
        policy: Execution policy for the steps
        logger: Optional logger
        sleep: Coroutine used to wait between polls

    Returns:
        The final job state

    Raises:
        BatchJobError: If a step keeps failing
    """
    ctx = from_array(client, rows, on_output_line=on_output_line, max_per_tick=max_per_tick,
                     io_slice_bytes=io_slice_bytes, min_poll_interval_ms=min_poll_interval_ms,
                     policy=policy, logger=logger)
    current = create_job(job_id, out_dir, endpoint)
    resume = None

    while True:
        tick = await tick_batch(ctx, current, resume)
        if isinstance(tick, Done):
            ctx.logger.info(f"Batch job {job_id} finished with status {tick.value.status}")
            return tick.value

        current, resume = tick.doc, tick.resume
        if tick.type != "pause":
            continue

        reason = tick.info.reason
        if reason in UNRECOVERABLE_REASONS:
            raise BatchJobError(reason, tick.info.payload)
        if reason.startswith("batch:"):
            delay_ms = tick.info.payload.get("suggested_delay_ms", min_poll_interval_ms)
            ctx.logger.info(f"Batch {current.batch_id} is {tick.info.payload.get('status')}; "
                            f"polling again in {delay_ms}ms")
            await sleep(delay_ms / 1000)
