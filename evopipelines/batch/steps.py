"""
Batch job lifecycle steps.

input construction -> upload -> create batch -> wait -> capture output
files -> download -> incremental output processing.

Every step is non-blocking. Long waits are expressed as pauses: the caller
persists the resume token and calls again later. Client calls that are
synchronous run in a worker thread.
"""

import os
import json
import codecs
import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from ..core.context import PipelineContext, PipelinePolicy
from ..core.outcome import Pause
from .client import BatchAPIClient
from .models import BatchJob

logger = logging.getLogger(__name__)

PullInputLines = Callable[[int], Union[Tuple[List[Any], bool], Awaitable[Tuple[List[Any], bool]]]]
OutputLineHandler = Callable[[Any], Union[None, Awaitable[None]]]

DEFAULT_MAX_PER_TICK = 1000
DEFAULT_IO_SLICE_BYTES = 128 * 1024
DEFAULT_MIN_POLL_INTERVAL_MS = 60_000


class BatchContext(PipelineContext):
    """
    Execution environment for the batch pipeline.

    Most callers build one with ``from_array`` or ``from_async`` instead of
    constructing it directly.
    """

    def __init__(self,
                 client: BatchAPIClient,
                 pull_input_lines: PullInputLines,
                 on_output_line: Optional[OutputLineHandler] = None,
                 max_per_tick: int = DEFAULT_MAX_PER_TICK,
                 io_slice_bytes: int = DEFAULT_IO_SLICE_BYTES,
                 min_poll_interval_ms: int = DEFAULT_MIN_POLL_INTERVAL_MS,
                 policy: Optional[PipelinePolicy] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize a batch context.

        Args:
            client: Batch API backend
            pull_input_lines: ``pull(max) -> (items, done)``, sync or async
            on_output_line: Called with each parsed output record, sync or async
            max_per_tick: Items appended to the input file per tick
            io_slice_bytes: Bytes of output read per tick
            min_poll_interval_ms: Delay suggested to callers while the job runs
            policy: Execution policy
            logger: Optional logger
        """
        if io_slice_bytes < 4:
            raise ValueError("io_slice_bytes must be at least 4 to hold one UTF-8 character")
        super().__init__(policy=policy, logger=logger or logging.getLogger("evopipelines.batch"))
        self.client = client
        self.pull_input_lines = pull_input_lines
        self.on_output_line = on_output_line
        self.max_per_tick = max_per_tick
        self.io_slice_bytes = io_slice_bytes
        self.min_poll_interval_ms = min_poll_interval_ms


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


async def _call_client(method: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    return await asyncio.to_thread(method, *args)


def _serialize_line(item: Any) -> str:
    if isinstance(item, str):
        return item if item.endswith("\n") else item + "\n"
    return json.dumps(item, ensure_ascii=False) + "\n"


async def build_input_incremental_step(ctx: BatchContext, job: BatchJob):
    """
    Append up to ``max_per_tick`` items to the input JSONL.

    Pauses with ``"awaiting-input"`` and payload ``{"appended", "total"}``
    until the producer reports that it is done.
    """
    if job.input_complete:
        return job

    Path(job.jsonl_path).parent.mkdir(parents=True, exist_ok=True)
    items, done = await _maybe_await(ctx.pull_input_lines(ctx.max_per_tick))

    if items:
        with open(job.jsonl_path, "a", encoding="utf-8") as fh:
            fh.write("".join(_serialize_line(item) for item in items))
        job = job.evolve(line_count=job.line_count + len(items))

    if not done:
        return Pause("awaiting-input", {"appended": len(items), "total": job.line_count})

    ctx.logger.info(f"Input complete for {job.job_id}: {job.line_count} lines")
    return job.evolve(input_complete=True)


async def upload_input_file_step(ctx: BatchContext, job: BatchJob) -> BatchJob:
    """Upload the completed input file and record its file id."""
    file_id = await _call_client(ctx.client.upload_file, job.jsonl_path)
    ctx.logger.info(f"Uploaded input file: {file_id}")
    ctx.add_metadata("input_file_id", file_id)
    return job.evolve(input_file_id=file_id)


async def create_batch_step(ctx: BatchContext, job: BatchJob) -> BatchJob:
    """Create the remote batch job for the uploaded file."""
    batch = await _call_client(ctx.client.create_batch, job.input_file_id, job.endpoint,
                               job.completion_window)
    ctx.logger.info(f"Batch created: {batch.id} ({batch.status})")
    ctx.add_metadata("batch_id", batch.id)
    return job.evolve(batch_id=batch.id, status=batch.status)


async def wait_until_terminal_or_pause_step(ctx: BatchContext, job: BatchJob):
    """
    Poll the batch status once.

    Non-terminal statuses pause with ``"batch:<status>"`` and a suggested
    delay; the step never sleeps.
    """
    batch = await _call_client(ctx.client.retrieve_batch, job.batch_id)
    if not batch.is_terminal:
        return Pause(f"batch:{batch.status}", {
            "suggested_delay_ms": ctx.min_poll_interval_ms,
            "status": batch.status,
        })
    return job.evolve(status=batch.status)


async def capture_output_files_step(ctx: BatchContext, job: BatchJob) -> BatchJob:
    """Record the output and error file ids of the finished batch."""
    batch = await _call_client(ctx.client.retrieve_batch, job.batch_id)
    if job.status != "completed":
        ctx.logger.warning(f"Batch {job.batch_id} finished with status {job.status}")
    return job.evolve(output_file_id=batch.output_file_id, error_file_id=batch.error_file_id)


def _artifact_base(job: BatchJob) -> str:
    if job.job_id:
        return job.job_id
    name = os.path.basename(job.jsonl_path)
    return name[:-len(".jsonl")] if name.endswith(".jsonl") else name


async def download_outputs_step(ctx: BatchContext, job: BatchJob) -> BatchJob:
    """
    Download output and error files into ``out_dir``.

    Files are named ``<job_id>.output.jsonl`` and ``<job_id>.errors.jsonl``.
    Output-processing cursors are reset.
    """
    base = _artifact_base(job)
    output_path = None
    error_path = None

    if job.output_file_id:
        output_path = os.path.join(job.out_dir, f"{base}.output.jsonl")
        await _call_client(ctx.client.download_file, job.output_file_id, output_path)
        ctx.logger.info(f"Downloaded output -> {output_path}")

    if job.error_file_id:
        error_path = os.path.join(job.out_dir, f"{base}.errors.jsonl")
        await _call_client(ctx.client.download_file, job.error_file_id, error_path)
        ctx.logger.warning(f"Downloaded errors -> {error_path}")

    return job.evolve(output_path=output_path, error_path=error_path,
                      out_pos=0, out_carry=None, processed_count=0)


async def _dispatch_rows(ctx: BatchContext, lines: List[str]) -> Tuple[int, Optional[int]]:
    """
    Hand each parsed line to ``on_output_line``.

    Returns the number of records delivered and the index of the line whose
    handler failed, or None. A handler failure before any delivery is
    re-raised so the whole slice can be retried without duplicates.
    """
    rows = 0
    for index, raw in enumerate(lines):
        if not raw.strip():
            continue
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            ctx.logger.error(f"Skipping malformed output line: {e}")
            continue
        if ctx.on_output_line is not None:
            try:
                await _maybe_await(ctx.on_output_line(record))
            except Exception as e:
                if rows == 0:
                    raise
                ctx.logger.error(f"Output handler failed after {rows} records in this slice: {e}")
                return rows, index
        rows += 1
    return rows, None


async def process_output_incremental_step(ctx: BatchContext, job: BatchJob):
    """
    Process the next slice of the downloaded output file.

    Reads at most ``io_slice_bytes`` from ``out_pos``, prepends ``out_carry``,
    and dispatches every complete line to ``on_output_line``. A partial line
    is carried to the next slice. A multibyte character cut by the slice
    boundary is left for the next slice by backing ``next_pos`` off. While
    data remains the step pauses with ``"processing-outputs"`` and payload
    ``{"rows", "next_pos", "carry"}``. At end of file a final unterminated
    line is processed too.

    When ``on_output_line`` fails partway through a slice, the step pauses
    with the cursor just past the last delivered record, so no record is
    handed over twice. The failing record is first in line on the next call.
    """
    if not job.output_path:
        return job

    size = os.path.getsize(job.output_path)
    start = job.out_pos or 0
    if start >= size and not job.out_carry:
        return job

    end = min(size, start + ctx.io_slice_bytes)
    with open(job.output_path, "rb") as fh:
        fh.seek(start)
        data = fh.read(end - start)

    at_eof = end >= size
    decoder = codecs.getincrementaldecoder("utf-8")()
    text = decoder.decode(data, final=at_eof)
    pending = len(decoder.getstate()[0])
    next_pos = end - pending

    parts = ((job.out_carry or "") + text).split("\n")
    tail = parts.pop()
    if at_eof and tail.strip():
        parts.append(tail)
        tail = ""

    rows, failed_at = await _dispatch_rows(ctx, parts)

    if failed_at is not None:
        remaining = "\n".join(parts[failed_at:] + [tail])
        return Pause("processing-outputs", {"rows": rows, "next_pos": next_pos, "carry": remaining})

    if not at_eof:
        return Pause("processing-outputs", {"rows": rows, "next_pos": next_pos, "carry": tail})

    ctx.logger.info(f"Processed {job.processed_count + rows} output lines for {job.job_id}")
    return job.evolve(out_pos=end, out_carry=None, processed_count=job.processed_count + rows)


def apply_processing_outputs_cursor(job: BatchJob, info: Optional[Pause]) -> BatchJob:
    """
    Fold a pause's progress back into the job document.

    ``"processing-outputs"`` pauses advance ``out_pos``, ``processed_count``
    and ``out_carry``. ``"awaiting-input"`` pauses update ``line_count``,
    since those lines are already on disk. Other pauses leave the job as is.
    """
    if not isinstance(info, Pause) or not isinstance(info.payload, dict):
        return job
    payload = info.payload

    if info.reason == "processing-outputs":
        return job.evolve(
            out_pos=payload.get("next_pos", job.out_pos),
            processed_count=job.processed_count + payload.get("rows", 0),
            out_carry=payload.get("carry", job.out_carry),
        )
    if info.reason == "awaiting-input":
        return job.evolve(line_count=payload.get("total", job.line_count))
    return job
