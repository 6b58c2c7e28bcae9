"""
Semantic chunking by cosine-distance drops.

The chunker embeds overlapping windows of consecutive segments, measures the
cosine distance between neighbouring windows, and cuts wherever the distance
reaches a percentile threshold. It is implemented as a pipeline over a
``ChunkState`` document so that the embedding call gets the standard retry
and timeout combinators.
"""

import math
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..core.combinators import with_retry, with_timeout
from ..core.context import PipelineContext, PipelinePolicy
from ..core.exceptions import ChunkingError
from ..core.pipeline import PauseEvent, Pipeline, ProgressEvent
from .segmenter import split_markdown_blocks, split_sentences
from .similarity import consecutive_distances, percentile_threshold

logger = logging.getLogger(__name__)

EmbedFunction = Callable[[List[str]], Union[List[List[float]], Awaitable[List[List[float]]]]]


class ChunkOptions(BaseModel):
    """Tuning knobs for ``CosineDropChunker.chunk``."""
    buffer_size: int = Field(default=2, ge=1)
    break_percentile: float = Field(default=90, ge=0, le=100)
    min_chunk_size: int = Field(default=300, ge=0)
    max_chunk_size: float = Field(default=2000, gt=0)
    overlap_size: int = Field(default=1, ge=0)
    use_headings_only: bool = False
    type: Literal["text", "markdown"] = "text"


class ChunkState(BaseModel):
    """Document threaded through the chunking pipeline."""
    input: str
    options: ChunkOptions = Field(default_factory=ChunkOptions)
    segments: List[str] = Field(default_factory=list)
    windows: List[str] = Field(default_factory=list)
    embeddings: List[List[float]] = Field(default_factory=list)
    distances: List[float] = Field(default_factory=list)
    threshold: Optional[float] = None
    chunks: Optional[List[str]] = None


class ChunkerContext(PipelineContext):
    """Pipeline context carrying the embedding function."""

    def __init__(self, embed: EmbedFunction, policy: Optional[PipelinePolicy] = None,
                 logger: Optional[logging.Logger] = None):
        super().__init__(policy=policy, logger=logger or logging.getLogger(__name__))
        self.embed = embed


def _unsplit(state: ChunkState) -> ChunkState:
    return state.model_copy(update={"chunks": [state.input]})


def segment_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    """Split the input into sentences or Markdown blocks."""
    opts = state.options
    if opts.type == "markdown":
        min_size = opts.min_chunk_size if "min_chunk_size" in opts.model_fields_set else 30
        max_size = int(opts.max_chunk_size) if math.isfinite(opts.max_chunk_size) else 2000
        segments = split_markdown_blocks(state.input, min_size, max_size, opts.use_headings_only)
    else:
        segments = split_sentences(state.input)
    return state.model_copy(update={"segments": segments})


def guard_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    """Return the input unmodified when there are too few segments to compare."""
    if state.chunks is None and len(state.segments) <= state.options.buffer_size:
        ctx.logger.warning("CosineDrop: not enough segments to chunk")
        return _unsplit(state)
    return state


def windows_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    """Join each run of ``buffer_size`` consecutive segments into one window."""
    if state.chunks is not None:
        return state
    size = state.options.buffer_size
    segments = state.segments
    windows = [" ".join(segments[i:i + size]) for i in range(len(segments) - size + 1)]
    return state.model_copy(update={"windows": windows})


async def embed_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    if state.chunks is not None:
        return state
    embeddings = ctx.embed(list(state.windows))
    if inspect.isawaitable(embeddings):
        embeddings = await embeddings
    return state.model_copy(update={"embeddings": [list(e) for e in embeddings]})


def distances_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    if state.chunks is not None:
        return state
    distances = consecutive_distances(state.embeddings)
    if not distances:
        ctx.logger.warning(
            "CosineDrop: all cosine similarities were invalid; returning full text as single chunk."
        )
        return _unsplit(state)
    return state.model_copy(update={"distances": distances})


def threshold_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    if state.chunks is not None:
        return state
    threshold = percentile_threshold(state.distances, state.options.break_percentile)
    if not math.isfinite(threshold):
        ctx.logger.warning("CosineDrop: computed threshold is invalid; skipping chunking.")
        return _unsplit(state)
    return state.model_copy(update={"threshold": threshold})


def split_step(ctx: ChunkerContext, state: ChunkState) -> ChunkState:
    """
    Cut the segments at distance drops.

    A cut happens where the distance reaches the threshold or where the chunk
    would exceed ``max_chunk_size``, as long as the chunk is at least
    ``min_chunk_size`` long. Consecutive chunks share ``overlap_size``
    segments. A trailing chunk shorter than the minimum is dropped unless it
    is the only chunk.
    """
    if state.chunks is not None:
        return state

    opts = state.options
    segments = state.segments
    distances = state.distances
    threshold = state.threshold
    log = ctx.logger
    log.info(f"CosineDrop: threshold at {opts.break_percentile}th percentile = {threshold:.4f}")

    chunks: List[str] = []
    start = 0
    i = 0
    while i + 1 < len(distances):
        dist = distances[i]
        prospective = "\n".join(segments[start:i + opts.buffer_size])
        will_split = not math.isnan(dist) and dist >= threshold
        too_big = len(prospective) > opts.max_chunk_size

        if (will_split or too_big) and len(prospective) >= opts.min_chunk_size:
            log.info(f"CosineDrop: splitting at segment {i} (dist={dist:.4f}, size={len(prospective)})")
            chunks.append(prospective)
            start = max(i + opts.buffer_size - opts.overlap_size, start + 1)
        i += 1

    if start < len(segments):
        last = "\n".join(segments[start:])
        if len(last) >= opts.min_chunk_size or not chunks:
            chunks.append(last)
        else:
            log.warning("CosineDrop: final chunk dropped due to insufficient length")

    log.info(f"CosineDrop: produced {len(chunks)} chunks")
    return state.model_copy(update={"chunks": chunks})


class CosineDropChunker:
    """
    Chunk text at semantic boundaries detected from embedding distance drops.

    ``embed_fn`` receives a list of window strings and returns one vector per
    window; it may be sync or async. The embedding call honours the policy's
    ``retries`` and ``timeout_ms``.
    """

    def __init__(self, embed_fn: EmbedFunction, policy: Optional[PipelinePolicy] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the chunker.

        Args:
            embed_fn: Function mapping texts to embedding vectors
            policy: Retry and timeout policy for the embedding call
            logger: Optional logger
        """
        self.context = ChunkerContext(embed_fn, policy=policy, logger=logger)
        self.pipeline = Pipeline(self.context, name="cosine-drop")
        (self.pipeline
            .add_step(segment_step)
            .add_step(guard_step)
            .add_step(windows_step)
            .add_step(with_retry(with_timeout(embed_step)))
            .add_step(distances_step)
            .add_step(threshold_step)
            .add_step(split_step))

    def split_text(self, text: str) -> List[str]:
        """Split plain text into sentences."""
        return split_sentences(text)

    def split_markdown(self, markdown: str, options: Optional[ChunkOptions] = None) -> List[str]:
        """Split Markdown into blocks using the Markdown size defaults."""
        opts = options or ChunkOptions(min_chunk_size=30)
        return split_markdown_blocks(
            markdown,
            min_chunk_size=opts.min_chunk_size,
            max_chunk_size=int(opts.max_chunk_size) if math.isfinite(opts.max_chunk_size) else 2000,
            use_headings_only=opts.use_headings_only,
        )

    async def chunk(self, text: str, options: Optional[Union[ChunkOptions, dict]] = None,
                    **overrides: Any) -> List[str]:
        """
        Chunk ``text``.

        Args:
            text: Input text or Markdown
            options: ``ChunkOptions`` or a dict of option values
            **overrides: Individual option values

        Returns:
            List of chunks; ``[text]`` unchanged when the text cannot be split

        Raises:
            ChunkingError: If the embeddings could not be obtained
        """
        if isinstance(options, ChunkOptions):
            opts = options.model_copy(update=overrides) if overrides else options
        else:
            opts = ChunkOptions(**{**(options or {}), **overrides})

        state = ChunkState(input=text, options=opts)
        logger.debug(f"Chunking {len(text)} characters as {opts.type}")
        async for event in self.pipeline.stream(state):
            if isinstance(event, PauseEvent):
                raise ChunkingError(f"Embedding failed ({event.info.reason})")
            if isinstance(event, ProgressEvent):
                state = event.doc

        if state.chunks is None:
            raise ChunkingError("Chunking pipeline finished without producing chunks")
        return state.chunks


async def chunk_text(text: str, embed_fn: EmbedFunction, **options: Any) -> List[str]:
    """Convenience wrapper: chunk ``text`` with a fresh ``CosineDropChunker``."""
    return await CosineDropChunker(embed_fn).chunk(text, **options)
