"""
Greedy similarity grouping.

Embeds a list of texts, builds the full cosine-similarity matrix, and groups
texts with a single greedy pass: each text not yet grouped opens a new group
and claims every other ungrouped text whose similarity to it reaches the
threshold. The result depends on input order.
"""

import inspect
import logging
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np
from pydantic import BaseModel, Field

from ..core.combinators import with_retry, with_timeout
from ..core.context import PipelineContext, PipelinePolicy
from ..core.exceptions import ClusteringError
from ..core.pipeline import PauseEvent, Pipeline, ProgressEvent
from ..core.steps import Step, named
from .chunker import EmbedFunction
from .similarity import cosine_similarity

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_THRESHOLD = 0.7


class ClusterState(BaseModel):
    """Document threaded through the grouping pipeline."""
    texts: List[str]
    threshold: float = DEFAULT_THRESHOLD
    embeddings: List[List[float]] = Field(default_factory=list)
    similarity: List[List[float]] = Field(default_factory=list)
    clusters: Optional[List[List[str]]] = None


class SimilarityContext(PipelineContext):
    """Pipeline context carrying the embedding function."""

    def __init__(self, embed: EmbedFunction, policy: Optional[PipelinePolicy] = None,
                 logger: Optional[logging.Logger] = None):
        super().__init__(policy=policy, logger=logger or logging.getLogger(__name__))
        self.embed = embed


def init_step(threshold: float = DEFAULT_THRESHOLD) -> Step:
    """Build the step that turns a list of texts into a ``ClusterState``."""

    def init(ctx: SimilarityContext, texts: Sequence[str]) -> ClusterState:
        return ClusterState(texts=list(texts), threshold=threshold)

    return named(init, "init")


async def embed_texts_step(ctx: SimilarityContext, state: ClusterState) -> ClusterState:
    ctx.logger.info(f"Generating embeddings for {len(state.texts)} item(s)...")
    if not state.texts:
        return state
    embeddings = ctx.embed(list(state.texts))
    if inspect.isawaitable(embeddings):
        embeddings = await embeddings
    if len(embeddings) != len(state.texts):
        raise ValueError(f"Expected {len(state.texts)} embeddings, got {len(embeddings)}")
    return state.model_copy(update={"embeddings": [list(e) for e in embeddings]})


def similarity_matrix_step(ctx: SimilarityContext, state: ClusterState) -> ClusterState:
    """Fill the symmetric n x n cosine-similarity matrix."""
    n = len(state.embeddings)
    sim = np.zeros((n, n))
    for i in range(n):
        for j in range(i, n):
            sim[i, j] = sim[j, i] = cosine_similarity(state.embeddings[i], state.embeddings[j])
    ctx.logger.info(f"Built {n}x{n} similarity matrix")
    return state.model_copy(update={"similarity": sim.tolist()})


def greedy_cluster_step(ctx: SimilarityContext, state: ClusterState) -> ClusterState:
    """
    Group texts row by row.

    Each ungrouped text ``i`` opens a group and claims every other ungrouped
    text ``j`` with ``sim[i][j] >= threshold``. NaN similarities never match.
    """
    texts, sim, threshold = state.texts, state.similarity, state.threshold
    n = len(texts)
    ctx.logger.info(f"Clustering {n} item(s) via greedy row-threshold (threshold={threshold})...")

    added = set()
    clusters: List[List[str]] = []
    for i in range(n):
        if i in added:
            continue
        cluster = [texts[i]]
        added.add(i)
        for j in range(n):
            if j == i or j in added:
                continue
            if sim[i][j] >= threshold:
                cluster.append(texts[j])
                added.add(j)
        clusters.append(cluster)

    ctx.logger.info(f"Clustering complete. Total clusters: {len(clusters)}")
    return state.model_copy(update={"clusters": clusters})


def build_greedy_similarity_pipeline(ctx: SimilarityContext,
                                     threshold: float = DEFAULT_THRESHOLD) -> Pipeline:
    """
    Create the grouping pipeline: init, embed, similarity matrix, greedy grouping.

    The embedding call honours the context policy's ``retries`` and
    ``timeout_ms``.
    """
    return (
        Pipeline(ctx, name="greedy-similarity")
        .add_step(init_step(threshold))
        .add_step(with_retry(with_timeout(embed_texts_step)))
        .add_step(similarity_matrix_step)
        .add_step(greedy_cluster_step)
    )


async def group_similar_greedy(ctx: SimilarityContext, texts: Sequence[str],
                               threshold: float = DEFAULT_THRESHOLD) -> List[List[str]]:
    """
    Group ``texts`` by embedding similarity.

    Args:
        ctx: Context holding the embedding function
        texts: Texts to group, in priority order
        threshold: Minimum cosine similarity to join a group

    Returns:
        Groups of texts; every input text appears in exactly one group

    Raises:
        ClusteringError: If the embeddings could not be obtained
    """
    logger.debug(f"Grouping {len(texts)} texts at threshold {threshold}")
    pipeline = build_greedy_similarity_pipeline(ctx, threshold)
    state = None
    async for event in pipeline.stream(list(texts)):
        if isinstance(event, PauseEvent):
            raise ClusteringError(f"Embedding failed ({event.info.reason})")
        if isinstance(event, ProgressEvent):
            state = event.doc

    if state is None or state.clusters is None:
        raise ClusteringError("Grouping pipeline finished without producing clusters")
    return state.clusters


async def project_and_group(ctx: SimilarityContext, items: Sequence[T],
                            to_string: Callable[[T], str],
                            threshold: float = DEFAULT_THRESHOLD) -> List[List[str]]:
    """Group arbitrary items by the similarity of ``to_string(item)``."""
    return await group_similar_greedy(ctx, [to_string(item) for item in items], threshold)
