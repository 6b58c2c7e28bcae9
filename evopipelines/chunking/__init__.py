"""
Semantic text chunking.

Splits text into sentences (or Markdown into blocks), embeds sliding windows
of segments, and cuts where the cosine distance between neighbouring windows
spikes. Also groups whole texts greedily by embedding similarity.
"""

from .chunker import (
    CosineDropChunker,
    ChunkOptions,
    ChunkState,
    ChunkerContext,
    EmbedFunction,
    chunk_text
)
from .clustering import (
    ClusterState,
    SimilarityContext,
    build_greedy_similarity_pipeline,
    group_similar_greedy,
    project_and_group
)
from .segmenter import split_sentences, split_markdown_blocks, preprocess_text
from .similarity import cosine_similarity, consecutive_distances, percentile_threshold

__all__ = [
    'CosineDropChunker',
    'ChunkOptions',
    'ChunkState',
    'ChunkerContext',
    'EmbedFunction',
    'chunk_text',
    'ClusterState',
    'SimilarityContext',
    'build_greedy_similarity_pipeline',
    'group_similar_greedy',
    'project_and_group',
    'split_sentences',
    'split_markdown_blocks',
    'preprocess_text',
    'cosine_similarity',
    'consecutive_distances',
    'percentile_threshold'
]
