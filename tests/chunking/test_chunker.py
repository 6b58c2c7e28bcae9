"""
Unit tests for the cosine-drop chunker.
"""

import asyncio
import math
import unittest
from unittest import mock

from evopipelines.chunking.chunker import ChunkOptions, CosineDropChunker, chunk_text
from evopipelines.core.context import PipelinePolicy
from evopipelines.core.exceptions import ChunkingError


def fixed_embeddings(vectors):
    """Embedding function that returns ``vectors`` regardless of input."""
    calls = []

    def embed(texts):
        calls.append(list(texts))
        return vectors[:len(texts)]

    embed.calls = calls
    return embed


class TestCosineDropChunker(unittest.IsolatedAsyncioTestCase):

    async def test_single_initials_stay_one_chunk(self):
        embed = fixed_embeddings([[1], [1], [0], [0]])
        chunker = CosineDropChunker(embed)

        chunks = await chunker.chunk(
            "A. B. C. D.",
            buffer_size=1, break_percentile=99, min_chunk_size=0,
            max_chunk_size=math.inf, overlap_size=0,
        )

        # Initials merge into one segment, so there is nothing to compare
        self.assertEqual(chunks, ["A. B. C. D."])
        self.assertEqual(embed.calls, [])

    async def test_splits_only_on_maximum_jump(self):
        """Distances are [0, 1, 1]; the 99th percentile cuts at the first jump only."""
        embed = fixed_embeddings([[1], [1], [0], [0]])
        chunker = CosineDropChunker(embed)

        chunks = await chunker.chunk(
            "One. Two. Three. Four.",
            buffer_size=1, break_percentile=99, min_chunk_size=0,
            max_chunk_size=math.inf, overlap_size=0,
        )

        self.assertEqual(embed.calls, [["One.", "Two.", "Three.", "Four."]])
        self.assertEqual(chunks, ["One.\nTwo.", "Three.\nFour."])

    async def test_split_lands_on_topic_change(self):
        embed = fixed_embeddings([[1, 0], [1, 0.1], [1, 0], [0, 1], [0.1, 1], [0, 1]])
        chunker = CosineDropChunker(embed)

        chunks = await chunker.chunk(
            "Cats purr. Cats nap. Cats hunt. Stocks rose. Stocks fell. Stocks split.",
            buffer_size=1, break_percentile=100, min_chunk_size=0,
            max_chunk_size=math.inf, overlap_size=0,
        )

        self.assertEqual(chunks, ["Cats purr.\nCats nap.\nCats hunt.",
                                  "Stocks rose.\nStocks fell.\nStocks split."])

    async def test_splits_at_distance_peaks(self):
        embed = fixed_embeddings([[1], [0], [1], [0]])
        chunker = CosineDropChunker(embed)

        chunks = await chunker.chunk(
            "S1. S2. S3. S4.",
            buffer_size=1, break_percentile=100, min_chunk_size=0,
            max_chunk_size=float("inf"), overlap_size=0,
        )

        self.assertEqual(chunks, ["S1.", "S2.", "S3.\nS4."])
        self.assertEqual(embed.calls, [["S1.", "S2.", "S3.", "S4."]])

    async def test_too_few_segments_returns_input_verbatim(self):
        text = "  Only one sentence here,\n   with   odd spacing.  "
        chunks = await CosineDropChunker(fixed_embeddings([])).chunk(text)
        self.assertEqual(chunks, [text])

    async def test_segments_equal_to_buffer_returns_input(self):
        text = "First sentence. Second sentence."
        chunks = await CosineDropChunker(fixed_embeddings([])).chunk(text, buffer_size=2)
        self.assertEqual(chunks, [text])

    async def test_no_valid_distances_returns_single_chunk(self):
        nan = float("nan")
        embed = fixed_embeddings([[nan], [nan], [nan]])

        with self.assertLogs("evopipelines.chunking.chunker", level="WARNING") as logs:
            chunks = await CosineDropChunker(embed).chunk("One. Two. Three.", buffer_size=1)

        self.assertEqual(chunks, ["One. Two. Three."])
        self.assertIn("invalid", "\n".join(logs.output))

    async def test_windows_join_buffered_segments(self):
        embed = fixed_embeddings([[1, 0], [1, 0], [1, 0]])
        await CosineDropChunker(embed).chunk("One. Two. Three. Four.", buffer_size=2, min_chunk_size=0)
        self.assertEqual(embed.calls, [["One. Two.", "Two. Three.", "Three. Four."]])

    async def test_async_embedding_function(self):
        async def embed(texts):
            await asyncio.sleep(0)
            return [[1.0] if i % 2 == 0 else [0.0] for i in range(len(texts))]

        chunks = await chunk_text("S1. S2. S3. S4.", embed, buffer_size=1, min_chunk_size=0,
                                  break_percentile=100, overlap_size=0)
        self.assertEqual(chunks, ["S1.", "S2.", "S3.\nS4."])

    async def test_embedding_failure_raises(self):
        embed = mock.Mock(side_effect=RuntimeError("service down"))
        chunker = CosineDropChunker(embed, policy=PipelinePolicy(retries=2))

        with self.assertRaises(ChunkingError):
            await chunker.chunk("One. Two. Three.", buffer_size=1)
        self.assertEqual(embed.call_count, 3)

    async def test_embedding_timeout_raises(self):
        async def slow(texts):
            await asyncio.sleep(0.2)
            return [[1.0]] * len(texts)

        chunker = CosineDropChunker(slow, policy=PipelinePolicy(timeout_ms=5))
        with self.assertRaisesRegex(ChunkingError, "timeout"):
            await chunker.chunk("One. Two. Three.", buffer_size=1)

    async def test_min_chunk_size_holds_back_cuts(self):
        embed = fixed_embeddings([[1], [0], [1], [0]])
        chunks = await CosineDropChunker(embed).chunk(
            "S1. S2. S3. S4.", buffer_size=1, break_percentile=100,
            min_chunk_size=7, overlap_size=0,
        )
        self.assertEqual(chunks, ["S1.\nS2.", "S3.\nS4."])

    async def test_markdown_blocks(self):
        intro = "# Intro\n\nThe first section talks about one thing at length."
        other = "# Other\n\nThe second section is about something else entirely."
        more = "# More\n\nThe third section continues the second one closely."
        embed = fixed_embeddings([[1, 0], [0, 1], [0, 1]])

        chunks = await CosineDropChunker(embed).chunk(
            "\n\n".join([intro, other, more]), type="markdown", buffer_size=1,
            min_chunk_size=0, break_percentile=100, overlap_size=0,
        )

        self.assertEqual(embed.calls, [[intro, other, more]])
        self.assertEqual(chunks, [intro, other + "\n" + more])

    def test_options_validation(self):
        with self.assertRaises(ValueError):
            ChunkOptions(buffer_size=0)
        with self.assertRaises(ValueError):
            ChunkOptions(break_percentile=101)

    def test_split_helpers(self):
        chunker = CosineDropChunker(fixed_embeddings([]))
        self.assertEqual(chunker.split_text("One. Two."), ["One.", "Two."])
        self.assertEqual(len(chunker.split_markdown("# A\n\ntext under a heading here\n\n# B\n\nmore")), 2)


if __name__ == "__main__":
    unittest.main()
