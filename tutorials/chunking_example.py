"""
Example usage of the cosine-drop chunker with Ollama embeddings, followed by
a structured summary request for each chunk.
"""

import os
import asyncio
import logging

from dotenv import load_dotenv
from pydantic import BaseModel

from evopipelines.chunking import CosineDropChunker
from evopipelines.core.context import PipelinePolicy
from evopipelines.llm import LLMClient, create_ollama_context, make_embed_fn

logging.basicConfig(level=logging.INFO)

TEXT = """
Photosynthesis converts light energy into chemical energy. Plants capture
sunlight with chlorophyll. The energy drives the synthesis of glucose from
carbon dioxide and water. Oxygen is released as a by-product.

The French Revolution began in 1789. It abolished the monarchy and reshaped
French society. Its ideals of liberty and equality spread across Europe.
Napoleon rose to power in its aftermath.
"""


class Summary(BaseModel):
    topic: str
    one_line: str


async def main():
    # Load environment variables from .env file
    load_dotenv()

    embed_ctx = create_ollama_context(model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"))
    chunker = CosineDropChunker(make_embed_fn(embed_ctx),
                                policy=PipelinePolicy(retries=1, timeout_ms=30_000))

    chunks = await chunker.chunk(TEXT, buffer_size=1, break_percentile=80,
                                 min_chunk_size=80, overlap_size=0)

    print(f"\nFound {len(chunks)} chunks")
    print("-" * 50)

    client = LLMClient("ollama")
    for chunk in chunks:
        summary = await client.acomplete(
            "Summarize the passage. Reply with JSON only.",
            chunk,
            response_model=Summary,
            options={"temperature": 0},
        )
        print(f"Chunk: {chunk[:60]}...")
        print(f"Topic: {summary.topic}")
        print(f"Summary: {summary.one_line}")
        print("-" * 50)


if __name__ == "__main__":
    asyncio.run(main())
