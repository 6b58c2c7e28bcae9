"""
Example usage of the batch pipeline with the OpenAI Batch API.

Run it once to drive a small batch to completion in-process, or pass
``--tick`` to advance the job by one step and persist its state, the way a
cron job would.
"""

import os
import sys
import json
import asyncio
import logging

from dotenv import load_dotenv

from evopipelines.batch import (
    CHAT_COMPLETIONS_ENDPOINT,
    OpenAIBatchClient,
    batch_line,
    create_job,
    from_array,
    run_batch,
    tick_batch,
)
from evopipelines.core.outcome import Done

logging.basicConfig(level=logging.INFO)

STATE_FILE = "batch_state.json"


def build_rows(questions):
    return [
        batch_line(f"q-{i}", {
            "model": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            "messages": [{"role": "user", "content": question}],
        })
        for i, question in enumerate(questions)
    ]


def print_answer(record):
    body = (record.get("response") or {}).get("body") or {}
    choices = body.get("choices") or [{}]
    content = (choices[0].get("message") or {}).get("content")
    print(f"{record.get('custom_id')}: {content}")


async def tick_once(client, rows, out_dir):
    """Advance the job by one step, loading and saving state from disk."""
    if os.path.exists(STATE_FILE):
        with open(STATE_FILE, encoding="utf-8") as fh:
            state = json.load(fh)
    else:
        state = {"doc": create_job("tutorial", out_dir).model_dump(), "resume": None}

    # Each run is a fresh process, so resume the producer after the rows
    # already written to the input file.
    ctx = from_array(client, rows[state["doc"].get("line_count", 0):], on_output_line=print_answer)
    tick = await tick_batch(ctx, state["doc"], state["resume"])

    if isinstance(tick, Done):
        print(f"Job finished with status {tick.value.status}")
        os.remove(STATE_FILE)
        return

    if tick.info is not None:
        print(f"Paused: {tick.info.reason} {tick.info.payload}")
    with open(STATE_FILE, "w", encoding="utf-8") as fh:
        json.dump({"doc": tick.doc.model_dump(), "resume": tick.resume.model_dump(mode="json")}, fh)


async def main():
    # Load environment variables from .env file
    load_dotenv()

    if not os.getenv("OPENAI_API_KEY"):
        print("Warning: OPENAI_API_KEY not found in .env file")
        print("Please add it to your .env file: OPENAI_API_KEY=your-api-key")
        return

    out_dir = os.getenv("BATCH_TMP_DIR", "batch_out")
    client = OpenAIBatchClient()
    rows = build_rows([
        "Name a prime number larger than 100.",
        "What is the capital of Portugal?",
        "Translate 'good morning' into Spanish.",
    ])

    if "--tick" in sys.argv:
        await tick_once(client, rows, out_dir)
        return

    job = await run_batch(client, CHAT_COMPLETIONS_ENDPOINT, "tutorial", out_dir, rows,
                          on_output_line=print_answer, min_poll_interval_ms=30_000)

    print("\nBatch Results:")
    print("-" * 50)
    print(f"Status: {job.status}")
    print(f"Requests: {job.line_count}")
    print(f"Responses processed: {job.processed_count}")
    if job.error_path:
        print(f"Errors written to: {job.error_path}")


if __name__ == "__main__":
    asyncio.run(main())
