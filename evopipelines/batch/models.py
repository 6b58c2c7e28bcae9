"""
Schemas for batch jobs.

``BatchJob`` is the document threaded through the batch pipeline. Its fields
are filled in progressively as the job moves from input construction to
processed outputs, so a single model covers every stage.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"
EMBEDDINGS_ENDPOINT = "/v1/embeddings"

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled", "expired"})


class BatchInfo(BaseModel):
    """The parts of a remote batch record the pipeline relies on."""
    id: str
    status: str
    output_file_id: Optional[str] = None
    error_file_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BatchJob(BaseModel):
    """
    Evolving state of a single batch job.

    Stages and the fields they set:
    - constructing input: ``jsonl_path``, ``line_count``, ``input_complete``
    - uploaded: ``input_file_id``
    - submitted and polled: ``batch_id``, ``status``
    - outputs located: ``output_file_id``, ``error_file_id``
    - outputs downloaded: ``output_path``, ``error_path``
    - outputs processed: ``out_pos``, ``out_carry``, ``processed_count``
    """
    job_id: str
    endpoint: str = CHAT_COMPLETIONS_ENDPOINT
    completion_window: str = "24h"
    out_dir: str
    jsonl_path: str
    line_count: int = 0
    input_complete: bool = False

    input_file_id: Optional[str] = None
    batch_id: Optional[str] = None
    status: Optional[str] = None

    output_file_id: Optional[str] = None
    error_file_id: Optional[str] = None

    output_path: Optional[str] = None
    error_path: Optional[str] = None
    out_pos: int = Field(default=0, ge=0)
    out_carry: Optional[str] = None
    processed_count: int = 0

    def evolve(self, **changes: Any) -> 'BatchJob':
        """Return a copy with ``changes`` applied."""
        return self.model_copy(update=changes)


def batch_line(custom_id: str, body: Dict[str, Any],
               endpoint: str = CHAT_COMPLETIONS_ENDPOINT) -> Dict[str, Any]:
    """Build one request line of a batch input file."""
    return {"custom_id": custom_id, "method": "POST", "url": endpoint, "body": body}
