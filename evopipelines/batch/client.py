"""
Batch API clients.

``BatchAPIClient`` is the narrow interface the batch steps depend on.
``OpenAIBatchClient`` implements it against the OpenAI Files and Batches
REST endpoints using ``requests``.
"""

import os
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from ..core.env import OPENAI_API_KEY, OPENAI_ENDPOINT, get_env
from ..core.exceptions import PipelineError
from .models import BatchInfo

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com"


class BatchClientError(PipelineError):
    """Raised when the batch API returns an error or an unexpected payload."""
    pass


class BatchAPIClient(ABC):
    """Abstract base class for batch job backends."""

    @abstractmethod
    def upload_file(self, path: str) -> str:
        """Upload a JSONL input file and return its file id."""
        pass

    @abstractmethod
    def create_batch(self, input_file_id: str, endpoint: str, completion_window: str = "24h") -> BatchInfo:
        """Create a batch job for an uploaded input file."""
        pass

    @abstractmethod
    def retrieve_batch(self, batch_id: str) -> BatchInfo:
        """Fetch the current state of a batch job."""
        pass

    @abstractmethod
    def download_file(self, file_id: str, out_path: str) -> str:
        """Download a file's content to ``out_path`` and return the path."""
        pass


class OpenAIBatchClient(BatchAPIClient):
    """
    Batch client for the OpenAI REST API.
    """

    def __init__(self, api_key: Optional[str] = None, endpoint: Optional[str] = None,
                 timeout: float = 60.0, session: Optional[requests.Session] = None):
        """
        Initialize the OpenAI batch client.

        Args:
            api_key: API key (defaults to OPENAI_API_KEY)
            endpoint: API base URL (defaults to OPENAI_ENDPOINT, then api.openai.com)
            timeout: Per-request timeout in seconds
            session: Optional requests session to reuse
        """
        self.api_key = api_key or get_env(OPENAI_API_KEY, None)
        if not self.api_key:
            raise ValueError("OpenAI API key not provided and not found in environment variables")

        self.base_url = (endpoint or get_env(OPENAI_ENDPOINT, DEFAULT_OPENAI_ENDPOINT)).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {self.api_key}"})

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            raise BatchClientError(f"OpenAI batch API request failed: {method} {path}: {str(e)}")

    def _batch_info(self, data: Dict[str, Any]) -> BatchInfo:
        try:
            return BatchInfo.model_validate(data)
        except ValueError as e:
            raise BatchClientError(f"Failed to parse batch record: {str(e)}")

    def upload_file(self, path: str) -> str:
        with open(path, "rb") as fh:
            response = self._request(
                "POST", "/v1/files",
                files={"file": (os.path.basename(path), fh, "application/jsonl")},
                data={"purpose": "batch"},
            )
        file_id = response.json().get("id")
        if not file_id:
            raise BatchClientError(f"Upload of {path} returned no file id")
        logger.info(f"Uploaded {path} as {file_id}")
        return file_id

    def create_batch(self, input_file_id: str, endpoint: str, completion_window: str = "24h") -> BatchInfo:
        response = self._request("POST", "/v1/batches", json={
            "input_file_id": input_file_id,
            "endpoint": endpoint,
            "completion_window": completion_window,
        })
        return self._batch_info(response.json())

    def retrieve_batch(self, batch_id: str) -> BatchInfo:
        response = self._request("GET", f"/v1/batches/{batch_id}")
        return self._batch_info(response.json())

    def download_file(self, file_id: str, out_path: str) -> str:
        Path(out_path).parent.mkdir(parents=True, exist_ok=True)
        response = self._request("GET", f"/v1/files/{file_id}/content", stream=True)
        with open(out_path, "wb") as fh:
            for chunk in response.iter_content(chunk_size=64 * 1024):
                if chunk:
                    fh.write(chunk)
        logger.debug(f"Downloaded {file_id} to {out_path}")
        return out_path
