"""Client for the external document-processing (OCR and segmentation) service."""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from factchat.config import settings

logger = logging.getLogger(__name__)

SUCCEEDED = "Succeeded"
TERMINAL_STATUSES = ("Succeeded", "Failed", "Cancelled")


class ProcessingPending(Exception):
    """The processing task has not completed yet."""


class ProcessingFailed(Exception):
    """The processing task finished without output."""


@dataclass
class ProcessedSegment:
    """One layout segment of a processed document."""

    chunk_index: int
    chunk_id: Optional[str]
    segment_id: Optional[str]
    page_number: Optional[int]
    page_width: Optional[float]
    page_height: Optional[float]
    bbox: Optional[Dict[str, float]]
    content: str
    embed: str


def extract_segments(task: Dict[str, Any]) -> List[ProcessedSegment]:
    """
    Flatten a completed task's chunks into segments.

    Segments with nothing to embed are skipped. ``chunk_index`` is the
    position of the enclosing chunk in the task output.
    """
    output = task.get("output") or {}
    segments = []
    for chunk_index, chunk in enumerate(output.get("chunks") or []):
        for segment in chunk.get("segments") or []:
            content = segment.get("content") or segment.get("text") or segment.get("embed") or ""
            embed = segment.get("embed") or segment.get("content") or segment.get("text") or ""
            if not embed.strip():
                continue
            segments.append(
                ProcessedSegment(
                    chunk_index=chunk_index,
                    chunk_id=chunk.get("chunk_id"),
                    segment_id=segment.get("segment_id"),
                    page_number=segment.get("page_number"),
                    page_width=segment.get("page_width"),
                    page_height=segment.get("page_height"),
                    bbox=segment.get("bbox"),
                    content=content,
                    embed=embed,
                )
            )
    return segments


class DocumentProcessorClient:
    """Submits files for parsing and polls for the result."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        """Initialize the client."""
        self.base_url = settings.DOC_PROCESSOR_BASE_URL.rstrip("/")
        self.api_key = settings.DOC_PROCESSOR_API_KEY
        self.poll_delay = settings.DOC_PROCESSOR_POLL_DELAY
        self.max_poll_attempts = settings.DOC_PROCESSOR_MAX_POLL_ATTEMPTS
        self._client = http_client or httpx.AsyncClient(timeout=60.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProcessingFailed("DOC_PROCESSOR_API_KEY is missing")
        return {"Authorization": self.api_key}

    async def create_task(self, data: bytes, filename: str) -> str:
        """
        Submit a file for parsing.

        Args:
            data: File contents
            filename: Original filename

        Returns:
            The processing task id
        """
        payload = {
            "file": base64.b64encode(data).decode("ascii"),
            "file_name": filename,
            "chunk_processing": {
                "target_length": settings.DOC_PROCESSOR_TARGET_TOKENS,
                "tokenizer": {"Enum": "Cl100kBase"},
            },
        }
        response = await self._client.post(f"{self.base_url}/task/parse", headers=self._headers(), json=payload)
        response.raise_for_status()
        task_id = response.json()["task_id"]
        logger.info(f"Created document processing task {task_id} for {filename}")
        return task_id

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        response = await self._client.get(f"{self.base_url}/task/{task_id}", headers=self._headers())
        response.raise_for_status()
        return response.json()

    async def wait_for_task(self, task_id: str) -> Dict[str, Any]:
        """
        Poll a task until it reaches a terminal status.

        Polling is bounded by DOC_PROCESSOR_MAX_POLL_ATTEMPTS at a fixed delay.

        Raises:
            ProcessingPending: If the task is still running after the last attempt
            ProcessingFailed: If the task finished unsuccessfully
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_poll_attempts),
            wait=wait_fixed(self.poll_delay),
            retry=retry_if_exception_type(ProcessingPending),
            reraise=True,
        ):
            with attempt:
                task = await self.get_task(task_id)
                status = task.get("status")
                if status not in TERMINAL_STATUSES:
                    raise ProcessingPending(f"Task {task_id} is {status}")

        if task.get("status") != SUCCEEDED:
            raise ProcessingFailed(task.get("message") or "Document processing failed")

        logger.info(f"Document processing task {task_id} succeeded")
        return task
