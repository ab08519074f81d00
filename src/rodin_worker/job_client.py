"""
Generation job clients.

The task processor only sees ``GenerationJobClient.result``, which either
returns a ``JobResult`` or raises ``JobNotReadyError`` / ``JobFailedError``.
``FalQueueClient`` talks to the fal queue REST API directly via requests.
API key: set FAL_KEY env var or pass via WorkerConfig.
"""
import logging
from abc import ABC, abstractmethod

import requests

from rodin_worker.contracts import JobResult
from rodin_worker.errors import JobError, JobFailedError, JobNotReadyError

logger = logging.getLogger(__name__)

# fal answers 400 "still in progress" / 404 for results that are not ready.
NOT_READY_STATUS_CODES = (400, 404)
NOT_READY_MARKERS = ("404", "400", "not found", "bad request")


def classify_job_error(message: str, status_code=None) -> JobError:
    """Turn a raw error message (and optional HTTP status) into a typed error."""
    if status_code is not None:
        not_ready = status_code in NOT_READY_STATUS_CODES
    else:
        text = (message or "").lower()
        not_ready = any(m in text for m in NOT_READY_MARKERS)
    if not_ready:
        return JobNotReadyError(message, status_code=status_code)
    return JobFailedError(message, status_code=status_code)


class GenerationJobClient(ABC):
    """Read access to a remote generation job by its task id."""

    @abstractmethod
    def result(self, task_id: str) -> JobResult:
        """Return the finished job's result.

        Raises:
            JobNotReadyError: If the job is still running.
            JobFailedError: For any other failure.
        """
        ...


class FalQueueClient(GenerationJobClient):
    """Job client backed by the fal.ai queue API."""

    def __init__(self, api_key: str, app: str = "fal-ai/hyper3d/rodin",
                 queue_url: str = "https://queue.fal.run", timeout: float = 30.0):
        self.api_key = api_key
        self.app = app
        self.queue_url = queue_url.rstrip("/")
        self.timeout = timeout

    def _headers(self):
        return {
            "Authorization": f"Key {self.api_key}",
            "Accept": "application/json",
        }

    def _app_root(self) -> str:
        # Queue endpoints address the owner/alias only, never the sub-path.
        parts = [p for p in self.app.split("/") if p]
        return "/".join(parts[:2])

    def request_url(self, task_id: str) -> str:
        return f"{self.queue_url}/{self._app_root()}/requests/{task_id}"

    def result(self, task_id):
        url = self.request_url(task_id)
        try:
            resp = requests.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise JobFailedError(f"fal queue request failed: {e}") from e

        self._check_response(resp)
        try:
            payload = resp.json()
        except ValueError as e:
            raise JobFailedError(f"fal queue returned non-JSON body: {resp.text[:200]}") from e
        logger.debug("Result for %s: %s", task_id, payload)
        return JobResult.from_payload(payload)

    def _check_response(self, resp):
        """Check HTTP response for errors."""
        if resp.status_code in (401, 403):
            raise JobFailedError(
                f"fal authentication failed ({resp.status_code}). Check your FAL_KEY.",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise classify_job_error(
                f"fal queue error {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
