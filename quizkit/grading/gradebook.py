"""
Gradebook collaborators.

After a real regrade the final grades of a quiz are pushed to whatever
gradebook is configured: nowhere (NullGradebook) or an HTTP endpoint.
"""
from __future__ import annotations

import time
from typing import Protocol

import httpx
from loguru import logger

from config import Settings, get_settings


class Gradebook(Protocol):
    def update_grades(self, quiz_id: int, grades: dict[int, float | None]) -> None: ...


class NullGradebook:
    """Gradebook that accepts and drops every update."""

    def update_grades(self, quiz_id: int, grades: dict[int, float | None]) -> None:
        logger.debug(f"No gradebook configured; {len(grades)} grades for quiz {quiz_id} not sent")


class HttpGradebook:
    """POST final grades as JSON to a gradebook endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 10.0,
        retry_attempts: int = 3,
        client: httpx.Client | None = None,
    ):
        """
        Initialize gradebook client.

        Args:
            url: Endpoint receiving {"quiz_id": ..., "grades": {...}}
            api_key: Bearer token (omitted when empty)
            timeout: Request timeout in seconds
            retry_attempts: Attempts on timeout before giving up
            client: Pre-built httpx client (tests pass a MockTransport client)
        """
        self.url = url
        self.retry_attempts = retry_attempts
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or httpx.Client(timeout=httpx.Timeout(timeout), headers=headers)

    def close(self) -> None:
        self.client.close()

    def update_grades(self, quiz_id: int, grades: dict[int, float | None]) -> None:
        """
        Send grades for one quiz.

        Raises:
            httpx.HTTPError: when the endpoint rejects the update or keeps timing out
        """
        payload = {"quiz_id": quiz_id, "grades": {str(user): grade for user, grade in grades.items()}}
        last_error: Exception | None = None
        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(self.url, json=payload)
                response.raise_for_status()
                logger.info(f"Sent {len(grades)} grades for quiz {quiz_id} to gradebook")
                return
            except httpx.TimeoutException as e:
                last_error = e
                wait_time = 2**attempt  # Exponential backoff: 1s, 2s, 4s
                logger.warning(
                    f"Gradebook timeout (attempt {attempt + 1}/{self.retry_attempts}), retrying in {wait_time}s"
                )
                if attempt + 1 < self.retry_attempts:
                    time.sleep(wait_time)
        raise last_error or httpx.TimeoutException("Gradebook update timed out")


def gradebook_from_settings(settings: Settings | None = None) -> Gradebook:
    settings = settings or get_settings()
    if not settings.has_gradebook_configured():
        return NullGradebook()
    return HttpGradebook(
        settings.gradebook_url,
        api_key=settings.gradebook_api_key,
        timeout=settings.gradebook_timeout,
    )
