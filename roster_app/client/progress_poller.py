"""
HTTP client that uploads donor files and polls their import progress.

Polling is bounded: after ``max_attempts`` non-terminal answers the poller
stops and raises ``PollingAbandoned``. The import itself keeps running on the
server; only the client gives up waiting.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Mapping

import requests

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_ATTEMPTS = 300
TERMINAL_STATUSES = frozenset({"completed", "error", "cancelled"})


class ProgressPollerError(RuntimeError):
    """Base error for progress polling failures."""


class PollingAbandoned(ProgressPollerError):
    """Raised when the operation is still running after the last allowed poll."""

    def __init__(self, operation_id: str, attempts: int, last_payload: Mapping[str, object] | None = None):
        super().__init__(
            f"Stopped polling {operation_id} after {attempts} attempts; manual check required."
        )
        self.operation_id = operation_id
        self.attempts = attempts
        self.last_payload = dict(last_payload or {})


class ProgressPoller:
    """Drive one donor import from upload to terminal status over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        session: requests.Session | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        request_timeout: float = 30.0,
        sleep_fn=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.request_timeout = request_timeout
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)

    # Public API -----------------------------------------------------------------

    def upload(self, file_path: str | Path) -> str:
        """Upload a donor file and return the operation id the server assigned."""
        path = Path(file_path)
        with path.open("rb") as handle:
            response = self.session.post(
                f"{self.base_url}/api/donors/import",
                files={"file": (path.name, handle)},
                timeout=self.request_timeout,
            )
        self._raise_for_status(response, "upload")
        operation_id = response.json()["operationId"]
        self.logger.info("Donor file uploaded", extra={"operation_id": operation_id, "source_filename": path.name})
        return operation_id

    def fetch(self, operation_id: str) -> dict:
        response = self.session.get(f"{self.base_url}/progress/{operation_id}", timeout=self.request_timeout)
        self._raise_for_status(response, "progress")
        return response.json()

    def wait(
        self,
        operation_id: str,
        on_update: Callable[[Mapping[str, object]], None] | None = None,
    ) -> dict:
        """
        Poll until the operation reaches a terminal status and return its payload.

        ``on_update`` receives every payload, including the terminal one.
        Raises ``PollingAbandoned`` once ``max_attempts`` polls came back
        non-terminal.
        """
        payload: dict | None = None
        for attempt in range(1, self.max_attempts + 1):
            payload = self.fetch(operation_id)
            if on_update is not None:
                on_update(payload)
            if payload.get("status") in TERMINAL_STATUSES:
                self.logger.debug(
                    "Donor import reached terminal status",
                    extra={"operation_id": operation_id, "status": payload.get("status"), "attempts": attempt},
                )
                return payload
            if attempt < self.max_attempts:
                self.sleep(self.poll_interval)

        self.logger.warning(
            "Gave up polling donor import",
            extra={"operation_id": operation_id, "attempts": self.max_attempts},
        )
        raise PollingAbandoned(operation_id, self.max_attempts, payload)

    def cancel(self, operation_id: str) -> bool:
        """Ask the server to cancel; returns whether the request was accepted."""
        response = self.session.delete(f"{self.base_url}/progress/{operation_id}", timeout=self.request_timeout)
        self._raise_for_status(response, "cancel")
        return bool(response.json().get("cancelRequested"))

    def import_file(self, file_path: str | Path, on_update=None) -> dict:
        """Upload ``file_path`` and wait for the import to finish."""
        return self.wait(self.upload(file_path), on_update=on_update)

    # Internal helpers -----------------------------------------------------------

    def _raise_for_status(self, response, action: str) -> None:
        if response.ok:
            return
        try:
            detail = response.json().get("message")
        except ValueError:
            detail = response.text
        self.logger.error(
            f"Donor import {action} request failed: {detail}",
            extra={"status_code": response.status_code, "action": action},
        )
        response.raise_for_status()
