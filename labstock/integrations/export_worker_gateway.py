"""
Spreadsheet export worker trigger.

POST {function_url} with ``{"jobId": ...}`` and a bearer service key. The
worker reports progress back through the export callback routes, so the
trigger result is never awaited by the request that created the job.

Testability: pass a mock `session` to ExportWorkerGateway() in tests, or
call `notify()` directly instead of `notify_async()`.
"""

from __future__ import annotations

import logging
import threading

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class ExportWorkerGateway:
    """Best-effort hand-off of an export job to the external worker."""

    def __init__(self, function_url: str | None, service_key: str | None,
                 session: requests.Session | None = None) -> None:
        self.function_url = function_url
        self.service_key = service_key
        self._session = session

    @classmethod
    def from_config(cls, cfg) -> "ExportWorkerGateway":
        return cls(cfg.get("EXPORT_FUNCTION_URL"), cfg.get("EXPORT_SERVICE_KEY"))

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def is_configured(self) -> bool:
        return bool(self.function_url and self.service_key)

    def notify(self, job_id: str) -> bool:
        """Trigger the worker for one job. Never raises; returns success."""
        if not self.is_configured():
            logger.info("Export worker not configured, job %s stays pending", job_id)
            return False
        try:
            resp = self.session.post(
                self.function_url,
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "Content-Type": "application/json",
                },
                json={"jobId": job_id},
                timeout=_DEFAULT_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error("Failed to invoke export worker for job %s: %s", job_id, exc)
            return False

        if not resp.ok:
            logger.error("Export worker rejected job %s: HTTP %s", job_id, resp.status_code)
            return False
        return True

    def notify_async(self, job_id: str) -> threading.Thread:
        """Fire-and-forget ``notify`` on a daemon thread."""
        thread = threading.Thread(
            target=self.notify, args=(job_id,),
            name=f"export-notify-{job_id[:8]}", daemon=True,
        )
        thread.start()
        return thread
