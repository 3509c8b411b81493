# reporting.py
from __future__ import annotations

import json
import threading
import urllib.error
import urllib.request

from .model import Event, JobOutcome, JobSpec, PipelineResult, PipelineStatus
from .ui.console import get_console


class APIError(Exception):
    """Raised when a status request fails."""
    pass


# commit-status style states
_JOB_STATES = {
    "succeeded": "success",
    "failed": "failure",
    "timed_out": "error",
}


class StatusReporter:
    """
    Posts job and pipeline statuses to a status endpoint, the local stand-in
    for pull-request checks.

    Every call sends one JSON object:
        {"context": ..., "state": pending|success|failure|error,
         "description": ..., "commit": ..., "branch": ..., "event": ...}

    A failed report is printed and swallowed: reporting never changes the
    pipeline result.
    """

    def __init__(self, url: str, *, context_prefix: str = "flowgate", timeout: float = 10.0):
        self.url = url
        self.context_prefix = context_prefix
        self.timeout = timeout
        self._lock = threading.Lock()
        self.failures = 0

    def _request(self, data: dict) -> dict:
        """
        POST `data` as JSON.

        Raises:
            APIError: If the request fails
        """
        req = urllib.request.Request(
            self.url,
            data=json.dumps(data).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"status request failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def _send(self, context: str, state: str, description: str, event: Event) -> None:
        payload = {
            "context": f"{self.context_prefix}/{context}" if context else self.context_prefix,
            "state": state,
            "description": description,
            "commit": event.commit,
            "branch": event.branch,
            "event": event.type,
        }
        try:
            self._request(payload)
        except APIError as e:
            with self._lock:
                self.failures += 1
            get_console().print_error("Status report failed", str(e), details=[payload["context"]])

    def job_started(self, job: JobSpec, event: Event) -> None:
        self._send(job.name, "pending", f"{job.display_name} is running", event)

    def job_finished(self, outcome: JobOutcome, event: Event) -> None:
        state = _JOB_STATES.get(outcome.status.value, "error")
        description = f"{outcome.status.value} in {outcome.duration:.1f}s"
        self._send(outcome.job, state, description, event)

    def pipeline_finished(self, result: PipelineResult, event: Event) -> None:
        state = "success" if result.status is PipelineStatus.SUCCEEDED else "failure"
        failed = [o.job for o in result.jobs if not o.ok]
        description = "all jobs passed" if not failed else f"failed: {', '.join(failed)}"
        self._send("", state, description, event)
