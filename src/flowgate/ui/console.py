"""Console output formatting utilities for flowgate."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional

from ..model import JobOutcome, JobSpec, PipelineResult, StepStatus


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # jobs run on worker threads; keep each message in one piece
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        branch: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Event: {event} ({branch})",
            f"Jobs: {job_count}",
            "",
        )

    def print_not_triggered(self, reason: str) -> None:
        self._out(f"\nNOT TRIGGERED: {reason}")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"[{name}] JOB STARTED")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] ▶ {name}")

    def print_job_finished(self, outcome: JobOutcome) -> None:
        if outcome.ok:
            self._out(f"[{outcome.job}] STATUS: success ({outcome.duration:.1f}s)")
            return
        lines = [f"[{outcome.job}] JOB FAILED: {outcome.status.value}"]
        failed = next((s for s in outcome.steps if s.status in (StepStatus.FAILED, StepStatus.TIMED_OUT)), None)
        if failed is not None:
            lines.append(f"[{outcome.job}] Step: {failed.name}")
            if failed.exit_code is not None:
                lines.append(f"[{outcome.job}] Exit code: {failed.exit_code}")
        if outcome.error:
            if self.debug:
                lines.append(f"[{outcome.job}] Error details: {outcome.error}")
            else:
                lines.append(f"[{outcome.job}] Error: {outcome.error.splitlines()[0]}")
        if failed is not None and failed.output:
            lines.append(f"[{outcome.job}] --- output (tail) ---")
            lines.extend(f"[{outcome.job}] {line}" for line in failed.output.rstrip().splitlines())
        self._out(*lines)

    def print_cache_hit(self, job: str, key: str) -> None:
        """Print cache hit message."""
        self._out(f"[{job}] CACHE: hit ({key})")

    def print_cache_miss(self, job: str, key: str) -> None:
        """Print cache miss message."""
        self._out(f"[{job}] CACHE: miss ({key})")

    def print_cache_saved(self, job: str, key: str) -> None:
        """Print cache save message."""
        self._out(f"[{job}] CACHE: saved ({key})")

    def print_cache_kept(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: entry exists, not saving ({key})")

    def print_plan(self, triggered: bool, reason: str, jobs: Iterable[JobSpec]) -> None:
        """Print what a run would do."""
        lines = [f"Trigger: {'yes' if triggered else 'no'} ({reason})"]
        if triggered:
            for job in jobs:
                lines.append(f"  {job.name} ({job.display_name}, timeout {job.timeout_minutes:g}m)")
                for i, step in enumerate(job.steps, 1):
                    lines.append(f"    {i}. [{step.kind.value}] {step.name}")
        self._out(*lines)

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for outcome in result.jobs:
            status = "SUCCESS" if outcome.ok else outcome.status.value.upper()
            lines.append(f"  {outcome.job}: {status}")
        lines.append(f"PIPELINE: {result.status.value.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
