# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-job diagnostics in the pipeline result
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: Optional[str]
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Malformed workflow: raised while loading/expanding, before any job runs."""

    def __init__(self, message: str, *, job: str = "", step: Optional[str] = None, **details):
        super().__init__(kind="config_error", job=job, step=step, message=message, details=details)


class ProvisioningError(CIError):
    """Checkout or toolchain installation failed. Fatal to the job, never retried."""

    def __init__(
        self,
        message: str,
        *,
        job: str = "",
        step: Optional[str] = None,
        exit_code: Optional[int] = None,
        output: str = "",
        **details,
    ):
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(kind="provisioning_error", job=job, step=step, message=message, details=details)
        self.exit_code = exit_code
        self.output = output


class StepFailure(CIError):
    def __init__(self, *, job: str, step: str, cmd: str, exit_code: int, output: str = ""):
        super().__init__(
            kind="step_failure",
            job=job,
            step=step,
            message=f"step '{step}' failed (exit={exit_code})",
            details={"cmd": cmd, "exit_code": exit_code},
        )
        self.cmd = cmd
        self.exit_code = exit_code
        self.output = output


class JobTimeout(CIError):
    def __init__(self, *, job: str, step: Optional[str], timeout_minutes: float, output: str = ""):
        super().__init__(
            kind="timeout",
            job=job,
            step=step,
            message=f"job exceeded its timeout of {timeout_minutes:g} minute(s)",
            details={"timeout_minutes": timeout_minutes},
        )
        self.timeout_minutes = timeout_minutes
        self.output = output
