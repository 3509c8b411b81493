# steps/base.py
from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import JobTimeout
from ..model import StepKind, StepOutcome, StepSpec, StepStatus
from ..provision import ExecutionEnvironment


TOOL_HINTS = {
    "bash": "Install bash or fix PATH (shell steps run under bash).",
    "git": "Install Git or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "make": "Install make or fix PATH.",
}


@dataclass
class ProcessResult:
    returncode: int
    output: str
    timed_out: bool
    duration: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def _kill_tree(proc: subprocess.Popen) -> None:
    if hasattr(os, "killpg"):
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
    proc.kill()


def run_process(
    argv: List[str],
    *,
    cwd: Path,
    env: Dict[str, str],
    timeout: Optional[float],
    tail: int = 4000,
) -> ProcessResult:
    """
    Run a child process to completion (or until `timeout` seconds pass).

    stdout and stderr are merged and only the last `tail` characters are kept.
    On timeout the whole process group is killed, so `make` and whatever it
    spawned go down together.

    Raises FileNotFoundError if argv[0] does not exist.
    """
    started = time.monotonic()
    proc = subprocess.Popen(
        argv,
        cwd=str(cwd),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
        start_new_session=True,
    )
    timed_out = False
    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_tree(proc)
        output, _ = proc.communicate()

    return ProcessResult(
        returncode=proc.returncode,
        output=(output or "")[-tail:] if tail else "",
        timed_out=timed_out,
        duration=time.monotonic() - started,
    )


class Step:
    """
    A runnable step. Each kind implements `execute(env)`:
      - return a StepOutcome on success
      - raise StepFailure / ProvisioningError / JobTimeout on failure
    """

    kind: StepKind

    def __init__(self, spec: StepSpec):
        if spec.kind is not self.kind:
            raise ValueError(f"{type(self).__name__} cannot run a {spec.kind.value} step")
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def execute(self, env: ExecutionEnvironment) -> StepOutcome:
        raise NotImplementedError

    def succeeded(self, output: str = "", duration: float = 0.0) -> StepOutcome:
        return StepOutcome(
            name=self.name,
            kind=self.kind,
            status=StepStatus.SUCCEEDED,
            exit_code=0,
            output=output,
            duration=duration,
        )

    def check_deadline(self, env: ExecutionEnvironment) -> Optional[float]:
        """Seconds this step may still use; raises JobTimeout when none are left."""
        remaining = env.remaining()
        if remaining is not None and remaining <= 0:
            raise JobTimeout(job=env.job, step=self.name, timeout_minutes=env.timeout_minutes or 0)
        return remaining

    def raise_if_timed_out(self, env: ExecutionEnvironment, result: ProcessResult) -> None:
        if result.timed_out:
            raise JobTimeout(
                job=env.job,
                step=self.name,
                timeout_minutes=env.timeout_minutes or 0,
                output=result.output,
            )

    def step_env(self, env: ExecutionEnvironment) -> Dict[str, str]:
        """Job environment plus this step's own `env:` (rendered)."""
        merged = dict(env.env)
        for k, v in self.spec.env.items():
            merged[k] = env.render(v, merged)
        return merged
