# provision.py
from __future__ import annotations

import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .cache import CacheStore
from .errors import ProvisioningError
from .expressions import build_context, render
from .model import CacheSpec, Event, GlobalEnv, JobSpec


@dataclass
class ExecutionEnvironment:
    """
    Everything one job gets to see: its own directories, its own variables
    and a handle on the shared cache store. Nothing in here is shared with
    sibling jobs except `cache`.
    """
    job: str
    root: Path
    workspace: Path
    home: Path
    runner_os: str
    env: Dict[str, str]
    event: Event
    source: Optional[str] = None
    cache: Optional[CacheStore] = None
    deadline: Optional[float] = None  # time.monotonic() value
    timeout_minutes: Optional[float] = None
    output_tail: int = 4000

    # filled in while steps run
    cache_hit: bool = False
    pending_cache_saves: List[CacheSpec] = field(default_factory=list)

    def expand_path(self, path: str) -> Path:
        """`~` is the job's home directory; relative paths live in the workspace."""
        if path == "~" or path.startswith("~/"):
            return (self.home / path[2:]).resolve() if len(path) > 1 else self.home
        p = Path(path)
        if p.is_absolute():
            return p
        return (self.workspace / p).resolve()

    def context(self, extra_env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        env = dict(self.env)
        env.update(extra_env or {})
        return build_context(
            runner_os=self.runner_os,
            env=env,
            job=self.job,
            event_name=self.event.type,
            ref_name=self.event.branch,
            sha=self.event.commit or "",
        )

    def render(self, text: str, extra_env: Optional[Dict[str, str]] = None) -> str:
        return render(text, self.context(extra_env))

    def remaining(self) -> Optional[float]:
        """Seconds left before the job timeout, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


def provision(
    job: JobSpec,
    *,
    global_env: GlobalEnv,
    event: Event,
    work_root: Union[str, Path],
    run_id: str,
    runner_os: str,
    source: Optional[str] = None,
    cache: Optional[CacheStore] = None,
    isolate_home: bool = True,
    output_tail: int = 4000,
) -> ExecutionEnvironment:
    """
    Create a fresh, isolated environment for one job.

    Directories: <work_root>/<run_id>/<job>/{workspace,home}. Anything left
    there from an earlier run with the same id is wiped first.
    Raises ProvisioningError if the directories cannot be created.
    """
    root = Path(work_root).expanduser().resolve() / run_id / job.name
    workspace = root / "workspace"
    home = root / "home"
    try:
        if root.exists():
            shutil.rmtree(root)
        workspace.mkdir(parents=True)
        home.mkdir(parents=True)
    except OSError as e:
        raise ProvisioningError(
            f"could not create job directories under {root}",
            job=job.name,
            error=str(e),
        ) from e

    env = os.environ.copy()
    env.update(global_env.as_dict())
    env.update(
        {
            "CI": "true",
            "RUNNER_OS": runner_os,
            "FLOWGATE_JOB": job.name,
            "FLOWGATE_WORKSPACE": str(workspace),
            "FLOWGATE_EVENT_NAME": event.type,
            "FLOWGATE_REF_NAME": event.branch,
            "FLOWGATE_SHA": event.commit or "",
        }
    )
    if isolate_home:
        env["HOME"] = str(home)
    else:
        home = Path(env.get("HOME") or Path.home())

    environment = ExecutionEnvironment(
        job=job.name,
        root=root,
        workspace=workspace,
        home=home,
        runner_os=runner_os,
        env=env,
        event=event,
        source=source,
        cache=cache,
        output_tail=output_tail,
    )

    # job env may refer to the global env / runner context
    for name, value in job.env.items():
        environment.env[name] = environment.render(value)

    return environment


def cleanup(env: ExecutionEnvironment) -> None:
    shutil.rmtree(env.root, ignore_errors=True)
