# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple


EVENT_TYPES = ("push", "pull_request")

# Hosted runners time out a job after six hours unless told otherwise.
DEFAULT_TIMEOUT_MINUTES = 360


class StepKind(str, Enum):
    CHECKOUT = "checkout"
    CACHE_RESTORE = "cache-restore"
    SHELL_COMMAND = "shell-command"
    TOOLCHAIN_INSTALL = "toolchain-install"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class PipelineStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # event did not trigger


@dataclass(frozen=True)
class Event:
    """A repository event (push / pull_request) offered to the trigger rules."""
    type: str
    branch: str
    changed_paths: Tuple[str, ...] = ()
    commit: Optional[str] = None


@dataclass(frozen=True)
class TriggerRule:
    """
    One event block of the workflow's `on:` section.

    An empty `branch_patterns` tuple means every branch. `path_include_patterns`
    is the `paths:` filter, `path_exclude_patterns` is `paths-ignore:`.
    """
    event_types: frozenset
    branch_patterns: Tuple[str, ...] = ()
    path_exclude_patterns: Tuple[str, ...] = ()
    path_include_patterns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CacheSpec:
    key: str
    paths: Tuple[str, ...]


@dataclass(frozen=True)
class StepSpec:
    """A single action or command inside a job, tagged by kind."""
    kind: StepKind
    name: str
    parameters: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def run(self) -> str:
        return self.parameters.get("run", "")

    @property
    def uses(self) -> str:
        return self.parameters.get("uses", "")


@dataclass(frozen=True)
class GlobalEnv:
    """Workflow-level `env:` block, shared read-only by every job."""
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def as_dict(self) -> Dict[str, str]:
        return dict(self.values)


@dataclass(frozen=True)
class JobSpec:
    """
    A CI job: ordered steps plus the metadata needed to provision it.

    `name` is the job id (the key under `jobs:`) and is unique per pipeline;
    `title` is the human readable `name:` field.
    """
    name: str
    steps: Tuple[StepSpec, ...]
    title: str = ""
    runs_on: str = "ubuntu-latest"
    timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title or self.name

    @property
    def cache_spec(self) -> Optional[CacheSpec]:
        for step in self.steps:
            if step.kind is StepKind.CACHE_RESTORE:
                return CacheSpec(
                    key=step.parameters.get("key", ""),
                    paths=split_lines(step.parameters.get("path", "")),
                )
        return None


@dataclass(frozen=True)
class PipelineConfig:
    name: str
    triggers: Tuple[TriggerRule, ...]
    global_env: GlobalEnv
    jobs: Tuple[JobSpec, ...]


@dataclass
class StepOutcome:
    name: str
    kind: StepKind
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


@dataclass
class JobOutcome:
    job: str
    status: JobStatus = JobStatus.PENDING
    steps: List[StepOutcome] = field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    cache_hit: bool = False
    cache_saved: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    @property
    def executed_steps(self) -> List[str]:
        return [s.name for s in self.steps if s.status is not StepStatus.SKIPPED]


@dataclass
class PipelineResult:
    status: PipelineStatus
    jobs: List[JobOutcome] = field(default_factory=list)

    @property
    def triggered(self) -> bool:
        return self.status is not PipelineStatus.SKIPPED

    @property
    def ok(self) -> bool:
        return self.status is not PipelineStatus.FAILED

    def job(self, name: str) -> JobOutcome:
        for outcome in self.jobs:
            if outcome.job == name:
                return outcome
        raise KeyError(name)


def split_lines(value: str) -> Tuple[str, ...]:
    """Split a multi-line `with:` value into its non-empty, stripped lines."""
    return tuple(line.strip() for line in (value or "").splitlines() if line.strip())
