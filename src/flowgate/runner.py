# runner.py
from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Type

from .cache import CacheStore
from .errors import CIError, ConfigError, JobTimeout, ProvisioningError
from .model import (
    Event,
    JobOutcome,
    JobSpec,
    JobStatus,
    PipelineConfig,
    PipelineResult,
    PipelineStatus,
    StepKind,
    StepOutcome,
    StepSpec,
    StepStatus,
)
from .provision import ExecutionEnvironment, cleanup, provision
from .settings import Settings
from .steps.base import Step
from .steps.cache_restore import CacheRestoreStep
from .steps.checkout import CheckoutStep
from .steps.shell import ShellCommandStep
from .steps.toolchain import ToolchainInstallStep
from .trigger import matches
from .ui.console import get_console

if TYPE_CHECKING:
    from .reporting import StatusReporter


STEP_TYPES: Dict[StepKind, Type[Step]] = {
    StepKind.CHECKOUT: CheckoutStep,
    StepKind.CACHE_RESTORE: CacheRestoreStep,
    StepKind.SHELL_COMMAND: ShellCommandStep,
    StepKind.TOOLCHAIN_INSTALL: ToolchainInstallStep,
}


def step_for(spec: StepSpec) -> Step:
    try:
        return STEP_TYPES[spec.kind](spec)
    except KeyError:
        raise ConfigError(f"no step implementation for kind '{spec.kind}'", step=spec.name) from None


def new_run_id() -> str:
    return f"{time.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"


# ----------------------------------------------------------------------
# Step executor
# ----------------------------------------------------------------------

def _failed_step(spec: StepSpec, err: CIError) -> StepOutcome:
    status = StepStatus.TIMED_OUT if isinstance(err, JobTimeout) else StepStatus.FAILED
    return StepOutcome(
        name=spec.name,
        kind=spec.kind,
        status=status,
        exit_code=getattr(err, "exit_code", None),
        output=getattr(err, "output", "") or "",
    )


def _save_caches(job: JobSpec, env: ExecutionEnvironment, outcome: JobOutcome) -> None:
    console = get_console()
    for spec in env.pending_cache_saves:
        try:
            saved = env.cache.save(spec, env)
        except OSError as e:
            # a cache that can't be written is a warning, not a job failure
            console.print_error("Cache save failed", f"[{job.name}] {spec.key}", details=[str(e)])
            continue
        if saved.saved:
            outcome.cache_saved = True
            console.print_cache_saved(job.name, spec.key)
        else:
            console.print_cache_kept(job.name, spec.key)
            console.print_debug(f"[{job.name}] {saved.reason}")


def run_job(job: JobSpec, env: ExecutionEnvironment) -> JobOutcome:
    """
    Run the job's steps in order inside a provisioned environment.

    Pending -> Running -> Succeeded | Failed | TimedOut.
    The first failing step ends the job; the rest are recorded as skipped.
    Cache saves queued by cache steps happen only when every step succeeded.
    """
    console = get_console()
    outcome = JobOutcome(job=job.name, status=JobStatus.RUNNING)
    started = time.monotonic()
    env.timeout_minutes = job.timeout_minutes
    env.deadline = started + job.timeout_minutes * 60

    steps = [step_for(s) for s in job.steps]
    for idx, step in enumerate(steps):
        console.print_step(job.name, step.name)
        try:
            try:
                step_outcome = step.execute(env)
            except CIError:
                raise
            except Exception as e:
                raise CIError(kind="internal_error", job=job.name, step=step.name, message=str(e)) from e
            outcome.steps.append(step_outcome)
            if env.remaining() <= 0:
                raise JobTimeout(job=job.name, step=step.name, timeout_minutes=job.timeout_minutes)
        except CIError as e:
            if len(outcome.steps) == idx:
                outcome.steps.append(_failed_step(step.spec, e))
            else:
                # the step itself finished but ran past the deadline
                outcome.steps[-1].status = StepStatus.TIMED_OUT
            outcome.status = JobStatus.TIMED_OUT if isinstance(e, JobTimeout) else JobStatus.FAILED
            outcome.error_kind = e.kind
            outcome.error = str(e)
            for rest in steps[idx + 1:]:
                outcome.steps.append(StepOutcome(name=rest.name, kind=rest.kind, status=StepStatus.SKIPPED))
            break
    else:
        outcome.status = JobStatus.SUCCEEDED

    outcome.cache_hit = env.cache_hit
    if outcome.ok and env.cache is not None:
        _save_caches(job, env, outcome)

    outcome.duration = time.monotonic() - started
    return outcome


def execute_job(
    job: JobSpec,
    config: PipelineConfig,
    event: Event,
    *,
    settings: Settings,
    run_id: str,
    source: Optional[str] = None,
    cache: Optional[CacheStore] = None,
    keep_workdir: bool = False,
) -> JobOutcome:
    """Provision, run and clean up one job. Never raises for job-level failures."""
    console = get_console()
    console.print_job_start(job.name)
    started = time.monotonic()
    try:
        env = provision(
            job,
            global_env=config.global_env,
            event=event,
            work_root=settings.work_dir,
            run_id=run_id,
            runner_os=settings.runner_os,
            source=source,
            cache=cache,
            isolate_home=settings.isolate_home,
            output_tail=settings.output_tail,
        )
    except ProvisioningError as e:
        outcome = JobOutcome(
            job=job.name,
            status=JobStatus.FAILED,
            error_kind=e.kind,
            error=str(e),
            steps=[StepOutcome(name=s.name, kind=s.kind, status=StepStatus.SKIPPED) for s in job.steps],
            duration=time.monotonic() - started,
        )
        console.print_job_finished(outcome)
        return outcome

    try:
        outcome = run_job(job, env)
    finally:
        if not keep_workdir:
            cleanup(env)

    console.print_job_finished(outcome)
    return outcome


# ----------------------------------------------------------------------
# Aggregation + pipeline
# ----------------------------------------------------------------------

def aggregate(outcomes: Iterable[JobOutcome]) -> PipelineResult:
    """Succeeded iff every job succeeded. There is no partial success."""
    jobs = list(outcomes)
    ok = all(o.status is JobStatus.SUCCEEDED for o in jobs)
    return PipelineResult(status=PipelineStatus.SUCCEEDED if ok else PipelineStatus.FAILED, jobs=jobs)


def select_jobs(config: PipelineConfig, only: Optional[Sequence[str]] = None) -> List[JobSpec]:
    if not only:
        return list(config.jobs)
    known = {j.name for j in config.jobs}
    unknown = sorted(set(only) - known)
    if unknown:
        raise ConfigError(f"unknown job(s): {unknown}", known=", ".join(sorted(known)))
    return [j for j in config.jobs if j.name in only]


def run_pipeline(
    config: PipelineConfig,
    event: Event,
    *,
    settings: Optional[Settings] = None,
    source: Optional[str] = None,
    only_jobs: Optional[Sequence[str]] = None,
    reporter: Optional["StatusReporter"] = None,
    keep_workdirs: bool = False,
) -> PipelineResult:
    """
    Run every job of a triggered pipeline in parallel.

    Jobs are isolated failure domains: one failing never cancels another.
    Returns a Skipped result (no jobs) when the event doesn't trigger.
    """
    settings = settings or Settings()
    if not matches(event, config.triggers):
        return PipelineResult(status=PipelineStatus.SKIPPED)

    jobs = select_jobs(config, only_jobs)
    cache = CacheStore(settings.cache_dir)
    run_id = new_run_id()
    Path(settings.work_dir).mkdir(parents=True, exist_ok=True)

    if reporter is not None:
        for job in jobs:
            reporter.job_started(job, event)

    def _one(job: JobSpec) -> JobOutcome:
        outcome = execute_job(
            job,
            config,
            event,
            settings=settings,
            run_id=run_id,
            source=source,
            cache=cache,
            keep_workdir=keep_workdirs,
        )
        if reporter is not None:
            reporter.job_finished(outcome, event)
        return outcome

    max_workers = settings.max_workers or max(1, len(jobs))
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        outcomes = list(pool.map(_one, jobs))

    result = aggregate(outcomes)
    if reporter is not None:
        reporter.pipeline_finished(result, event)
    return result
