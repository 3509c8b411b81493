# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence

import click

from flowgate.config import load_workflow
from flowgate.errors import CIError, ConfigError
from flowgate.git_facts.git import changed_since, current_branch, head_sha, repo_root
from flowgate.model import EVENT_TYPES, Event, PipelineConfig
from flowgate.reporting import StatusReporter
from flowgate.runner import run_pipeline, select_jobs
from flowgate.settings import load_settings
from flowgate.trigger import explain, matches
from flowgate.ui.console import Console, get_console, set_console

WORKFLOW_DIR = Path(".github/workflows")


def find_workflow_files() -> list[Path]:
    """Find workflow files in .github/workflows (and *.flowgate.yml in cwd)."""
    found = []
    if WORKFLOW_DIR.is_dir():
        found.extend(WORKFLOW_DIR.glob("*.yml"))
        found.extend(WORKFLOW_DIR.glob("*.yaml"))
    found.extend(Path(".").glob("*.flowgate.yml"))
    return sorted(found)


def discover_workflow(workflow_arg: Optional[str]) -> Path:
    """
    Resolve the workflow file from the argument, or find the only one present.

    Raises:
        SystemExit: If no workflow, or more than one, can be found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify an existing file:\n  flowgate run .github/workflows/ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()
    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {WORKFLOW_DIR}/*.yml", "  *.flowgate.yml"],
            suggestion="Specify a workflow explicitly:\n  flowgate run path/to/ci.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
        )
        sys.exit(1)

    return workflow_files[0]


def _load(workflow_path: Path, debug: bool) -> PipelineConfig:
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except ConfigError as e:
        console.print_error(
            "Invalid workflow",
            f"{workflow_path}: {e.message}",
            details=[f"{k}: {v}" for k, v in e.details.items()] + ([f"job: {e.job}"] if e.job else []),
        )
        if debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


def base_branch(compare_ref: str) -> str:
    """Branch name of a compare ref: "origin/main" -> "main"."""
    for prefix in ("refs/remotes/origin/", "refs/heads/", "origin/"):
        if compare_ref.startswith(prefix):
            return compare_ref[len(prefix):]
    return compare_ref


def build_event(
    event_type: str,
    branch: Optional[str],
    changed: Sequence[str],
    git_diff: bool,
    compare_ref: str,
    commit: Optional[str],
    source: Optional[Path],
) -> Event:
    """
    Event from explicit flags, with gaps filled in from the local git checkout.
    """
    console = get_console()
    if branch is None:
        if event_type == "pull_request":
            # pull_request filters match the base branch, not the head
            branch = base_branch(compare_ref)
            console.print_debug(f"Using base branch from --compare-ref: {branch}")
        elif source is None:
            raise click.UsageError("--branch is required outside a git checkout")
        else:
            branch = current_branch(cwd=source)
            console.print_debug(f"Using branch from git: {branch}")

    if changed:
        paths = list(changed)
    elif git_diff and source is not None:
        paths = changed_since(compare_ref, cwd=source)
        console.print_debug(f"{len(paths)} changed file(s) since {compare_ref}")
    else:
        paths = []

    if commit is None and source is not None:
        commit = head_sha(cwd=source)

    return Event(type=event_type, branch=branch, changed_paths=tuple(paths), commit=commit)


def _source_repo(source_arg: Optional[str]) -> Optional[Path]:
    try:
        return repo_root(cwd=source_arg or ".")
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        if source_arg:
            raise click.BadParameter(f"{source_arg} is not a git repository", param_hint="--source")
        return None


def event_options(fn):
    """Flags shared by `run` and `plan` that describe the triggering event."""
    options = [
        click.option("--event", "event_type", type=click.Choice(EVENT_TYPES), default="push", show_default=True,
                     help="Event type to simulate"),
        click.option("--branch", default=None,
                     help="Target branch (push: the checked out branch; pull_request: the base of --compare-ref)"),
        click.option("--changed", multiple=True, help="Changed file path (repeatable; overrides --git-diff)"),
        click.option("--git-diff/--no-git-diff", default=True, show_default=True,
                     help="Compute changed files from git when --changed is not given"),
        click.option("--compare-ref", default="origin/main", show_default=True, help="Git ref to diff against"),
        click.option("--commit", default=None, help="Commit to check out (defaults to HEAD of --source)"),
        click.option("--source", default=None, help="Repository to check out (defaults to the current repo)"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """flowgate: run a CI workflow file locally."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("workflow", required=False)
@event_options
@click.option("--job", "jobs", multiple=True, help="Only run this job (repeatable)")
@click.option("--workers", default=None, type=int, help="Number of jobs to run in parallel")
@click.option("--cache-dir", default=None, help="Cache directory [env: FLOWGATE_CACHE_DIR]")
@click.option("--work-dir", default=None, help="Job workspace root [env: FLOWGATE_WORK_DIR]")
@click.option("--runner-os", default=None, help="Runner OS identifier for cache keys [env: FLOWGATE_RUNNER_OS]")
@click.option("--report-url", default=None, help="POST job statuses to this URL")
@click.option("--keep-workdirs", is_flag=True, default=False, help="Leave job workspaces on disk")
@click.pass_context
def run(ctx, workflow, event_type, branch, changed, git_diff, compare_ref, commit, source,
        jobs, workers, cache_dir, work_dir, runner_os, report_url, keep_workdirs):
    """Run a workflow for a (simulated) push or pull_request event."""
    console = get_console()
    debug = ctx.obj.get("debug", False)
    workflow_path = discover_workflow(workflow)
    config = _load(workflow_path, debug)

    try:
        settings = load_settings().override(
            cache_dir=cache_dir,
            work_dir=work_dir,
            runner_os=runner_os,
            max_workers=workers,
        )
        source_repo = _source_repo(source)
        event = build_event(event_type, branch, changed, git_diff, compare_ref, commit, source_repo)

        if not matches(event, config.triggers):
            console.print_not_triggered(explain(event, config.triggers))
            return

        selected = select_jobs(config, jobs)
        console.print_run_started(
            workflow=workflow_path.name,
            event=event.type,
            branch=event.branch,
            job_count=len(selected),
        )

        reporter = StatusReporter(report_url) if report_url else None
        result = run_pipeline(
            config,
            event,
            settings=settings,
            source=str(source_repo) if source_repo else None,
            only_jobs=jobs,
            reporter=reporter,
            keep_workdirs=keep_workdirs,
        )
        console.print_results(result)

        if not result.ok:
            sys.exit(1)

    except (click.UsageError, click.BadParameter):
        raise
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except CIError as e:
        console.print_error(e.kind, e.message, details=[f"{k}: {v}" for k, v in e.details.items()])
        sys.exit(1)
    except (subprocess.CalledProcessError, ValueError, OSError) as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.argument("workflow", required=False)
@event_options
@click.pass_context
def plan(ctx, workflow, event_type, branch, changed, git_diff, compare_ref, commit, source):
    """Show whether an event triggers the workflow and what would run."""
    workflow_path = discover_workflow(workflow)
    config = _load(workflow_path, ctx.obj.get("debug", False))
    try:
        event = build_event(event_type, branch, changed, git_diff, compare_ref, commit, _source_repo(source))
    except subprocess.CalledProcessError as e:
        get_console().print_exception(e)
        sys.exit(1)

    get_console().print_plan(
        matches(event, config.triggers),
        explain(event, config.triggers),
        config.jobs,
    )


@cli.command()
@click.argument("workflow", required=False)
@click.pass_context
def validate(ctx, workflow):
    """Load and expand a workflow; exit 1 if it is invalid."""
    workflow_path = discover_workflow(workflow)
    config = _load(workflow_path, ctx.obj.get("debug", False))
    names = ", ".join(j.name for j in config.jobs)
    get_console().print_info(f"{workflow_path}: OK ({len(config.jobs)} job(s): {names})")


if __name__ == "__main__":
    cli()
