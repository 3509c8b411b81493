import shutil
import subprocess
from pathlib import Path

import pytest

from flowgate.cache import CacheStore
from flowgate.model import Event, GlobalEnv, JobSpec, StepKind, StepSpec
from flowgate.provision import provision
from flowgate.settings import Settings
from flowgate.ui.console import Console, set_console

DATA = Path(__file__).parent / "data"


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))


@pytest.fixture
def reference_workflow() -> Path:
    return DATA / "ci.yml"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        cache_dir=str(tmp_path / "cache"),
        work_dir=str(tmp_path / "work"),
        runner_os="Linux",
    )


@pytest.fixture
def cache(settings) -> CacheStore:
    return CacheStore(settings.cache_dir)


@pytest.fixture
def push_main() -> Event:
    return Event(type="push", branch="main", changed_paths=("src/lib.rs",))


def sh(name: str, run: str, **env) -> StepSpec:
    return StepSpec(kind=StepKind.SHELL_COMMAND, name=name, parameters={"run": run}, env=env)


def cache_step(key: str, path: str) -> StepSpec:
    return StepSpec(
        kind=StepKind.CACHE_RESTORE,
        name="Cache",
        parameters={"uses": "actions/cache@v3", "key": key, "path": path},
    )


def make_env(tmp_path, job: JobSpec, *, event=None, cache=None, global_env=None, run_id="run-1", source=None):
    return provision(
        job,
        global_env=global_env or GlobalEnv({}),
        event=event or Event(type="push", branch="main"),
        work_root=tmp_path / "work",
        run_id=run_id,
        runner_os="Linux",
        source=source,
        cache=cache,
    )


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """A throwaway repository with a single commit on `main`."""
    repo = tmp_path / "origin"
    repo.mkdir()

    def git(*args):
        subprocess.run(
            ["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com", *args],
            cwd=repo,
            check=True,
            capture_output=True,
        )

    git("init", "--quiet", "-b", "main")
    (repo / "README.md").write_text("# demo\n")
    (repo / "Makefile").write_text("test:\n\t@echo tests-ok\n")
    git("add", ".")
    git("commit", "--quiet", "-m", "initial")
    return repo
