"""Tests for workflow loading and job expansion."""

import textwrap

import pytest

from flowgate.config import check_unique_names, expand, load_workflow, loads_workflow, step_kind_for
from flowgate.errors import ConfigError
from flowgate.model import Event, JobSpec, StepKind
from flowgate.trigger import matches


def _wf(body: str):
    return loads_workflow(textwrap.dedent(body))


MINIMAL = """
on: push
jobs:
  build:
    steps:
      - run: make build
"""


class TestReferenceWorkflow:
    def test_expands_to_three_jobs_in_order(self, reference_workflow):
        config = load_workflow(reference_workflow)
        assert [j.name for j in config.jobs] == ["style-check", "clippy", "test"]

    def test_job_metadata(self, reference_workflow):
        config = load_workflow(reference_workflow)
        style, clippy, test = config.jobs
        assert style.display_name == "Libraries Style Check"
        assert style.timeout_minutes == 20
        assert clippy.timeout_minutes == 60
        assert test.runs_on == "ubuntu-latest"

    def test_step_kinds(self, reference_workflow):
        config = load_workflow(reference_workflow)
        test = config.jobs[2]
        assert [s.kind for s in test.steps] == [
            StepKind.CHECKOUT,
            StepKind.CACHE_RESTORE,
            StepKind.SHELL_COMMAND,
            StepKind.TOOLCHAIN_INSTALL,
            StepKind.SHELL_COMMAND,
        ]
        assert test.steps[-1].run.strip() == "make test"

    def test_cache_spec(self, reference_workflow):
        config = load_workflow(reference_workflow)
        style, clippy, _ = config.jobs
        assert style.cache_spec is None
        assert clippy.cache_spec.key == "${{ runner.os }}-cache"
        assert clippy.cache_spec.paths == ("~/.cargo", "./target")

    def test_toolchain_parameters_are_strings(self, reference_workflow):
        config = load_workflow(reference_workflow)
        toolchain = config.jobs[0].steps[2]
        assert toolchain.parameters["override"] == "true"
        assert toolchain.parameters["components"] == "rustfmt"

    def test_global_env(self, reference_workflow):
        config = load_workflow(reference_workflow)
        assert config.global_env.values["CARGO_TERM_COLOR"] == "always"
        assert config.global_env.values["RUSTFLAGS"] == "-C debuginfo=1"

    def test_global_env_is_read_only(self, reference_workflow):
        config = load_workflow(reference_workflow)
        with pytest.raises(TypeError):
            config.global_env.values["RUSTFLAGS"] = "x"

    def test_triggers(self, reference_workflow):
        config = load_workflow(reference_workflow)
        assert matches(Event("push", "main", ("src/lib.rs",)), config.triggers)
        assert matches(Event("pull_request", "main", ("src/lib.rs",)), config.triggers)
        assert not matches(Event("push", "main", ("README.md",)), config.triggers)
        assert not matches(Event("push", "main", ("etc/ceresdb.toml",)), config.triggers)

    def test_expansion_is_deterministic(self, reference_workflow):
        assert load_workflow(reference_workflow).jobs == load_workflow(reference_workflow).jobs


class TestValidation:
    def test_minimal_defaults(self):
        config = _wf(MINIMAL)
        job = config.jobs[0]
        assert job.timeout_minutes == 360
        assert job.steps[0].name == "Run make build"
        assert config.triggers[0].event_types == frozenset({"push"})

    def test_duplicate_job_name(self):
        with pytest.raises(ConfigError, match="duplicate key 'build'"):
            _wf(
                """
                on: push
                jobs:
                  build:
                    steps:
                      - run: "true"
                  build:
                    steps:
                      - run: "false"
                """
            )

    def test_check_unique_names(self):
        jobs = [JobSpec(name="a", steps=()), JobSpec(name="a", steps=())]
        with pytest.raises(ConfigError, match="duplicate job names"):
            check_unique_names(jobs)

    def test_unrecognized_action(self):
        with pytest.raises(ConfigError, match="unrecognized action"):
            _wf(
                """
                on: push
                jobs:
                  build:
                    steps:
                      - uses: actions/upload-artifact@v3
                """
            )

    def test_step_needs_exactly_one_of_uses_or_run(self):
        with pytest.raises(ConfigError, match="exactly one"):
            _wf(
                """
                on: push
                jobs:
                  build:
                    steps:
                      - uses: actions/checkout@v3
                        run: make
                """
            )

    def test_job_without_steps(self):
        with pytest.raises(ConfigError, match="at least one step"):
            _wf(
                """
                on: push
                jobs:
                  build:
                    steps: []
                """
            )

    def test_non_positive_timeout(self):
        with pytest.raises(ConfigError, match="schema"):
            _wf(
                """
                on: push
                jobs:
                  build:
                    timeout-minutes: 0
                    steps:
                      - run: make
                """
            )

    def test_unsupported_event(self):
        with pytest.raises(ConfigError, match="unsupported trigger event"):
            _wf(MINIMAL.replace("on: push", "on: [push, schedule]"))

    def test_paths_and_paths_ignore_together(self):
        with pytest.raises(ConfigError, match="both paths and paths-ignore"):
            _wf(
                """
                on:
                  push:
                    paths: ["src/**"]
                    paths-ignore: ["**.md"]
                jobs:
                  build:
                    steps:
                      - run: make
                """
            )

    def test_unknown_expression_context(self):
        with pytest.raises(ConfigError, match="unknown expression context"):
            _wf(MINIMAL.replace("make build", "echo ${{ secrets.TOKEN }}"))

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            loads_workflow("- just\n- a list\n")

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError, match="invalid YAML"):
            loads_workflow("on: [push\n")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow(tmp_path / "nope.yml")

    def test_expand_accepts_plain_mapping(self):
        jobs = expand(
            {
                "on": "push",
                "jobs": {
                    "lint": {"steps": [{"run": "make clippy"}]},
                    "test": {"steps": [{"run": "make test"}]},
                },
            }
        )
        assert [j.name for j in jobs] == ["lint", "test"]


class TestUnsupportedKeys:
    @pytest.mark.parametrize(
        "line",
        [
            "if: ${{ false }}",
            "continue-on-error: true",
            "shell: python",
            "timeout-minutes: 5",
        ],
    )
    def test_step_keys_that_change_behaviour(self, line):
        key = line.split(":", 1)[0]
        with pytest.raises(ConfigError, match=f"unsupported key '{key}'") as exc:
            _wf(
                f"""
                on: push
                jobs:
                  build:
                    steps:
                      - run: make
                        {line}
                """
            )
        assert exc.value.job == "build"
        assert exc.value.step == "#1"

    @pytest.mark.parametrize(
        "line",
        [
            "needs: [lint]",
            "strategy: {matrix: {os: [ubuntu-latest]}}",
            "services: {db: {image: postgres}}",
            "container: rust:latest",
            "if: github.ref_name == 'main'",
            "defaults: {run: {shell: sh}}",
        ],
    )
    def test_job_keys_that_change_behaviour(self, line):
        key = line.split(":", 1)[0]
        with pytest.raises(ConfigError, match=f"unsupported key '{key}'") as exc:
            _wf(
                f"""
                on: push
                jobs:
                  build:
                    {line}
                    steps:
                      - run: make
                """
            )
        assert exc.value.job == "build"

    def test_workflow_level_defaults(self):
        with pytest.raises(ConfigError, match="unsupported key 'defaults'"):
            _wf("defaults:\n  run:\n    shell: sh\n" + MINIMAL)

    def test_ignored_keys_are_accepted(self):
        config = _wf(
            """
            on: push
            permissions:
              contents: read
            concurrency: ci
            jobs:
              build:
                permissions: read-all
                steps:
                  - id: build
                    run: make
            """
        )
        assert config.jobs[0].steps[0].run == "make"

    @pytest.mark.parametrize("filter_name", ["branches-ignore", "tags", "types"])
    def test_unsupported_trigger_filter(self, filter_name):
        with pytest.raises(ConfigError, match=f"unsupported trigger filter '{filter_name}'"):
            _wf(MINIMAL.replace("on: push", f"on:\n  pull_request:\n    {filter_name}: [x]"))


class TestStepKinds:
    @pytest.mark.parametrize(
        "uses, kind",
        [
            ("actions/checkout@v3", StepKind.CHECKOUT),
            ("actions/cache@v3", StepKind.CACHE_RESTORE),
            ("actions-rs/toolchain@v1", StepKind.TOOLCHAIN_INSTALL),
            ("dtolnay/rust-toolchain@stable", StepKind.TOOLCHAIN_INSTALL),
        ],
    )
    def test_known_actions(self, uses, kind):
        assert step_kind_for(uses) is kind

    def test_unknown_action(self):
        with pytest.raises(ConfigError):
            step_kind_for("someone/else@v1")
