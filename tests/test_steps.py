"""Tests for the individual step kinds."""

import pytest
from conftest import make_env, requires_git, sh

from flowgate.errors import ProvisioningError, StepFailure
from flowgate.model import Event, JobSpec, JobStatus, StepKind, StepSpec, StepStatus
from flowgate.runner import run_job, step_for
from flowgate.steps.checkout import CheckoutStep
from flowgate.steps.shell import ShellCommandStep
from flowgate.steps.toolchain import ToolchainInstallStep


def _toolchain(uses="actions-rs/toolchain@v1", **params):
    return StepSpec(kind=StepKind.TOOLCHAIN_INSTALL, name="Install toolchain", parameters={"uses": uses, **params})


def _checkout(**params):
    return StepSpec(kind=StepKind.CHECKOUT, name="Checkout", parameters={"uses": "actions/checkout@v3", **params})


class TestStepFor:
    def test_maps_kinds(self):
        assert isinstance(step_for(sh("x", "true")), ShellCommandStep)
        assert isinstance(step_for(_checkout()), CheckoutStep)

    def test_kind_mismatch(self):
        with pytest.raises(ValueError):
            ShellCommandStep(_checkout())


class TestShellStep:
    def test_working_directory(self, tmp_path):
        spec = StepSpec(
            kind=StepKind.SHELL_COMMAND,
            name="in sub",
            parameters={"run": "pwd", "working-directory": "sub/dir"},
        )
        job = JobSpec(name="wd", steps=(spec,))
        env = make_env(tmp_path, job)
        (env.workspace / "sub" / "dir").mkdir(parents=True)

        outcome = ShellCommandStep(spec).execute(env)
        assert outcome.output.strip().endswith("sub/dir")

    def test_missing_working_directory(self, tmp_path):
        spec = StepSpec(
            kind=StepKind.SHELL_COMMAND,
            name="in missing",
            parameters={"run": "true", "working-directory": "nope"},
        )
        env = make_env(tmp_path, JobSpec(name="wd", steps=(spec,)))
        with pytest.raises(StepFailure) as exc:
            ShellCommandStep(spec).execute(env)
        assert exc.value.exit_code == 1

    def test_expressions_are_rendered(self, tmp_path):
        spec = sh("ctx", "echo ${{ runner.os }}/${{ github.ref_name }}")
        env = make_env(tmp_path, JobSpec(name="ctx", steps=(spec,)), event=Event("push", "main"))
        assert ShellCommandStep(spec).execute(env).output.strip() == "Linux/main"

    def test_non_zero_exit(self, tmp_path):
        spec = sh("fail", "echo broken; exit 2")
        env = make_env(tmp_path, JobSpec(name="f", steps=(spec,)))
        with pytest.raises(StepFailure) as exc:
            ShellCommandStep(spec).execute(env)
        assert exc.value.exit_code == 2
        assert "broken" in exc.value.output
        assert exc.value.kind == "step_failure"


class TestToolchainStep:
    def test_reference_toolchain_commands(self, tmp_path):
        spec = _toolchain(profile="minimal", toolchain="stable", override="true", components="rustfmt")
        env = make_env(tmp_path, JobSpec(name="style-check", steps=(spec,)))
        assert ToolchainInstallStep(spec).commands(env) == [
            ["rustup", "toolchain", "install", "stable", "--profile", "minimal", "--no-self-update",
             "--component", "rustfmt"],
            ["rustup", "override", "set", "stable"],
        ]

    def test_defaults(self, tmp_path):
        spec = _toolchain()
        env = make_env(tmp_path, JobSpec(name="t", steps=(spec,)))
        assert ToolchainInstallStep(spec).commands(env) == [
            ["rustup", "toolchain", "install", "stable", "--profile", "minimal", "--no-self-update"],
        ]

    def test_components_and_targets_lists(self, tmp_path):
        spec = _toolchain(components="rustfmt, clippy", target="wasm32-unknown-unknown")
        env = make_env(tmp_path, JobSpec(name="t", steps=(spec,)))
        install = ToolchainInstallStep(spec).commands(env)[0]
        assert install[-6:] == [
            "--component", "rustfmt", "--component", "clippy", "--target", "wasm32-unknown-unknown",
        ]

    def test_dtolnay_ref_selects_channel(self):
        assert ToolchainInstallStep(_toolchain("dtolnay/rust-toolchain@nightly")).toolchain() == "nightly"
        assert ToolchainInstallStep(_toolchain("dtolnay/rust-toolchain@master")).toolchain() == "stable"

    def test_missing_rustup_is_a_provisioning_error(self, tmp_path):
        spec = _toolchain()
        env = make_env(tmp_path, JobSpec(name="t", steps=(spec,)))
        env.env["PATH"] = str(tmp_path / "empty-bin")
        with pytest.raises(ProvisioningError):
            ToolchainInstallStep(spec).execute(env)


class TestCheckoutStep:
    def test_without_source(self, tmp_path):
        spec = _checkout()
        env = make_env(tmp_path, JobSpec(name="c", steps=(spec,)))
        with pytest.raises(ProvisioningError, match="no source repository"):
            CheckoutStep(spec).execute(env)

    @requires_git
    def test_clones_into_workspace(self, tmp_path, git_repo):
        spec = _checkout()
        env = make_env(tmp_path, JobSpec(name="c", steps=(spec,)), source=str(git_repo))
        CheckoutStep(spec).execute(env)
        assert (env.workspace / "Makefile").is_file()
        assert (env.workspace / ".git").is_dir()

    @requires_git
    def test_checkout_then_make(self, tmp_path, git_repo):
        job = JobSpec(name="test", steps=(_checkout(), sh("Run tests", "make test")))
        outcome = run_job(job, make_env(tmp_path, job, source=str(git_repo)))
        if outcome.steps[1].exit_code == 127:
            pytest.skip("make not installed")
        assert outcome.status is JobStatus.SUCCEEDED
        assert "tests-ok" in outcome.steps[1].output

    @requires_git
    def test_bad_ref_fails_job_and_skips_rest(self, tmp_path, git_repo):
        job = JobSpec(name="test", steps=(_checkout(ref="no-such-ref"), sh("after", "true")))
        outcome = run_job(job, make_env(tmp_path, job, source=str(git_repo)))
        assert outcome.status is JobStatus.FAILED
        assert outcome.error_kind == "provisioning_error"
        assert outcome.steps[1].status is StepStatus.SKIPPED
