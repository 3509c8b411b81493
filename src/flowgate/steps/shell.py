# steps/shell.py
from __future__ import annotations

from ..errors import StepFailure
from ..model import StepKind, StepOutcome
from ..provision import ExecutionEnvironment
from .base import TOOL_HINTS, Step, run_process

# Default shell of hosted Linux runners: errexit + pipefail, no rc files.
SHELL = ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c"]


class ShellCommandStep(Step):
    """`run:` step: an inline script executed by bash in the job workspace."""

    kind = StepKind.SHELL_COMMAND

    def execute(self, env: ExecutionEnvironment) -> StepOutcome:
        step_env = self.step_env(env)
        script = env.render(self.spec.run, step_env)

        cwd = env.workspace
        workdir = self.spec.parameters.get("working-directory")
        if workdir:
            cwd = env.expand_path(env.render(workdir, step_env))
        if not cwd.is_dir():
            raise StepFailure(
                job=env.job,
                step=self.name,
                cmd=script,
                exit_code=1,
                output=f"working directory not found: {cwd}",
            )

        timeout = self.check_deadline(env)
        try:
            result = run_process(
                SHELL + [script],
                cwd=cwd,
                env=step_env,
                timeout=timeout,
                tail=env.output_tail,
            )
        except FileNotFoundError:
            raise StepFailure(
                job=env.job,
                step=self.name,
                cmd=script,
                exit_code=127,
                output=TOOL_HINTS["bash"],
            ) from None

        self.raise_if_timed_out(env, result)
        if result.returncode != 0:
            raise StepFailure(
                job=env.job,
                step=self.name,
                cmd=script,
                exit_code=result.returncode,
                output=result.output,
            )
        return self.succeeded(result.output, result.duration)
