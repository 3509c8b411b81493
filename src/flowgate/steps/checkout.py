# steps/checkout.py
from __future__ import annotations

from typing import List

from ..errors import ProvisioningError
from ..model import StepKind, StepOutcome
from ..provision import ExecutionEnvironment
from .base import TOOL_HINTS, Step, run_process


class CheckoutStep(Step):
    """
    `actions/checkout`: a fresh clone of the source repository at the
    triggering commit, placed in the job workspace (or `with.path` below it).
    """

    kind = StepKind.CHECKOUT

    def _git(self, env: ExecutionEnvironment, args: List[str], cwd) -> str:
        try:
            result = run_process(
                ["git", *args],
                cwd=cwd,
                env=self.step_env(env),
                timeout=self.check_deadline(env),
                tail=env.output_tail,
            )
        except FileNotFoundError:
            raise ProvisioningError(
                "git is not available",
                job=env.job,
                step=self.name,
                hint=TOOL_HINTS["git"],
            ) from None

        self.raise_if_timed_out(env, result)
        if result.returncode != 0:
            raise ProvisioningError(
                f"git {args[0]} failed",
                job=env.job,
                step=self.name,
                exit_code=result.returncode,
                output=result.output,
            )
        return result.output

    def execute(self, env: ExecutionEnvironment) -> StepOutcome:
        if not env.source:
            raise ProvisioningError(
                "no source repository to check out",
                job=env.job,
                step=self.name,
                hint="pass --source or run inside a git checkout",
            )

        params = self.spec.parameters
        ref = env.render(params.get("ref", "")) or env.event.commit or "HEAD"
        dest = env.expand_path(params["path"]) if params.get("path") else env.workspace
        dest.mkdir(parents=True, exist_ok=True)

        output = self._git(env, ["clone", "--quiet", env.source, str(dest)], cwd=env.workspace)
        output += self._git(env, ["-c", "advice.detachedHead=false", "checkout", "--quiet", ref], cwd=dest)
        return self.succeeded(output)
