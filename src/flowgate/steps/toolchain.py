# steps/toolchain.py
from __future__ import annotations

import re
import time
from typing import List

from ..errors import ProvisioningError
from ..model import StepKind, StepOutcome
from ..provision import ExecutionEnvironment
from .base import TOOL_HINTS, Step, run_process


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "on")


def _split_list(value: str) -> List[str]:
    return [item for item in re.split(r"[,\s]+", value or "") if item]


class ToolchainInstallStep(Step):
    """
    Rust toolchain installation (`actions-rs/toolchain`, `dtolnay/rust-toolchain`).

    with:
      toolchain   channel, default "stable" (dtolnay: the action ref, e.g. @nightly)
      profile     rustup profile, default "minimal"
      components  comma/space separated, e.g. "rustfmt, clippy"
      target      extra compilation targets
      override    "true" to pin the toolchain for the workspace
    """

    kind = StepKind.TOOLCHAIN_INSTALL

    def toolchain(self) -> str:
        params = self.spec.parameters
        if params.get("toolchain"):
            return params["toolchain"]
        action, _, ref = self.spec.uses.partition("@")
        if action == "dtolnay/rust-toolchain" and ref and ref not in ("master", "v1"):
            return ref
        return "stable"

    def commands(self, env: ExecutionEnvironment) -> List[List[str]]:
        params = {k: env.render(v) for k, v in self.spec.parameters.items()}
        toolchain = env.render(self.toolchain())

        install = [
            "rustup", "toolchain", "install", toolchain,
            "--profile", params.get("profile") or "minimal",
            "--no-self-update",
        ]
        for component in _split_list(params.get("components", "")):
            install += ["--component", component]
        for target in _split_list(params.get("target", "") or params.get("targets", "")):
            install += ["--target", target]

        cmds = [install]
        if _truthy(params.get("override", "")):
            cmds.append(["rustup", "override", "set", toolchain])
        return cmds

    def execute(self, env: ExecutionEnvironment) -> StepOutcome:
        started = time.monotonic()
        outputs = []
        step_env = self.step_env(env)
        for argv in self.commands(env):
            try:
                result = run_process(
                    argv,
                    cwd=env.workspace,
                    env=step_env,
                    timeout=self.check_deadline(env),
                    tail=env.output_tail,
                )
            except FileNotFoundError:
                raise ProvisioningError(
                    "rustup is not available",
                    job=env.job,
                    step=self.name,
                    hint=TOOL_HINTS["rustup"],
                ) from None

            self.raise_if_timed_out(env, result)
            if result.returncode != 0:
                raise ProvisioningError(
                    f"toolchain installation failed: {' '.join(argv)}",
                    job=env.job,
                    step=self.name,
                    exit_code=result.returncode,
                    output=result.output,
                )
            outputs.append(result.output)

        output = "".join(outputs)
        return self.succeeded(output[-env.output_tail:] if env.output_tail else "", time.monotonic() - started)
