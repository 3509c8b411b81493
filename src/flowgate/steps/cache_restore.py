# steps/cache_restore.py
from __future__ import annotations

import time

from ..errors import StepFailure
from ..model import CacheSpec, StepKind, StepOutcome, split_lines
from ..provision import ExecutionEnvironment
from ..ui.console import get_console
from .base import Step


class CacheRestoreStep(Step):
    """
    `actions/cache`: restore `with.path` for `with.key` now, and queue a save
    that the runner performs only if the whole job succeeds.
    """

    kind = StepKind.CACHE_RESTORE

    def cache_spec(self, env: ExecutionEnvironment) -> CacheSpec:
        params = self.spec.parameters
        return CacheSpec(
            key=env.render(params.get("key", "")),
            paths=split_lines(env.render(params.get("path", ""))),
        )

    def execute(self, env: ExecutionEnvironment) -> StepOutcome:
        started = time.monotonic()
        spec = self.cache_spec(env)
        if not spec.key or not spec.paths:
            raise StepFailure(
                job=env.job,
                step=self.name,
                cmd=self.spec.uses,
                exit_code=1,
                output="actions/cache needs both 'key' and 'path'",
            )

        console = get_console()
        if env.cache is None:
            console.print_debug(f"[{env.job}] no cache store configured, skipping restore")
            return self.succeeded("cache disabled", time.monotonic() - started)

        hit = env.cache.restore(spec, env)
        if hit.hit:
            env.cache_hit = True
            console.print_cache_hit(env.job, spec.key)
        else:
            console.print_cache_miss(env.job, spec.key)
            console.print_debug(f"[{env.job}] {hit.reason}")

        env.pending_cache_saves.append(spec)
        return self.succeeded(hit.reason, time.monotonic() - started)
