# settings.py
from __future__ import annotations

import os
import platform
from dataclasses import dataclass, replace
from typing import Optional

# platform.system() -> the `runner.os` value hosted runners report
_RUNNER_OS_NAMES = {"Linux": "Linux", "Darwin": "macOS", "Windows": "Windows"}


def detect_runner_os() -> str:
    system = platform.system()
    return _RUNNER_OS_NAMES.get(system, system or "Linux")


def _int_env(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    cache_dir: str = ".flowgate/cache"
    work_dir: str = ".flowgate/work"
    runner_os: str = "Linux"
    max_workers: Optional[int] = None
    output_tail: int = 4000
    isolate_home: bool = True

    def override(self, **changes) -> "Settings":
        """Return a copy with every non-None keyword applied (CLI flags win over env)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_settings() -> Settings:
    return Settings(
        cache_dir=os.environ.get("FLOWGATE_CACHE_DIR", ".flowgate/cache"),
        work_dir=os.environ.get("FLOWGATE_WORK_DIR", ".flowgate/work"),
        runner_os=os.environ.get("FLOWGATE_RUNNER_OS") or detect_runner_os(),
        max_workers=_int_env("FLOWGATE_MAX_WORKERS"),
        output_tail=_int_env("FLOWGATE_OUTPUT_TAIL") or 4000,
        isolate_home=os.environ.get("FLOWGATE_ISOLATE_HOME", "1") not in ("0", "false", "no"),
    )
