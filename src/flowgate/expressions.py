# expressions.py
# Minimal `${{ ... }}` support: dotted lookups into a fixed set of contexts.
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping

from .errors import ConfigError

KNOWN_CONTEXTS = ("runner", "env", "github", "job")

_EXPR_RE = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*(\.[A-Za-z_][A-Za-z0-9_-]*)*$")


def expressions_in(text: str) -> List[str]:
    return _EXPR_RE.findall(text or "")


def check_expression(expr: str) -> None:
    """Reject anything but `context.path` lookups into a known context."""
    if not _PATH_RE.match(expr):
        raise ConfigError(f"unsupported expression: ${{{{ {expr} }}}}")
    root = expr.split(".", 1)[0]
    if root not in KNOWN_CONTEXTS:
        raise ConfigError(
            f"unknown expression context '{root}'",
            expression=expr,
            known=", ".join(KNOWN_CONTEXTS),
        )


def _lookup(context: Mapping[str, Any], expr: str) -> str:
    value: Any = context
    for part in expr.split("."):
        if not isinstance(value, Mapping) or part not in value:
            # missing properties render as empty strings, like the hosted runner
            return ""
        value = value[part]
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def render(text: str, context: Mapping[str, Any]) -> str:
    def _sub(m: "re.Match[str]") -> str:
        expr = m.group(1)
        check_expression(expr)
        return _lookup(context, expr)

    return _EXPR_RE.sub(_sub, text or "")


def build_context(*, runner_os: str, env: Mapping[str, str], job: str,
                  event_name: str = "", ref_name: str = "", sha: str = "") -> Dict[str, Any]:
    return {
        "runner": {"os": runner_os},
        "env": dict(env),
        "github": {"event_name": event_name, "ref_name": ref_name, "sha": sha},
        "job": {"name": job},
    }
