# trigger.py
from __future__ import annotations

from typing import Iterable, Optional

from .globs import match_patterns
from .model import Event, TriggerRule


def branch_matches(branch: str, rule: TriggerRule) -> bool:
    if not rule.branch_patterns:
        return True
    return match_patterns(branch, rule.branch_patterns)


def paths_match(changed_paths: Iterable[str], rule: TriggerRule) -> bool:
    """
    True unless the changed paths are fully covered by the exclude list
    (or none of them hit the include list, when one is given).

    An empty change list can't be excluded, so it always triggers.
    """
    paths = list(changed_paths)
    if not paths:
        return True

    if rule.path_include_patterns:
        return any(match_patterns(p, rule.path_include_patterns) for p in paths)

    if rule.path_exclude_patterns:
        return any(not match_patterns(p, rule.path_exclude_patterns) for p in paths)

    return True


def matching_rule(event: Event, rules: Iterable[TriggerRule]) -> Optional[TriggerRule]:
    for rule in rules:
        if event.type not in rule.event_types:
            continue
        if not branch_matches(event.branch, rule):
            continue
        if not paths_match(event.changed_paths, rule):
            continue
        return rule
    return None


def matches(event: Event, rules: Iterable[TriggerRule]) -> bool:
    """Does this event start a pipeline run? Pure, no side effects."""
    return matching_rule(event, rules) is not None


def explain(event: Event, rules: Iterable[TriggerRule]) -> str:
    """Human readable reason for the trigger decision (used by `flowgate plan`)."""
    rules = list(rules)
    candidates = [r for r in rules if event.type in r.event_types]
    if not candidates:
        return f"no trigger for event '{event.type}'"

    on_branch = [r for r in candidates if branch_matches(event.branch, r)]
    if not on_branch:
        return f"branch '{event.branch}' is not in the branch filter"

    if not any(paths_match(event.changed_paths, r) for r in on_branch):
        return "every changed path is filtered out by the path filters"

    if not event.changed_paths:
        return f"{event.type} to '{event.branch}' (no changed paths listed)"
    return f"{event.type} to '{event.branch}' with {len(event.changed_paths)} changed path(s)"
