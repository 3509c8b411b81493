# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Union

PathLike = Union[str, Path]


def _git(args: list[str], cwd: Optional[PathLike] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError if git exits non-zero.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def repo_root(cwd: Optional[PathLike] = None) -> Path:
    """Return the absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[PathLike] = None) -> str:
    """Return the full SHA of HEAD (used as the triggering commit)."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[PathLike] = None) -> str:
    """
    Return the checked out branch name.

    A detached HEAD has no branch; "HEAD" is returned in that case so the
    caller can still match it against branch filters (it will rarely match).
    """
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[PathLike] = None) -> List[str]:
    """
    Return the files changed between two refs, relative to the repo root.

    Typical usage:
        base = merge_base("origin/main")
        files = changed_files(base)
    """
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def merge_base(with_ref: str = "origin/main", cwd: Optional[PathLike] = None) -> str:
    """Return the merge-base (common ancestor) between HEAD and another ref."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def changed_since(compare_ref: str, cwd: Optional[PathLike] = None) -> List[str]:
    """
    Files changed on this branch relative to `compare_ref`.

    Falls back to HEAD~1 when the ref is unknown (no remote configured), and
    to every tracked file when there is no parent commit at all.
    """
    try:
        base = merge_base(compare_ref, cwd=cwd)
    except subprocess.CalledProcessError:
        base = "HEAD~1"

    try:
        return changed_files(base, "HEAD", cwd=cwd)
    except subprocess.CalledProcessError:
        tracked = _git(["ls-files"], cwd=cwd)
        return tracked.splitlines() if tracked else []

