# cache.py
from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
import tarfile
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from .model import CacheSpec

if TYPE_CHECKING:
    from .provision import ExecutionEnvironment

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Entries are addressed by (runner OS, rendered key string) and nothing else:
# no lockfile hash, no job name. An entry is written once and never replaced
# (first writer wins); it only goes away when someone deletes it from disk.
#
# Layout:
#   root/
#     <os>/
#       <sha256(key)>.tar.gz          one member tree per cached path: "0/...", "1/..."
#       <sha256(key)>.manifest.json   key + original path strings
#
# Publishing uses os.link() of a finished temp archive, which fails if the
# target exists, so two jobs racing on one key store exactly one archive.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".flowgate/cache"


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict


@dataclass(frozen=True)
class CacheSave:
    saved: bool
    key: str
    reason: str


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _safe_dirname(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "_"


def _extract_all(tar: tarfile.TarFile, dest: Path) -> None:
    if hasattr(tarfile, "data_filter"):
        tar.extractall(path=str(dest), filter="data")
        return
    # older interpreters: refuse anything that escapes dest
    dest_resolved = dest.resolve()
    for member in tar.getmembers():
        target = (dest / member.name).resolve()
        if dest_resolved not in target.parents and target != dest_resolved:
            raise tarfile.TarError(f"refusing to extract outside cache dir: {member.name}")
        if member.issym() or member.islnk():
            link_target = (target.parent / member.linkname).resolve()
            if dest_resolved not in link_target.parents:
                raise tarfile.TarError(f"refusing link outside cache dir: {member.name}")
    tar.extractall(path=str(dest))


def _copy_into(src: Path, dst: Path) -> None:
    """Overlay src onto dst (restore is "overwrite by extraction")."""
    if src.is_dir():
        dst.mkdir(parents=True, exist_ok=True)
        shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
    else:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)


class CacheStore:
    """
    File-based, immutable-by-key cache store shared by every job of every run
    that points at the same root.
    """

    def __init__(self, root: Union[str, Path] = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _os_dir(self, runner_os: str) -> Path:
        d = self.root / _safe_dirname(runner_os)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, runner_os: str, key: str) -> Path:
        return self._os_dir(runner_os) / f"{_sha256_str(key)}.tar.gz"

    def manifest_path(self, runner_os: str, key: str) -> Path:
        return self._os_dir(runner_os) / f"{_sha256_str(key)}.manifest.json"

    def exists(self, runner_os: str, key: str) -> bool:
        return self.artifact_path(runner_os, key).exists()

    def read_manifest(self, runner_os: str, key: str) -> Dict:
        man = self.manifest_path(runner_os, key)
        try:
            return json.loads(man.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}

    def restore(self, spec: CacheSpec, env: "ExecutionEnvironment") -> CacheHit:
        """
        Restore cached paths into the job environment.

        `spec.key` must already be rendered. Paths are re-resolved against
        this job's home/workspace, so an entry saved by one job restores
        cleanly into another.
        """
        art = self.artifact_path(env.runner_os, spec.key)
        if not art.exists():
            return CacheHit(hit=False, key=spec.key, reason="cache miss", manifest={})

        stored = self.read_manifest(env.runner_os, spec.key)
        stored_paths: List[str] = list(stored.get("paths") or spec.paths)

        with tempfile.TemporaryDirectory(prefix="restore-", dir=str(self.root)) as tmp:
            tmp_p = Path(tmp)
            try:
                with tarfile.open(str(art), mode="r:gz") as tar:
                    _extract_all(tar, tmp_p)
            except (tarfile.TarError, OSError, EOFError) as e:
                return CacheHit(hit=False, key=spec.key, reason=f"cache exists but restore failed: {e}", manifest=stored)

            restored = 0
            for idx, path in enumerate(stored_paths):
                if path not in spec.paths:
                    continue
                member = tmp_p / str(idx)
                if not member.exists():
                    continue
                _copy_into(member, env.expand_path(path))
                restored += 1

        return CacheHit(
            hit=True,
            key=spec.key,
            reason=f"cache hit: restored {restored} path(s)",
            manifest=stored,
        )

    def save(self, spec: CacheSpec, env: "ExecutionEnvironment") -> CacheSave:
        """
        Archive the cache paths under the key, unless the key already exists.

        Never touches an existing entry. Returns saved=False when the entry
        exists (or appeared while we were archiving) or nothing could be saved.
        """
        art = self.artifact_path(env.runner_os, spec.key)
        if art.exists():
            return CacheSave(saved=False, key=spec.key, reason="entry already exists")

        sources = [(idx, env.expand_path(p)) for idx, p in enumerate(spec.paths)]
        sources = [(idx, src) for idx, src in sources if src.exists()]
        if not sources:
            return CacheSave(saved=False, key=spec.key, reason="none of the cache paths exist")

        manifest = {
            "key": spec.key,
            "os": env.runner_os,
            "paths": list(spec.paths),
            "job": env.job,
            "created_at_unix": int(time.time()),
        }

        fd, tmp_name = tempfile.mkstemp(prefix=f"{art.name}.", suffix=".tmp", dir=str(art.parent))
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for idx, src in sources:
                    tar.add(str(src), arcname=str(idx), recursive=True)

            with self._lock:
                try:
                    os.link(tmp, art)
                except FileExistsError:
                    return CacheSave(saved=False, key=spec.key, reason="entry already exists")
                self.manifest_path(env.runner_os, spec.key).write_text(
                    json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False),
                    encoding="utf-8",
                )
        finally:
            tmp.unlink(missing_ok=True)

        return CacheSave(saved=True, key=spec.key, reason=f"saved {len(sources)} path(s)")
