"""Remote recipe fetching through a shared on-disk git cache."""

from __future__ import annotations

import fcntl
import hashlib
import logging
import shutil
import subprocess
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from workspace.errors import FetchFailed
from workspace.logging_utils import log_event
from workspace.paths import default_cache_dir
from workspace.sources import RecipeSource, default_ref

logger = logging.getLogger(__name__)

CACHE_KEY_LENGTH = 16


class VersionControlClient(Protocol):
    """Narrow interface over the git binary."""

    def run(self, args: list[str], *, cwd: Path | None = None) -> None: ...


class RecipeFetcher(Protocol):
    """Materialize a git recipe source on local disk and return its directory."""

    def fetch(self, source: RecipeSource) -> Path: ...


class GitClient:
    """Run git synchronously, converting failures into ``FetchFailed``."""

    def __init__(
        self,
        *,
        executable: str = "git",
        runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
    ) -> None:
        self.executable = executable
        self._runner = runner or subprocess.run

    def run(self, args: list[str], *, cwd: Path | None = None) -> None:
        command = [self.executable, *args]
        label = " ".join(command)
        try:
            self._runner(
                command,
                cwd=str(cwd) if cwd is not None else None,
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise FetchFailed(label, f"command not found: {exc.filename}") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise FetchFailed(
                label,
                stderr or f"git exited with code {exc.returncode}",
            ) from exc


def cache_key(repo: str) -> str:
    """Return the deterministic cache subdirectory name for a repository URL."""
    return hashlib.sha256(repo.encode("utf-8")).hexdigest()[:CACHE_KEY_LENGTH]


@contextmanager
def _cache_lock(cache_dir: Path, key: str) -> Iterator[None]:
    cache_dir.mkdir(parents=True, exist_ok=True)
    lock_path = cache_dir / f"{key}.lock"
    with lock_path.open("a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class GitRecipeFetcher:
    """Clone-or-update git recipe sources into a keyed cache directory."""

    def __init__(
        self,
        *,
        cache_dir: Path | None = None,
        client: VersionControlClient | None = None,
    ) -> None:
        self.cache_dir = cache_dir or default_cache_dir()
        self.client = client or GitClient()

    def repo_dir(self, repo: str) -> Path:
        """Return the cache directory used for ``repo``."""
        return self.cache_dir / cache_key(repo)

    def fetch(self, source: RecipeSource) -> Path:
        if source.type != "git" or not source.repo:
            raise FetchFailed(source.name, "not a git source")

        repo = source.repo
        ref = source.ref or default_ref()
        key = cache_key(repo)
        target = self.cache_dir / key

        with _cache_lock(self.cache_dir, key):
            if target.is_dir():
                log_event(logger, logging.INFO, "fetcher.update_started", repo=repo, ref=ref)
                self.client.run(["fetch", "--quiet", "--depth", "1", "origin", ref], cwd=target)
                self.client.run(["checkout", "--quiet", "--force", "FETCH_HEAD"], cwd=target)
            else:
                log_event(logger, logging.INFO, "fetcher.clone_started", repo=repo, ref=ref)
                try:
                    self.client.run(
                        ["clone", "--quiet", "--depth", "1", "--branch", ref, repo, str(target)]
                    )
                except FetchFailed:
                    if target.exists():
                        shutil.rmtree(target)
                    raise

        log_event(logger, logging.INFO, "fetcher.fetch_completed", repo=repo, ref=ref, key=key)
        if source.subpath:
            return target / source.subpath
        return target


def clear_cache(cache_dir: Path | None = None) -> bool:
    """Delete the remote recipe cache. Returns True if anything was removed."""
    target = cache_dir or default_cache_dir()
    if not target.exists():
        return False
    shutil.rmtree(target)
    log_event(logger, logging.INFO, "fetcher.cache_cleared", cache_dir=str(target))
    return True
