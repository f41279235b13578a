"""Git service: metadata repository mirroring via git CLI."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 300


class GitService:
    """Wraps git CLI operations on the local mirror directory."""

    def __init__(self, repo_dir: Path, timeout: float = _GIT_TIMEOUT_SECONDS) -> None:
        self.repo_dir = repo_dir
        self.timeout = timeout

    def _run(
        self,
        *args: str,
        check: bool = True,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command in the mirror directory, never prompting for credentials."""
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        return subprocess.run(
            ["git", *args],
            cwd=cwd if cwd is not None else self.repo_dir,
            check=check,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            env=env,
        )

    def is_repository(self) -> bool:
        """Return True when the mirror directory holds a git checkout."""
        return (self.repo_dir / ".git").exists()

    def clone(self, remote_url: str, branch: str = "main", depth: int | None = 1) -> None:
        """Clone ``branch`` of ``remote_url`` into the mirror directory.

        Raises subprocess.CalledProcessError or FileNotFoundError (git missing).
        """
        self.repo_dir.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone", "--single-branch", "--branch", branch]
        if depth is not None:
            args += ["--depth", str(depth)]
        args += [remote_url, str(self.repo_dir)]
        self._run(*args, cwd=self.repo_dir.parent)
        self._run("config", "user.email", "bountu@localhost")
        self._run("config", "user.name", "Bountu")
        logger.info("Cloned %s (%s) into %s", remote_url, branch, self.repo_dir)

    def fetch(self, branch: str = "main") -> None:
        self._run("fetch", "origin", branch)

    def pull(self, branch: str = "main") -> None:
        """Fast-forward the checkout to ``origin/<branch>``."""
        self._run("pull", "--ff-only", "origin", branch)

    def head_commit(self) -> str | None:
        """Return the current HEAD commit hash, or None if the repo has no commits."""
        result = self._run("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def remote_url(self) -> str | None:
        result = self._run("config", "--get", "remote.origin.url", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def init_repo(self, branch: str = "main") -> None:
        """Initialize an empty repository whose first commit lands on ``branch``."""
        self.repo_dir.mkdir(parents=True, exist_ok=True)
        self._run("init")
        self._run("symbolic-ref", "HEAD", f"refs/heads/{branch}")
        self._run("config", "user.email", "bountu@localhost")
        self._run("config", "user.name", "Bountu")
        logger.info("Initialized git repo in %s", self.repo_dir)

    def commit_paths(self, message: str, paths: Sequence[str]) -> str | None:
        """Stage ``paths`` and commit. Returns commit hash or None if nothing changed."""
        self._run("add", "--", *paths)
        result = self._run("diff", "--cached", "--quiet", check=False)
        if result.returncode == 0:
            return None
        self._run("commit", "-m", message)
        return self.head_commit()
