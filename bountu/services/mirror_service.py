"""Repository mirror: the local clone of the remote metadata repository."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
import time
from typing import TYPE_CHECKING

from bountu.exceptions import (
    CloneFailedError,
    CorruptRepositoryError,
    FetchFailedError,
    MirrorError,
    NotFoundError,
    NotInitializedError,
)
from bountu.models.mirror import MirrorState, SyncOutcome
from bountu.services.git_service import GitService

if TYPE_CHECKING:
    from pathlib import Path

    from bountu.filesystem.state_store import MirrorStateStore
    from bountu.schemas.metadata import RawMetadata

logger = logging.getLogger(__name__)

_BOM = "\ufeff"


def _git_error_detail(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError) and exc.stderr:
        return str(exc.stderr).strip()
    return str(exc)


class RepositoryMirror:
    """Owns one local clone; every git operation on it is serialized."""

    def __init__(
        self,
        local_path: Path,
        remote_url: str,
        state_store: MirrorStateStore,
        branch: str = "main",
        git: GitService | None = None,
    ) -> None:
        self.local_path = local_path
        self.remote_url = remote_url
        self.branch = branch
        self._state_store = state_store
        self._git = git if git is not None else GitService(local_path)
        self._lock = threading.RLock()

    @property
    def is_initialized(self) -> bool:
        return self._git.is_repository()

    def initialize(self, remote_url: str | None = None, force_refresh: bool = False) -> None:
        """Make sure a valid clone of ``remote_url`` exists at the local path.

        A valid clone is left alone unless ``force_refresh`` is set. A
        directory without a ``.git`` control directory is treated as corrupt
        and re-cloned.

        Raises CloneFailedError.
        """
        with self._lock:
            if remote_url is not None:
                self.remote_url = remote_url
            if force_refresh:
                logger.info("Force refresh requested, re-cloning %s", self.remote_url)
                self._clone()
            elif not self.local_path.exists():
                self._clone()
            elif not self._git.is_repository():
                logger.warning(
                    "Mirror at %s has no git control directory, re-cloning", self.local_path
                )
                self._clone()
            else:
                logger.debug("Mirror at %s already initialized", self.local_path)

    def _clone(self) -> None:
        self._remove_local()
        try:
            self._git.clone(self.remote_url, self.branch)
        except (subprocess.SubprocessError, OSError) as exc:
            self._remove_local()
            detail = _git_error_detail(exc)
            logger.error("Clone of %s failed: %s", self.remote_url, detail)
            raise CloneFailedError(f"Failed to clone {self.remote_url}: {detail}") from exc
        head = self._git.head_commit() or ""
        self._state_store.save(
            MirrorState(
                local_path=str(self.local_path),
                remote_url=self.remote_url,
                current_commit_hash=head,
                last_fetch_timestamp=time.time(),
            )
        )

    def _remove_local(self) -> None:
        if self.local_path.exists():
            shutil.rmtree(self.local_path)

    def sync(self) -> SyncOutcome:
        """Fetch and fast-forward the clone.

        Raises NotInitializedError, FetchFailedError or CorruptRepositoryError.
        """
        with self._lock:
            if not self._git.is_repository():
                raise NotInitializedError(f"Mirror not initialized at {self.local_path}")

            before = self._git.head_commit()
            if before is None:
                logger.warning("Mirror at %s has no HEAD commit, re-cloning", self.local_path)
                self._heal()
                before = self._git.head_commit()
                if before is None:
                    raise CorruptRepositoryError(
                        f"Mirror at {self.local_path} has no HEAD after re-clone"
                    )

            try:
                self._git.fetch(self.branch)
                self._git.pull(self.branch)
            except (subprocess.SubprocessError, OSError) as exc:
                detail = _git_error_detail(exc)
                logger.error("Fetch from %s failed: %s", self.remote_url, detail)
                msg = f"Failed to update from {self.remote_url}: {detail}"
                raise FetchFailedError(msg) from exc

            after = self._git.head_commit() or ""
            self._state_store.save(
                MirrorState(
                    local_path=str(self.local_path),
                    remote_url=self.remote_url,
                    current_commit_hash=after,
                    last_fetch_timestamp=time.time(),
                )
            )
            outcome = SyncOutcome(
                has_updates=before != after, before_commit=before, after_commit=after
            )
            logger.info("Mirror sync: %s (%s -> %s)", outcome.message, before[:8], after[:8])
            return outcome

    def _heal(self) -> None:
        try:
            self._clone()
        except CloneFailedError as exc:
            raise CorruptRepositoryError(f"Re-clone of {self.local_path} failed: {exc}") from exc

    def _resolve(self, rel_path: str) -> Path:
        """Resolve a path inside the working tree, rejecting traversal."""
        full_path = (self.local_path / rel_path).resolve()
        if not full_path.is_relative_to(self.local_path.resolve()):
            raise NotFoundError(f"Path outside mirror: {rel_path}")
        return full_path

    def read_file(self, rel_path: str) -> str:
        """Read a UTF-8 text file, stripping a leading BOM and surrounding whitespace.

        Raises NotFoundError, or UnicodeDecodeError for invalid UTF-8.
        """
        full_path = self._resolve(rel_path)
        if not full_path.is_file():
            raise NotFoundError(f"File not found in mirror: {rel_path}")
        text = full_path.read_text(encoding="utf-8")
        return text.removeprefix(_BOM).strip()

    def list_directories(self, rel_path: str) -> list[str]:
        """Return the sorted names of immediate subdirectories, ignoring dot-directories."""
        full_path = self._resolve(rel_path)
        if not full_path.is_dir():
            return []
        return sorted(
            child.name
            for child in full_path.iterdir()
            if child.is_dir() and not child.name.startswith(".")
        )

    def info(self) -> MirrorState:
        """Return the persisted mirror state, or a blank one before the first clone."""
        state = self._state_store.load()
        if state is None:
            return MirrorState(local_path=str(self.local_path), remote_url=self.remote_url)
        return state

    def write_package_metadata(self, raw: RawMetadata, message: str | None = None) -> str | None:
        """Write ``packages/<id>/metadata.json`` and commit it locally.

        Returns the new commit hash, or None if the file was unchanged.
        Raises NotInitializedError or MirrorError.
        """
        with self._lock:
            if not self._git.is_repository():
                raise NotInitializedError(f"Mirror not initialized at {self.local_path}")
            rel_path = f"packages/{raw.id}/metadata.json"
            full_path = self._resolve(rel_path)
            full_path.parent.mkdir(parents=True, exist_ok=True)
            payload = raw.model_dump(by_alias=True, exclude_defaults=False)
            full_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
            try:
                commit = self._git.commit_paths(
                    message or f"Add package {raw.id} {raw.version}", [rel_path]
                )
            except (subprocess.SubprocessError, OSError) as exc:
                raise MirrorError(
                    f"Failed to commit {rel_path}: {_git_error_detail(exc)}"
                ) from exc
            logger.info("Wrote metadata for %s (commit %s)", raw.id, commit)
            return commit
