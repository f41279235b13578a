"""Installation orchestrator: the per-package install, update and uninstall pipeline."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from bountu.exceptions import (
    AlreadyInstalledError,
    BountuError,
    ChecksumMismatchError,
    HasConflictsError,
    InstallError,
    InstallInProgressError,
    MissingDependenciesError,
    NoPendingUpdateError,
    NotInstallableError,
    NotInstalledError,
    StageFailedError,
)
from bountu.filesystem.archive import archive_suffix
from bountu.models.install import STAGE_WEIGHTS, InstallOutcome, InstallStage
from bountu.models.package import InstalledRecord, PackageDescriptor
from bountu.services.fetch_service import file_sha256
from bountu.services.version_service import compare_versions

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from bountu.config import Settings
    from bountu.filesystem.archive import ArchiveExtractor
    from bountu.filesystem.state_store import InstalledStore
    from bountu.services.fetch_service import ArtifactFetcher

logger = logging.getLogger(__name__)

WRAPPER_MARKER = "# bountu-package: "
VERSION_FILE = "VERSION"

_MISSING_FROM_REPOSITORY = "Package no longer in repository"


def _discard(path: Path | None) -> None:
    """Best-effort removal of a file or directory tree; failures are logged."""
    if path is None or not (path.exists() or path.is_symlink()):
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        logger.warning("Failed to clean up %s: %s", path, exc)


def wrapper_owner(path: Path) -> str | None:
    """Return the package id recorded in a wrapper shim, or None for foreign files."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            head = [f.readline() for _ in range(3)]
    except OSError:
        return None
    for line in head:
        if line.startswith(WRAPPER_MARKER):
            return line[len(WRAPPER_MARKER) :].strip()
    return None


class _ProgressReporter:
    """Maps per-stage progress onto the overall 0..1 range."""

    def __init__(
        self,
        on_progress: Callable[[float], None] | None,
        on_stage: Callable[[InstallStage], None] | None,
    ) -> None:
        self._on_progress = on_progress
        self._on_stage = on_stage
        self.current = InstallStage.IDLE

    def enter(self, stage: InstallStage) -> None:
        self.current = stage
        logger.debug("Install stage: %s", stage)
        if self._on_stage is not None:
            self._on_stage(stage)
        self.report(0.0)

    def report(self, fraction: float) -> None:
        span = STAGE_WEIGHTS.get(self.current)
        if span is None or self._on_progress is None:
            return
        start, end = span
        self._on_progress(start + (end - start) * max(0.0, min(fraction, 1.0)))

    def finish(self) -> None:
        self.current = InstallStage.REGISTERED
        if self._on_stage is not None:
            self._on_stage(InstallStage.REGISTERED)
        if self._on_progress is not None:
            self._on_progress(1.0)

    def fail(self) -> None:
        if self._on_stage is not None:
            self._on_stage(InstallStage.FAILED)


class InstallationOrchestrator:
    """Installs, updates and removes packages under ``packages_dir``.

    Operations on different packages may run concurrently; a second
    operation on a package that is already busy is rejected. The installed
    store and the environment file are the only shared state.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: ArtifactFetcher,
        extractor: ArchiveExtractor,
        store: InstalledStore,
    ) -> None:
        self.packages_dir = settings.packages_dir.absolute()
        self.bin_dir = settings.bin_dir.absolute()
        self.cache_dir = settings.cache_dir.absolute()
        self.environment_file = settings.environment_file.absolute()
        self.shell = settings.shell
        self.script_timeout = settings.script_timeout_seconds
        self.fetcher = fetcher
        self.extractor = extractor
        self.store = store
        self._env_lock = threading.Lock()
        self._active_lock = threading.Lock()
        self._active: set[str] = set()

    def package_dir(self, package_id: str) -> Path:
        return self.packages_dir / package_id

    @contextmanager
    def _claim(self, package_id: str) -> Iterator[None]:
        with self._active_lock:
            if package_id in self._active:
                raise InstallInProgressError(package_id)
            self._active.add(package_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active.discard(package_id)

    # Install

    def check_install(self, descriptor: PackageDescriptor) -> None:
        """Run the install gates without touching the filesystem.

        Raises AlreadyInstalledError, NotInstallableError,
        MissingDependenciesError or HasConflictsError.
        """
        installed = self.store.ids()
        if descriptor.id in installed:
            raise AlreadyInstalledError(descriptor.id)
        if not descriptor.installable:
            raise NotInstallableError(
                descriptor.id, descriptor.unavailable_reason or "not installable"
            )
        missing = [dep for dep in descriptor.dependencies if dep not in installed]
        if missing:
            raise MissingDependenciesError(descriptor.id, missing)
        conflicts = [other for other in descriptor.conflicts if other in installed]
        if conflicts:
            raise HasConflictsError(descriptor.id, conflicts)

    def install(
        self,
        descriptor: PackageDescriptor,
        on_progress: Callable[[float], None] | None = None,
        on_stage: Callable[[InstallStage], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> InstallOutcome:
        """Download, verify, extract and register ``descriptor``.

        Dependencies are checked, never installed. Raises an InstallError
        subclass; pipeline failures arrive as StageFailedError with the
        lower-layer error as ``cause``.
        """
        with self._claim(descriptor.id):
            self.check_install(descriptor)
            reporter = _ProgressReporter(on_progress, on_stage)
            pkg_dir = self.package_dir(descriptor.id)
            if pkg_dir.exists():
                logger.warning("Removing leftover directory %s before install", pkg_dir)
                _discard(pkg_dir)
            logger.info("Installing %s %s", descriptor.id, descriptor.version)
            try:
                source_url = self._stage_artifact(descriptor, pkg_dir, reporter, cancel)
                wrappers, exit_code = self._finalize(descriptor, pkg_dir, reporter)
            except StageFailedError as exc:
                reporter.fail()
                logger.error("Install of %s failed: %s", descriptor.id, exc)
                raise
            self.store.put(InstalledRecord(id=descriptor.id, installed_version=descriptor.version))
            reporter.finish()
            logger.info("Installed %s %s from %s", descriptor.id, descriptor.version, source_url)
            return InstallOutcome(
                package_id=descriptor.id,
                version=descriptor.version,
                install_dir=pkg_dir,
                source_url=source_url,
                wrappers=wrappers,
                script_exit_code=exit_code,
            )

    def _stage_artifact(
        self,
        descriptor: PackageDescriptor,
        target_dir: Path,
        reporter: _ProgressReporter,
        cancel: threading.Event | None,
    ) -> str:
        """Download, verify and extract into ``target_dir``. Returns the source URL.

        On failure the staged download and ``target_dir`` are removed.
        """
        download_path = self.cache_dir / f"{descriptor.id}.download"
        staged: Path | None = None
        try:
            reporter.enter(InstallStage.DOWNLOADING)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            source_url = self.fetcher.download_with_fallback(
                descriptor, download_path, reporter.report, cancel
            )
            suffix = archive_suffix(urlparse(source_url).path) or ".download"
            staged = self.cache_dir / f"{descriptor.id}{suffix}"
            os.replace(download_path, staged)

            reporter.enter(InstallStage.VERIFYING)
            if not self.fetcher.verify_checksum(staged, descriptor.checksum_sha256):
                raise ChecksumMismatchError(
                    descriptor.id, descriptor.checksum_sha256, file_sha256(staged)
                )

            reporter.enter(InstallStage.EXTRACTING)
            _discard(target_dir)
            self.extractor.extract(staged, target_dir, reporter.report)

            reporter.enter(InstallStage.SETTING_PERMISSIONS)
            self._mark_binaries_executable(target_dir)
        except (BountuError, OSError) as exc:
            if reporter.current in (InstallStage.EXTRACTING, InstallStage.SETTING_PERMISSIONS):
                logger.warning("Removing partial extraction %s", target_dir)
                _discard(target_dir)
            raise StageFailedError(descriptor.id, reporter.current, exc) from exc
        finally:
            _discard(download_path)
            _discard(staged)
        return source_url

    def _mark_binaries_executable(self, pkg_dir: Path) -> None:
        bin_dir = pkg_dir / "bin"
        if not bin_dir.is_dir():
            return
        for entry in bin_dir.iterdir():
            if entry.is_file() and not entry.is_symlink():
                entry.chmod(entry.stat().st_mode | 0o755)
                logger.debug("Set executable: %s", entry)

    def _finalize(
        self,
        descriptor: PackageDescriptor,
        pkg_dir: Path,
        reporter: _ProgressReporter,
    ) -> tuple[list[Path], int | None]:
        """Run the post-install hook, then publish wrappers and environment lines."""
        try:
            reporter.enter(InstallStage.RUNNING_POST_INSTALL)
            exit_code = None
            if descriptor.install_script.strip():
                exit_code = self._run_script(
                    descriptor.id, descriptor.install_script, pkg_dir, "install"
                )

            reporter.enter(InstallStage.CREATING_LINKS)
            self._remove_wrappers(descriptor.id)
            wrappers = self._create_wrappers(descriptor.id, pkg_dir)
            self._add_environment(pkg_dir)
            (pkg_dir / VERSION_FILE).write_text(descriptor.version + "\n", encoding="utf-8")
        except OSError as exc:
            self._remove_wrappers(descriptor.id)
            self._remove_environment(pkg_dir)
            _discard(pkg_dir)
            raise StageFailedError(descriptor.id, reporter.current, exc) from exc
        return wrappers, exit_code

    def _run_script(self, package_id: str, script: str, cwd: Path, kind: str) -> int | None:
        """Run a package hook with the package directory as working directory.

        The exit code is logged and returned, never raised on. Returns None
        when the hook could not be run at all.
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, raw_path = tempfile.mkstemp(
            prefix=f"{kind}_{package_id}_", suffix=".sh", dir=self.cache_dir
        )
        script_path = Path(raw_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(script)
            result = subprocess.run(
                [self.shell, str(script_path)],
                cwd=cwd if cwd.is_dir() else self.cache_dir,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.script_timeout,
                env={**os.environ, "BOUNTU_PACKAGE_DIR": str(cwd)},
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("%s script for %s could not run: %s", kind.capitalize(), package_id, exc)
            return None
        finally:
            _discard(script_path)
        if result.returncode != 0:
            logger.warning(
                "%s script for %s exited with %d: %s",
                kind.capitalize(),
                package_id,
                result.returncode,
                (result.stderr or result.stdout).strip()[-500:],
            )
        else:
            logger.info("%s script for %s exited with 0", kind.capitalize(), package_id)
        return result.returncode

    # Wrapper shims

    def _create_wrappers(self, package_id: str, pkg_dir: Path) -> list[Path]:
        """Write an exec wrapper in ``bin_dir`` for every file in ``<pkg>/bin``.

        Existing files owned by another package, or by nobody, are left alone.
        """
        source_dir = pkg_dir / "bin"
        if not source_dir.is_dir():
            return []
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        created: list[Path] = []
        for binary in sorted(source_dir.iterdir()):
            if not binary.is_file():
                continue
            wrapper = self.bin_dir / binary.name
            if wrapper.exists():
                owner = wrapper_owner(wrapper)
                if owner != package_id:
                    logger.warning(
                        "Not replacing %s (owned by %s)", wrapper, owner or "another program"
                    )
                    continue
            target = shlex.quote(str(binary))
            wrapper.write_text(
                f"#!{self.shell}\n{WRAPPER_MARKER}{package_id}\nexec {target} \"$@\"\n",
                encoding="utf-8",
            )
            wrapper.chmod(0o755)
            created.append(wrapper)
            logger.debug("Created wrapper %s -> %s", wrapper, binary)
        return created

    def _remove_wrappers(self, package_id: str) -> list[Path]:
        removed: list[Path] = []
        if not self.bin_dir.is_dir():
            return removed
        for wrapper in self.bin_dir.iterdir():
            if wrapper.is_file() and wrapper_owner(wrapper) == package_id:
                _discard(wrapper)
                removed.append(wrapper)
        return removed

    # Environment file

    def _global_environment_lines(self) -> list[str]:
        return [f'export PATH="{self.bin_dir}:$PATH"']

    def _package_environment_lines(self, pkg_dir: Path) -> list[str]:
        return [
            f'export PATH="{pkg_dir / "bin"}:$PATH"',
            f'export LD_LIBRARY_PATH="{pkg_dir / "lib"}:$LD_LIBRARY_PATH"',
        ]

    def _add_environment(self, pkg_dir: Path) -> None:
        """Append the package's PATH lines; lines already present are not repeated."""
        wanted = self._global_environment_lines() + self._package_environment_lines(pkg_dir)
        with self._env_lock:
            exists = self.environment_file.exists()
            present = (
                set(self.environment_file.read_text(encoding="utf-8").splitlines())
                if exists
                else set()
            )
            missing = [line for line in wanted if line not in present]
            if not missing:
                return
            self.environment_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.environment_file, "a", encoding="utf-8") as f:
                if not exists:
                    f.write(f"#!{self.shell}\n")
                for line in missing:
                    f.write(line + "\n")

    def _remove_environment(self, pkg_dir: Path) -> None:
        drop = set(self._package_environment_lines(pkg_dir))
        with self._env_lock:
            if not self.environment_file.exists():
                return
            lines = self.environment_file.read_text(encoding="utf-8").splitlines()
            kept = [line for line in lines if line not in drop]
            if len(kept) == len(lines):
                return
            tmp_path = self.environment_file.with_name(f".{self.environment_file.name}.tmp")
            tmp_path.write_text("\n".join(kept) + "\n", encoding="utf-8")
            os.replace(tmp_path, self.environment_file)

    # Uninstall

    def uninstall(
        self,
        descriptor: PackageDescriptor | str,
        on_stage: Callable[[InstallStage], None] | None = None,
    ) -> None:
        """Remove an installed package, its wrappers and its environment lines.

        Accepts a bare id for packages that have left the repository.
        Raises NotInstalledError or StageFailedError.
        """
        if isinstance(descriptor, PackageDescriptor):
            package_id, script = descriptor.id, descriptor.uninstall_script
        else:
            package_id, script = descriptor, ""
        with self._claim(package_id):
            if self.store.get(package_id) is None:
                raise NotInstalledError(package_id)
            reporter = _ProgressReporter(None, on_stage)
            reporter.enter(InstallStage.REMOVING)
            pkg_dir = self.package_dir(package_id)
            logger.info("Uninstalling %s", package_id)
            if script.strip():
                self._run_script(package_id, script, pkg_dir, "uninstall")
            try:
                if pkg_dir.exists():
                    shutil.rmtree(pkg_dir)
                self._remove_wrappers(package_id)
                self._remove_environment(pkg_dir)
            except OSError as exc:
                reporter.fail()
                raise StageFailedError(package_id, InstallStage.REMOVING, exc) from exc
            self.store.remove(package_id)
            reporter.enter(InstallStage.IDLE)
            logger.info("Uninstalled %s", package_id)

    # Update and repair

    def update(
        self,
        descriptor: PackageDescriptor,
        on_progress: Callable[[float], None] | None = None,
        on_stage: Callable[[InstallStage], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> InstallOutcome:
        """Replace an installed package with ``descriptor``'s version.

        Raises NotInstalledError, NoPendingUpdateError, NotInstallableError
        or StageFailedError.
        """
        record = self.store.get(descriptor.id)
        if record is None:
            raise NotInstalledError(descriptor.id)
        newer = compare_versions(descriptor.version, record.installed_version) > 0
        if not (record.needs_update or newer):
            raise NoPendingUpdateError(descriptor.id)
        return self._reinstall(descriptor, on_progress, on_stage, cancel)

    def fix_maintenance(
        self,
        descriptor: PackageDescriptor,
        on_progress: Callable[[float], None] | None = None,
        on_stage: Callable[[InstallStage], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> InstallOutcome:
        """Reinstall the current catalog version over a package flagged for maintenance."""
        if self.store.get(descriptor.id) is None:
            raise NotInstalledError(descriptor.id)
        return self._reinstall(descriptor, on_progress, on_stage, cancel)

    def _reinstall(
        self,
        descriptor: PackageDescriptor,
        on_progress: Callable[[float], None] | None,
        on_stage: Callable[[InstallStage], None] | None,
        cancel: threading.Event | None,
    ) -> InstallOutcome:
        """Stage the new version beside the old one and swap it in.

        A failure before the swap leaves the previous install untouched.
        """
        if not descriptor.installable:
            raise NotInstallableError(
                descriptor.id, descriptor.unavailable_reason or "not installable"
            )
        with self._claim(descriptor.id):
            reporter = _ProgressReporter(on_progress, on_stage)
            pkg_dir = self.package_dir(descriptor.id)
            side_dir = self.packages_dir / f".{descriptor.id}.staging"
            backup_dir = self.packages_dir / f".{descriptor.id}.previous"
            logger.info("Updating %s to %s", descriptor.id, descriptor.version)
            try:
                source_url = self._stage_artifact(descriptor, side_dir, reporter, cancel)
                self._swap(descriptor.id, pkg_dir, side_dir, backup_dir)
                wrappers, exit_code = self._finalize(descriptor, pkg_dir, reporter)
            except StageFailedError as exc:
                reporter.fail()
                logger.error("Update of %s failed: %s", descriptor.id, exc)
                previous = self.store.get(descriptor.id)
                if previous is not None and not pkg_dir.exists():
                    previous.needs_maintenance = True
                    previous.maintenance_reason = f"Update failed: {exc.cause}"
                    self.store.put(previous)
                raise
            self.store.put(InstalledRecord(id=descriptor.id, installed_version=descriptor.version))
            reporter.finish()
            logger.info("Updated %s to %s", descriptor.id, descriptor.version)
            return InstallOutcome(
                package_id=descriptor.id,
                version=descriptor.version,
                install_dir=pkg_dir,
                source_url=source_url,
                wrappers=wrappers,
                script_exit_code=exit_code,
            )

    def _swap(self, package_id: str, pkg_dir: Path, side_dir: Path, backup_dir: Path) -> None:
        _discard(backup_dir)
        try:
            if pkg_dir.exists():
                os.replace(pkg_dir, backup_dir)
            os.replace(side_dir, pkg_dir)
        except OSError as exc:
            if backup_dir.exists() and not pkg_dir.exists():
                os.replace(backup_dir, pkg_dir)
            _discard(side_dir)
            raise StageFailedError(package_id, InstallStage.EXTRACTING, exc) from exc
        _discard(backup_dir)

    def update_all(
        self,
        descriptors: Iterable[PackageDescriptor],
        on_stage: Callable[[str, InstallStage], None] | None = None,
    ) -> dict[str, InstallOutcome | InstallError]:
        """Update every installed, installable package that has a newer version.

        One package failing does not stop the others; each result is
        either an InstallOutcome or the InstallError it raised.
        """
        results: dict[str, InstallOutcome | InstallError] = {}
        for descriptor in descriptors:
            if not (descriptor.is_installed and descriptor.needs_update and descriptor.installable):
                continue

            def _stage(stage: InstallStage, package_id: str = descriptor.id) -> None:
                if on_stage is not None:
                    on_stage(package_id, stage)

            try:
                results[descriptor.id] = self.update(descriptor, on_stage=_stage)
            except InstallError as exc:
                logger.error("Update of %s failed: %s", descriptor.id, exc)
                results[descriptor.id] = exc
        return results

    def refresh_record_flags(self, descriptors: Iterable[PackageDescriptor]) -> int:
        """Recompute update/maintenance flags of installed records from the catalog.

        Returns the number of records that changed.
        """
        by_id = {d.id: d for d in descriptors}
        changed = 0
        for package_id, record in self.store.load_all().items():
            descriptor = by_id.get(package_id)
            if descriptor is None:
                flags = (False, True, _MISSING_FROM_REPOSITORY)
            else:
                flags = (
                    compare_versions(descriptor.version, record.installed_version) > 0,
                    not descriptor.installable,
                    descriptor.unavailable_reason,
                )
            current = (record.needs_update, record.needs_maintenance, record.maintenance_reason)
            if flags == current:
                continue
            record.needs_update, record.needs_maintenance, record.maintenance_reason = flags
            self.store.put(record)
            changed += 1
        if changed:
            logger.info("Refreshed flags on %d installed packages", changed)
        return changed
