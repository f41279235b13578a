"""Archive extraction for zip, tar (gz/xz/plain) and deb packages."""

from __future__ import annotations

import gzip
import logging
import lzma
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from debian.arfile import ArError, ArFile

from bountu.exceptions import CorruptArchiveError, NoDataMemberError, UnsupportedFormatError

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import IO

    from debian.arfile import ArMember

logger = logging.getLogger(__name__)

# Checked in order, so compound suffixes must precede their tails.
SUPPORTED_SUFFIXES = (".tar.gz", ".tgz", ".tar.xz", ".txz", ".tar", ".zip", ".deb")

_TAR_MODES = {
    ".tar.gz": "r|gz",
    ".tgz": "r|gz",
    ".tar.xz": "r|xz",
    ".txz": "r|xz",
    ".tar": "r|",
}

# deb data member suffix -> archive suffix it is extracted as
_DEB_DATA_SUFFIXES = {
    ".gz": ".tar.gz",
    ".tgz": ".tar.gz",
    ".xz": ".tar.xz",
    "": ".tar",
}

_DEB_DATA_PREFIX = "data.tar"

_ZIP_PROGRESS_EVERY = 10

_CORRUPT_ERRORS: tuple[type[BaseException], ...] = (
    tarfile.TarError,
    zipfile.BadZipFile,
    gzip.BadGzipFile,
    zlib.error,
    lzma.LZMAError,
    EOFError,
    ArError,
)


def archive_suffix(name: str) -> str | None:
    """Return the supported archive suffix of ``name``, or None."""
    lower = name.lower()
    for suffix in SUPPORTED_SUFFIXES:
        if lower.endswith(suffix):
            return suffix
    return None


def _safe_target(dest_dir: Path, member_name: str) -> Path | None:
    """Map an archive member name into ``dest_dir``.

    Returns None for the archive root ("./"). Raises CorruptArchiveError for
    absolute names or names that climb out of ``dest_dir``.
    """
    pure = PurePosixPath(member_name.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts:
        raise CorruptArchiveError(f"Unsafe path in archive: {member_name}")
    parts = [part for part in pure.parts if part not in ("", ".")]
    if not parts:
        return None
    target = dest_dir.joinpath(*parts)
    if not target.resolve().is_relative_to(dest_dir.resolve()):
        raise CorruptArchiveError(f"Path escapes destination: {member_name}")
    return target


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class ArchiveExtractor:
    """Extracts a package artifact into a directory, dispatching on file suffix."""

    def __init__(self, chunk_size: int = 8192) -> None:
        self.chunk_size = chunk_size

    def extract(
        self,
        file_path: Path,
        dest_dir: Path,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        """Extract ``file_path`` into ``dest_dir``.

        Raises UnsupportedFormatError, CorruptArchiveError or NoDataMemberError.
        """
        suffix = archive_suffix(file_path.name)
        if suffix is None:
            raise UnsupportedFormatError(f"Unsupported archive format: {file_path.name}")
        dest_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Extracting %s into %s", file_path.name, dest_dir)
        try:
            if suffix == ".zip":
                self._extract_zip(file_path, dest_dir, on_progress)
            elif suffix == ".deb":
                self._extract_deb(file_path, dest_dir, on_progress)
            else:
                self._extract_tar(file_path, dest_dir, _TAR_MODES[suffix], on_progress)
        except _CORRUPT_ERRORS as exc:
            raise CorruptArchiveError(f"Corrupt archive {file_path.name}: {exc}") from exc
        if on_progress is not None:
            on_progress(1.0)

    def _copy_stream(self, source: IO[bytes], target: Path) -> int:
        written = 0
        with open(target, "wb") as f:
            for chunk in iter(lambda: source.read(self.chunk_size), b""):
                f.write(chunk)
                written += len(chunk)
        return written

    def _extract_zip(
        self,
        file_path: Path,
        dest_dir: Path,
        on_progress: Callable[[float], None] | None,
    ) -> None:
        with zipfile.ZipFile(file_path) as zf:
            infos = zf.infolist()
            total = len(infos)
            for index, info in enumerate(infos, start=1):
                target = _safe_target(dest_dir, info.filename)
                if target is not None:
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with zf.open(info) as source:
                            self._copy_stream(source, target)
                        if (info.external_attr >> 16) & 0o111:
                            _make_executable(target)
                if on_progress is not None and total and index % _ZIP_PROGRESS_EVERY == 0:
                    on_progress(index / total)
            logger.debug("Extracted %d zip entries from %s", total, file_path.name)

    def _extract_tar(
        self,
        file_path: Path,
        dest_dir: Path,
        mode: str,
        on_progress: Callable[[float], None] | None,
    ) -> None:
        """Stream-extract a tar archive.

        Progress is bytes written over the compressed file size, capped at 1.0.
        """
        compressed_size = max(file_path.stat().st_size, 1)
        written = 0
        with open(file_path, "rb") as raw, tarfile.open(fileobj=raw, mode=mode) as tf:
            for member in tf:
                target = _safe_target(dest_dir, member.name)
                if target is None:
                    continue
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = tf.extractfile(member)
                    if source is None:
                        continue
                    with source:
                        written += self._copy_stream(source, target)
                    if member.mode & 0o111:
                        _make_executable(target)
                    if on_progress is not None:
                        on_progress(min(written / compressed_size, 1.0))
                elif member.issym():
                    self._link_symbolic(dest_dir, target, member.linkname)
                elif member.islnk():
                    self._link_hard(dest_dir, target, member.linkname)
                else:
                    logger.debug("Skipping special tar entry %s", member.name)

    def _link_symbolic(self, dest_dir: Path, target: Path, link_name: str) -> None:
        if os.path.isabs(link_name):
            raise CorruptArchiveError(f"Absolute symlink in archive: {link_name}")
        resolved = (target.parent / link_name).resolve()
        if not resolved.is_relative_to(dest_dir.resolve()):
            raise CorruptArchiveError(f"Symlink escapes destination: {link_name}")
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink() or target.exists():
            target.unlink()
        try:
            os.symlink(link_name, target)
        except OSError as exc:
            # Some storage (FAT, Android shared storage) has no symlinks.
            logger.warning("Could not create symlink %s -> %s: %s", target, link_name, exc)

    def _link_hard(self, dest_dir: Path, target: Path, link_name: str) -> None:
        source = _safe_target(dest_dir, link_name)
        if source is None or not source.is_file():
            logger.warning("Hard link %s points at missing %s, skipping", target, link_name)
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)

    def _copy_member(self, member: ArMember, target: Path) -> None:
        try:
            with open(target, "wb") as f:
                while chunk := member.read(self.chunk_size):
                    f.write(chunk)
        finally:
            member.close()

    def _extract_deb(
        self,
        file_path: Path,
        dest_dir: Path,
        on_progress: Callable[[float], None] | None,
    ) -> None:
        """Extract only the ``data.tar*`` member of a deb; control members are skipped."""
        archive = ArFile(filename=str(file_path))
        for member in archive.getmembers():
            name = member.name.rstrip("/")
            if not name.startswith(_DEB_DATA_PREFIX):
                logger.debug("Skipping deb member %s", name)
                continue
            inner_suffix = _DEB_DATA_SUFFIXES.get(name[len(_DEB_DATA_PREFIX) :])
            if inner_suffix is None:
                raise UnsupportedFormatError(f"Unsupported deb data member: {name}")
            with tempfile.TemporaryDirectory(prefix="bountu-deb-") as tmp:
                data_path = Path(tmp) / f"data{inner_suffix}"
                self._copy_member(member, data_path)
                self._extract_tar(data_path, dest_dir, _TAR_MODES[inner_suffix], on_progress)
            return
        raise NoDataMemberError(f"No data.tar member in {file_path.name}")
