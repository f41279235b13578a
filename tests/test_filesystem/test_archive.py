"""Tests for archive extraction."""

from __future__ import annotations

import io
import os
import stat
import tarfile
from typing import TYPE_CHECKING

import pytest

from bountu.exceptions import CorruptArchiveError, NoDataMemberError, UnsupportedFormatError
from bountu.filesystem.archive import ArchiveExtractor, archive_suffix
from tests.conftest import ar_bytes, deb_bytes, tar_gz_bytes, zip_bytes

if TYPE_CHECKING:
    from pathlib import Path


def _is_executable(path: Path) -> bool:
    return bool(path.stat().st_mode & stat.S_IXUSR)


def _tar_with(*infos: tuple[tarfile.TarInfo, bytes | None]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for info, data in infos:
            if data is None:
                tf.addfile(info)
            else:
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def _symlink(name: str, target: str) -> tuple[tarfile.TarInfo, None]:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    return info, None


@pytest.fixture
def extractor() -> ArchiveExtractor:
    return ArchiveExtractor(chunk_size=1024)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("curl.tar.gz", ".tar.gz"),
        ("CURL.TGZ", ".tgz"),
        ("x.tar.xz", ".tar.xz"),
        ("x.tar", ".tar"),
        ("x.zip", ".zip"),
        ("curl_8.4.0_aarch64.deb", ".deb"),
        ("x.rar", None),
        ("x.gz", None),
    ],
)
def test_archive_suffix(name: str, expected: str | None) -> None:
    assert archive_suffix(name) == expected


class TestZip:
    def test_extracts_with_exec_bits(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "tool.zip"
        archive.write_bytes(
            zip_bytes(
                {"bin/tool": b"#!/bin/sh\necho tool\n", "share/readme.txt": b"hello"},
                executables=["bin/tool"],
            )
        )
        dest = tmp_path / "out"
        progress: list[float] = []
        extractor.extract(archive, dest, progress.append)
        assert (dest / "share" / "readme.txt").read_bytes() == b"hello"
        assert _is_executable(dest / "bin" / "tool")
        assert not _is_executable(dest / "share" / "readme.txt")
        assert progress[-1] == 1.0

    def test_reports_progress_every_ten_entries(
        self, extractor: ArchiveExtractor, tmp_path: Path
    ) -> None:
        archive = tmp_path / "many.zip"
        archive.write_bytes(zip_bytes({f"f{i:02d}.txt": b"x" for i in range(25)}))
        progress: list[float] = []
        extractor.extract(archive, tmp_path / "out", progress.append)
        assert progress == [pytest.approx(10 / 25), pytest.approx(20 / 25), 1.0]

    def test_corrupt_zip(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"this is not a zip file")
        with pytest.raises(CorruptArchiveError):
            extractor.extract(archive, tmp_path / "out")


class TestTar:
    def test_extracts_with_exec_bits(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "curl.tar.gz"
        archive.write_bytes(
            tar_gz_bytes(
                {"./bin/curl": b"\x7fELF" + os.urandom(4000), "./lib/libcurl.so": b"lib"},
                executables=["./bin/curl"],
            )
        )
        dest = tmp_path / "out"
        progress: list[float] = []
        extractor.extract(archive, dest, progress.append)
        assert _is_executable(dest / "bin" / "curl")
        assert (dest / "lib" / "libcurl.so").read_bytes() == b"lib"
        assert all(0.0 <= p <= 1.0 for p in progress)
        assert progress[-1] == 1.0

    def test_plain_tar(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tf:
            info = tarfile.TarInfo("hello.txt")
            info.size = 5
            tf.addfile(info, io.BytesIO(b"hello"))
        archive = tmp_path / "hello.tar"
        archive.write_bytes(buf.getvalue())
        extractor.extract(archive, tmp_path / "out")
        assert (tmp_path / "out" / "hello.txt").read_text() == "hello"

    def test_rejects_parent_traversal(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "evil.tar.gz"
        archive.write_bytes(tar_gz_bytes({"../evil.txt": b"pwned"}))
        with pytest.raises(CorruptArchiveError):
            extractor.extract(archive, tmp_path / "out")
        assert not (tmp_path / "evil.txt").exists()

    def test_rejects_absolute_path(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "evil.tar.gz"
        archive.write_bytes(tar_gz_bytes({"/tmp/evil.txt": b"pwned"}))
        with pytest.raises(CorruptArchiveError):
            extractor.extract(archive, tmp_path / "out")

    def test_relative_symlink_inside_destination(
        self, extractor: ArchiveExtractor, tmp_path: Path
    ) -> None:
        file_info = tarfile.TarInfo("bin/curl")
        archive = tmp_path / "links.tar.gz"
        archive.write_bytes(_tar_with((file_info, b"bin"), _symlink("bin/curl-link", "curl")))
        dest = tmp_path / "out"
        extractor.extract(archive, dest)
        link = dest / "bin" / "curl-link"
        assert link.is_symlink()
        assert os.readlink(link) == "curl"

    @pytest.mark.parametrize("target", ["../../outside", "/etc/passwd"])
    def test_rejects_escaping_symlink(
        self, extractor: ArchiveExtractor, tmp_path: Path, target: str
    ) -> None:
        archive = tmp_path / "links.tar.gz"
        archive.write_bytes(_tar_with(_symlink("bin/escape", target)))
        with pytest.raises(CorruptArchiveError):
            extractor.extract(archive, tmp_path / "out")

    def test_hard_link_is_copied(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        file_info = tarfile.TarInfo("bin/curl")
        link_info = tarfile.TarInfo("bin/curl-hard")
        link_info.type = tarfile.LNKTYPE
        link_info.linkname = "bin/curl"
        archive = tmp_path / "links.tar.gz"
        archive.write_bytes(_tar_with((file_info, b"binary"), (link_info, None)))
        dest = tmp_path / "out"
        extractor.extract(archive, dest)
        assert (dest / "bin" / "curl-hard").read_bytes() == b"binary"

    def test_truncated_archive(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        data = tar_gz_bytes({"big.bin": os.urandom(50000)})
        archive = tmp_path / "cut.tar.gz"
        archive.write_bytes(data[: len(data) // 2])
        with pytest.raises(CorruptArchiveError):
            extractor.extract(archive, tmp_path / "out")


class TestDeb:
    def test_extracts_only_data_member(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "curl_8.4.0_aarch64.deb"
        archive.write_bytes(
            deb_bytes(
                {"./bin/curl": b"#!/bin/sh\n", "./share/doc/curl/README": b"docs"},
                executables=["./bin/curl"],
            )
        )
        dest = tmp_path / "out"
        progress: list[float] = []
        extractor.extract(archive, dest, progress.append)
        assert sorted(p.name for p in dest.iterdir()) == ["bin", "share"]
        assert _is_executable(dest / "bin" / "curl")
        assert (dest / "share" / "doc" / "curl" / "README").read_bytes() == b"docs"
        assert progress[-1] == 1.0

    def test_missing_data_member(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "empty.deb"
        archive.write_bytes(
            ar_bytes([("debian-binary", b"2.0\n"), ("control.tar.gz", tar_gz_bytes({}))])
        )
        with pytest.raises(NoDataMemberError):
            extractor.extract(archive, tmp_path / "out")

    def test_unknown_data_compression(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "zstd.deb"
        archive.write_bytes(ar_bytes([("debian-binary", b"2.0\n"), ("data.tar.zst", b"xx")]))
        with pytest.raises(UnsupportedFormatError):
            extractor.extract(archive, tmp_path / "out")

    def test_not_an_ar_archive(self, extractor: ArchiveExtractor, tmp_path: Path) -> None:
        archive = tmp_path / "bad.deb"
        archive.write_bytes(b"definitely not a deb")
        with pytest.raises(CorruptArchiveError):
            extractor.extract(archive, tmp_path / "out")


def test_unsupported_format(extractor: ArchiveExtractor, tmp_path: Path) -> None:
    archive = tmp_path / "pkg.rar"
    archive.write_bytes(b"Rar!")
    with pytest.raises(UnsupportedFormatError):
        extractor.extract(archive, tmp_path / "out")
    assert not (tmp_path / "out").exists()
