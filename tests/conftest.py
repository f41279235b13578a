"""Shared test fixtures for the Bountu engine."""

from __future__ import annotations

import hashlib
import io
import json
import stat
import tarfile
import zipfile
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from bountu.config import Settings
from bountu.filesystem.state_store import InstalledStore, MirrorStateStore
from bountu.models.package import Platform
from bountu.models.sync import ConnectivityResult, ConnectivityStatus
from bountu.schemas.metadata import RawMetadata
from bountu.services.git_service import GitService
from bountu.services.runtime_service import RuntimeTarget

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

ANDROID_ARM64 = RuntimeTarget(Platform.ANDROID, "aarch64")

ARTIFACT_HOST = "https://packages.test"


def make_settings(data_dir: Path, **overrides: Any) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    values: dict[str, Any] = {
        "data_dir": data_dir,
        "repo_url": "file:///nonexistent/bountu-packages",
        "target_platform": "android",
        "target_architecture": "aarch64",
        "mirror_base_urls": [],
        "sync_retry_delay_seconds": 0.0,
        "shell": "/bin/sh",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# Artifact builders


def tar_gz_bytes(files: Mapping[str, bytes], executables: Iterable[str] = ()) -> bytes:
    exec_names = set(executables)
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if name in exec_names else 0o644
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def zip_bytes(files: Mapping[str, bytes], executables: Iterable[str] = ()) -> bytes:
    exec_names = set(executables)
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            info = zipfile.ZipInfo(name)
            mode = 0o755 if name in exec_names else 0o644
            info.external_attr = (stat.S_IFREG | mode) << 16
            zf.writestr(info, data)
    return buf.getvalue()


def ar_bytes(members: Iterable[tuple[str, bytes]]) -> bytes:
    """Build a Unix ar archive (the deb container format)."""
    out = io.BytesIO()
    out.write(b"!<arch>\n")
    for name, data in members:
        header = f"{name:<16}{0:<12}{0:<6}{0:<6}{'100644':<8}{len(data):<10}"
        out.write(header.encode("ascii") + b"`\n")
        out.write(data)
        if len(data) % 2:
            out.write(b"\n")
    return out.getvalue()


def deb_bytes(data_files: Mapping[str, bytes], executables: Iterable[str] = ()) -> bytes:
    control = tar_gz_bytes({"./control": b"Package: test\nVersion: 1.0\n"})
    return ar_bytes(
        [
            ("debian-binary", b"2.0\n"),
            ("control.tar.gz", control),
            ("data.tar.gz", tar_gz_bytes(data_files, executables)),
        ]
    )


def artifact_transport(artifacts: Mapping[str, bytes]) -> httpx.MockTransport:
    """Serve ``artifacts`` by absolute URL; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = artifacts.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return httpx.MockTransport(handler)


# Repository fixtures


def package_metadata(package_id: str, **overrides: Any) -> dict[str, Any]:
    """Published ``metadata.json`` content (camelCase keys) for a test package."""
    values: dict[str, Any] = {
        "id": package_id,
        "name": package_id.capitalize(),
        "version": "1.0.0",
        "description": f"The {package_id} package",
        "category": "utilities",
        "size": 1024,
        "download_url": f"{ARTIFACT_HOST}/{package_id}.tar.gz",
        "checksum_sha256": "0" * 64,
        "platform": "android",
        "architecture": "aarch64",
    }
    values.update(overrides)
    return RawMetadata.model_validate(values).model_dump(by_alias=True)


class RemoteRepo:
    """A local git repository standing in for the upstream package repository."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.git = GitService(path)
        self.git.init_repo("main")

    @property
    def url(self) -> str:
        return self.path.as_uri()

    def write(self, rel_path: str, text: str) -> None:
        full_path = self.path / rel_path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(text, encoding="utf-8")

    def add_package(self, package_id: str, **overrides: Any) -> dict[str, Any]:
        data = package_metadata(package_id, **overrides)
        self.write(f"packages/{package_id}/metadata.json", json.dumps(data, indent=2))
        return data

    def commit(self, message: str = "update") -> str | None:
        return self.git.commit_paths(message, ["."])


class StaticProber:
    """Connectivity prober that always reports the same result."""

    def __init__(
        self, status: ConnectivityStatus = ConnectivityStatus.OK, latency_ms: float = 20.0
    ) -> None:
        self.status = status
        self.latency_ms = latency_ms
        self.calls = 0

    def probe(self) -> ConnectivityResult:
        self.calls += 1
        return ConnectivityResult(self.status, latency_ms=self.latency_ms, detail=self.status)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path / "data")


@pytest.fixture
def remote(tmp_path: Path) -> RemoteRepo:
    repo = RemoteRepo(tmp_path / "remote")
    repo.write("config/maintenance.json", json.dumps({"isEnabled": False}))
    repo.add_package("curl", category="network", tags=["http", "download"])
    repo.add_package("jq", category="utilities")
    repo.commit("initial packages")
    return repo


@pytest.fixture
def installed_store(settings: Settings) -> InstalledStore:
    return InstalledStore(settings.installed_state_file)


@pytest.fixture
def mirror_state_store(settings: Settings) -> MirrorStateStore:
    return MirrorStateStore(settings.mirror_state_file)
