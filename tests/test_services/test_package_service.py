"""Tests for the package manager facade."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from bountu.exceptions import NotFoundError, NotInstalledError
from bountu.models.package import Category, PackageFilter
from bountu.schemas.metadata import RawMetadata
from bountu.services.package_service import PackageManager
from tests.conftest import (
    ANDROID_ARM64,
    ARTIFACT_HOST,
    StaticProber,
    artifact_transport,
    make_settings,
    sha256_hex,
    tar_gz_bytes,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from tests.conftest import RemoteRepo

HELLO_ARTIFACT = tar_gz_bytes(
    {"./bin/hello": b"#!/bin/sh\necho hello\n"}, executables=["./bin/hello"]
)
HELLO_URL = f"{ARTIFACT_HOST}/hello.tar.gz"


@pytest.fixture
def manager(tmp_path: Path, remote: RemoteRepo) -> Iterator[PackageManager]:
    remote.add_package(
        "hello", download_url=HELLO_URL, checksum_sha256=sha256_hex(HELLO_ARTIFACT)
    )
    remote.commit("add hello")
    settings = make_settings(tmp_path / "data", repo_url=remote.url)
    with PackageManager.from_settings(
        settings,
        target=ANDROID_ARM64,
        prober=StaticProber(),
        transport=artifact_transport({HELLO_URL: HELLO_ARTIFACT}),
        sleep=lambda seconds: None,
    ) as pm:
        yield pm


def test_sync_builds_catalog(manager: PackageManager) -> None:
    result = manager.sync()
    assert result.success is True
    assert manager.catalog.ids() == ["curl", "hello", "jq"]
    assert manager.maintenance_status().enabled is False
    assert manager.app_config().latest_version == "1.0"


def test_queries(manager: PackageManager) -> None:
    manager.sync()
    assert manager.get("curl").category is Category.NETWORK
    with pytest.raises(NotFoundError):
        manager.get("nope")
    assert [d.id for d in manager.search(PackageFilter(query="download"))] == ["curl"]
    assert len(manager.search()) == 3
    assert manager.stats().total == 3


def test_install_then_uninstall(manager: PackageManager) -> None:
    manager.sync()
    outcome = manager.install("hello")
    assert outcome.version == "1.0.0"
    assert manager.get("hello").is_installed is True
    assert manager.stats().installed == 1
    manager.uninstall("hello")
    assert manager.get("hello").is_installed is False
    with pytest.raises(NotInstalledError):
        manager.uninstall("hello")


def test_uninstall_package_that_left_the_repository(
    manager: PackageManager, remote: RemoteRepo
) -> None:
    manager.sync()
    manager.install("hello")
    remote.git._run("rm", "-r", "-q", "packages/hello")
    remote.commit("drop hello")
    manager.refresh()
    assert "hello" not in manager.catalog
    record = manager.orchestrator.store.get("hello")
    assert record is not None
    assert record.needs_maintenance is True
    manager.uninstall("hello")
    assert manager.orchestrator.store.get("hello") is None


def test_refresh_flags_updates(manager: PackageManager, remote: RemoteRepo) -> None:
    manager.sync()
    manager.install("hello")
    remote.add_package(
        "hello",
        version="1.1.0",
        download_url=HELLO_URL,
        checksum_sha256=sha256_hex(HELLO_ARTIFACT),
    )
    remote.commit("hello 1.1.0")
    outcome = manager.refresh()
    assert outcome.has_updates is True
    assert manager.get("hello").needs_update is True
    results = manager.update_all()
    assert list(results) == ["hello"]
    hello = manager.get("hello")
    assert hello.installed_version == "1.1.0"
    assert hello.needs_update is False


def test_load_reads_existing_mirror_without_network(
    manager: PackageManager, tmp_path: Path, remote: RemoteRepo
) -> None:
    manager.sync()
    offline = PackageManager.from_settings(
        make_settings(tmp_path / "data", repo_url=remote.url),
        target=ANDROID_ARM64,
        prober=StaticProber(),
    )
    with offline:
        assert offline.load().ids() == ["curl", "hello", "jq"]


def test_create_package(manager: PackageManager) -> None:
    manager.sync()
    commit = manager.create_package(
        RawMetadata(
            id="mytool",
            name="My Tool",
            version="0.1",
            description="A local tool",
            category="development",
            size=42,
        )
    )
    assert commit is not None
    mytool = manager.get("mytool")
    assert mytool.category is Category.DEVELOPMENT
    assert mytool.installable is False
    assert mytool.unavailable_reason == "Missing download URL"
