"""Tests for ensure_data_dir() and logging setup in bountu.main."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from bountu.main import configure_logging, ensure_data_dir
from tests.conftest import make_settings

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def test_creates_directory_layout(tmp_path: Path) -> None:
    settings = make_settings(tmp_path / "data")

    ensure_data_dir(settings)

    assert settings.packages_dir.is_dir()
    assert settings.bin_dir.is_dir()
    assert settings.cache_dir.is_dir()
    assert not settings.repo_dir.exists()


def test_keeps_existing_content(tmp_path: Path) -> None:
    settings = make_settings(tmp_path / "data")
    settings.packages_dir.mkdir(parents=True)
    keep = settings.packages_dir / "curl" / "VERSION"
    keep.parent.mkdir()
    keep.write_text("8.4.0\n")

    ensure_data_dir(settings)

    assert keep.read_text() == "8.4.0\n"


def test_rejects_file_in_place_of_data_dir(tmp_path: Path) -> None:
    data = tmp_path / "data"
    data.write_text("not a directory")

    with pytest.raises(NotADirectoryError):
        ensure_data_dir(make_settings(data))


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(logging.NOTSET)
    logging.getLogger("httpcore").setLevel(logging.NOTSET)


@pytest.mark.usefixtures("restore_logging")
def test_configure_logging_quiets_http_clients() -> None:
    configure_logging(debug=False)
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING

    configure_logging(debug=True)
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpcore").level == logging.DEBUG
