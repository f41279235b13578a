"""Tests for the JSON state stores."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from bountu.filesystem.state_store import InstalledStore, MirrorStateStore
from bountu.models.mirror import MirrorState
from bountu.models.package import InstalledRecord

if TYPE_CHECKING:
    from pathlib import Path


class TestInstalledStore:
    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        store = InstalledStore(tmp_path / "installed.json")
        assert store.load_all() == {}
        assert store.get("curl") is None

    def test_put_and_get(self, tmp_path: Path) -> None:
        store = InstalledStore(tmp_path / "installed.json")
        store.put(InstalledRecord(id="curl", installed_version="8.4.0"))
        store.put(
            InstalledRecord(
                id="jq",
                installed_version="1.7",
                needs_maintenance=True,
                maintenance_reason="Missing checksum",
            )
        )
        reopened = InstalledStore(tmp_path / "installed.json")
        assert reopened.ids() == {"curl", "jq"}
        record = reopened.get("jq")
        assert record is not None
        assert record.needs_maintenance is True
        assert record.maintenance_reason == "Missing checksum"

    def test_file_is_keyed_by_id(self, tmp_path: Path) -> None:
        path = tmp_path / "installed.json"
        InstalledStore(path).put(InstalledRecord(id="curl", installed_version="8.4.0"))
        data = json.loads(path.read_text())
        assert data == {
            "curl": {
                "installed_version": "8.4.0",
                "needs_update": False,
                "needs_maintenance": False,
                "maintenance_reason": "",
            }
        }

    def test_remove(self, tmp_path: Path) -> None:
        store = InstalledStore(tmp_path / "installed.json")
        store.put(InstalledRecord(id="curl", installed_version="8.4.0"))
        assert store.remove("curl") is True
        assert store.remove("curl") is False
        assert store.load_all() == {}

    def test_no_temp_file_left_behind(self, tmp_path: Path) -> None:
        store = InstalledStore(tmp_path / "installed.json")
        store.put(InstalledRecord(id="curl", installed_version="8.4.0"))
        assert [p.name for p in tmp_path.iterdir()] == ["installed.json"]

    def test_corrupt_file_reads_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "installed.json"
        path.write_text("{not json")
        assert InstalledStore(path).load_all() == {}

    def test_malformed_entries_are_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "installed.json"
        path.write_text(json.dumps({"curl": {"installed_version": "1"}, "bad": "x"}))
        assert InstalledStore(path).ids() == {"curl"}


class TestMirrorStateStore:
    def test_round_trip(self, tmp_path: Path) -> None:
        store = MirrorStateStore(tmp_path / "mirror.json")
        state = MirrorState(
            local_path="/data/repo",
            remote_url="https://example.com/r.git",
            current_commit_hash="a" * 40,
            last_fetch_timestamp=1700000000.0,
        )
        store.save(state)
        assert store.load() == state

    def test_missing_and_malformed(self, tmp_path: Path) -> None:
        path = tmp_path / "mirror.json"
        store = MirrorStateStore(path)
        assert store.load() is None
        path.write_text(json.dumps({"remote_url": "x"}))
        assert store.load() is None

    def test_clear(self, tmp_path: Path) -> None:
        store = MirrorStateStore(tmp_path / "mirror.json")
        store.save(MirrorState(local_path="a", remote_url="b"))
        store.clear()
        store.clear()
        assert store.load() is None
