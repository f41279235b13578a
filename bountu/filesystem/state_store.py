"""JSON state files for installed packages and the metadata mirror."""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from bountu.models.mirror import MirrorState
from bountu.models.package import InstalledRecord

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def _write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a sibling temp file and rename it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)


def _read_json(path: Path) -> Any:
    """Return parsed JSON, or None when the file is missing or unreadable."""
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.error("Ignoring unreadable state file %s: %s", path, exc)
        return None


class InstalledStore:
    """Installed-package records, keyed by package id.

    The store is the single source of truth for what is installed; every
    method takes the lock so concurrent installs cannot lose updates.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict[str, InstalledRecord]:
        data = _read_json(self.path)
        if not isinstance(data, dict):
            return {}
        records: dict[str, InstalledRecord] = {}
        for package_id, entry in data.items():
            if not isinstance(entry, dict) or "installed_version" not in entry:
                logger.warning("Skipping malformed installed record for %s", package_id)
                continue
            records[package_id] = InstalledRecord(
                id=package_id,
                installed_version=str(entry["installed_version"]),
                needs_update=bool(entry.get("needs_update", False)),
                needs_maintenance=bool(entry.get("needs_maintenance", False)),
                maintenance_reason=str(entry.get("maintenance_reason", "")),
            )
        return records

    def _save(self, records: dict[str, InstalledRecord]) -> None:
        data = {}
        for package_id, record in sorted(records.items()):
            entry = asdict(record)
            del entry["id"]
            data[package_id] = entry
        _write_json_atomic(self.path, data)

    def load_all(self) -> dict[str, InstalledRecord]:
        with self._lock:
            return self._load()

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._load())

    def get(self, package_id: str) -> InstalledRecord | None:
        with self._lock:
            return self._load().get(package_id)

    def put(self, record: InstalledRecord) -> None:
        with self._lock:
            records = self._load()
            records[record.id] = record
            self._save(records)

    def remove(self, package_id: str) -> bool:
        """Delete a record. Returns True if it existed."""
        with self._lock:
            records = self._load()
            if records.pop(package_id, None) is None:
                return False
            self._save(records)
            return True


class MirrorStateStore:
    """Persisted commit hash and fetch timestamp of the local mirror."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> MirrorState | None:
        with self._lock:
            data = _read_json(self.path)
        if not isinstance(data, dict):
            return None
        try:
            return MirrorState(
                local_path=str(data["local_path"]),
                remote_url=str(data["remote_url"]),
                current_commit_hash=str(data.get("current_commit_hash", "")),
                last_fetch_timestamp=float(data.get("last_fetch_timestamp", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Ignoring malformed mirror state in %s: %s", self.path, exc)
            return None

    def save(self, state: MirrorState) -> None:
        with self._lock:
            _write_json_atomic(self.path, asdict(state))

    def clear(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)
