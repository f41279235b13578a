"""Local mirror state."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class MirrorState:
    """Where the mirror lives and which remote commit it reflects."""

    local_path: str
    remote_url: str
    current_commit_hash: str = ""
    last_fetch_timestamp: float = 0.0


@dataclass
class SyncOutcome:
    """Result of a fetch+pull on an initialized mirror."""

    has_updates: bool
    before_commit: str
    after_commit: str

    @property
    def message(self) -> str:
        return "Repository updated" if self.has_updates else "Already up to date"
