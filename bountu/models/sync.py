"""Connectivity and sync-cycle state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bountu.exceptions import BountuError
    from bountu.services.catalog_service import Catalog


class ConnectivityStatus(StrEnum):
    OK = "ok"
    NO_NETWORK = "no_network"
    LIMITED = "limited"
    REMOTE_UNREACHABLE = "remote_unreachable"


class ConnectionQuality(StrEnum):
    UNKNOWN = "unknown"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    VERY_POOR = "very_poor"


@dataclass
class ConnectivityResult:
    status: ConnectivityStatus
    latency_ms: float | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ConnectivityStatus.OK

    @property
    def quality(self) -> ConnectionQuality:
        """Grade the measured latency."""
        if self.latency_ms is None:
            return ConnectionQuality.UNKNOWN
        if self.latency_ms < 50:
            return ConnectionQuality.EXCELLENT
        if self.latency_ms < 100:
            return ConnectionQuality.GOOD
        if self.latency_ms < 200:
            return ConnectionQuality.FAIR
        if self.latency_ms < 500:
            return ConnectionQuality.POOR
        return ConnectionQuality.VERY_POOR


class SyncPhase(StrEnum):
    IDLE = "idle"
    CHECKING = "checking"
    SYNCING = "syncing"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncState:
    """Observable state of the sync coordinator."""

    phase: SyncPhase = SyncPhase.IDLE
    attempt: int = 0
    max_attempts: int = 0
    error: BountuError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (SyncPhase.SUCCESS, SyncPhase.FAILED)


@dataclass
class SyncAttempt:
    """Bookkeeping for one sync cycle; never persisted."""

    attempt_number: int
    max_attempts: int
    last_error: BountuError | None = None


@dataclass
class SyncResult:
    """Terminal outcome of ``perform_initial_sync``."""

    success: bool
    attempts: int = 0
    package_count: int = 0
    error: BountuError | None = None
    catalog: Catalog | None = None
