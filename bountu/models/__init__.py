"""Plain data models for the Bountu engine."""

from bountu.models.install import STAGE_WEIGHTS, InstallOutcome, InstallStage
from bountu.models.mirror import MirrorState, SyncOutcome
from bountu.models.package import (
    Category,
    InstalledRecord,
    PackageDescriptor,
    PackageFilter,
    PackageStats,
    Platform,
)
from bountu.models.sync import (
    ConnectionQuality,
    ConnectivityResult,
    ConnectivityStatus,
    SyncAttempt,
    SyncPhase,
    SyncResult,
    SyncState,
)

__all__ = [
    "STAGE_WEIGHTS",
    "Category",
    "ConnectionQuality",
    "ConnectivityResult",
    "ConnectivityStatus",
    "InstallOutcome",
    "InstallStage",
    "InstalledRecord",
    "MirrorState",
    "PackageDescriptor",
    "PackageFilter",
    "PackageStats",
    "Platform",
    "SyncAttempt",
    "SyncOutcome",
    "SyncPhase",
    "SyncResult",
    "SyncState",
]
