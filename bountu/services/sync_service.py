"""Sync coordinator: the connectivity-gated, retried mirror refresh."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from bountu.exceptions import (
    BountuError,
    ConnectivityError,
    CorruptRepositoryError,
    EmptyCatalogError,
    LimitedConnectivityError,
    MirrorError,
    NoNetworkError,
    NotInitializedError,
    RemoteUnreachableError,
)
from bountu.models.sync import ConnectivityStatus, SyncAttempt, SyncPhase, SyncResult, SyncState
from bountu.services.catalog_service import Catalog

if TYPE_CHECKING:
    from collections.abc import Callable

    from bountu.filesystem.state_store import InstalledStore
    from bountu.models.mirror import SyncOutcome
    from bountu.services.catalog_service import CatalogResolver
    from bountu.services.connectivity_service import ConnectivityProber
    from bountu.services.mirror_service import RepositoryMirror

logger = logging.getLogger(__name__)

_CONNECTIVITY_ERRORS: dict[ConnectivityStatus, type[ConnectivityError]] = {
    ConnectivityStatus.NO_NETWORK: NoNetworkError,
    ConnectivityStatus.LIMITED: LimitedConnectivityError,
    ConnectivityStatus.REMOTE_UNREACHABLE: RemoteUnreachableError,
}


class SyncCoordinator:
    """Owns the catalog and the state machine that keeps it in sync with the remote.

    Idle -> Checking -> Syncing(n) -> Success, or Retrying(n) -> Syncing(n+1),
    or Failed. Connectivity failures end the run immediately; only the sync
    cycle itself is retried.
    """

    def __init__(
        self,
        mirror: RepositoryMirror,
        resolver: CatalogResolver,
        prober: ConnectivityProber,
        installed_store: InstalledStore,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        force_refresh: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        on_state_change: Callable[[SyncState], None] | None = None,
    ) -> None:
        self.mirror = mirror
        self.resolver = resolver
        self.prober = prober
        self.installed_store = installed_store
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.force_refresh = force_refresh
        self._sleep = sleep
        self._on_state_change = on_state_change
        self._state = SyncState()
        self._catalog = Catalog()
        self._lock = threading.RLock()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    def _set_state(
        self, phase: SyncPhase, attempt: int = 0, error: BountuError | None = None
    ) -> None:
        self._state = SyncState(
            phase=phase, attempt=attempt, max_attempts=self.max_attempts, error=error
        )
        if self._on_state_change is not None:
            self._on_state_change(self._state)

    def perform_initial_sync(self) -> SyncResult:
        """Probe connectivity, then run up to ``max_attempts`` sync cycles."""
        with self._lock:
            self._set_state(SyncPhase.CHECKING)
            connectivity = self.prober.probe()
            if not connectivity.ok:
                error_cls = _CONNECTIVITY_ERRORS[connectivity.status]
                error: BountuError = error_cls(connectivity.detail or connectivity.status.value)
                logger.error("Sync aborted, connectivity check failed: %s", error)
                self._set_state(SyncPhase.FAILED, error=error)
                return SyncResult(success=False, attempts=0, error=error)

            attempt = SyncAttempt(attempt_number=0, max_attempts=self.max_attempts)
            for number in range(1, self.max_attempts + 1):
                attempt.attempt_number = number
                self._set_state(SyncPhase.SYNCING, number)
                try:
                    package_count = self._run_cycle()
                except BountuError as exc:
                    attempt.last_error = exc
                except OSError as exc:
                    attempt.last_error = MirrorError(f"Local mirror I/O failed: {exc}")
                    attempt.last_error.__cause__ = exc
                else:
                    self._set_state(SyncPhase.SUCCESS, number)
                    logger.info(
                        "Sync succeeded on attempt %d/%d with %d packages",
                        number,
                        self.max_attempts,
                        package_count,
                    )
                    return SyncResult(
                        success=True,
                        attempts=number,
                        package_count=package_count,
                        catalog=self._catalog,
                    )

                logger.warning(
                    "Sync attempt %d/%d failed: %s", number, self.max_attempts, attempt.last_error
                )
                if number < self.max_attempts:
                    self._set_state(SyncPhase.RETRYING, number, attempt.last_error)
                    self._sleep(self.retry_delay)

            logger.error("Sync failed after %d attempts: %s", self.max_attempts, attempt.last_error)
            self._set_state(SyncPhase.FAILED, self.max_attempts, attempt.last_error)
            return SyncResult(
                success=False, attempts=self.max_attempts, error=attempt.last_error
            )

    def _run_cycle(self) -> int:
        """One sync cycle. Returns the number of packages in the reloaded catalog."""
        self.mirror.initialize(force_refresh=self.force_refresh)
        if not self.force_refresh:
            self.mirror.sync()
        state = self.mirror.info()
        if not state.current_commit_hash:
            raise CorruptRepositoryError(f"Mirror at {state.local_path} has no commit")
        package_ids = self.resolver.list_package_ids()
        if not package_ids:
            raise EmptyCatalogError(f"No packages found in {state.remote_url}")
        self._catalog = self.resolver.load_catalog(self.installed_store.load_all())
        return len(self._catalog)

    def retry_sync(self) -> SyncResult:
        """Start over from the connectivity check."""
        return self.perform_initial_sync()

    def refresh(self) -> SyncOutcome:
        """Fetch and pull an already-initialized mirror, then reload the catalog.

        Raises NotInitializedError or another MirrorError.
        """
        with self._lock:
            if not self.mirror.is_initialized:
                raise NotInitializedError("Run a full sync before refreshing")
            outcome = self.mirror.sync()
            self.reload_catalog()
            return outcome

    def reload_catalog(self) -> Catalog:
        """Rebuild the catalog from the current mirror and installed records."""
        with self._lock:
            self._catalog = self.resolver.load_catalog(self.installed_store.load_all())
            return self._catalog
