"""Package manager facade wiring the mirror, catalog, sync and install services."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from bountu.exceptions import NotFoundError, NotInstalledError
from bountu.filesystem.archive import ArchiveExtractor
from bountu.filesystem.state_store import InstalledStore, MirrorStateStore
from bountu.models.package import PackageFilter
from bountu.services.catalog_service import CatalogResolver
from bountu.services.connectivity_service import NetworkConnectivityProber
from bountu.services.fetch_service import ArtifactFetcher
from bountu.services.install_service import InstallationOrchestrator
from bountu.services.mirror_service import RepositoryMirror
from bountu.services.runtime_service import detect_runtime_target
from bountu.services.sync_service import SyncCoordinator

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    import httpx

    from bountu.config import Settings
    from bountu.exceptions import InstallError
    from bountu.models.install import InstallOutcome, InstallStage
    from bountu.models.mirror import SyncOutcome
    from bountu.models.package import PackageDescriptor, PackageStats
    from bountu.models.sync import SyncResult, SyncState
    from bountu.schemas.metadata import AppConfig, MaintenanceStatus, RawMetadata
    from bountu.services.catalog_service import Catalog
    from bountu.services.connectivity_service import ConnectivityProber
    from bountu.services.runtime_service import RuntimeTarget

logger = logging.getLogger(__name__)


class PackageManager:
    """Single entry point for callers; owns the coordinator and therefore the catalog.

    Every mutating operation reloads the catalog so descriptors reflect the
    installed set afterwards.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        orchestrator: InstallationOrchestrator,
    ) -> None:
        self.coordinator = coordinator
        self.orchestrator = orchestrator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        target: RuntimeTarget | None = None,
        prober: ConnectivityProber | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
        on_state_change: Callable[[SyncState], None] | None = None,
    ) -> PackageManager:
        """Build the full service graph from settings."""
        target = target if target is not None else detect_runtime_target(settings)
        installed_store = InstalledStore(settings.installed_state_file)
        mirror = RepositoryMirror(
            settings.repo_dir,
            settings.repo_url,
            MirrorStateStore(settings.mirror_state_file),
            branch=settings.repo_branch,
        )
        resolver = CatalogResolver(mirror, target)
        coordinator = SyncCoordinator(
            mirror,
            resolver,
            prober if prober is not None else NetworkConnectivityProber(settings),
            installed_store,
            max_attempts=settings.sync_max_attempts,
            retry_delay=settings.sync_retry_delay_seconds,
            force_refresh=settings.force_refresh_on_sync,
            sleep=sleep if sleep is not None else time.sleep,
            on_state_change=on_state_change,
        )
        fetcher = ArtifactFetcher(settings, target.architecture, transport=transport)
        orchestrator = InstallationOrchestrator(
            settings,
            fetcher,
            ArchiveExtractor(settings.download_chunk_size),
            installed_store,
        )
        logger.debug("Package manager ready for %s/%s", target.platform, target.architecture)
        return cls(coordinator, orchestrator)

    def close(self) -> None:
        self.orchestrator.fetcher.close()

    def __enter__(self) -> PackageManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def catalog(self) -> Catalog:
        return self.coordinator.catalog

    @property
    def resolver(self) -> CatalogResolver:
        return self.coordinator.resolver

    # Sync

    def sync(self) -> SyncResult:
        return self.coordinator.perform_initial_sync()

    def refresh(self) -> SyncOutcome:
        outcome = self.coordinator.refresh()
        self.orchestrator.refresh_record_flags(self.catalog)
        self.coordinator.reload_catalog()
        return outcome

    def load(self) -> Catalog:
        """Load the catalog from an existing mirror without touching the network."""
        return self.coordinator.reload_catalog()

    def maintenance_status(self) -> MaintenanceStatus:
        return self.resolver.load_maintenance_status()

    def app_config(self) -> AppConfig:
        return self.resolver.load_app_config()

    # Queries

    def get(self, package_id: str) -> PackageDescriptor:
        """Raises NotFoundError."""
        descriptor = self.catalog.get(package_id)
        if descriptor is None:
            raise NotFoundError(f"Unknown package: {package_id}")
        return descriptor

    def search(self, package_filter: PackageFilter | None = None) -> list[PackageDescriptor]:
        return self.resolver.search(self.catalog, package_filter or PackageFilter())

    def stats(self) -> PackageStats:
        return self.catalog.stats()

    # Mutations

    def install(
        self,
        package_id: str,
        on_progress: Callable[[float], None] | None = None,
        on_stage: Callable[[InstallStage], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> InstallOutcome:
        outcome = self.orchestrator.install(self.get(package_id), on_progress, on_stage, cancel)
        self.coordinator.reload_catalog()
        return outcome

    def uninstall(self, package_id: str) -> None:
        """Uninstall by id, even if the package has left the repository."""
        descriptor = self.catalog.get(package_id)
        if descriptor is None and self.orchestrator.store.get(package_id) is None:
            raise NotInstalledError(package_id)
        self.orchestrator.uninstall(descriptor if descriptor is not None else package_id)
        self.coordinator.reload_catalog()

    def update(
        self,
        package_id: str,
        on_progress: Callable[[float], None] | None = None,
        on_stage: Callable[[InstallStage], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> InstallOutcome:
        outcome = self.orchestrator.update(self.get(package_id), on_progress, on_stage, cancel)
        self.coordinator.reload_catalog()
        return outcome

    def fix_maintenance(self, package_id: str) -> InstallOutcome:
        outcome = self.orchestrator.fix_maintenance(self.get(package_id))
        self.coordinator.reload_catalog()
        return outcome

    def update_all(self) -> dict[str, InstallOutcome | InstallError]:
        results = self.orchestrator.update_all(self.catalog)
        self.coordinator.reload_catalog()
        return results

    def create_package(self, raw: RawMetadata) -> str | None:
        """Publish custom package metadata into the local mirror and reload."""
        commit = self.coordinator.mirror.write_package_metadata(raw)
        self.coordinator.reload_catalog()
        return commit
