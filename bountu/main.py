"""Process-level setup: logging, data directory scaffold and service wiring."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from bountu.config import Settings
from bountu.services.package_service import PackageManager

if TYPE_CHECKING:
    from bountu.services.connectivity_service import ConnectivityProber

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.DEBUG if debug else logging.WARNING)


def ensure_data_dir(settings: Settings) -> None:
    """Create the local state directories without touching existing content."""
    data_dir = settings.data_dir
    if data_dir.exists() and not data_dir.is_dir():
        msg = f"Data path exists but is not a directory: {data_dir}"
        raise NotADirectoryError(msg)
    for directory in (data_dir, settings.packages_dir, settings.bin_dir, settings.cache_dir):
        directory.mkdir(parents=True, exist_ok=True)


def build_package_manager(
    settings: Settings | None = None,
    prober: ConnectivityProber | None = None,
) -> PackageManager:
    """Create the package manager for ``settings`` (read from the environment if omitted)."""
    if settings is None:
        settings = Settings()
    ensure_data_dir(settings)
    logger.info("Using data directory %s", settings.data_dir.absolute())
    return PackageManager.from_settings(settings, prober=prober)
