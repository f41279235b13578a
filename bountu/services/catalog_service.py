"""Catalog resolver: raw repository metadata to filter-ready package descriptors."""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from bountu.exceptions import MetadataParseError, NotFoundError
from bountu.models.package import Category, PackageDescriptor, PackageStats, Platform
from bountu.schemas.metadata import (
    PACKAGE_ID_PATTERN,
    AppConfig,
    MaintenanceStatus,
    RawMetadata,
)
from bountu.services.runtime_service import check_installable, normalize_platform
from bountu.services.version_service import compare_versions

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from bountu.models.package import InstalledRecord, PackageFilter
    from bountu.services.mirror_service import RepositoryMirror
    from bountu.services.runtime_service import RuntimeTarget

logger = logging.getLogger(__name__)

MAINTENANCE_PATH = "config/maintenance.json"
APP_CONFIG_PATH = "config/app_config.json"
PACKAGES_DIR = "packages"

_PACKAGE_ID_RE = re.compile(PACKAGE_ID_PATTERN)

_CATEGORY_ALIASES: dict[str, Category] = {
    "networking": Category.NETWORK,
    "net": Category.NETWORK,
    "programming": Category.PROGRAMMING_LANGUAGE,
    "programming_language": Category.PROGRAMMING_LANGUAGE,
    "languages": Category.PROGRAMMING_LANGUAGE,
    "version_control": Category.VERSION_CONTROL,
    "vcs": Category.VERSION_CONTROL,
    "editor": Category.EDITORS,
    "shell": Category.SHELLS,
    "library": Category.LIBRARIES,
    "libs": Category.LIBRARIES,
    "utils": Category.UTILITIES,
    "utility": Category.UTILITIES,
    "docs": Category.DOCUMENTATION,
    "db": Category.DATABASE,
    "databases": Category.DATABASE,
    "media": Category.MULTIMEDIA,
}


def normalize_category(value: str) -> Category:
    """Map a raw category string onto the fixed set; unknown values become utilities."""
    key = value.strip().lower()
    try:
        return Category(key)
    except ValueError:
        return _CATEGORY_ALIASES.get(key, Category.UTILITIES)


def _unwrap_legacy_encoding(text: str) -> str:
    """Undo one layer of string quoting from metadata that was saved as a JSON string."""
    inner = text.strip()
    if len(inner) >= 2 and inner[0] == '"' and inner[-1] == '"':
        inner = inner[1:-1]
    return inner.replace('\\"', '"').replace("\\/", "/")


def decode_metadata_text(text: str) -> dict[str, Any]:
    """Parse metadata JSON, absorbing the double-encoded form.

    ``"{\\"id\\":\\"x\\"}"`` decodes to the same object as ``{"id":"x"}``.
    Raises MetadataParseError.
    """
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        if '\\"' not in text:
            raise MetadataParseError(f"Invalid JSON: {exc}") from exc
        try:
            data = json.loads(_unwrap_legacy_encoding(text))
        except json.JSONDecodeError as inner_exc:
            raise MetadataParseError(f"Invalid JSON: {inner_exc}") from inner_exc

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise MetadataParseError(f"Invalid double-encoded JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MetadataParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class Catalog:
    """An immutable snapshot of package descriptors keyed by id."""

    def __init__(self, descriptors: Iterable[PackageDescriptor] = ()) -> None:
        self._packages: dict[str, PackageDescriptor] = {d.id: d for d in descriptors}

    def __len__(self) -> int:
        return len(self._packages)

    def __iter__(self) -> Iterator[PackageDescriptor]:
        return iter(sorted(self._packages.values(), key=lambda d: d.name.lower()))

    def __contains__(self, package_id: object) -> bool:
        return package_id in self._packages

    def get(self, package_id: str) -> PackageDescriptor | None:
        return self._packages.get(package_id)

    def ids(self) -> list[str]:
        return sorted(self._packages)

    def by_category(self, category: Category) -> list[PackageDescriptor]:
        return [d for d in self if d.category is category]

    def stats(self) -> PackageStats:
        installed = [d for d in self._packages.values() if d.is_installed]
        return PackageStats(
            total=len(self._packages),
            installed=len(installed),
            updates=sum(1 for d in installed if d.needs_update),
            maintenance=sum(1 for d in installed if d.needs_maintenance),
            installed_size_bytes=sum(d.size_bytes for d in installed),
            by_category=dict(Counter(d.category.value for d in self._packages.values())),
        )


class CatalogResolver:
    """Reads repository documents out of the mirror and builds descriptors."""

    def __init__(self, mirror: RepositoryMirror, target: RuntimeTarget) -> None:
        self.mirror = mirror
        self.target = target

    def _read_document(self, rel_path: str) -> str:
        """Raises NotFoundError or MetadataParseError."""
        try:
            return self.mirror.read_file(rel_path)
        except UnicodeDecodeError as exc:
            raise MetadataParseError(f"{rel_path} is not valid UTF-8: {exc}") from exc

    def _load_config_document(self, rel_path: str) -> dict[str, Any] | None:
        try:
            text = self._read_document(rel_path)
            if not text:
                return None
            return decode_metadata_text(text)
        except NotFoundError:
            return None
        except MetadataParseError as exc:
            logger.error("Ignoring unreadable %s: %s", rel_path, exc)
            return None

    def load_maintenance_status(self) -> MaintenanceStatus:
        """Return the maintenance status; missing or unreadable means disabled."""
        data = self._load_config_document(MAINTENANCE_PATH)
        if data is None:
            return MaintenanceStatus()
        try:
            return MaintenanceStatus.model_validate(data)
        except ValidationError as exc:
            logger.error("Invalid %s, using defaults: %s", MAINTENANCE_PATH, exc)
            return MaintenanceStatus()

    def load_app_config(self) -> AppConfig:
        data = self._load_config_document(APP_CONFIG_PATH)
        if data is None:
            return AppConfig()
        try:
            return AppConfig.model_validate(data)
        except ValidationError as exc:
            logger.error("Invalid %s, using defaults: %s", APP_CONFIG_PATH, exc)
            return AppConfig()

    def load_package_metadata(self, package_id: str) -> RawMetadata:
        """Read and validate ``packages/<id>/metadata.json``.

        Raises NotFoundError or MetadataParseError.
        """
        if not _PACKAGE_ID_RE.match(package_id):
            raise NotFoundError(f"Invalid package id: {package_id!r}")
        text = self._read_document(f"{PACKAGES_DIR}/{package_id}/metadata.json")
        data = decode_metadata_text(text)
        try:
            return RawMetadata.model_validate(data)
        except ValidationError as exc:
            raise MetadataParseError(f"Invalid metadata for {package_id}: {exc}") from exc

    def list_package_ids(self) -> list[str]:
        names = self.mirror.list_directories(PACKAGES_DIR)
        return [name for name in names if _PACKAGE_ID_RE.match(name)]

    def to_descriptor(
        self, raw: RawMetadata, record: InstalledRecord | None = None
    ) -> PackageDescriptor:
        """Normalize ``raw`` and annotate it with the local install state, if any."""
        installable, reason = check_installable(
            raw.platform, raw.architecture, raw.download_url, raw.checksum_sha256, self.target
        )
        needs_update = False
        needs_maintenance = False
        maintenance_reason = ""
        if record is not None:
            needs_update = record.needs_update or (
                compare_versions(raw.version, record.installed_version) > 0
            )
            needs_maintenance = record.needs_maintenance or not installable
            maintenance_reason = record.maintenance_reason or reason

        return PackageDescriptor(
            id=raw.id,
            name=raw.name,
            version=raw.version,
            description=raw.description,
            category=normalize_category(raw.category),
            size_bytes=raw.size,
            dependencies=tuple(raw.dependencies),
            conflicts=tuple(raw.conflicts),
            download_url=raw.download_url.strip(),
            checksum_sha256=raw.checksum_sha256.strip().lower(),
            platform=normalize_platform(raw.platform),
            architecture=raw.architecture.strip(),
            tags=tuple(raw.tags),
            install_script=raw.install_script,
            uninstall_script=raw.uninstall_script,
            homepage=raw.homepage,
            license=raw.license,
            maintainer=raw.maintainer,
            installable=installable,
            unavailable_reason=reason,
            is_installed=record is not None,
            installed_version=record.installed_version if record is not None else None,
            needs_update=needs_update,
            needs_maintenance=needs_maintenance,
            maintenance_reason=maintenance_reason,
        )

    def load_catalog(self, installed: Mapping[str, InstalledRecord] | None = None) -> Catalog:
        """Build a catalog from every readable package; unreadable ones are logged and skipped."""
        installed = installed or {}
        descriptors: list[PackageDescriptor] = []
        for package_id in self.list_package_ids():
            try:
                raw = self.load_package_metadata(package_id)
            except (NotFoundError, MetadataParseError) as exc:
                logger.warning("Skipping package %s: %s", package_id, exc)
                continue
            if raw.id != package_id:
                logger.warning(
                    "Package directory %s declares id %r, skipping", package_id, raw.id
                )
                continue
            descriptors.append(self.to_descriptor(raw, installed.get(package_id)))
        logger.info("Loaded %d packages from %s", len(descriptors), self.mirror.local_path)
        return Catalog(descriptors)

    def search(self, catalog: Catalog, package_filter: PackageFilter) -> list[PackageDescriptor]:
        return search(catalog, package_filter)


def search(
    catalog: Iterable[PackageDescriptor], package_filter: PackageFilter
) -> list[PackageDescriptor]:
    """Return descriptors matching every set field of ``package_filter``."""
    query = package_filter.query.strip().lower()
    results: list[PackageDescriptor] = []
    for descriptor in catalog:
        if query and not (
            query in descriptor.id.lower()
            or query in descriptor.name.lower()
            or query in descriptor.description.lower()
            or any(query in tag.lower() for tag in descriptor.tags)
        ):
            continue
        category = package_filter.category
        if category is not None and descriptor.category is not category:
            continue
        if package_filter.platform is not None and descriptor.platform not in (
            package_filter.platform,
            Platform.BOTH,
        ):
            continue
        if package_filter.installed_only and not descriptor.is_installed:
            continue
        if package_filter.updates_only and not descriptor.needs_update:
            continue
        if package_filter.maintenance_only and not descriptor.needs_maintenance:
            continue
        results.append(descriptor)
    return results
