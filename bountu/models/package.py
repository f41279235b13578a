"""Package descriptors and installed-package records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Category(StrEnum):
    """Fixed package categories, similar to Debian sections."""

    SYSTEM = "system"
    NETWORK = "network"
    DEVELOPMENT = "development"
    EDITORS = "editors"
    SHELLS = "shells"
    COMPRESSION = "compression"
    SECURITY = "security"
    DATABASE = "database"
    WEB = "web"
    PROGRAMMING_LANGUAGE = "programming-language"
    VERSION_CONTROL = "version-control"
    MULTIMEDIA = "multimedia"
    DOCUMENTATION = "documentation"
    LIBRARIES = "libraries"
    UTILITIES = "utilities"
    GAMES = "games"
    EDUCATION = "education"
    SCIENCE = "science"


class Platform(StrEnum):
    ANDROID = "android"
    WINDOWS = "windows"
    BOTH = "both"


@dataclass(frozen=True)
class PackageDescriptor:
    """Normalized, filter-ready package record derived from remote metadata.

    ``installable`` / ``unavailable_reason`` come from the metadata alone;
    the ``is_installed`` .. ``maintenance_reason`` block is an annotation
    copied from the local InstalledRecord when the catalog is loaded.
    """

    id: str
    name: str
    version: str
    description: str
    category: Category
    size_bytes: int
    dependencies: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    download_url: str = ""
    checksum_sha256: str = ""
    platform: str = Platform.BOTH
    architecture: str = ""
    tags: tuple[str, ...] = ()
    install_script: str = ""
    uninstall_script: str = ""
    homepage: str = ""
    license: str = ""
    maintainer: str = ""
    installable: bool = False
    unavailable_reason: str = ""
    is_installed: bool = False
    installed_version: str | None = None
    needs_update: bool = False
    needs_maintenance: bool = False
    maintenance_reason: str = ""


@dataclass
class InstalledRecord:
    """Persisted state for one installed package."""

    id: str
    installed_version: str
    needs_update: bool = False
    needs_maintenance: bool = False
    maintenance_reason: str = ""


@dataclass
class PackageFilter:
    """Search filter. Every set field narrows the result; unset fields are no-ops."""

    query: str = ""
    category: Category | None = None
    platform: Platform | None = None
    installed_only: bool = False
    updates_only: bool = False
    maintenance_only: bool = False


@dataclass
class PackageStats:
    total: int = 0
    installed: int = 0
    updates: int = 0
    maintenance: int = 0
    installed_size_bytes: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
