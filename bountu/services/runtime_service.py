"""Runtime target detection and the installable predicate."""

from __future__ import annotations

import logging
import platform as _platform
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bountu.models.package import Platform

if TYPE_CHECKING:
    from bountu.config import Settings

logger = logging.getLogger(__name__)

_ARCH_ALIASES: dict[str, str] = {
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "arm64-v8a": "aarch64",
    "arm": "arm",
    "armv7": "arm",
    "armv7l": "arm",
    "armv8l": "arm",
    "armeabi": "arm",
    "armeabi-v7a": "arm",
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "i686": "i686",
    "i386": "i686",
    "x86": "i686",
}

# Values that mean "any architecture" in published metadata.
_ARCH_WILDCARDS = frozenset({"", "all", "any", "noarch"})


@dataclass(frozen=True)
class RuntimeTarget:
    """The platform/architecture pair packages are filtered against."""

    platform: Platform
    architecture: str


def normalize_architecture(value: str) -> str:
    """Map an architecture spelling onto aarch64/arm/x86_64/i686, or "" for any.

    Unknown spellings are returned lower-cased so they never match a real target.
    """
    arch = value.strip().lower()
    if arch in _ARCH_WILDCARDS:
        return ""
    return _ARCH_ALIASES.get(arch, arch)


def normalize_platform(value: str) -> str:
    """Lower-case a platform value; blank means both."""
    plat = value.strip().lower()
    return plat or Platform.BOTH.value


def detect_runtime_target(settings: Settings | None = None) -> RuntimeTarget:
    """Detect the current runtime target, honouring settings overrides."""
    if settings is not None and settings.target_platform:
        plat = Platform(normalize_platform(settings.target_platform))
    elif sys.platform == "win32":
        plat = Platform.WINDOWS
    else:
        # Linux userlands are served the Termux-compatible (android) builds.
        plat = Platform.ANDROID

    if settings is not None and settings.target_architecture:
        arch = normalize_architecture(settings.target_architecture)
    else:
        machine = _platform.machine()
        arch = normalize_architecture(machine) or "aarch64"
        if arch not in _ARCH_ALIASES.values():
            logger.warning("Unrecognized machine architecture %r, assuming aarch64", machine)
            arch = "aarch64"
    return RuntimeTarget(platform=plat, architecture=arch)


def check_installable(
    platform: str,
    architecture: str,
    download_url: str,
    checksum_sha256: str,
    target: RuntimeTarget,
) -> tuple[bool, str]:
    """Decide installability from the four deciding fields and the target.

    Returns ``(installable, reason)``; ``reason`` is empty when installable.
    """
    plat = normalize_platform(platform)
    if plat != Platform.BOTH and plat != target.platform:
        return False, f"Unsupported platform: {platform}"
    arch = normalize_architecture(architecture)
    if arch and arch != target.architecture:
        return False, f"Unsupported architecture: {architecture}"
    if not download_url.strip():
        return False, "Missing download URL"
    if not checksum_sha256.strip():
        return False, "Missing checksum"
    return True, ""
