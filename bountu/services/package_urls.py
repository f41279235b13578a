"""Static per-package mirror URL templates for Termux-compatible apt mirrors."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

# Package id -> archive base name on the mirrors, where the two differ.
_ARCHIVE_NAMES: dict[str, str] = {
    "busybox": "busybox",
    "coreutils": "coreutils",
    "findutils": "findutils",
    "grep": "grep",
    "sed": "sed",
    "gawk": "gawk",
    "curl": "curl",
    "wget": "wget",
    "netcat": "netcat-openbsd",
    "openssh": "openssh",
    "nmap": "nmap",
    "iputils": "iputils",
    "traceroute": "traceroute",
    "git": "git",
    "make": "make",
    "cmake": "cmake",
    "gcc": "gcc",
    "clang": "clang",
    "vim": "vim",
    "nano": "nano",
    "emacs": "emacs",
    "python3": "python",
    "nodejs": "nodejs",
    "ruby": "ruby",
    "golang": "golang",
    "rust": "rust",
    "openjdk": "openjdk-17",
    "bash": "bash",
    "zsh": "zsh",
    "fish": "fish",
    "gzip": "gzip",
    "bzip2": "bzip2",
    "xz": "xz-utils",
    "zip": "zip",
    "tar": "tar",
    "p7zip": "p7zip",
    "nginx": "nginx",
    "apache2": "apache2",
    "sqlite3": "sqlite",
    "postgresql": "postgresql",
    "mariadb": "mariadb",
    "redis": "redis",
    "openssl": "openssl",
    "gnupg": "gnupg",
    "wireshark": "tshark",
    "libcurl": "libcurl",
    "libssl": "openssl",
    "zlib": "zlib",
}


def archive_name(package_id: str) -> str | None:
    """Return the mirror archive name for ``package_id``, or None if it has no template."""
    return _ARCHIVE_NAMES.get(package_id)


def mirror_urls(
    package_id: str, version: str, architecture: str, base_urls: Sequence[str]
) -> list[str]:
    """Build ``<base>/binary-<arch>/<name>_<version>_<arch>.deb`` for each base URL.

    Returns an empty list for packages without a template or without a
    concrete architecture or version.
    """
    name = archive_name(package_id)
    if name is None or not architecture or not version:
        return []
    return [
        f"{base.rstrip('/')}/binary-{architecture}/{name}_{version}_{architecture}.deb"
        for base in base_urls
    ]
