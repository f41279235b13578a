"""Engine exception types.

Convention:
- Every public operation raises a subclass of ``BountuError``; raw library
  exceptions (``subprocess.CalledProcessError``, ``httpx.HTTPError``,
  ``tarfile.TarError`` ...) are chained as ``__cause__`` and never leak
  unwrapped from a component boundary.
- ``ConnectivityError`` is terminal for a sync cycle. ``MirrorError`` is
  retried by the sync coordinator. Everything under ``InstallError`` is
  local to a single package.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bountu.models.install import InstallStage


class BountuError(Exception):
    """Base class for all engine errors."""


# Connectivity


class ConnectivityError(BountuError):
    """The network probe did not report a usable connection."""


class NoNetworkError(ConnectivityError):
    """No network route is available."""


class LimitedConnectivityError(ConnectivityError):
    """A network exists but the latency probe failed."""


class RemoteUnreachableError(ConnectivityError):
    """The network works but the remote repository host does not answer."""


# Mirror


class MirrorError(BountuError):
    """Failure operating on the local metadata mirror."""


class CloneFailedError(MirrorError):
    """Cloning the remote repository failed."""


class FetchFailedError(MirrorError):
    """Fetching or pulling from the remote repository failed."""


class CorruptRepositoryError(MirrorError):
    """The local clone is unusable even after a fresh clone."""


class NotInitializedError(MirrorError):
    """An operation required a cloned mirror but none exists."""


class EmptyCatalogError(MirrorError):
    """A sync cycle produced a mirror with no packages."""


class NotFoundError(BountuError, LookupError):
    """A requested file or package does not exist."""


class MetadataParseError(BountuError):
    """Package metadata could not be decoded."""


# Fetching


class FetchError(BountuError):
    """A single download URL failed."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url


class HttpStatusError(FetchError):
    """The server answered with a non-2xx status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(url, f"HTTP status {status_code}")
        self.status_code = status_code


class TooManyRedirectsError(FetchError):
    """The redirect chain exceeded the configured limit."""

    def __init__(self, url: str, max_redirects: int) -> None:
        super().__init__(url, f"More than {max_redirects} redirects")
        self.max_redirects = max_redirects


class NetworkFailureError(FetchError):
    """The transport failed (DNS, connect, read, timeout)."""


class AllCandidatesFailedError(BountuError):
    """Every candidate URL for a package failed."""

    def __init__(self, package_id: str, failures: Sequence[FetchError]) -> None:
        self.package_id = package_id
        self.failures = list(failures)
        if self.failures:
            detail = "; ".join(str(f) for f in self.failures)
        else:
            detail = "no candidate URLs"
        super().__init__(f"All downloads failed for {package_id}: {detail}")


class DownloadCancelledError(BountuError):
    """The caller cancelled a download in progress."""


class ChecksumMismatchError(BountuError):
    """The downloaded artifact does not match its published SHA-256."""

    def __init__(self, package_id: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {package_id}: expected {expected}, got {actual}"
        )
        self.package_id = package_id
        self.expected = expected
        self.actual = actual


# Extraction


class ExtractError(BountuError):
    """An archive could not be extracted."""


class UnsupportedFormatError(ExtractError):
    """The archive suffix is not one the extractor handles."""


class CorruptArchiveError(ExtractError):
    """The archive is truncated, malformed or unsafe."""


class NoDataMemberError(ExtractError):
    """A deb archive has no ``data.tar*`` member."""


# Installation


class InstallError(BountuError):
    """A package install, update or uninstall was rejected or failed."""


class AlreadyInstalledError(InstallError):
    def __init__(self, package_id: str) -> None:
        super().__init__(f"Package already installed: {package_id}")
        self.package_id = package_id


class NotInstalledError(InstallError):
    def __init__(self, package_id: str) -> None:
        super().__init__(f"Package not installed: {package_id}")
        self.package_id = package_id


class NotInstallableError(InstallError):
    def __init__(self, package_id: str, reason: str) -> None:
        super().__init__(f"Package {package_id} cannot be installed: {reason}")
        self.package_id = package_id
        self.reason = reason


class NoPendingUpdateError(InstallError):
    def __init__(self, package_id: str) -> None:
        super().__init__(f"Package is up to date: {package_id}")
        self.package_id = package_id


class InstallInProgressError(InstallError):
    def __init__(self, package_id: str) -> None:
        super().__init__(f"Another operation is running for package: {package_id}")
        self.package_id = package_id


class MissingDependenciesError(InstallError):
    def __init__(self, package_id: str, missing: Sequence[str]) -> None:
        self.package_id = package_id
        self.missing = list(missing)
        super().__init__(f"Package {package_id} requires: {', '.join(self.missing)}")


class HasConflictsError(InstallError):
    def __init__(self, package_id: str, conflicts: Sequence[str]) -> None:
        self.package_id = package_id
        self.conflicts = list(conflicts)
        super().__init__(f"Package {package_id} conflicts with: {', '.join(self.conflicts)}")


class StageFailedError(InstallError):
    """A lower-layer error, tagged with the install stage it occurred in."""

    def __init__(self, package_id: str, stage: InstallStage, cause: BaseException) -> None:
        super().__init__(f"{package_id}: {stage.value} failed: {cause}")
        self.package_id = package_id
        self.stage = stage
        self.cause = cause
