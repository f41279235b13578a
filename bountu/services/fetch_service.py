"""Artifact fetcher: candidate URL resolution, streaming download and checksum."""

from __future__ import annotations

import hashlib
import logging
import os
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import httpx

from bountu.exceptions import (
    AllCandidatesFailedError,
    DownloadCancelledError,
    FetchError,
    HttpStatusError,
    NetworkFailureError,
    TooManyRedirectsError,
)
from bountu.services.package_urls import mirror_urls
from bountu.services.runtime_service import normalize_architecture

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable
    from pathlib import Path

    from bountu.config import Settings
    from bountu.models.package import PackageDescriptor

logger = logging.getLogger(__name__)

_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})


def file_sha256(path: Path, chunk_size: int = 8192) -> str:
    """Compute SHA-256 hash of a file."""
    sha = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha.update(chunk)
    return sha.hexdigest()


class ArtifactFetcher:
    """Downloads package artifacts over HTTP(S) with manual redirect handling."""

    def __init__(
        self,
        settings: Settings,
        architecture: str = "",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.architecture = normalize_architecture(architecture)
        self.mirror_base_urls = list(settings.mirror_base_urls)
        self.max_redirects = settings.max_redirects
        self.chunk_size = settings.download_chunk_size
        self.allow_missing_checksum = settings.allow_missing_checksum
        self.client = httpx.Client(
            headers={"User-Agent": settings.user_agent},
            timeout=settings.http_timeout_seconds,
            follow_redirects=False,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> ArtifactFetcher:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def resolve_candidate_urls(self, descriptor: PackageDescriptor) -> list[str]:
        """Return the descriptor's own URL, then templated mirror URLs, without duplicates."""
        candidates: list[str] = []
        if descriptor.download_url:
            candidates.append(descriptor.download_url)
        arch = normalize_architecture(descriptor.architecture) or self.architecture
        candidates.extend(
            mirror_urls(descriptor.id, descriptor.version, arch, self.mirror_base_urls)
        )
        return list(dict.fromkeys(candidates))

    def download(
        self,
        url: str,
        dest: Path,
        on_progress: Callable[[float], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Stream ``url`` to ``dest``, following up to ``max_redirects`` redirects.

        Progress is reported only when the server sends a Content-Length.
        The body is written to ``<dest>.part`` and renamed on success, so
        ``dest`` never holds a truncated download. Returns the final URL.

        Raises HttpStatusError, TooManyRedirectsError, NetworkFailureError
        or DownloadCancelledError.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        part_path = dest.with_name(f"{dest.name}.part")
        current = url
        try:
            for _ in range(self.max_redirects + 1):
                with self.client.stream("GET", current) as response:
                    if response.status_code in _REDIRECT_CODES:
                        location = response.headers.get("location")
                        if not location:
                            raise HttpStatusError(current, response.status_code)
                        next_url = urljoin(current, location)
                        logger.debug(
                            "Redirect %d: %s -> %s", response.status_code, current, next_url
                        )
                        current = next_url
                        continue
                    if not response.is_success:
                        raise HttpStatusError(current, response.status_code)
                    self._write_body(response, part_path, on_progress, cancel)
                os.replace(part_path, dest)
                logger.info("Downloaded %s to %s", current, dest)
                return current
            raise TooManyRedirectsError(url, self.max_redirects)
        except httpx.HTTPError as exc:
            raise NetworkFailureError(current, f"{type(exc).__name__}: {exc}") from exc
        finally:
            if part_path.exists():
                part_path.unlink()

    def _write_body(
        self,
        response: httpx.Response,
        part_path: Path,
        on_progress: Callable[[float], None] | None,
        cancel: threading.Event | None,
    ) -> None:
        header = response.headers.get("content-length", "")
        total = int(header) if header.isdigit() and int(header) > 0 else None
        written = 0
        with open(part_path, "wb") as f:
            for chunk in response.iter_bytes(self.chunk_size):
                if cancel is not None and cancel.is_set():
                    raise DownloadCancelledError(f"Download cancelled: {response.url}")
                f.write(chunk)
                written += len(chunk)
                if total is not None and on_progress is not None:
                    on_progress(min(written / total, 1.0))

    def download_with_fallback(
        self,
        descriptor: PackageDescriptor,
        dest: Path,
        on_progress: Callable[[float], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Try each candidate URL in order. Returns the URL that succeeded.

        Raises AllCandidatesFailedError or DownloadCancelledError.
        """
        failures: list[FetchError] = []
        for url in self.resolve_candidate_urls(descriptor):
            try:
                self.download(url, dest, on_progress, cancel)
            except FetchError as exc:
                logger.warning("Download of %s failed from %s: %s", descriptor.id, url, exc)
                failures.append(exc)
                continue
            return url
        raise AllCandidatesFailedError(descriptor.id, failures)

    def verify_checksum(self, path: Path, expected: str) -> bool:
        """Compare the file's SHA-256 with ``expected`` (hex, any case).

        An empty ``expected`` skips verification unless missing checksums
        are disallowed.
        """
        expected = expected.strip().lower()
        if not expected:
            if self.allow_missing_checksum:
                logger.warning("No checksum published for %s, skipping verification", path.name)
                return True
            logger.error("No checksum published for %s, refusing to verify", path.name)
            return False
        actual = file_sha256(path, self.chunk_size)
        if actual != expected:
            logger.error(
                "Checksum mismatch for %s: expected %s, got %s", path.name, expected, actual
            )
            return False
        return True
