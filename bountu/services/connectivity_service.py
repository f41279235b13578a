"""Connectivity probing ahead of a sync cycle."""

from __future__ import annotations

import logging
import socket
import time
from typing import TYPE_CHECKING, Protocol

import httpx

from bountu.models.sync import ConnectivityResult, ConnectivityStatus

if TYPE_CHECKING:
    from bountu.config import Settings

logger = logging.getLogger(__name__)


class ConnectivityProber(Protocol):
    def probe(self) -> ConnectivityResult: ...


class NetworkConnectivityProber:
    """Three-step probe: local route, latency to a well-known host, then the remote.

    1. A UDP "connect" (no packets sent) tells whether any route exists.
    2. A timed TCP connect to ``probe_host:probe_port`` measures latency.
    3. An HTTP request to ``remote_probe_url`` confirms the remote answers;
       any HTTP status counts as reachable.
    """

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self.host = settings.probe_host
        self.port = settings.probe_port
        self.timeout = settings.probe_timeout_seconds
        self.remote_url = settings.remote_probe_url
        self.user_agent = settings.user_agent
        self._transport = transport

    def _has_route(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect((self.host, self.port))
        except OSError as exc:
            logger.debug("No route to %s: %s", self.host, exc)
            return False
        return True

    def _measure_latency(self) -> float | None:
        start = time.perf_counter()
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                pass
        except OSError as exc:
            logger.debug("Latency probe to %s:%d failed: %s", self.host, self.port, exc)
            return None
        return (time.perf_counter() - start) * 1000.0

    def _remote_reachable(self) -> bool:
        try:
            with httpx.Client(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            ) as client:
                client.head(self.remote_url)
        except httpx.HTTPError as exc:
            logger.debug("Remote probe %s failed: %s", self.remote_url, exc)
            return False
        return True

    def probe(self) -> ConnectivityResult:
        if not self._has_route():
            return ConnectivityResult(ConnectivityStatus.NO_NETWORK, detail="No network route")
        latency = self._measure_latency()
        if latency is None:
            return ConnectivityResult(
                ConnectivityStatus.LIMITED, detail=f"Cannot reach {self.host}:{self.port}"
            )
        if not self._remote_reachable():
            return ConnectivityResult(
                ConnectivityStatus.REMOTE_UNREACHABLE,
                latency_ms=latency,
                detail=f"Cannot reach {self.remote_url}",
            )
        result = ConnectivityResult(ConnectivityStatus.OK, latency_ms=latency)
        logger.info("Connectivity ok, latency %.0f ms (%s)", latency, result.quality)
        return result
