"""Reachability checks used to explain persistence failures to operators."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests

from .store import RemoteRepository, StoreError

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://httpbin.org/get"
CONNECTIVITY_TIMEOUT = 5.0


@dataclass(frozen=True)
class ConnectivityReport:
    internet_connected: bool
    store_connected: bool
    latency_ms: float | None = None
    error: str | None = None


def check_connectivity(
    store: RemoteRepository | None,
    *,
    url: str = DEFAULT_PROBE_URL,
    timeout: float = CONNECTIVITY_TIMEOUT,
    http: requests.Session | None = None,
) -> ConnectivityReport:
    http = http or requests.Session()
    started = time.monotonic()
    try:
        response = http.get(url, headers={"Cache-Control": "no-cache"}, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        return ConnectivityReport(False, False, error=f"Internet connection failed: {exc}")
    latency_ms = (time.monotonic() - started) * 1000.0

    if store is None:
        return ConnectivityReport(True, False, latency_ms, error="Durable store not configured")
    try:
        store.ping()
    except StoreError as exc:
        return ConnectivityReport(True, False, latency_ms, error=f"Durable store error: {exc}")
    return ConnectivityReport(True, True, latency_ms)


def log_connectivity(report: ConnectivityReport) -> None:
    latency = f"{report.latency_ms:.0f}ms" if report.latency_ms is not None else "n/a"
    if not report.internet_connected:
        logger.warning("No internet connection detected: %s", report.error)
    elif not report.store_connected:
        logger.warning("Durable store unreachable (latency %s): %s", latency, report.error)
    else:
        logger.info("Connectivity OK (latency %s)", latency)
