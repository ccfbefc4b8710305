"""
Upstream health monitoring for the eligibility lookup service.

Two modes:
  1. Passive tracking (Smarty and the ArcGIS overlay): every real lookup
     records its outcome via record_call(); status is the success rate over
     a rolling window.
  2. Active probe (ArcGIS overlay only): a background daemon thread fetches
     the geoprocessing task description every HEALTH_CHECK_INTERVAL seconds.
     The description endpoint is free; Smarty lookups are billed, so Smarty
     is never probed actively.

Module-level singleton: all callers in this process share one HealthMonitor.
"""

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = int(os.environ.get("HEALTH_CHECK_INTERVAL", "300"))

_PROBE_TIMEOUT = 10
_PASSIVE_WINDOW_SIZE = 50
_HEALTHY_THRESHOLD = 0.95
_DEGRADED_THRESHOLD = 0.70

SERVICES = ("smarty", "arcgis_overlay")


@dataclass
class HealthCheckResult:
    """Health status for a single upstream service."""
    service: str
    status: str          # "healthy" | "degraded" | "down" | "unknown"
    latency_ms: int
    last_checked: str    # ISO-8601
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


@dataclass
class _CallRecord:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _probe_url(overlay_url: str) -> str:
    """GP task description URL: the execute endpoint minus '/execute'."""
    url = overlay_url.rstrip("/")
    if url.endswith("/execute"):
        url = url[: -len("/execute")]
    return url


class HealthMonitor:
    """Thread-safe health tracker for upstream dependencies."""

    def __init__(self, overlay_url: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._overlay_url = overlay_url
        self._active_result: Optional[HealthCheckResult] = None
        self._prev_status: Optional[str] = None
        self._passive: Dict[str, deque] = {
            name: deque(maxlen=_PASSIVE_WINDOW_SIZE) for name in SERVICES
        }
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        record = _CallRecord(time.time(), success, latency_ms, error)
        with self._lock:
            if service not in self._passive:
                self._passive[service] = deque(maxlen=_PASSIVE_WINDOW_SIZE)
            self._passive[service].append(record)

    def _compute_passive_status(self, service: str) -> HealthCheckResult:
        with self._lock:
            window = list(self._passive.get(service, []))

        if not window:
            return HealthCheckResult(
                service=service,
                status="unknown",
                latency_ms=0,
                last_checked=_now_iso(),
                details={"mode": "passive", "sample_size": 0},
            )

        total = len(window)
        rate = sum(1 for r in window if r.success) / total
        last_error = next(
            (r.error for r in reversed(window) if not r.success and r.error), None
        )
        if rate >= _HEALTHY_THRESHOLD:
            status = "healthy"
        elif rate >= _DEGRADED_THRESHOLD:
            status = "degraded"
        else:
            status = "down"

        return HealthCheckResult(
            service=service,
            status=status,
            latency_ms=int(sum(r.latency_ms for r in window) / total),
            last_checked=datetime.fromtimestamp(
                max(r.timestamp for r in window), tz=timezone.utc
            ).isoformat(),
            error=last_error,
            details={
                "mode": "passive",
                "success_rate": round(rate, 3),
                "sample_size": total,
            },
        )

    def check_overlay(self) -> HealthCheckResult:
        """Probe the overlay task description endpoint."""
        t0 = time.time()
        try:
            resp = requests.get(
                _probe_url(self._overlay_url or ""),
                params={"f": "pjson"},
                timeout=_PROBE_TIMEOUT,
            )
            status = "healthy" if resp.status_code == 200 else "degraded"
            error = None if resp.status_code == 200 else f"HTTP {resp.status_code}"
        except requests.Timeout:
            status, error = "down", "timeout"
        except requests.RequestException as e:
            status, error = "down", str(e)
        return HealthCheckResult(
            service="arcgis_overlay",
            status=status,
            latency_ms=int((time.time() - t0) * 1000),
            last_checked=_now_iso(),
            error=error,
            details={"mode": "active"},
        )

    def run_active_checks(self) -> None:
        if not self._overlay_url:
            return
        result = self.check_overlay()
        with self._lock:
            prev = self._prev_status
            self._active_result = result
            self._prev_status = result.status
        if prev and prev != result.status:
            logger.warning(
                "[health] arcgis_overlay status changed: %s -> %s (error=%s)",
                prev, result.status, result.error,
            )
        else:
            logger.info(
                "[health] arcgis_overlay: %s (%dms)", result.status, result.latency_ms,
            )

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        """Smarty is passive only; the overlay prefers its active probe."""
        out = {"smarty": self._result_to_dict(self._compute_passive_status("smarty"))}
        with self._lock:
            active = self._active_result
        overlay = active or self._compute_passive_status("arcgis_overlay")
        out["arcgis_overlay"] = self._result_to_dict(overlay)
        return out

    @staticmethod
    def _result_to_dict(result: HealthCheckResult) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": result.status,
            "latency_ms": result.latency_ms,
            "last_checked": result.last_checked,
        }
        if result.error:
            d["error"] = result.error
        if result.details:
            d.update(result.details)
        return d

    def _loop(self) -> None:
        logger.info("[health] Health monitor thread started (interval=%ds)", HEALTH_CHECK_INTERVAL)
        while not self._stop_event.is_set():
            try:
                self.run_active_checks()
            except Exception:
                logger.exception("[health] Unexpected error in active health checks")
            self._stop_event.wait(timeout=HEALTH_CHECK_INTERVAL)
        logger.info("[health] Health monitor thread stopped")

    def start(self, overlay_url: Optional[str] = None) -> None:
        """Start the background probe thread (idempotent)."""
        if overlay_url:
            self._overlay_url = overlay_url
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()


# ---------------------------------------------------------------------------
# Module-level singleton and public API
# ---------------------------------------------------------------------------

_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
) -> None:
    """Record an upstream call outcome for passive health tracking."""
    _monitor.record_call(service, success, latency_ms, error)


def get_all_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.get_all_status()


def start_monitor(overlay_url: Optional[str] = None) -> None:
    _monitor.start(overlay_url)


def stop_monitor() -> None:
    _monitor.stop()
