"""
Request-scoped tracing for eligibility lookups.

A thread-local LookupTrace records:
  - Per-stage timing (validate, overlay, decide) with error class on failure
  - Per-upstream-call timing (smarty, arcgis_overlay)
  - One end-of-request summary line

Usage:
    from lookup_trace import LookupTrace, get_trace, set_trace, clear_trace

    trace = LookupTrace(trace_id=request_id)
    set_trace(trace)
    ...
    trace.log_summary()
    clear_trace()

Upstream clients call get_trace() and record into it when one is active.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class UpstreamCall:
    """One outbound HTTP call."""
    service: str          # "smarty" | "arcgis_overlay"
    endpoint: str
    elapsed_ms: int
    status_code: int
    outcome: str = ""     # "OK", "NO_MATCH", "timeout", ...
    stage: str = ""


@dataclass
class StageTiming:
    """One pipeline stage."""
    stage_name: str
    elapsed_ms: int = 0
    upstream_calls: int = 0
    error_class: str = ""
    error_message: str = ""


@dataclass
class LookupTrace:
    """Accumulates timing for a single lookup (or a single batch row)."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageTiming] = field(default_factory=list)
    calls: List[UpstreamCall] = field(default_factory=list)
    _current_stage: str = ""

    def start_stage(self, name: str):
        self._current_stage = name

    def end_stage(self):
        self._current_stage = ""

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        rec = StageTiming(
            stage_name=stage_name,
            elapsed_ms=int((end_ts - start_ts) * 1000),
            upstream_calls=sum(1 for c in self.calls if c.stage == stage_name),
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(rec)
        logger.info(
            "  [stage] trace=%s %s %s %dms calls=%d%s",
            self.trace_id,
            stage_name,
            "ERR" if error_class else "OK",
            rec.elapsed_ms,
            rec.upstream_calls,
            f" err={error_class}: {error_message}" if error_class else "",
        )

    def record_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        outcome: str = "",
    ):
        self.calls.append(UpstreamCall(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            outcome=outcome,
            stage=self._current_stage,
        ))
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d outcome=%s",
            self.trace_id,
            self._current_stage or "-",
            service,
            endpoint,
            elapsed_ms,
            status_code,
            outcome,
        )

    def summary_dict(self) -> Dict[str, Any]:
        errored = [s for s in self.stages if s.error_class]
        if not self.stages:
            outcome = "empty"
        elif errored:
            outcome = "error"
        else:
            outcome = "success"
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "upstream_calls": len(self.calls),
            "stages": [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "error": f"{s.error_class}: {s.error_message}" if s.error_class else None,
                }
                for s in self.stages
            ],
            "final_outcome": outcome,
        }

    def log_summary(self):
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d calls=%d stages=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["upstream_calls"],
            len(s["stages"]),
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[LookupTrace]:
    """Current thread's trace, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[LookupTrace]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None


def record_api(service: str, endpoint: str, t0: float,
               status_code: int, ok: bool, note: str = "") -> None:
    """Record an upstream call to the active trace and the health monitor."""
    elapsed_ms = int((time.time() - t0) * 1000)
    trace = get_trace()
    if trace:
        trace.record_call(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            outcome="OK" if ok else (note or "ERROR"),
        )
    from health_monitor import record_call
    record_call(service, ok, elapsed_ms, note or None)


def timed_stage(stage_name, fn, *args, **kwargs):
    """Run *fn* as a named stage of the active trace.  Re-raises on failure."""
    trace = get_trace()
    if trace:
        trace.start_stage(stage_name)
    t0 = time.time()
    try:
        result = fn(*args, **kwargs)
    except Exception as exc:
        if trace:
            trace.record_stage(
                stage_name, t0, time.time(),
                error_class=type(exc).__name__,
                error_message=str(exc)[:200],
            )
            trace.end_stage()
        raise
    if trace:
        trace.record_stage(stage_name, t0, time.time())
        trace.end_stage()
    return result
