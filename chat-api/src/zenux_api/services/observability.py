"""
In-process relay counters and audit trail.

Exposed read-only through ``/internal/metrics`` and ``/internal/audit``.
Counters are per relay operation (``relay.chat``): turns, failures grouped
by in-band error code, total latency and time to first upstream byte.

Audit events record identity decisions (unverified caller, user id
overridden by a verified token). They are kept in a bounded ring buffer
sized by ``AUDIT_EVENT_BUFFER`` and also emitted on the ``zenux.audit``
structlog logger so they survive a restart in the log pipeline.

Last Grunted: 10/18/2026 02:40:00 PM UTC
"""
from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from zenux_api.config import get_settings

audit_logger = structlog.get_logger("zenux.audit")


@dataclass
class RelayStats:
    count: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0
    first_byte_count: int = 0
    total_ttfb_ms: float = 0.0
    failure_codes: Counter = field(default_factory=Counter)

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": float(self.count),
            "failures": float(self.failures),
            "avg_latency_ms": self.total_latency_ms / self.count if self.count else 0.0,
            "avg_ttfb_ms": self.total_ttfb_ms / self.first_byte_count if self.first_byte_count else 0.0,
            "error_rate": self.failures / self.count if self.count else 0.0,
            "failure_codes": dict(self.failure_codes),
        }


_stats: dict[str, RelayStats] = {}
_audit_events: Optional[deque] = None


def record_metric(
    name: str,
    latency_ms: float,
    success: bool,
    ttfb_ms: Optional[float] = None,
    failure_code: Optional[str] = None,
) -> None:
    """
    Count one finished relay operation.

    Args:
        name: Operation name, e.g. ``relay.chat``
        latency_ms: Total duration including the streamed body
        success: False when the client received an error event
        ttfb_ms: Time to the first upstream chunk, if one arrived
        failure_code: In-band error code sent to the client
    """
    stats = _stats.setdefault(name, RelayStats())
    stats.count += 1
    stats.total_latency_ms += latency_ms
    if ttfb_ms is not None:
        stats.first_byte_count += 1
        stats.total_ttfb_ms += ttfb_ms
    if not success:
        stats.failures += 1
        stats.failure_codes[failure_code or "unknown"] += 1


def get_metric_snapshot() -> dict[str, dict[str, Any]]:
    return {name: stats.snapshot() for name, stats in _stats.items()}


def _audit_buffer() -> deque:
    global _audit_events
    if _audit_events is None:
        _audit_events = deque(maxlen=get_settings().audit_event_buffer)
    return _audit_events


def emit_audit_event(event_type: str, **payload: Any) -> None:
    _audit_buffer().append({"ts": time.time(), "event": event_type, **payload})
    audit_logger.info(event_type, **payload)


def get_audit_events(limit: int = 100) -> list[dict[str, Any]]:
    events = list(_audit_buffer())
    return events[-limit:] if limit > 0 else []


def reset() -> None:
    """Drop all counters and audit events; the buffer is resized on next use."""
    global _audit_events
    _stats.clear()
    _audit_events = None
