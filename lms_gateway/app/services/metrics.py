"""Admission metrics for the LMS gateway.

Counts admission outcomes per traffic class and renders them as JSON or
in the Prometheus text exposition format.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from lms_gateway.app.services.rate_limit import AdmissionDecision


@dataclass
class AdmissionCounts:
    """Admission outcomes for one traffic class."""

    allowed: int = 0
    denied: int = 0

    @property
    def total(self) -> int:
        return self.allowed + self.denied


@dataclass
class MetricsCollector:
    """Collects admission metrics.

    Async-safe: all mutation happens under an asyncio lock.
    """

    _admissions: Dict[str, AdmissionCounts] = field(
        default_factory=lambda: defaultdict(AdmissionCounts)
    )
    _unmetered: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _start_time: float = field(default_factory=time.time)

    async def record_admission(self, decision: AdmissionDecision) -> None:
        async with self._lock:
            if not decision.metered:
                self._unmetered += 1
                return
            counts = self._admissions[decision.traffic_class.value]
            if decision.allowed:
                counts.allowed += 1
            else:
                counts.denied += 1

    async def get_summary(self, limiter_stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Get a summary of all metrics.

        Args:
            limiter_stats: Optional ``AdmissionController.get_stats()`` output
                to embed under ``rate_limiter``
        """
        async with self._lock:
            total = sum(c.total for c in self._admissions.values())
            denied = sum(c.denied for c in self._admissions.values())
            summary: Dict[str, Any] = {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "metered_requests": total,
                "unmetered_requests": self._unmetered,
                "denied_requests": denied,
                "denial_rate": round(denied / total, 4) if total > 0 else 0,
                "by_class": {
                    name: {
                        "allowed": counts.allowed,
                        "denied": counts.denied,
                    }
                    for name, counts in self._admissions.items()
                },
            }
        if limiter_stats is not None:
            summary["rate_limiter"] = limiter_stats
        return summary

    async def get_prometheus_metrics(self, limiter_stats: Optional[Dict[str, Any]] = None) -> str:
        """Get metrics in Prometheus text format."""
        async with self._lock:
            lines = []

            lines.append("# HELP lms_rate_limit_requests_total Admission decisions by traffic class and outcome")
            lines.append("# TYPE lms_rate_limit_requests_total counter")
            for name, counts in self._admissions.items():
                lines.append(
                    f'lms_rate_limit_requests_total{{traffic_class="{name}",outcome="allowed"}} {counts.allowed}'
                )
                lines.append(
                    f'lms_rate_limit_requests_total{{traffic_class="{name}",outcome="denied"}} {counts.denied}'
                )

            lines.append("\n# HELP lms_rate_limit_unmetered_total Requests not subject to rate limiting")
            lines.append("# TYPE lms_rate_limit_unmetered_total counter")
            lines.append(f"lms_rate_limit_unmetered_total {self._unmetered}")

            if limiter_stats is not None:
                lines.append("\n# HELP lms_rate_limit_buckets Token buckets currently held in memory")
                lines.append("# TYPE lms_rate_limit_buckets gauge")
                for name, count in limiter_stats.get("buckets_by_class", {}).items():
                    lines.append(f'lms_rate_limit_buckets{{traffic_class="{name}"}} {count}')

                lines.append("\n# HELP lms_rate_limit_evictions_total Buckets evicted by the LRU bound")
                lines.append("# TYPE lms_rate_limit_evictions_total counter")
                lines.append(f"lms_rate_limit_evictions_total {limiter_stats.get('evictions', 0)}")

            lines.append("\n# HELP lms_gateway_uptime_seconds Gateway uptime in seconds")
            lines.append("# TYPE lms_gateway_uptime_seconds gauge")
            lines.append(f"lms_gateway_uptime_seconds {round(time.time() - self._start_time, 2)}")

            return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (useful for testing)."""
    global _metrics_collector
    _metrics_collector = None
