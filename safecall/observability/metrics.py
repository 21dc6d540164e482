"""
Observability Metrics - Prometheus counters for the session core

Each SessionMetrics instance owns its own CollectorRegistry so several
orchestrators (e.g. in tests) never collide on metric names.
"""

import logging
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


class SessionMetrics:
    """Prometheus metrics manager.

    Tracks:
    1. Live sessions
    2. Inbound events by name
    3. Classifier fallbacks by source
    4. Escalations by threat level
    5. Notification failures by channel
    6. Idle evictions
    """

    def __init__(self, namespace: str = "safecall", registry: Optional[CollectorRegistry] = None):
        """Initialize metrics.

        Args:
            namespace: Prefix for every metric name
            registry: Registry to register on; a fresh one by default
        """
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._init_metrics()

    def _init_metrics(self):
        self._metrics["active_sessions"] = Gauge(
            f"{self.namespace}_active_sessions",
            "Live sessions in the store",
            registry=self.registry,
        )
        self._metrics["events_total"] = Counter(
            f"{self.namespace}_events_total",
            "Inbound events handled",
            ["event", "status"],
            registry=self.registry,
        )
        self._metrics["classifier_fallbacks_total"] = Counter(
            f"{self.namespace}_classifier_fallbacks_total",
            "Classifier calls that degraded to the fallback assessment",
            ["source"],
            registry=self.registry,
        )
        self._metrics["escalations_total"] = Counter(
            f"{self.namespace}_escalations_total",
            "Escalations triggered",
            ["threat_level"],
            registry=self.registry,
        )
        self._metrics["notification_failures_total"] = Counter(
            f"{self.namespace}_notification_failures_total",
            "Per-contact notification failures",
            ["channel"],
            registry=self.registry,
        )
        self._metrics["evictions_total"] = Counter(
            f"{self.namespace}_evictions_total",
            "Sessions removed by the idle sweep",
            registry=self.registry,
        )

    def set_active_sessions(self, count: int) -> None:
        self._metrics["active_sessions"].set(count)

    def record_event(self, event: str, status: str = "ok") -> None:
        self._metrics["events_total"].labels(event=event, status=status).inc()

    def record_classifier_fallback(self, source: str) -> None:
        self._metrics["classifier_fallbacks_total"].labels(source=source).inc()

    def record_escalation(self, threat_level: str) -> None:
        self._metrics["escalations_total"].labels(threat_level=threat_level).inc()

    def record_notification_failure(self, channel: str) -> None:
        self._metrics["notification_failures_total"].labels(channel=channel).inc()

    def record_evictions(self, count: int) -> None:
        if count:
            self._metrics["evictions_total"].inc(count)

    def sample(self, name: str, **labels: str) -> float:
        """Current value of a metric sample, 0.0 if never recorded."""
        value = self.registry.get_sample_value(f"{self.namespace}_{name}", labels or None)
        return value or 0.0

    def export(self) -> bytes:
        """Text exposition format for the /metrics endpoint."""
        return generate_latest(self.registry)
