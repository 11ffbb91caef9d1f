from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.branchstock.core.config import settings

NAMESPACE = "branchstock"
LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)

# name -> (help, label names)
_COUNTERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "http_requests_total": ("HTTP requests by route/method/status.", ("route", "method", "status")),
    "idempotency_replay_total": ("Responses served from an idempotency record.", ()),
    "lock_wait_timeout_total": ("Units of work aborted by a lock wait timeout.", ()),
    "rbac_denied_total": ("Requests rejected by the role permission check.", ()),
    "transfer_transitions_total": ("Transfer operations by action and result.", ("action", "result")),
    "insufficient_stock_total": ("Ledger batches rejected for insufficient stock.", ("action",)),
    "invariants_violation_total": ("Integrity scan findings.", ("check_id",)),
}


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    """Process-wide Prometheus collectors.

    Every recorder is a no-op when ``METRICS_ENABLED`` is off. ``reset`` swaps
    in a fresh registry, which the test suite does between tests.
    """

    def __init__(self) -> None:
        self.enabled = bool(settings.METRICS_ENABLED)
        self._registry: CollectorRegistry | None = None
        self._counters: dict[str, Counter] = {}
        self._latency: Histogram | None = None
        if self.enabled:
            self._build()

    def _build(self) -> None:
        self._registry = CollectorRegistry()
        self._counters = {
            name: Counter(name, description, list(labels), namespace=NAMESPACE, registry=self._registry)
            for name, (description, labels) in _COUNTERS.items()
        }
        self._latency = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            namespace=NAMESPACE,
            buckets=LATENCY_BUCKETS_MS,
            registry=self._registry,
        )

    def reset(self) -> None:
        if self.enabled:
            self._build()

    def _inc(self, name: str, amount: float = 1, **labels: str) -> None:
        if not self.enabled:
            return
        counter = self._counters[name]
        (counter.labels(**labels) if labels else counter).inc(amount)

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._inc("http_requests_total", **labels)
        if self.enabled:
            self._latency.labels(**labels).observe(latency_ms)

    def increment_idempotency_replay(self) -> None:
        self._inc("idempotency_replay_total")

    def increment_lock_wait_timeout(self) -> None:
        self._inc("lock_wait_timeout_total")

    def increment_rbac_denied(self) -> None:
        self._inc("rbac_denied_total")

    def record_transfer_transition(self, *, action: str, result: str) -> None:
        self._inc("transfer_transitions_total", action=action, result=result)

    def increment_insufficient_stock(self, action: str) -> None:
        self._inc("insufficient_stock_total", action=action)

    def increment_invariant_violation(self, check_id: str, count: int = 1) -> None:
        self._inc("invariants_violation_total", count, check_id=check_id)

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
