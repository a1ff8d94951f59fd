from __future__ import annotations

"""
effectkit.observability.metrics
===============================

Prometheus exposition of the in-process `OutboxMetrics` of one or more stores.

`OutboxCollector` is a custom collector: values are read from the stores at
scrape time, so the hot path only bumps plain counters. All series carry a
single low-cardinality `store` label.

    registry = CollectorRegistry()
    register_store_metrics(store, registry=registry)
    MetricsService(port=9100).start()   # default registry only
"""

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any

import prometheus_client as _prom
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, SummaryMetricFamily
from prometheus_client.registry import Collector

from ..core.log import get_logger

if TYPE_CHECKING:
    from ..runtime.store import EffectStore

__all__ = ["MetricsService", "OutboxCollector", "register_store_metrics"]

_log = get_logger("observability.metrics")

_PREFIX = "effectkit_outbox"

_COUNTERS: tuple[tuple[str, str], ...] = (
    ("enqueued", "Effects appended to the outbox"),
    ("attempts", "Transport calls started"),
    ("committed", "Effects resolved by their commit action"),
    ("retries_scheduled", "Transient failures requeued with backoff"),
    ("persist_failures", "Failed snapshot writes"),
    ("resolve_failures", "Commit/rollback dispatches that had to be retried"),
)


class OutboxCollector(Collector):
    """Reads `OutboxMetrics` of the given stores on every scrape."""

    def __init__(self, stores: Iterable[EffectStore] = ()) -> None:
        self._stores: list[EffectStore] = list(stores)

    def add(self, store: EffectStore) -> None:
        if store not in self._stores:
            self._stores.append(store)

    def collect(self) -> Iterator[Any]:
        for attr, doc in _COUNTERS:
            fam = CounterMetricFamily(f"{_PREFIX}_{attr}", doc, labels=["store"])
            for s in self._stores:
                fam.add_metric([s.name], getattr(s.metrics, attr).value)
            yield fam

        rolled = CounterMetricFamily(
            f"{_PREFIX}_rolled_back", "Effects resolved by their rollback action", labels=["store", "reason"]
        )
        for s in self._stores:
            for reason, counter in s.metrics.rolled_back.items():
                rolled.add_metric([s.name, reason], counter.value)
        yield rolled

        depth = GaugeMetricFamily(f"{_PREFIX}_depth", "Unresolved effects in the outbox", labels=["store"])
        degraded = GaugeMetricFamily(f"{_PREFIX}_degraded", "1 while snapshot writes are failing", labels=["store"])
        for s in self._stores:
            depth.add_metric([s.name], s.metrics.outbox_depth.value)
            degraded.add_metric([s.name], 1.0 if s.degraded else 0.0)
        yield depth
        yield degraded

        calls = SummaryMetricFamily(
            f"{_PREFIX}_call_duration_ms", "Transport call duration in milliseconds", labels=["store"]
        )
        for s in self._stores:
            t = s.metrics.call_duration_ms
            calls.add_metric([s.name], count_value=t.count, sum_value=t.total_ms)
        yield calls


def register_store_metrics(store: EffectStore, *, registry: Any | None = None) -> OutboxCollector:
    """Register a collector for `store` with `registry` (default: the global prometheus registry)."""
    collector = OutboxCollector([store])
    (registry or _prom.REGISTRY).register(collector)
    _log.debug("store metrics registered", event="metrics.register", store=store.name)
    return collector


class MetricsService:
    """
    Minimal Prometheus exposition server around `prometheus_client.start_http_server()`.

    The background server exposes the default registry and has no stop API, so
    `stop()` only flips the flag.
    """

    def __init__(self, *, address: str = "0.0.0.0", port: int = 8000) -> None:
        self.address = address
        self.port = int(port)
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        _prom.start_http_server(self.port, addr=self.address)
        _log.info("metrics server started", address=self.address, port=self.port)
        self._started = True

    def stop(self) -> None:
        if self._started:
            _log.info("metrics server stopping (no-op)")
        self._started = False
