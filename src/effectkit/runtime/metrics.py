# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class Counter:
    value: int = 0

    def inc(self, n: int = 1) -> None:
        self.value += int(n)


@dataclass
class Gauge:
    value: float = 0.0

    def set(self, v: float) -> None:
        self.value = float(v)


@dataclass
class Timer:
    total_ms: float = 0.0
    count: int = 0
    max_ms: float = 0.0

    def observe(self, ms: float) -> None:
        self.total_ms += float(ms)
        self.count += 1
        self.max_ms = max(self.max_ms, float(ms))

    def start(self):
        t0 = time.perf_counter()

        def _done() -> None:
            self.observe((time.perf_counter() - t0) * 1000.0)

        return _done


@dataclass
class OutboxMetrics:
    """
    In-process counters for one store. Plug a Prometheus/OpenTelemetry
    exporter by reading these fields.
    """

    enqueued: Counter = field(default_factory=Counter)
    attempts: Counter = field(default_factory=Counter)
    committed: Counter = field(default_factory=Counter)
    retries_scheduled: Counter = field(default_factory=Counter)
    persist_failures: Counter = field(default_factory=Counter)
    resolve_failures: Counter = field(default_factory=Counter)
    rolled_back: dict[str, Counter] = field(default_factory=dict)
    outbox_depth: Gauge = field(default_factory=Gauge)
    call_duration_ms: Timer = field(default_factory=Timer)

    def rollback(self, reason: str) -> None:
        self.rolled_back.setdefault(reason, Counter()).inc()

    def as_dict(self) -> dict[str, float | int | dict[str, int]]:
        return {
            "enqueued": self.enqueued.value,
            "attempts": self.attempts.value,
            "committed": self.committed.value,
            "retries_scheduled": self.retries_scheduled.value,
            "persist_failures": self.persist_failures.value,
            "resolve_failures": self.resolve_failures.value,
            "rolled_back": {k: c.value for k, c in self.rolled_back.items()},
            "outbox_depth": self.outbox_depth.value,
            "call_count": self.call_duration_ms.count,
            "call_max_ms": self.call_duration_ms.max_ms,
        }
