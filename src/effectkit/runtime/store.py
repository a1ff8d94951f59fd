# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
EffectStore: one application instance of the effect pipeline.

Owns the reducer, the journal (state + outbox persistence), the outbox, the
action bus, the reconciler, the retry scheduler and the executor. There is no
module-level singleton: several stores (e.g. in tests) coexist independently.

Typical use:

    store = EffectStore(
        reducer=reducer,
        initial_state={"todos": {}},
        persistence=FilePersistence("state.json"),
        transport=MyHttpTransport(),
        connectivity=ManualConnectivity(online=False),
    )
    async with store:
        await store.dispatch(Action(kind="todo/add", payload=..., effect=EffectDescriptor(...)))
"""

import asyncio
from collections.abc import Callable
from typing import Any

from ..core.config import OutboxConfig
from ..core.log import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..core.types import Reducer
from ..core.utils import nanoid
from ..protocol.models import Action, OutboxEntry
from ..storage.memory import InMemoryPersistence
from ..storage.snapshot import PersistenceAdapter, SnapshotCodec
from ..transport.base import NetworkTransport, classify_exception
from .bus import ActionBus
from .connectivity import Connectivity, ConnectivityMonitor, ManualConnectivity, PollingConnectivity
from .executor import EffectExecutor, ErrorClassifier
from .journal import SnapshotJournal
from .metrics import OutboxMetrics
from .outbox import EffectOutbox
from .reconciler import Reconciler
from .retry import RetryPolicy, RetryScheduler


class EffectStore:
    def __init__(
        self,
        *,
        reducer: Reducer,
        transport: NetworkTransport,
        initial_state: Any = None,
        persistence: PersistenceAdapter | None = None,
        connectivity: ConnectivityMonitor | None = None,
        cfg: OutboxConfig | None = None,
        clock: Clock | None = None,
        codec: SnapshotCodec | None = None,
        retry_policy: RetryPolicy | None = None,
        classify: ErrorClassifier = classify_exception,
        on_degraded: Callable[[bool], None] | None = None,
        name: str | None = None,
    ) -> None:
        self.cfg = cfg or OutboxConfig()
        self.clock: Clock = clock or SystemClock()
        self.name = name or f"store-{nanoid(8)}"
        self.connectivity: ConnectivityMonitor = connectivity or ManualConnectivity(online=True)
        self.metrics = OutboxMetrics()
        self.log = get_logger("store")

        self.journal = SnapshotJournal(
            persistence=persistence or InMemoryPersistence(),
            cfg=self.cfg,
            clock=self.clock,
            codec=codec,
            metrics=self.metrics,
            on_degraded=on_degraded,
            initial_state=initial_state,
        )
        self.outbox = EffectOutbox(journal=self.journal, clock=self.clock)
        self.bus = ActionBus(reducer=reducer, journal=self.journal, outbox=self.outbox)
        self.reconciler = Reconciler(bus=self.bus)
        self.scheduler = RetryScheduler(retry_policy or RetryPolicy.from_config(self.cfg))
        self.executor = EffectExecutor(
            outbox=self.outbox,
            reconciler=self.reconciler,
            scheduler=self.scheduler,
            transport=transport,
            connectivity=self.connectivity,
            cfg=self.cfg,
            clock=self.clock,
            metrics=self.metrics,
            classify=classify,
        )
        self._loaded = False
        self._load_lock = asyncio.Lock()

    # ---- lifecycle

    async def load(self) -> bool:
        """Restore the persisted snapshot once. Returns True if one was found."""
        async with self._load_lock:
            if self._loaded:
                return False
            with log_context(store=self.name):
                found = await self.journal.restore()
            self._loaded = True
            return found

    async def start(self) -> None:
        """Restore persisted state/outbox and start draining."""
        await self.load()
        with log_context(store=self.name):
            if isinstance(self.connectivity, PollingConnectivity):
                await self.connectivity.start()
            await self.executor.start()
        self.log.info("store started", event="store.start", store=self.name, pending=len(self.outbox))

    async def stop(self) -> None:
        await self.executor.stop()
        if isinstance(self.connectivity, PollingConnectivity):
            await self.connectivity.stop()
        self.log.info("store stopped", event="store.stop", store=self.name, pending=len(self.outbox))

    async def __aenter__(self) -> EffectStore:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ---- dispatch / read

    async def dispatch(self, action: Action) -> OutboxEntry | None:
        """
        Apply an action optimistically and queue its effect (if any).
        Raises ReducerFault / PersistenceFailure without changing anything.
        """
        if not self._loaded:
            await self.load()
        with log_context(store=self.name):
            return await self.bus.dispatch(action)

    @property
    def state(self) -> Any:
        return self.journal.state

    @property
    def pending(self) -> tuple[OutboxEntry, ...]:
        return self.outbox.entries

    @property
    def degraded(self) -> bool:
        return self.journal.degraded

    @property
    def online(self) -> bool:
        return self.connectivity.status() is Connectivity.online

    def status(self) -> dict[str, Any]:
        head = self.outbox.peek_head()
        return {
            "name": self.name,
            "running": self.executor.running,
            "online": self.online,
            "depth": len(self.outbox),
            "degraded": self.degraded,
            "head_key": head.idempotency_key if head else None,
            "head_attempt": head.attempt if head else None,
            "error": repr(self.executor.error) if self.executor.error else None,
        }

    async def drain(self, timeout: float | None = None, *, poll_interval: float = 0.01) -> None:
        """
        Wait until every queued effect has been resolved. Raises TimeoutError
        after `timeout` seconds, or the executor's fatal error if it crashed.
        """
        async with asyncio.timeout(timeout):
            while True:
                if self.executor.error is not None:
                    raise self.executor.error
                if not self.outbox.entries and not self.executor.resolving:
                    return
                await asyncio.sleep(poll_interval)
