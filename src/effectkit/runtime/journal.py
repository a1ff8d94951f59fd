# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Snapshot journal: the single writer of (application state, outbox entries).

Every mutation runs inside `transaction()`: callers edit a draft, and on exit
the draft is encoded, saved through the persistence adapter (with bounded
retries) and only then swapped in as the committed in-memory view. The view is
the decoded form of the bytes written, so it equals what `restore()` returns
after a restart (e.g. JSON turns int dict keys into strings). If the save
fails, the committed view is unchanged and `PersistenceFailure` propagates.

One `asyncio.Lock` serializes all transactions, which is what gives FIFO
enqueue order equal to dispatch order and keeps the executor's head
mutations from interleaving with appends.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from ..api.errors import PersistenceFailure
from ..core.config import OutboxConfig
from ..core.log import get_logger, swallow
from ..core.time import Clock
from ..core.utils import jitter_ms
from ..protocol.models import OutboxEntry, Snapshot
from ..storage.snapshot import JsonSnapshotCodec, PersistenceAdapter, SnapshotCodec
from .metrics import OutboxMetrics


@dataclass
class Draft:
    """Mutable working copy handed to a transaction body."""

    state: Any
    entries: list[OutboxEntry] = field(default_factory=list)
    dirty: bool = True


class SnapshotJournal:
    """Holds the committed snapshot and persists every change before exposing it."""

    def __init__(
        self,
        *,
        persistence: PersistenceAdapter,
        cfg: OutboxConfig,
        clock: Clock,
        codec: SnapshotCodec | None = None,
        metrics: OutboxMetrics | None = None,
        on_degraded: Callable[[bool], None] | None = None,
        initial_state: Any = None,
    ) -> None:
        self.persistence = persistence
        self.cfg = cfg
        self.clock = clock
        self.codec: SnapshotCodec = codec or JsonSnapshotCodec()
        self.metrics = metrics or OutboxMetrics()
        self.on_degraded = on_degraded
        self.log = get_logger("journal")
        self._lock = asyncio.Lock()
        self._state: Any = initial_state
        self._entries: tuple[OutboxEntry, ...] = ()
        self._degraded = False

    # ---- committed view

    @property
    def state(self) -> Any:
        return self._state

    @property
    def entries(self) -> tuple[OutboxEntry, ...]:
        return self._entries

    @property
    def degraded(self) -> bool:
        """True while the last persistence attempt failed (writes are not durable)."""
        return self._degraded

    def snapshot(self) -> Snapshot:
        return Snapshot(state=self._state, entries=list(self._entries))

    # ---- load

    async def restore(self) -> bool:
        """
        Load the persisted snapshot into memory. Returns False when nothing was
        stored yet (the initial state is kept). Corrupt data raises StateCorruption.
        """
        async with self._lock:
            raw = await self.persistence.load()
            if raw is None:
                return False
            snap = self.codec.decode(raw)
            self._state = snap.state
            self._entries = tuple(snap.entries)
            self.metrics.outbox_depth.set(len(self._entries))
            self.log.info(
                "snapshot restored", event="journal.restore", pending=len(self._entries), size=len(raw)
            )
            return True

    # ---- mutate

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Draft]:
        """
        Serialized read-modify-persist block.

            async with journal.transaction() as d:
                d.state = reducer(d.state, action)
                d.entries.append(entry)

        Setting `d.dirty = False` skips the write (nothing changed).
        """
        async with self._lock:
            draft = Draft(state=self._state, entries=list(self._entries))
            yield draft
            if not draft.dirty:
                return
            data = self.codec.encode(Snapshot(state=draft.state, entries=draft.entries))
            # committed view == what restore() loads from these bytes
            committed = self.codec.decode(data)
            await self._save(data)
            self._state = committed.state
            self._entries = tuple(committed.entries)
            self.metrics.outbox_depth.set(len(self._entries))

    async def _save(self, data: bytes) -> None:
        limit = self.cfg.persist_max_attempts
        attempt = 0
        while True:
            attempt += 1
            err: BaseException | None = None
            try:
                ok = await self.persistence.save(data)
            except Exception as e:  # noqa: BLE001
                ok, err = False, e
            if ok is not False:
                self._set_degraded(False)
                return

            self.metrics.persist_failures.inc()
            self._set_degraded(True)
            self.log.warning(
                "snapshot write failed",
                event="journal.save.failed",
                attempt=attempt,
                error=repr(err) if err else "adapter returned False",
            )
            if limit is not None and attempt >= limit:
                raise PersistenceFailure(attempts=attempt) from err
            await self.clock.sleep_ms(jitter_ms(self.cfg.persist_backoff_ms * attempt))

    def _set_degraded(self, value: bool) -> None:
        if value == self._degraded:
            return
        self._degraded = value
        msg = "persistence degraded" if value else "persistence recovered"
        self.log.info(msg, event="journal.degraded", value=value)
        if self.on_degraded is not None:
            with swallow(logger=self.log, code="journal.on_degraded", msg="on_degraded callback raised"):
                self.on_degraded(value)
