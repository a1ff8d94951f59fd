# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Effect outbox: an ordered, persisted queue of pending effect descriptors.

The head is always the oldest unresolved effect. A failed-but-retryable head
keeps its slot (`requeue_head` only moves its `next_attempt_at_ms`), so a later
effect can never commit before an earlier one (head-of-line blocking).

All mutations go through the `SnapshotJournal`, one persisted write each. The
`_append` / `_pop_head` helpers operate on an open journal draft so the action
bus can combine them with a reducer update in the same write.
"""

import asyncio

from ..api.errors import StateCorruption
from ..core.log import get_logger
from ..core.time import Clock
from ..protocol.models import EffectDescriptor, OutboxEntry, Resolution
from .journal import Draft, SnapshotJournal


class EffectOutbox:
    """FIFO of `OutboxEntry` backed by the journal."""

    def __init__(self, *, journal: SnapshotJournal, clock: Clock) -> None:
        self.journal = journal
        self.clock = clock
        self.log = get_logger("outbox")
        self._changed = asyncio.Event()

    # ---- read

    @property
    def entries(self) -> tuple[OutboxEntry, ...]:
        return self.journal.entries

    def __len__(self) -> int:
        return len(self.journal.entries)

    def peek_head(self) -> OutboxEntry | None:
        entries = self.journal.entries
        return entries[0] if entries else None

    # ---- change signal (consumed by the executor)

    def notify(self) -> None:
        self._changed.set()

    async def wait_changed(self) -> None:
        await self._changed.wait()
        self._changed.clear()

    def clear_changed(self) -> None:
        self._changed.clear()

    # ---- standalone mutations (one transaction each)

    async def enqueue(self, descriptor: EffectDescriptor) -> OutboxEntry:
        """Append at the tail and persist."""
        async with self.journal.transaction() as d:
            entry = self._append(d, descriptor)
        self.journal.metrics.enqueued.inc()
        self.notify()
        return entry

    async def resolve_head(self, outcome: Resolution) -> OutboxEntry:
        """Remove the head and persist. StateCorruption on an empty queue."""
        async with self.journal.transaction() as d:
            entry = self._pop_head(d, outcome)
        self.notify()
        return entry

    async def requeue_head(self, delay_ms: int, *, attempt: int | None = None, error: str | None = None) -> OutboxEntry:
        """
        Push the head's next attempt `delay_ms` into the future, in place.
        `attempt` / `error` record the failure that caused the requeue.
        """
        async with self.journal.transaction() as d:
            if not d.entries:
                raise StateCorruption("requeue_head called on an empty outbox")
            head = d.entries[0]
            update: dict = {"next_attempt_at_ms": self.clock.now_ms() + max(0, int(delay_ms))}
            if attempt is not None:
                update["attempt"] = attempt
            if error is not None:
                update["last_error"] = error
            d.entries[0] = head.model_copy(update=update)
            requeued = d.entries[0]
        self.log.debug(
            "head requeued",
            event="outbox.requeue",
            entry_id=requeued.entry_id,
            effect_key=requeued.idempotency_key,
            attempt=requeued.attempt,
            delay_ms=delay_ms,
        )
        return requeued

    # ---- draft helpers (caller holds the journal transaction)

    def _append(self, d: Draft, descriptor: EffectDescriptor) -> OutboxEntry:
        entry = OutboxEntry.new(descriptor, now_ms=self.clock.now_ms())
        d.entries.append(entry)
        self.log.debug(
            "effect enqueued",
            event="outbox.enqueue",
            entry_id=entry.entry_id,
            effect_key=entry.idempotency_key,
            position=len(d.entries) - 1,
        )
        return entry

    def _pop_head(self, d: Draft, outcome: Resolution, *, expect_id: str | None = None) -> OutboxEntry:
        if not d.entries:
            raise StateCorruption(f"resolve_head({outcome.value}) called on an empty outbox")
        head = d.entries[0]
        if expect_id is not None and head.entry_id != expect_id:
            raise StateCorruption(f"head is {head.entry_id}, expected {expect_id}; outbox order violated")
        d.entries.pop(0)
        self.log.debug(
            "head resolved",
            event="outbox.resolve",
            entry_id=head.entry_id,
            effect_key=head.idempotency_key,
            outcome=outcome.value,
        )
        return head
