# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Action bus: the integration point between producers and the outbox.

`dispatch(action)` runs the reducer and, when the action carries an effect,
appends it to the outbox. Both happen inside one journal transaction, so the
optimistic state change and the queued effect are persisted by the same write
(or neither is). Concurrent producers are serialized by the journal lock and
observe FIFO order equal to dispatch order.
"""

from typing import Any

from ..api.errors import ReducerFault
from ..core.log import get_logger
from ..core.types import Reducer
from ..protocol.models import Action, OutboxEntry, Resolution
from .journal import Draft, SnapshotJournal
from .metrics import OutboxMetrics
from .outbox import EffectOutbox


class ActionBus:
    def __init__(self, *, reducer: Reducer, journal: SnapshotJournal, outbox: EffectOutbox) -> None:
        self.reducer = reducer
        self.journal = journal
        self.outbox = outbox
        self.log = get_logger("bus")

    @property
    def state(self) -> Any:
        return self.journal.state

    @property
    def metrics(self) -> OutboxMetrics:
        return self.journal.metrics

    async def dispatch(self, action: Action) -> OutboxEntry | None:
        """
        Apply `action` and queue its effect, as one persisted step.

        Returns the created outbox entry, or None for actions without an effect.
        Raises ReducerFault or PersistenceFailure; in both cases nothing changed.
        """
        entry: OutboxEntry | None = None
        async with self.journal.transaction() as d:
            self._reduce(d, action)
            if action.effect is not None:
                entry = self.outbox._append(d, action.effect)
        if entry is not None:
            self.metrics.enqueued.inc()
            self.outbox.notify()
        self.log.debug(
            "action dispatched",
            event="bus.dispatch",
            action_kind=action.kind,
            effect_key=action.effect.idempotency_key if action.effect else None,
        )
        return entry

    async def resolve(self, entry: OutboxEntry, action: Action, outcome: Resolution) -> None:
        """
        Dispatch a commit/rollback action and remove `entry` from the head, as
        one persisted step. If the resolving action carries its own effect it is
        appended to the tail in the same write.
        """
        follow_up: OutboxEntry | None = None
        async with self.journal.transaction() as d:
            self._reduce(d, action)
            self.outbox._pop_head(d, outcome, expect_id=entry.entry_id)
            if action.effect is not None:
                follow_up = self.outbox._append(d, action.effect)
        if follow_up is not None:
            self.metrics.enqueued.inc()
        self.outbox.notify()

    def _reduce(self, d: Draft, action: Action) -> None:
        try:
            d.state = self.reducer(d.state, action)
        except Exception as e:
            self.log.error("reducer raised", event="bus.reducer.failed", action_kind=action.kind, exc_info=e)
            raise ReducerFault(action.kind, e) from e
