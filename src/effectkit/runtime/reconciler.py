# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Reconciler: turns an executor outcome into the descriptor's commit or rollback
action and dispatches it through the action bus in the same persisted step
that removes the entry from the outbox.

Commit/rollback actions get reconciliation metadata in `meta`:
    effect_key       idempotency key of the resolved effect
    effect_outcome   "committed" | "rolled_back" | "exhausted"
    effect_response  transport response (commit only)
    effect_error     error text (rollback only)
    effect_attempts  number of executions made
"""

from typing import TYPE_CHECKING, Any

from ..api.errors import EffectError, PersistenceFailure, ReconcileError, ReducerFault, RetryExhausted
from ..core.log import get_logger
from ..protocol.models import Action, OutboxEntry, Resolution

if TYPE_CHECKING:
    from .bus import ActionBus


class Reconciler:
    def __init__(self, *, bus: ActionBus) -> None:
        self.bus = bus
        self.log = get_logger("reconciler")

    async def commit(self, entry: OutboxEntry, response: Any = None) -> Action:
        action = self._annotate(
            entry.descriptor.commit_action,
            entry,
            Resolution.committed,
            effect_response=response,
        )
        await self._dispatch(entry, action, Resolution.committed)
        self.bus.metrics.committed.inc()
        return action

    async def rollback(self, entry: OutboxEntry, error: EffectError) -> Action:
        outcome = Resolution.exhausted if isinstance(error, RetryExhausted) else Resolution.rolled_back
        detail = str(error)
        if isinstance(error, RetryExhausted) and error.last_error:
            detail = f"{detail}: {error.last_error}"
        action = self._annotate(entry.descriptor.rollback_action, entry, outcome, effect_error=detail)
        await self._dispatch(entry, action, outcome)
        self.bus.metrics.rollback(outcome.value)
        return action

    # ---- internals

    async def _dispatch(self, entry: OutboxEntry, action: Action, outcome: Resolution) -> None:
        try:
            await self.bus.resolve(entry, action, outcome)
        except (ReducerFault, PersistenceFailure) as e:
            self.bus.metrics.resolve_failures.inc()
            self.log.error(
                "resolution dispatch failed; will retry",
                event="reconcile.failed",
                entry_id=entry.entry_id,
                effect_key=entry.idempotency_key,
                action_kind=action.kind,
                error=repr(e),
            )
            raise ReconcileError(entry.entry_id, e) from e
        self.log.info(
            "effect resolved",
            event="reconcile.done",
            entry_id=entry.entry_id,
            effect_key=entry.idempotency_key,
            action_kind=action.kind,
            outcome=outcome.value,
        )

    @staticmethod
    def _annotate(action: Action, entry: OutboxEntry, outcome: Resolution, **extra: Any) -> Action:
        meta = {
            **action.meta,
            "effect_key": entry.idempotency_key,
            "effect_outcome": outcome.value,
            "effect_attempts": entry.attempt + 1,
            **extra,
        }
        return action.model_copy(update={"meta": meta})
