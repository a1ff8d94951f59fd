"""
Unit tests: ActionBus dispatch atomicity and Reconciler resolution metadata.
"""

from __future__ import annotations

import asyncio

import pytest

from effectkit.api.errors import (
    PermanentEffectError,
    PersistenceFailure,
    ReconcileError,
    ReducerFault,
    RetryExhausted,
)
from effectkit.protocol.models import Action
from effectkit.runtime.bus import ActionBus
from effectkit.runtime.journal import SnapshotJournal
from effectkit.runtime.outbox import EffectOutbox
from effectkit.runtime.reconciler import Reconciler
from tests.helpers import FlakyPersistence, FlakyReducer, add_item, initial_state, items_reducer

pytestmark = [pytest.mark.unit]


def _wire(cfg, clock, *, reducer=items_reducer, persistence=None):
    p = persistence or FlakyPersistence()
    j = SnapshotJournal(persistence=p, cfg=cfg, clock=clock, initial_state=initial_state())
    ob = EffectOutbox(journal=j, clock=clock)
    bus = ActionBus(reducer=reducer, journal=j, outbox=ob)
    return bus, ob, p


@pytest.mark.asyncio
async def test_dispatch_applies_reducer_and_enqueues_in_one_write(fast_cfg, manual_clock):
    bus, ob, p = _wire(fast_cfg, manual_clock)
    entry = await bus.dispatch(add_item("a1"))

    assert bus.state["items"] == {"a1": "pending"}
    assert ob.peek_head() == entry
    assert p.saves == 1


@pytest.mark.asyncio
async def test_action_without_effect_does_not_enqueue(fast_cfg, manual_clock):
    bus, ob, _ = _wire(fast_cfg, manual_clock)
    assert await bus.dispatch(Action(kind="noop", payload={"id": "x"})) is None
    assert len(ob) == 0
    assert bus.state["log"] == ["noop:x"]


@pytest.mark.asyncio
async def test_reducer_fault_changes_nothing(fast_cfg, manual_clock):
    reducer = FlakyReducer(items_reducer, kind="item/add", failures=1)
    bus, ob, p = _wire(fast_cfg, manual_clock, reducer=reducer)

    with pytest.raises(ReducerFault) as ei:
        await bus.dispatch(add_item("a1"))
    assert ei.value.kind == "item/add"
    assert bus.state == initial_state()
    assert len(ob) == 0
    assert p.saves == 0


@pytest.mark.asyncio
async def test_persistence_failure_on_dispatch_changes_nothing(fast_cfg, manual_clock):
    bus, ob, p = _wire(fast_cfg, manual_clock)
    p.fail_always = True
    with pytest.raises(PersistenceFailure):
        await bus.dispatch(add_item("a1"))
    assert bus.state == initial_state()
    assert len(ob) == 0


@pytest.mark.asyncio
async def test_concurrent_dispatch_preserves_order(fast_cfg, manual_clock):
    bus, ob, _ = _wire(fast_cfg, manual_clock)
    ids = [f"i{n}" for n in range(20)]
    await asyncio.gather(*(bus.dispatch(add_item(i)) for i in ids))

    queued = [e.idempotency_key for e in ob.entries]
    applied = [e.split(":")[1] for e in bus.state["log"]]
    assert sorted(queued) == sorted(f"add-{i}" for i in ids)
    # enqueue order always equals the order the reducer saw the actions
    assert queued == [f"add-{i}" for i in applied]


@pytest.mark.asyncio
async def test_commit_dispatches_annotated_action_and_pops_head(fast_cfg, manual_clock):
    bus, ob, _ = _wire(fast_cfg, manual_clock)
    rec = Reconciler(bus=bus)
    entry = await bus.dispatch(add_item("a1"))

    action = await rec.commit(entry, {"ok": True})
    assert action.kind == "item/add/commit"
    assert action.meta["effect_key"] == "add-a1"
    assert action.meta["effect_outcome"] == "committed"
    assert action.meta["effect_attempts"] == 1
    assert action.meta["effect_response"] == {"ok": True}
    assert bus.state["items"] == {"a1": "synced"}
    assert len(ob) == 0
    assert bus.metrics.committed.value == 1


@pytest.mark.asyncio
async def test_rollback_outcomes(fast_cfg, manual_clock):
    bus, ob, _ = _wire(fast_cfg, manual_clock)
    rec = Reconciler(bus=bus)
    e1 = await bus.dispatch(add_item("a1"))
    e2 = await bus.dispatch(add_item("a2"))

    a1 = await rec.rollback(e1, PermanentEffectError("bad request", status=400))
    assert a1.meta["effect_outcome"] == "rolled_back"
    assert a1.meta["effect_error"] == "bad request"

    a2 = await rec.rollback(e2, RetryExhausted(attempts=3, last_error="503"))
    assert a2.meta["effect_outcome"] == "exhausted"
    assert "503" in a2.meta["effect_error"]

    assert bus.state["items"] == {}
    assert bus.metrics.rolled_back["rolled_back"].value == 1
    assert bus.metrics.rolled_back["exhausted"].value == 1


@pytest.mark.asyncio
async def test_reconcile_failure_keeps_entry_at_head(fast_cfg, manual_clock):
    reducer = FlakyReducer(items_reducer, kind="item/add/commit", failures=1)
    bus, ob, _ = _wire(fast_cfg, manual_clock, reducer=reducer)
    rec = Reconciler(bus=bus)
    entry = await bus.dispatch(add_item("a1"))

    with pytest.raises(ReconcileError):
        await rec.commit(entry)
    assert ob.peek_head() == entry
    assert bus.state["items"] == {"a1": "pending"}

    await rec.commit(entry)
    assert len(ob) == 0
    assert bus.state["items"] == {"a1": "synced"}
    assert bus.metrics.resolve_failures.value == 1


@pytest.mark.asyncio
async def test_resolving_action_with_its_own_effect_is_queued(fast_cfg, manual_clock):
    bus, ob, _ = _wire(fast_cfg, manual_clock)
    rec = Reconciler(bus=bus)
    follow_up = add_item("audit").effect
    base = add_item("a1")
    action = base.model_copy(
        update={
            "effect": base.effect.model_copy(
                update={"commit_action": Action(kind="item/add/commit", payload={"id": "a1"}, effect=follow_up)}
            )
        }
    )
    entry = await bus.dispatch(action)
    await rec.commit(entry)
    assert [e.idempotency_key for e in ob.entries] == ["add-audit"]
