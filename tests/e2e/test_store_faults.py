"""
E2E: persistence failures, reducer faults during resolution, request timeouts
and in-flight calls across connectivity loss.
"""

from __future__ import annotations

import asyncio

import pytest

from effectkit.api.errors import PersistenceFailure, ReducerFault, StateCorruption
from effectkit.runtime.retry import RetryDecision, RetryScheduler
from tests.helpers import (
    FlakyPersistence,
    FlakyReducer,
    ScriptedTransport,
    add_item,
    initial_state,
    items_reducer,
    resolutions,
    slow,
    wait_until,
)

pytestmark = [pytest.mark.e2e]


@pytest.mark.asyncio
async def test_transient_persistence_failure_is_retried_and_signalled(make_store):
    signals: list[bool] = []
    p = FlakyPersistence()
    store = make_store(persistence=p, on_degraded=signals.append)
    await store.start()

    p.fail_next = 2
    await store.dispatch(add_item("a1"))
    await store.drain(timeout=5)

    assert signals == [True, False]
    assert store.degraded is False
    assert store.state["items"] == {"a1": "synced"}
    assert store.metrics.persist_failures.value == 2


@pytest.mark.asyncio
async def test_dispatch_fails_cleanly_when_storage_is_down(make_store, transport, connectivity):
    signals: list[bool] = []
    p = FlakyPersistence()
    store = make_store(persistence=p, on_degraded=signals.append)
    await store.start()

    p.fail_always = True
    with pytest.raises(PersistenceFailure):
        await store.dispatch(add_item("a1"))
    assert store.degraded is True
    assert store.status()["degraded"] is True
    assert signals == [True]
    assert store.state == initial_state()
    assert store.pending == ()
    assert store.metrics.enqueued.value == 0
    await asyncio.sleep(0.02)
    assert transport.calls == []

    p.fail_always = False
    await store.dispatch(add_item("a2"))
    await store.drain(timeout=5)
    assert store.degraded is False
    assert store.state["items"] == {"a2": "synced"}
    assert store.metrics.enqueued.value == 1


@pytest.mark.asyncio
async def test_reducer_fault_on_dispatch_is_raised(make_store):
    store = make_store(reducer=FlakyReducer(items_reducer, kind="item/add", failures=1))
    await store.start()
    with pytest.raises(ReducerFault):
        await store.dispatch(add_item("a1"))
    assert store.pending == ()
    assert store.state == initial_state()


@pytest.mark.asyncio
async def test_reducer_fault_on_commit_does_not_repeat_the_call(make_store, transport):
    reducer = FlakyReducer(items_reducer, kind="item/add/commit", failures=3)
    store = make_store(reducer=reducer)
    await store.start()
    await store.dispatch(add_item("a1"))
    await store.dispatch(add_item("a2"))
    await store.drain(timeout=5)

    assert reducer.raised == 3
    assert transport.keys() == ["add-a1", "add-a2"]
    assert resolutions(store.state) == ["item/add/commit:a1", "item/add/commit:a2"]
    assert store.metrics.resolve_failures.value == 3


@pytest.mark.asyncio
async def test_request_timeout_counts_as_transient_failure(make_store, transport):
    transport.script("add-a1", slow(0.2), "ok")
    store = make_store()
    await store.start()
    await store.dispatch(add_item("a1", timeout_ms=50))
    await store.drain(timeout=3)

    assert transport.count("add-a1") == 2
    assert store.metrics.retries_scheduled.value == 1
    assert store.state["items"] == {"a1": "synced"}
    assert transport.max_in_flight == 1


@pytest.mark.asyncio
@pytest.mark.cfg(max_attempts=4)
async def test_timed_out_call_keeps_the_single_slot_busy(make_store, transport):
    late = slow(0.15, then="transient")
    transport.script("add-a1", late, late, late, late)
    store = make_store()
    await store.start()
    await store.dispatch(add_item("a1", timeout_ms=50))
    await store.dispatch(add_item("a2"))
    await store.drain(timeout=5)

    # every retry, and the next effect, waited for the timed-out call to return
    assert transport.max_in_flight == 1
    assert transport.keys() == ["add-a1"] * 4 + ["add-a2"]
    assert resolutions(store.state) == ["item/add/rollback:a1", "item/add/commit:a2"]
    assert store.metrics.retries_scheduled.value == 3


@pytest.mark.asyncio
async def test_abortable_call_is_cancelled_on_connectivity_loss(make_store, connectivity):
    t = ScriptedTransport(supports_abort=True, gate=asyncio.Event())
    store = make_store(transport=t)
    await store.start()
    await store.dispatch(add_item("a1"))
    await wait_until(lambda: len(t.calls) == 1, what="call in flight")

    connectivity.set_offline()
    await wait_until(lambda: t.cancelled == 1, what="call aborted")
    # an aborted call is not a failed attempt
    assert store.pending[0].attempt == 0
    assert store.state["items"] == {"a1": "pending"}

    t.gate.set()
    connectivity.set_online()
    await store.drain(timeout=5)
    assert t.count("add-a1") == 2
    assert store.metrics.retries_scheduled.value == 0
    assert store.state["items"] == {"a1": "synced"}


@pytest.mark.asyncio
async def test_non_abortable_call_finishing_offline_is_processed(store, transport, connectivity):
    transport.gate = asyncio.Event()
    await store.dispatch(add_item("a1"))
    await store.dispatch(add_item("a2"))
    await wait_until(lambda: len(transport.calls) == 1, what="call in flight")

    connectivity.set_offline()
    await asyncio.sleep(0.02)
    transport.gate.set()
    await wait_until(lambda: len(store.pending) == 1, what="first effect committed while offline")

    assert store.state["items"] == {"a1": "synced", "a2": "pending"}
    await asyncio.sleep(0.02)
    assert transport.keys() == ["add-a1"]

    connectivity.set_online()
    await store.drain(timeout=5)
    assert transport.keys() == ["add-a1", "add-a2"]


@pytest.mark.asyncio
async def test_transport_exception_is_classified(make_store, transport):
    transport.script("add-a1", ConnectionResetError("peer reset"), "ok")
    store = make_store()
    await store.start()
    await store.dispatch(add_item("a1"))
    await store.drain(timeout=5)
    assert transport.count("add-a1") == 2
    assert store.state["items"] == {"a1": "synced"}


@pytest.mark.asyncio
async def test_drain_times_out_while_offline(store, connectivity):
    connectivity.set_offline()
    await store.dispatch(add_item("a1"))
    with pytest.raises(TimeoutError):
        await store.drain(timeout=0.05)
    assert store.online is False


class _RollbackWithoutError(RetryScheduler):
    def decide(self, entry, failure, *, error=None):
        return RetryDecision(action="rollback", attempt=entry.attempt + 1)


@pytest.mark.asyncio
async def test_rollback_decision_without_error_stops_the_executor(make_store, transport):
    transport.script("add-a1", "permanent")
    store = make_store()
    store.executor.scheduler = _RollbackWithoutError()
    await store.start()
    await store.dispatch(add_item("a1"))

    await wait_until(lambda: store.executor.error is not None, what="executor stopped")
    assert isinstance(store.executor.error, StateCorruption)
    assert store.executor.running is False
    assert [e.idempotency_key for e in store.pending] == ["add-a1"]
    assert store.state["items"] == {"a1": "pending"}
