# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Effect executor: the single worker that drains the outbox.

Loop, one step at a time:
  1. a resolution that failed earlier (reducer fault / persistence failure)
     is retried first, without calling the transport again;
  2. offline -> suspend until the connectivity monitor reports online;
  3. empty outbox -> suspend until something is enqueued;
  4. head not due yet -> suspend until `next_attempt_at_ms` (or a wake-up);
  5. otherwise execute the head: success -> commit, failure -> classify ->
     retry scheduler -> requeue in place or roll back.

At most one transport call is in flight, which is what keeps commit order
equal to enqueue order. Every suspension is interrupted by connectivity
changes and by `stop()`. An in-flight call is only cancelled if the transport
declares `supports_abort`; otherwise it is allowed to finish and its outcome is
processed (the effect's idempotency makes the call safe either way).

A request timeout counts as a transient failure, but a non-abortable call that
timed out keeps the slot busy: no further call (retry of the same head or the
next effect) starts until it has returned. Its late outcome is logged and
ignored.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..api.errors import EffectError, PersistenceFailure, ReconcileError, StateCorruption
from ..core.config import OutboxConfig
from ..core.log import get_logger, log_context
from ..core.time import Clock
from ..protocol.models import FailureKind, OutboxEntry
from ..transport.base import NetworkTransport, TransportResult, classify_exception
from .connectivity import Connectivity, ConnectivityMonitor
from .metrics import OutboxMetrics
from .outbox import EffectOutbox
from .reconciler import Reconciler
from .retry import RetryScheduler

ErrorClassifier = Callable[[BaseException], FailureKind]


@dataclass(frozen=True)
class CallOutcome:
    """Normalized result of one transport call."""

    ok: bool
    response: Any = None
    kind: FailureKind | None = None
    error: str | None = None


@dataclass(frozen=True)
class _PendingCommit:
    entry: OutboxEntry
    response: Any = None


@dataclass(frozen=True)
class _PendingRollback:
    entry: OutboxEntry
    error: EffectError


class EffectExecutor:
    def __init__(
        self,
        *,
        outbox: EffectOutbox,
        reconciler: Reconciler,
        scheduler: RetryScheduler,
        transport: NetworkTransport,
        connectivity: ConnectivityMonitor,
        cfg: OutboxConfig,
        clock: Clock,
        metrics: OutboxMetrics,
        classify: ErrorClassifier = classify_exception,
    ) -> None:
        self.outbox = outbox
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.transport = transport
        self.connectivity = connectivity
        self.cfg = cfg
        self.clock = clock
        self.metrics = metrics
        self.classify = classify
        self.log = get_logger("executor")

        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._wake = asyncio.Event()
        self._offline = asyncio.Event()
        self._unsubscribe: Callable[[], None] | None = None
        self._pending: _PendingCommit | _PendingRollback | None = None
        self._strays: set[asyncio.Task] = set()
        self.error: BaseException | None = None

    # ---- lifecycle

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def resolving(self) -> bool:
        """True while a commit/rollback is waiting to be dispatched again."""
        return self._pending is not None

    @property
    def supports_abort(self) -> bool:
        return bool(getattr(self.transport, "supports_abort", False))

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self.error = None
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity)
        self._on_connectivity(self.connectivity.status())
        self._task = asyncio.create_task(self._loop(), name="effectkit-executor")

    async def stop(self) -> None:
        """
        Stop the loop. A non-abortable in-flight call gets up to
        `cfg.shutdown_grace_ms` to finish and be resolved; unresolved entries
        stay persisted and resume on the next start.
        """
        self._stopping.set()
        self._wake.set()
        if self._task:
            task, self._task = self._task, None
            # the in-flight call is bounded by the grace inside _attempt; this bounds
            # everything else (e.g. a snapshot write retrying forever)
            _, pending = await asyncio.wait({task}, timeout=2 * self.cfg.shutdown_grace_ms / 1000.0)
            if pending:
                self.log.warning("executor did not stop in time; cancelling", event="executor.stop.cancel")
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        await self._reap_strays()

    # ---- connectivity

    def _online(self) -> bool:
        return self.connectivity.status() is Connectivity.online

    def _on_connectivity(self, status: Connectivity) -> None:
        if status is Connectivity.online:
            self._offline.clear()
        else:
            self._offline.set()
        self._wake.set()

    # ---- main loop

    async def _loop(self) -> None:
        self.log.info("executor started", event="executor.start", pending=len(self.outbox))
        try:
            while not self._stopping.is_set():
                await self.step()
        except Exception as e:
            # StateCorruption or a bug: stop draining, keep the outbox intact
            self.error = e
            self.log.critical("executor crashed", event="executor.crash", exc_info=e)
        finally:
            self.log.info("executor stopped", event="executor.stop", pending=len(self.outbox))

    async def step(self) -> None:
        """Run one iteration of the drain loop (suspends when there is nothing to do)."""
        if self._pending is not None:
            if not await self._finish_pending():
                await self._suspend(self.cfg.resolve_retry_ms)
            return

        if not self._online():
            self.log.debug("offline; waiting", event="executor.offline", pending=len(self.outbox))
            await self._suspend(None)
            return

        head = self.outbox.peek_head()
        if head is None:
            await self._suspend(None)
            return

        due_in = head.next_attempt_at_ms - self.clock.now_ms()
        if due_in > 0:
            await self._suspend(due_in)
            return

        if self._strays:
            # a timed-out call is still running: the single slot stays busy
            await self._await_strays()
            return

        await self._run_head(head)

    async def _suspend(self, timeout_ms: int | None) -> None:
        """Wait for an outbox change, a wake-up (connectivity/stop) or the timeout."""
        waiters = [
            asyncio.create_task(self.outbox.wait_changed()),
            asyncio.create_task(self._wake.wait()),
        ]
        if timeout_ms is not None:
            waiters.append(asyncio.create_task(self.clock.sleep_ms(timeout_ms)))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        self._wake.clear()

    # ---- one execution

    async def _run_head(self, head: OutboxEntry) -> None:
        with log_context(entry_id=head.entry_id, effect_key=head.idempotency_key, attempt=head.attempt + 1):
            outcome = await self._attempt(head)
            if outcome is None:
                return  # aborted before completion; not counted

            if outcome.ok:
                self._pending = _PendingCommit(entry=head, response=outcome.response)
            else:
                kind = outcome.kind or FailureKind.transient
                decision = self.scheduler.decide(head, kind, error=outcome.error)
                if decision.retry:
                    await self._requeue(head, decision.delay_ms, decision.attempt, outcome.error)
                    return
                if decision.error is None:
                    raise StateCorruption(f"rollback decision for {head.entry_id} carries no error")
                self._pending = _PendingRollback(entry=head, error=decision.error)

            if not await self._finish_pending():
                await self._suspend(self.cfg.resolve_retry_ms)

    async def _requeue(self, head: OutboxEntry, delay_ms: int, attempt: int, error: str | None) -> None:
        try:
            await self.outbox.requeue_head(delay_ms, attempt=attempt, error=error)
        except PersistenceFailure as e:
            # the attempt is not recorded; the head is executed again after a pause
            self.log.error("could not persist retry", event="executor.requeue.failed", error=repr(e))
            await self._suspend(self.cfg.resolve_retry_ms)
            return
        self.metrics.retries_scheduled.inc()
        self.log.info(
            "transient failure; retry scheduled",
            event="executor.retry",
            next_attempt=attempt + 1,
            delay_ms=delay_ms,
            error=error,
        )

    async def _finish_pending(self) -> bool:
        p = self._pending
        if p is None:
            return True
        try:
            if isinstance(p, _PendingCommit):
                await self.reconciler.commit(p.entry, p.response)
            else:
                await self.reconciler.rollback(p.entry, p.error)
        except ReconcileError:
            return False
        self._pending = None
        return True

    async def _attempt(self, head: OutboxEntry) -> CallOutcome | None:
        """
        Execute the head's request once. Returns None when the call was aborted
        (connectivity loss or stop with an abortable transport, or stop grace
        exceeded) and must not count as an attempt.
        """
        self.metrics.attempts.inc()
        timeout_ms = head.descriptor.timeout_ms or self.cfg.request_timeout_ms
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        done_timer = self.metrics.call_duration_ms.start()

        call = asyncio.create_task(self._call(head), name=f"effectkit-call-{head.entry_id}")
        offline_w = asyncio.create_task(self._offline.wait())
        stop_w = asyncio.create_task(self._stopping.wait())
        interrupters = {offline_w, stop_w}
        stop_deadline: float | None = None
        self.log.debug("executing effect", event="executor.call", target=head.descriptor.request.target)
        try:
            while True:
                limit = deadline if stop_deadline is None else min(deadline, stop_deadline)
                remaining = limit - loop.time()
                if remaining <= 0:
                    if stop_deadline is not None and stop_deadline <= deadline:
                        self._abandon(call, reason="shutdown")
                        return None
                    self._abandon(call, reason="timeout")
                    return CallOutcome(ok=False, kind=FailureKind.transient, error=f"timed out after {timeout_ms} ms")

                done, _ = await asyncio.wait(
                    {call, *interrupters}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if call in done:
                    return call.result()
                if not done:
                    continue

                if self.supports_abort:
                    call.cancel()
                    await asyncio.gather(call, return_exceptions=True)
                    self.log.info("in-flight call aborted", event="executor.call.aborted")
                    return None

                # not abortable: the call finishes and its outcome is processed
                interrupters -= done
                if stop_w in done:
                    stop_deadline = loop.time() + self.cfg.shutdown_grace_ms / 1000.0
                    self.log.info("stopping; waiting for in-flight call", event="executor.call.drain")
                if offline_w in done:
                    self.log.info("connectivity lost; letting in-flight call finish", event="executor.call.offline")
        finally:
            done_timer()
            for w in (offline_w, stop_w):
                w.cancel()
            await asyncio.gather(offline_w, stop_w, return_exceptions=True)

    async def _call(self, head: OutboxEntry) -> CallOutcome:
        try:
            res = await self.transport.execute(head.descriptor.request, idempotency_key=head.idempotency_key)
        except Exception as e:  # noqa: BLE001
            kind = self.classify(e)
            self.log.info("effect call failed", event="executor.call.error", kind=kind.value, error=repr(e))
            return CallOutcome(ok=False, kind=kind, error=str(e) or type(e).__name__)

        if not isinstance(res, TransportResult):
            return CallOutcome(ok=True, response=res)
        if res.ok:
            return CallOutcome(ok=True, response=res.response)
        kind = res.failure_kind()
        self.log.info(
            "effect call rejected", event="executor.call.failed", kind=kind.value, status=res.status, error=res.error
        )
        return CallOutcome(ok=False, kind=kind, error=res.error or f"status {res.status}")

    # ---- stray calls

    def _abandon(self, call: asyncio.Task, *, reason: str) -> None:
        if self.supports_abort:
            call.cancel()
        self._strays.add(call)
        call.add_done_callback(self._stray_done)
        self.log.warning("in-flight call left running", event="executor.call.abandoned", reason=reason)

    def _stray_done(self, call: asyncio.Task) -> None:
        self._strays.discard(call)
        if call.cancelled():
            return
        out = call.result()
        self.log.info("late call outcome ignored", event="executor.call.late", ok=out.ok, error=out.error)

    async def _await_strays(self) -> None:
        """Wait until every abandoned call has finished, or until stop."""
        self.log.debug("waiting for timed-out call to finish", event="executor.call.wait", strays=len(self._strays))
        stop_w = asyncio.create_task(self._stopping.wait())
        try:
            await asyncio.wait({*self._strays, stop_w}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_w.cancel()
            await asyncio.gather(stop_w, return_exceptions=True)

    async def _reap_strays(self) -> None:
        if not self._strays:
            return
        pending = list(self._strays)
        _, still = await asyncio.wait(pending, timeout=self.cfg.shutdown_grace_ms / 1000.0)
        for t in still:
            t.cancel()
        await asyncio.gather(*still, return_exceptions=True)
