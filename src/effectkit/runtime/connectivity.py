# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Connectivity monitors.

A monitor reports `online`/`offline` and calls subscribers synchronously on
every transition. The executor subscribes and wakes the moment the status
flips to online.

- `ManualConnectivity`: push-based; the embedder (or a test) sets the status.
- `PollingConnectivity`: polls an async probe (e.g. a HEAD request) and emits
  transitions only.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol, runtime_checkable

from ..core.log import get_logger, swallow
from ..core.time import Clock, SystemClock


class Connectivity(str, Enum):
    online = "online"
    offline = "offline"


Listener = Callable[[Connectivity], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class ConnectivityMonitor(Protocol):
    def status(self) -> Connectivity: ...
    def subscribe(self, callback: Listener) -> Unsubscribe: ...


class _ListenerSet:
    """Subscriber bookkeeping shared by the concrete monitors."""

    def __init__(self, initial: Connectivity) -> None:
        self._status = initial
        self._listeners: list[Listener] = []
        self.log = get_logger("connectivity")

    def status(self) -> Connectivity:
        return self._status

    @property
    def online(self) -> bool:
        return self._status is Connectivity.online

    def subscribe(self, callback: Listener) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _emit(self, status: Connectivity) -> None:
        if status is self._status:
            return
        self._status = status
        self.log.info("connectivity changed", event="connectivity.transition", status=status.value)
        for cb in list(self._listeners):
            with swallow(
                logger=self.log, code="connectivity.listener", msg="connectivity listener raised", level=logging.ERROR
            ):
                cb(status)


class ManualConnectivity(_ListenerSet):
    """Status set explicitly by the embedding application."""

    def __init__(self, online: bool = True) -> None:
        super().__init__(Connectivity.online if online else Connectivity.offline)

    def set_status(self, status: Connectivity | str) -> None:
        self._emit(Connectivity(status))

    def set_online(self) -> None:
        self._emit(Connectivity.online)

    def set_offline(self) -> None:
        self._emit(Connectivity.offline)


class PollingConnectivity(_ListenerSet):
    """
    Polls `probe()` every `interval_ms`. A probe that returns False or raises
    counts as offline.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        *,
        interval_ms: int = 2000,
        initial: Connectivity = Connectivity.offline,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(initial)
        self.probe = probe
        self.interval_ms = interval_ms
        self.clock: Clock = clock or SystemClock()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        await self.check_now()
        self._task = asyncio.create_task(self._loop(), name="effectkit-connectivity")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None

    async def check_now(self) -> Connectivity:
        """Probe immediately and emit a transition if the status changed."""
        try:
            ok = bool(await self.probe())
        except Exception as e:  # noqa: BLE001
            self.log.debug("probe failed", event="connectivity.probe.failed", error=repr(e))
            ok = False
        self._emit(Connectivity.online if ok else Connectivity.offline)
        return self._status

    async def _loop(self) -> None:
        while True:
            await self.clock.sleep_ms(self.interval_ms)
            await self.check_now()
