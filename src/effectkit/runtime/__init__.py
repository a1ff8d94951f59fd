# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Runtime: outbox, retry scheduler, executor, reconciler, action bus and the
EffectStore that wires them together.
"""

from .bus import ActionBus
from .connectivity import Connectivity, ConnectivityMonitor, ManualConnectivity, PollingConnectivity
from .executor import EffectExecutor
from .journal import SnapshotJournal
from .metrics import OutboxMetrics
from .outbox import EffectOutbox
from .reconciler import Reconciler
from .retry import RetryDecision, RetryPolicy, RetryScheduler
from .store import EffectStore

__all__ = [
    "ActionBus",
    "Connectivity",
    "ConnectivityMonitor",
    "EffectExecutor",
    "EffectOutbox",
    "EffectStore",
    "ManualConnectivity",
    "OutboxMetrics",
    "PollingConnectivity",
    "Reconciler",
    "RetryDecision",
    "RetryPolicy",
    "RetryScheduler",
    "SnapshotJournal",
]
