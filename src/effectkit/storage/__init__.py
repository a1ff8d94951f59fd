# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Snapshot persistence: the adapter protocol, the default codec and two adapters.
"""

from .file import FilePersistence
from .memory import InMemoryPersistence
from .snapshot import JsonSnapshotCodec, PersistenceAdapter, SnapshotCodec

__all__ = [
    "FilePersistence",
    "InMemoryPersistence",
    "JsonSnapshotCodec",
    "PersistenceAdapter",
    "SnapshotCodec",
]
