# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Persistence contract for the effect outbox.

The embedding application supplies a `PersistenceAdapter` that stores one
opaque blob: the serialized `Snapshot` of application state and outbox
entries. The runtime always writes both halves together, so a restart never
observes a state change without its queued effect (or the reverse).

`SnapshotCodec` owns the encoding; the default is compact UTF-8 JSON produced
by pydantic, which round-trips any JSON-compatible application state exactly.
"""

from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from ..api.errors import StateCorruption
from ..core.types import SNAPSHOT_VERSION
from ..protocol.models import Snapshot

__all__ = [
    "JsonSnapshotCodec",
    "PersistenceAdapter",
    "SnapshotCodec",
]


@runtime_checkable
class PersistenceAdapter(Protocol):
    """
    Minimal durable storage for a single serialized snapshot.

    Implementations may use a file, SQLite, a key in a KV store, browser-like
    local storage, etc.
    """

    async def load(self) -> bytes | None:
        """Return the last saved snapshot, or None when nothing was saved yet."""
        ...

    async def save(self, data: bytes) -> bool | None:
        """
        Durably replace the stored snapshot.
        Return False (or raise) on failure; True/None means success.
        """
        ...


class SnapshotCodec(Protocol):
    def encode(self, snapshot: Snapshot) -> bytes: ...
    def decode(self, data: bytes) -> Snapshot: ...


class JsonSnapshotCodec:
    """UTF-8 JSON encoding of `Snapshot` via pydantic."""

    def encode(self, snapshot: Snapshot) -> bytes:
        return snapshot.model_dump_json().encode("utf-8")

    def decode(self, data: bytes) -> Snapshot:
        try:
            snap = Snapshot.model_validate_json(data)
        except ValidationError as e:
            raise StateCorruption(f"persisted snapshot is unreadable: {e}") from e
        if snap.version != SNAPSHOT_VERSION:
            raise StateCorruption(f"unsupported snapshot version {snap.version} (expected {SNAPSHOT_VERSION})")
        return snap
