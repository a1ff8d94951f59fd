from __future__ import annotations

"""
effectkit.core.types
====================

Shared aliases and constants. Keep this module tiny and dependency-free.
"""

from collections.abc import Callable
from typing import Any, Final

Millis = int
TimestampMs = int  # wall-clock epoch timestamp (ms)
MonotonicMs = int  # process-local monotonic time (ms)

# (state, action) -> next state. The action type lives in protocol.models.
Reducer = Callable[[Any, Any], Any]

SNAPSHOT_VERSION: Final[int] = 1

DEFAULT_NANOID_ALPHABET: Final[str] = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz-"
DEFAULT_NANOID_SIZE: Final[int] = 21


__all__ = [
    "Millis",
    "TimestampMs",
    "MonotonicMs",
    "Reducer",
    "SNAPSHOT_VERSION",
    "DEFAULT_NANOID_ALPHABET",
    "DEFAULT_NANOID_SIZE",
]
