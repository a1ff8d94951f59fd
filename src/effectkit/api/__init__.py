# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
effectkit public extension API: the error taxonomy raised by transports,
persistence adapters and the runtime.
"""

from .errors import (
    EffectError,
    EffectkitError,
    PermanentEffectError,
    PersistenceFailure,
    ReconcileError,
    ReducerFault,
    RetryExhausted,
    StateCorruption,
    TransientEffectError,
)

__all__ = [
    "EffectError",
    "EffectkitError",
    "PermanentEffectError",
    "PersistenceFailure",
    "ReconcileError",
    "ReducerFault",
    "RetryExhausted",
    "StateCorruption",
    "TransientEffectError",
]
