from .persistence import FlakyPersistence
from .reducer import FlakyReducer, add_item, initial_state, items_reducer, resolutions
from .transport import (
    IdempotentServer,
    NonIdempotentServer,
    ScriptedTransport,
    lost_response,
    rejected,
    slow,
)
from .util import wait_until

__all__ = [
    "FlakyPersistence",
    "FlakyReducer",
    "IdempotentServer",
    "NonIdempotentServer",
    "ScriptedTransport",
    "add_item",
    "initial_state",
    "items_reducer",
    "lost_response",
    "rejected",
    "resolutions",
    "slow",
    "wait_until",
]
