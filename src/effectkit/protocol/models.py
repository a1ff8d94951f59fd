# src/effectkit/protocol/models.py
from __future__ import annotations

"""
effectkit data model
====================

Everything that crosses the persistence boundary lives here. Effects are
**data**, never callables: an `EffectDescriptor` names the request to perform
and the two actions that reconcile its outcome, so a pending effect survives a
process restart.

Design principles:
- Pydantic v2 models with `extra="forbid"` to fail fast on unknown fields.
- Models are frozen; changes produce copies (`model_copy(update=...)`).
- All timestamps are epoch milliseconds (UTC).
- `Snapshot.version` is the persisted schema version.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.types import SNAPSHOT_VERSION
from ..core.utils import nanoid

# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #


class FailureKind(str, Enum):
    """Classification of a failed effect execution."""

    transient = "transient"
    permanent = "permanent"


class Resolution(str, Enum):
    """How an outbox entry was resolved."""

    committed = "committed"
    rolled_back = "rolled_back"
    exhausted = "exhausted"


# --------------------------------------------------------------------------- #
# Effect description
# --------------------------------------------------------------------------- #


class RequestSpec(BaseModel):
    """
    Transport-agnostic description of a side effect.

    Fields:
        target: What the effect addresses (URL, path, topic, RPC name...).
        verb: Operation on the target (e.g. PUT/PATCH/POST).
        body: JSON-serializable request body.
        headers: Extra transport metadata.

    The outbox never interprets these; only the transport does.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    target: str
    verb: str = "POST"
    body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)


class RetryPolicyOverride(BaseModel):
    """Per-effect overrides of the store's retry policy. Unset fields keep the default."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int | None = Field(default=None, ge=1)
    unbounded: bool = False  # True = retry forever regardless of max_attempts
    base_ms: int | None = Field(default=None, ge=0)
    max_ms: int | None = Field(default=None, ge=0)
    multiplier: float | None = Field(default=None, ge=1.0)
    jitter_pct: float | None = Field(default=None, ge=0.0, le=1.0)


class Action(BaseModel):
    """
    Something that happened, fed to the reducer.

    `effect` is optional: when present the action is an optimistic update and
    the descriptor is queued for execution. `meta` carries reconciliation data
    on commit/rollback actions (see `Reconciler`).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: str
    payload: Any = None
    effect: EffectDescriptor | None = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind")
    @classmethod
    def _kind_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("action kind must be a non-empty string")
        return v


class EffectDescriptor(BaseModel):
    """
    A declarative side effect paired with its reconciliation actions.

    `idempotency_key` must stay the same for the same logical operation across
    retries and restarts; it is what makes re-execution safe. The runtime does
    not check it, it only forwards it to the transport.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    idempotency_key: str = Field(min_length=1)
    request: RequestSpec
    commit_action: Action
    rollback_action: Action
    retry_policy: RetryPolicyOverride | None = None
    timeout_ms: int | None = Field(default=None, gt=0)


Action.model_rebuild()


# --------------------------------------------------------------------------- #
# Outbox state
# --------------------------------------------------------------------------- #


class OutboxEntry(BaseModel):
    """
    A queued descriptor plus its execution bookkeeping.

    Fields:
        entry_id: Unique id of this queue slot (distinct from the idempotency key).
        attempt: Number of executions already made and failed transiently.
        enqueued_at_ms: When the descriptor was queued.
        next_attempt_at_ms: Earliest time the executor may run it again.
        last_error: Text of the last transient failure, for diagnostics.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    entry_id: str = Field(default_factory=nanoid)
    descriptor: EffectDescriptor
    attempt: int = Field(default=0, ge=0)
    enqueued_at_ms: int
    next_attempt_at_ms: int
    last_error: str | None = None

    @property
    def idempotency_key(self) -> str:
        return self.descriptor.idempotency_key

    @classmethod
    def new(cls, descriptor: EffectDescriptor, *, now_ms: int) -> OutboxEntry:
        return cls(descriptor=descriptor, enqueued_at_ms=now_ms, next_attempt_at_ms=now_ms)


class Snapshot(BaseModel):
    """What the persistence adapter stores: application state + outbox, written together."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    version: int = SNAPSHOT_VERSION
    state: Any = None
    entries: list[OutboxEntry] = Field(default_factory=list)


__all__ = [
    "Action",
    "EffectDescriptor",
    "FailureKind",
    "OutboxEntry",
    "RequestSpec",
    "Resolution",
    "RetryPolicyOverride",
    "Snapshot",
]
