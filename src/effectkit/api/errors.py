# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for effectkit.

Effect errors (transient/permanent/exhausted) are raised by transports and by
the retry scheduler; the executor turns them into commit/rollback actions and
never lets them escape to the embedding application. Persistence and
corruption errors do surface to the embedder.
"""

from typing import Any


class EffectkitError(Exception):
    """Base class for all effectkit errors."""

    ...


class EffectError(EffectkitError):
    """Base for failures of a single effect execution."""

    def __init__(self, message: str = "", *, status: int | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail


class TransientEffectError(EffectError):
    """
    Network unreachable, timeout, server-unavailable class response.
    The executor retries according to the retry policy.
    """

    ...


class PermanentEffectError(EffectError):
    """
    The remote side rejected the request as structurally invalid.
    Retrying would be pointless; the effect is rolled back.
    """

    ...


class RetryExhausted(EffectError):
    """A transient failure that exceeded `max_attempts`; the effect is rolled back."""

    def __init__(self, message: str = "", *, attempts: int, last_error: str | None = None) -> None:
        super().__init__(message or f"gave up after {attempts} attempt(s)")
        self.attempts = attempts
        self.last_error = last_error


class PersistenceFailure(EffectkitError):
    """
    The persistence adapter could not durably write a snapshot.
    In-memory state and outbox have NOT advanced past the failed mutation.
    """

    def __init__(self, message: str = "", *, attempts: int = 1) -> None:
        super().__init__(message or "snapshot write failed")
        self.attempts = attempts


class StateCorruption(EffectkitError):
    """An internal invariant was violated (e.g. resolving an empty outbox). Signals a bug."""

    ...


class ReducerFault(EffectkitError):
    """The reducer raised while applying an action; nothing was changed."""

    def __init__(self, kind: str, cause: BaseException) -> None:
        super().__init__(f"reducer failed on action {kind!r}: {cause!r}")
        self.kind = kind
        self.__cause__ = cause


class ReconcileError(EffectkitError):
    """
    A commit/rollback action could not be dispatched. The outbox entry stays at
    the head and resolution is retried on the next tick.
    """

    def __init__(self, entry_id: str, cause: BaseException) -> None:
        super().__init__(f"could not resolve outbox entry {entry_id}: {cause!r}")
        self.entry_id = entry_id
        self.__cause__ = cause
