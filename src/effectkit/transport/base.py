# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Network transport abstraction.

This module defines:
- `NetworkTransport` protocol: executes one `RequestSpec`.
- `TransportResult`: normalized success/failure outcome with a classification hint.
- `classify_status` / `classify_exception`: map HTTP-like statuses and raised
  exceptions onto transient vs. permanent failures.

Concrete transports (HTTP clients, RPC stubs, message producers) belong to the
embedding application and only need to satisfy the protocol.
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..api.errors import PermanentEffectError, TransientEffectError
from ..protocol.models import FailureKind, RequestSpec

__all__ = [
    "NetworkTransport",
    "TransportResult",
    "classify_exception",
    "classify_status",
]


@dataclass(frozen=True)
class TransportResult:
    """
    Outcome of one transport call.

    Attributes:
        ok: True when the remote side accepted the effect.
        response: JSON-serializable response body (success only).
        error: Human-readable failure description (failure only).
        hint: Transport's own classification; None means "derive from status".
        status: Optional HTTP-like status code.
    """

    ok: bool
    response: Any = None
    error: str | None = None
    hint: FailureKind | None = None
    status: int | None = None

    @classmethod
    def success(cls, response: Any = None, *, status: int | None = None) -> TransportResult:
        return cls(ok=True, response=response, status=status)

    @classmethod
    def failure(
        cls, error: str, *, hint: FailureKind | str | None = None, status: int | None = None
    ) -> TransportResult:
        return cls(ok=False, error=error, hint=FailureKind(hint) if hint is not None else None, status=status)

    def failure_kind(self) -> FailureKind:
        """Classification of a failed result (hint first, then status, else transient)."""
        if self.hint is not None:
            return self.hint
        if self.status is not None:
            return classify_status(self.status)
        return FailureKind.transient


@runtime_checkable
class NetworkTransport(Protocol):
    """
    Executes effect requests.

    Implementations should:
      - forward `idempotency_key` to the remote side (header, request id...),
      - return `TransportResult` or raise `TransientEffectError`/`PermanentEffectError`,
      - set `supports_abort = True` only if cancelling an in-flight call is safe.
    """

    supports_abort: bool

    async def execute(self, request: RequestSpec, *, idempotency_key: str) -> TransportResult: ...


def classify_status(status: int) -> FailureKind:
    """
    Map an HTTP-like status to a failure kind:
      408/425/429 and 5xx -> transient (try again later),
      any other 4xx -> permanent (the request itself is wrong),
      anything else -> transient.
    """
    if status in (408, 425, 429) or status >= 500:
        return FailureKind.transient
    if 400 <= status < 500:
        return FailureKind.permanent
    return FailureKind.transient


def classify_exception(exc: BaseException) -> FailureKind:
    """Map an exception raised by a transport to a failure kind."""
    if isinstance(exc, PermanentEffectError):
        return FailureKind.permanent
    if isinstance(exc, TransientEffectError):
        return FailureKind.transient
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return classify_status(status)
    # timeouts, connection resets and unknown errors are retried; the retry budget bounds them
    return FailureKind.transient
