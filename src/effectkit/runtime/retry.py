# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Retry scheduling for failed effects.

`RetryScheduler.decide` is a pure function of the failed entry and the failure
classification; it never touches the network or the outbox. Its answer is
either "retry after N ms" or "roll back" (permanent failure, or transient
failures that used up the attempt budget, surfaced as `RetryExhausted`).
"""

from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import partial

from ..api.errors import EffectError, PermanentEffectError, RetryExhausted
from ..core.config import OutboxConfig
from ..core.utils import exp_backoff_ms, jitter_ms
from ..protocol.models import FailureKind, OutboxEntry, RetryPolicyOverride

Backoff = Callable[[int], int]


def _exp_jitter(attempt: int, *, base_ms: int, max_ms: int, multiplier: float, jitter_pct: float) -> int:
    base = exp_backoff_ms(attempt, base_ms=base_ms, max_ms=max_ms, multiplier=multiplier)
    return min(max_ms, jitter_ms(base, pct=jitter_pct))


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts: total executions allowed (None = unbounded).
    backoff: attempt number (1-based, the attempt that just failed) -> delay in ms.
    """

    max_attempts: int | None = 8
    backoff: Backoff = partial(_exp_jitter, base_ms=250, max_ms=60_000, multiplier=2.0, jitter_pct=0.2)
    # parameters of the exponential backoff, kept so overrides can adjust them
    base_ms: int = 250
    max_ms: int = 60_000
    multiplier: float = 2.0
    jitter_pct: float = 0.2

    @classmethod
    def exponential(
        cls,
        *,
        max_attempts: int | None = 8,
        base_ms: int = 250,
        max_ms: int = 60_000,
        multiplier: float = 2.0,
        jitter_pct: float = 0.2,
    ) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts,
            backoff=partial(_exp_jitter, base_ms=base_ms, max_ms=max_ms, multiplier=multiplier, jitter_pct=jitter_pct),
            base_ms=base_ms,
            max_ms=max_ms,
            multiplier=multiplier,
            jitter_pct=jitter_pct,
        )

    @classmethod
    def from_config(cls, cfg: OutboxConfig) -> RetryPolicy:
        return cls.exponential(
            max_attempts=cfg.max_attempts,
            base_ms=cfg.backoff_base_ms,
            max_ms=cfg.backoff_max_ms,
            multiplier=cfg.backoff_multiplier,
            jitter_pct=cfg.backoff_jitter_pct,
        )

    def merged(self, override: RetryPolicyOverride | None) -> RetryPolicy:
        """Apply a per-effect override. Backoff shape fields rebuild the exponential backoff."""
        if override is None:
            return self
        max_attempts = None if override.unbounded else (override.max_attempts or self.max_attempts)
        shape = {
            "base_ms": override.base_ms,
            "max_ms": override.max_ms,
            "multiplier": override.multiplier,
            "jitter_pct": override.jitter_pct,
        }
        if all(v is None for v in shape.values()):
            return replace(self, max_attempts=max_attempts)
        base_ms = shape["base_ms"] if shape["base_ms"] is not None else self.base_ms
        max_ms = shape["max_ms"] if shape["max_ms"] is not None else max(self.max_ms, base_ms)
        return RetryPolicy.exponential(
            max_attempts=max_attempts,
            base_ms=base_ms,
            max_ms=max(max_ms, base_ms),
            multiplier=shape["multiplier"] if shape["multiplier"] is not None else self.multiplier,
            jitter_pct=shape["jitter_pct"] if shape["jitter_pct"] is not None else self.jitter_pct,
        )


@dataclass(frozen=True)
class RetryDecision:
    """
    What to do with a failed head entry.

    action: "retry" (requeue with `delay_ms`, recording `attempt`) or "rollback".
    error: the terminal error for a rollback (PermanentEffectError or RetryExhausted).
    """

    action: str
    attempt: int
    delay_ms: int = 0
    error: EffectError | None = None

    @property
    def retry(self) -> bool:
        return self.action == "retry"


class RetryScheduler:
    """Decides retry vs. rollback for a failed effect using the (merged) retry policy."""

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self.policy = policy or RetryPolicy.exponential()

    def policy_for(self, entry: OutboxEntry) -> RetryPolicy:
        return self.policy.merged(entry.descriptor.retry_policy)

    def decide(self, entry: OutboxEntry, failure: FailureKind, *, error: str | None = None) -> RetryDecision:
        attempts_made = entry.attempt + 1
        if failure is FailureKind.permanent:
            return RetryDecision(
                action="rollback",
                attempt=attempts_made,
                error=PermanentEffectError(error or "effect rejected"),
            )

        policy = self.policy_for(entry)
        if policy.max_attempts is not None and attempts_made >= policy.max_attempts:
            return RetryDecision(
                action="rollback",
                attempt=attempts_made,
                error=RetryExhausted(attempts=attempts_made, last_error=error),
            )
        return RetryDecision(action="retry", attempt=attempts_made, delay_ms=max(0, int(policy.backoff(attempts_made))))
