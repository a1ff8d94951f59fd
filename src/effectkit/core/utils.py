from __future__ import annotations

"""
effectkit.core.utils
====================

Low-level helpers with no external dependencies:
- Jitter for retry backoff.
- Exponential backoff computation.
- NanoID generator for outbox entry ids.
"""

from secrets import choice, randbelow

from .types import DEFAULT_NANOID_ALPHABET, DEFAULT_NANOID_SIZE


def jitter_ms(base_ms: int, *, pct: float = 0.20, floor_ms: int = 0) -> int:
    """
    Symmetric jitter around `base_ms`: result in [base*(1-pct), base*(1+pct)],
    clamped to at least `floor_ms`.
    """
    if base_ms <= 0 or pct <= 0:
        return max(floor_ms, base_ms)
    span = int(base_ms * pct)
    delta = randbelow(2 * span + 1) - span
    return max(floor_ms, base_ms + delta)


def exp_backoff_ms(attempt: int, *, base_ms: int, max_ms: int, multiplier: float = 2.0) -> int:
    """
    Un-jittered exponential delay for the given 1-based attempt:
        base_ms * multiplier ** (attempt - 1), capped at max_ms.
    """
    n = min(max(1, int(attempt)), 64)  # float overflow guard
    delay = base_ms * (multiplier ** (n - 1))
    return int(min(max_ms, max(base_ms, delay)))


def nanoid(size: int = DEFAULT_NANOID_SIZE, alphabet: str = DEFAULT_NANOID_ALPHABET) -> str:
    """URL-safe random id (cryptographically strong)."""
    if size <= 0:
        raise ValueError("size must be positive")
    if not alphabet:
        raise ValueError("alphabet must be a non-empty string")
    return "".join(choice(alphabet) for _ in range(size))
