from __future__ import annotations

"""
effectkit.core.config
=====================

Strongly-typed configuration for an EffectStore.
- No external deps; optional JSON file loading.
- Derives millisecond fields from seconds to avoid repeated conversions.
- Provides small env overrides for convenience.

If a config file path is not provided or not found, defaults are used.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .log import get_logger, swallow

_log = get_logger("config")


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path or not path.exists():
        return {}
    with swallow(
        logger=_log, code="config.load_json", msg="Config file unreadable; using defaults", level=logging.WARNING
    ):
        return json.loads(path.read_text(encoding="utf-8"))
    return {}


def _optional_int(raw: str) -> int | None:
    raw = raw.strip().lower()
    if raw in ("", "none", "unbounded", "inf"):
        return None
    return int(raw)


@dataclass
class OutboxConfig:
    """Retry, timeout and persistence knobs for one store."""

    # ---- Retry policy defaults (per-descriptor overrides win)
    max_attempts: int | None = 8  # None = retry forever
    backoff_base_ms: int = 250
    backoff_max_ms: int = 60_000
    backoff_multiplier: float = 2.0
    backoff_jitter_pct: float = 0.2

    # ---- Timings (seconds)
    request_timeout_sec: float = 30.0
    resolve_retry_sec: float = 1.0
    shutdown_grace_sec: float = 10.0
    connectivity_poll_sec: float = 2.0

    # ---- Persistence
    persist_max_attempts: int | None = 5  # None = retry until it succeeds
    persist_backoff_ms: int = 100

    # ---- Derived (ms)
    request_timeout_ms: int = 0
    resolve_retry_ms: int = 0
    shutdown_grace_ms: int = 0
    connectivity_poll_ms: int = 0

    # ---- Methods ------------------------------------------------------------

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        if self.persist_max_attempts is not None and self.persist_max_attempts < 1:
            raise ValueError("persist_max_attempts must be >= 1 or None")
        if self.backoff_base_ms < 0 or self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError("backoff bounds must satisfy 0 <= backoff_base_ms <= backoff_max_ms")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        if not 0.0 <= self.backoff_jitter_pct <= 1.0:
            raise ValueError("backoff_jitter_pct must be within [0, 1]")
        if self.request_timeout_sec <= 0:
            raise ValueError("request_timeout_sec must be positive")
        self._derive_ms()

    def _derive_ms(self) -> None:
        """Populate millisecond fields derived from second-based values."""
        self.request_timeout_ms = int(self.request_timeout_sec * 1000)
        self.resolve_retry_ms = int(self.resolve_retry_sec * 1000)
        self.shutdown_grace_ms = int(self.shutdown_grace_sec * 1000)
        self.connectivity_poll_ms = int(self.connectivity_poll_sec * 1000)

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> OutboxConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - EFFECTKIT_MAX_ATTEMPTS (int or "unbounded")
          - EFFECTKIT_REQUEST_TIMEOUT_SEC
          - EFFECTKIT_PERSIST_MAX_ATTEMPTS (int or "unbounded")
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        if os.getenv("EFFECTKIT_MAX_ATTEMPTS"):
            data["max_attempts"] = _optional_int(os.environ["EFFECTKIT_MAX_ATTEMPTS"])
        if os.getenv("EFFECTKIT_REQUEST_TIMEOUT_SEC"):
            data["request_timeout_sec"] = float(os.environ["EFFECTKIT_REQUEST_TIMEOUT_SEC"])
        if os.getenv("EFFECTKIT_PERSIST_MAX_ATTEMPTS"):
            data["persist_max_attempts"] = _optional_int(os.environ["EFFECTKIT_PERSIST_MAX_ATTEMPTS"])

        if overrides:
            data.update(overrides)

        return cls(**data)
