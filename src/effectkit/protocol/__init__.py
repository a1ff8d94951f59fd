from __future__ import annotations

from .models import (
    Action,
    EffectDescriptor,
    FailureKind,
    OutboxEntry,
    RequestSpec,
    Resolution,
    RetryPolicyOverride,
    Snapshot,
)

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
