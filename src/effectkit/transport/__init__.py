# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Transport abstractions.
"""

from .base import NetworkTransport, TransportResult, classify_exception, classify_status

__all__ = [
    "NetworkTransport",
    "TransportResult",
    "classify_exception",
    "classify_status",
]
