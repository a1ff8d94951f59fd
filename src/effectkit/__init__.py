from __future__ import annotations

# Runtime package version, provided by setuptools_scm during build.
try:
    # created at build time by setuptools_scm (see [tool.setuptools_scm].version_file)
    from ._version import __version__
except ImportError:  # pragma: no cover
    from importlib.metadata import PackageNotFoundError, version as _pkg_version

    try:
        __version__ = _pkg_version("effectkit")
    except PackageNotFoundError:
        __version__ = "0.0.0"

from .api.errors import (
    PermanentEffectError,
    PersistenceFailure,
    RetryExhausted,
    StateCorruption,
    TransientEffectError,
)
from .core.config import OutboxConfig
from .protocol.models import Action, EffectDescriptor, OutboxEntry, RequestSpec, RetryPolicyOverride
from .runtime.connectivity import Connectivity, ManualConnectivity, PollingConnectivity
from .runtime.store import EffectStore
from .storage import FilePersistence, InMemoryPersistence
from .transport.base import TransportResult

__all__ = [
    "Action",
    "Connectivity",
    "EffectDescriptor",
    "EffectStore",
    "FilePersistence",
    "InMemoryPersistence",
    "ManualConnectivity",
    "OutboxConfig",
    "OutboxEntry",
    "PermanentEffectError",
    "PersistenceFailure",
    "PollingConnectivity",
    "RequestSpec",
    "RetryExhausted",
    "RetryPolicyOverride",
    "StateCorruption",
    "TransientEffectError",
    "TransportResult",
    "__version__",
]
