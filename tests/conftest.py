# conftest.py
from __future__ import annotations

import os
import uuid
from typing import Any

import pytest
import pytest_asyncio

from effectkit.core.config import OutboxConfig
from effectkit.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from effectkit.core.time import ManualClock
from effectkit.runtime.connectivity import ManualConnectivity
from effectkit.runtime.store import EffectStore
from effectkit.storage.memory import InMemoryPersistence
from tests.helpers import ScriptedTransport, initial_state, items_reducer


def pytest_configure(config):
    config.addinivalue_line("markers", "cfg(**overrides): per-test OutboxConfig overrides")


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit effectkit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_effectkit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    # unless enabled via env, turn it on here (human-readable by default)
    if os.getenv("EFFECTKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    if rep.when == "call":
        log = get_logger("test")
        with log_context(pytest_nodeid=item.nodeid, test=item.name):
            log.debug(
                "pytest.test.finish",
                event="pytest.test.finish",
                outcome=rep.outcome,
                duration=getattr(rep, "duration", None),
            )


@pytest.fixture
def tlog(request):
    """Per-test logger with the test node id bound."""
    return get_logger(f"test.{request.node.name}")


# ---------------------------------------------------------------------------
# Store wiring
# ---------------------------------------------------------------------------

# Backoff waits run on the ManualClock (instant); request timeouts and the
# shutdown grace are real event-loop time, so keep them short.
_FAST_CFG: dict[str, Any] = {
    "max_attempts": 5,
    "backoff_base_ms": 100,
    "backoff_max_ms": 1_000,
    "backoff_jitter_pct": 0.0,
    "request_timeout_sec": 2.0,
    "resolve_retry_sec": 0.01,
    "shutdown_grace_sec": 0.2,
    "persist_max_attempts": 3,
    "persist_backoff_ms": 1,
}


def _cfg_overrides_from_marker(request) -> dict[str, Any]:
    m = request.node.get_closest_marker("cfg")
    return dict(m.kwargs) if m else {}


@pytest.fixture
def fast_cfg(request) -> OutboxConfig:
    return OutboxConfig(**{**_FAST_CFG, **_cfg_overrides_from_marker(request)})


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock(start_ms=1_700_000_000_000)


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(online=True)


@pytest_asyncio.fixture
async def make_store(fast_cfg, manual_clock, persistence, transport, connectivity):
    """
    Factory for EffectStore instances sharing the test's clock and config.
    Defaults come from the function-scoped fixtures; every store is stopped at teardown.
    """
    created: list[EffectStore] = []

    def _make(**kw: Any) -> EffectStore:
        kw.setdefault("reducer", items_reducer)
        kw.setdefault("initial_state", initial_state())
        kw.setdefault("transport", transport)
        kw.setdefault("persistence", persistence)
        kw.setdefault("connectivity", connectivity)
        kw.setdefault("cfg", fast_cfg)
        kw.setdefault("clock", manual_clock)
        store = EffectStore(**kw)
        created.append(store)
        return store

    yield _make

    for s in created:
        await s.stop()


@pytest_asyncio.fixture
async def store(make_store) -> EffectStore:
    s = make_store(name="test-store")
    await s.start()
    return s

