from __future__ import annotations

"""
effectkit.core.log
==================

Logging for the effect pipeline.

Every module logs through `get_logger(<component>)`, a child of the
`effectkit` logger that stays silent (NullHandler) until the embedding
application calls `enable_stdout_logging()` or `configure_from_env()`.

Call sites pass structured fields as keywords:

    log.info("transient failure; retry scheduled", event="executor.retry", delay_ms=200)

and the executor/store bind per-effect fields (store, entry_id, effect_key,
attempt) with `log_context(...)`, so every record emitted while an effect is
being worked on carries them.
"""

import contextvars
import json
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar

__all__ = [
    "bind_context",
    "configure_from_env",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "swallow",
]

ROOT_LOGGER = "effectkit"

_fields: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar("effectkit_log_fields", default=None)


def _current() -> dict[str, Any]:
    return _fields.get() or {}


def _merged(fields: dict[str, Any]) -> dict[str, Any]:
    return {**_current(), **{k: v for k, v in fields.items() if v is not None}}


def bind_context(**fields: Any) -> None:
    """Add fields to the current context for good (e.g. a session-wide role)."""
    _fields.set(_merged(fields))


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    token = _fields.set(_merged(fields))
    try:
        yield
    finally:
        _fields.reset(token)


# attributes every LogRecord has; anything else on a record is a caller field
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


def _caller_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """One JSON object per record; context fields first, then the call site's fields."""

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC)
        doc: dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_current(),
        }
        for k, v in _caller_fields(record).items():
            doc.setdefault(k, v)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            doc["error"] = {"type": type(exc).__name__, "message": str(exc)}
            if self.include_stack:
                doc["error"]["stack"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """`time LEVEL logger: message  event [store=.. effect_key=..]` on one line."""

    shown: ClassVar[tuple[str, ...]] = ("store", "effect_key", "entry_id", "attempt")

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-5s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        event = getattr(record, "event", None)
        if event:
            line += f"  {event}"
        ctx = _current()
        tags = " ".join(f"{k}={ctx[k]}" for k in self.shown if k in ctx)
        if tags:
            line += f" [{tags}]"
        return line


class _FieldsAdapter(logging.LoggerAdapter):
    """Turns keyword fields into record attributes (`extra`)."""

    _logging_kwargs: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(kwargs.get("extra") or {})
        for k in list(kwargs):
            if k in self._logging_kwargs:
                continue
            # a field named like a record attribute would make logging raise
            extra.setdefault(f"field_{k}" if k in _RECORD_ATTRS else k, kwargs.pop(k))
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    root = logging.getLogger(ROOT_LOGGER)
    return _FieldsAdapter(root.getChild(name) if name else root, {})


def _level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid level name: {value!r}")
    return resolved


def _drop_stream_handlers(root: logging.Logger) -> None:
    for h in list(root.handlers):
        if isinstance(h, logging.StreamHandler) and h.get_name() in ("effectkit.stdout", "effectkit.stderr"):
            root.removeHandler(h)


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Replace any handlers installed by a previous call with a stdout handler.
    `pretty` selects `HumanFormatter`, otherwise `JsonFormatter` (or the plain
    stdlib format with `json_output=False`). With `route_errors_to_stderr`,
    ERROR and above go to stderr instead.
    """
    lvl = _level(level)
    root = logging.getLogger(ROOT_LOGGER)
    _drop_stream_handlers(root)

    if pretty:
        fmt: logging.Formatter = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    targets = [("effectkit.stdout", sys.stdout, lvl)]
    if route_errors_to_stderr:
        targets.append(("effectkit.stderr", sys.stderr, max(lvl, logging.ERROR)))
    for name, stream, threshold in targets:
        h = logging.StreamHandler(stream)
        h.set_name(name)
        h.setLevel(threshold)
        h.setFormatter(fmt)
        if route_errors_to_stderr and stream is sys.stdout:
            h.addFilter(lambda r: r.levelno < logging.ERROR)
        root.addHandler(h)


def configure_from_env() -> None:
    """
    EFFECTKIT_LOG_LEVEL (default DEBUG) sets the `effectkit` logger level.
    EFFECTKIT_LOG_STDOUT=1 attaches a stdout handler: JSON, or the human format
    with EFFECTKIT_LOG_PRETTY=1; EFFECTKIT_LOG_STACK=1 adds tracebacks to JSON.
    """

    def flag(name: str) -> bool:
        return os.getenv(name, "").lower() in ("1", "true", "yes", "on")

    level = os.getenv("EFFECTKIT_LOG_LEVEL", "DEBUG")
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(_level(level))
    if not flag("EFFECTKIT_LOG_STDOUT"):
        _drop_stream_handlers(root)
        return
    pretty = flag("EFFECTKIT_LOG_PRETTY")
    enable_stdout_logging(
        level=level, json_output=not pretty, include_stack=flag("EFFECTKIT_LOG_STACK"), pretty=pretty
    )


@contextmanager
def swallow(
    *,
    logger: logging.LoggerAdapter,
    code: str,
    msg: str = "suppressed exception",
    level: int = logging.DEBUG,
    reraise: bool = False,
) -> Iterator[None]:
    """
    Log an exception from a callback instead of letting it escape:

        with swallow(logger=self.log, code="connectivity.listener", msg="listener raised"):
            cb(status)
    """
    try:
        yield
    except Exception as e:
        logger.log(level, msg, exc_info=e, code=code)
        if reraise:
            raise


_root = logging.getLogger(ROOT_LOGGER)
_root.setLevel(logging.DEBUG)
if not any(isinstance(h, logging.NullHandler) for h in _root.handlers):
    _root.addHandler(logging.NullHandler())
