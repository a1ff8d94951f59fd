# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
File-backed persistence adapter.

Writes go to a temporary sibling file which is fsync'ed and then atomically
renamed over the target, so a crash leaves either the old or the new snapshot,
never a torn one. Blocking I/O runs in a worker thread.
"""

import asyncio
import os
import tempfile
from pathlib import Path

from ..core.log import get_logger

_log = get_logger("storage.file")


class FilePersistence:
    """Single-file snapshot store with atomic replace."""

    def __init__(self, path: str | os.PathLike[str], *, fsync: bool = True) -> None:
        self.path = Path(path)
        self.fsync = fsync

    async def load(self) -> bytes | None:
        return await asyncio.to_thread(self._read)

    async def save(self, data: bytes) -> bool:
        await asyncio.to_thread(self._write, data)
        return True

    # ---- blocking helpers

    def _read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None

    def _write(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                if self.fsync:
                    os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        _log.debug("snapshot written", event="storage.file.write", path=str(self.path), size=len(data))
