"""Flat-file JSON mirror used by both stores.

Each store owns one mirror. Writes are serialized through a lock and the
snapshot is taken inside it, so the last write to land always carries the
latest in-memory state. Files are replaced atomically (temp file + rename).
"""
from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

from scorehub.errors import PersistenceError
from scorehub.log import get_logger

log = get_logger("scorehub.persistence")


class JsonFileMirror:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self.writes = 0

    def _read_sync(self) -> Any:
        with open(self.path, "r", encoding="utf-8") as fh:
            return json.load(fh)

    def _write_sync(self, payload: Any) -> None:
        serialized = json.dumps(payload, indent=2)
        temp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.path.parent, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tmp:
                temp_path = Path(tmp.name)
                tmp.write(serialized)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to persist {self.path}", details=str(e)) from e

    async def read(self) -> Any:
        """Return the parsed file content. Raises OSError / ValueError on failure."""
        return await asyncio.to_thread(self._read_sync)

    async def write(self, snapshot: Callable[[], Any]) -> bool:
        """Persist `snapshot()`.

        A failed write is logged and reported as False; the caller's
        in-memory state stays authoritative.
        """
        async with self._lock:
            payload = snapshot()
            try:
                await asyncio.to_thread(self._write_sync, payload)
            except PersistenceError as e:
                log.error(f"{e.message}: {e.details}")
                return False
            self.writes += 1
            return True
