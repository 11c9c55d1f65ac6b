"""
Backing stores for persistent roots.

A store reads and writes whole byte blobs keyed by path:

    async read(path) -> bytes     # raises FileNotFoundError when absent
    async write(path, data) -> None

FileStore runs blocking file IO in the loop's executor and replaces the target
atomically (temp file + os.replace). MemoryStore keeps blobs in a dict and is
meant for tests and ephemeral roots.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class Store(Protocol):
    async def read(self, path: str) -> bytes: ...

    async def write(self, path: str, data: bytes) -> None: ...


class FileStore:
    def __init__(self, fsync: bool = False) -> None:
        self._fsync = fsync
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, path: str) -> asyncio.Lock:
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        return lock

    def _read_sync(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def _write_sync(self, path: str, data: bytes) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.{os.getpid()}.tmp")
        try:
            with tmp.open("wb") as fh:
                fh.write(data)
                if self._fsync:
                    fh.flush()
                    os.fsync(fh.fileno())
            os.replace(tmp, target)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    async def read(self, path: str) -> bytes:
        async with self._lock_for(path):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._read_sync, path)

    async def write(self, path: str, data: bytes) -> None:
        async with self._lock_for(path):
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write_sync, path, data)


class MemoryStore:
    """In-process store; blobs live in ``self.blobs``."""

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None) -> None:
        self.blobs: Dict[str, bytes] = dict(blobs or {})

    async def read(self, path: str) -> bytes:
        try:
            return self.blobs[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    async def write(self, path: str, data: bytes) -> None:
        self.blobs[path] = bytes(data)
