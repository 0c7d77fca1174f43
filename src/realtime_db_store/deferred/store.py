"""
Deferred write stores.

Both stores implement ``store(record)`` / ``process(handler)``: records are
drained in submission order, the handler runs once per record, and records
whose handler raised stay queued for the next pass (at-least-once).
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Union

from loguru import logger

from realtime_db.models import DeferredWrite
from realtime_db.types import DeferredHandler


class MemoryDeferredStore:
    """In-process store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._records: List[DeferredWrite] = []
        self._lock = asyncio.Lock()
        self._process_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def store(self, record: DeferredWrite) -> None:
        async with self._lock:
            self._records.append(record)

    async def pending(self) -> List[DeferredWrite]:
        async with self._lock:
            return list(self._records)

    async def process(self, handler: DeferredHandler) -> int:
        async with self._process_lock:
            async with self._lock:
                batch, self._records = self._records, []

            handled = 0
            failed: List[DeferredWrite] = []
            for record in batch:
                try:
                    await handler(record)
                except Exception as exc:
                    logger.warning(f"Deferred record {record.id} kept: {type(exc).__name__}: {exc}")
                    failed.append(record)
                    continue
                handled += 1

            if failed:
                async with self._lock:
                    self._records[:0] = failed
            return handled


class NdjsonDeferredStore:
    """
    Append-only NDJSON file of deferred writes.

    ``process`` claims the current file by renaming it to ``<name>.processing``
    so new submissions keep appending to a fresh file while the claim drains.
    Failed records are re-appended to the live file. A claim file left behind
    by a crash is drained before anything else.
    """

    def __init__(self, path: Union[str, Path], *, mkdirs: bool = True):
        self.path = Path(path)
        self.claim_path = self.path.with_name(self.path.name + ".processing")
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._process_lock = asyncio.Lock()

    async def store(self, record: DeferredWrite) -> None:
        line = record.to_json() + "\n"
        async with self._lock:
            await asyncio.to_thread(_append_lines, self.path, [line])

    async def pending(self) -> List[DeferredWrite]:
        """Records not yet drained, claimed ones first."""
        async with self._lock:
            lines = await asyncio.to_thread(_read_lines, self.claim_path)
            lines += await asyncio.to_thread(_read_lines, self.path)
        return [DeferredWrite.from_json(line) for line in lines if line.strip()]

    async def process(self, handler: DeferredHandler) -> int:
        async with self._process_lock:
            async with self._lock:
                if not self.claim_path.exists():
                    if not self.path.exists():
                        return 0
                    self.path.rename(self.claim_path)
                else:
                    logger.info(f"Resuming leftover claim file {self.claim_path}")
                lines = await asyncio.to_thread(_read_lines, self.claim_path)

            handled = 0
            failed: List[str] = []
            for line in lines:
                if not line.strip():
                    continue
                try:
                    record = DeferredWrite.from_json(line)
                except ValueError as exc:
                    logger.error(f"Unreadable deferred record kept in {self.path}: {exc}")
                    failed.append(line)
                    continue
                try:
                    await handler(record)
                except Exception as exc:
                    logger.warning(f"Deferred record {record.id} kept: {type(exc).__name__}: {exc}")
                    failed.append(line)
                    continue
                handled += 1

            async with self._lock:
                if failed:
                    await asyncio.to_thread(
                        _append_lines, self.path, [l if l.endswith("\n") else l + "\n" for l in failed]
                    )
                self.claim_path.unlink()

            logger.info(f"Drained {handled} deferred records from {self.path} ({len(failed)} kept)")
            return handled


def _append_lines(path: Path, lines: List[str]) -> None:
    with path.open("a", encoding="utf-8") as f:
        f.writelines(lines)


def _read_lines(path: Path) -> List[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as f:
        return f.readlines()
