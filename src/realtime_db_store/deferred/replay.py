"""
Background replay of deferred writes.

Out of band from the write path: each pass drains the deferred store through
``RealtimeDB.replay``. Records that fail stay in the store for the next pass.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from realtime_db.proxy import RealtimeDB
from realtime_db.types import DeferredWriteStore


class ReplayWorker:
    """Periodic drain loop over one deferred store."""

    def __init__(self, db: RealtimeDB, store: DeferredWriteStore, interval_sec: float = 5.0):
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self._db = db
        self._store = store
        self._interval = interval_sec
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.passes = 0
        self.replayed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="rtdb-replay-worker")
        logger.info(f"Replay worker started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop after the current pass."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info(f"Replay worker stopped after {self.passes} passes ({self.replayed} replayed)")

    async def run_once(self) -> int:
        handled = await self._store.process(self._db.replay)
        self.passes += 1
        self.replayed += handled
        if handled:
            logger.info(f"Replay pass {self.passes}: {handled} deferred writes applied")
        return handled

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as exc:
                logger.error(f"Replay pass failed: {type(exc).__name__}: {exc}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
