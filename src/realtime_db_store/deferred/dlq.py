"""
File-based dead letter queue for write failures nothing else claimed.

One NDJSON line per failure. Replay reads records back for inspection or a
manual re-submit; it never mutates the file.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from realtime_db.models import DeferredWrite


@dataclass
class DLQRecord:
    ts: float
    error: str
    error_type: str
    record: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_write(self) -> DeferredWrite:
        """Decode the dead-lettered write."""
        return DeferredWrite.model_validate(self.record)


class DeadLetterQueue:
    """
    Append-only NDJSON dead letter file.

    Instances are awaitable sinks ``(error, record)``, so one can be handed to
    ``RealtimeDB.register_dlq_handler`` directly.
    """

    def __init__(self, path: Union[str, Path], *, mkdirs: bool = True):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def __call__(self, error: BaseException, record: DeferredWrite) -> None:
        await self.save(record, error, {"customerId": record.customer_id, "path": record.path})

    async def save(
        self,
        record: DeferredWrite,
        error: BaseException,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = DLQRecord(
            ts=time.time(),
            error=str(error),
            error_type=type(error).__name__,
            record=json.loads(record.to_json()),
            metadata=dict(metadata or {}),
        )
        line = json.dumps(asdict(entry), default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.warning(f"DLQ: saved {record.id} ({entry.error_type}) to {self.path}")

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)

    async def replay(self, max_records: int = 100) -> List[DLQRecord]:
        """Read up to ``max_records`` entries, oldest first."""
        if not self.path.exists():
            return []
        async with self._lock:
            lines = await asyncio.to_thread(self._read_lines)
        out: List[DLQRecord] = []
        for line in lines:
            if len(out) >= max_records:
                break
            if not line.strip():
                continue
            out.append(DLQRecord(**json.loads(line)))
        return out

    def _read_lines(self) -> List[str]:
        with self.path.open("r", encoding="utf-8") as f:
            return f.readlines()
