"""
Unit tests for Dead Letter Queue (DLQ).
"""

import asyncio

import pytest

from realtime_db import RealtimeDB
from realtime_db.models import DeferredWrite, OperationKind, WriteIntent
from realtime_db_store import DeadLetterQueue


def _record(n: int = 1) -> DeferredWrite:
    intent = WriteIntent(kind=OperationKind.UPDATE, path=f"users/{n}", payload={"n": n})
    return DeferredWrite.from_intent(intent, customer_id="acme", prefix="error")


@pytest.mark.asyncio
async def test_file_dlq_save_and_replay(tmp_path):
    """Test DLQ can save and replay records."""
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")

    await dlq.save(_record(1), RuntimeError("boom"), {"k": "v"})
    await dlq.save(_record(2), KeyError("kapow"), {})

    recs = await dlq.replay(10)
    assert len(recs) == 2
    assert recs[0].metadata.get("k") == "v"
    assert "boom" in recs[0].error.lower()
    assert recs[1].error_type == "KeyError"
    assert recs[0].record["customerId"] == "acme"
    assert recs[0].to_write().path == "users/1"


@pytest.mark.asyncio
async def test_dlq_replay_limit(tmp_path):
    """Test DLQ replay respects max_records limit."""
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    for i in range(10):
        await dlq.save(_record(i), RuntimeError(f"error-{i}"), {})

    recs = await dlq.replay(5)
    assert len(recs) == 5


@pytest.mark.asyncio
async def test_dlq_replay_empty(tmp_path):
    """Test DLQ replay handles non-existent file."""
    dlq = DeadLetterQueue(tmp_path / "nonexistent.ndjson", mkdirs=False)

    assert await dlq.replay(10) == []


@pytest.mark.asyncio
async def test_dlq_concurrent_writes(tmp_path):
    """Test DLQ serializes concurrent writes."""
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")

    await asyncio.gather(*[dlq.save(_record(i), RuntimeError(f"error-{i}"), {}) for i in range(20)])

    assert len(await dlq.replay(100)) == 20


@pytest.mark.asyncio
async def test_dlq_as_proxy_sink(engine, open_gate, store, tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq" / "writes.ndjson")
    db = RealtimeDB(engine, open_gate, store)
    db.register_dlq_handler(dlq)

    with pytest.raises(Exception):
        await db.update("users/missing", {"status": 1}, tenant_id="acme")

    recs = await dlq.replay(10)
    assert len(recs) == 1
    assert recs[0].error_type == "DocumentNotFound"
    assert recs[0].record["path"] == "users/missing"
    assert recs[0].metadata == {"customerId": "acme", "path": "users/missing"}
