"""
Unit tests for RateLimitedBatch.
"""

from unittest.mock import AsyncMock

import pytest

from realtime_db import DocumentNotFound, OperationKind, RateLimitedBatch, RealtimeDB, is_deferred
from realtime_db.engines.base import BufferedWriteBatch


@pytest.mark.asyncio
async def test_rejected_batch_becomes_n_member_records(engine, closed_gate, store, monkeypatch):
    commit = AsyncMock()
    monkeypatch.setattr(engine, "_commit", commit)
    db = RealtimeDB(engine, closed_gate, store)

    batch = db.batch(tenant_id="acme")
    batch.set("users/1", {"a": 1}).update("users/2", {"b": 2}).delete("users/3")
    batch.add("users", {"c": 3})
    results = await batch.commit()

    commit.assert_not_called()
    assert closed_gate.calls == [("acme", 4)]
    records = await store.pending()
    assert len(records) == 4
    assert len(results) == 4
    assert all(is_deferred(r) for r in results)
    assert [r.record_id for r in results] == [r.id for r in records]
    assert {r.operation for r in records} == {OperationKind.BATCH_MEMBER}
    assert [r.member_operation for r in records] == [
        OperationKind.SET,
        OperationKind.UPDATE,
        OperationKind.DELETE,
        OperationKind.CREATE,
    ]
    assert len({r.batch_id for r in records}) == 1
    assert all(r.customer_id == "acme" for r in records)
    assert len(batch) == 0


@pytest.mark.asyncio
async def test_admitted_batch_commits_atomically(db, engine, open_gate):
    await engine.document("users/2").set({"b": 0})

    batch = db.batch()
    batch.set("users/1", {"a": 1}).update("users/2", {"b": 2}).create("users/3", {"c": 3})
    results = await batch.commit()

    assert len(results) == 3
    assert not any(is_deferred(r) for r in results)
    assert open_gate.calls == [("default", 3)]
    assert (await engine.document("users/1").get()).to_dict() == {"a": 1}
    assert (await engine.document("users/2").get()).to_dict() == {"b": 2}
    assert (await engine.document("users/3").get()).to_dict() == {"c": 3}


@pytest.mark.asyncio
async def test_failed_commit_is_all_or_nothing_and_triaged(db, engine):
    sink_calls = []
    db.register_dlq_handler(lambda error, record: sink_calls.append(record))

    batch = db.batch(tenant_id="acme")
    batch.set("users/1", {"a": 1}).update("users/missing", {"b": 2})
    with pytest.raises(DocumentNotFound):
        await batch.commit()

    assert not (await engine.document("users/1").get()).exists
    assert len(sink_calls) == 2
    assert all(r.operation is OperationKind.BATCH_MEMBER for r in sink_calls)
    assert all(r.id.startswith("error-") for r in sink_calls)


@pytest.mark.asyncio
async def test_empty_batch_skips_admission(db, open_gate):
    assert await db.batch().commit() == []
    assert open_gate.calls == []


@pytest.mark.asyncio
async def test_batch_is_native_without_store(engine, open_gate):
    assert isinstance(RealtimeDB(engine, open_gate).batch(), BufferedWriteBatch)
    assert isinstance(RealtimeDB(engine).batch(), BufferedWriteBatch)


@pytest.mark.asyncio
async def test_batch_accepts_wrapped_references(db, engine):
    batch = db.batch()
    batch.set(db.doc("users/1"), {"a": 1})
    await batch.commit()

    assert (await engine.document("users/1").get()).exists


@pytest.mark.asyncio
async def test_batch_single_use(engine):
    batch = RateLimitedBatch(engine, "acme", AsyncMock(return_value=False), AsyncMock())
    batch.set("users/1", {"a": 1})
    await batch.commit()

    with pytest.raises(RuntimeError):
        batch.set("users/2", {"a": 2})
    with pytest.raises(RuntimeError):
        await batch.commit()
