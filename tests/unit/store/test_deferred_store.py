"""
Unit tests for deferred write stores.
"""

import pytest

from realtime_db.models import DeferredWrite, OperationKind, WriteIntent
from realtime_db_store import MemoryDeferredStore, NdjsonDeferredStore


def _record(n: int) -> DeferredWrite:
    intent = WriteIntent(kind=OperationKind.SET, path=f"users/{n}", payload={"n": n})
    return DeferredWrite.from_intent(intent, customer_id="acme")


@pytest.fixture(params=["memory", "ndjson"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryDeferredStore()
    return NdjsonDeferredStore(tmp_path / "deferred" / "writes.ndjson")


@pytest.mark.asyncio
async def test_process_drains_in_order(any_store):
    records = [_record(i) for i in range(5)]
    for r in records:
        await any_store.store(r)

    seen = []

    async def handler(record):
        seen.append(record.id)

    assert await any_store.process(handler) == 5
    assert seen == [r.id for r in records]
    assert await any_store.process(handler) == 0
    assert await any_store.pending() == []


@pytest.mark.asyncio
async def test_failed_records_are_retained(any_store):
    for i in range(4):
        await any_store.store(_record(i))

    async def flaky(record):
        if record.payload["n"] % 2:
            raise RuntimeError("engine down")

    assert await any_store.process(flaky) == 2
    remaining = await any_store.pending()
    assert [r.payload["n"] for r in remaining] == [1, 3]

    async def ok(record):
        pass

    assert await any_store.process(ok) == 2


@pytest.mark.asyncio
async def test_ndjson_is_durable_across_instances(tmp_path):
    path = tmp_path / "writes.ndjson"
    record = _record(1)
    await NdjsonDeferredStore(path).store(record)

    reopened = NdjsonDeferredStore(path)
    assert await reopened.pending() == [record]


@pytest.mark.asyncio
async def test_ndjson_drains_leftover_claim_first(tmp_path):
    path = tmp_path / "writes.ndjson"
    store = NdjsonDeferredStore(path)
    crashed, fresh = _record(1), _record(2)
    store.claim_path.write_text(crashed.to_json() + "\n", encoding="utf-8")
    await store.store(fresh)

    seen = []

    async def handler(record):
        seen.append(record.id)

    assert await store.process(handler) == 1
    assert seen == [crashed.id]
    assert not store.claim_path.exists()
    assert await store.process(handler) == 1
    assert seen == [crashed.id, fresh.id]


@pytest.mark.asyncio
async def test_ndjson_writes_during_processing_are_kept(tmp_path):
    store = NdjsonDeferredStore(tmp_path / "writes.ndjson")
    await store.store(_record(1))
    late = _record(2)

    async def handler(record):
        await store.store(late)

    assert await store.process(handler) == 1
    assert await store.pending() == [late]
