"""
Integration tests for PostgresEngine against a real database.

Tests:
- Document create/update/set/delete semantics
- Atomic batches
- Queries over JSONB fields
- SERIALIZABLE transactions under contention (monotonic update)
- Deferred write replay through the proxy

Set RTDB_TEST_DSN to run them.
"""

import asyncio
import os

import pytest
import pytest_asyncio

from realtime_db import DocumentAlreadyExists, DocumentNotFound, PostgresEngine, RealtimeDB, RetryPolicy
from realtime_db_store import MemoryDeferredStore

pytestmark = pytest.mark.integration


@pytest.fixture
def db_uri():
    dsn = os.environ.get("RTDB_TEST_DSN")
    if not dsn:
        pytest.skip("RTDB_TEST_DSN not set")
    return dsn


@pytest_asyncio.fixture
async def pg(db_uri):
    engine = PostgresEngine(
        {"dsn": db_uri, "pool_max": 12},
        retry_policy=RetryPolicy(max_attempts=30, initial_backoff_ms=5, max_backoff_ms=50),
    )
    await engine.open()
    await engine.ensure_schema()
    async with engine.pool.connection() as conn:
        await conn.execute("TRUNCATE documents")
    yield engine
    await engine.close()


@pytest.mark.asyncio
async def test_document_semantics(pg):
    doc = pg.document("users/1")

    with pytest.raises(DocumentNotFound):
        await doc.update({"a": 1})
    await doc.create({"a": 1, "nested": {"x": 1}})
    with pytest.raises(DocumentAlreadyExists):
        await doc.create({"a": 1})
    await doc.update({"nested.y": 2})
    await doc.set({"b": True}, merge=True)

    snap = await doc.get()
    assert snap.to_dict() == {"a": 1, "nested": {"x": 1, "y": 2}, "b": True}
    assert snap.update_time is not None

    await doc.delete()
    assert not (await doc.get()).exists


@pytest.mark.asyncio
async def test_batch_rolls_back(pg):
    batch = pg.batch().set("users/1", {"a": 1}).update("users/missing", {"a": 1})

    with pytest.raises(DocumentNotFound):
        await batch.commit()
    assert not (await pg.document("users/1").get()).exists


@pytest.mark.asyncio
async def test_query(pg):
    users = pg.collection("users")
    await users.document("a").set({"age": 30, "tags": ["x"]})
    await users.document("b").set({"age": 20, "tags": ["y"]})
    await pg.document("users/a/posts/1").set({"age": 99})

    rows = await users.where("age", ">", 10).order_by("age", "desc").limit(5).get()
    assert [r.id for r in rows] == ["a", "b"]
    rows = await users.where("tags", "array-contains", "y").get()
    assert [r.id for r in rows] == ["b"]
    assert [c.id for c in await pg.list_collections()] == ["users"]


@pytest.mark.asyncio
async def test_monotonic_transactions(pg):
    await pg.document("users/1").set({"status": 0})
    db = RealtimeDB(pg)
    ref = db.doc("users/1")

    def raise_to(value):
        async def fn(tx):
            snap = await tx.get(ref)
            if snap.get("status", 0) < value:
                tx.update(ref, {"status": value})

        return fn

    await asyncio.gather(*[db.run_transaction(raise_to(v)) for v in range(1, 11)])

    assert (await pg.document("users/1").get()).get("status") == 10


@pytest.mark.asyncio
async def test_deferred_replay(pg):
    class Closed:
        async def is_rate_limited(self, tenant_id, cost=1):
            return True

    store = MemoryDeferredStore()
    await RealtimeDB(pg, Closed(), store).set("users/1", {"a": 1}, tenant_id="acme")
    assert not (await pg.document("users/1").get()).exists

    assert await store.process(RealtimeDB(pg).replay) == 1
    assert (await pg.document("users/1").get()).to_dict() == {"a": 1}


@pytest.mark.asyncio
async def test_health(pg):
    assert await pg.health()



@pytest.mark.asyncio
async def test_concurrent_creates_one_wins(pg):
    results = await asyncio.gather(
        *[pg.document("users/x").create({"writer": i}) for i in range(2)],
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], DocumentAlreadyExists)
    winner = next(i for i, r in enumerate(results) if not isinstance(r, Exception))
    assert (await pg.document("users/x").get()).to_dict() == {"writer": winner}
