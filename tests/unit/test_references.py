"""
Unit tests for document/collection reference wrappers.
"""

import pytest
from loguru import logger

from realtime_db import CollectionReference, DocumentReference


@pytest.fixture
def log_lines():
    lines = []
    handler_id = logger.add(lambda msg: lines.append(msg.record["message"]), level="DEBUG")
    yield lines
    logger.remove(handler_id)


@pytest.mark.asyncio
async def test_document_reference_delegates_and_traces(engine, log_lines):
    ref = DocumentReference(engine.document("users/1"))

    await ref.set({"a": 1})
    await ref.set({"b": 2}, {"merge": True})
    await ref.update({"a": 3})
    snap = await ref.get()
    await ref.delete()

    assert snap.to_dict() == {"a": 3, "b": 2}
    assert not (await engine.document("users/1").get()).exists
    assert "[RealtimeDB] Setting document: users/1" in log_lines
    assert "[RealtimeDB] Updating document: users/1" in log_lines
    assert "[RealtimeDB] Reading document: users/1" in log_lines
    assert "[RealtimeDB] Deleting document: users/1" in log_lines


@pytest.mark.asyncio
async def test_document_reference_returns_native_result(engine):
    native = engine.document("users/1")
    ref = DocumentReference(native)

    result = await ref.create({"a": 1})

    assert ref.ref is native
    assert ref.id == "1"
    assert ref.path == "users/1"
    assert result.update_time is not None


def test_navigation_returns_wrappers(engine):
    doc = DocumentReference(engine.document("users/1"))
    sub = doc.collection("posts")

    assert isinstance(sub, CollectionReference)
    assert sub.path == "users/1/posts"
    assert isinstance(sub.doc("p1"), DocumentReference)
    assert sub.doc("p1").path == "users/1/posts/p1"
    assert len(sub.doc().id) == 20


@pytest.mark.asyncio
async def test_collection_reference_add_get_query(engine, log_lines):
    col = CollectionReference(engine.collection("users"))

    native = await col.add({"age": 30})
    await col.doc("b").set({"age": 10})
    everything = await col.get()
    older = await col.query(lambda q: q.where("age", ">=", 18).order_by("age"))

    assert (await native.get()).to_dict() == {"age": 30}
    assert len(everything) == 2
    assert [s.get("age") for s in older] == [30]
    assert "[RealtimeDB] Adding document to collection: users" in log_lines
    assert "[RealtimeDB] Querying collection: users" in log_lines


def test_proxy_navigation_has_no_admission(db, open_gate):
    assert isinstance(db.collection("users"), CollectionReference)
    assert db.doc("users/1") == db.doc("users/1")
    assert open_gate.calls == []
