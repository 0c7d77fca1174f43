"""
Unit tests for the recovery chain and the proxy's failure path.
"""

import pytest

from realtime_db import DocumentNotFound, RealtimeDB, RecoveryChain, RecoveryVerdict
from realtime_db.models import DeferredWrite, OperationKind, WriteIntent


def _record() -> DeferredWrite:
    intent = WriteIntent(kind=OperationKind.SET, path="users/1", payload={"a": 1})
    return DeferredWrite.from_intent(intent, customer_id="acme", prefix="error")


class Spy:
    def __init__(self, verdict=False, raises=None):
        self.verdict = verdict
        self.raises = raises
        self.calls = []

    def __call__(self, error, record):
        self.calls.append((error, record))
        if self.raises:
            raise self.raises
        return self.verdict


@pytest.mark.asyncio
async def test_short_circuit_on_first_true():
    chain = RecoveryChain()
    first, second, third, sink = Spy(False), Spy(True), Spy(False), Spy()
    for p in (first, second, third):
        chain.register(p)
    chain.set_dead_letter(sink)

    claimed = await chain.triage(RuntimeError("boom"), _record())

    assert claimed is True
    assert len(first.calls) == 1
    assert len(second.calls) == 1
    assert third.calls == []
    assert sink.calls == []


@pytest.mark.asyncio
async def test_dead_letter_called_once_when_unclaimed():
    chain = RecoveryChain()
    chain.register(Spy(False))
    sink = Spy()
    chain.set_dead_letter(sink)
    err, record = RuntimeError("boom"), _record()

    claimed = await chain.triage(err, record)

    assert claimed is False
    assert sink.calls == [(err, record)]


@pytest.mark.asyncio
async def test_async_predicates_and_sink():
    chain = RecoveryChain()
    seen = []

    async def predicate(error, record):
        seen.append("predicate")
        return False

    async def sink(error, record):
        seen.append("sink")

    chain.register(predicate)
    chain.set_dead_letter(sink)
    await chain.triage(RuntimeError("boom"), _record())

    assert seen == ["predicate", "sink"]


@pytest.mark.asyncio
async def test_raising_predicate_counts_as_false():
    chain = RecoveryChain()
    broken, after = Spy(raises=RuntimeError("predicate bug")), Spy(True)
    chain.register(broken)
    chain.register(after)

    assert await chain.triage(RuntimeError("boom"), _record()) is True
    assert len(after.calls) == 1


@pytest.mark.asyncio
async def test_raising_sink_is_contained():
    chain = RecoveryChain()
    chain.set_dead_letter(Spy(raises=OSError("disk full")))

    assert await chain.triage(RuntimeError("boom"), _record()) is False


@pytest.mark.asyncio
async def test_last_dead_letter_registration_wins():
    chain = RecoveryChain()
    old, new = Spy(), Spy()
    chain.set_dead_letter(old)
    chain.set_dead_letter(new)

    await chain.triage(RuntimeError("boom"), _record())

    assert old.calls == []
    assert len(new.calls) == 1


@pytest.mark.asyncio
async def test_proxy_reraises_and_dead_letters_exact_call(engine, open_gate, store):
    db = RealtimeDB(engine, open_gate, store)
    predicates = [Spy(False), Spy(True), Spy(False)]
    for p in predicates:
        db.register_error_handler(p)
    sink = Spy()
    db.register_dlq_handler(sink)

    with pytest.raises(DocumentNotFound):
        await db.update("users/missing", {"status": 1}, tenant_id="acme")

    assert [len(p.calls) for p in predicates] == [1, 1, 0]
    assert sink.calls == []


@pytest.mark.asyncio
async def test_proxy_dlq_receives_original_error(engine, open_gate, store):
    db = RealtimeDB(engine, open_gate, store)
    db.register_error_handler(Spy(False))
    sink = Spy()
    db.register_dlq_handler(sink)

    with pytest.raises(DocumentNotFound) as excinfo:
        await db.update("users/missing", {"status": 1}, tenant_id="acme")

    assert len(sink.calls) == 1
    error, record = sink.calls[0]
    assert error is excinfo.value
    assert record.operation is OperationKind.UPDATE
    assert record.path == "users/missing"
    assert record.payload == {"status": 1}
    assert record.customer_id == "acme"
    assert record.id.startswith("error-")
    assert await store.pending() == []


@pytest.mark.asyncio
async def test_route_reports_where_failure_ended_up():
    record = _record()

    claimed = RecoveryChain()
    claimed.register(Spy(True))
    assert await claimed.route(RuntimeError("boom"), record) is RecoveryVerdict.RECOVERABLE

    dead = RecoveryChain()
    dead.set_dead_letter(Spy())
    assert await dead.route(RuntimeError("boom"), record) is RecoveryVerdict.DEAD_LETTERED

    broken = RecoveryChain()
    broken.set_dead_letter(Spy(raises=OSError("disk full")))
    assert await broken.route(RuntimeError("boom"), record) is RecoveryVerdict.UNHANDLED

    assert await RecoveryChain().route(RuntimeError("boom"), record) is RecoveryVerdict.UNHANDLED
