from __future__ import annotations

from typing import Awaitable, Callable, Protocol, TypeVar, Union

from .models import DeferredWrite

T = TypeVar("T")

# (error, record) -> recoverable?  Sync or async.
RecoveryPredicate = Callable[[BaseException, DeferredWrite], Union[bool, Awaitable[bool]]]
# (error, record) -> None.  Sync or async.
DeadLetterSink = Callable[[BaseException, DeferredWrite], Union[None, Awaitable[None]]]
# Called once per record when a deferred store is drained.
DeferredHandler = Callable[[DeferredWrite], Awaitable[None]]


class RateGate(Protocol):
    """Admission decision per (tenant, cost)."""

    async def is_rate_limited(self, tenant_id: str, cost: int = 1) -> bool:
        """True when the tenant must not spend ``cost`` operations now."""
        ...


class DeferredWriteStore(Protocol):
    """Durable append/replay queue of deferred writes."""

    async def store(self, record: DeferredWrite) -> None:
        """Durably append one record."""
        ...

    async def process(self, handler: DeferredHandler) -> int:
        """Drain stored records through ``handler``; returns records handled."""
        ...
