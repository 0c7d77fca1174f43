"""Document engines behind the RealtimeDB proxy.

- MemoryEngine: in-process, optimistic transactions
- PostgresEngine: JSONB documents on PostgreSQL, SERIALIZABLE transactions
"""

from .base import (
    BaseEngine,
    DocumentEngine,
    DocumentSnapshot,
    EngineCollection,
    EngineDocument,
    Query,
    WriteResult,
)
from .memory import MemoryEngine
from .postgres import PostgresEngine, PostgresEngineConfig

__all__ = [
    "BaseEngine",
    "DocumentEngine",
    "DocumentSnapshot",
    "EngineCollection",
    "EngineDocument",
    "Query",
    "WriteResult",
    "MemoryEngine",
    "PostgresEngine",
    "PostgresEngineConfig",
]
