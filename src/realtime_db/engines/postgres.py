"""
PostgreSQL document engine (psycopg 3 + psycopg_pool).

Documents live in one JSONB table (see ``sql.SCHEMA_DDL``). Batches run as a
single database transaction. ``run_transaction`` runs the caller's function in
a SERIALIZABLE transaction and retries serialization failures and deadlocks
with backoff, so read-check-write sequences behave like optimistic document
transactions.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypedDict, TypeVar

import psycopg
from loguru import logger
from psycopg import sql as psql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from ..errors import TransactionConflict, map_db_error
from ..models import OperationKind
from ..policy import RetryPolicy
from ..utils import parent_collection
from . import sql as q
from .base import (
    BaseEngine,
    BufferedTransaction,
    DocumentSnapshot,
    EngineCollection,
    PendingWrite,
    QuerySpec,
    WriteResult,
    apply_write,
)

T = TypeVar("T")


class PostgresEngineConfig(TypedDict, total=False):
    dsn: str
    app_name: str
    statement_timeout_ms: int
    pool_min: int
    pool_max: int


DEFAULTS: PostgresEngineConfig = {
    "app_name": "realtime_db",
    "pool_min": 1,
    "pool_max": 10,
}

_CONFLICT_ERRORS = (psycopg.errors.SerializationFailure, psycopg.errors.DeadlockDetected)


class PostgresTransaction(BufferedTransaction):
    def __init__(self, conn: psycopg.AsyncConnection):
        super().__init__()
        self._conn = conn

    async def _read(self, path: str) -> DocumentSnapshot:
        return await _select_document(self._conn, path)


async def _select_document(conn: psycopg.AsyncConnection, path: str) -> DocumentSnapshot:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(q.SELECT_DOCUMENT, {"path": path})
        row = await cur.fetchone()
    if row is None:
        return DocumentSnapshot(path=path, exists=False)
    return DocumentSnapshot(path=path, exists=True, update_time=row["update_time"], _data=row["data"])


async def _apply_writes(conn: psycopg.AsyncConnection, writes: List[PendingWrite]) -> List[WriteResult]:
    """Apply writes inside the caller's open transaction."""
    staged: Dict[str, Optional[Dict[str, Any]]] = {}
    results: List[WriteResult] = []
    async with conn.cursor(row_factory=dict_row) as cur:
        for write in writes:
            if write.path in staged:
                current = staged[write.path]
            else:
                await cur.execute(q.SELECT_DOCUMENT_FOR_UPDATE, {"path": write.path})
                row = await cur.fetchone()
                current = row["data"] if row else None
            new_state = apply_write(current, write)
            staged[write.path] = new_state

            if new_state is None:
                await cur.execute(q.DELETE_DOCUMENT, {"path": write.path})
                await cur.execute("SELECT now() AS update_time")
            else:
                stmt = q.INSERT_DOCUMENT if write.kind is OperationKind.CREATE else q.UPSERT_DOCUMENT
                await cur.execute(
                    stmt,
                    {
                        "path": write.path,
                        "collection": parent_collection(write.path),
                        "data": Jsonb(new_state),
                    },
                )
            row = await cur.fetchone()
            results.append(WriteResult(update_time=row["update_time"]))
    return results


class PostgresEngine(BaseEngine):
    """
    Document engine on PostgreSQL.

    Usage:
        engine = PostgresEngine({"dsn": "postgresql://..."})
        await engine.open()
        await engine.ensure_schema()
        ...
        await engine.close()
    """

    def __init__(self, cfg: PostgresEngineConfig, *, retry_policy: Optional[RetryPolicy] = None):
        self.cfg: PostgresEngineConfig = {**DEFAULTS, **(cfg or {})}
        if "dsn" not in self.cfg:
            raise ValueError("dsn required")
        self.pool = AsyncConnectionPool(
            conninfo=self.cfg["dsn"],
            min_size=self.cfg["pool_min"],
            max_size=self.cfg["pool_max"],
            kwargs={"autocommit": True},
            configure=self._configure,
            open=False,
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=5, initial_backoff_ms=20, max_backoff_ms=1000
        )

    async def _configure(self, conn: psycopg.AsyncConnection) -> None:
        if self.cfg.get("app_name"):
            await conn.execute(
                psql.SQL("SET application_name = {}").format(
                    psql.Literal(self.cfg["app_name"])
                )
            )
        if self.cfg.get("statement_timeout_ms"):
            await conn.execute(
                psql.SQL("SET statement_timeout = {}").format(
                    psql.Literal(int(self.cfg["statement_timeout_ms"]))
                )
            )

    async def open(self) -> "PostgresEngine":
        await self.pool.open()
        return self

    async def close(self) -> None:
        await self.pool.close()

    async def __aenter__(self) -> "PostgresEngine":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ---------- admin / health ----------

    async def ensure_schema(self) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(q.SCHEMA_DDL)
        logger.info("[PostgresEngine] documents schema ensured")

    async def health(self) -> bool:
        async with self.pool.connection() as conn:
            await conn.execute(q.HEALTH)
            return True

    # ---------- storage hooks ----------

    async def _fetch(self, path: str) -> DocumentSnapshot:
        try:
            async with self.pool.connection() as conn:
                return await _select_document(conn, path)
        except psycopg.Error as e:
            raise map_db_error(e) from e

    async def _commit(self, writes: List[PendingWrite]) -> List[WriteResult]:
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    return await _apply_writes(conn, writes)
        except psycopg.Error as e:
            raise map_db_error(e) from e

    async def _run_query(self, spec: QuerySpec) -> List[DocumentSnapshot]:
        stmt, params = q.build_query(spec)
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(stmt, params)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise map_db_error(e) from e
        return [
            DocumentSnapshot(path=r["path"], exists=True, update_time=r["update_time"], _data=r["data"])
            for r in rows
        ]

    # ---------- engine API ----------

    async def run_transaction(self, fn: Callable[[PostgresTransaction], Awaitable[T]]) -> T:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                async with self.pool.connection() as conn:
                    async with conn.transaction():
                        await conn.execute(q.SERIALIZABLE)
                        tx = PostgresTransaction(conn)
                        result = await fn(tx)
                        await _apply_writes(conn, list(tx.writes))
                return result
            except _CONFLICT_ERRORS as e:
                logger.debug(f"[PostgresEngine] Serialization conflict (attempt {attempt}): {e}")
                if attempt >= policy.max_attempts:
                    raise TransactionConflict(
                        f"transaction aborted after {policy.max_attempts} attempts"
                    ) from e
                await asyncio.sleep(policy.next_backoff_ms(attempt) / 1000.0)
            except psycopg.Error as e:
                raise map_db_error(e) from e
        raise TransactionConflict("transaction retries exhausted")  # pragma: no cover

    async def list_collections(self) -> List[EngineCollection]:
        try:
            async with self.pool.connection() as conn:
                cur = await conn.execute(q.TOP_LEVEL_COLLECTIONS)
                rows = await cur.fetchall()
        except psycopg.Error as e:
            raise map_db_error(e) from e
        return [self.collection(row[0]) for row in rows]


