from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import typer
from loguru import logger

from .config import get_settings
from .models import is_deferred, is_pending

app = typer.Typer(help="RealtimeDB operational CLI")


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Override RTDB_LOG_LEVEL")):
    logger.remove()
    logger.add(sys.stderr, level=(log_level or get_settings().LOG_LEVEL).upper())


def _store():
    from realtime_db_store import NdjsonDeferredStore

    settings = get_settings()
    if not settings.DEFERRED_STORE_PATH:
        typer.echo("RTDB_DEFERRED_STORE_PATH is not set", err=True)
        raise typer.Exit(code=2)
    return NdjsonDeferredStore(settings.DEFERRED_STORE_PATH)


def _require_persistent_engine(command: str) -> None:
    """Refuse commands whose effects would vanish with an in-process engine."""
    if get_settings().ENGINE == "memory":
        typer.echo(f"{command} requires a persistent engine (RTDB_ENGINE=postgres)", err=True)
        raise typer.Exit(code=2)


async def _open_db():
    from realtime_db_store import open_realtime_db

    return await open_realtime_db(get_settings())


# ---------------------------
# Deferred writes / DLQ
# ---------------------------


@app.command("pending")
def pending(limit: int = typer.Option(100, "--limit", help="Max records to print")):
    """List deferred writes waiting for replay."""
    records = asyncio.run(_store().pending())
    for record in records[:limit]:
        typer.echo(record.to_json())
    logger.info(f"{len(records)} deferred records pending")


@app.command("replay")
def replay():
    """Drain the deferred store once against the configured engine."""
    _require_persistent_engine("replay")
    store = _store()

    async def _run() -> int:
        db = await _open_db()
        try:
            return await store.process(db.replay)
        finally:
            await db.close()

    handled = asyncio.run(_run())
    typer.echo(json.dumps({"replayed": handled}))


@app.command("dlq")
def dlq(max_records: int = typer.Option(100, "--max", help="Max records to print")):
    """Show dead-lettered writes."""
    from realtime_db_store import DeadLetterQueue

    queue = DeadLetterQueue(get_settings().DLQ_PATH, mkdirs=False)
    for rec in asyncio.run(queue.replay(max_records)):
        typer.echo(json.dumps({"ts": rec.ts, "error_type": rec.error_type, "error": rec.error, "record": rec.record}))


# ---------------------------
# Documents
# ---------------------------


@app.command("write")
def write(
    operation: str = typer.Argument(..., help="add | set | update | delete"),
    path: str = typer.Argument(..., help="Collection path for add, document path otherwise"),
    data: Optional[str] = typer.Option(None, "--data", help="JSON object payload"),
    merge: bool = typer.Option(False, "--merge", help="Merge on set"),
    tenant_id: Optional[str] = typer.Option(None, "--tenant-id", envvar="RTDB_TENANT_ID"),
):
    """Issue one write through the admission-controlled proxy."""
    if operation not in ("add", "set", "update", "delete"):
        typer.echo(f"unknown operation: {operation}", err=True)
        raise typer.Exit(code=2)
    payload = json.loads(data) if data else None
    if operation != "delete" and not isinstance(payload, dict):
        typer.echo("--data must be a JSON object", err=True)
        raise typer.Exit(code=2)
    _require_persistent_engine("write")

    async def _run():
        db = await _open_db()
        try:
            if operation == "add":
                ref = await db.add(path, payload, tenant_id=tenant_id)
                return {"path": ref.path, "pending": is_pending(ref)}
            if operation == "set":
                result = await db.set(path, payload, {"merge": merge}, tenant_id=tenant_id)
            elif operation == "update":
                result = await db.update(path, payload, tenant_id=tenant_id)
            else:
                result = await db.delete(path, tenant_id=tenant_id)
            if is_deferred(result):
                return {"deferred": True, "record_id": result.record_id}
            return {"deferred": False, "update_time": result.update_time.isoformat()}
        finally:
            await db.close()

    typer.echo(json.dumps(asyncio.run(_run())))


@app.command("get")
def get(path: str = typer.Argument(..., help="Document path")):
    """Read one document."""
    _require_persistent_engine("get")

    async def _run():
        db = await _open_db()
        try:
            return await db.get(path)
        finally:
            await db.close()

    snap = asyncio.run(_run())
    if not snap.exists:
        typer.echo(f"not found: {path}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(snap.to_dict(), default=str, indent=2))


@app.command("init-schema")
def init_schema():
    """Create the documents table (postgres engine)."""
    from realtime_db_store import build_engine

    from .engines import PostgresEngine

    engine = build_engine(get_settings())
    if not isinstance(engine, PostgresEngine):
        typer.echo("init-schema requires RTDB_ENGINE=postgres", err=True)
        raise typer.Exit(code=2)

    async def _run():
        async with engine:
            await engine.ensure_schema()

    asyncio.run(_run())
    logger.success("Schema ready")


if __name__ == "__main__":
    app()
