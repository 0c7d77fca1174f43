from __future__ import annotations

from typing import Any, List, Tuple

from psycopg import sql as psql
from psycopg.types.json import Jsonb

from .base import FieldFilter, QuerySpec

DOCUMENTS_TABLE = "documents"

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS documents (
    path        TEXT PRIMARY KEY,
    collection  TEXT NOT NULL,
    data        JSONB NOT NULL,
    update_time TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS documents_collection_idx ON documents (collection);
"""

HEALTH = "SELECT 1"

SELECT_DOCUMENT = "SELECT data, update_time FROM documents WHERE path = %(path)s"

SELECT_DOCUMENT_FOR_UPDATE = "SELECT data FROM documents WHERE path = %(path)s FOR UPDATE"

UPSERT_DOCUMENT = """
INSERT INTO documents (path, collection, data, update_time)
VALUES (%(path)s, %(collection)s, %(data)s, now())
ON CONFLICT (path) DO UPDATE
SET data = EXCLUDED.data, update_time = EXCLUDED.update_time
RETURNING update_time
"""

# no ON CONFLICT: a concurrent create of the same path must fail with unique_violation
INSERT_DOCUMENT = """
INSERT INTO documents (path, collection, data, update_time)
VALUES (%(path)s, %(collection)s, %(data)s, now())
RETURNING update_time
"""

DELETE_DOCUMENT = "DELETE FROM documents WHERE path = %(path)s"

SERIALIZABLE = "SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"

TOP_LEVEL_COLLECTIONS = (
    "SELECT DISTINCT split_part(path, '/', 1) AS name FROM documents ORDER BY name"
)

_RANGE_OPS = {"<": "<", "<=": "<=", ">": ">", ">=": ">="}


def _field(field_path: str) -> Tuple[psql.Composable, List[Any]]:
    """``data #> '{a,b}'`` for a dotted field path."""
    return psql.SQL("(data #> {})").format(psql.Placeholder()), [field_path.split(".")]


def _filter_clause(flt: FieldFilter) -> Tuple[psql.Composable, List[Any]]:
    """One WHERE predicate plus its positional parameters."""
    fld, params = _field(flt.field_path)
    ph = psql.Placeholder()

    if flt.op == "==":
        return psql.SQL("{} = {}").format(fld, ph), params + [Jsonb(flt.value)]
    if flt.op == "!=":
        return (
            psql.SQL("{f} IS NOT NULL AND {f} <> {v}").format(f=fld, v=ph),
            params + params + [Jsonb(flt.value)],
        )
    if flt.op in _RANGE_OPS:
        # same JSON type only, matching the in-memory engine
        clause = psql.SQL("jsonb_typeof({f}) = jsonb_typeof({t}) AND {f2} {op} {v}").format(
            f=fld,
            t=ph,
            f2=fld,
            op=psql.SQL(_RANGE_OPS[flt.op]),
            v=ph,
        )
        return clause, params + [Jsonb(flt.value)] + params + [Jsonb(flt.value)]
    if flt.op == "in":
        if not flt.value:
            return psql.SQL("FALSE"), []
        values = psql.SQL(", ").join(ph for _ in flt.value)
        return (
            psql.SQL("{} IN ({})").format(fld, values),
            params + [Jsonb(v) for v in flt.value],
        )
    if flt.op == "array-contains":
        return psql.SQL("{} @> {}").format(fld, ph), params + [Jsonb([flt.value])]
    raise ValueError(f"unsupported operator {flt.op!r}")


def build_query(spec: QuerySpec) -> Tuple[psql.Composed, List[Any]]:
    """
    Build: SELECT path, data, update_time FROM documents
           WHERE collection = ... [AND filters] ORDER BY ... [LIMIT n]
    Parameters are positional and returned alongside the statement.
    """
    wheres: List[psql.Composable] = [psql.SQL("collection = {}").format(psql.Placeholder())]
    params: List[Any] = [spec.collection]

    for flt in spec.filters:
        clause, clause_params = _filter_clause(flt)
        wheres.append(clause)
        params.extend(clause_params)

    orders: List[psql.Composable] = []
    for field_path, direction in spec.orders:
        fld, fld_params = _field(field_path)
        wheres.append(psql.SQL("{} IS NOT NULL").format(fld))
        params.extend(fld_params)
        orders.append(psql.SQL("{} {}").format(fld, psql.SQL(direction.upper())))
    order_params: List[Any] = [field_path.split(".") for field_path, _ in spec.orders]
    orders.append(psql.SQL("path"))

    q = psql.SQL("SELECT path, data, update_time FROM {} WHERE {} ORDER BY {}").format(
        psql.Identifier(DOCUMENTS_TABLE),
        psql.SQL(" AND ").join(wheres),
        psql.SQL(", ").join(orders),
    )
    params.extend(order_params)

    if spec.limit is not None:
        q = psql.SQL("{} LIMIT {}").format(q, psql.Placeholder())
        params.append(spec.limit)
    return q, params
