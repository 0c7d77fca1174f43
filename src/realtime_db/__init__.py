"""
RealtimeDB: admission-controlled write proxy for document databases.

Write calls are checked against a per-tenant rate gate. Admitted writes go to
the engine, rejected ones are persisted as replayable deferred writes. Reads
pass straight through.

Usage:
    from realtime_db import RealtimeDB, MemoryEngine, TokenBucketGate, is_deferred
    from realtime_db_store import MemoryDeferredStore

    db = RealtimeDB(MemoryEngine(), TokenBucketGate(5, 1), MemoryDeferredStore())
    result = await db.set("users/1", {"status": 1}, tenant_id="acme")
"""

from .admission import TokenBucketGate
from .batch import RateLimitedBatch
from .engines import MemoryEngine, PostgresEngine
from .errors import (
    ConstraintViolation,
    DeferredStorageNotConfigured,
    DocumentAlreadyExists,
    DocumentNotFound,
    InvalidPath,
    RealtimeDBError,
    RetryableError,
    TimeoutExceeded,
    TransactionConflict,
)
from .models import (
    DeferredWrite,
    DeferredWriteResult,
    OperationKind,
    WriteIntent,
    WriteOptions,
    is_deferred,
    is_pending,
)
from .policy import RetryPolicy, default_retry_classifier, transient_error_handler
from .proxy import AdmissionMode, RealtimeDB
from .recovery import RecoveryChain, RecoveryVerdict
from .references import CollectionReference, DocumentReference
from .tenancy import current_tenant, tenant_scope
from .transaction import Transaction

__version__ = "1.0.0"
__all__ = [
    "RealtimeDB",
    "AdmissionMode",
    "RateLimitedBatch",
    "Transaction",
    "DocumentReference",
    "CollectionReference",
    "RecoveryChain",
    "RecoveryVerdict",
    "TokenBucketGate",
    "MemoryEngine",
    "PostgresEngine",
    "DeferredWrite",
    "DeferredWriteResult",
    "OperationKind",
    "WriteIntent",
    "WriteOptions",
    "is_deferred",
    "is_pending",
    "RetryPolicy",
    "default_retry_classifier",
    "transient_error_handler",
    "current_tenant",
    "tenant_scope",
    "RealtimeDBError",
    "DeferredStorageNotConfigured",
    "InvalidPath",
    "DocumentNotFound",
    "DocumentAlreadyExists",
    "RetryableError",
    "TransactionConflict",
    "ConstraintViolation",
    "TimeoutExceeded",
]
