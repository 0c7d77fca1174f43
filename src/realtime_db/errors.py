"""
Custom exceptions for the RealtimeDB write proxy.

Provides structured error handling for engine failures, configuration
mistakes and transaction conflicts.
"""


class RealtimeDBError(Exception):
    """Base error for the RealtimeDB client."""

    pass


class DeferredStorageNotConfigured(RealtimeDBError):
    """A write was rate limited but no deferred write store is configured."""

    pass


class InvalidPath(RealtimeDBError, ValueError):
    """Collection/document path does not alternate segments correctly."""

    pass


class DocumentNotFound(RealtimeDBError):
    """Update of a document that does not exist."""

    pass


class DocumentAlreadyExists(RealtimeDBError):
    """Create of a document that already exists."""

    pass


class RetryableError(RealtimeDBError):
    """Temporary errors that should be retried with backoff."""

    pass


class TransactionConflict(RetryableError):
    """Optimistic transaction retries exhausted on conflicting writes."""

    pass


class ConstraintViolation(RealtimeDBError):
    """Database constraint violations (unique, check, foreign key)."""

    pass


class TimeoutExceeded(RealtimeDBError):
    """Query or connection timeout errors."""

    pass


def map_db_error(e: Exception) -> RealtimeDBError:
    import psycopg
    import psycopg.errors as E

    if isinstance(e, RealtimeDBError):
        return e
    # QueryCanceled subclasses OperationalError
    if isinstance(e, E.QueryCanceled):
        return TimeoutExceeded(str(e))
    if isinstance(e, (E.SerializationFailure, E.DeadlockDetected, psycopg.OperationalError)):
        return RetryableError(str(e))
    if isinstance(e, E.UniqueViolation):
        return DocumentAlreadyExists(str(e))
    if isinstance(e, (E.CheckViolation, E.ForeignKeyViolation, E.NotNullViolation)):
        return ConstraintViolation(str(e))
    return RealtimeDBError(str(e))
