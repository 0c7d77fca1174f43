"""
Request-scoped tenant context for quota isolation.

The current tenant lives in a ContextVar, so every asyncio task (and every
thread started with a copied context) sees its own value. Nothing about the
tenant is stored on a shared proxy instance.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_current_tenant: ContextVar[Optional[str]] = ContextVar("rtdb_tenant_id", default=None)


def current_tenant() -> Optional[str]:
    """Tenant set for the current context, if any."""
    return _current_tenant.get()


def set_current_tenant(tenant_id: Optional[str]) -> None:
    """
    Set the tenant for the current context.

    Inside a task this only affects that task (and tasks it spawns afterwards).
    """
    if tenant_id is not None and not tenant_id:
        raise ValueError("tenant_id must be a non-empty string")
    _current_tenant.set(tenant_id)


@contextmanager
def tenant_scope(tenant_id: str) -> Iterator[str]:
    """
    Context manager binding ``tenant_id`` for the enclosed block.

    Usage:
        with tenant_scope("acme"):
            await db.update("users/1", {"status": 5})
    """
    if not tenant_id:
        raise ValueError("tenant_id must be a non-empty string")
    token = _current_tenant.set(tenant_id)
    try:
        yield tenant_id
    finally:
        _current_tenant.reset(token)


def resolve_tenant(explicit: Optional[str], default: str) -> str:
    """Explicit argument, then context value, then the configured default."""
    if explicit is not None:
        if not explicit:
            raise ValueError("tenant_id must be a non-empty string")
        return explicit
    return _current_tenant.get() or default
