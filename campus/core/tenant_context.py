"""Request-scoped tenant context propagation.

The resolved tenant travels with the logical unit of work through a
``ContextVar``. asyncio tasks copy the context when they are created, so a
value set for one request is visible across its await points and in any task
it spawns, and never in a concurrently running request.
"""

import copy
import inspect
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterator, Mapping, Optional, TypeVar, Union

from campus.core.exceptions import NoTenantContext
from campus.models.tenant import TenantStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TenantContext:
    """Snapshot of the tenant a unit of work runs for."""

    tenant_id: str
    subdomain: str
    status: str
    plan: str
    config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    resolved_by: Optional[str] = None

    @classmethod
    def from_tenant(cls, tenant, resolved_by: Optional[str] = None) -> "TenantContext":
        """Build a context from a ``Tenant`` row, copying its configuration."""
        return cls(
            tenant_id=str(tenant.id),
            subdomain=tenant.subdomain,
            status=tenant.status,
            plan=tenant.plan,
            config=MappingProxyType(copy.deepcopy(tenant.config or {})),
            resolved_by=resolved_by,
        )

    @property
    def is_limited(self) -> bool:
        return self.status == TenantStatus.LIMITED

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "subdomain": self.subdomain,
            "status": self.status,
            "plan": self.plan,
            "is_limited": self.is_limited,
            "resolved_by": self.resolved_by,
        }


_current_tenant: ContextVar[Optional[TenantContext]] = ContextVar(
    "current_tenant", default=None
)


def current() -> Optional[TenantContext]:
    """Return the tenant context of the running unit of work, if any."""
    return _current_tenant.get()


def current_tenant_id() -> Optional[str]:
    ctx = _current_tenant.get()
    return ctx.tenant_id if ctx else None


def require_current(operation: str = "tenant-scoped operation") -> TenantContext:
    """Return the current tenant context or raise ``NoTenantContext``."""
    ctx = _current_tenant.get()
    if ctx is None:
        logger.error(f"No tenant context for {operation}")
        raise NoTenantContext(operation)
    return ctx


@contextmanager
def tenant_scope(context: TenantContext) -> Iterator[TenantContext]:
    """Make ``context`` current for the body of the ``with`` block."""
    token = _current_tenant.set(context)
    try:
        yield context
    finally:
        _current_tenant.reset(token)


def run_with(
    context: TenantContext,
    work: Callable[..., Union[T, Awaitable[T]]],
    *args: Any,
    **kwargs: Any,
) -> Union[T, Awaitable[T]]:
    """
    Execute ``work`` with ``context`` as the current tenant.

    Plain callables run immediately and their result is returned. Coroutine
    functions return an awaitable; the context is set when it starts running
    and stays current across every suspension point until it completes.

    Args:
        context: Tenant context to install
        work: Callable or coroutine function to run
        *args: Positional arguments for ``work``
        **kwargs: Keyword arguments for ``work``

    Returns:
        The result of ``work``, or an awaitable of it for coroutine functions
    """
    if inspect.iscoroutinefunction(work):
        return _run_async(context, work, *args, **kwargs)

    with tenant_scope(context):
        return work(*args, **kwargs)


async def _run_async(context: TenantContext, work, *args, **kwargs):
    with tenant_scope(context):
        return await work(*args, **kwargs)
