"""Common FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campus.core.database import get_db_session
from campus.core.tenant_context import TenantContext, require_current
from campus.services.events import get_event_publisher
from campus.services.tenant_directory import TenantDirectory
from campus.services.usage_accounting import ResourceAccountant, get_resource_accountant


async def get_current_tenant() -> TenantContext:
    """Get the tenant context of the running request."""
    return require_current("tenant-scoped endpoint")


def get_tenant_directory(session: AsyncSession = Depends(get_db_session)) -> TenantDirectory:
    """Get tenant directory instance."""
    return TenantDirectory(session, get_event_publisher())


def get_accountant() -> ResourceAccountant:
    return get_resource_accountant()


def get_pagination_params(
    page: int = Query(1, ge=1, le=1000, description="Page number"),
    per_page: int = Query(25, ge=1, le=100, description="Items per page"),
    sort_by: Optional[str] = Query(None, description="Sort field"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$", description="Sort order")
) -> dict:
    """Get pagination parameters from query string."""
    return {
        "page": page,
        "per_page": per_page,
        "offset": (page - 1) * per_page,
        "limit": per_page,
        "sort_by": sort_by,
        "sort_order": sort_order
    }


def pagination_meta(pagination: dict, total: int) -> dict:
    return {
        "pagination": {
            "page": pagination["page"],
            "per_page": pagination["per_page"],
            "total": total,
            "pages": (total + pagination["per_page"] - 1) // pagination["per_page"]
        }
    }
