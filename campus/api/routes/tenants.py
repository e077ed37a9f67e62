"""Tenant registration, self-service and billing endpoints."""

import logging

from fastapi import APIRouter, Depends, status

from campus.api.dependencies.common import get_accountant, get_current_tenant, get_tenant_directory
from campus.api.responses import resource
from campus.core.tenant_context import TenantContext
from campus.middleware.auth import require_service_token
from campus.models.tenant import TenantStatus
from campus.schemas.tenant import (
    TenantConfigUpdateRequest,
    TenantCreateRequest,
    TenantPlanUpdateRequest,
    TenantResponse,
    TenantStatusUpdateRequest,
    UsageResponse,
)
from campus.services.tenant_directory import TenantDirectory
from campus.services.usage_accounting import ResourceAccountant

logger = logging.getLogger(__name__)
router = APIRouter()


def tenant_resource(tenant) -> dict:
    return resource("tenant", tenant, exclude=("id",))


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def register_tenant(
    request: TenantCreateRequest,
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """
    Register a new institution.

    Public endpoint. New tenants start in ``trial``; status changes come
    from the billing system.
    """
    attributes = request.data.attributes.model_dump()
    attributes["status"] = TenantStatus.TRIAL.value

    tenant = await directory.create(attributes)
    return TenantResponse(data=tenant_resource(tenant))


@router.get("/current", response_model=TenantResponse)
async def get_current_tenant_details(
    context: TenantContext = Depends(get_current_tenant),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Get the tenant the request resolved to."""
    tenant = await directory.lookup_by_identifier(context.tenant_id)
    return TenantResponse(
        data=tenant_resource(tenant),
        meta={"is_limited": context.is_limited, "resolved_by": context.resolved_by},
    )


@router.patch("/current/config", response_model=TenantResponse)
async def update_current_tenant_config(
    request: TenantConfigUpdateRequest,
    context: TenantContext = Depends(get_current_tenant),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Merge configuration keys into the current tenant's configuration."""
    tenant = await directory.update_config(context.tenant_id, request.data.attributes)
    return TenantResponse(data=tenant_resource(tenant))


@router.get("/current/usage", response_model=UsageResponse)
async def get_current_tenant_usage(
    context: TenantContext = Depends(get_current_tenant),
    accountant: ResourceAccountant = Depends(get_accountant),
):
    """Report the current tenant's resource usage and quota limits."""
    usage = await accountant.get_usage(context.tenant_id)
    return UsageResponse(
        data={"type": "tenant_usage", "id": context.tenant_id, "attributes": usage},
        meta={"plan": context.plan, "status": context.status},
    )


@router.put("/{tenant_id}/status", response_model=TenantResponse)
async def update_tenant_status(
    tenant_id: str,
    request: TenantStatusUpdateRequest,
    service: str = Depends(require_service_token),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Transition a tenant's lifecycle status. Billing system only."""
    logger.info(f"Service {service} setting tenant {tenant_id} status")
    tenant = await directory.update_status(tenant_id, request.data.attributes.status)
    return TenantResponse(data=tenant_resource(tenant))


@router.put("/{tenant_id}/plan", response_model=TenantResponse)
async def update_tenant_plan(
    tenant_id: str,
    request: TenantPlanUpdateRequest,
    service: str = Depends(require_service_token),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Change a tenant's plan tier. Billing system only."""
    logger.info(f"Service {service} setting tenant {tenant_id} plan")
    tenant = await directory.update_plan(tenant_id, request.data.attributes.plan)
    return TenantResponse(data=tenant_resource(tenant))
