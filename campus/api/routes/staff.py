"""Staff API endpoints. Staff members occupy the tenant's user seats."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus.api.dependencies.common import (
    get_accountant,
    get_current_tenant,
    get_pagination_params,
    pagination_meta,
)
from campus.api.responses import resource
from campus.core.database import get_db_session
from campus.core.tenant_context import TenantContext
from campus.models.staff import StaffMember
from campus.schemas.staff import StaffCollectionResponse, StaffCreateRequest, StaffResponse
from campus.services.custom_fields import validate_custom_fields
from campus.services.usage_accounting import ResourceAccountant, ResourceKind

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=StaffCollectionResponse)
async def list_staff(
    pagination: dict = Depends(get_pagination_params),
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
):
    """List staff members of the current tenant."""
    total = (await session.execute(
        select(func.count(StaffMember.id)).where(StaffMember.tenant_id == tenant.tenant_id)
    )).scalar()
    result = await session.execute(
        select(StaffMember)
        .order_by(StaffMember.full_name)
        .offset(pagination["offset"])
        .limit(pagination["limit"])
    )

    return StaffCollectionResponse(
        data=[resource("staff", member) for member in result.scalars().all()],
        meta=pagination_meta(pagination, total),
    )


@router.post("", response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
async def create_staff_member(
    request: StaffCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
    accountant: ResourceAccountant = Depends(get_accountant),
):
    """
    Add a staff member.

    Takes one seat of the tenant's ``users`` quota before inserting; the
    seat is given back if the insert fails.
    """
    attributes = request.data.attributes.model_dump()
    attributes["custom_fields"] = validate_custom_fields(
        StaffMember.entity_type, attributes.get("custom_fields"), tenant.config
    )

    grant = await accountant.check_and_increment(tenant.tenant_id, ResourceKind.USERS)

    member = StaffMember(**attributes)
    session.add(member)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        await accountant.release(tenant.tenant_id, ResourceKind.USERS)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "duplicate_staff_email",
                "message": f"Staff member '{attributes['email']}' already exists",
                "code": "DUPLICATE_STAFF_EMAIL"
            }
        )
    await session.refresh(member)

    logger.info(f"Created staff member {member.id} for tenant {tenant.tenant_id}")
    return StaffResponse(
        data=resource("staff", member),
        meta={"users": {"used": grant.current, "limit": None if grant.unlimited else grant.limit}},
    )


@router.delete("/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff_member(
    staff_id: str,
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
    accountant: ResourceAccountant = Depends(get_accountant),
):
    """Remove a staff member and release their user seat."""
    member = await session.get(StaffMember, staff_id)
    if not member:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "staff_not_found",
                "message": "Staff member not found",
                "code": "RESOURCE_NOT_FOUND"
            }
        )

    await session.delete(member)
    await session.commit()
    await accountant.release(tenant.tenant_id, ResourceKind.USERS)

    logger.info(f"Deleted staff member {staff_id} for tenant {tenant.tenant_id}")
