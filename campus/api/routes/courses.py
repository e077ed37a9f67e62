"""Course API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus.api.dependencies.common import get_current_tenant, get_pagination_params, pagination_meta
from campus.api.responses import resource
from campus.core.database import get_db_session
from campus.core.tenant_context import TenantContext
from campus.models.course import Course
from campus.schemas.course import CourseCollectionResponse, CourseCreateRequest, CourseResponse
from campus.services.custom_fields import validate_custom_fields

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=CourseCollectionResponse)
async def list_courses(
    pagination: dict = Depends(get_pagination_params),
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
):
    """List courses of the current tenant."""
    total = (await session.execute(
        select(func.count(Course.id)).where(Course.tenant_id == tenant.tenant_id)
    )).scalar()
    result = await session.execute(
        select(Course)
        .order_by(Course.code)
        .offset(pagination["offset"])
        .limit(pagination["limit"])
    )

    return CourseCollectionResponse(
        data=[resource("course", course) for course in result.scalars().all()],
        meta=pagination_meta(pagination, total),
    )


@router.post("", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(
    request: CourseCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
):
    """Create a course."""
    attributes = request.data.attributes.model_dump()
    attributes["custom_fields"] = validate_custom_fields(
        Course.entity_type, attributes.get("custom_fields"), tenant.config
    )

    course = Course(**attributes)
    session.add(course)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "duplicate_course_code",
                "message": f"Course code '{attributes['code']}' already exists",
                "code": "DUPLICATE_COURSE_CODE"
            }
        )
    await session.refresh(course)

    logger.info(f"Created course {course.id} for tenant {tenant.tenant_id}")
    return CourseResponse(data=resource("course", course))
