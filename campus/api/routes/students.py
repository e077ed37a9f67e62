"""Student API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus.api.dependencies.common import get_current_tenant, get_pagination_params, pagination_meta
from campus.api.responses import resource
from campus.core.database import get_db_session
from campus.core.tenant_context import TenantContext
from campus.models.student import Student
from campus.schemas.student import StudentCollectionResponse, StudentCreateRequest, StudentResponse
from campus.services.custom_fields import validate_custom_fields

logger = logging.getLogger(__name__)
router = APIRouter()

SORTABLE_FIELDS = {"last_name", "first_name", "admission_number", "grade_level", "created_at"}


@router.get("", response_model=StudentCollectionResponse)
async def list_students(
    pagination: dict = Depends(get_pagination_params),
    grade_level: str = Query(None, description="Filter by grade level"),
    status_filter: str = Query(None, alias="status", description="Filter by status"),
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
):
    """List students of the current tenant."""
    query = select(Student)
    # Aggregates carry no loaded entity, so the tenant filter is explicit
    count_query = select(func.count(Student.id)).where(Student.tenant_id == tenant.tenant_id)

    if grade_level:
        query = query.where(Student.grade_level == grade_level)
        count_query = count_query.where(Student.grade_level == grade_level)
    if status_filter:
        query = query.where(Student.status == status_filter)
        count_query = count_query.where(Student.status == status_filter)

    sort_by = pagination["sort_by"] if pagination["sort_by"] in SORTABLE_FIELDS else "last_name"
    sort_column = getattr(Student, sort_by)
    query = query.order_by(sort_column.desc() if pagination["sort_order"] == "desc" else sort_column.asc())

    total = (await session.execute(count_query)).scalar()
    result = await session.execute(query.offset(pagination["offset"]).limit(pagination["limit"]))
    students = result.scalars().all()

    return StudentCollectionResponse(
        data=[resource("student", student) for student in students],
        meta=pagination_meta(pagination, total),
    )


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    request: StudentCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
):
    """Create a student. Ownership is stamped from the tenant context."""
    attributes = request.data.attributes.model_dump()
    attributes["custom_fields"] = validate_custom_fields(
        Student.entity_type, attributes.get("custom_fields"), tenant.config
    )

    student = Student(**attributes)
    session.add(student)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "duplicate_admission_number",
                "message": f"Admission number '{attributes['admission_number']}' already exists",
                "code": "DUPLICATE_ADMISSION_NUMBER"
            }
        )
    await session.refresh(student)

    logger.info(f"Created student {student.id} for tenant {tenant.tenant_id}")
    return StudentResponse(data=resource("student", student))


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: str,
    session: AsyncSession = Depends(get_db_session),
    tenant: TenantContext = Depends(get_current_tenant),
):
    """Get a specific student."""
    student = await session.get(Student, student_id)
    if not student:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "student_not_found",
                "message": "Student not found",
                "code": "RESOURCE_NOT_FOUND"
            }
        )

    return StudentResponse(data=resource("student", student))
