"""Pydantic schemas for request/response validation."""

from .base import *
from .tenant import *
from .student import *
from .course import *
from .staff import *

__all__ = [
    # Base schemas
    "BaseSchema",
    "JSONAPIResponse",
    "JSONAPICollectionResponse",
    "JSONAPIError",
    "JSONAPIErrorResponse",
    "HealthCheckResponse",

    # Tenant schemas
    "TenantCreateAttributes",
    "TenantCreateResource",
    "TenantCreateRequest",
    "TenantConfigResource",
    "TenantConfigUpdateRequest",
    "TenantStatusUpdateRequest",
    "TenantPlanUpdateRequest",
    "TenantResponse",
    "UsageResponse",

    # Student schemas
    "GuardianContactAttributes",
    "StudentAttributes",
    "StudentResource",
    "StudentCreateRequest",
    "StudentResponse",
    "StudentCollectionResponse",

    # Course schemas
    "CourseAttributes",
    "CourseResource",
    "CourseCreateRequest",
    "CourseResponse",
    "CourseCollectionResponse",

    # Staff schemas
    "StaffAttributes",
    "StaffResource",
    "StaffCreateRequest",
    "StaffResponse",
    "StaffCollectionResponse",
]
