"""Database models for the campus tenancy service."""

from .base import BaseModel, TenantOwnedMixin, TimestampMixin
from .tenant import PlanTier, Tenant, TenantStatus
from .student import Student
from .course import Course
from .staff import StaffMember

__all__ = [
    "BaseModel",
    "TenantOwnedMixin",
    "TimestampMixin",
    "PlanTier",
    "Tenant",
    "TenantStatus",
    "Student",
    "Course",
    "StaffMember",
]
