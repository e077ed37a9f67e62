"""Student-related Pydantic schemas."""

from datetime import date
from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from .base import BaseSchema, JSONAPICollectionResponse, JSONAPIResponse
from campus.utils.validators import EmailValidator, PhoneValidator


class GuardianContactAttributes(BaseSchema):
    """Guardian contact details."""

    name: str = Field(min_length=1, max_length=255, description="Guardian name")
    email: Optional[str] = Field(None, max_length=255, description="Guardian email")
    phone: Optional[str] = Field(None, max_length=50, description="Guardian phone (E.164 preferred)")
    relationship: Optional[str] = Field(None, max_length=50, description="Relationship to student")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        errors = EmailValidator.validate(v)
        if errors:
            raise ValueError(errors[0].message)
        return v.lower() if v else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        errors = PhoneValidator.validate(v)
        if errors:
            raise ValueError(errors[0].message)
        return PhoneValidator.format_international(v) if v else v


class StudentAttributes(BaseSchema):
    """Attributes for student resource."""

    admission_number: str = Field(min_length=1, max_length=50, description="Admission number")
    first_name: str = Field(min_length=1, max_length=100, description="First name")
    last_name: str = Field(min_length=1, max_length=100, description="Last name")
    date_of_birth: Optional[date] = Field(None, description="Date of birth")
    grade_level: Optional[str] = Field(None, max_length=20, description="Grade or class")
    guardian_contact: Optional[GuardianContactAttributes] = Field(None, description="Guardian contact")
    status: str = Field("enrolled", description="Status: enrolled, graduated, withdrawn")
    custom_fields: Dict[str, Any] = Field(default_factory=dict, description="Tenant-defined fields")

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        valid_statuses = {"enrolled", "graduated", "withdrawn"}
        if v not in valid_statuses:
            raise ValueError(f"Status must be one of: {valid_statuses}")
        return v

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: Optional[date]) -> Optional[date]:
        if v and v > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return v


class StudentResource(BaseSchema):
    """JSON:API resource for student."""

    type: str = Field("student", description="Resource type")
    id: Optional[str] = Field(None, description="Student UUID")
    attributes: StudentAttributes


class StudentCreateRequest(BaseSchema):
    """Request schema for creating a student."""

    data: StudentResource = Field(description="Student data to create")


class StudentResponse(JSONAPIResponse):
    """Response schema for single student."""


class StudentCollectionResponse(JSONAPICollectionResponse):
    """Response schema for student collection."""
