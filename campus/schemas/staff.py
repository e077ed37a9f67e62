"""Staff-related Pydantic schemas."""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from .base import BaseSchema, JSONAPICollectionResponse, JSONAPIResponse
from campus.utils.validators import EmailValidator, PhoneValidator

VALID_STAFF_ROLES = {"teacher", "administrator", "accountant", "support"}


class StaffAttributes(BaseSchema):
    """Attributes for staff member resource."""

    email: str = Field(min_length=3, max_length=255, description="Login email")
    full_name: str = Field(min_length=1, max_length=255, description="Full name")
    role: str = Field("teacher", description="Role: teacher, administrator, accountant, support")
    phone: Optional[str] = Field(None, max_length=50, description="Contact phone")
    custom_fields: Dict[str, Any] = Field(default_factory=dict, description="Tenant-defined fields")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        errors = EmailValidator.validate(v)
        if errors:
            raise ValueError(errors[0].message)
        return v.lower()

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        if v not in VALID_STAFF_ROLES:
            raise ValueError(f"Role must be one of: {sorted(VALID_STAFF_ROLES)}")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        errors = PhoneValidator.validate(v)
        if errors:
            raise ValueError(errors[0].message)
        return PhoneValidator.format_international(v) if v else v


class StaffResource(BaseSchema):
    """JSON:API resource for staff member."""

    type: str = Field("staff", description="Resource type")
    id: Optional[str] = Field(None, description="Staff member UUID")
    attributes: StaffAttributes


class StaffCreateRequest(BaseSchema):
    """Request schema for creating a staff member."""

    data: StaffResource = Field(description="Staff member data to create")


class StaffResponse(JSONAPIResponse):
    """Response schema for single staff member."""


class StaffCollectionResponse(JSONAPICollectionResponse):
    """Response schema for staff collection."""
