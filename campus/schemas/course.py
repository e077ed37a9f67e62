"""Course-related Pydantic schemas."""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from .base import BaseSchema, JSONAPICollectionResponse, JSONAPIResponse


class CourseAttributes(BaseSchema):
    """Attributes for course resource."""

    code: str = Field(min_length=1, max_length=30, description="Course code")
    title: str = Field(min_length=1, max_length=255, description="Course title")
    description: Optional[str] = Field(None, description="Course description")
    credits: Optional[int] = Field(None, ge=0, le=60, description="Credit hours")
    capacity: Optional[int] = Field(None, ge=1, description="Maximum enrollment")
    custom_fields: Dict[str, Any] = Field(default_factory=dict, description="Tenant-defined fields")

    @field_validator("code")
    @classmethod
    def uppercase_code(cls, v: str) -> str:
        return v.upper()


class CourseResource(BaseSchema):
    """JSON:API resource for course."""

    type: str = Field("course", description="Resource type")
    id: Optional[str] = Field(None, description="Course UUID")
    attributes: CourseAttributes


class CourseCreateRequest(BaseSchema):
    """Request schema for creating a course."""

    data: CourseResource = Field(description="Course data to create")


class CourseResponse(JSONAPIResponse):
    """Response schema for single course."""


class CourseCollectionResponse(JSONAPICollectionResponse):
    """Response schema for course collection."""
