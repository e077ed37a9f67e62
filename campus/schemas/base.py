"""Base Pydantic schemas for JSON:API documents."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class ErrorSource(BaseSchema):
    pointer: Optional[str] = Field(None, description="Path of the request that failed")
    parameter: Optional[str] = Field(None, description="Query parameter that failed")


class JSONAPIError(BaseSchema):
    """One entry of a JSON:API ``errors`` array."""

    status: str = Field(description="HTTP status code as a string")
    code: str = Field(description="Stable machine-readable error code")
    title: str = Field(description="Short summary of the error kind")
    detail: Optional[str] = Field(None, description="Explanation of this occurrence")
    source: Optional[ErrorSource] = None
    meta: Optional[Dict[str, Any]] = Field(
        None, description="Quota figures or field-level validation errors"
    )


class JSONAPIErrorResponse(BaseSchema):
    errors: List[JSONAPIError] = Field(min_length=1)


class JSONAPIResponse(BaseSchema):
    """Single-resource document."""

    data: Optional[Dict[str, Any]] = Field(None, description="Primary data")
    meta: Optional[Dict[str, Any]] = None
    links: Optional[Dict[str, str]] = None


class JSONAPICollectionResponse(BaseSchema):
    """Collection document; ``meta.pagination`` carries paging figures."""

    data: List[Dict[str, Any]] = Field(description="Resources visible to the current tenant")
    meta: Optional[Dict[str, Any]] = None
    links: Optional[Dict[str, str]] = None


class HealthCheckResponse(BaseSchema):
    """Liveness report; a degraded dependency does not fail the check."""

    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime
    version: str
    environment: str
    dependencies: Dict[str, Dict[str, Any]] = Field(
        description="Per-dependency status keyed by dependency name"
    )
