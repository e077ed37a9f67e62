"""Tenant-related Pydantic schemas."""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from .base import BaseSchema, JSONAPIResponse
from campus.models.tenant import PlanTier, TenantStatus


class TenantCreateAttributes(BaseSchema):
    """Attributes accepted when an institution registers."""

    name: str = Field(min_length=1, max_length=255, description="Institution name")
    subdomain: str = Field(min_length=3, max_length=63, description="Unique subdomain")
    custom_domain: Optional[str] = Field(None, max_length=253, description="Optional custom domain")
    plan: str = Field(PlanTier.BASIC.value, description="Plan tier: basic, premium, enterprise")
    config: Dict[str, Any] = Field(default_factory=dict, description="Branding, feature flags, custom fields")

    @field_validator("subdomain")
    @classmethod
    def lowercase_subdomain(cls, v: str) -> str:
        return v.lower()

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, v: str) -> str:
        valid_plans = [p.value for p in PlanTier]
        if v not in valid_plans:
            raise ValueError(f"Plan must be one of: {valid_plans}")
        return v


class TenantCreateResource(BaseSchema):
    """JSON:API resource for tenant registration."""

    type: str = Field("tenant", description="Resource type")
    attributes: TenantCreateAttributes


class TenantCreateRequest(BaseSchema):
    """Request schema for registering a tenant."""

    data: TenantCreateResource = Field(description="Tenant data to create")


class TenantConfigResource(BaseSchema):
    """Partial configuration; top-level keys replace existing ones."""

    type: str = Field("tenant_config", description="Resource type")
    attributes: Dict[str, Any] = Field(description="Configuration keys to merge")


class TenantConfigUpdateRequest(BaseSchema):
    """Request schema for merging tenant configuration."""

    data: TenantConfigResource


class TenantStatusAttributes(BaseSchema):
    status: str = Field(description="New status: trial, active, limited, inactive")

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        valid_statuses = [s.value for s in TenantStatus]
        if v not in valid_statuses:
            raise ValueError(f"Status must be one of: {valid_statuses}")
        return v


class TenantStatusResource(BaseSchema):
    type: str = Field("tenant_status", description="Resource type")
    attributes: TenantStatusAttributes


class TenantStatusUpdateRequest(BaseSchema):
    """Billing-system request to transition a tenant's status."""

    data: TenantStatusResource


class TenantPlanAttributes(BaseSchema):
    plan: str = Field(description="New plan: basic, premium, enterprise")

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, v: str) -> str:
        valid_plans = [p.value for p in PlanTier]
        if v not in valid_plans:
            raise ValueError(f"Plan must be one of: {valid_plans}")
        return v


class TenantPlanResource(BaseSchema):
    type: str = Field("tenant_plan", description="Resource type")
    attributes: TenantPlanAttributes


class TenantPlanUpdateRequest(BaseSchema):
    """Billing-system request to change a tenant's plan."""

    data: TenantPlanResource


class TenantResponse(JSONAPIResponse):
    """Response schema for a single tenant."""


class UsageResponse(JSONAPIResponse):
    """Response schema for a tenant's usage report."""

