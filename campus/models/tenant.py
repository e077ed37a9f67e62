"""Tenant model for multi-tenant isolation."""

import enum

from sqlalchemy import CheckConstraint, Column, Index, String

from .base import JSONType, TimestampMixin, generate_uuid
from campus.core.database import Base


class TenantStatus(str, enum.Enum):
    """Tenant lifecycle status."""

    TRIAL = "trial"
    ACTIVE = "active"
    LIMITED = "limited"
    INACTIVE = "inactive"

    def __str__(self) -> str:
        return self.value


class PlanTier(str, enum.Enum):
    """Subscription plan tier."""

    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    def __str__(self) -> str:
        return self.value


class Tenant(Base, TimestampMixin):
    """
    Tenant model representing one educational institution.
    Every tenant-owned entity references a tenant for data isolation.
    Tenants are never deleted; deactivation moves them to ``inactive``.
    """

    __tablename__ = "tenants"

    # Primary key
    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Opaque tenant identifier (UUID)"
    )

    # Basic information
    name = Column(
        String(255),
        nullable=False,
        comment="Institution display name"
    )
    subdomain = Column(
        String(63),
        unique=True,
        nullable=False,
        comment="Unique subdomain identifier"
    )
    custom_domain = Column(
        String(253),
        unique=True,
        nullable=True,
        comment="Optional unique custom domain"
    )

    # Status and plan
    status = Column(
        String(20),
        default=TenantStatus.TRIAL.value,
        nullable=False,
        comment="Tenant status: trial, active, limited, inactive"
    )
    plan = Column(
        String(20),
        default=PlanTier.BASIC.value,
        nullable=False,
        comment="Subscription plan: basic, premium, enterprise"
    )

    # Branding, feature flags, custom field schema, quota overrides
    config = Column(
        JSONType,
        default=dict,
        nullable=False,
        comment="Tenant-specific configuration"
    )

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "status IN ('trial', 'active', 'limited', 'inactive')",
            name="valid_tenant_status"
        ),
        CheckConstraint(
            "plan IN ('basic', 'premium', 'enterprise')",
            name="valid_tenant_plan"
        ),
        Index("idx_tenants_status", "status"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "subdomain": self.subdomain,
            "custom_domain": self.custom_domain,
            "status": self.status,
            "plan": self.plan,
            "config": dict(self.config or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}', subdomain='{self.subdomain}')>"
