"""Base model classes and mixins."""

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declared_attr

from campus.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin for adding created_at and updated_at timestamps."""

    created_at = Column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False,
        comment="Record creation timestamp"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Record last update timestamp"
    )


class TenantOwnedMixin:
    """
    Marks a model as partitioned by tenant.

    The data access guard recognises every subclass of this mixin: reads are
    filtered to the current tenant, ``tenant_id`` is stamped on insert, and
    writes naming another tenant are rejected. ``tenant_id`` is set once at
    creation and never changes.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(36),
            ForeignKey("tenants.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
            comment="Owning tenant identifier"
        )


class BaseModel(Base, TimestampMixin, TenantOwnedMixin):
    """
    Base model class for tenant-owned entities.

    Provides the primary key, tenant ownership, timestamps, and a per-tenant
    custom field map validated against the tenant's custom field schema.
    """

    __abstract__ = True

    # Entity type name used as the key into a tenant's custom field schema
    entity_type: str = "record"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key UUID"
    )

    custom_fields = Column(
        JSONType,
        default=dict,
        nullable=False,
        comment="Tenant-defined custom field values"
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model instance to dictionary."""
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, uuid.UUID):
                value = str(value)
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        """String representation of the model."""
        return f"<{self.__class__.__name__}(id={self.id}, tenant_id={self.tenant_id})>"
