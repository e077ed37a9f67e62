"""Tenancy error taxonomy.

Two families live here. Client-facing outcomes (identification, quota,
registration) are ordinary control flow mapped to 4xx responses. Isolation
violations (``IsolationViolation`` and its subclasses) signal a programming
error: they abort the unit of work and are never caught and ignored above
the data access guard.
"""

from typing import Any, Dict, List, Optional


class TenancyError(Exception):
    """Base exception for all tenancy errors."""

    status_code = 500
    code = "TENANCY_ERROR"
    title = "Tenancy Error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.title)
        self.message = message or self.title


class TenantNotIdentified(TenancyError):
    """Raised when a tenant-required request carries no resolvable tenant."""

    status_code = 400
    code = "TENANT_NOT_IDENTIFIED"
    title = "Tenant Not Identified"


class TenantInactive(TenancyError):
    """Raised when the resolved tenant is inactive.

    Rendered as not-found so callers cannot probe for deactivated tenants.
    """

    status_code = 404
    code = "RESOURCE_NOT_FOUND"
    title = "Resource Not Found"

    def __init__(self, tenant_id: str):
        super().__init__("The requested resource was not found")
        self.tenant_id = tenant_id


class TenantNotFound(TenancyError):
    """Raised when a directory lookup matches no tenant."""

    status_code = 404
    code = "TENANT_NOT_FOUND"
    title = "Tenant Not Found"

    def __init__(self, lookup: str, value: str):
        super().__init__(f"No tenant with {lookup} '{value}'")
        self.lookup = lookup
        self.value = value


class DuplicateIdentifier(TenancyError):
    """Raised when a subdomain or custom domain is already claimed."""

    status_code = 409
    code = "DUPLICATE_IDENTIFIER"
    title = "Duplicate Identifier"

    def __init__(self, field: str, value: str):
        super().__init__(f"The {field} '{value}' is already taken")
        self.field = field
        self.value = value


class TenantValidationError(TenancyError):
    """Raised when tenant attributes fail validation."""

    status_code = 422
    code = "TENANT_VALIDATION_FAILED"
    title = "Tenant Validation Failed"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class CustomFieldValidationError(TenancyError):
    """Raised when an entity's custom fields do not match the tenant schema."""

    status_code = 422
    code = "CUSTOM_FIELD_VALIDATION_FAILED"
    title = "Custom Field Validation Failed"

    def __init__(self, entity_type: str, errors: List[Dict[str, Any]]):
        super().__init__(f"Invalid custom fields for {entity_type}")
        self.entity_type = entity_type
        self.errors = errors


class QuotaExceeded(TenancyError):
    """Raised when an operation would push a usage counter past its quota.

    The attempted amount is never counted.
    """

    status_code = 429
    code = "QUOTA_EXCEEDED"
    title = "Quota Exceeded"

    def __init__(
        self,
        resource_kind: str,
        limit: int,
        current: int,
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            f"Quota for {resource_kind} exceeded ({current}/{limit})"
        )
        self.resource_kind = resource_kind
        self.limit = limit
        self.current = current
        self.retry_after = retry_after


class IsolationViolation(TenancyError):
    """Base class for fatal isolation violations."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    title = "Internal Server Error"


class NoTenantContext(IsolationViolation):
    """Raised when a tenant-scoped operation runs outside any tenant context."""

    def __init__(self, operation: str = "tenant-scoped operation"):
        super().__init__(f"No tenant context for {operation}")
        self.operation = operation


class CrossTenantWrite(IsolationViolation):
    """Raised when a write names a tenant other than the current one."""

    def __init__(self, current_tenant_id: Optional[str], record_tenant_id: Optional[str], entity: str = "record"):
        super().__init__(
            f"Write of {entity} for tenant {record_tenant_id} "
            f"under tenant context {current_tenant_id}"
        )
        self.current_tenant_id = current_tenant_id
        self.record_tenant_id = record_tenant_id
        self.entity = entity


class CrossTenantRead(IsolationViolation):
    """Raised when a read names a tenant other than the current one."""

    def __init__(self, current_tenant_id: Optional[str], requested_tenant_id: Optional[str], entity: str = "record"):
        super().__init__(
            f"Read of {entity} for tenant {requested_tenant_id} "
            f"under tenant context {current_tenant_id}"
        )
        self.current_tenant_id = current_tenant_id
        self.requested_tenant_id = requested_tenant_id
        self.entity = entity
