"""JSON:API response helpers shared by routes, middleware and exception handlers."""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from campus.core.exceptions import (
    CustomFieldValidationError,
    QuotaExceeded,
    TenancyError,
    TenantValidationError,
)
from campus.schemas.base import ErrorSource, JSONAPIError, JSONAPIErrorResponse


def error_response(
    status_code: int,
    code: str,
    title: str,
    detail: str,
    pointer: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build a JSON:API error document with a single error object."""
    document = JSONAPIErrorResponse(errors=[
        JSONAPIError(
            status=str(status_code),
            code=code,
            title=title,
            detail=detail,
            source=ErrorSource(pointer=pointer) if pointer else None,
            meta=meta or None,
        )
    ])
    return JSONResponse(
        status_code=status_code,
        content=document.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


def tenancy_error_response(exc: TenancyError, pointer: Optional[str] = None) -> JSONResponse:
    """Render a tenancy error; isolation violations never expose their message."""
    if exc.status_code >= 500:
        return error_response(
            exc.status_code,
            exc.code,
            exc.title,
            "An unexpected error occurred",
        )

    meta = None
    headers = None
    if isinstance(exc, (TenantValidationError, CustomFieldValidationError)):
        meta = {"errors": exc.errors}
    elif isinstance(exc, QuotaExceeded):
        meta = {
            "resource_kind": exc.resource_kind,
            "limit": exc.limit,
            "current": exc.current,
        }
        if exc.retry_after is not None:
            headers = {
                "Retry-After": str(exc.retry_after),
                "X-Quota-Limit": str(exc.limit),
                "X-Quota-Remaining": "0",
            }

    return error_response(
        exc.status_code,
        exc.code,
        exc.title,
        exc.message,
        pointer=pointer,
        meta=meta,
        headers=headers,
    )


def resource(resource_type: str, instance, exclude=("id", "tenant_id")) -> Dict[str, Any]:
    """Serialise a model instance as a JSON:API resource object."""
    return {
        "type": resource_type,
        "id": str(instance.id),
        "attributes": {k: v for k, v in instance.to_dict().items() if k not in exclude},
    }
