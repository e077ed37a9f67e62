"""API call quota middleware."""

import logging

import redis.asyncio as redis
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from campus.api.responses import tenancy_error_response
from campus.core.exceptions import QuotaExceeded
from campus.core.tenant_context import current
from campus.services.usage_accounting import ResourceKind, get_resource_accountant

logger = logging.getLogger(__name__)


class QuotaMiddleware(BaseHTTPMiddleware):
    """
    Accounts one API call per tenant-scoped request against the tenant's
    daily quota. Runs inside the tenant scope; requests without a tenant are
    not accounted.

    Usage is counted before the request is handled and never rolled back,
    even if the handler fails or the client disconnects.
    """

    async def dispatch(self, request: Request, call_next):
        """Apply the API call quota to requests."""
        context = current()
        if context is None:
            return await call_next(request)

        accountant = get_resource_accountant()
        try:
            grant = await accountant.check_and_increment(context.tenant_id, ResourceKind.API_CALLS)
        except QuotaExceeded as exc:
            return tenancy_error_response(exc, pointer=request.url.path)
        except redis.RedisError as e:
            # Continue without accounting if Redis fails
            logger.error(f"Redis error during usage accounting: {e}")
            return await call_next(request)

        response = await call_next(request)

        if not grant.unlimited:
            response.headers["X-Quota-Limit"] = str(grant.limit)
            response.headers["X-Quota-Remaining"] = str(grant.remaining)
        return response
