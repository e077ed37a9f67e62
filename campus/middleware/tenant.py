"""Tenant context middleware for multi-tenant isolation."""

import logging
import re
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from campus.api.responses import tenancy_error_response
from campus.core.database import get_database
from campus.core.exceptions import TenancyError
from campus.core.settings import get_settings
from campus.core.tenant_context import TenantContext, tenant_scope
from campus.middleware.auth import is_service_request
from campus.services.tenant_directory import TenantDirectory
from campus.services.tenant_resolver import RequestSignals, TenantResolver

logger = logging.getLogger(__name__)
settings = get_settings()


class TenantContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware to establish tenant context for all requests.

    Resolves the tenant from the request's host, header and verified token
    claims, then runs the rest of the request inside that tenant's scope.
    Tenant-optional routes (registration, billing callbacks addressed by
    tenant id) proceed without a context when no signal matches.
    """

    EXEMPT_PATHS = {
        "/",
        "/health",
        "/health/database",
        "/version",
        "/openapi.json",
        "/docs",
        "/redoc",
        "/favicon.ico"
    }

    TENANT_OPTIONAL_ROUTES = [
        ("POST", re.compile(rf"^{re.escape(settings.api_v1_prefix)}/tenants/?$")),
        ("PUT", re.compile(rf"^{re.escape(settings.api_v1_prefix)}/tenants/[^/]+/(status|plan)$")),
    ]

    def _is_tenant_optional(self, request: Request) -> bool:
        return any(
            request.method == method and pattern.match(request.url.path)
            for method, pattern in self.TENANT_OPTIONAL_ROUTES
        )

    def _signals(self, request: Request) -> RequestSignals:
        return RequestSignals(
            host=request.headers.get("host"),
            tenant_header=request.headers.get(settings.tenant_header),
            claims=getattr(request.state, "claims", None) or {},
            is_public=self._is_tenant_optional(request),
            trusted_service=is_service_request(request),
        )

    async def _resolve(self, signals: RequestSignals) -> Optional[TenantContext]:
        # Resolution runs before any tenant scope exists and only reads tenants
        async with get_database().get_session() as session:
            resolver = TenantResolver(TenantDirectory(session), settings)
            return await resolver.resolve(signals)

    async def dispatch(self, request: Request, call_next):
        """Process request and set tenant context."""
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        try:
            context = await self._resolve(self._signals(request))
        except TenancyError as exc:
            logger.warning(f"Tenant resolution failed for {request.url.path}: {exc.code}")
            return tenancy_error_response(exc, pointer=request.url.path)

        if context is None:
            return await call_next(request)

        request.state.tenant_id = context.tenant_id
        request.state.tenant = context
        request.state.tenant_resolved_by = context.resolved_by
        structlog.contextvars.bind_contextvars(tenant_id=context.tenant_id)

        logger.debug(f"Set tenant context: {context.tenant_id} for {request.url.path}")

        with tenant_scope(context):
            response = await call_next(request)

        response.headers["X-Tenant-ID"] = context.tenant_id
        return response

