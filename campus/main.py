"""Main FastAPI application for the Campus Tenancy Service."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from campus.api.responses import error_response, tenancy_error_response
from campus.api.routes import courses, health, staff, students, tenants
from campus.core.database import get_database
from campus.core.exceptions import IsolationViolation, TenancyError
from campus.core.settings import get_settings
from campus.middleware.auth import AuthenticationMiddleware
from campus.middleware.logging import LoggingMiddleware, configure_logging, get_request_logger
from campus.middleware.quota import QuotaMiddleware
from campus.middleware.tenant import TenantContextMiddleware
from campus.services.usage_accounting import close_usage_store

# Initialize logging
configure_logging()

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    await get_database().connect()
    yield
    # Shutdown
    await close_usage_store()
    await get_database().disconnect()


app = FastAPI(
    title="Campus Tenancy Service",
    description="Multi-tenant request isolation and data access for school management",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
)

# Security middleware
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

# Custom middleware stack, innermost first: each request is logged, its
# token verified, its tenant resolved, and then its API call accounted.
app.add_middleware(QuotaMiddleware)
app.add_middleware(TenantContextMiddleware)
app.add_middleware(AuthenticationMiddleware)
app.add_middleware(LoggingMiddleware)


# Exception handlers
@app.exception_handler(IsolationViolation)
async def isolation_violation_handler(request: Request, exc: IsolationViolation):
    """Abort the request on an isolation violation without revealing details."""
    get_request_logger(request).critical(
        "Tenant isolation violation",
        error_type=type(exc).__name__,
        error_message=exc.message,
    )
    return tenancy_error_response(exc)


@app.exception_handler(TenancyError)
async def tenancy_error_handler(request: Request, exc: TenancyError):
    """Handle tenancy errors with JSON:API format."""
    return tenancy_error_response(exc, pointer=request.url.path)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors with JSON:API format."""
    return error_response(
        422,
        "VALIDATION_ERROR",
        "Validation Error",
        "Request body or parameters failed validation",
        pointer=request.url.path,
        meta={"errors": [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "code": error["type"],
                "message": error["msg"],
            }
            for error in exc.errors()
        ]},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with JSON:API format."""
    detail = exc.detail if isinstance(exc.detail, dict) else {}
    message = detail.get("message", str(exc.detail))
    return error_response(
        exc.status_code,
        detail.get("code", "RESOURCE_NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"),
        message,
        message,
        pointer=request.url.path,
        headers=getattr(exc, "headers", None),
    )


# Routes
app.include_router(health.router, prefix="", tags=["system"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "campus-tenancy-service",
        "version": settings.app_version,
        "status": "running",
        "api": {
            "docs": "/docs" if not settings.is_production else None,
            "openapi": "/openapi.json" if not settings.is_production else None
        }
    }


# Main API routes
app.include_router(tenants.router, prefix=f"{settings.api_v1_prefix}/tenants", tags=["tenants"])
app.include_router(students.router, prefix=f"{settings.api_v1_prefix}/students", tags=["students"])
app.include_router(courses.router, prefix=f"{settings.api_v1_prefix}/courses", tags=["courses"])
app.include_router(staff.router, prefix=f"{settings.api_v1_prefix}/staff", tags=["staff"])


if __name__ == "__main__":
    uvicorn.run(
        "campus.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
