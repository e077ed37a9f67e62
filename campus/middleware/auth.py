"""Authentication middleware and dependencies."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware

from campus.api.responses import error_response
from campus.core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

USER_TOKEN = "user"
SERVICE_TOKEN = "service"


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Middleware verifying bearer JWTs.

    Requests without an Authorization header pass through anonymously; the
    tenant resolver decides whether the route needs an identity. A header
    that is present must carry a valid token, otherwise the request is
    rejected with 401. Verified claims are stored in request state, and are
    the only claims the tenant resolver will look at.
    """

    EXEMPT_PATHS = {
        "/health",
        "/openapi.json",
        "/docs",
        "/redoc",
        "/favicon.ico"
    }

    async def dispatch(self, request: Request, call_next):
        """Process request and validate authentication."""
        request.state.claims = {}
        request.state.token_type = None

        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        if not authorization:
            return await call_next(request)

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            logger.warning(f"Invalid authorization format for {request.url.path}")
            return self._unauthorized(
                "INVALID_AUTHORIZATION_FORMAT",
                "Authorization must be in 'Bearer <token>' format",
            )

        try:
            payload = decode_token(token)
        except JWTError as e:
            logger.warning(f"JWT validation failed for {request.url.path}: {e}")
            return self._unauthorized("INVALID_JWT_TOKEN", "Invalid or expired JWT token")

        subject = payload.get("sub")
        if not subject:
            return self._unauthorized("INVALID_TOKEN_PAYLOAD", "Token must contain 'sub' claim")

        request.state.claims = payload
        request.state.user_id = subject
        request.state.token_type = payload.get("token_type", USER_TOKEN)
        logger.debug(f"Authenticated {request.state.token_type} {subject} for {request.url.path}")

        return await call_next(request)

    @staticmethod
    def _unauthorized(code: str, message: str):
        return error_response(
            status.HTTP_401_UNAUTHORIZED,
            code,
            "Unauthorized",
            message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def decode_token(token: str) -> Dict[str, Any]:
    """Verify a JWT and return its claims."""
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm]
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.jwt_access_token_expire_minutes
        )

    to_encode.update({"exp": expire})
    to_encode.setdefault("token_type", USER_TOKEN)

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm
    )


def create_service_token(service_name: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a token for trusted service-to-service calls."""
    return create_access_token(
        {"sub": service_name, "token_type": SERVICE_TOKEN},
        expires_delta=expires_delta,
    )


def is_service_request(request: Request) -> bool:
    return getattr(request.state, "token_type", None) == SERVICE_TOKEN


def require_service_token(request: Request) -> str:
    """Dependency requiring a verified service token."""
    if not getattr(request.state, "user_id", None):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "missing_authorization",
                "message": "A service token is required",
                "code": "AUTHORIZATION_REQUIRED"
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not is_service_request(request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "insufficient_permissions",
                "message": "Only trusted services may perform this operation",
                "code": "SERVICE_TOKEN_REQUIRED"
            }
        )
    return request.state.user_id
