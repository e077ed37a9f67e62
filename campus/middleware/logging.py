"""Logging middleware for request/response tracking."""

import logging
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from campus.core.settings import get_settings

settings = get_settings()


def configure_logging():
    """Configure structured logging with JSON output."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all requests and responses with structured logging.
    The tenant is only known once resolution has run further down the stack,
    so it is read from request state when the response comes back.
    """

    def __init__(self, app, logger_name: str = "campus.http"):
        super().__init__(app)
        self.logger = structlog.get_logger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with comprehensive logging."""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start_time = time.time()

        method = request.method
        path = request.url.path
        headers = dict(request.headers)
        client_ip = self._get_client_ip(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        request_data = {
            "method": method,
            "path": path,
            "host": headers.get("host", ""),
            "query_params": dict(request.query_params),
            "client_ip": client_ip,
            "user_agent": headers.get("user-agent", ""),
        }

        # Log sensitive headers only in debug mode
        if settings.debug:
            request_data["headers"] = self._sanitize_headers(headers)

        self.logger.info("HTTP request started", **request_data)

        request.state.request_id = request_id
        request.state.start_time = start_time

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            self.logger.error(
                "HTTP request failed with exception",
                method=method,
                path=path,
                error_type=type(e).__name__,
                error_message=str(e),
                process_time_ms=round(process_time * 1000, 2),
                tenant_id=getattr(request.state, "tenant_id", None),
                user_id=getattr(request.state, "user_id", None),
                client_ip=client_ip,
            )
            raise

        process_time = time.time() - start_time
        response_data = {
            "method": method,
            "path": path,
            "status_code": response.status_code,
            "process_time_ms": round(process_time * 1000, 2),
            "tenant_id": getattr(request.state, "tenant_id", None),
            "resolved_by": getattr(request.state, "tenant_resolved_by", None),
            "user_id": getattr(request.state, "user_id", None),
            "client_ip": client_ip,
        }

        # Log response with appropriate level based on status code
        if 200 <= response.status_code < 400:
            self.logger.info("HTTP request completed successfully", **response_data)
        elif 400 <= response.status_code < 500:
            self.logger.warning("HTTP request completed with client error", **response_data)
        else:
            self.logger.error("HTTP request completed with server error", **response_data)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)
        return response

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address with proxy support."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # Take the first IP in the chain
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _sanitize_headers(self, headers: dict) -> dict:
        """Remove sensitive information from headers."""
        sensitive_headers = {
            "authorization",
            "cookie",
            "x-api-key",
            "x-auth-token",
        }
        return {
            key: "[REDACTED]" if key.lower() in sensitive_headers else value
            for key, value in headers.items()
        }


def get_request_logger(request: Request) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with request context."""
    logger = structlog.get_logger("campus.request")
    return logger.bind(
        request_id=getattr(request.state, "request_id", "unknown"),
        tenant_id=getattr(request.state, "tenant_id", None),
        user_id=getattr(request.state, "user_id", None),
        path=request.url.path,
    )
