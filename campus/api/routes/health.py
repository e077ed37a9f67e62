"""Health check and system endpoints."""

from datetime import datetime, timezone

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campus.core.database import get_db_session
from campus.core.isolation import get_tenant_guard, tenant_owned_tables
from campus.core.settings import get_settings
from campus.schemas.base import HealthCheckResponse
from campus.services.events import get_event_publisher
from campus.services.usage_accounting import RedisUsageStore, get_usage_store

router = APIRouter()
settings = get_settings()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(session: AsyncSession = Depends(get_db_session)):
    """
    Service health check endpoint.

    Checks the health of the service and its dependencies:
    - Database connectivity
    - Usage counter store
    - Event publishing system
    """
    health_data = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc),
        "version": settings.app_version,
        "environment": settings.environment,
        "dependencies": {}
    }

    overall_status = "healthy"

    # Check database connectivity
    try:
        result = await session.execute(text("SELECT 1 as health_check"))
        row = result.fetchone()
        if not row or row[0] != 1:
            raise SQLAlchemyError("Unexpected database response")
        health_data["dependencies"]["database"] = {
            "status": "healthy",
            "details": "Connection successful"
        }
    except SQLAlchemyError as e:
        health_data["dependencies"]["database"] = {
            "status": "unhealthy",
            "error": str(e),
            "details": "Database connection failed"
        }
        overall_status = "unhealthy"

    # Check usage counter store; accounting fails open, so an outage only degrades
    store = get_usage_store()
    if isinstance(store, RedisUsageStore):
        try:
            await store.redis_client.ping()
            health_data["dependencies"]["usage_store"] = {
                "status": "healthy",
                "type": "redis",
                "details": "Redis reachable"
            }
        except redis.RedisError as e:
            health_data["dependencies"]["usage_store"] = {
                "status": "degraded",
                "type": "redis",
                "error": str(e),
                "details": "Redis unreachable, quotas not enforced"
            }
            if overall_status == "healthy":
                overall_status = "degraded"
    else:
        health_data["dependencies"]["usage_store"] = {
            "status": "healthy",
            "type": "memory",
            "details": "In-memory usage store active"
        }

    # Check event publishing system
    event_publisher = get_event_publisher()
    if event_publisher.event_bus_type == "sqs" and not (
        event_publisher.sqs_client and event_publisher.queue_url
    ):
        health_data["dependencies"]["events"] = {
            "status": "degraded",
            "type": "sqs",
            "details": "SQS not properly configured"
        }
        if overall_status == "healthy":
            overall_status = "degraded"
    else:
        health_data["dependencies"]["events"] = {
            "status": "healthy",
            "type": event_publisher.event_bus_type,
            "details": f"{event_publisher.event_bus_type} event publisher active"
        }

    health_data["status"] = overall_status

    if overall_status == "unhealthy":
        raise HTTPException(status_code=503, detail=health_data)

    return HealthCheckResponse(**health_data)


@router.get("/health/database")
async def database_health(session: AsyncSession = Depends(get_db_session)):
    """Detailed database and isolation health check."""
    try:
        connection = await session.connection()
        tables = await connection.run_sync(lambda conn: inspect(conn).get_table_names())

        rls_status = None
        if connection.dialect.name == "postgresql":
            rls_result = await session.execute(text("""
                SELECT tablename, rowsecurity
                FROM pg_tables
                WHERE schemaname = 'public'
                AND tablename IN ('tenants', 'students', 'courses', 'staff_members')
            """))
            rls_status = {row[0]: row[1] for row in rls_result.fetchall()}
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "unhealthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "error": str(e)
            }
        )

    guard = get_tenant_guard()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": {
            "connectivity": "ok",
            "dialect": connection.dialect.name,
            "tables": sorted(tables),
            "tenant_owned_tables": sorted(tenant_owned_tables()),
            "isolation_strategy": guard.strategy.name if guard else None,
            "row_level_security": rls_status,
        }
    }


@router.get("/version")
async def version_info():
    """Get service version information."""
    return {
        "service": "campus-tenancy-service",
        "version": settings.app_version,
        "environment": settings.environment,
        "api_version": "v1",
    }
