"""Pytest configuration and fixtures."""

import os

# Settings are cached on first use, so the test environment must be in place
# before any application module is imported.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("USAGE_BACKEND", "memory")
os.environ.setdefault("EVENT_BUS_TYPE", "mock")
os.environ.setdefault("BASE_DOMAIN", "campus.localhost")
os.environ.setdefault("TRUST_TENANT_HEADER", "false")

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import campus.models  # noqa: F401  registers tenant-owned mappers
from campus.core.database import get_database
from campus.core.tenant_context import TenantContext
from campus.middleware.auth import create_access_token, create_service_token
from campus.services import events
from campus.services.tenant_directory import TenantDirectory
from campus.services.usage_accounting import close_usage_store

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
BASE_URL = "http://campus.localhost"


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database with all tables for each test."""
    db = get_database()
    db.configure(TEST_DATABASE_URL)
    await db.create_all()
    yield db
    await db.disconnect()
    await close_usage_store()


@pytest.fixture
def event_publisher():
    """Mock event publisher with an empty event log."""
    publisher = events.get_event_publisher()
    publisher.published.clear()
    return publisher


@pytest.fixture
def make_tenant(database):
    """Register a tenant through the directory and return it."""

    async def _make(subdomain=None, **attributes):
        attributes.setdefault("name", "Test Academy")
        attributes["subdomain"] = subdomain or f"school-{uuid.uuid4().hex[:8]}"
        async with database.get_session() as session:
            return await TenantDirectory(session).create(attributes)

    return _make


@pytest_asyncio.fixture
async def tenant_a(make_tenant):
    return await make_tenant("alpha", name="Alpha High School", status="active")


@pytest_asyncio.fixture
async def tenant_b(make_tenant):
    return await make_tenant("bravo", name="Bravo Primary", status="active")


@pytest.fixture
def context_a(tenant_a):
    return TenantContext.from_tenant(tenant_a, resolved_by="test")


@pytest.fixture
def context_b(tenant_b):
    return TenantContext.from_tenant(tenant_b, resolved_by="test")


@pytest_asyncio.fixture
async def client(database):
    """HTTP client against the application on the platform base domain."""
    from campus.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def service_headers():
    """Headers of the billing service."""
    return {"Authorization": f"Bearer {create_service_token('billing')}"}


@pytest.fixture
def user_headers():
    """Build headers for a user token, optionally carrying a tenant claim."""

    def _headers(tenant_id=None):
        claims = {"sub": str(uuid.uuid4())}
        if tenant_id:
            claims["tenant_id"] = tenant_id
        return {"Authorization": f"Bearer {create_access_token(claims)}"}

    return _headers


@pytest.fixture
def sample_student_data():
    """Sample student data for testing."""
    return {
        "data": {
            "type": "student",
            "attributes": {
                "admission_number": "ADM-001",
                "first_name": "Ada",
                "last_name": "Lovelace",
                "date_of_birth": "2012-12-10",
                "grade_level": "7",
                "guardian_contact": {
                    "name": "Anne Byron",
                    "email": "anne@example.com",
                    "relationship": "mother"
                }
            }
        }
    }


@pytest.fixture
def sample_staff_data():
    """Sample staff data for testing."""
    return {
        "data": {
            "type": "staff",
            "attributes": {
                "email": "teacher@example.com",
                "full_name": "Grace Hopper",
                "role": "teacher"
            }
        }
    }
