"""End-to-end tests of tenant resolution, isolation and quotas over HTTP."""

import pytest

from campus.services.tenant_directory import TenantDirectory


def tenant_url(subdomain: str, path: str) -> str:
    """Absolute URL for ``path`` on a tenant's subdomain."""
    return f"http://{subdomain}.campus.localhost{path}"


async def set_status(client, service_headers, tenant_id, new_status):
    response = await client.put(
        f"/api/v1/tenants/{tenant_id}/status",
        json={"data": {"type": "tenant_status", "attributes": {"status": new_status}}},
        headers=service_headers,
    )
    assert response.status_code == 200
    return response


class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_tenant(self, client, event_publisher):
        response = await client.post("/api/v1/tenants", json={
            "data": {
                "type": "tenant",
                "attributes": {"name": "Riverside Academy", "subdomain": "Riverside", "plan": "premium"}
            }
        })
        assert response.status_code == 201

        data = response.json()["data"]
        assert data["type"] == "tenant"
        assert data["id"]
        assert data["attributes"]["subdomain"] == "riverside"
        assert data["attributes"]["status"] == "trial"
        assert data["attributes"]["plan"] == "premium"
        assert event_publisher.published[-1].tenant_id == data["id"]

    @pytest.mark.asyncio
    async def test_duplicate_subdomain_conflict(self, client, tenant_a):
        response = await client.post("/api/v1/tenants", json={
            "data": {"type": "tenant", "attributes": {"name": "Copycat", "subdomain": "alpha"}}
        })
        assert response.status_code == 409
        assert response.json()["errors"][0]["code"] == "DUPLICATE_IDENTIFIER"

    @pytest.mark.asyncio
    async def test_reserved_subdomain_rejected(self, client):
        response = await client.post("/api/v1/tenants", json={
            "data": {"type": "tenant", "attributes": {"name": "Sneaky", "subdomain": "www"}}
        })
        assert response.status_code == 422
        error = response.json()["errors"][0]
        assert error["code"] == "TENANT_VALIDATION_FAILED"
        assert error["meta"]["errors"][0]["code"] == "RESERVED_SUBDOMAIN"

    @pytest.mark.asyncio
    async def test_malformed_request_rejected(self, client):
        response = await client.post("/api/v1/tenants", json={"data": {"type": "tenant", "attributes": {}}})
        assert response.status_code == 422
        assert response.json()["errors"][0]["code"] == "VALIDATION_ERROR"


class TestResolution:

    @pytest.mark.asyncio
    async def test_subdomain_resolves_tenant(self, client, tenant_a):
        response = await client.get(tenant_url("alpha", "/api/v1/tenants/current"))
        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant_a.id
        assert "X-Request-ID" in response.headers

        body = response.json()
        assert body["data"]["id"] == tenant_a.id
        assert body["data"]["attributes"]["name"] == "Alpha High School"
        assert body["meta"] == {"is_limited": False, "resolved_by": "subdomain"}

    @pytest.mark.asyncio
    async def test_custom_domain_resolves_tenant(self, client, make_tenant):
        tenant = await make_tenant("gamma", custom_domain="portal.gamma-school.org", status="active")
        response = await client.get("http://portal.gamma-school.org/api/v1/tenants/current")
        assert response.status_code == 200
        assert response.json()["data"]["id"] == tenant.id
        assert response.json()["meta"]["resolved_by"] == "custom_domain"

    @pytest.mark.asyncio
    async def test_token_claim_resolves_tenant(self, client, tenant_b, user_headers):
        response = await client.get("/api/v1/tenants/current", headers=user_headers(tenant_b.id))
        assert response.status_code == 200
        assert response.json()["data"]["id"] == tenant_b.id

    @pytest.mark.asyncio
    async def test_subdomain_wins_over_token_claim(self, client, tenant_a, tenant_b, user_headers):
        response = await client.get(
            tenant_url("alpha", "/api/v1/tenants/current"),
            headers=user_headers(tenant_b.id),
        )
        assert response.json()["data"]["id"] == tenant_a.id

    @pytest.mark.asyncio
    async def test_header_requires_service_token(self, client, tenant_b, service_headers):
        response = await client.get("/api/v1/tenants/current", headers={"X-Tenant-ID": tenant_b.id})
        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "TENANT_NOT_IDENTIFIED"

        response = await client.get(
            "/api/v1/tenants/current",
            headers={"X-Tenant-ID": tenant_b.id, **service_headers},
        )
        assert response.status_code == 200
        assert response.json()["meta"]["resolved_by"] == "header"

    @pytest.mark.asyncio
    async def test_request_without_tenant_rejected(self, client):
        response = await client.get("/api/v1/students")
        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "TENANT_NOT_IDENTIFIED"

    @pytest.mark.asyncio
    async def test_unknown_subdomain_rejected(self, client):
        response = await client.get(tenant_url("nowhere", "/api/v1/students"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_token_rejected(self, client, tenant_a):
        response = await client.get(
            tenant_url("alpha", "/api/v1/students"),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
        assert response.json()["errors"][0]["code"] == "INVALID_JWT_TOKEN"

    @pytest.mark.asyncio
    async def test_deactivated_tenant_is_not_found(self, client, tenant_a, service_headers):
        assert (await client.get(tenant_url("alpha", "/api/v1/students"))).status_code == 200

        await set_status(client, service_headers, tenant_a.id, "inactive")

        response = await client.get(tenant_url("alpha", "/api/v1/students"))
        assert response.status_code == 404
        assert response.json()["errors"][0]["code"] == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_limited_tenant_flagged(self, client, tenant_a, service_headers):
        await set_status(client, service_headers, tenant_a.id, "limited")

        response = await client.get(tenant_url("alpha", "/api/v1/tenants/current"))
        assert response.status_code == 200
        assert response.json()["meta"]["is_limited"] is True
        assert response.headers["X-Quota-Limit"] == "5000"


class TestBillingEndpoints:

    @pytest.mark.asyncio
    async def test_status_change_requires_service_token(self, client, tenant_a, user_headers):
        body = {"data": {"type": "tenant_status", "attributes": {"status": "inactive"}}}

        response = await client.put(f"/api/v1/tenants/{tenant_a.id}/status", json=body)
        assert response.status_code == 401

        response = await client.put(
            f"/api/v1/tenants/{tenant_a.id}/status", json=body, headers=user_headers(tenant_a.id)
        )
        assert response.status_code == 403
        assert response.json()["errors"][0]["code"] == "SERVICE_TOKEN_REQUIRED"

    @pytest.mark.asyncio
    async def test_plan_change(self, client, tenant_a, service_headers, event_publisher):
        response = await client.put(
            f"/api/v1/tenants/{tenant_a.id}/plan",
            json={"data": {"type": "tenant_plan", "attributes": {"plan": "enterprise"}}},
            headers=service_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["attributes"]["plan"] == "enterprise"
        assert event_publisher.published[-1].data == {"old_plan": "basic", "new_plan": "enterprise"}

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client, service_headers):
        response = await client.put(
            "/api/v1/tenants/does-not-exist/status",
            json={"data": {"type": "tenant_status", "attributes": {"status": "active"}}},
            headers=service_headers,
        )
        assert response.status_code == 404
        assert response.json()["errors"][0]["code"] == "TENANT_NOT_FOUND"


class TestIsolation:

    @pytest.mark.asyncio
    async def test_students_are_isolated(self, client, tenant_a, tenant_b, sample_student_data):
        response = await client.post(tenant_url("alpha", "/api/v1/students"), json=sample_student_data)
        assert response.status_code == 201
        student = response.json()["data"]
        assert "tenant_id" not in student["attributes"]
        assert student["attributes"]["date_of_birth"] == "2012-12-10"

        # The same admission number is free in another tenant
        response = await client.post(tenant_url("bravo", "/api/v1/students"), json=sample_student_data)
        assert response.status_code == 201

        response = await client.get(tenant_url("alpha", "/api/v1/students"))
        assert [s["id"] for s in response.json()["data"]] == [student["id"]]
        assert response.json()["meta"]["pagination"]["total"] == 1

        response = await client.get(tenant_url("alpha", f"/api/v1/students/{student['id']}"))
        assert response.status_code == 200

        response = await client.get(tenant_url("bravo", f"/api/v1/students/{student['id']}"))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_duplicate_admission_number_within_tenant(self, client, tenant_a, sample_student_data):
        url = tenant_url("alpha", "/api/v1/students")
        assert (await client.post(url, json=sample_student_data)).status_code == 201

        response = await client.post(url, json=sample_student_data)
        assert response.status_code == 409
        assert response.json()["errors"][0]["code"] == "DUPLICATE_ADMISSION_NUMBER"

    @pytest.mark.asyncio
    async def test_courses_are_isolated(self, client, tenant_a, tenant_b):
        course = {"data": {"type": "course", "attributes": {"code": "BIO-1", "title": "Biology"}}}
        assert (await client.post(tenant_url("alpha", "/api/v1/courses"), json=course)).status_code == 201

        response = await client.get(tenant_url("bravo", "/api/v1/courses"))
        assert response.json()["data"] == []


class TestCustomFields:

    @pytest.mark.asyncio
    async def test_custom_fields_follow_tenant_schema(self, client, tenant_a, tenant_b, sample_student_data):
        schema = {"custom_fields": {"student": {
            "house": {"type": "choice", "choices": ["red", "blue"], "required": True}
        }}}
        response = await client.patch(
            tenant_url("alpha", "/api/v1/tenants/current/config"),
            json={"data": {"type": "tenant_config", "attributes": schema}},
        )
        assert response.status_code == 200
        assert response.json()["data"]["attributes"]["config"] == schema

        url = tenant_url("alpha", "/api/v1/students")
        response = await client.post(url, json=sample_student_data)
        assert response.status_code == 422
        error = response.json()["errors"][0]
        assert error["code"] == "CUSTOM_FIELD_VALIDATION_FAILED"
        assert error["meta"]["errors"][0]["field"] == "house"

        sample_student_data["data"]["attributes"]["custom_fields"] = {"house": "blue"}
        response = await client.post(url, json=sample_student_data)
        assert response.status_code == 201
        assert response.json()["data"]["attributes"]["custom_fields"] == {"house": "blue"}

        # Another tenant has no such field
        response = await client.post(tenant_url("bravo", "/api/v1/students"), json=sample_student_data)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_schema_rejected(self, client, tenant_a):
        response = await client.patch(
            tenant_url("alpha", "/api/v1/tenants/current/config"),
            json={"data": {"type": "tenant_config", "attributes": {
                "custom_fields": {"student": {"house": {"type": "choice"}}}
            }}},
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["code"] == "TENANT_VALIDATION_FAILED"


class TestQuotas:

    @pytest.mark.asyncio
    async def test_api_call_quota(self, client, make_tenant):
        await make_tenant("gamma", status="active", config={"quota_overrides": {"api_calls": 2}})
        url = tenant_url("gamma", "/api/v1/courses")

        first = await client.get(url)
        assert first.status_code == 200
        assert first.headers["X-Quota-Limit"] == "2"
        assert first.headers["X-Quota-Remaining"] == "1"

        assert (await client.get(url)).status_code == 200

        response = await client.get(url)
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        error = response.json()["errors"][0]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["meta"] == {"resource_kind": "api_calls", "limit": 2, "current": 2}

    @pytest.mark.asyncio
    async def test_quota_is_per_tenant(self, client, make_tenant, tenant_b):
        await make_tenant("gamma", status="active", config={"quota_overrides": {"api_calls": 1}})
        await client.get(tenant_url("gamma", "/api/v1/courses"))
        assert (await client.get(tenant_url("gamma", "/api/v1/courses"))).status_code == 429
        assert (await client.get(tenant_url("bravo", "/api/v1/courses"))).status_code == 200

    @pytest.mark.asyncio
    async def test_user_seats(self, client, make_tenant, sample_staff_data):
        await make_tenant("gamma", status="active", config={"quota_overrides": {"users": 1}})
        url = tenant_url("gamma", "/api/v1/staff")

        response = await client.post(url, json=sample_staff_data)
        assert response.status_code == 201
        assert response.json()["meta"] == {"users": {"used": 1, "limit": 1}}
        staff_id = response.json()["data"]["id"]

        second = {"data": {"type": "staff", "attributes": {"email": "second@example.com", "full_name": "Second"}}}
        response = await client.post(url, json=second)
        assert response.status_code == 429
        assert "Retry-After" not in response.headers

        assert (await client.delete(f"{url}/{staff_id}")).status_code == 204
        assert (await client.post(url, json=second)).status_code == 201

    @pytest.mark.asyncio
    async def test_usage_report(self, client, tenant_a):
        response = await client.get(tenant_url("alpha", "/api/v1/tenants/current/usage"))
        assert response.status_code == 200

        data = response.json()["data"]
        assert data["type"] == "tenant_usage"
        assert data["attributes"]["api_calls"]["used"] == 1
        assert data["attributes"]["api_calls"]["limit"] == 10_000
        assert data["attributes"]["users"]["window"] == "cumulative"

    @pytest.mark.asyncio
    async def test_config_change_applies_to_next_request(self, client, database, tenant_a):
        async with database.get_session() as session:
            await TenantDirectory(session).update_config(tenant_a.id, {"quota_overrides": {"api_calls": 1}})

        assert (await client.get(tenant_url("alpha", "/api/v1/courses"))).status_code == 200
        assert (await client.get(tenant_url("alpha", "/api/v1/courses"))).status_code == 429
