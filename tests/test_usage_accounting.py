"""Tests for per-tenant resource accounting."""

import asyncio
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import pytest_asyncio
from fakeredis import aioredis

from campus.core.exceptions import QuotaExceeded, TenantValidationError
from campus.core.tenant_context import TenantContext, tenant_scope
from campus.services.events import EventPublisher, EventType
from campus.services.tenant_directory import TenantDirectory
from campus.services.usage_accounting import (
    DEFAULT_PLAN_QUOTAS,
    UNLIMITED,
    InMemoryUsageStore,
    QuotaPolicy,
    RedisUsageStore,
    ResourceAccountant,
    ResourceKind,
    seconds_until_reset,
    usage_key,
)


class Clock:
    """Settable clock shared by an accountant and its store."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make_context(tenant_id="t-1", plan="basic", status="active", config=None):
    return TenantContext(
        tenant_id=tenant_id,
        subdomain="alpha",
        status=status,
        plan=plan,
        config=config or {},
    )


@pytest.fixture
def clock():
    return Clock(datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher():
    publisher = EventPublisher()
    publisher.published.clear()
    return publisher


@pytest.fixture
def accountant(clock, publisher):
    policy = QuotaPolicy({
        "basic": {ResourceKind.API_CALLS: 100, ResourceKind.USERS: 3, ResourceKind.STORAGE_BYTES: 1000},
        "enterprise": {ResourceKind.API_CALLS: 1000, ResourceKind.USERS: UNLIMITED},
    })
    return ResourceAccountant(InMemoryUsageStore(clock=clock), policy, publisher, clock=clock)


class TestQuotaPolicy:

    def test_plan_limits(self):
        policy = QuotaPolicy()
        assert policy.limit_for("basic", ResourceKind.API_CALLS) == 10_000
        assert policy.limit_for("premium", ResourceKind.USERS) == 500
        assert policy.limit_for("enterprise", ResourceKind.STORAGE_BYTES) == UNLIMITED

    def test_unknown_plan_falls_back_to_basic(self):
        assert QuotaPolicy().limit_for("legacy", ResourceKind.USERS) == DEFAULT_PLAN_QUOTAS["basic"][ResourceKind.USERS]

    def test_limited_status_scales_finite_limits(self):
        policy = QuotaPolicy(limited_ratio=0.5)
        assert policy.limit_for("basic", ResourceKind.API_CALLS, "limited") == 5_000
        assert policy.limit_for("enterprise", ResourceKind.USERS, "limited") == UNLIMITED

    def test_config_overrides_plan_limit(self):
        config = {"quota_overrides": {"users": 7}}
        assert QuotaPolicy().limit_for("basic", ResourceKind.USERS, "active", config) == 7
        assert QuotaPolicy().limit_for("basic", ResourceKind.USERS, "limited", config) == 3


def test_usage_key_windows_only_api_calls():
    now = datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc)
    assert usage_key("t-1", ResourceKind.API_CALLS, now) == "usage:t-1:api_calls:20240301"
    assert usage_key("t-1", ResourceKind.USERS, now) == "usage:t-1:users"


def test_seconds_until_reset():
    assert seconds_until_reset(datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)) == 14 * 3600
    assert seconds_until_reset(datetime(2024, 3, 1, 23, 59, 59, 999999, tzinfo=timezone.utc)) == 1


@pytest.mark.asyncio
async def test_daily_api_call_quota(accountant, clock, publisher):
    with tenant_scope(make_context()):
        for expected in range(1, 101):
            grant = await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)
            assert grant.current == expected
        assert grant.remaining == 0

        with pytest.raises(QuotaExceeded) as exc_info:
            await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)

    exc = exc_info.value
    assert exc.limit == 100
    assert exc.current == 100
    assert exc.retry_after == 14 * 3600
    assert publisher.published[-1].event_type == EventType.QUOTA_EXCEEDED
    assert publisher.published[-1].data == {"resource_kind": "api_calls", "limit": 100, "current": 100}


@pytest.mark.asyncio
async def test_counter_resets_at_utc_midnight(accountant, clock):
    with tenant_scope(make_context()):
        for _ in range(100):
            await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)

        clock.now = datetime(2024, 3, 2, 0, 0, 1, tzinfo=timezone.utc)
        grant = await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)

    assert grant.current == 1


@pytest.mark.asyncio
async def test_rejected_amount_is_not_counted(accountant):
    with tenant_scope(make_context()):
        await accountant.check_and_increment("t-1", ResourceKind.STORAGE_BYTES, 900)

        with pytest.raises(QuotaExceeded) as exc_info:
            await accountant.check_and_increment("t-1", ResourceKind.STORAGE_BYTES, 200)
        assert exc_info.value.retry_after is None

        grant = await accountant.check_and_increment("t-1", ResourceKind.STORAGE_BYTES, 100)
    assert grant.current == 1000


@pytest.mark.asyncio
async def test_concurrent_increments_never_exceed_limit(accountant):
    async def attempt():
        try:
            await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)
            return True
        except QuotaExceeded:
            return False

    with tenant_scope(make_context()):
        results = await asyncio.gather(*(attempt() for _ in range(150)))
        usage = await accountant.get_usage("t-1")

    assert results.count(True) == 100
    assert usage["api_calls"]["used"] == 100


@pytest.mark.asyncio
async def test_tenants_have_separate_counters(accountant):
    with tenant_scope(make_context("t-1")):
        for _ in range(3):
            await accountant.check_and_increment("t-1", ResourceKind.USERS)
    with tenant_scope(make_context("t-2")):
        grant = await accountant.check_and_increment("t-2", ResourceKind.USERS)
    assert grant.current == 1


@pytest.mark.asyncio
async def test_release_frees_cumulative_units(accountant):
    with tenant_scope(make_context()):
        for _ in range(3):
            await accountant.check_and_increment("t-1", ResourceKind.USERS)
        with pytest.raises(QuotaExceeded):
            await accountant.check_and_increment("t-1", ResourceKind.USERS)

        assert await accountant.release("t-1", ResourceKind.USERS) == 2
        grant = await accountant.check_and_increment("t-1", ResourceKind.USERS)
    assert grant.current == 3


@pytest.mark.asyncio
async def test_release_floors_at_zero(accountant):
    with tenant_scope(make_context()):
        assert await accountant.release("t-1", ResourceKind.USERS, 5) == 0


@pytest.mark.asyncio
async def test_windowed_usage_cannot_be_released(accountant):
    with pytest.raises(TenantValidationError):
        await accountant.release("t-1", ResourceKind.API_CALLS)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5])
async def test_non_positive_amount_rejected(accountant, amount):
    with tenant_scope(make_context()):
        with pytest.raises(TenantValidationError):
            await accountant.check_and_increment("t-1", ResourceKind.USERS, amount)


@pytest.mark.asyncio
async def test_unlimited_resource_always_granted(accountant):
    with tenant_scope(make_context(plan="enterprise")):
        for _ in range(10):
            grant = await accountant.check_and_increment("t-1", ResourceKind.USERS)
    assert grant.unlimited
    assert grant.remaining is None


@pytest.mark.asyncio
async def test_limited_tenant_gets_reduced_quota(accountant):
    with tenant_scope(make_context(status="limited")):
        assert await accountant.limit_for("t-1", ResourceKind.API_CALLS) == 50


@pytest.mark.asyncio
async def test_get_usage_report(accountant, clock):
    with tenant_scope(make_context()):
        await accountant.check_and_increment("t-1", ResourceKind.API_CALLS, 4)
        report = await accountant.get_usage("t-1")

    assert report["api_calls"] == {
        "used": 4,
        "limit": 100,
        "remaining": 96,
        "window": "daily",
        "resets_at": (clock.now.replace(hour=0) + timedelta(days=1)).isoformat(),
    }
    assert report["users"]["window"] == "cumulative"
    assert "resets_at" not in report["users"]


@pytest.mark.asyncio
async def test_plan_change_applies_on_next_check(database, make_tenant):
    tenant = await make_tenant("alpha", status="active")
    accountant = ResourceAccountant(InMemoryUsageStore(), QuotaPolicy({
        "basic": {ResourceKind.USERS: 1},
        "premium": {ResourceKind.USERS: 2},
    }))

    # Outside any tenant context the terms come from the directory
    await accountant.check_and_increment(tenant.id, ResourceKind.USERS)
    with pytest.raises(QuotaExceeded):
        await accountant.check_and_increment(tenant.id, ResourceKind.USERS)

    async with database.get_session() as session:
        await TenantDirectory(session).update_plan(tenant.id, "premium")

    grant = await accountant.check_and_increment(tenant.id, ResourceKind.USERS)
    assert grant.limit == 2


class TestInMemoryUsageStore:

    @pytest.mark.asyncio
    async def test_counter_expires_after_ttl(self, clock):
        store = InMemoryUsageStore(clock=clock)
        assert await store.increment_within("k", 5, 10, ttl=60) == (True, 5)

        clock.now += timedelta(seconds=61)
        assert await store.get("k") == 0

    @pytest.mark.asyncio
    async def test_rejection_reports_unchanged_value(self, clock):
        store = InMemoryUsageStore(clock=clock)
        await store.increment_within("k", 8, 10, ttl=None)
        assert await store.increment_within("k", 3, 10, ttl=None) == (False, 8)
        assert await store.get("k") == 8

    @pytest.mark.asyncio
    async def test_expired_windows_are_swept(self, clock):
        store = InMemoryUsageStore(clock=clock)
        await store.increment_within("usage:t-1:api_calls:20240301", 1, 10, ttl=60)
        await store.increment_within("usage:t-1:users", 1, 10, ttl=None)

        clock.now += timedelta(days=1)
        await store.increment_within("usage:t-1:api_calls:20240302", 1, 10, ttl=60)

        assert sorted(store.counters) == ["usage:t-1:api_calls:20240302", "usage:t-1:users"]


@pytest_asyncio.fixture
async def redis_client():
    client = aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def redis_store(redis_client):
    return RedisUsageStore(redis_client)


class TestRedisUsageStore:
    """Lua-scripted counters against a Lua-capable Redis fake."""

    @pytest.mark.asyncio
    async def test_increment_within_limit(self, redis_store):
        assert await redis_store.increment_within("k", 4, 10, ttl=None) == (True, 4)
        assert await redis_store.increment_within("k", 6, 10, ttl=None) == (True, 10)
        assert await redis_store.get("k") == 10

    @pytest.mark.asyncio
    async def test_rejected_attempt_leaves_counter_unchanged(self, redis_store):
        await redis_store.increment_within("k", 8, 10, ttl=None)
        assert await redis_store.increment_within("k", 3, 10, ttl=None) == (False, 8)
        assert await redis_store.get("k") == 8

    @pytest.mark.asyncio
    async def test_concurrent_increments_never_exceed_limit(self, redis_store):
        results = await asyncio.gather(
            *(redis_store.increment_within("k", 1, 100, ttl=None) for _ in range(150))
        )

        assert [allowed for allowed, _ in results].count(True) == 100
        assert await redis_store.get("k") == 100

    @pytest.mark.asyncio
    async def test_unlimited_increments_always_pass(self, redis_store):
        for _ in range(5):
            allowed, value = await redis_store.increment_within("k", 1000, UNLIMITED, ttl=None)
            assert allowed
        assert value == 5000

    @pytest.mark.asyncio
    async def test_windowed_key_gets_ttl(self, redis_store, redis_client):
        await redis_store.increment_within("window", 1, 10, ttl=60)
        assert 0 < await redis_client.ttl("window") <= 60

    @pytest.mark.asyncio
    async def test_ttl_is_set_only_once(self, redis_store, redis_client):
        await redis_store.increment_within("window", 1, 10, ttl=60)
        await redis_client.expire("window", 30)

        await redis_store.increment_within("window", 1, 10, ttl=60)
        assert 0 < await redis_client.ttl("window") <= 30

    @pytest.mark.asyncio
    async def test_cumulative_key_has_no_ttl(self, redis_store, redis_client):
        await redis_store.increment_within("seats", 1, 10, ttl=None)
        assert await redis_client.ttl("seats") == -1

    @pytest.mark.asyncio
    async def test_decrement_floors_at_zero(self, redis_store):
        await redis_store.increment_within("seats", 2, 10, ttl=None)
        assert await redis_store.decrement("seats", 1) == 1
        assert await redis_store.decrement("seats", 5) == 0
        assert await redis_store.get("seats") == 0

    @pytest.mark.asyncio
    async def test_missing_key_reads_as_zero(self, redis_store):
        assert await redis_store.get("absent") == 0
        assert await redis_store.decrement("absent", 1) == 0

    @pytest.mark.asyncio
    async def test_accountant_over_redis(self, redis_store, clock, publisher):
        accountant = ResourceAccountant(
            redis_store,
            QuotaPolicy({"basic": {ResourceKind.API_CALLS: 2, ResourceKind.USERS: 1}}),
            publisher,
            clock=clock,
        )

        with tenant_scope(make_context()):
            await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)
            await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)
            with pytest.raises(QuotaExceeded) as exc_info:
                await accountant.check_and_increment("t-1", ResourceKind.API_CALLS)

            await accountant.check_and_increment("t-1", ResourceKind.USERS)
            assert await accountant.release("t-1", ResourceKind.USERS) == 0

        assert exc_info.value.retry_after == 14 * 3600
