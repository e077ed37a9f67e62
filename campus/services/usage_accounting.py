"""Per-tenant resource accounting against plan quotas.

Counters live in Redis in production and in process memory for tests and
single-process development. Every check-and-increment is one atomic step on
the store: a rejected attempt leaves the counter unchanged, and concurrent
callers can never jointly exceed the limit.

Windowed counters (API calls) are keyed by UTC day and expire at the end of
it. Cumulative counters (storage, users) persist until released.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import redis.asyncio as redis

from campus.core.database import get_database
from campus.core.exceptions import QuotaExceeded, TenantValidationError
from campus.core.settings import Settings, get_settings
from campus.core.tenant_context import current
from campus.models.tenant import PlanTier, TenantStatus
from campus.services.events import EventPublisher, get_event_publisher
from campus.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

UNLIMITED = -1
QUOTA_OVERRIDES_KEY = "quota_overrides"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResourceKind(str, enum.Enum):
    """Accounted resource kinds."""

    API_CALLS = "api_calls"
    STORAGE_BYTES = "storage_bytes"
    USERS = "users"

    def __str__(self) -> str:
        return self.value

    @property
    def is_windowed(self) -> bool:
        return self in WINDOWED_KINDS


WINDOWED_KINDS = frozenset({ResourceKind.API_CALLS})

GIB = 1024 ** 3

DEFAULT_PLAN_QUOTAS: Dict[str, Dict[ResourceKind, int]] = {
    PlanTier.BASIC.value: {
        ResourceKind.API_CALLS: 10_000,
        ResourceKind.STORAGE_BYTES: 5 * GIB,
        ResourceKind.USERS: 50,
    },
    PlanTier.PREMIUM.value: {
        ResourceKind.API_CALLS: 100_000,
        ResourceKind.STORAGE_BYTES: 50 * GIB,
        ResourceKind.USERS: 500,
    },
    PlanTier.ENTERPRISE.value: {
        ResourceKind.API_CALLS: 1_000_000,
        ResourceKind.STORAGE_BYTES: UNLIMITED,
        ResourceKind.USERS: UNLIMITED,
    },
}


def next_window_start(now: datetime) -> datetime:
    """Start of the UTC day after ``now``."""
    now = now.astimezone(timezone.utc)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)


def seconds_until_reset(now: datetime) -> int:
    return max(1, int((next_window_start(now) - now).total_seconds()))


def usage_key(tenant_id: str, kind: ResourceKind, now: datetime) -> str:
    """Counter key for ``kind``; windowed kinds carry the UTC day."""
    if kind.is_windowed:
        window = now.astimezone(timezone.utc).strftime("%Y%m%d")
        return f"usage:{tenant_id}:{kind.value}:{window}"
    return f"usage:{tenant_id}:{kind.value}"


class QuotaPolicy:
    """
    Derives quota limits from plan tier, tenant status and config.

    ``config["quota_overrides"]`` may replace individual plan limits per
    tenant. Limited tenants get every finite limit scaled by
    ``limited_ratio``. ``-1`` means unlimited.
    """

    def __init__(
        self,
        plan_quotas: Optional[Mapping[str, Mapping[ResourceKind, int]]] = None,
        limited_ratio: float = 0.5,
    ):
        self.plan_quotas = plan_quotas or DEFAULT_PLAN_QUOTAS
        self.limited_ratio = limited_ratio

    def limit_for(
        self,
        plan: str,
        kind: ResourceKind,
        status: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> int:
        quotas = self.plan_quotas.get(str(plan)) or self.plan_quotas[PlanTier.BASIC.value]
        limit = quotas.get(kind, UNLIMITED)

        overrides = (config or {}).get(QUOTA_OVERRIDES_KEY) or {}
        if kind.value in overrides:
            limit = int(overrides[kind.value])

        if limit != UNLIMITED and status == TenantStatus.LIMITED.value:
            limit = int(limit * self.limited_ratio)
        return limit


@dataclass(frozen=True)
class UsageGrant:
    """Successful accounting of ``amount`` units."""

    tenant_id: str
    resource_kind: ResourceKind
    amount: int
    current: int
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(0, self.limit - self.current)


class UsageStore:
    """Counter store interface. Implementations must be atomic per key."""

    async def increment_within(self, key: str, amount: int, limit: int, ttl: Optional[int]) -> Tuple[bool, int]:
        """
        Add ``amount`` to ``key`` unless that would exceed ``limit``.

        Returns:
            Tuple of (allowed, counter value). The value is the new total when
            allowed, and the unchanged total otherwise.
        """
        raise NotImplementedError

    async def decrement(self, key: str, amount: int) -> int:
        """Subtract ``amount`` from ``key``, flooring at zero."""
        raise NotImplementedError

    async def get(self, key: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        """Release store resources."""


class InMemoryUsageStore(UsageStore):
    """
    Process-local counter store.
    Note: This is not suitable for production with multiple instances.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.counters: Dict[str, Tuple[int, Optional[datetime]]] = {}
        self._lock = asyncio.Lock()

    def _read(self, key: str) -> int:
        value, expires_at = self.counters.get(key, (0, None))
        if expires_at is not None and self.clock() >= expires_at:
            del self.counters[key]
            return 0
        return value

    def _sweep_expired(self) -> None:
        now = self.clock()
        expired = [
            key for key, (_, expires_at) in self.counters.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self.counters[key]

    async def increment_within(self, key: str, amount: int, limit: int, ttl: Optional[int]) -> Tuple[bool, int]:
        async with self._lock:
            # Past windows are never read again, so drop them here
            self._sweep_expired()
            value = self._read(key)
            if limit != UNLIMITED and value + amount > limit:
                return False, value

            _, expires_at = self.counters.get(key, (0, None))
            if ttl and expires_at is None:
                expires_at = self.clock() + timedelta(seconds=ttl)
            self.counters[key] = (value + amount, expires_at)
            return True, value + amount

    async def decrement(self, key: str, amount: int) -> int:
        async with self._lock:
            value = max(0, self._read(key) - amount)
            _, expires_at = self.counters.get(key, (0, None))
            self.counters[key] = (value, expires_at)
            return value

    async def get(self, key: str) -> int:
        async with self._lock:
            return self._read(key)


# Check, increment and set expiry in one server-side step
_INCREMENT_WITHIN_LIMIT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local amount = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])
local ttl = tonumber(ARGV[3])
if limit >= 0 and current + amount > limit then
    return {0, current}
end
local value = redis.call('INCRBY', KEYS[1], amount)
if ttl > 0 and redis.call('TTL', KEYS[1]) < 0 then
    redis.call('EXPIRE', KEYS[1], ttl)
end
return {1, value}
"""

_DECREMENT_FLOORED = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local value = current - tonumber(ARGV[1])
if value < 0 then
    value = 0
end
redis.call('SET', KEYS[1], value)
return value
"""


class RedisUsageStore(UsageStore):
    """Redis-backed counter store shared by all application instances."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        self._increment = redis_client.register_script(_INCREMENT_WITHIN_LIMIT)
        self._decrement = redis_client.register_script(_DECREMENT_FLOORED)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisUsageStore":
        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            max_connections=settings.redis_pool_size,
        )
        logger.info("Redis client initialized for usage accounting")
        return cls(client)

    async def increment_within(self, key: str, amount: int, limit: int, ttl: Optional[int]) -> Tuple[bool, int]:
        allowed, value = await self._increment(keys=[key], args=[amount, limit, ttl or 0])
        return bool(int(allowed)), int(value)

    async def decrement(self, key: str, amount: int) -> int:
        return int(await self._decrement(keys=[key], args=[amount]))

    async def get(self, key: str) -> int:
        value = await self.redis_client.get(key)
        return int(value) if value else 0

    async def close(self) -> None:
        await self.redis_client.aclose()


class ResourceAccountant:
    """
    Tracks and caps per-tenant consumption.

    Limits are computed at check time. The plan, status and config come from
    the running tenant context when it names the same tenant, otherwise from
    a fresh directory lookup, so a plan change applies on the next check.
    """

    def __init__(
        self,
        store: UsageStore,
        policy: Optional[QuotaPolicy] = None,
        event_publisher: Optional[EventPublisher] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.policy = policy or QuotaPolicy(limited_ratio=get_settings().limited_quota_ratio)
        self.events = event_publisher
        self.clock = clock

    async def _tenant_terms(self, tenant_id: str) -> Tuple[str, str, Mapping[str, Any]]:
        ctx = current()
        if ctx is not None and ctx.tenant_id == tenant_id:
            return ctx.plan, ctx.status, ctx.config

        async with get_database().get_session() as session:
            tenant = await TenantDirectory(session).lookup_by_identifier(tenant_id)
            return tenant.plan, tenant.status, dict(tenant.config or {})

    async def limit_for(self, tenant_id: str, kind: ResourceKind) -> int:
        plan, status, config = await self._tenant_terms(tenant_id)
        return self.policy.limit_for(plan, kind, status, config)

    async def check_and_increment(
        self,
        tenant_id: str,
        resource_kind,
        amount: int = 1,
    ) -> UsageGrant:
        """
        Atomically account ``amount`` units if the quota allows it.

        Args:
            tenant_id: Tenant identifier
            resource_kind: ResourceKind or its value
            amount: Units to add (must be positive)

        Returns:
            UsageGrant with the new counter value

        Raises:
            QuotaExceeded: If the increment would pass the limit; nothing is counted
        """
        kind = ResourceKind(resource_kind)
        if amount <= 0:
            raise TenantValidationError(
                "Usage amount must be positive",
                [{"field": "amount", "code": "INVALID_AMOUNT"}],
            )

        limit = await self.limit_for(tenant_id, kind)
        now = self.clock()
        key = usage_key(tenant_id, kind, now)
        ttl = seconds_until_reset(now) if kind.is_windowed else None

        allowed, value = await self.store.increment_within(key, amount, limit, ttl)
        if not allowed:
            logger.warning(
                f"Quota exceeded for tenant {tenant_id}: {kind.value} "
                f"{value}+{amount} > {limit}"
            )
            if self.events:
                await self.events.publish_quota_exceeded(tenant_id, kind.value, limit, value)
            raise QuotaExceeded(
                kind.value,
                limit,
                value,
                retry_after=seconds_until_reset(now) if kind.is_windowed else None,
            )

        return UsageGrant(tenant_id, kind, amount, value, limit)

    async def release(self, tenant_id: str, resource_kind, amount: int = 1) -> int:
        """
        Give back ``amount`` units of a cumulative resource.

        Raises:
            TenantValidationError: For windowed resources, which only reset
        """
        kind = ResourceKind(resource_kind)
        if kind.is_windowed:
            raise TenantValidationError(
                f"{kind.value} usage cannot be released",
                [{"field": "resource_kind", "code": "WINDOWED_RESOURCE"}],
            )
        value = await self.store.decrement(usage_key(tenant_id, kind, self.clock()), amount)
        logger.debug(f"Released {amount} {kind.value} for tenant {tenant_id}, now {value}")
        return value

    async def get_usage(self, tenant_id: str) -> Dict[str, Dict[str, Any]]:
        """Report usage and limits for every resource kind."""
        plan, status, config = await self._tenant_terms(tenant_id)
        now = self.clock()
        report = {}
        for kind in ResourceKind:
            used = await self.store.get(usage_key(tenant_id, kind, now))
            limit = self.policy.limit_for(plan, kind, status, config)
            entry = {
                "used": used,
                "limit": None if limit == UNLIMITED else limit,
                "remaining": None if limit == UNLIMITED else max(0, limit - used),
                "window": "daily" if kind.is_windowed else "cumulative",
            }
            if kind.is_windowed:
                entry["resets_at"] = next_window_start(now).isoformat()
            report[kind.value] = entry
        return report


def create_usage_store(settings: Settings) -> UsageStore:
    if settings.usage_backend == "memory":
        logger.info("Using in-memory usage store")
        return InMemoryUsageStore()
    return RedisUsageStore.from_settings(settings)


# Global usage store instance
_usage_store: Optional[UsageStore] = None


def get_usage_store() -> UsageStore:
    """Get the global usage store instance."""
    global _usage_store
    if _usage_store is None:
        _usage_store = create_usage_store(get_settings())
    return _usage_store


async def close_usage_store() -> None:
    global _usage_store
    if _usage_store is not None:
        await _usage_store.close()
        _usage_store = None


def get_resource_accountant() -> ResourceAccountant:
    """Build an accountant over the global store."""
    settings = get_settings()
    return ResourceAccountant(
        get_usage_store(),
        QuotaPolicy(limited_ratio=settings.limited_quota_ratio),
        event_publisher=get_event_publisher(),
    )
