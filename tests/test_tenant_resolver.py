"""Tests for tenant resolution from request signals."""

import pytest

from campus.core.exceptions import TenantInactive, TenantNotFound, TenantNotIdentified
from campus.core.settings import get_settings
from campus.services.tenant_resolver import RequestSignals, TenantResolver


class StubTenant:
    def __init__(self, id, subdomain, status="active", plan="basic", custom_domain=None, config=None):
        self.id = id
        self.subdomain = subdomain
        self.status = status
        self.plan = plan
        self.custom_domain = custom_domain
        self.config = config or {}


class StubDirectory:
    """In-memory stand-in recording the lookups a resolver performs."""

    def __init__(self, *tenants):
        self.tenants = tenants
        self.calls = []

    def _find(self, lookup, value, attribute):
        self.calls.append((lookup, value))
        for tenant in self.tenants:
            if getattr(tenant, attribute) == value:
                return tenant
        raise TenantNotFound(lookup, value)

    async def lookup_by_subdomain(self, subdomain):
        return self._find("subdomain", subdomain, "subdomain")

    async def lookup_by_custom_domain(self, domain):
        return self._find("custom_domain", domain, "custom_domain")

    async def lookup_by_identifier(self, internal_id):
        return self._find("identifier", internal_id, "id")


ALPHA = StubTenant("t-alpha", "alpha", custom_domain="alpha.example.org")
BRAVO = StubTenant("t-bravo", "bravo")
CLOSED = StubTenant("t-closed", "closed", status="inactive")
LIMITED = StubTenant("t-limited", "limited", status="limited")


@pytest.fixture
def directory():
    return StubDirectory(ALPHA, BRAVO, CLOSED, LIMITED)


@pytest.fixture
def resolver(directory):
    return TenantResolver(directory, get_settings())


@pytest.mark.parametrize("host,expected", [
    ("alpha.campus.localhost", "alpha"),
    ("ALPHA.Campus.Localhost:8000", "alpha"),
    ("campus.localhost", None),
    ("app.campus.localhost", None),
    ("www.campus.localhost", None),
    ("deep.alpha.campus.localhost", None),
    ("alpha.example.org", None),
    ("notcampus.localhost", None),
    (None, None),
])
def test_extract_subdomain(resolver, host, expected):
    assert resolver.extract_subdomain(host) == expected


@pytest.mark.asyncio
async def test_resolves_by_subdomain(resolver):
    ctx = await resolver.resolve(RequestSignals(host="alpha.campus.localhost"))
    assert ctx.tenant_id == "t-alpha"
    assert ctx.resolved_by == "subdomain"


@pytest.mark.asyncio
async def test_resolves_by_custom_domain(resolver):
    ctx = await resolver.resolve(RequestSignals(host="Alpha.Example.org"))
    assert ctx.tenant_id == "t-alpha"
    assert ctx.resolved_by == "custom_domain"


@pytest.mark.asyncio
async def test_subdomain_takes_precedence_over_other_signals(resolver):
    signals = RequestSignals(
        host="alpha.campus.localhost",
        tenant_header="t-bravo",
        claims={"tenant_id": "t-bravo"},
        trusted_service=True,
    )
    ctx = await resolver.resolve(signals)
    assert ctx.tenant_id == "t-alpha"


@pytest.mark.asyncio
async def test_header_trusted_only_for_service_calls(resolver):
    untrusted = RequestSignals(host="campus.localhost", tenant_header="t-bravo")
    with pytest.raises(TenantNotIdentified):
        await resolver.resolve(untrusted)

    trusted = RequestSignals(host="campus.localhost", tenant_header="t-bravo", trusted_service=True)
    ctx = await resolver.resolve(trusted)
    assert ctx.tenant_id == "t-bravo"
    assert ctx.resolved_by == "header"


@pytest.mark.asyncio
async def test_header_takes_precedence_over_token_claim(resolver):
    signals = RequestSignals(
        tenant_header="t-bravo",
        claims={"tenant_id": "t-alpha"},
        trusted_service=True,
    )
    assert (await resolver.resolve(signals)).tenant_id == "t-bravo"


@pytest.mark.asyncio
async def test_resolves_by_token_claim(resolver):
    ctx = await resolver.resolve(RequestSignals(host="campus.localhost", claims={"tenant_id": "t-bravo"}))
    assert ctx.tenant_id == "t-bravo"
    assert ctx.resolved_by == "token"


@pytest.mark.asyncio
async def test_unknown_signal_falls_through(resolver, directory):
    signals = RequestSignals(host="ghost.campus.localhost", claims={"tenant_id": "t-bravo"})
    ctx = await resolver.resolve(signals)

    assert ctx.tenant_id == "t-bravo"
    assert directory.calls == [("subdomain", "ghost"), ("identifier", "t-bravo")]


@pytest.mark.asyncio
async def test_platform_hosts_skip_custom_domain_lookup(resolver, directory):
    with pytest.raises(TenantNotIdentified):
        await resolver.resolve(RequestSignals(host="api.campus.localhost"))
    assert directory.calls == []


@pytest.mark.asyncio
async def test_no_signal_on_tenant_required_route(resolver):
    with pytest.raises(TenantNotIdentified):
        await resolver.resolve(RequestSignals(host="campus.localhost"))


@pytest.mark.asyncio
async def test_no_signal_on_public_route_returns_none(resolver):
    assert await resolver.resolve(RequestSignals(host="campus.localhost", is_public=True)) is None


@pytest.mark.asyncio
async def test_unknown_tenant_on_public_route_returns_none(resolver):
    signals = RequestSignals(host="ghost.campus.localhost", is_public=True)
    assert await resolver.resolve(signals) is None


@pytest.mark.asyncio
async def test_inactive_tenant_rejected(resolver):
    with pytest.raises(TenantInactive) as exc_info:
        await resolver.resolve(RequestSignals(host="closed.campus.localhost"))
    assert exc_info.value.status_code == 404
    assert exc_info.value.tenant_id == "t-closed"


@pytest.mark.asyncio
async def test_inactive_tenant_rejected_on_public_route(resolver):
    with pytest.raises(TenantInactive):
        await resolver.resolve(RequestSignals(host="closed.campus.localhost", is_public=True))


@pytest.mark.asyncio
async def test_limited_tenant_resolves_in_limited_mode(resolver):
    ctx = await resolver.resolve(RequestSignals(host="limited.campus.localhost"))
    assert ctx.is_limited


@pytest.mark.asyncio
async def test_resolution_is_deterministic(resolver):
    signals = RequestSignals(host="alpha.example.org", claims={"tenant_id": "t-bravo"})
    first = await resolver.resolve(signals)
    second = await resolver.resolve(signals)
    assert first == second
