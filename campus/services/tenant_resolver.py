"""Tenant resolution from inbound request signals."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Awaitable, Dict, List, Optional, Tuple

from campus.core.exceptions import TenantInactive, TenantNotFound, TenantNotIdentified
from campus.core.settings import Settings, get_settings
from campus.core.tenant_context import TenantContext
from campus.models.tenant import Tenant, TenantStatus
from campus.services.tenant_directory import TenantDirectory
from campus.utils.validators import normalize_host

logger = logging.getLogger(__name__)

TENANT_CLAIM = "tenant_id"


@dataclass(frozen=True)
class RequestSignals:
    """
    Tenant-identifying signals of one inbound request.

    ``claims`` must only hold claims of a token whose signature has already
    been verified; ``trusted_service`` is set when that token is a service
    token.
    """

    host: Optional[str] = None
    tenant_header: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)
    is_public: bool = False
    trusted_service: bool = False


class TenantResolver:
    """
    Resolve request signals to a tenant context.

    Precedence, first match wins:
    1. Subdomain of the host under the platform base domain (reserved
       subdomains excluded)
    2. Host equal to a tenant's custom domain
    3. Tenant header, for trusted service-to-service calls only
    4. ``tenant_id`` claim of the verified token

    A signal that names no known tenant falls through to the next one.
    """

    def __init__(self, directory: TenantDirectory, settings: Optional[Settings] = None):
        self.directory = directory
        self.settings = settings or get_settings()

    def extract_subdomain(self, host: Optional[str]) -> Optional[str]:
        """Return the tenant label of ``host`` under the base domain, if any."""
        host = normalize_host(host)
        base_domain = self.settings.base_domain
        if not host or not host.endswith("." + base_domain):
            return None

        label = host[: -len(base_domain) - 1]
        # Only a single label directly under the base domain names a tenant
        if not label or "." in label:
            return None
        if label in self.settings.reserved_subdomains:
            return None
        return label

    def _candidates(self, signals: RequestSignals) -> List[Tuple[str, Callable[[str], Awaitable[Tenant]], Optional[str]]]:
        host = normalize_host(signals.host)
        subdomain = self.extract_subdomain(host)
        base_domain = self.settings.base_domain
        on_platform = bool(host) and (host == base_domain or host.endswith("." + base_domain))

        header = (signals.tenant_header or "").strip() or None
        if header and not (signals.trusted_service or self.settings.trust_tenant_header):
            logger.warning(f"Ignoring untrusted {self.settings.tenant_header} header")
            header = None

        claim = signals.claims.get(TENANT_CLAIM) if signals.claims else None

        return [
            ("subdomain", self.directory.lookup_by_subdomain, subdomain),
            ("custom_domain", self.directory.lookup_by_custom_domain, None if on_platform else host),
            ("header", self.directory.lookup_by_identifier, header),
            ("token", self.directory.lookup_by_identifier, str(claim) if claim else None),
        ]

    async def resolve(self, signals: RequestSignals) -> Optional[TenantContext]:
        """
        Resolve ``signals`` to a tenant context.

        Args:
            signals: Request signals

        Returns:
            TenantContext, or None for a public request with no tenant signal

        Raises:
            TenantNotIdentified: If no signal matches and the route needs a tenant
            TenantInactive: If the matched tenant is inactive
        """
        for source, lookup, value in self._candidates(signals):
            if not value:
                continue
            try:
                tenant = await lookup(value)
            except TenantNotFound:
                logger.debug(f"Tenant signal {source}={value} matched no tenant")
                continue
            return self._to_context(tenant, source)

        if signals.is_public:
            return None

        logger.info(f"No tenant identified for host {signals.host}")
        raise TenantNotIdentified("Unable to identify the tenant for this request")

    @staticmethod
    def _to_context(tenant: Tenant, source: str) -> TenantContext:
        if tenant.status == TenantStatus.INACTIVE.value:
            logger.info(f"Rejected request for inactive tenant {tenant.id}")
            raise TenantInactive(tenant.id)

        context = TenantContext.from_tenant(tenant, resolved_by=source)
        if context.is_limited:
            logger.info(f"Tenant {tenant.id} resolved in limited mode")
        logger.debug(f"Resolved tenant {tenant.id} by {source}")
        return context
