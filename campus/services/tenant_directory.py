"""Tenant directory: authoritative lookup and persistence of tenants.

The directory is the only component that mutates tenant rows. Lookups always
read committed state from the database; nothing is cached between calls, so a
status change such as deactivation takes effect on the very next lookup.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from campus.core.exceptions import DuplicateIdentifier, TenantNotFound, TenantValidationError
from campus.core.settings import Settings, get_settings
from campus.models.tenant import PlanTier, Tenant, TenantStatus
from campus.services.custom_fields import CUSTOM_FIELDS_KEY, parse_schema
from campus.services.events import EventPublisher
from campus.utils.validators import DomainValidator, SubdomainValidator, normalize_host

logger = logging.getLogger(__name__)


class TenantDirectory:
    """
    Tenant directory service.

    Provides:
    - Lookup by subdomain, custom domain and internal identifier
    - Tenant registration with identifier uniqueness enforcement
    - Status, plan and configuration updates (billing is the only writer)
    """

    def __init__(
        self,
        db_session: AsyncSession,
        event_publisher: Optional[EventPublisher] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the TenantDirectory.

        Args:
            db_session: Async database session
            event_publisher: Optional event publisher for lifecycle events
            settings: Application settings (defaults to cached settings)
        """
        self.db = db_session
        self.events = event_publisher
        self.settings = settings or get_settings()

    # Lookups

    async def _lookup(self, lookup: str, value: Optional[str], criterion) -> Tenant:
        if not value:
            raise TenantNotFound(lookup, str(value))
        query = select(Tenant).where(criterion).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        tenant = result.scalar_one_or_none()
        if tenant is None:
            logger.debug(f"No tenant for {lookup} '{value}'")
            raise TenantNotFound(lookup, value)
        return tenant

    async def lookup_by_subdomain(self, subdomain: str) -> Tenant:
        """
        Find a tenant by subdomain.

        Raises:
            TenantNotFound: If no tenant owns the subdomain
        """
        subdomain = SubdomainValidator.normalize(subdomain or "")
        return await self._lookup("subdomain", subdomain, Tenant.subdomain == subdomain)

    async def lookup_by_custom_domain(self, domain: str) -> Tenant:
        """
        Find a tenant by exact custom domain.

        Raises:
            TenantNotFound: If no tenant owns the domain
        """
        domain = normalize_host(domain)
        return await self._lookup("custom domain", domain, Tenant.custom_domain == domain)

    async def lookup_by_identifier(self, internal_id: str) -> Tenant:
        """
        Find a tenant by internal identifier.

        Raises:
            TenantNotFound: If no tenant has the identifier
        """
        internal_id = str(internal_id).strip() if internal_id else None
        return await self._lookup("identifier", internal_id, Tenant.id == internal_id)

    # Registration

    async def create(self, tenant_attributes: Mapping[str, Any]) -> Tenant:
        """
        Register a new tenant.

        Args:
            tenant_attributes: name, subdomain and optional custom_domain,
                status, plan and config

        Returns:
            Tenant: Created tenant

        Raises:
            TenantValidationError: If attributes are invalid
            DuplicateIdentifier: If the subdomain or custom domain is taken
        """
        attributes = self._validate_creation(tenant_attributes)
        subdomain = attributes["subdomain"]
        custom_domain = attributes.get("custom_domain")

        logger.info(f"Creating tenant '{attributes['name']}' with subdomain {subdomain}")

        await self._ensure_available(subdomain, custom_domain)

        tenant = Tenant(**attributes)
        self.db.add(tenant)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Identifier collision creating tenant {subdomain}: {e}")
            # Lost a race with a concurrent registration; report which identifier.
            await self._ensure_available(subdomain, custom_domain)
            raise DuplicateIdentifier("subdomain", subdomain)

        await self.db.refresh(tenant)
        logger.info(f"Created tenant {tenant.id} ({subdomain})")

        if self.events:
            await self.events.publish_tenant_created(tenant.id, tenant.to_dict())
        return tenant

    def _validate_creation(self, tenant_attributes: Mapping[str, Any]) -> Dict[str, Any]:
        name = (tenant_attributes.get("name") or "").strip()
        subdomain = SubdomainValidator.normalize(tenant_attributes.get("subdomain") or "")
        custom_domain = normalize_host(tenant_attributes.get("custom_domain"))
        status = tenant_attributes.get("status") or TenantStatus.TRIAL.value
        plan = tenant_attributes.get("plan") or PlanTier.BASIC.value
        config = dict(tenant_attributes.get("config") or {})

        errors = [
            error.to_dict()
            for error in SubdomainValidator.validate(subdomain, self.settings.reserved_subdomains)
            + DomainValidator.validate(custom_domain, self.settings.base_domain)
        ]
        if not name:
            errors.append({"field": "name", "code": "NAME_REQUIRED", "message": "Name is required"})
        if errors:
            raise TenantValidationError("Tenant validation failed", errors)

        if CUSTOM_FIELDS_KEY in config:
            parse_schema(config[CUSTOM_FIELDS_KEY])

        return {
            "name": name,
            "subdomain": subdomain,
            "custom_domain": custom_domain,
            "status": self._validate_status(status),
            "plan": self._validate_plan(plan),
            "config": config,
        }

    async def _ensure_available(
        self,
        subdomain: Optional[str],
        custom_domain: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> None:
        criteria = []
        if subdomain:
            criteria.append(Tenant.subdomain == subdomain)
        if custom_domain:
            criteria.append(Tenant.custom_domain == custom_domain)
        if not criteria:
            return

        query = select(Tenant.id, Tenant.subdomain, Tenant.custom_domain).where(or_(*criteria))
        result = await self.db.execute(query)
        for tenant_id, existing_subdomain, existing_domain in result.all():
            if tenant_id == exclude_id:
                continue
            if subdomain and existing_subdomain == subdomain:
                raise DuplicateIdentifier("subdomain", subdomain)
            if custom_domain and existing_domain == custom_domain:
                raise DuplicateIdentifier("custom_domain", custom_domain)

    # Mutations

    @staticmethod
    def _validate_status(status: str) -> str:
        try:
            return TenantStatus(str(status)).value
        except ValueError:
            raise TenantValidationError(
                f"Unknown tenant status '{status}'",
                [{"field": "status", "code": "INVALID_STATUS",
                  "message": f"Status must be one of: {[s.value for s in TenantStatus]}"}],
            )

    @staticmethod
    def _validate_plan(plan: str) -> str:
        try:
            return PlanTier(str(plan)).value
        except ValueError:
            raise TenantValidationError(
                f"Unknown plan '{plan}'",
                [{"field": "plan", "code": "INVALID_PLAN",
                  "message": f"Plan must be one of: {[p.value for p in PlanTier]}"}],
            )

    async def update_status(self, internal_id: str, new_status: str) -> Tenant:
        """
        Transition a tenant to a new lifecycle status.

        Raises:
            TenantNotFound: If the tenant does not exist
            TenantValidationError: If the status is unknown
        """
        new_status = self._validate_status(new_status)
        tenant = await self.lookup_by_identifier(internal_id)
        old_status = tenant.status
        if old_status == new_status:
            return tenant

        tenant.status = new_status
        await self.db.commit()
        await self.db.refresh(tenant)
        logger.info(f"Tenant {tenant.id} status {old_status} -> {new_status}")

        if self.events:
            await self.events.publish_status_changed(tenant.id, old_status, new_status)
        return tenant

    async def update_plan(self, internal_id: str, new_plan: str) -> Tenant:
        """
        Move a tenant to another plan tier.

        Raises:
            TenantNotFound: If the tenant does not exist
            TenantValidationError: If the plan is unknown
        """
        new_plan = self._validate_plan(new_plan)
        tenant = await self.lookup_by_identifier(internal_id)
        old_plan = tenant.plan
        if old_plan == new_plan:
            return tenant

        tenant.plan = new_plan
        await self.db.commit()
        await self.db.refresh(tenant)
        logger.info(f"Tenant {tenant.id} plan {old_plan} -> {new_plan}")

        if self.events:
            await self.events.publish_plan_changed(tenant.id, old_plan, new_plan)
        return tenant

    async def update_config(self, internal_id: str, partial_config: Mapping[str, Any]) -> Tenant:
        """
        Merge ``partial_config`` into a tenant's configuration.

        Top-level keys in ``partial_config`` overwrite existing values; keys
        it does not mention are preserved.

        Raises:
            TenantNotFound: If the tenant does not exist
            TenantValidationError: If a custom field schema is invalid
        """
        partial_config = dict(partial_config or {})
        if CUSTOM_FIELDS_KEY in partial_config:
            parse_schema(partial_config[CUSTOM_FIELDS_KEY])

        tenant = await self.lookup_by_identifier(internal_id)
        # Assign a new dict so the JSON column registers the change
        tenant.config = {**(tenant.config or {}), **partial_config}
        await self.db.commit()
        await self.db.refresh(tenant)
        logger.info(f"Tenant {tenant.id} config updated: {sorted(partial_config)}")

        if self.events:
            await self.events.publish_config_updated(tenant.id, sorted(partial_config))
        return tenant

    async def assign_custom_domain(self, internal_id: str, domain: Optional[str]) -> Tenant:
        """
        Assign (or clear, with ``None``) a tenant's custom domain.

        Raises:
            TenantNotFound: If the tenant does not exist
            TenantValidationError: If the domain is malformed
            DuplicateIdentifier: If another tenant owns the domain
        """
        domain = normalize_host(domain)
        errors = [e.to_dict() for e in DomainValidator.validate(domain, self.settings.base_domain)]
        if errors:
            raise TenantValidationError("Invalid custom domain", errors)

        tenant = await self.lookup_by_identifier(internal_id)
        await self._ensure_available(None, domain, exclude_id=tenant.id)

        tenant.custom_domain = domain
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateIdentifier("custom_domain", domain)
        await self.db.refresh(tenant)
        logger.info(f"Tenant {tenant.id} custom domain set to {domain}")

        if self.events:
            await self.events.publish_domain_assigned(tenant.id, domain)
        return tenant
