"""Event publishing service for tenant lifecycle changes."""

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from campus.core.settings import get_settings

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Tenant event types."""
    TENANT_CREATED = "tenancy.tenant.created"
    TENANT_STATUS_CHANGED = "tenancy.tenant.status_changed"
    TENANT_PLAN_CHANGED = "tenancy.tenant.plan_changed"
    TENANT_CONFIG_UPDATED = "tenancy.tenant.config_updated"
    TENANT_DOMAIN_ASSIGNED = "tenancy.tenant.domain_assigned"
    QUOTA_EXCEEDED = "tenancy.quota.exceeded"


@dataclass
class TenantEvent:
    """Base tenant event structure."""
    event_type: EventType
    tenant_id: str
    data: Dict[str, Any]
    metadata: Optional[Dict[str, Any]] = None

    # Auto-generated fields
    event_id: str = None
    timestamp: str = None
    version: str = "1.0"

    def __post_init__(self):
        if self.event_id is None:
            self.event_id = str(uuid.uuid4())
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()


class EventPublisher:
    """Service for publishing tenant events."""

    def __init__(self):
        settings = get_settings()
        self.event_bus_type = settings.event_bus_type
        self.sqs_client = None
        self.queue_url = settings.sqs_event_queue_url
        self.published: List[TenantEvent] = []

        if self.event_bus_type == "sqs":
            self._initialize_sqs(settings)

    def _initialize_sqs(self, settings):
        """Initialize SQS client."""
        try:
            self.sqs_client = boto3.client(
                "sqs",
                region_name=settings.aws_region,
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
            )
            logger.info("SQS client initialized for event publishing")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to initialize SQS client: {e}")
            self.sqs_client = None

    async def publish_event(self, event: TenantEvent) -> bool:
        """Publish a tenant event. Failures are logged, never raised."""
        if self.event_bus_type == "sqs":
            return await self._publish_to_sqs(event)
        return await self._publish_mock(event)

    async def _publish_to_sqs(self, event: TenantEvent) -> bool:
        """Publish event to SQS queue."""
        if not self.sqs_client or not self.queue_url:
            logger.warning("SQS not properly configured, skipping event publish")
            return False

        try:
            message_body = json.dumps(asdict(event), default=str)
            message_attributes = {
                "event_type": {
                    "StringValue": event.event_type.value,
                    "DataType": "String"
                },
                "tenant_id": {
                    "StringValue": event.tenant_id,
                    "DataType": "String"
                },
            }

            response = self.sqs_client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=message_body,
                MessageAttributes=message_attributes,
                MessageGroupId=event.tenant_id,  # For FIFO queues
                MessageDeduplicationId=event.event_id
            )

            logger.info(f"Published event {event.event_id} to SQS: {response['MessageId']}")
            return True

        except (BotoCoreError, ClientError) as e:
            logger.error(f"SQS error publishing event {event.event_id}: {e}")
            return False

    async def _publish_mock(self, event: TenantEvent) -> bool:
        """Mock event publishing for development and tests."""
        self.published.append(event)
        logger.info(f"MOCK EVENT: {event.event_type.value} - {event.event_id}")
        logger.debug(f"Event data: {json.dumps(asdict(event), indent=2, default=str)}")
        return True

    async def publish_tenant_created(self, tenant_id: str, tenant_data: Dict[str, Any]) -> bool:
        """Publish tenant created event."""
        return await self.publish_event(TenantEvent(
            event_type=EventType.TENANT_CREATED,
            tenant_id=tenant_id,
            data=tenant_data,
            metadata={"source": "tenant_directory"},
        ))

    async def publish_status_changed(self, tenant_id: str, old_status: str, new_status: str) -> bool:
        """Publish tenant status transition."""
        return await self.publish_event(TenantEvent(
            event_type=EventType.TENANT_STATUS_CHANGED,
            tenant_id=tenant_id,
            data={"old_status": old_status, "new_status": new_status},
            metadata={"source": "tenant_directory"},
        ))

    async def publish_plan_changed(self, tenant_id: str, old_plan: str, new_plan: str) -> bool:
        """Publish tenant plan change."""
        return await self.publish_event(TenantEvent(
            event_type=EventType.TENANT_PLAN_CHANGED,
            tenant_id=tenant_id,
            data={"old_plan": old_plan, "new_plan": new_plan},
            metadata={"source": "tenant_directory"},
        ))

    async def publish_config_updated(self, tenant_id: str, changed_keys: List[str]) -> bool:
        """Publish tenant configuration change."""
        return await self.publish_event(TenantEvent(
            event_type=EventType.TENANT_CONFIG_UPDATED,
            tenant_id=tenant_id,
            data={"changed_keys": changed_keys},
            metadata={"source": "tenant_directory"},
        ))

    async def publish_domain_assigned(self, tenant_id: str, domain: Optional[str]) -> bool:
        """Publish custom domain assignment."""
        return await self.publish_event(TenantEvent(
            event_type=EventType.TENANT_DOMAIN_ASSIGNED,
            tenant_id=tenant_id,
            data={"custom_domain": domain},
            metadata={"source": "tenant_directory"},
        ))

    async def publish_quota_exceeded(
        self,
        tenant_id: str,
        resource_kind: str,
        limit: int,
        current: int,
    ) -> bool:
        """Publish quota rejection."""
        return await self.publish_event(TenantEvent(
            event_type=EventType.QUOTA_EXCEEDED,
            tenant_id=tenant_id,
            data={"resource_kind": resource_kind, "limit": limit, "current": current},
            metadata={"source": "usage_accounting"},
        ))


# Global event publisher instance
_event_publisher = None


def get_event_publisher() -> EventPublisher:
    """Get the global event publisher instance."""
    global _event_publisher
    if _event_publisher is None:
        _event_publisher = EventPublisher()
    return _event_publisher
