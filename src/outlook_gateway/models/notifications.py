"""Pydantic models for Microsoft Graph change and lifecycle notifications."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceType(str, Enum):
    """Resource a subscription monitors."""

    EMAIL = "email"
    CALENDAR = "calendar"


class ChangeType(str, Enum):
    """Change types Graph reports for mail and calendar resources."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class LifecycleEvent(str, Enum):
    """Subscription health signals sent to the lifecycle endpoint."""

    SUBSCRIPTION_REMOVED = "subscriptionRemoved"
    REAUTHORIZATION_REQUIRED = "reauthorizationRequired"
    SUBSCRIPTION_RENEWAL_REQUIRED = "subscriptionRenewalRequired"
    MISSED = "missed"


class ResourceData(BaseModel):
    """Subset of ``resourceData`` the gateway relies on."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(default=None, description="Graph id of the changed item")


class ChangeNotification(BaseModel):
    """One item of a Graph notification batch.

    Change notifications carry ``changeType``; lifecycle notifications carry
    ``lifecycleEvent``. Everything is optional because the gateway drops
    incomplete items instead of rejecting the whole batch.
    """

    model_config = ConfigDict(extra="allow")

    subscriptionId: Optional[str] = Field(default=None, description="Subscription ID")
    subscriptionExpirationDateTime: Optional[str] = Field(
        default=None, description="When subscription expires"
    )
    clientState: Optional[str] = Field(default=None, description="Shared secret set on the subscription")
    changeType: Optional[str] = Field(default=None, description="created, updated or deleted")
    lifecycleEvent: Optional[str] = Field(default=None, description="Lifecycle signal name")
    resource: Optional[str] = Field(default=None, description="Resource path (e.g. Users/{id}/Messages/{id})")
    resourceData: Optional[ResourceData] = Field(default=None, description="Resource data")
    tenantId: Optional[str] = Field(default=None, description="Tenant ID")

    @property
    def resource_id(self) -> Optional[str]:
        return self.resourceData.id if self.resourceData else None


class NotificationBatch(BaseModel):
    """Batch of notifications (Graph always posts an array under ``value``)."""

    value: List[ChangeNotification] = Field(..., description="Array of notifications")


class NotificationEvent(BaseModel):
    """A validated change notification waiting for reconciliation."""

    account_name: str
    event_id: str
    change_type: ChangeType
    subscription_id: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CalendarEventChange(BaseModel):
    """Accepted calendar change forwarded to the agent."""

    eventId: str
    eventType: ChangeType


class EmailProcessData(BaseModel):
    """Reconciled mail changes for one subscription."""

    name: str
    subscriptionId: str
    emailIds: List[str]


class CalendarProcessData(BaseModel):
    """Reconciled calendar changes for one subscription."""

    name: str
    subscriptionId: str
    events: List[CalendarEventChange]


class LifecycleProcessData(BaseModel):
    """Lifecycle signals for one subscription."""

    name: str
    subscriptionId: str
    events: List[str]


class WebhookKind(str, Enum):
    """The four notification endpoints."""

    EMAIL_NOTIFY = "email-notify"
    EMAIL_LIFECYCLE = "email-lifecycle"
    CALENDAR_NOTIFY = "calendar-notify"
    CALENDAR_LIFECYCLE = "calendar-lifecycle"

    @property
    def resource_type(self) -> ResourceType:
        if self in (WebhookKind.EMAIL_NOTIFY, WebhookKind.EMAIL_LIFECYCLE):
            return ResourceType.EMAIL
        return ResourceType.CALENDAR

    @property
    def is_lifecycle(self) -> bool:
        return self in (WebhookKind.EMAIL_LIFECYCLE, WebhookKind.CALENDAR_LIFECYCLE)


class ProcessedBatch(BaseModel):
    """What a webhook request hands to the event sink."""

    kind: WebhookKind
    process_data: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.process_data


class Subscription(BaseModel):
    """Graph subscription created on behalf of a session."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    resource_type: ResourceType
    expiration_date_time: str = Field(..., alias="expirationDateTime")
    client_state: Optional[str] = Field(default=None, alias="clientState")
