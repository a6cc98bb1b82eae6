"""Turn an authenticated notification batch into agent process data."""

from typing import Any, Dict, List, Optional

from outlook_gateway.models.notifications import (
    CalendarEventChange,
    CalendarProcessData,
    ChangeNotification,
    EmailProcessData,
    LifecycleEvent,
    LifecycleProcessData,
    NotificationEvent,
    ProcessedBatch,
    ResourceType,
    WebhookKind,
)
from outlook_gateway.services.reconciliation import (
    NotificationReconciler,
    group_by_subscription,
    parse_change_type,
)
from outlook_gateway.utils.logging import get_logger, log_reconciliation

logger = get_logger("webhook_processing")


def build_change_events(account_name: str, items: List[ChangeNotification]) -> List[NotificationEvent]:
    """Convert change items to events, dropping ones that cannot be keyed."""
    events: List[NotificationEvent] = []
    for item in items:
        resource_id = item.resource_id
        if not resource_id:
            logger.debug("Dropping change notification without resourceData.id")
            continue
        change_type = parse_change_type(item.changeType)
        if change_type is None:
            logger.warning(f"Dropping notification {resource_id} with unknown changeType {item.changeType!r}")
            continue
        if not item.subscriptionId:
            logger.debug(f"Dropping notification {resource_id} without subscriptionId")
            continue
        events.append(
            NotificationEvent(
                account_name=account_name,
                event_id=resource_id,
                change_type=change_type,
                subscription_id=item.subscriptionId,
                raw_payload=item.model_dump(mode="json", exclude_none=True),
            )
        )
    return events


def lifecycle_process_data(account_name: str, items: List[ChangeNotification]) -> List[Dict[str, Any]]:
    """Group lifecycle signals by subscription, discarding ``missed``."""
    groups: Dict[str, List[str]] = {}
    for item in items:
        event = item.lifecycleEvent
        if not event or not item.subscriptionId:
            continue
        if event == LifecycleEvent.MISSED.value:
            continue
        groups.setdefault(item.subscriptionId, []).append(event)
    return [
        LifecycleProcessData(name=account_name, subscriptionId=sub_id, events=events).model_dump()
        for sub_id, events in groups.items()
    ]


def change_process_data(resource_type: ResourceType, events: List[NotificationEvent]) -> List[Dict[str, Any]]:
    data: List[Dict[str, Any]] = []
    for subscription_id, account_name, group in group_by_subscription(events):
        if resource_type == ResourceType.EMAIL:
            entry = EmailProcessData(
                name=account_name,
                subscriptionId=subscription_id,
                emailIds=[event.event_id for event in group],
            )
        else:
            entry = CalendarProcessData(
                name=account_name,
                subscriptionId=subscription_id,
                events=[
                    CalendarEventChange(eventId=event.event_id, eventType=event.change_type)
                    for event in group
                ],
            )
        data.append(entry.model_dump(mode="json"))
    return data


class NotificationProcessor:
    """Runs authenticated items through reconciliation for one endpoint kind."""

    def __init__(self, reconciler: NotificationReconciler):
        self.reconciler = reconciler

    async def process(
        self,
        kind: WebhookKind,
        account_name: Optional[str],
        items: List[ChangeNotification],
    ) -> ProcessedBatch:
        if not account_name:
            logger.info(f"{kind.value}: no account name on request, acknowledging without processing")
            return ProcessedBatch(kind=kind)

        if kind.is_lifecycle:
            return ProcessedBatch(kind=kind, process_data=lifecycle_process_data(account_name, items))

        events = build_change_events(account_name, items)
        accepted = await self.reconciler.reconcile(events)
        log_reconciliation(kind.value, account_name, received=len(events), accepted=len(accepted))
        return ProcessedBatch(kind=kind, process_data=change_process_data(kind.resource_type, accepted))
