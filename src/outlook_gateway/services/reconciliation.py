"""Notification reconciliation: debounce and cross-type suppression.

Graph delivers change notifications at-least-once, out of order and in
bursts; a single edit commonly produces ``created`` followed by ``updated``
seconds apart. Each accepted event leaves a marker in the event cache for
the debounce window, and later notifications for the same resource are
checked against those markers:

* the same change type already seen -> duplicate delivery
* ``updated`` after ``created`` or ``deleted`` -> noise from the same action
* ``created`` or ``deleted`` after ``updated`` -> the update raced ahead

This is a heuristic. It occasionally drops a genuine change in exchange for
removing the much larger volume of duplicate noise. Two deliveries racing on
different change types can both be accepted; the cache offers no atomic
multi-key check.
"""

import json
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from outlook_gateway.cache.event_cache import DEFAULT_TTL, TTL, EventCache, event_cache_key
from outlook_gateway.models.notifications import ChangeType, NotificationEvent
from outlook_gateway.utils.errors import CacheUnavailable
from outlook_gateway.utils.logging import get_logger

logger = get_logger("reconciliation")

# incoming change type -> cached change types that suppress it
SUPPRESSED_BY: Dict[ChangeType, Tuple[ChangeType, ...]] = {
    ChangeType.UPDATED: (ChangeType.CREATED, ChangeType.DELETED),
    ChangeType.CREATED: (ChangeType.UPDATED,),
    ChangeType.DELETED: (ChangeType.UPDATED,),
}


def suppressing_change_types(change_type: ChangeType) -> Tuple[ChangeType, ...]:
    """Cached change types that make ``change_type`` redundant, itself first."""
    return (change_type,) + SUPPRESSED_BY[change_type]


def is_suppressed(change_type: ChangeType, seen: Iterable[ChangeType]) -> bool:
    """Decide whether a notification is redundant given cached change types."""
    seen_types: FrozenSet[ChangeType] = frozenset(seen)
    if change_type in seen_types:
        return True
    return any(other in seen_types for other in SUPPRESSED_BY[change_type])


class NotificationReconciler:
    """Deduplicates change notifications using the event cache as its only state."""

    def __init__(self, cache: EventCache, ttl: TTL = DEFAULT_TTL):
        self.cache = cache
        self.ttl = ttl

    async def _is_cached(self, key: str) -> bool:
        try:
            return await self.cache.get(key) is not None
        except CacheUnavailable as e:
            # Fail open: an unreachable cache lets duplicates through
            logger.warning(f"Event cache read failed, treating {key} as unseen: {e}")
            return False

    async def seen_change_types(self, event: NotificationEvent) -> Set[ChangeType]:
        """Return the cached change types relevant to ``event``.

        The event's own change type is checked first; the cross-type keys are
        only read when it is absent.
        """
        own_key = event_cache_key(event.account_name, event.change_type.value, event.event_id)
        if await self._is_cached(own_key):
            return {event.change_type}

        seen: Set[ChangeType] = set()
        for other in SUPPRESSED_BY[event.change_type]:
            key = event_cache_key(event.account_name, other.value, event.event_id)
            if await self._is_cached(key):
                seen.add(other)
        return seen

    async def _claim(self, event: NotificationEvent) -> bool:
        key = event_cache_key(event.account_name, event.change_type.value, event.event_id)
        payload = json.dumps(event.raw_payload, default=str)
        try:
            return await self.cache.add(key, payload, self.ttl)
        except CacheUnavailable as e:
            logger.warning(f"Event cache write failed for {key}, accepting anyway: {e}")
            return True

    async def accept(self, event: NotificationEvent) -> bool:
        """Run one event through the suppression table; record it if accepted."""
        seen = await self.seen_change_types(event)
        if is_suppressed(event.change_type, seen):
            logger.info(
                f"Skipping {event.change_type.value} notification for {event.event_id} "
                f"(recently processed: {sorted(t.value for t in seen)})"
            )
            return False

        if not await self._claim(event):
            logger.info(
                f"Skipping {event.change_type.value} notification for {event.event_id} "
                f"(claimed by a concurrent delivery)"
            )
            return False
        return True

    async def reconcile(self, events: List[NotificationEvent]) -> List[NotificationEvent]:
        """Filter a request's events down to the accepted ones, in arrival order."""
        accepted: List[NotificationEvent] = []
        for event in events:
            if await self.accept(event):
                accepted.append(event)
        return accepted


def group_by_subscription(
    events: List[NotificationEvent],
) -> List[Tuple[str, str, List[NotificationEvent]]]:
    """Group accepted events by (subscription id, account), keeping first-seen order."""
    groups: Dict[Tuple[str, str], List[NotificationEvent]] = {}
    for event in events:
        if event.subscription_id is None:
            continue
        groups.setdefault((event.subscription_id, event.account_name), []).append(event)
    return [(sub_id, account, items) for (sub_id, account), items in groups.items()]


def parse_change_type(value: Optional[str]) -> Optional[ChangeType]:
    if not value:
        return None
    try:
        return ChangeType(value)
    except ValueError:
        return None
