"""Outlook mail, calendar, subscription and people operations over Graph."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

from outlook_gateway.config import MicrosoftSettings
from outlook_gateway.models.notifications import ResourceType, WebhookKind
from outlook_gateway.services.graph_client import GraphClient, GraphResult
from outlook_gateway.utils.logging import get_logger

logger = get_logger("outlook_service")

MAIL_FOLDERS = ("inbox", "sentitems", "drafts", "archive")

# Graph caps Outlook message/event subscriptions just under 7 days
SUBSCRIPTION_MAX_MINUTES = 10070

SEARCH_LIMIT = 250

MESSAGE_SELECT = (
    "id,conversationId,subject,bodyPreview,from,toRecipients,ccRecipients,"
    "receivedDateTime,sentDateTime,isRead,isDraft,webLink"
)


def _recipients(addresses: Optional[List[str]]) -> List[Dict[str, Any]]:
    return [{"emailAddress": {"address": address}} for address in addresses or []]


def _address_of(recipient: Optional[Dict[str, Any]]) -> str:
    if not recipient:
        return ""
    return (recipient.get("emailAddress") or {}).get("address", "") or ""


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _event_time(value: str) -> Dict[str, str]:
    return {"dateTime": value, "timeZone": "UTC"}


def _event_fields(
    subject: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    reminder_minutes_before_start: Optional[int] = None,
    body: Optional[str] = None,
    location: Optional[str] = None,
    is_all_day: Optional[bool] = None,
    categories: Optional[List[str]] = None,
    attendees: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Graph event payload containing only the fields that were given."""
    payload: Dict[str, Any] = {}
    if subject is not None:
        payload["subject"] = subject
    if start is not None:
        payload["start"] = _event_time(start)
    if end is not None:
        payload["end"] = _event_time(end)
    if reminder_minutes_before_start is not None:
        payload["reminderMinutesBeforeStart"] = reminder_minutes_before_start
        payload["isReminderOn"] = True
    if body is not None:
        payload["body"] = {"contentType": "text", "content": body}
    if location is not None:
        payload["location"] = {"displayName": location}
    if is_all_day is not None:
        payload["isAllDay"] = is_all_day
    if categories is not None:
        payload["categories"] = categories
    if attendees is not None:
        payload["attendees"] = [
            {"emailAddress": {"address": address}, "type": "required"} for address in attendees
        ]
    return payload


class OutlookService:
    """Graph operations for one signed-in user."""

    def __init__(self, graph: GraphClient, user_id: str, settings: MicrosoftSettings):
        self.graph = graph
        self.user_id = user_id
        self.settings = settings

    @property
    def _user(self) -> str:
        return f"/users/{quote(self.user_id, safe='')}"

    # Calendar

    async def get_user_calendar_events(self, start: str, end: str, limit: int = 100) -> GraphResult:
        """Events overlapping [start, end], newest first, across all pages."""
        params = {
            "$filter": f"start/dateTime lt '{end}' and end/dateTime ge '{start}'",
            "$orderby": "start/dateTime desc",
            "$top": str(limit),
        }
        return await self.graph.list_all(f"{self._user}/events", params=params)

    async def get_calendar_event(self, event_id: str) -> GraphResult:
        return await self.graph.get(f"{self._user}/events/{quote(event_id, safe='')}")

    async def create_calendar_event(
        self,
        subject: str,
        start: str,
        end: str,
        reminder_minutes_before_start: int = 15,
        body: Optional[str] = None,
        location: Optional[str] = None,
        is_all_day: Optional[bool] = None,
        categories: Optional[List[str]] = None,
        attendees: Optional[List[str]] = None,
    ) -> GraphResult:
        payload = _event_fields(
            subject=subject,
            start=start,
            end=end,
            reminder_minutes_before_start=reminder_minutes_before_start,
            body=body,
            location=location,
            is_all_day=is_all_day,
            categories=categories,
            attendees=attendees,
        )
        return await self.graph.post(f"{self._user}/events", json=payload)

    async def update_calendar_event(self, event_id: str, **fields: Any) -> GraphResult:
        """Patch only the provided event fields (same names as create)."""
        payload = _event_fields(**fields)
        return await self.graph.patch(
            f"{self._user}/events/{quote(event_id, safe='')}", json=payload
        )

    async def delete_calendar_event(self, event_id: str) -> GraphResult:
        return await self.graph.delete(f"{self._user}/events/{quote(event_id, safe='')}")

    # Mail

    async def search_emails(
        self,
        folder: str = "inbox",
        start: Optional[str] = None,
        end: Optional[str] = None,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
        conversation_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> GraphResult:
        """Search a mail folder.

        With ``query`` Graph's ``$search`` is used; it cannot be combined with
        ``$filter`` or ``$orderby``, so the date range and address filters are
        applied here instead. Without a query the date range and conversation
        id are filtered server-side and addresses are refined locally.
        """
        if folder not in MAIL_FOLDERS:
            raise ValueError(f"Unsupported mail folder: {folder}")

        path = f"{self._user}/mailFolders/{folder}/messages"
        params: Dict[str, Any] = {"$select": MESSAGE_SELECT, "$top": "50"}
        headers: Optional[Dict[str, str]] = None

        if query:
            params["$search"] = f'"{query}"'
            headers = {"ConsistencyLevel": "eventual"}
        else:
            clauses = []
            if start:
                clauses.append(f"receivedDateTime ge {start}")
            if end:
                clauses.append(f"receivedDateTime le {end}")
            if conversation_id:
                clauses.append(f"conversationId eq '{conversation_id}'")
            if clauses:
                params["$filter"] = " and ".join(clauses)
            params["$orderby"] = "receivedDateTime desc"

        result = await self.graph.list_all(path, params=params, headers=headers, limit=SEARCH_LIMIT)
        if not result.ok:
            return result

        messages = result.data
        if query:
            messages = [m for m in messages if self._in_range(m, start, end)]
            if conversation_id:
                messages = [m for m in messages if m.get("conversationId") == conversation_id]
        if from_address:
            needle = from_address.lower()
            messages = [m for m in messages if needle in _address_of(m.get("from")).lower()]
        if to_address:
            needle = to_address.lower()
            messages = [
                m
                for m in messages
                if any(needle in _address_of(r).lower() for r in m.get("toRecipients") or [])
            ]
        return GraphResult(data=messages)

    @staticmethod
    def _in_range(message: Dict[str, Any], start: Optional[str], end: Optional[str]) -> bool:
        received = message.get("receivedDateTime")
        if not received:
            return True
        received_at = _parse_iso(received)
        if start and received_at < _parse_iso(start):
            return False
        if end and received_at > _parse_iso(end):
            return False
        return True

    async def get_email(self, email_id: str) -> GraphResult:
        return await self.graph.get(f"{self._user}/messages/{quote(email_id, safe='')}")

    async def mark_email_as_read(self, email_id: str) -> GraphResult:
        return await self.graph.patch(
            f"{self._user}/messages/{quote(email_id, safe='')}", json={"isRead": True}
        )

    async def archive_email(self, email_id: str) -> GraphResult:
        return await self.graph.post(
            f"{self._user}/messages/{quote(email_id, safe='')}/move",
            json={"destinationId": "archive"},
        )

    async def draft_email(
        self,
        subject: str,
        body: str,
        to_recipients: List[str],
        cc_recipients: Optional[List[str]] = None,
        bcc_recipients: Optional[List[str]] = None,
    ) -> GraphResult:
        if not to_recipients:
            raise ValueError("A draft needs at least one To recipient")
        payload = {
            "subject": subject,
            "body": {"contentType": "text", "content": body},
            "toRecipients": _recipients(to_recipients),
            "ccRecipients": _recipients(cc_recipients),
            "bccRecipients": _recipients(bcc_recipients),
        }
        return await self.graph.post(f"{self._user}/messages", json=payload)

    async def create_reply_draft(
        self, original_email_id: str, reply_all: bool = False, body: Optional[str] = None
    ) -> GraphResult:
        action = "createReplyAll" if reply_all else "createReply"
        result = await self.graph.post(
            f"{self._user}/messages/{quote(original_email_id, safe='')}/{action}", json={}
        )
        if not result.ok or body is None or not result.data:
            return result
        return await self.update_email_draft(result.data["id"], body=body)

    async def update_email_draft(
        self,
        email_id: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        to_recipients: Optional[List[str]] = None,
        cc_recipients: Optional[List[str]] = None,
        bcc_recipients: Optional[List[str]] = None,
    ) -> GraphResult:
        payload: Dict[str, Any] = {}
        if subject is not None:
            payload["subject"] = subject
        if body is not None:
            payload["body"] = {"contentType": "text", "content": body}
        if to_recipients is not None:
            payload["toRecipients"] = _recipients(to_recipients)
        if cc_recipients is not None:
            payload["ccRecipients"] = _recipients(cc_recipients)
        if bcc_recipients is not None:
            payload["bccRecipients"] = _recipients(bcc_recipients)
        return await self.graph.patch(
            f"{self._user}/messages/{quote(email_id, safe='')}", json=payload
        )

    async def send_email(self, email_id: str) -> GraphResult:
        return await self.graph.post(f"{self._user}/messages/{quote(email_id, safe='')}/send")

    async def delete_email(self, email_id: str) -> GraphResult:
        return await self.graph.delete(f"{self._user}/messages/{quote(email_id, safe='')}")

    # Subscriptions

    def notification_url(self, kind: WebhookKind, account_name: str) -> str:
        if not self.settings.webhook_url:
            raise ValueError("MICROSOFT_WEBHOOK_URL is not configured")
        base = self.settings.webhook_url.rstrip("/")
        return f"{base}/webhooks/{kind.value}?{urlencode({'name': account_name})}"

    async def create_subscription(self, account_name: str, resource_type: ResourceType) -> GraphResult:
        """Subscribe to mail or calendar changes for this user."""
        if resource_type == ResourceType.EMAIL:
            resource = f"{self._user}/messages"
            notify, lifecycle = WebhookKind.EMAIL_NOTIFY, WebhookKind.EMAIL_LIFECYCLE
        else:
            resource = f"{self._user}/events"
            notify, lifecycle = WebhookKind.CALENDAR_NOTIFY, WebhookKind.CALENDAR_LIFECYCLE

        payload = {
            "changeType": "created,updated,deleted",
            "notificationUrl": self.notification_url(notify, account_name),
            "lifecycleNotificationUrl": self.notification_url(lifecycle, account_name),
            "resource": resource.lstrip("/"),
            "expirationDateTime": self._expiration(),
            "clientState": self.settings.webhook_secret,
        }
        logger.info(f"Creating {resource_type.value} subscription for {account_name}")
        return await self.graph.post("/subscriptions", json=payload)

    async def refresh_subscription(self, subscription_id: str) -> GraphResult:
        return await self.graph.patch(
            f"/subscriptions/{quote(subscription_id, safe='')}",
            json={"expirationDateTime": self._expiration()},
        )

    async def list_subscriptions(self) -> GraphResult:
        return await self.graph.list_all("/subscriptions")

    async def delete_subscription(self, subscription_id: str) -> GraphResult:
        return await self.graph.delete(f"/subscriptions/{quote(subscription_id, safe='')}")

    @staticmethod
    def _expiration() -> str:
        expires = datetime.now(timezone.utc) + timedelta(minutes=SUBSCRIPTION_MAX_MINUTES)
        return expires.strftime("%Y-%m-%dT%H:%M:%S.0000000Z")

    # People

    async def search_people(self, query: str, top: int = 10) -> GraphResult:
        if not 1 <= top <= 20:
            raise ValueError("top must be between 1 and 20")
        return await self.graph.get(
            f"{self._user}/people", params={"$search": f'"{query}"', "$top": str(top)}
        )
