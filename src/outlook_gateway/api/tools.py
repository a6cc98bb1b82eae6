"""Outlook tool endpoints.

Every route answers with a ``ToolResponse``; Graph failures are reported in
its ``error`` field instead of as HTTP errors.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from outlook_gateway.dependencies import get_graph_session
from outlook_gateway.models.tools import (
    CalendarEventCreate,
    CalendarEventUpdate,
    DraftEmail,
    DraftUpdate,
    EmailSearch,
    PeopleSearch,
    ReplyDraft,
    SubscriptionCreate,
    ToolResponse,
)
from outlook_gateway.services.graph_client import GraphResult
from outlook_gateway.session import GraphSession
from outlook_gateway.utils.logging import get_logger

logger = get_logger("tools")

router = APIRouter(prefix="/tools", tags=["tools"])

EVENT_FIELD_NAMES = {
    "subject": "subject",
    "startDate": "start",
    "endDate": "end",
    "reminderMinutesBeforeStart": "reminder_minutes_before_start",
    "body": "body",
    "location": "location",
    "isAllDay": "is_all_day",
    "categories": "categories",
    "attendees": "attendees",
}


def tool_response(description: str, result: GraphResult, data: Optional[Any] = None) -> ToolResponse:
    """Wrap a Graph result; ``data`` replaces the payload on success."""
    if result.ok:
        return ToolResponse(
            success=True,
            description=description,
            data=result.data if data is None else data,
        )
    logger.warning(f"Tool call failed: {description} ({result.error.kind.value}, status={result.error.status})")
    return ToolResponse(
        success=False,
        description=f"Failed: {description}",
        error=result.error.to_dict(),
    )


# Calendar


@router.get("/calendar/events", response_model=ToolResponse)
async def get_user_calendar_events(
    startDate: str = Query(..., description="Start date in ISO 8601 format"),
    endDate: str = Query(..., description="End date in ISO 8601 format"),
    limit: int = Query(100, ge=1, le=1000),
    session: GraphSession = Depends(get_graph_session),
):
    result = await session.outlook.get_user_calendar_events(startDate, endDate, limit=limit)
    return tool_response("Calendar events retrieved", result)


@router.get("/calendar/events/{event_id}", response_model=ToolResponse)
async def get_calendar_event(event_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.get_calendar_event(event_id)
    return tool_response("Calendar event retrieved", result)


@router.post("/calendar/events", response_model=ToolResponse)
async def create_calendar_event(
    body: CalendarEventCreate, session: GraphSession = Depends(get_graph_session)
):
    result = await session.outlook.create_calendar_event(
        subject=body.subject,
        start=body.startDate,
        end=body.endDate,
        reminder_minutes_before_start=body.reminderMinutesBeforeStart,
        body=body.body,
        location=body.location,
        is_all_day=body.isAllDay,
        categories=body.categories,
        attendees=body.attendees,
    )
    return tool_response("Calendar event created", result)


@router.patch("/calendar/events/{event_id}", response_model=ToolResponse)
async def update_calendar_event(
    event_id: str, body: CalendarEventUpdate, session: GraphSession = Depends(get_graph_session)
):
    fields = {
        EVENT_FIELD_NAMES[name]: value
        for name, value in body.model_dump(exclude_unset=True).items()
    }
    result = await session.outlook.update_calendar_event(event_id, **fields)
    return tool_response("Calendar event updated", result)


@router.delete("/calendar/events/{event_id}", response_model=ToolResponse)
async def delete_calendar_event(event_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.delete_calendar_event(event_id)
    return tool_response("Calendar event deleted", result, data={"eventId": event_id})


# Mail


@router.post("/mail/search", response_model=ToolResponse)
async def search_emails(body: EmailSearch, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.search_emails(
        folder=body.folder,
        start=body.startDate,
        end=body.endDate,
        from_address=body.fromAddress,
        to_address=body.toAddress,
        conversation_id=body.conversationId,
        query=body.query,
    )
    return tool_response("Emails retrieved", result)


@router.get("/mail/messages/{email_id}", response_model=ToolResponse)
async def get_email(email_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.get_email(email_id)
    return tool_response("Email retrieved", result)


@router.post("/mail/messages/{email_id}/read", response_model=ToolResponse)
async def mark_email_as_read(email_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.mark_email_as_read(email_id)
    return tool_response("Email marked as read", result, data={"emailId": email_id})


@router.post("/mail/messages/{email_id}/archive", response_model=ToolResponse)
async def archive_email(email_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.archive_email(email_id)
    return tool_response("Email archived", result)


@router.post("/mail/messages/{email_id}/reply-draft", response_model=ToolResponse)
async def create_reply_draft(
    email_id: str, body: ReplyDraft, session: GraphSession = Depends(get_graph_session)
):
    result = await session.outlook.create_reply_draft(email_id, reply_all=body.replyAll, body=body.body)
    return tool_response("Reply draft created", result)


@router.delete("/mail/messages/{email_id}", response_model=ToolResponse)
async def delete_email(email_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.delete_email(email_id)
    return tool_response("Email deleted", result, data={"emailId": email_id})


@router.post("/mail/drafts", response_model=ToolResponse)
async def draft_email(body: DraftEmail, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.draft_email(
        subject=body.subject,
        body=body.body,
        to_recipients=body.toRecipients,
        cc_recipients=body.ccRecipients,
        bcc_recipients=body.bccRecipients,
    )
    return tool_response("Draft email created", result)


@router.patch("/mail/drafts/{email_id}", response_model=ToolResponse)
async def update_email_draft(
    email_id: str, body: DraftUpdate, session: GraphSession = Depends(get_graph_session)
):
    result = await session.outlook.update_email_draft(
        email_id,
        subject=body.subject,
        body=body.body,
        to_recipients=body.toRecipients,
        cc_recipients=body.ccRecipients,
        bcc_recipients=body.bccRecipients,
    )
    return tool_response("Draft updated", result)


@router.post("/mail/drafts/{email_id}/send", response_model=ToolResponse)
async def send_email(email_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.send_email(email_id)
    return tool_response("Email sent", result, data={"emailId": email_id})


# Subscriptions


@router.post("/subscriptions", response_model=ToolResponse)
async def create_subscription(
    body: SubscriptionCreate, session: GraphSession = Depends(get_graph_session)
):
    try:
        result = await session.outlook.create_subscription(body.serverName, body.resource)
    except ValueError as e:
        return ToolResponse(
            success=False,
            description="Failed: Subscription created",
            error={"kind": "configuration_error", "status": None, "message": str(e)},
        )
    return tool_response("Subscription created", result)


@router.post("/subscriptions/{subscription_id}/refresh", response_model=ToolResponse)
async def refresh_subscription(subscription_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.refresh_subscription(subscription_id)
    return tool_response("Subscription refreshed", result)


@router.get("/subscriptions", response_model=ToolResponse)
async def list_subscriptions(session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.list_subscriptions()
    return tool_response("Subscriptions retrieved", result)


@router.delete("/subscriptions/{subscription_id}", response_model=ToolResponse)
async def delete_subscription(subscription_id: str, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.delete_subscription(subscription_id)
    return tool_response("Subscription deleted", result, data={"subscriptionId": subscription_id})


# People


@router.post("/people/search", response_model=ToolResponse)
async def search_people(body: PeopleSearch, session: GraphSession = Depends(get_graph_session)):
    result = await session.outlook.search_people(body.query, top=body.top)
    return tool_response("People retrieved", result)
