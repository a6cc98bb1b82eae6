"""Request and response models for the Outlook tool endpoints."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from outlook_gateway.models.notifications import ResourceType


class ToolResponse(BaseModel):
    """Uniform envelope for every tool call."""

    success: bool
    description: str
    data: Any = None
    error: Optional[Dict[str, Any]] = None


class CalendarEventsQuery(BaseModel):
    startDate: str = Field(..., description="Start date in ISO 8601 format")
    endDate: str = Field(..., description="End date in ISO 8601 format")
    limit: int = Field(default=100, ge=1, le=1000)


class CalendarEventCreate(BaseModel):
    subject: str
    startDate: str
    endDate: str
    reminderMinutesBeforeStart: int = 15
    body: Optional[str] = None
    location: Optional[str] = None
    isAllDay: Optional[bool] = None
    categories: Optional[List[str]] = None
    attendees: Optional[List[str]] = None


class CalendarEventUpdate(BaseModel):
    """Only the provided fields are sent to Graph."""

    subject: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    reminderMinutesBeforeStart: Optional[int] = None
    body: Optional[str] = None
    location: Optional[str] = None
    isAllDay: Optional[bool] = None
    categories: Optional[List[str]] = None
    attendees: Optional[List[str]] = None


class EmailSearch(BaseModel):
    folder: Literal["inbox", "sentitems", "drafts", "archive"] = "inbox"
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    fromAddress: Optional[str] = None
    toAddress: Optional[str] = None
    conversationId: Optional[str] = None
    query: Optional[str] = None


class DraftEmail(BaseModel):
    subject: str
    body: str
    toRecipients: List[str] = Field(..., min_length=1)
    ccRecipients: Optional[List[str]] = None
    bccRecipients: Optional[List[str]] = None


class ReplyDraft(BaseModel):
    replyAll: bool = False
    body: Optional[str] = None


class DraftUpdate(BaseModel):
    subject: Optional[str] = None
    body: Optional[str] = None
    toRecipients: Optional[List[str]] = None
    ccRecipients: Optional[List[str]] = None
    bccRecipients: Optional[List[str]] = None


class SubscriptionCreate(BaseModel):
    serverName: str = Field(..., description="Account name placed in the notification URL")
    resource: ResourceType


class PeopleSearch(BaseModel):
    query: str
    top: int = Field(default=10, ge=1, le=20)
