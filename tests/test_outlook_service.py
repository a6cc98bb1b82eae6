"""Tests for OutlookService request shapes."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from outlook_gateway.auth.microsoft import MicrosoftOAuthClient
from outlook_gateway.config import MicrosoftSettings
from outlook_gateway.models.notifications import ResourceType
from outlook_gateway.services.graph_client import GraphClient
from outlook_gateway.services.outlook_service import OutlookService
from outlook_gateway.services.token_manager import TokenManager, TokenState

from tests.conftest import GRAPH, USER_OID, WEBHOOK_SECRET, mock_http_client

USER_PATH = f"/v1.0/users/{USER_OID}"


class Recorder:
    """Records requests and answers from a queue of responses."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={})

    def path(self, index=0):
        return urlparse(str(self.requests[index].url)).path

    def query(self, index=0):
        return parse_qs(urlparse(str(self.requests[index].url)).query)

    def body(self, index=0):
        return json.loads(self.requests[index].content)


def build_service(recorder, **settings):
    settings.setdefault("webhook_url", "https://gw.example.com/")
    settings.setdefault("webhook_secret", WEBHOOK_SECRET)
    microsoft = MicrosoftSettings(client_id="cid", **settings)
    http_client = mock_http_client(recorder)
    manager = TokenManager(TokenState(access_token="tok", refresh_token="ref"), MicrosoftOAuthClient(microsoft, http_client))
    return OutlookService(GraphClient(http_client, manager, base_url=GRAPH), USER_OID, microsoft)


async def test_calendar_events_window_and_order():
    recorder = Recorder(httpx.Response(200, json={"value": [{"id": "e1"}]}))
    service = build_service(recorder)

    result = await service.get_user_calendar_events("2026-10-01T00:00:00Z", "2026-10-08T00:00:00Z", limit=5)

    assert result.data == [{"id": "e1"}]
    assert recorder.path() == f"{USER_PATH}/events"
    query = recorder.query()
    assert "start/dateTime lt '2026-10-08T00:00:00Z'" in query["$filter"][0]
    assert "end/dateTime ge '2026-10-01T00:00:00Z'" in query["$filter"][0]
    assert query["$orderby"] == ["start/dateTime desc"]


async def test_update_event_sends_only_given_fields():
    recorder = Recorder()
    service = build_service(recorder)

    await service.update_calendar_event("e1", location="Room 4", reminder_minutes_before_start=10)

    assert recorder.requests[0].method == "PATCH"
    assert recorder.body() == {
        "location": {"displayName": "Room 4"},
        "reminderMinutesBeforeStart": 10,
        "isReminderOn": True,
    }


async def test_search_emails_with_query_uses_search_and_consistency_level():
    messages = [
        {"id": "m1", "receivedDateTime": "2026-10-02T10:00:00Z", "from": {"emailAddress": {"address": "ada@example.com"}}},
        {"id": "m2", "receivedDateTime": "2026-09-01T10:00:00Z", "from": {"emailAddress": {"address": "ada@example.com"}}},
        {"id": "m3", "receivedDateTime": "2026-10-03T10:00:00Z", "from": {"emailAddress": {"address": "bob@example.com"}}},
    ]
    recorder = Recorder(httpx.Response(200, json={"value": messages}))
    service = build_service(recorder)

    result = await service.search_emails(query="invoice", start="2026-10-01T00:00:00Z", from_address="ADA@")

    assert [m["id"] for m in result.data] == ["m1"]
    assert recorder.requests[0].headers["ConsistencyLevel"] == "eventual"
    query = recorder.query()
    assert query["$search"] == ['"invoice"']
    assert "$filter" not in query
    assert "$orderby" not in query


async def test_search_emails_without_query_filters_server_side():
    recorder = Recorder(httpx.Response(200, json={"value": []}))
    service = build_service(recorder)

    await service.search_emails(folder="sentitems", start="2026-10-01T00:00:00Z", conversation_id="c1")

    assert recorder.path() == f"{USER_PATH}/mailFolders/sentitems/messages"
    query = recorder.query()
    assert query["$filter"] == ["receivedDateTime ge 2026-10-01T00:00:00Z and conversationId eq 'c1'"]
    assert query["$orderby"] == ["receivedDateTime desc"]
    assert "ConsistencyLevel" not in recorder.requests[0].headers


async def test_search_emails_rejects_unknown_folder():
    service = build_service(Recorder())
    with pytest.raises(ValueError):
        await service.search_emails(folder="junk")


async def test_draft_requires_recipient():
    service = build_service(Recorder())
    with pytest.raises(ValueError):
        await service.draft_email("Hi", "Body", to_recipients=[])


async def test_reply_draft_with_body_patches_new_draft():
    recorder = Recorder(httpx.Response(201, json={"id": "draft-1"}), httpx.Response(200, json={"id": "draft-1"}))
    service = build_service(recorder)

    result = await service.create_reply_draft("m1", reply_all=True, body="Thanks!")

    assert result.data == {"id": "draft-1"}
    assert recorder.path(0) == f"{USER_PATH}/messages/m1/createReplyAll"
    assert recorder.requests[1].method == "PATCH"
    assert recorder.path(1) == f"{USER_PATH}/messages/draft-1"
    assert recorder.body(1) == {"body": {"contentType": "text", "content": "Thanks!"}}


async def test_archive_moves_to_archive_folder():
    recorder = Recorder()
    service = build_service(recorder)
    await service.archive_email("m1")
    assert recorder.path() == f"{USER_PATH}/messages/m1/move"
    assert recorder.body() == {"destinationId": "archive"}


async def test_create_subscription_payload():
    recorder = Recorder(httpx.Response(201, json={"id": "sub-1"}))
    service = build_service(recorder)

    result = await service.create_subscription("work account", ResourceType.CALENDAR)

    assert result.data == {"id": "sub-1"}
    assert recorder.path() == "/v1.0/subscriptions"
    body = recorder.body()
    assert body["changeType"] == "created,updated,deleted"
    assert body["notificationUrl"] == "https://gw.example.com/webhooks/calendar-notify?name=work+account"
    assert body["lifecycleNotificationUrl"] == "https://gw.example.com/webhooks/calendar-lifecycle?name=work+account"
    assert body["resource"] == f"users/{USER_OID}/events"
    assert body["clientState"] == WEBHOOK_SECRET
    assert body["expirationDateTime"].endswith("Z")


async def test_create_subscription_without_webhook_url():
    service = build_service(Recorder(), webhook_url=None)
    with pytest.raises(ValueError, match="MICROSOFT_WEBHOOK_URL"):
        await service.create_subscription("work", ResourceType.EMAIL)


@pytest.mark.parametrize("top", [0, 21])
async def test_people_search_bounds(top):
    service = build_service(Recorder())
    with pytest.raises(ValueError):
        await service.search_people("ada", top=top)
