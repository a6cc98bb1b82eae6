"""Tests for the Graph notification endpoints."""

import pytest

from outlook_gateway.config import MicrosoftSettings

from tests.conftest import WEBHOOK_SECRET, lifecycle, make_jwt, notification

KINDS = ["email-notify", "email-lifecycle", "calendar-notify", "calendar-lifecycle"]


class TestValidationHandshake:
    @pytest.mark.parametrize("kind", KINDS)
    @pytest.mark.parametrize("method", ["GET", "POST"])
    def test_echoes_validation_token(self, make_client, kind, method):
        client = make_client()
        response = client.request(method, f"/webhooks/{kind}", params={"validationToken": "abc123"})

        assert response.status_code == 200
        assert response.text == "abc123"
        assert response.headers["content-type"].startswith("text/plain")

    def test_handshake_ignores_body_and_secret(self, make_client, settings):
        unconfigured = settings.model_copy(update={"microsoft": MicrosoftSettings()})
        client = make_client(app_settings=unconfigured)
        response = client.post(
            "/webhooks/calendar-notify",
            params={"validationToken": "abc123"},
            content=b"not json",
        )
        assert response.status_code == 200
        assert response.text == "abc123"


class TestCalendarNotify:
    def test_accepted_event_is_emitted(self, make_client, event_sink):
        client = make_client()
        response = client.post(
            "/webhooks/calendar-notify",
            json={"value": [notification("evt-1", "created")]},
            headers={"x-mcp-name": "work"},
        )

        assert response.status_code == 202
        assert response.json() == {"ok": True}
        assert len(event_sink.emitted) == 1
        assert event_sink.emitted[0].process_data == [
            {
                "name": "work",
                "subscriptionId": "sub-1",
                "events": [{"eventId": "evt-1", "eventType": "created"}],
            }
        ]

    def test_redelivery_is_suppressed(self, make_client, event_sink):
        client = make_client()
        body = {"value": [notification("evt-1", "created")]}
        client.post("/webhooks/calendar-notify", json=body, headers={"x-mcp-name": "work"})
        response = client.post("/webhooks/calendar-notify", json=body, headers={"x-mcp-name": "work"})

        assert response.status_code == 202
        assert response.json() == {"ok": True}
        assert len(event_sink.emitted) == 1

    def test_update_after_create_in_same_batch(self, make_client, event_sink):
        client = make_client()
        client.post(
            "/webhooks/calendar-notify",
            json={"value": [notification("E2", "created"), notification("E2", "updated")]},
            headers={"x-mcp-name": "work"},
        )
        events = event_sink.emitted[0].process_data[0]["events"]
        assert events == [{"eventId": "E2", "eventType": "created"}]

    def test_account_from_query_parameter(self, make_client, event_sink):
        client = make_client()
        client.post(
            "/webhooks/calendar-notify",
            params={"name": "home"},
            json={"value": [notification("evt-9", "deleted")]},
        )
        assert event_sink.emitted[0].process_data[0]["name"] == "home"

    def test_missing_account_acknowledges_without_processing(self, make_client, event_sink):
        client = make_client()
        response = client.post("/webhooks/calendar-notify", json={"value": [notification()]})

        assert response.status_code == 202
        assert response.json() == {"ok": True}
        assert event_sink.emitted == []

    def test_items_without_resource_id_or_known_change_type_are_dropped(self, make_client, event_sink):
        client = make_client()
        response = client.post(
            "/webhooks/calendar-notify",
            json={"value": [notification(resource_id=None), notification("evt-2", "moved")]},
            headers={"x-mcp-name": "work"},
        )
        assert response.status_code == 202
        assert event_sink.emitted == []

    def test_invalid_body_is_400(self, make_client):
        client = make_client()
        response = client.post(
            "/webhooks/calendar-notify",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400


class TestEmailNotify:
    def test_groups_email_ids_by_subscription(self, make_client, event_sink):
        client = make_client()
        client.post(
            "/webhooks/email-notify",
            json={
                "value": [
                    notification("m1", "created", subscription_id="s1"),
                    notification("m2", "created", subscription_id="s2"),
                    notification("m3", "created", subscription_id="s1"),
                ]
            },
            headers={"x-mcp-name": "work"},
        )
        assert event_sink.emitted[0].process_data == [
            {"name": "work", "subscriptionId": "s1", "emailIds": ["m1", "m3"]},
            {"name": "work", "subscriptionId": "s2", "emailIds": ["m2"]},
        ]


class TestClientStateMismatch:
    def test_drop_policy_discards_only_bad_items(self, make_client, event_sink):
        client = make_client()
        response = client.post(
            "/webhooks/calendar-notify",
            json={
                "value": [
                    notification("bad", "created", client_state="wrong"),
                    notification("good", "created", client_state=WEBHOOK_SECRET),
                ]
            },
            headers={"x-mcp-name": "work"},
        )

        assert response.status_code == 202
        assert response.json() == {"ok": True}
        emitted_ids = [e["eventId"] for e in event_sink.emitted[0].process_data[0]["events"]]
        assert emitted_ids == ["good"]

    def test_drop_policy_all_bad_emits_nothing(self, make_client, event_sink):
        client = make_client()
        response = client.post(
            "/webhooks/email-notify",
            json={"value": [notification("bad", client_state="wrong")]},
            headers={"x-mcp-name": "work"},
        )
        assert response.status_code == 202
        assert event_sink.emitted == []

    def test_reject_policy_fails_whole_batch(self, make_client, settings, event_sink):
        rejecting = settings.model_copy(update={"webhook_mismatch_policy": "reject"})
        client = make_client(app_settings=rejecting)
        response = client.post(
            "/webhooks/calendar-notify",
            json={
                "value": [
                    notification("bad", "created", client_state="wrong"),
                    notification("good", "created", client_state=WEBHOOK_SECRET),
                ]
            },
            headers={"x-mcp-name": "work"},
        )

        assert response.status_code == 401
        assert event_sink.emitted == []


class TestLifecycle:
    def test_only_missed_events_yield_nothing(self, make_client, event_sink):
        client = make_client()
        response = client.post(
            "/webhooks/email-lifecycle",
            json={"value": [lifecycle("missed"), lifecycle("missed")]},
            headers={"x-mcp-name": "work"},
        )
        assert response.status_code == 202
        assert response.json() == {"ok": True}
        assert event_sink.emitted == []

    def test_lifecycle_events_bypass_dedup(self, make_client, event_sink):
        client = make_client()
        body = {"value": [lifecycle("subscriptionRemoved"), lifecycle("missed"), lifecycle(None)]}
        client.post("/webhooks/calendar-lifecycle", json=body, headers={"x-mcp-name": "work"})
        client.post("/webhooks/calendar-lifecycle", json=body, headers={"x-mcp-name": "work"})

        assert len(event_sink.emitted) == 2
        assert event_sink.emitted[0].process_data == [
            {"name": "work", "subscriptionId": "sub-1", "events": ["subscriptionRemoved"]}
        ]


class TestProcessRoutes:
    def test_requires_bearer_token(self, make_client):
        client = make_client()
        response = client.post("/webhooks/email-notify/process", json={})
        assert response.status_code == 401

    def test_builds_prompt_content(self, make_client):
        client = make_client()
        data = {"name": "work", "subscriptionId": "s1", "emailIds": ["m1"]}
        response = client.post(
            "/webhooks/email-notify/process",
            json=data,
            headers={"Authorization": f"Bearer {make_jwt()}"},
        )

        assert response.status_code == 200
        prompt = response.json()["promptContent"]
        assert prompt.startswith("Outlook email received:\n\n```json\n")
        assert '"emailIds": [\n    "m1"\n  ]' in prompt
