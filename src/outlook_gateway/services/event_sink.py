"""Delivery of reconciled notification batches to the agent layer."""

import json
from typing import Any, Dict, List, Optional, Protocol

import httpx

from outlook_gateway.config import Settings
from outlook_gateway.models.notifications import ProcessedBatch, WebhookKind
from outlook_gateway.utils.logging import get_logger

logger = get_logger("event_sink")

PROMPT_HEADINGS: Dict[WebhookKind, str] = {
    WebhookKind.EMAIL_NOTIFY: "Outlook email received",
    WebhookKind.EMAIL_LIFECYCLE: "Outlook email lifecycle notification received",
    WebhookKind.CALENDAR_NOTIFY: "Outlook calendar event notification received",
    WebhookKind.CALENDAR_LIFECYCLE: "Outlook calendar lifecycle notification received",
}


def format_prompt(kind: WebhookKind, process_data: Any) -> str:
    """Render processed data as the agent prompt: a heading and a JSON block."""
    body = json.dumps(process_data, indent=2)
    return f"{PROMPT_HEADINGS[kind]}:\n\n```json\n{body}\n```"


class EventSink(Protocol):
    async def emit(self, batch: ProcessedBatch) -> None:
        ...

    async def close(self) -> None:
        ...


class LoggingEventSink:
    """Logs batches; used when no agent URL is configured."""

    def __init__(self) -> None:
        self.emitted: List[ProcessedBatch] = []

    async def emit(self, batch: ProcessedBatch) -> None:
        self.emitted.append(batch)
        logger.info(
            f"Reconciled {batch.kind.value} batch: {len(batch.process_data)} group(s)",
            extra={"extra_fields": {"kind": batch.kind.value, "groups": len(batch.process_data)}},
        )

    async def close(self) -> None:
        self.emitted.clear()


class HttpEventSink:
    """POSTs each batch to the agent webhook with the internal API key."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._headers: Dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self._headers["X-Internal-API-Key"] = api_key
        else:
            logger.debug("No agent API key configured; posting without X-Internal-API-Key")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def emit(self, batch: ProcessedBatch) -> None:
        for process_data in batch.process_data:
            payload = {
                "kind": batch.kind.value,
                "processData": process_data,
                "promptContent": format_prompt(batch.kind, process_data),
            }
            try:
                response = await self._client.post(self.url, json=payload, headers=self._headers)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Failed to deliver {batch.kind.value} batch to agent: {e}")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_event_sink(settings: Settings) -> EventSink:
    if settings.agent.webhook_url:
        logger.info(f"Posting reconciled events to {settings.agent.webhook_url}")
        return HttpEventSink(
            settings.agent.webhook_url,
            api_key=settings.agent.api_key,
            timeout=settings.http_timeout_seconds,
        )
    return LoggingEventSink()
