"""Microsoft Graph notification endpoints.

Graph webhook flow:

1. **Validation handshake** (on subscription creation): Graph calls the
   endpoint with a ``validationToken`` query parameter and expects it back
   verbatim as ``text/plain`` within a few seconds.
2. **Notifications**: Graph POSTs ``{"value": [...]}``. Items are
   authenticated by clientState, reconciled, and handed to the event sink.
   The response is always ``202 {"ok": true}`` unless the batch is rejected.

Each endpoint also has a bearer-protected ``/process`` route that turns
process data into agent prompt content.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from outlook_gateway.auth.bearer import BearerCredentials, require_bearer_token
from outlook_gateway.dependencies import (
    get_account_name,
    get_event_sink,
    get_notification_processor,
    get_webhook_validator,
)
from outlook_gateway.models.notifications import NotificationBatch, WebhookKind
from outlook_gateway.services.event_sink import EventSink, format_prompt
from outlook_gateway.services.webhook_processing import NotificationProcessor
from outlook_gateway.services.webhook_validator import WebhookValidator
from outlook_gateway.utils.logging import get_logger

logger = get_logger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _accepted() -> JSONResponse:
    return JSONResponse({"ok": True}, status_code=status.HTTP_202_ACCEPTED)


@router.api_route("/{kind}", methods=["GET", "POST"], status_code=status.HTTP_202_ACCEPTED)
async def receive_notifications(
    kind: WebhookKind,
    request: Request,
    validation_token: Optional[str] = Query(None, alias="validationToken"),
    validator: WebhookValidator = Depends(get_webhook_validator),
    processor: NotificationProcessor = Depends(get_notification_processor),
    sink: EventSink = Depends(get_event_sink),
) -> Response:
    """Receive change or lifecycle notifications for ``kind``."""
    if validation_token:
        logger.info(
            f"Graph validation request on {kind.value}, echoing token (length: {len(validation_token)})"
        )
        return PlainTextResponse(validation_token, status_code=status.HTTP_200_OK)

    if request.method == "GET":
        return _accepted()

    try:
        body = await request.json()
        batch = NotificationBatch.model_validate(body)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Invalid notification payload on {kind.value}: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid notification format",
        )

    items = validator.authenticate(batch.value)
    account_name = get_account_name(request)
    processed = await processor.process(kind, account_name, items)

    if not processed.is_empty:
        try:
            await sink.emit(processed)
        except Exception as e:
            # The acknowledgement to Graph does not depend on downstream delivery
            logger.error(f"Event sink failed for {kind.value}: {e}", exc_info=True)

    return _accepted()


@router.post("/{kind}/process")
async def process_notification(
    kind: WebhookKind,
    request: Request,
    credentials: BearerCredentials = Depends(require_bearer_token),
) -> Any:
    """Render processed data as agent prompt content."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    logger.info(f"{kind.value}/process: received for {get_account_name(request)}")
    return {"promptContent": format_prompt(kind, body)}
