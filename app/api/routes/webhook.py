"""
WhatsApp Webhook Endpoints.

- GET /webhook: verification handshake
- POST /webhook: inbound notifications, acknowledged immediately and
  processed in the background
- POST /webhook/test: simulate an inbound message (development only)
"""

import hashlib
import hmac
import logging
import uuid
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    status,
)
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.core.scheduling.engine import BookingEngine, get_booking_engine
from app.core.scheduling.inbound import InboundMessage
from app.infra.whatsapp import WhatsAppClient, get_whatsapp_client
from app.models.whatsapp import SimulatedMessageRequest, WebhookPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["WhatsApp"])


def verify_signature(body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw body.

    Args:
        body: Raw request body
        signature: Header value (``sha256=<hex>``)
        app_secret: Meta app secret

    Returns:
        True if the signature matches
    """
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.removeprefix("sha256="), expected)


async def process_inbound_messages(
    engine: BookingEngine,
    client: WhatsAppClient,
    messages: list[InboundMessage],
) -> None:
    """Run every inbound message through the engine.

    Messages are processed one after another; the engine serializes per
    sender anyway and never raises.
    """
    for message in messages:
        if message.message_id and client.is_configured:
            await client.mark_as_read(message.message_id)
        result = await engine.process(message)
        logger.debug(f"Webhook message {message.message_id} result: {result.to_dict()}")


@router.get(
    "",
    response_class=PlainTextResponse,
    summary="Webhook verification",
)
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
) -> PlainTextResponse:
    """Echo the challenge when the verify token matches."""
    if mode == "subscribe" and token == settings.whatsapp_verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")

    logger.warning(f"Webhook verification rejected (mode={mode})")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post(
    "",
    summary="Receive WhatsApp notifications",
)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    engine: BookingEngine = Depends(get_booking_engine),
    client: WhatsAppClient = Depends(get_whatsapp_client),
) -> dict:
    """
    Acknowledge a webhook notification.

    The provider requires a fast 200, so messages are handed to a
    background task. Malformed payloads are acknowledged and ignored.
    """
    body = await request.body()

    if settings.whatsapp_app_secret and not verify_signature(
        body, x_hub_signature_256, settings.whatsapp_app_secret
    ):
        logger.warning("Webhook signature mismatch")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    try:
        payload = WebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed webhook payload: {e.error_count()} errors")
        return {"status": "ignored"}

    messages = payload.inbound_messages()
    if not messages:
        return {"status": "ignored"}

    logger.info(f"Webhook received {len(messages)} message(s)")
    background_tasks.add_task(process_inbound_messages, engine, client, messages)
    return {"status": "received", "messages": len(messages)}


@router.post(
    "/test",
    summary="Simulate an inbound message",
    include_in_schema=False,
)
async def test_webhook(
    request: SimulatedMessageRequest,
    settings: Settings = Depends(get_settings),
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    """Process a simulated text message synchronously (development only)."""
    if not settings.is_development:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not available")

    message = InboundMessage(
        phone=request.phone,
        message_id=f"test_{uuid.uuid4().hex}",
        kind="text",
        text=request.message,
    )
    result = await engine.process(message)
    return result.to_dict()
