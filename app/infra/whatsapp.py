"""
HTTP client for the WhatsApp Cloud API.

Sends outbound messages for the configured business phone number:
- Plain text
- Reply buttons (max 3)
- List messages
- Read receipts

The booking flow replies with text only. The button and list senders
mirror the interactive replies the webhook already parses (``button``
and ``interactive`` messages) and complete the outbound half of those
message types; the flow does not call them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import get_settings
from app.core.scheduling.errors import MessagingError

logger = logging.getLogger(__name__)

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72


@dataclass
class ReplyButton:
    """Quick-reply button."""

    id: str
    title: str


@dataclass
class ListRow:
    """Row of a list message."""

    id: str
    title: str
    description: Optional[str] = None


class WhatsAppClient:
    """
    Async client for the Cloud API ``/messages`` endpoint.

    Every send raises MessagingError on transport or HTTP failure so the
    caller decides how to degrade.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: API base URL including version and phone number id
                (defaults to settings)
            access_token: Bearer token (defaults to settings)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        settings = get_settings()
        self.base_url = base_url or settings.whatsapp_base_url
        self.access_token = access_token if access_token is not None else settings.whatsapp_access_token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.access_token:
            logger.warning("WhatsApp access token not configured")

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_message(self, payload: dict) -> dict:
        client = await self._get_client()

        try:
            response = await client.post("/messages", json=payload)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                f"WhatsApp API rejected message: {e.response.status_code} {e.response.text}"
            )
            raise MessagingError(f"WhatsApp API returned {e.response.status_code}") from e

        except httpx.HTTPError as e:
            logger.error(f"WhatsApp API request failed: {e}")
            raise MessagingError(f"WhatsApp API request failed: {e}") from e

    # === Messages ===

    async def send_text(self, to: str, body: str) -> dict:
        """Send a plain text message.

        Args:
            to: Recipient phone number
            body: Message text

        Returns:
            API response body

        Raises:
            MessagingError: If the request fails
        """
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        data = await self._post_message(payload)
        logger.info(f"Text message sent to {to}")
        return data

    async def send_buttons(self, to: str, body: str, buttons: list[ReplyButton]) -> dict:
        """Send a message with reply buttons.

        Only the first three buttons are sent and titles are cut to 20
        characters.

        Not called by the booking flow; see the module docstring.
        """
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": body},
                "action": {
                    "buttons": [
                        {
                            "type": "reply",
                            "reply": {"id": b.id, "title": b.title[:MAX_BUTTON_TITLE]},
                        }
                        for b in buttons[:MAX_BUTTONS]
                    ]
                },
            },
        }
        data = await self._post_message(payload)
        logger.info(f"Button message sent to {to}")
        return data

    async def send_list(
        self,
        to: str,
        body: str,
        button_title: str,
        rows: list[ListRow],
        section_title: str = "Opciones",
    ) -> dict:
        """Send a list message with a single section.

        Row titles are cut to 24 characters and descriptions to 72.

        Not called by the booking flow; see the module docstring.
        """
        section_rows = []
        for row in rows:
            item = {"id": row.id, "title": row.title[:MAX_ROW_TITLE]}
            if row.description:
                item["description"] = row.description[:MAX_ROW_DESCRIPTION]
            section_rows.append(item)

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "list",
                "body": {"text": body},
                "action": {
                    "button": button_title,
                    "sections": [{"title": section_title, "rows": section_rows}],
                },
            },
        }
        data = await self._post_message(payload)
        logger.info(f"List message sent to {to}")
        return data

    async def mark_as_read(self, message_id: str) -> bool:
        """Mark an inbound message as read.

        Failures are logged only.

        Returns:
            True if the receipt was accepted
        """
        try:
            await self._post_message(
                {
                    "messaging_product": "whatsapp",
                    "status": "read",
                    "message_id": message_id,
                }
            )
            return True
        except MessagingError as e:
            logger.warning(f"Could not mark message {message_id} as read: {e}")
            return False


# Singleton
_client: Optional[WhatsAppClient] = None


def get_whatsapp_client() -> WhatsAppClient:
    """Get singleton WhatsAppClient."""
    global _client
    if _client is None:
        _client = WhatsAppClient()
    return _client


async def close_whatsapp_client() -> None:
    """Close the singleton client (application shutdown)."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
