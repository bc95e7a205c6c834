"""
WhatsApp webhook payload models.

Only the parts of the Cloud API webhook the booking engine reads are
modelled; unknown fields are ignored.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.scheduling.inbound import InboundMessage

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"


class _WebhookModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TextBody(_WebhookModel):
    body: str = ""


class ButtonBody(_WebhookModel):
    text: str = ""
    payload: Optional[str] = None


class InteractiveReply(_WebhookModel):
    id: str = ""
    title: str = ""
    description: Optional[str] = None


class InteractiveBody(_WebhookModel):
    type: str = ""
    button_reply: Optional[InteractiveReply] = None
    list_reply: Optional[InteractiveReply] = None

    @property
    def title(self) -> Optional[str]:
        reply = self.button_reply or self.list_reply
        return reply.title if reply else None


class WebhookMessage(_WebhookModel):
    """One inbound message."""

    from_: str = Field(alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[TextBody] = None
    button: Optional[ButtonBody] = None
    interactive: Optional[InteractiveBody] = None

    def sent_at(self) -> Optional[datetime]:
        """Provider timestamp (epoch seconds) as local time."""
        if not self.timestamp or not self.timestamp.isdigit():
            return None
        return datetime.fromtimestamp(int(self.timestamp))


class ContactProfile(_WebhookModel):
    name: Optional[str] = None


class WebhookContact(_WebhookModel):
    wa_id: str
    profile: Optional[ContactProfile] = None


class WebhookValue(_WebhookModel):
    messaging_product: Optional[str] = None
    contacts: list[WebhookContact] = Field(default_factory=list)
    messages: list[WebhookMessage] = Field(default_factory=list)

    def contact_name(self, wa_id: str) -> Optional[str]:
        for contact in self.contacts:
            if contact.wa_id == wa_id and contact.profile:
                return contact.profile.name
        return None


class WebhookChange(_WebhookModel):
    field: str
    value: WebhookValue


class WebhookEntry(_WebhookModel):
    id: Optional[str] = None
    changes: list[WebhookChange] = Field(default_factory=list)


class WebhookPayload(_WebhookModel):
    """Top-level webhook notification."""

    object: str
    entry: list[WebhookEntry] = Field(default_factory=list)

    def inbound_messages(self) -> list[InboundMessage]:
        """Messages to process, skipping status updates and foreign objects."""
        if self.object != BUSINESS_ACCOUNT_OBJECT:
            return []

        inbound = []
        for entry in self.entry:
            for change in entry.changes:
                if change.field != MESSAGES_FIELD:
                    continue
                for message in change.value.messages:
                    inbound.append(
                        to_inbound(message, change.value.contact_name(message.from_))
                    )
        return inbound


def to_inbound(message: WebhookMessage, contact_name: Optional[str] = None) -> InboundMessage:
    """Map a webhook message to the engine's InboundMessage."""
    return InboundMessage(
        phone=message.from_,
        message_id=message.id,
        kind=message.type,
        text=message.text.body if message.text else None,
        button_text=message.button.text if message.button else None,
        interactive_title=message.interactive.title if message.interactive else None,
        contact_name=contact_name,
        timestamp=message.sent_at(),
    )


class SimulatedMessageRequest(BaseModel):
    """Simulated inbound message (development only)."""

    phone: str = Field(..., min_length=1, examples=["573001112233"])
    message: str = Field(..., min_length=1, examples=["hola"])
