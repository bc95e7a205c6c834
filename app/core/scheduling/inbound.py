"""
Channel-neutral message types exchanged with the booking engine.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass
class InboundMessage:
    """A single message received from a client."""

    phone: str
    message_id: Optional[str] = None
    kind: str = "text"  # text, button, interactive, or anything the provider sends
    text: Optional[str] = None
    button_text: Optional[str] = None
    interactive_title: Optional[str] = None
    contact_name: Optional[str] = None
    timestamp: Optional[datetime] = None

    def extract_text(self) -> str:
        """Text the flow should react to ("" for unsupported kinds)."""
        if self.kind == "text":
            return self.text or ""
        if self.kind == "button":
            return self.button_text or ""
        if self.kind == "interactive":
            return self.interactive_title or ""
        return ""


class MessageSender(Protocol):
    """Outbound delivery used by the engine."""

    async def send_text(self, to: str, body: str) -> None:
        """Send a plain text message.

        Raises:
            MessagingError: If delivery fails
        """
        ...
