"""
Booking Engine - Main Orchestrator.

Runs one chat turn per inbound message: serializes turns per sender,
records the message, asks the conversation flow for a reply, delivers it
and persists the new step and context.
"""

import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from app.core.scheduling.context import ConversationContext
from app.core.scheduling.errors import ContextSchemaError
from app.core.scheduling.flow import BusinessConfig, ConversationFlow
from app.core.scheduling.inbound import InboundMessage, MessageSender
from app.core.scheduling.messages import MessageTemplates
from app.core.scheduling.repository import BookingRepository, ConversationRecord
from app.core.scheduling.state import ConversationStep
from app.infra.redis import SenderLockTimeout, sender_lock
from app.models.database import SenderType

logger = logging.getLogger(__name__)

LockFactory = Callable[[str], AbstractAsyncContextManager]


@dataclass
class EngineResult:
    """Outcome of one processed message."""

    phone: str
    processed: bool
    step: Optional[ConversationStep] = None
    reply: Optional[str] = None
    conversation_id: Optional[str] = None
    duplicate: bool = False
    error: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "phone": self.phone,
            "processed": self.processed,
            "duplicate": self.duplicate,
            "error": self.error,
        }

        if self.step:
            result["step"] = self.step.value
        if self.reply is not None:
            result["reply"] = self.reply
        if self.conversation_id:
            result["conversation_id"] = self.conversation_id

        return result


class BookingEngine:
    """
    Orchestrator for the chat booking channel.

    Per message, under the sender's lock:
    - Drop redelivered messages
    - Find or open the conversation
    - Log the inbound message
    - Run the step handler
    - Send the reply and log it
    - Persist step, context and last activity

    Any failure sends the generic error message and leaves the stored step
    untouched.
    """

    def __init__(
        self,
        repository: BookingRepository,
        sender: MessageSender,
        business: BusinessConfig,
        templates: Optional[MessageTemplates] = None,
        flow: Optional[ConversationFlow] = None,
        lock_factory: Optional[LockFactory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize engine.

        Args:
            repository: Storage collaborator
            sender: Outbound message delivery
            business: Business facts and booking defaults
            templates: Message catalog
            flow: Conversation flow (built from the other arguments if not provided)
            lock_factory: Returns a per-phone async context manager
                (Redis-backed sender lock if not provided)
            clock: Returns the current local time
        """
        self.repository = repository
        self.sender = sender
        self.templates = templates or MessageTemplates()
        self._clock = clock or datetime.now
        self.flow = flow or ConversationFlow(
            repository=repository,
            business=business,
            templates=self.templates,
            clock=self._clock,
        )
        self._lock_factory = lock_factory or sender_lock

    async def process(self, message: InboundMessage) -> EngineResult:
        """Process one inbound message.

        Args:
            message: Channel-neutral inbound message

        Returns:
            EngineResult describing what happened
        """
        try:
            async with self._lock_factory(message.phone):
                return await self._process_locked(message)
        except SenderLockTimeout as e:
            logger.error(f"Could not process message {message.message_id}: {e}")
            await self._send_server_error(message.phone)
            return EngineResult(phone=message.phone, processed=False, error=True)
        except Exception as e:
            # _process_locked handles its own failures; this is the lock layer
            logger.error(
                f"Sender lock failed for message {message.message_id}: {e}", exc_info=True
            )
            await self._send_server_error(message.phone)
            return EngineResult(phone=message.phone, processed=False, error=True)

    async def _process_locked(self, message: InboundMessage) -> EngineResult:
        phone = message.phone
        conversation: Optional[ConversationRecord] = None

        try:
            if message.message_id and await self.repository.message_already_processed(
                message.message_id
            ):
                logger.info(f"Skipping redelivered message {message.message_id} from {phone}")
                return EngineResult(phone=phone, processed=False, duplicate=True)

            now = self._clock()
            conversation = await self._get_or_open_conversation(phone, now)

            text = message.extract_text()
            logger.info(f"Processing message from {phone}: {text or message.kind}")

            await self.repository.append_message(
                conversation.id,
                message.message_id,
                SenderType.CLIENT,
                text,
                message.timestamp or now,
            )

            context = self._decode_context(conversation)
            if context.client_phone != phone:
                context = context.merge({"client_phone": phone})

            step = ConversationStep.from_value(conversation.step)
            action = await self.flow.process(step, text, context)

            await self.sender.send_text(phone, action.message)
            await self.repository.append_message(
                conversation.id, None, SenderType.BOT, action.message, self._clock()
            )

            new_context = context.merge(action.context_patch)
            await self.repository.update_conversation(
                conversation.id,
                action.next_step.value,
                new_context.to_json(),
                self._clock(),
            )

            return EngineResult(
                phone=phone,
                processed=True,
                step=action.next_step,
                reply=action.message,
                conversation_id=conversation.id,
            )

        except Exception as e:
            logger.error(f"Error processing message from {phone}: {e}", exc_info=True)
            await self._send_server_error(phone)

            return EngineResult(
                phone=phone,
                processed=False,
                step=ConversationStep.from_value(conversation.step) if conversation else None,
                reply=self.templates.server_error(),
                conversation_id=conversation.id if conversation else None,
                error=True,
            )

    async def _get_or_open_conversation(self, phone: str, now: datetime) -> ConversationRecord:
        conversation = await self.repository.find_active_conversation(phone)
        if conversation is not None:
            return conversation

        initial = ConversationContext(client_phone=phone)
        return await self.repository.create_conversation(
            phone, ConversationStep.INITIAL.value, initial.to_json(), now
        )

    def _decode_context(self, conversation: ConversationRecord) -> ConversationContext:
        try:
            return ConversationContext.from_json(conversation.context)
        except ContextSchemaError as e:
            logger.warning(f"Discarding stored context of conversation {conversation.id}: {e}")
            return ConversationContext()

    async def _send_server_error(self, phone: str) -> None:
        try:
            await self.sender.send_text(phone, self.templates.server_error())
        except Exception as e:
            logger.error(f"Failed to send error message to {phone}: {e}")


# Singleton
_engine: Optional[BookingEngine] = None


def get_booking_engine() -> BookingEngine:
    """Get singleton BookingEngine wired to the database and WhatsApp."""
    global _engine
    if _engine is None:
        from app.config import get_settings
        from app.core.scheduling.repository import SqlAlchemyBookingRepository
        from app.infra.whatsapp import get_whatsapp_client

        _engine = BookingEngine(
            repository=SqlAlchemyBookingRepository(),
            sender=get_whatsapp_client(),
            business=BusinessConfig.from_settings(get_settings()),
        )
    return _engine


async def process_message(message: InboundMessage) -> EngineResult:
    """Convenience function to process a message with the singleton engine."""
    engine = get_booking_engine()
    return await engine.process(message)
