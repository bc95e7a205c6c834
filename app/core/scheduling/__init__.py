"""
Scheduling Module

Chat booking core: slot availability, conversation context and steps,
the step handlers and the orchestrator that runs one turn per message.

Usage:
    from app.core.scheduling import InboundMessage, process_message

    result = await process_message(
        InboundMessage(phone="573001112233", message_id="wamid.1", text="hola")
    )
    print(result.reply)  # Bot's reply
    print(result.step)   # Conversation step after the turn
"""

# Slot availability
from app.core.scheduling.availability import (
    BookedInterval,
    DayHours,
    WeeklySchedule,
    compute_available_slots,
)

# Conversation state
from app.core.scheduling.context import ConversationContext
from app.core.scheduling.state import ConversationStep

# Errors
from app.core.scheduling.errors import (
    BookingError,
    CollaboratorError,
    ContextSchemaError,
    EntityNotFoundError,
    MessagingError,
    SlotUnavailableError,
    UserInputError,
)

# Conversation Flow
from app.core.scheduling.flow import (
    BusinessConfig,
    ConversationFlow,
    FlowAction,
)

# Booking Engine (main orchestrator)
from app.core.scheduling.engine import (
    BookingEngine,
    EngineResult,
    get_booking_engine,
    process_message,
)
from app.core.scheduling.inbound import InboundMessage, MessageSender

__all__ = [
    # Slot availability
    "BookedInterval",
    "DayHours",
    "WeeklySchedule",
    "compute_available_slots",
    # Conversation state
    "ConversationContext",
    "ConversationStep",
    # Errors
    "BookingError",
    "CollaboratorError",
    "ContextSchemaError",
    "EntityNotFoundError",
    "MessagingError",
    "SlotUnavailableError",
    "UserInputError",
    # Conversation Flow
    "BusinessConfig",
    "ConversationFlow",
    "FlowAction",
    # Booking Engine
    "BookingEngine",
    "EngineResult",
    "InboundMessage",
    "MessageSender",
    "get_booking_engine",
    "process_message",
]
