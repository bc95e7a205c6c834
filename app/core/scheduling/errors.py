"""Exceptions raised by the chat booking core."""


class BookingError(Exception):
    """Base class for booking engine errors."""


class UserInputError(BookingError):
    """Input that does not match what the current step expects."""


class EntityNotFoundError(BookingError):
    """A referenced client, employee or appointment does not exist."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class CollaboratorError(BookingError):
    """A storage or messaging collaborator failed."""


class MessagingError(CollaboratorError):
    """Outbound message delivery failed."""


class SlotUnavailableError(BookingError):
    """The chosen slot was taken between offer and confirmation."""

    def __init__(self, employee_id: str, start: object):
        self.employee_id = employee_id
        self.start = start
        super().__init__(f"Slot {start} no longer free for employee {employee_id}")


class ContextSchemaError(BookingError):
    """Stored conversation context has an unexpected shape or version."""
