"""
Cancellation codes ("radicados").

A code is embedded in the appointment notes when the appointment is
booked and is the only handle the client has to cancel it by chat.
"""

import re
import secrets
import string

CODE_PREFIX = "RAD-"
CODE_LENGTH = 6
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_PATTERN = re.compile(r"^RAD-[A-Z0-9]{6}$")

BOOKING_NOTES_TEMPLATE = "Radicado: {code} - Agendado por WhatsApp Bot"


def generate_booking_code() -> str:
    """Generate a random ``RAD-XXXXXX`` code."""
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f"{CODE_PREFIX}{suffix}"


def normalize_code(value: str) -> str:
    return value.strip().upper()


def is_booking_code(value: str) -> bool:
    """True when ``value`` has the generated code format."""
    return bool(CODE_PATTERN.match(normalize_code(value)))


def booking_notes(code: str) -> str:
    return BOOKING_NOTES_TEMPLATE.format(code=code)
