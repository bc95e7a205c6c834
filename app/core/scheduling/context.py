"""
Conversation context carried between chat turns.

The context is the conversation's working memory: selections made so far
plus the slots that were offered, so that a numeric reply can be mapped
back to a concrete time. It is serialized to JSON after every turn and
stored on the Conversation row.
"""

import json
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Optional

from app.core.scheduling.errors import ContextSchemaError

CONTEXT_VERSION = 1


@dataclass(frozen=True)
class ConversationContext:
    """
    Versioned, structured conversation context.

    Updates are applied with ``merge``: keys present in the patch
    overwrite, everything else is preserved.
    """

    version: int = CONTEXT_VERSION

    # Client
    client_phone: Optional[str] = None
    client_name: Optional[str] = None

    # Booking selections
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    service_name: Optional[str] = None
    date: Optional[str] = None  # ISO calendar date
    time: Optional[str] = None  # HH:MM
    offered_slots: list[str] = field(default_factory=list)

    # Cancellation
    appointment_id: Optional[str] = None
    booking_code: Optional[str] = None

    # Consecutive invalid replies in the current step
    attempts: int = 0

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    def merge(self, patch: Optional[dict[str, Any]]) -> "ConversationContext":
        """Return a new context with ``patch`` applied (shallow).

        Raises:
            ContextSchemaError: If the patch names an unknown field
        """
        if not patch:
            return self

        unknown = set(patch) - self.field_names()
        if unknown:
            raise ContextSchemaError(f"Unknown context fields: {sorted(unknown)}")

        return replace(self, **patch)

    def to_json(self) -> str:
        """Convert to JSON string for storage."""
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: Optional[str]) -> "ConversationContext":
        """Create from stored JSON. Empty input yields an initial context.

        Raises:
            ContextSchemaError: If the payload is not a context of the
                current version
        """
        if not json_str:
            return cls()

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ContextSchemaError(f"Context is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ContextSchemaError("Context must be a JSON object")

        version = data.get("version")
        if version != CONTEXT_VERSION:
            raise ContextSchemaError(
                f"Unsupported context version {version!r}, expected {CONTEXT_VERSION}"
            )

        unknown = set(data) - cls.field_names()
        if unknown:
            raise ContextSchemaError(f"Unknown context fields: {sorted(unknown)}")

        offered = data.get("offered_slots") or []
        if not isinstance(offered, list):
            raise ContextSchemaError("offered_slots must be a list")

        return cls(**{**data, "offered_slots": [str(slot) for slot in offered]})
