"""Tests for ConversationContext."""

import json

import pytest

from app.core.scheduling.context import CONTEXT_VERSION, ConversationContext
from app.core.scheduling.errors import ContextSchemaError


class TestMerge:
    """Test shallow patch application."""

    def test_patch_overwrites_only_given_keys(self):
        context = ConversationContext(client_phone="573001112233", employee_name="Ana")

        merged = context.merge({"employee_name": "Luis", "attempts": 2})

        assert merged.employee_name == "Luis"
        assert merged.attempts == 2
        assert merged.client_phone == "573001112233"

    def test_original_is_unchanged(self):
        context = ConversationContext(employee_name="Ana")

        context.merge({"employee_name": "Luis"})

        assert context.employee_name == "Ana"

    def test_empty_patch_returns_same_context(self):
        context = ConversationContext()

        assert context.merge({}) is context
        assert context.merge(None) is context

    def test_unknown_field_rejected(self):
        with pytest.raises(ContextSchemaError):
            ConversationContext().merge({"empleadoId": "1"})


class TestSerialization:
    """Test JSON storage format."""

    def test_round_trip_keeps_offers(self):
        context = ConversationContext(
            client_phone="573001112233",
            date="2026-10-20",
            offered_slots=["09:00", "09:30"],
        )

        restored = ConversationContext.from_json(context.to_json())

        assert restored == context

    def test_to_json_keeps_accents(self):
        context = ConversationContext(client_name="José Peña")

        assert "José Peña" in context.to_json()

    def test_empty_payload_is_initial_context(self):
        assert ConversationContext.from_json(None) == ConversationContext()
        assert ConversationContext.from_json("") == ConversationContext()

    def test_version_is_stored(self):
        data = json.loads(ConversationContext().to_json())

        assert data["version"] == CONTEXT_VERSION

    def test_unknown_version_rejected(self):
        payload = json.dumps({"version": CONTEXT_VERSION + 1})

        with pytest.raises(ContextSchemaError):
            ConversationContext.from_json(payload)

    def test_missing_version_rejected(self):
        with pytest.raises(ContextSchemaError):
            ConversationContext.from_json(json.dumps({"datosTemp": {}}))

    def test_invalid_json_rejected(self):
        with pytest.raises(ContextSchemaError):
            ConversationContext.from_json("{not json")

    def test_non_object_rejected(self):
        with pytest.raises(ContextSchemaError):
            ConversationContext.from_json("[1, 2]")

    def test_unknown_keys_rejected(self):
        payload = json.dumps({"version": CONTEXT_VERSION, "legacy": True})

        with pytest.raises(ContextSchemaError):
            ConversationContext.from_json(payload)

    def test_offered_slots_must_be_list(self):
        payload = json.dumps({"version": CONTEXT_VERSION, "offered_slots": "09:00"})

        with pytest.raises(ContextSchemaError):
            ConversationContext.from_json(payload)
