"""Conversation steps of the chat booking flow."""

from enum import Enum
from typing import Optional


class ConversationStep(str, Enum):
    """States of the per-phone booking conversation."""

    INITIAL = "INICIAL"
    MAIN_MENU = "MENU_PRINCIPAL"
    ANYTHING_ELSE = "PUEDE_SERVIR_MAS"
    CHOOSING_EMPLOYEE = "ELIGIENDO_EMPLEADO"
    ASKING_NAME = "SOLICITANDO_NOMBRE"
    CHOOSING_DATE = "ELIGIENDO_FECHA"
    CHOOSING_TIME = "ELIGIENDO_HORA"
    CANCELLING = "CANCELANDO_CITA"
    ASKING_CANCEL_CODE = "SOLICITAR_RADICADO_CANCELAR"
    CONFIRMING_CANCELLATION = "CONFIRMAR_CANCELACION"

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["ConversationStep"]:
        """Look up a stored step value, None when it is not a known step."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None
