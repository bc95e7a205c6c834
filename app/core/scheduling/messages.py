"""
Message templates for the chat booking flow.

All client-facing text lives here. Templates take structured data and
return display strings in Spanish, formatted for WhatsApp (``*bold*``).
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Sequence, Union

from app.core.scheduling.availability import parse_time_of_day

WEEKDAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
MONTHS = [
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
]


# === Formatters ===


def format_date(value: Union[date, datetime]) -> str:
    """Format a date in Spanish, e.g. ``lunes 19 de octubre de 2026``."""
    return (
        f"{WEEKDAYS[value.weekday()]} {value.day} de "
        f"{MONTHS[value.month - 1]} de {value.year}"
    )


def format_time(value: Union[str, time]) -> str:
    """Format ``HH:MM`` (or a time) on a 12-hour clock, e.g. ``2:30 PM``."""
    if isinstance(value, str):
        value = parse_time_of_day(value)
    suffix = "AM" if value.hour < 12 else "PM"
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {suffix}"


def format_price(value: Union[Decimal, int, float]) -> str:
    """Format a peso amount with dot thousands separators, e.g. ``$25.000``."""
    amount = int(Decimal(value).quantize(Decimal("1")))
    return "$" + f"{amount:,}".replace(",", ".")


class MessageTemplates:
    """
    Spanish message catalog.

    Methods receive plain values (names, dates, ``HH:MM`` strings) so the
    catalog stays independent of storage records.
    """

    # === Menu ===

    def welcome(self, business_name: str) -> str:
        """Main menu shown at the start of every conversation."""
        return (
            f"¡Hola! Bienvenido a *{business_name}*.\n\n"
            "¿En qué te podemos ayudar? Responde con el número de la opción:\n\n"
            "1. Dónde estamos\n"
            "2. Lista de precios\n"
            "3. Agendar una cita\n"
            "4. Cancelar una cita"
        )

    def anything_else(self) -> str:
        return "¿Te podemos ayudar en algo más? Responde *si* o *no*."

    def location(self, address: str, phone: str) -> str:
        """Business address followed by the anything-else question.

        Args:
            address: Street address
            phone: Contact phone number

        Returns:
            Location text
        """
        return (
            f"Estamos ubicados en {address}.\n"
            f"Teléfono: {phone}\n\n"
            f"{self.anything_else()}"
        )

    def price_list(self, services: Sequence[tuple[str, Decimal, int]]) -> str:
        """Price list, cheapest first.

        Args:
            services: ``(name, price, duration_minutes)`` tuples

        Returns:
            Price list text
        """
        if not services:
            return "Por ahora no tenemos servicios publicados."

        lines = ["*Lista de precios*", ""]
        for name, price, duration in services:
            lines.append(f"- {name}: {format_price(price)} ({duration} min)")
        return "\n".join(lines)

    # === Booking ===

    def choose_employee(self, employee_names: Sequence[str]) -> str:
        """Numbered barber list with the opt-out option."""
        if not employee_names:
            return (
                "Por ahora no hay barberos disponibles para agendar.\n\n"
                "Escribe *Ninguno* para volver más tarde."
            )

        lines = ["¿Con qué barbero quieres tu cita?", ""]
        for number, name in enumerate(employee_names, 1):
            lines.append(f"{number}. {name}")
        lines.append("")
        lines.append("Si no quieres agendar, escribe *Ninguno*.")
        return "\n".join(lines)

    def ask_full_name(self) -> str:
        return "Por favor escribe tu *nombre completo* (nombre y apellido)."

    def invalid_name(self) -> str:
        return "Necesitamos tu nombre y apellido para agendar. Por favor escríbelos de nuevo."

    def ask_date(self) -> str:
        return "¿Para qué día quieres tu cita? Responde *hoy*, *mañana* o *pasado mañana*."

    def no_slots(self) -> str:
        return (
            "Lo sentimos, no hay horarios disponibles para ese día.\n\n"
            "Elige otro día: *hoy*, *mañana* o *pasado mañana*."
        )

    def available_slots(self, day: date, slots: Sequence[str]) -> str:
        """Numbered slot offers for one day.

        Args:
            day: Day the slots belong to
            slots: ``HH:MM`` offers in chronological order

        Returns:
            Offer list text
        """
        lines = [f"Estos son los horarios disponibles para el {format_date(day)}:", ""]
        for number, slot in enumerate(slots, 1):
            lines.append(f"{number}. {format_time(slot)}")
        lines.append("")
        lines.append("Responde con el número del horario o escribe *cancelar* para salir.")
        return "\n".join(lines)

    def slot_taken(self, day: date, slots: Sequence[str]) -> str:
        """The chosen slot was booked meanwhile; re-offer what is left."""
        return (
            "Ese horario acaba de ser reservado por otra persona.\n\n"
            f"{self.available_slots(day, slots)}"
        )

    def appointment_confirmed(
        self,
        code: str,
        service_name: str,
        employee_name: str,
        starts_at: datetime,
    ) -> str:
        """Booking confirmation with the cancellation code.

        Args:
            code: Cancellation code
            service_name: Booked service
            employee_name: Barber name
            starts_at: Appointment start

        Returns:
            Confirmation text
        """
        return (
            "¡Listo! Tu cita quedó confirmada.\n\n"
            f"Radicado: *{code}*\n"
            f"Servicio: {service_name}\n"
            f"Barbero: {employee_name}\n"
            f"Fecha: {format_date(starts_at)}\n"
            f"Hora: {format_time(starts_at.time())}\n\n"
            "Guarda tu radicado, lo necesitas para cancelar la cita."
        )

    # === Cancellation ===

    def ask_has_code(self) -> str:
        return (
            "Para cancelar necesitas el radicado que te enviamos al agendar.\n\n"
            "¿Tienes tu radicado? Responde *si* o *no*."
        )

    def ask_code(self) -> str:
        return "Escribe tu radicado, por ejemplo *RAD-AB12CD*."

    def no_code(self) -> str:
        return "Sin el radicado no podemos cancelar la cita por este medio. Comunícate con la barbería."

    def code_not_found(self) -> str:
        return "No encontramos una cita activa con ese radicado. Revisa el código e inténtalo de nuevo."

    def confirm_cancellation(
        self,
        code: str,
        service_name: str,
        employee_name: str,
        starts_at: datetime,
    ) -> str:
        """Appointment details plus the yes/no cancellation question."""
        return (
            "Encontramos tu cita:\n\n"
            f"Radicado: *{code}*\n"
            f"Servicio: {service_name}\n"
            f"Barbero: {employee_name}\n"
            f"Fecha: {format_date(starts_at)}\n"
            f"Hora: {format_time(starts_at.time())}\n\n"
            "¿Seguro que quieres cancelarla? Responde *si* para cancelar."
        )

    def appointment_cancelled(self) -> str:
        return "Tu cita fue cancelada. ¡Esperamos verte pronto!"

    # === General ===

    def farewell(self) -> str:
        return "¡Gracias por escribirnos! Cuando nos necesites, aquí estaremos."

    def invalid_option(self) -> str:
        return "Opción no válida, por favor intenta de nuevo."

    def server_error(self) -> str:
        return "Lo sentimos, tuvimos un problema procesando tu mensaje. Intenta de nuevo en unos minutos."
