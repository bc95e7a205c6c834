"""
Conversation Flow Manager.

State machine for the chat booking conversation. Each step has exactly one
handler; a handler receives the client's text and the current context and
returns a FlowAction (reply, next step, context patch). Handlers never
persist conversation state themselves, that is the engine's job.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional

from app.core.scheduling.availability import (
    DEFAULT_APPOINTMENT_MINUTES,
    DEFAULT_SLOT_MINUTES,
    compute_available_slots,
    parse_time_of_day,
)
from app.core.scheduling.codes import (
    booking_notes,
    generate_booking_code,
    is_booking_code,
    normalize_code,
)
from app.core.scheduling.context import ConversationContext
from app.core.scheduling.errors import (
    BookingError,
    EntityNotFoundError,
    SlotUnavailableError,
    UserInputError,
)
from app.core.scheduling.keywords import (
    contains_any,
    is_full_name,
    is_no,
    is_yes,
    normalize,
    parse_option,
    resolve_relative_date,
)
from app.core.scheduling.messages import MessageTemplates
from app.core.scheduling.repository import BookingRepository, NewAppointment
from app.core.scheduling.state import ConversationStep
from app.models.database import AppointmentStatus

logger = logging.getLogger(__name__)

ORIGIN = "WHATSAPP"
CANCELLATION_REASON = "Cancelada por el cliente vía WhatsApp"
MAX_CODE_ATTEMPTS = 5

MENU_OPTIONS = 4
OPT_OUT_WORDS = ("ninguno",)
ABORT_WORD = "cancelar"
CONFIRM_CANCEL_WORDS = ("si", "cancelar")


@dataclass(frozen=True)
class BusinessConfig:
    """Business facts and booking defaults used by the flow."""

    name: str
    address: str
    phone: str
    default_service_name: str = "Corte básico"
    default_service_duration_minutes: int = DEFAULT_APPOINTMENT_MINUTES
    slot_minutes: int = DEFAULT_SLOT_MINUTES

    @classmethod
    def from_settings(cls, settings) -> "BusinessConfig":
        """Build from application settings."""
        return cls(
            name=settings.business_name,
            address=settings.business_address,
            phone=settings.business_phone,
            default_service_name=settings.default_service_name,
            default_service_duration_minutes=settings.default_service_duration_minutes,
            slot_minutes=settings.slot_interval_minutes,
        )


@dataclass
class FlowAction:
    """Outcome of handling one message."""

    message: str
    next_step: ConversationStep
    context_patch: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[str, ConversationContext], Awaitable[FlowAction]]


class ConversationFlow:
    """
    Step handlers for the booking conversation.

    Steps:
        INITIAL -> MAIN_MENU -> (location | prices) -> ANYTHING_ELSE
        MAIN_MENU -> CHOOSING_EMPLOYEE -> ASKING_NAME -> CHOOSING_DATE
            -> CHOOSING_TIME -> INITIAL (booked)
        MAIN_MENU -> CANCELLING -> ASKING_CANCEL_CODE
            -> CONFIRMING_CANCELLATION -> INITIAL
    """

    def __init__(
        self,
        repository: BookingRepository,
        business: BusinessConfig,
        templates: Optional[MessageTemplates] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize flow.

        Args:
            repository: Storage collaborator
            business: Business facts and booking defaults
            templates: Message catalog (default Spanish catalog if not provided)
            clock: Returns the current local time (``datetime.now`` if not provided)

        Raises:
            ValueError: If a step has no handler
        """
        self.repository = repository
        self.business = business
        self.templates = templates or MessageTemplates()
        self._clock = clock or datetime.now

        self._handlers: dict[ConversationStep, Handler] = {
            ConversationStep.INITIAL: self._handle_initial,
            ConversationStep.MAIN_MENU: self._handle_main_menu,
            ConversationStep.ANYTHING_ELSE: self._handle_anything_else,
            ConversationStep.CHOOSING_EMPLOYEE: self._handle_choosing_employee,
            ConversationStep.ASKING_NAME: self._handle_asking_name,
            ConversationStep.CHOOSING_DATE: self._handle_choosing_date,
            ConversationStep.CHOOSING_TIME: self._handle_choosing_time,
            ConversationStep.CANCELLING: self._handle_cancelling,
            ConversationStep.ASKING_CANCEL_CODE: self._handle_asking_cancel_code,
            ConversationStep.CONFIRMING_CANCELLATION: self._handle_confirming_cancellation,
        }

        missing = [step.value for step in ConversationStep if step not in self._handlers]
        if missing:
            raise ValueError(f"No handler for steps: {missing}")

    async def process(
        self,
        step: Optional[ConversationStep],
        text: str,
        context: ConversationContext,
    ) -> FlowAction:
        """Handle one client message.

        Args:
            step: Current step (None when the stored step is unknown)
            text: Client text
            context: Current conversation context

        Returns:
            FlowAction with reply, next step and context patch
        """
        if step is None:
            logger.warning(f"Unknown step for {context.client_phone}, resetting conversation")
            return FlowAction(
                message=self.templates.invalid_option(),
                next_step=ConversationStep.INITIAL,
                context_patch={"attempts": 0},
            )

        try:
            action = await self._handlers[step](text, context)
        except UserInputError as e:
            logger.info(f"Rejected input at {step.value} for {context.client_phone}: {e}")
            action = FlowAction(message=self.templates.invalid_option(), next_step=step)

        # Attempts count consecutive replies that kept the conversation in place
        if action.next_step == step:
            action.context_patch["attempts"] = context.attempts + 1
        else:
            action.context_patch["attempts"] = 0

        logger.debug(
            f"Step {step.value} -> {action.next_step.value} for {context.client_phone}"
        )
        return action

    def _now(self) -> datetime:
        return self._clock()

    def _selected_day(self, context: ConversationContext) -> date:
        """Day chosen earlier in the conversation.

        Raises:
            UserInputError: If no valid day is stored in the context
        """
        try:
            return date.fromisoformat(context.date or "")
        except ValueError as e:
            raise UserInputError("No day selected") from e

    def _reprompt(self, step: ConversationStep, prompt: str) -> FlowAction:
        return FlowAction(
            message=f"{self.templates.invalid_option()}\n\n{prompt}",
            next_step=step,
        )

    # === Menu ===

    async def _handle_initial(self, text: str, context: ConversationContext) -> FlowAction:
        return FlowAction(
            message=self.templates.welcome(self.business.name),
            next_step=ConversationStep.MAIN_MENU,
        )

    async def _handle_main_menu(self, text: str, context: ConversationContext) -> FlowAction:
        option = parse_option(text, MENU_OPTIONS)

        if option == 1:
            return FlowAction(
                message=self.templates.location(self.business.address, self.business.phone),
                next_step=ConversationStep.ANYTHING_ELSE,
            )

        if option == 2:
            services = await self.repository.list_active_services()
            price_list = self.templates.price_list(
                [(s.name, s.price, s.duration_minutes) for s in services]
            )
            return FlowAction(
                message=f"{price_list}\n\n{self.templates.anything_else()}",
                next_step=ConversationStep.ANYTHING_ELSE,
            )

        if option == 3:
            employees = await self.repository.list_active_employees()
            return FlowAction(
                message=self.templates.choose_employee([e.name for e in employees]),
                next_step=ConversationStep.CHOOSING_EMPLOYEE,
            )

        if option == 4:
            return FlowAction(
                message=self.templates.ask_has_code(),
                next_step=ConversationStep.CANCELLING,
            )

        return self._reprompt(
            ConversationStep.MAIN_MENU, self.templates.welcome(self.business.name)
        )

    async def _handle_anything_else(self, text: str, context: ConversationContext) -> FlowAction:
        if is_yes(text):
            return FlowAction(
                message=self.templates.welcome(self.business.name),
                next_step=ConversationStep.MAIN_MENU,
            )

        if is_no(text):
            return FlowAction(
                message=self.templates.farewell(),
                next_step=ConversationStep.INITIAL,
            )

        return self._reprompt(ConversationStep.ANYTHING_ELSE, self.templates.anything_else())

    # === Booking ===

    async def _handle_choosing_employee(
        self, text: str, context: ConversationContext
    ) -> FlowAction:
        if contains_any(text, OPT_OUT_WORDS):
            return FlowAction(
                message=self.templates.farewell(),
                next_step=ConversationStep.INITIAL,
            )

        employees = await self.repository.list_active_employees()
        option = parse_option(text, len(employees))

        if option is None:
            return self._reprompt(
                ConversationStep.CHOOSING_EMPLOYEE,
                self.templates.choose_employee([e.name for e in employees]),
            )

        employee = employees[option - 1]
        return FlowAction(
            message=self.templates.ask_full_name(),
            next_step=ConversationStep.ASKING_NAME,
            context_patch={
                "employee_id": employee.id,
                "employee_name": employee.name,
            },
        )

    async def _handle_asking_name(self, text: str, context: ConversationContext) -> FlowAction:
        name = " ".join(text.split())

        if not is_full_name(name):
            return FlowAction(
                message=self.templates.invalid_name(),
                next_step=ConversationStep.ASKING_NAME,
            )

        await self.repository.upsert_client(context.client_phone, name, ORIGIN)

        return FlowAction(
            message=self.templates.ask_date(),
            next_step=ConversationStep.CHOOSING_DATE,
            context_patch={"client_name": name},
        )

    async def _handle_choosing_date(self, text: str, context: ConversationContext) -> FlowAction:
        day = resolve_relative_date(text, self._now().date())

        if day is None:
            return self._reprompt(ConversationStep.CHOOSING_DATE, self.templates.ask_date())

        offers = await self._compute_offers(context.employee_id, day)

        if not offers:
            return FlowAction(
                message=self.templates.no_slots(),
                next_step=ConversationStep.CHOOSING_DATE,
                context_patch={"date": day.isoformat(), "offered_slots": []},
            )

        return FlowAction(
            message=self.templates.available_slots(day, offers),
            next_step=ConversationStep.CHOOSING_TIME,
            context_patch={"date": day.isoformat(), "offered_slots": offers},
        )

    async def _handle_choosing_time(self, text: str, context: ConversationContext) -> FlowAction:
        if normalize(text) == ABORT_WORD:
            return FlowAction(
                message=self.templates.farewell(),
                next_step=ConversationStep.INITIAL,
                context_patch={"offered_slots": []},
            )

        option = parse_option(text, len(context.offered_slots))

        if option is None:
            if context.date and context.offered_slots:
                return self._reprompt(
                    ConversationStep.CHOOSING_TIME,
                    self.templates.available_slots(
                        self._selected_day(context), context.offered_slots
                    ),
                )
            return FlowAction(
                message=self.templates.invalid_option(),
                next_step=ConversationStep.CHOOSING_TIME,
            )

        return await self._book(context, context.offered_slots[option - 1])

    async def _compute_offers(self, employee_id: Optional[str], day: date) -> list[str]:
        """Free slots for the employee on ``day``.

        Raises:
            EntityNotFoundError: If the employee does not exist
        """
        employee = await self.repository.get_employee(employee_id) if employee_id else None
        if employee is None:
            raise EntityNotFoundError("Employee", employee_id)

        appointments = await self.repository.get_appointments_for_employee_on_date(
            employee.id, day
        )

        now = self._now()
        return compute_available_slots(
            hours=employee.schedule.for_date(day),
            day=day,
            bookings=[a.interval for a in appointments],
            slot_minutes=self.business.slot_minutes,
            not_before=now if day == now.date() else None,
        )

    async def _new_booking_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_booking_code()
            if not await self.repository.booking_code_exists(code):
                return code
            logger.warning(f"Booking code collision on {code}, regenerating")
        raise BookingError(f"No unique booking code after {MAX_CODE_ATTEMPTS} attempts")

    async def _book(self, context: ConversationContext, slot: str) -> FlowAction:
        """Create the appointment for the chosen slot.

        Raises:
            EntityNotFoundError: If the client or employee is missing
        """
        client = await self.repository.find_client_by_phone(context.client_phone)
        if client is None:
            raise EntityNotFoundError("Client", context.client_phone)

        employee = (
            await self.repository.get_employee(context.employee_id)
            if context.employee_id
            else None
        )
        if employee is None:
            raise EntityNotFoundError("Employee", context.employee_id)

        # Cheapest active service stands in for the service choice
        services = await self.repository.list_active_services()
        if services:
            service_name = services[0].name
            duration = services[0].duration_minutes or self.business.default_service_duration_minutes
        else:
            service_name = self.business.default_service_name
            duration = self.business.default_service_duration_minutes

        day = self._selected_day(context)
        starts_at = datetime.combine(day, parse_time_of_day(slot))
        code = await self._new_booking_code()

        try:
            await self.repository.create_appointment(
                NewAppointment(
                    client_id=client.id,
                    employee_id=employee.id,
                    service_name=service_name,
                    starts_at=starts_at,
                    duration_minutes=duration,
                    notes=booking_notes(code),
                    status=AppointmentStatus.CONFIRMED,
                    origin=ORIGIN,
                )
            )
        except SlotUnavailableError:
            logger.info(f"Slot {slot} on {day} taken before booking, re-offering")
            offers = await self._compute_offers(employee.id, day)
            if not offers:
                return FlowAction(
                    message=self.templates.no_slots(),
                    next_step=ConversationStep.CHOOSING_DATE,
                    context_patch={"offered_slots": []},
                )
            return FlowAction(
                message=self.templates.slot_taken(day, offers),
                next_step=ConversationStep.CHOOSING_TIME,
                context_patch={"offered_slots": offers},
            )

        logger.info(f"Booked {code} for {context.client_phone} with {employee.name} at {starts_at}")

        return FlowAction(
            message=self.templates.appointment_confirmed(
                code=code,
                service_name=service_name,
                employee_name=employee.name,
                starts_at=starts_at,
            ),
            next_step=ConversationStep.INITIAL,
            context_patch={
                "time": slot,
                "service_name": service_name,
                "booking_code": code,
                "offered_slots": [],
            },
        )

    # === Cancellation ===

    async def _handle_cancelling(self, text: str, context: ConversationContext) -> FlowAction:
        if is_yes(text):
            return FlowAction(
                message=self.templates.ask_code(),
                next_step=ConversationStep.ASKING_CANCEL_CODE,
            )

        if is_no(text):
            return FlowAction(
                message=f"{self.templates.no_code()}\n\n{self.templates.farewell()}",
                next_step=ConversationStep.INITIAL,
            )

        return self._reprompt(ConversationStep.CANCELLING, self.templates.ask_has_code())

    async def _handle_asking_cancel_code(
        self, text: str, context: ConversationContext
    ) -> FlowAction:
        code = normalize_code(text)

        appointment = None
        if is_booking_code(code):
            appointment = await self.repository.find_appointment_by_code(code)

        if appointment is None:
            return FlowAction(
                message=self.templates.code_not_found(),
                next_step=ConversationStep.INITIAL,
            )

        return FlowAction(
            message=self.templates.confirm_cancellation(
                code=code,
                service_name=appointment.service_name,
                employee_name=appointment.employee_name or "",
                starts_at=appointment.starts_at,
            ),
            next_step=ConversationStep.CONFIRMING_CANCELLATION,
            context_patch={"appointment_id": appointment.id, "booking_code": code},
        )

    async def _handle_confirming_cancellation(
        self, text: str, context: ConversationContext
    ) -> FlowAction:
        if not contains_any(text, CONFIRM_CANCEL_WORDS):
            return FlowAction(
                message=self.templates.farewell(),
                next_step=ConversationStep.INITIAL,
                context_patch={"appointment_id": None},
            )

        if not context.appointment_id:
            return FlowAction(
                message=self.templates.code_not_found(),
                next_step=ConversationStep.INITIAL,
            )

        await self.repository.update_appointment_status(
            context.appointment_id,
            AppointmentStatus.CANCELLED,
            reason=CANCELLATION_REASON,
        )
        logger.info(f"Appointment {context.appointment_id} cancelled by {context.client_phone}")

        return FlowAction(
            message=self.templates.appointment_cancelled(),
            next_step=ConversationStep.INITIAL,
            context_patch={"appointment_id": None},
        )
