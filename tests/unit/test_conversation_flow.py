"""Tests for the booking conversation flow."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
import pytest_asyncio

from app.core.scheduling.codes import booking_notes
from app.core.scheduling.context import ConversationContext
from app.core.scheduling.errors import BookingError, EntityNotFoundError
from app.core.scheduling.flow import (
    CANCELLATION_REASON,
    BusinessConfig,
    ConversationFlow,
    FlowAction,
)
from app.core.scheduling.messages import MessageTemplates
from app.core.scheduling.state import ConversationStep
from app.models.database import AppointmentStatus
from tests.fakes import FakeBookingRepository, schedule

PHONE = "573001112233"
MONDAY_8AM = datetime(2026, 10, 19, 8, 0)

BUSINESS = BusinessConfig(
    name="Madison MVP Barbería",
    address="Centro Comercial Acrópolis, primer piso local 108",
    phone="+573001234567",
)

templates = MessageTemplates()


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def repository():
    repo = FakeBookingRepository()
    repo.add_employee("Luis", schedule(mon=("14:00", "16:00"), tue=("14:00", "16:00")))
    repo.add_employee("Ana", schedule(mon=("09:00", "10:00"), tue=("09:00", "11:00")))
    repo.add_service("Corte clásico", Decimal("25000"), 30)
    repo.add_service("Barba", Decimal("15000"), 20)
    return repo


@pytest.fixture
def clock():
    return Clock(MONDAY_8AM)


@pytest.fixture
def flow(repository, clock):
    return ConversationFlow(repository, BUSINESS, clock=clock)


@pytest.fixture
def ana(repository):
    return next(e for e in repository.employees if e.name == "Ana")


@pytest_asyncio.fixture
async def client(repository):
    return await repository.upsert_client(PHONE, "Juan Pérez", "WHATSAPP")


def context(**values) -> ConversationContext:
    return ConversationContext(client_phone=PHONE, **values)


class TestStepTable:
    """Test that every step is handled."""

    def test_every_step_has_a_handler(self, flow):
        assert set(flow._handlers) == set(ConversationStep)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("step", list(ConversationStep))
    async def test_any_input_yields_a_step(self, flow, step):
        action = await flow.process(step, "zzz", context())

        assert isinstance(action, FlowAction)
        assert action.next_step in ConversationStep
        assert action.message

    @pytest.mark.asyncio
    async def test_unknown_step_resets(self, flow):
        action = await flow.process(None, "hola", context())

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.invalid_option()


class TestMenu:
    """Test INITIAL, MAIN_MENU and ANYTHING_ELSE."""

    @pytest.mark.asyncio
    async def test_initial_shows_menu(self, flow):
        action = await flow.process(ConversationStep.INITIAL, "hola", context())

        assert action.next_step == ConversationStep.MAIN_MENU
        assert action.message == templates.welcome(BUSINESS.name)

    @pytest.mark.asyncio
    async def test_location(self, flow):
        action = await flow.process(ConversationStep.MAIN_MENU, "1", context())

        assert action.next_step == ConversationStep.ANYTHING_ELSE
        assert BUSINESS.address in action.message

    @pytest.mark.asyncio
    async def test_price_list_cheapest_first(self, flow):
        action = await flow.process(ConversationStep.MAIN_MENU, "2", context())

        assert action.next_step == ConversationStep.ANYTHING_ELSE
        assert action.message.index("$15.000") < action.message.index("$25.000")
        assert action.message.endswith(templates.anything_else())

    @pytest.mark.asyncio
    async def test_book_lists_employees_by_name(self, flow):
        action = await flow.process(ConversationStep.MAIN_MENU, "3", context())

        assert action.next_step == ConversationStep.CHOOSING_EMPLOYEE
        assert "1. Ana" in action.message
        assert "2. Luis" in action.message

    @pytest.mark.asyncio
    async def test_cancel_option(self, flow):
        action = await flow.process(ConversationStep.MAIN_MENU, " 4 ", context())

        assert action.next_step == ConversationStep.CANCELLING
        assert action.message == templates.ask_has_code()

    @pytest.mark.asyncio
    async def test_invalid_option_repeats_menu(self, flow):
        action = await flow.process(ConversationStep.MAIN_MENU, "9", context())

        assert action.next_step == ConversationStep.MAIN_MENU
        assert action.message.startswith(templates.invalid_option())
        assert templates.welcome(BUSINESS.name) in action.message

    @pytest.mark.asyncio
    async def test_attempts_count_reprompts_and_reset(self, flow):
        ctx = context()

        action = await flow.process(ConversationStep.MAIN_MENU, "9", ctx)
        ctx = ctx.merge(action.context_patch)
        assert ctx.attempts == 1

        action = await flow.process(ConversationStep.MAIN_MENU, "x", ctx)
        ctx = ctx.merge(action.context_patch)
        assert ctx.attempts == 2

        action = await flow.process(ConversationStep.MAIN_MENU, "1", ctx)
        ctx = ctx.merge(action.context_patch)
        assert ctx.attempts == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["si", "Sí", "SI"])
    async def test_anything_else_yes(self, flow, reply):
        action = await flow.process(ConversationStep.ANYTHING_ELSE, reply, context())

        assert action.next_step == ConversationStep.MAIN_MENU

    @pytest.mark.asyncio
    async def test_anything_else_no(self, flow):
        action = await flow.process(ConversationStep.ANYTHING_ELSE, "no", context())

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.farewell()

    @pytest.mark.asyncio
    async def test_anything_else_other(self, flow):
        action = await flow.process(ConversationStep.ANYTHING_ELSE, "tal vez", context())

        assert action.next_step == ConversationStep.ANYTHING_ELSE


class TestChoosingEmployee:
    """Test barber selection."""

    @pytest.mark.asyncio
    async def test_second_option_selects_luis(self, flow, repository):
        luis = next(e for e in repository.employees if e.name == "Luis")

        action = await flow.process(ConversationStep.CHOOSING_EMPLOYEE, "2", context())

        assert action.next_step == ConversationStep.ASKING_NAME
        assert action.context_patch["employee_id"] == luis.id
        assert action.context_patch["employee_name"] == "Luis"
        assert action.message == templates.ask_full_name()

    @pytest.mark.asyncio
    async def test_ninguno_says_goodbye(self, flow):
        action = await flow.process(ConversationStep.CHOOSING_EMPLOYEE, "Ninguno", context())

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.farewell()

    @pytest.mark.asyncio
    async def test_out_of_range_relists(self, flow):
        action = await flow.process(ConversationStep.CHOOSING_EMPLOYEE, "3", context())

        assert action.next_step == ConversationStep.CHOOSING_EMPLOYEE
        assert "1. Ana" in action.message
        assert "employee_id" not in action.context_patch

    @pytest.mark.asyncio
    async def test_inactive_employees_not_offered(self, flow, repository):
        repository.add_employee("Beto", schedule(), active=False)

        action = await flow.process(ConversationStep.CHOOSING_EMPLOYEE, "3", context())

        assert action.next_step == ConversationStep.CHOOSING_EMPLOYEE


class TestAskingName:
    """Test full name capture."""

    @pytest.mark.asyncio
    async def test_single_word_rejected(self, flow, repository):
        action = await flow.process(ConversationStep.ASKING_NAME, "Juan", context())

        assert action.next_step == ConversationStep.ASKING_NAME
        assert action.message == templates.invalid_name()
        assert repository.clients == {}

    @pytest.mark.asyncio
    async def test_full_name_upserts_client(self, flow, repository):
        action = await flow.process(ConversationStep.ASKING_NAME, "  Juan   Pérez ", context())

        assert action.next_step == ConversationStep.CHOOSING_DATE
        assert action.context_patch["client_name"] == "Juan Pérez"
        assert repository.clients[PHONE].name == "Juan Pérez"
        assert repository.clients[PHONE].origin == "WHATSAPP"

    @pytest.mark.asyncio
    async def test_name_capture_is_idempotent(self, flow, repository):
        await flow.process(ConversationStep.ASKING_NAME, "Juan Pérez", context())
        first_id = repository.clients[PHONE].id

        await flow.process(ConversationStep.ASKING_NAME, "Juan Pérez", context())

        assert len(repository.clients) == 1
        assert repository.clients[PHONE].id == first_id


class TestChoosingDate:
    """Test date selection and offers."""

    @pytest.mark.asyncio
    async def test_tomorrow_offers_free_slots(self, flow, repository, ana):
        repository.add_appointment(ana.id, datetime(2026, 10, 20, 9, 30))

        action = await flow.process(
            ConversationStep.CHOOSING_DATE, "mañana", context(employee_id=ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_TIME
        assert action.context_patch["date"] == "2026-10-20"
        assert action.context_patch["offered_slots"] == ["09:00", "10:00", "10:30"]
        assert "1. 9:00 AM" in action.message

    @pytest.mark.asyncio
    async def test_unaccented_tomorrow(self, flow, ana):
        action = await flow.process(
            ConversationStep.CHOOSING_DATE, "MANANA", context(employee_id=ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_TIME

    @pytest.mark.asyncio
    async def test_today_skips_past_slots(self, flow, clock, ana):
        clock.now = datetime(2026, 10, 19, 9, 10)

        action = await flow.process(
            ConversationStep.CHOOSING_DATE, "hoy", context(employee_id=ana.id)
        )

        assert action.context_patch["offered_slots"] == ["09:30"]

    @pytest.mark.asyncio
    async def test_no_offers_stays(self, flow, ana):
        # Wednesday is a day off for Ana
        action = await flow.process(
            ConversationStep.CHOOSING_DATE, "pasado mañana", context(employee_id=ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_DATE
        assert action.message == templates.no_slots()

    @pytest.mark.asyncio
    async def test_unknown_date_reprompts(self, flow, ana):
        action = await flow.process(
            ConversationStep.CHOOSING_DATE, "el lunes", context(employee_id=ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_DATE
        assert templates.ask_date() in action.message

    @pytest.mark.asyncio
    async def test_missing_employee_is_an_error(self, flow):
        with pytest.raises(EntityNotFoundError):
            await flow.process(ConversationStep.CHOOSING_DATE, "hoy", context(employee_id="emp-404"))


class TestChoosingTime:
    """Test slot selection and booking."""

    def booking_context(self, employee_id: str) -> ConversationContext:
        return context(
            employee_id=employee_id,
            employee_name="Ana",
            client_name="Juan Pérez",
            date="2026-10-20",
            offered_slots=["09:00", "09:30", "10:00", "10:30"],
        )

    @pytest.mark.asyncio
    async def test_books_chosen_slot(self, flow, repository, ana, client):
        action = await flow.process(
            ConversationStep.CHOOSING_TIME, "2", self.booking_context(ana.id)
        )

        assert action.next_step == ConversationStep.INITIAL
        [appointment] = repository.appointments.values()
        assert appointment.starts_at == datetime(2026, 10, 20, 9, 30)
        assert appointment.client_id == client.id
        assert appointment.employee_id == ana.id
        assert appointment.status == AppointmentStatus.CONFIRMED
        assert appointment.origin == "WHATSAPP"
        # Cheapest active service
        assert appointment.service_name == "Barba"
        assert appointment.duration_minutes == 20

        code = action.context_patch["booking_code"]
        assert appointment.notes == booking_notes(code)
        assert code in action.message
        assert action.context_patch["offered_slots"] == []

    @pytest.mark.asyncio
    async def test_default_service_when_catalog_empty(self, flow, repository, ana, client):
        repository.services.clear()

        await flow.process(ConversationStep.CHOOSING_TIME, "1", self.booking_context(ana.id))

        [appointment] = repository.appointments.values()
        assert appointment.service_name == "Corte básico"
        assert appointment.duration_minutes == 30

    @pytest.mark.asyncio
    async def test_cancelar_aborts(self, flow, repository, ana):
        action = await flow.process(
            ConversationStep.CHOOSING_TIME, "Cancelar", self.booking_context(ana.id)
        )

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.farewell()
        assert repository.appointments == {}

    @pytest.mark.asyncio
    async def test_out_of_range_reprompts_with_offers(self, flow, repository, ana):
        action = await flow.process(
            ConversationStep.CHOOSING_TIME, "7", self.booking_context(ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_TIME
        assert "4. 10:30 AM" in action.message
        assert repository.appointments == {}

    @pytest.mark.asyncio
    async def test_taken_slot_is_reoffered(self, flow, repository, ana, client):
        repository.add_appointment(ana.id, datetime(2026, 10, 20, 9, 30))

        action = await flow.process(
            ConversationStep.CHOOSING_TIME, "2", self.booking_context(ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_TIME
        assert action.context_patch["offered_slots"] == ["09:00", "10:00", "10:30"]
        assert "reservado" in action.message
        assert len(repository.appointments) == 1

    @pytest.mark.asyncio
    async def test_taken_slot_with_nothing_left(self, flow, repository, ana, client):
        repository.add_appointment(ana.id, datetime(2026, 10, 20, 9, 0), duration=120)

        action = await flow.process(
            ConversationStep.CHOOSING_TIME, "2", self.booking_context(ana.id)
        )

        assert action.next_step == ConversationStep.CHOOSING_DATE
        assert action.message == templates.no_slots()

    @pytest.mark.asyncio
    async def test_missing_client_is_an_error(self, flow, ana):
        with pytest.raises(EntityNotFoundError):
            await flow.process(ConversationStep.CHOOSING_TIME, "1", self.booking_context(ana.id))

    @pytest.mark.asyncio
    async def test_missing_date_reprompts(self, flow, ana, client):
        ctx = context(employee_id=ana.id, offered_slots=["09:00"])

        action = await flow.process(ConversationStep.CHOOSING_TIME, "1", ctx)

        assert action.next_step == ConversationStep.CHOOSING_TIME
        assert action.message == templates.invalid_option()

    @pytest.mark.asyncio
    async def test_code_collision_regenerates(self, flow, repository, ana, client):
        repository.add_appointment(
            ana.id,
            datetime(2026, 10, 1, 9, 0),
            status=AppointmentStatus.COMPLETED,
            notes=booking_notes("RAD-AAAAAA"),
        )

        with patch(
            "app.core.scheduling.flow.generate_booking_code",
            side_effect=["RAD-AAAAAA", "RAD-BBBBBB"],
        ):
            action = await flow.process(
                ConversationStep.CHOOSING_TIME, "1", self.booking_context(ana.id)
            )

        assert action.context_patch["booking_code"] == "RAD-BBBBBB"

    @pytest.mark.asyncio
    async def test_code_generation_gives_up(self, flow, repository, ana, client):
        repository.add_appointment(
            ana.id, datetime(2026, 10, 1, 9, 0), notes=booking_notes("RAD-AAAAAA")
        )

        with patch(
            "app.core.scheduling.flow.generate_booking_code", return_value="RAD-AAAAAA"
        ):
            with pytest.raises(BookingError):
                await flow.process(
                    ConversationStep.CHOOSING_TIME, "1", self.booking_context(ana.id)
                )


class TestCancellation:
    """Test cancellation by code."""

    @pytest.fixture
    def appointment(self, repository, ana):
        return repository.add_appointment(
            ana.id, datetime(2026, 10, 20, 10, 0), notes=booking_notes("RAD-AB12CD")
        )

    @pytest.mark.asyncio
    async def test_has_code(self, flow):
        action = await flow.process(ConversationStep.CANCELLING, "sí", context())

        assert action.next_step == ConversationStep.ASKING_CANCEL_CODE
        assert action.message == templates.ask_code()

    @pytest.mark.asyncio
    async def test_no_code(self, flow):
        action = await flow.process(ConversationStep.CANCELLING, "no", context())

        assert action.next_step == ConversationStep.INITIAL
        assert templates.no_code() in action.message

    @pytest.mark.asyncio
    async def test_cancelling_other_reply(self, flow):
        action = await flow.process(ConversationStep.CANCELLING, "quizás", context())

        assert action.next_step == ConversationStep.CANCELLING

    @pytest.mark.asyncio
    async def test_code_found(self, flow, appointment):
        action = await flow.process(ConversationStep.ASKING_CANCEL_CODE, " rad-ab12cd ", context())

        assert action.next_step == ConversationStep.CONFIRMING_CANCELLATION
        assert action.context_patch["appointment_id"] == appointment.id
        assert "Ana" in action.message
        assert "10:00 AM" in action.message

    @pytest.mark.asyncio
    async def test_code_not_found(self, flow, appointment):
        action = await flow.process(ConversationStep.ASKING_CANCEL_CODE, "RAD-ZZZZZZ", context())

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.code_not_found()

    @pytest.mark.asyncio
    async def test_malformed_code_skips_lookup(self, flow, repository, appointment):
        action = await flow.process(ConversationStep.ASKING_CANCEL_CODE, "AB12CD", context())

        assert action.next_step == ConversationStep.INITIAL
        assert repository.code_lookups == []

    @pytest.mark.asyncio
    async def test_cancelled_appointment_not_found(self, flow, repository, appointment):
        appointment.status = AppointmentStatus.CANCELLED

        action = await flow.process(ConversationStep.ASKING_CANCEL_CODE, "RAD-AB12CD", context())

        assert action.next_step == ConversationStep.INITIAL

    @pytest.mark.asyncio
    async def test_confirm_cancels(self, flow, appointment):
        action = await flow.process(
            ConversationStep.CONFIRMING_CANCELLATION,
            "Sí, cancelar",
            context(appointment_id=appointment.id),
        )

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.appointment_cancelled()
        assert appointment.status == AppointmentStatus.CANCELLED
        assert appointment.cancellation_reason == CANCELLATION_REASON

    @pytest.mark.asyncio
    async def test_declining_keeps_appointment(self, flow, appointment):
        action = await flow.process(
            ConversationStep.CONFIRMING_CANCELLATION,
            "no",
            context(appointment_id=appointment.id),
        )

        assert action.next_step == ConversationStep.INITIAL
        assert action.message == templates.farewell()
        assert appointment.status == AppointmentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_booking_code_round_trip(flow, repository, ana, client):
    """A code returned at booking finds and cancels that appointment."""
    booked = await flow.process(
        ConversationStep.CHOOSING_TIME,
        "1",
        context(employee_id=ana.id, date="2026-10-20", offered_slots=["09:00"]),
    )
    code = booked.context_patch["booking_code"]

    found = await flow.process(ConversationStep.ASKING_CANCEL_CODE, code.lower(), context())
    cancelled = await flow.process(
        ConversationStep.CONFIRMING_CANCELLATION,
        "si",
        context().merge(found.context_patch),
    )

    [appointment] = repository.appointments.values()
    assert found.context_patch["appointment_id"] == appointment.id
    assert cancelled.next_step == ConversationStep.INITIAL
    assert appointment.status == AppointmentStatus.CANCELLED
