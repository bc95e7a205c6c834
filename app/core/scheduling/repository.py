"""
Booking repository.

Read/write contract between the chat booking core and storage, plus the
SQLAlchemy implementation used in production. The core only sees the
plain record dataclasses defined here, never ORM instances.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.scheduling.availability import (
    BookedInterval,
    WeeklySchedule,
    day_bounds,
    is_interval_free,
)
from app.core.scheduling.errors import SlotUnavailableError
from app.models.database import (
    OPEN_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentStatus,
    Client,
    Conversation,
    ConversationMessage,
    ConversationStatus,
    Employee,
    SenderType,
    Service,
)

logger = logging.getLogger(__name__)


# === Records ===


@dataclass
class ConversationRecord:
    """Stored conversation."""

    id: str
    phone: str
    step: str
    context: Optional[str]
    status: ConversationStatus
    last_activity_at: datetime

    @classmethod
    def from_model(cls, row: Conversation) -> "ConversationRecord":
        return cls(
            id=str(row.id),
            phone=row.phone,
            step=row.step,
            context=row.context,
            status=row.status,
            last_activity_at=row.last_activity_at,
        )


@dataclass
class ClientRecord:
    """Client identified by phone."""

    id: str
    name: str
    phone: str
    origin: str = "WHATSAPP"

    @classmethod
    def from_model(cls, row: Client) -> "ClientRecord":
        return cls(id=str(row.id), name=row.name, phone=row.phone, origin=row.origin)


@dataclass
class EmployeeRecord:
    """Employee with weekday-indexed working hours."""

    id: str
    name: str
    schedule: WeeklySchedule
    active: bool = True

    @classmethod
    def from_model(cls, row: Employee) -> "EmployeeRecord":
        return cls(
            id=str(row.id),
            name=row.name,
            schedule=WeeklySchedule.from_json(row.weekly_schedule),
            active=row.active,
        )


@dataclass
class ServiceRecord:
    """Service catalog entry."""

    id: str
    name: str
    price: Decimal
    duration_minutes: int
    active: bool = True

    @classmethod
    def from_model(cls, row: Service) -> "ServiceRecord":
        return cls(
            id=str(row.id),
            name=row.name,
            price=row.price,
            duration_minutes=row.duration_minutes,
            active=row.active,
        )


@dataclass
class NewAppointment:
    """Data needed to insert an appointment."""

    client_id: str
    employee_id: str
    service_name: str
    starts_at: datetime
    duration_minutes: int
    notes: str
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    origin: str = "WHATSAPP"

    @property
    def interval(self) -> BookedInterval:
        return BookedInterval(start=self.starts_at, duration_minutes=self.duration_minutes)


@dataclass
class AppointmentRecord:
    """Stored appointment."""

    id: str
    client_id: str
    employee_id: str
    service_name: str
    starts_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    origin: str = "WHATSAPP"
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    employee_name: Optional[str] = None

    @property
    def interval(self) -> BookedInterval:
        return BookedInterval(start=self.starts_at, duration_minutes=self.duration_minutes)

    @classmethod
    def from_model(
        cls, row: Appointment, employee_name: Optional[str] = None
    ) -> "AppointmentRecord":
        return cls(
            id=str(row.id),
            client_id=str(row.client_id),
            employee_id=str(row.employee_id),
            service_name=row.service_name,
            starts_at=row.starts_at,
            duration_minutes=row.duration_minutes,
            status=row.status,
            origin=row.origin,
            notes=row.notes,
            cancellation_reason=row.cancellation_reason,
            employee_name=employee_name,
        )


# === Contract ===


class BookingRepository(ABC):
    """Storage operations used by the chat booking core."""

    # Conversations

    @abstractmethod
    async def find_active_conversation(self, phone: str) -> Optional[ConversationRecord]:
        """Most recent ACTIVE conversation for ``phone``."""

    @abstractmethod
    async def create_conversation(
        self, phone: str, step: str, context: str, now: datetime
    ) -> ConversationRecord:
        """Open a new ACTIVE conversation."""

    @abstractmethod
    async def update_conversation(
        self, conversation_id: str, step: str, context: str, last_activity_at: datetime
    ) -> None:
        """Persist step, serialized context and activity timestamp."""

    @abstractmethod
    async def close_idle_conversations(self, idle_since: datetime) -> int:
        """Close ACTIVE conversations with no activity since ``idle_since``."""

    # Message log

    @abstractmethod
    async def append_message(
        self,
        conversation_id: str,
        provider_message_id: Optional[str],
        sender: SenderType,
        body: str,
        timestamp: datetime,
    ) -> None:
        """Append a message log record."""

    @abstractmethod
    async def message_already_processed(self, provider_message_id: str) -> bool:
        """True when an inbound record with this provider id exists."""

    # Clients

    @abstractmethod
    async def find_client_by_phone(self, phone: str) -> Optional[ClientRecord]:
        """Client by phone number."""

    @abstractmethod
    async def upsert_client(self, phone: str, name: str, origin: str) -> ClientRecord:
        """Create the client, or update its name when it changed."""

    # Catalog

    @abstractmethod
    async def list_active_employees(self) -> list[EmployeeRecord]:
        """Active employees ordered by name."""

    @abstractmethod
    async def get_employee(self, employee_id: str) -> Optional[EmployeeRecord]:
        """Employee by id."""

    @abstractmethod
    async def list_active_services(self) -> list[ServiceRecord]:
        """Active services ordered by price, cheapest first."""

    # Appointments

    @abstractmethod
    async def get_appointments_for_employee_on_date(
        self, employee_id: str, day: date
    ) -> list[AppointmentRecord]:
        """PENDING/CONFIRMED appointments of the employee starting on ``day``."""

    @abstractmethod
    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        """Insert an appointment.

        Raises:
            SlotUnavailableError: If the interval overlaps an open appointment
        """

    @abstractmethod
    async def booking_code_exists(self, code: str) -> bool:
        """True when any appointment's notes embed ``code``."""

    @abstractmethod
    async def find_appointment_by_code(self, code: str) -> Optional[AppointmentRecord]:
        """PENDING/CONFIRMED appointment whose notes embed ``code``."""

    @abstractmethod
    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        reason: Optional[str] = None,
    ) -> None:
        """Change an appointment's status (last write wins)."""


# === SQLAlchemy implementation ===


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


SessionContext = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SqlAlchemyBookingRepository(BookingRepository):
    """
    BookingRepository backed by the async SQLAlchemy session factory.

    Every method runs in its own transaction (commit on success,
    rollback on error).
    """

    def __init__(self, session_context: Optional[SessionContext] = None):
        """Initialize repository.

        Args:
            session_context: Factory returning a transactional session
                context manager (defaults to ``get_db_context``)
        """
        if session_context is None:
            from app.infra.database import get_db_context

            session_context = get_db_context
        self._session = session_context

    # === Conversations ===

    async def find_active_conversation(self, phone: str) -> Optional[ConversationRecord]:
        async with self._session() as db:
            result = await db.execute(
                select(Conversation)
                .where(
                    Conversation.phone == phone,
                    Conversation.status == ConversationStatus.ACTIVE,
                )
                .order_by(Conversation.last_activity_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return ConversationRecord.from_model(row) if row else None

    async def create_conversation(
        self, phone: str, step: str, context: str, now: datetime
    ) -> ConversationRecord:
        async with self._session() as db:
            row = Conversation(
                id=uuid.uuid4(),
                phone=phone,
                step=step,
                context=context,
                status=ConversationStatus.ACTIVE,
                last_activity_at=now,
            )
            db.add(row)
            await db.flush()
            logger.info(f"Conversation opened for {phone}: {row.id}")
            return ConversationRecord.from_model(row)

    async def update_conversation(
        self, conversation_id: str, step: str, context: str, last_activity_at: datetime
    ) -> None:
        async with self._session() as db:
            await db.execute(
                update(Conversation)
                .where(Conversation.id == _as_uuid(conversation_id))
                .values(
                    step=step,
                    context=context,
                    last_activity_at=last_activity_at,
                    updated_at=last_activity_at,
                )
            )

    async def close_idle_conversations(self, idle_since: datetime) -> int:
        async with self._session() as db:
            result = await db.execute(
                update(Conversation)
                .where(
                    Conversation.status == ConversationStatus.ACTIVE,
                    Conversation.last_activity_at < idle_since,
                )
                .values(status=ConversationStatus.CLOSED, context=None)
            )
            return result.rowcount or 0

    # === Message log ===

    async def append_message(
        self,
        conversation_id: str,
        provider_message_id: Optional[str],
        sender: SenderType,
        body: str,
        timestamp: datetime,
    ) -> None:
        async with self._session() as db:
            db.add(
                ConversationMessage(
                    id=uuid.uuid4(),
                    conversation_id=_as_uuid(conversation_id),
                    provider_message_id=provider_message_id,
                    sender=sender,
                    body=body,
                    timestamp=timestamp,
                )
            )

    async def message_already_processed(self, provider_message_id: str) -> bool:
        async with self._session() as db:
            result = await db.execute(
                select(ConversationMessage.id)
                .where(
                    ConversationMessage.provider_message_id == provider_message_id,
                    ConversationMessage.sender == SenderType.CLIENT,
                )
                .limit(1)
            )
            return result.first() is not None

    # === Clients ===

    async def find_client_by_phone(self, phone: str) -> Optional[ClientRecord]:
        async with self._session() as db:
            result = await db.execute(select(Client).where(Client.phone == phone))
            row = result.scalar_one_or_none()
            return ClientRecord.from_model(row) if row else None

    async def upsert_client(self, phone: str, name: str, origin: str) -> ClientRecord:
        async with self._session() as db:
            result = await db.execute(select(Client).where(Client.phone == phone))
            row = result.scalar_one_or_none()

            if row is None:
                row = Client(id=uuid.uuid4(), phone=phone, name=name, origin=origin, active=True)
                db.add(row)
                await db.flush()
                logger.info(f"Client created for {phone}")
            elif row.name != name:
                row.name = name
                logger.info(f"Client name updated for {phone}")

            return ClientRecord.from_model(row)

    # === Catalog ===

    async def list_active_employees(self) -> list[EmployeeRecord]:
        async with self._session() as db:
            result = await db.execute(
                select(Employee).where(Employee.active.is_(True)).order_by(Employee.name.asc())
            )
            return [EmployeeRecord.from_model(row) for row in result.scalars().all()]

    async def get_employee(self, employee_id: str) -> Optional[EmployeeRecord]:
        key = _as_uuid(employee_id)
        if key is None:
            return None
        async with self._session() as db:
            row = await db.get(Employee, key)
            return EmployeeRecord.from_model(row) if row else None

    async def list_active_services(self) -> list[ServiceRecord]:
        async with self._session() as db:
            result = await db.execute(
                select(Service)
                .where(Service.active.is_(True))
                .order_by(Service.price.asc(), Service.name.asc())
            )
            return [ServiceRecord.from_model(row) for row in result.scalars().all()]

    # === Appointments ===

    async def _open_appointments_on(
        self, db: AsyncSession, employee_id: uuid.UUID, day: date
    ) -> list[Appointment]:
        start, end = day_bounds(day)
        result = await db.execute(
            select(Appointment)
            .where(
                Appointment.employee_id == employee_id,
                Appointment.starts_at >= start,
                Appointment.starts_at <= end,
                Appointment.status.in_(OPEN_APPOINTMENT_STATUSES),
            )
            .order_by(Appointment.starts_at.asc())
        )
        return list(result.scalars().all())

    async def get_appointments_for_employee_on_date(
        self, employee_id: str, day: date
    ) -> list[AppointmentRecord]:
        key = _as_uuid(employee_id)
        if key is None:
            return []
        async with self._session() as db:
            rows = await self._open_appointments_on(db, key, day)
            return [AppointmentRecord.from_model(row) for row in rows]

    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        employee_id = _as_uuid(data.employee_id)

        async with self._session() as db:
            existing = await self._open_appointments_on(db, employee_id, data.starts_at.date())
            intervals = [AppointmentRecord.from_model(row).interval for row in existing]
            if not is_interval_free(data.interval, intervals):
                raise SlotUnavailableError(data.employee_id, data.starts_at)

            row = Appointment(
                id=uuid.uuid4(),
                client_id=_as_uuid(data.client_id),
                employee_id=employee_id,
                service_name=data.service_name,
                starts_at=data.starts_at,
                duration_minutes=data.duration_minutes,
                status=data.status,
                origin=data.origin,
                notes=data.notes,
            )
            db.add(row)
            await db.flush()
            logger.info(
                f"Appointment {row.id} booked for employee {data.employee_id} "
                f"at {data.starts_at.isoformat()}"
            )
            return AppointmentRecord.from_model(row)

    async def booking_code_exists(self, code: str) -> bool:
        async with self._session() as db:
            result = await db.execute(
                select(Appointment.id)
                .where(Appointment.notes.contains(code, autoescape=True))
                .limit(1)
            )
            return result.first() is not None

    async def find_appointment_by_code(self, code: str) -> Optional[AppointmentRecord]:
        async with self._session() as db:
            result = await db.execute(
                select(Appointment, Employee.name)
                .join(Employee, Appointment.employee_id == Employee.id)
                .where(
                    Appointment.notes.contains(code, autoescape=True),
                    Appointment.status.in_(OPEN_APPOINTMENT_STATUSES),
                )
                .limit(1)
            )
            found = result.first()
            if found is None:
                return None
            row, employee_name = found
            return AppointmentRecord.from_model(row, employee_name=employee_name)

    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        reason: Optional[str] = None,
    ) -> None:
        values: dict = {"status": status}
        if reason is not None:
            values["cancellation_reason"] = reason

        async with self._session() as db:
            await db.execute(
                update(Appointment)
                .where(Appointment.id == _as_uuid(appointment_id))
                .values(**values)
            )
        logger.info(f"Appointment {appointment_id} moved to {status.value}")
