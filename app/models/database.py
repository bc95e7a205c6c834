"""
Database Models

SQLAlchemy ORM models for the barbershop booking system.

Only the tables the chat booking engine reads or writes live here. Clients,
employees and services are owned by the administrative side of the
application; the engine treats employees and services as read-only.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
    Uuid, Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConversationStatus(str, Enum):
    """Lifecycle of a chat conversation."""
    ACTIVE = "active"
    CLOSED = "closed"


class SenderType(str, Enum):
    """Who wrote a logged chat message."""
    CLIENT = "client"
    BOT = "bot"


# Statuses that block a time slot
OPEN_APPOINTMENT_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class Client(Base, TimestampMixin):
    """
    Client model.

    Identified by phone number. Created by the chat flow the first time a
    full name is captured.
    """

    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    origin: Mapped[str] = mapped_column(String(50), default="WHATSAPP")
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="client"
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}', phone='{self.phone}')>"


class Employee(Base, TimestampMixin):
    """
    Employee model (barbers).

    ``weekly_schedule`` is a 7-item JSON array indexed by ``date.weekday()``
    (0 = Monday). Each item is null or ``{"start": "HH:MM", "end": "HH:MM"}``.
    """

    __tablename__ = "employees"
    __table_args__ = (
        Index("idx_employee_active", "active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    weekly_schedule: Mapped[list] = mapped_column(JSON, default=list)

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="employee"
    )

    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, name='{self.name}', active={self.active})>"


class Service(Base, TimestampMixin):
    """Service catalog entry (haircut, beard trim, ...)."""

    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', price={self.price})>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    The chat flow embeds the human-facing cancellation code in ``notes``.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_employee_date", "employee_id", "starts_at"),
        Index("idx_appointment_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False
    )
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(AppointmentStatus),
        default=AppointmentStatus.PENDING
    )
    origin: Mapped[str] = mapped_column(String(50), default="WHATSAPP")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    client: Mapped["Client"] = relationship("Client", back_populates="appointments")
    employee: Mapped["Employee"] = relationship("Employee", back_populates="appointments")

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, employee_id={self.employee_id}, "
            f"start={self.starts_at}, status={self.status.value})>"
        )


class Conversation(Base, TimestampMixin):
    """
    Conversation model.

    One ACTIVE row per phone number. ``context`` holds the JSON-serialized
    ConversationContext between turns.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversation_phone_status", "phone", "status"),
        Index("idx_conversation_last_activity", "last_activity_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    step: Mapped[str] = mapped_column(String(50), nullable=False)
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ConversationStatus] = mapped_column(
        SQLEnum(ConversationStatus),
        default=ConversationStatus.ACTIVE
    )
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    messages: Mapped[List["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="conversation"
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, phone='{self.phone}', "
            f"step='{self.step}', status={self.status.value})>"
        )


class ConversationMessage(Base):
    """
    Chat message log.

    Append-only record of every inbound and outbound message.
    """

    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("idx_message_conversation", "conversation_id", "timestamp"),
        Index("idx_message_provider_id", "provider_message_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sender: Mapped[SenderType] = mapped_column(SQLEnum(SenderType), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationMessage(id={self.id}, sender={self.sender.value}, "
            f"timestamp={self.timestamp})>"
        )
