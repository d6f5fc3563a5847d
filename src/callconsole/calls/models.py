"""
SQLAlchemy model for outbound call records.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, foreign, mapped_column, relationship

from callconsole.auth.models import User
from callconsole.calls.status import CallStatus
from callconsole.shared.database import Base

SUBJECT_NAME_LENGTH = 255
PHONE_NUMBER_LENGTH = 64


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class CallRecord(Base):
    """One outbound call attempt and everything learned about it since."""

    __tablename__ = "calls"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    run_id: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        index=True,
    )
    subject_name: Mapped[str] = mapped_column(
        String(SUBJECT_NAME_LENGTH),
        nullable=False,
    )
    phone_number: Mapped[str] = mapped_column(
        String(PHONE_NUMBER_LENGTH),
        nullable=False,
        index=True,
    )
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(CallStatus, name="call_status"),
        nullable=False,
        default=CallStatus.PENDING,
        index=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    call_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )
    # Compare-and-swap counter for conditional updates
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    # Users live in the identity service; no FK so unknown ids are still recorded
    user: Mapped[User | None] = relationship(
        User,
        primaryjoin=lambda: foreign(CallRecord.user_id) == User.id,
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<CallRecord(id={self.id}, run_id={self.run_id}, status={self.status})>"
