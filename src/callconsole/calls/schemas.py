"""
Pydantic schemas for the calls API.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from callconsole.calls.models import CallRecord, as_utc
from callconsole.calls.status import CallStatus


class CamelModel(BaseModel):
    """Base schema serialising to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerCallRequest(CamelModel):
    """Schema for triggering a call.

    Fields are loosely typed on purpose: invalid values are rejected by the
    trigger service, which also records the rejected attempt.
    """

    subject_name: str | None = Field(default=None, description="Who is being called")
    phone_number: str | None = Field(
        default=None,
        description="Phone number in international format, e.g. +34612345678",
    )
    email_thread: str | None = Field(
        default=None,
        description="Optional email thread forwarded to the call agent as context",
    )


class UserSummary(CamelModel):
    """User who triggered a call."""

    id: UUID
    email: str
    name: str | None = None


class CallResponse(CamelModel):
    """Schema for a call record."""

    id: UUID
    run_id: str | None
    subject_name: str
    phone_number: str
    status: CallStatus
    error_message: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    user_id: UUID | None
    user: UserSummary | None = None

    @classmethod
    def from_record(cls, record: CallRecord) -> "CallResponse":
        user = record.user
        return cls(
            id=record.id,
            run_id=record.run_id,
            subject_name=record.subject_name,
            phone_number=record.phone_number,
            status=record.status,
            error_message=record.error_message,
            metadata=record.call_metadata or {},
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
            completed_at=as_utc(record.completed_at),
            user_id=record.user_id,
            user=UserSummary(id=user.id, email=user.email, name=user.name) if user else None,
        )


class CallListResponse(CamelModel):
    """Schema for paginated call list response."""

    items: list[CallResponse]
    total: int
    page: int
    page_size: int
    pages: int


class CallStatusListResponse(CamelModel):
    """Most recent calls after reconciliation."""

    items: list[CallResponse]


class CallbackAck(CamelModel):
    """Acknowledgement returned to the platform."""

    ok: bool = True
    call_id: UUID
    status: CallStatus
