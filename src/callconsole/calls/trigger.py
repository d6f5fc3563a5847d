"""
Call trigger service.

One invocation produces exactly one call record and at most two writes:
the initial insert (PENDING, or FAILED when the request is invalid) and the
outcome of the start-run request (RUNNING with its run id, or FAILED).
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from callconsole.calls.metadata import (
    EMAIL_CONTEXT,
    LEAD,
    PLATFORM_REQUEST,
    STATUS_PROVENANCE,
    VALIDATION_ERRORS,
)
from callconsole.calls.models import (
    PHONE_NUMBER_LENGTH,
    SUBJECT_NAME_LENGTH,
    CallRecord,
    utc_now,
)
from callconsole.calls.repository import (
    CallLookup,
    CallRecordRepositoryProtocol,
    CallUpdate,
    StatusSource,
)
from callconsole.calls.status import CallStatus
from callconsole.calls.validation import validate_trigger_request
from callconsole.shared.exceptions import CallPlatformError, ValidationError
from callconsole.shared.logging import get_logger
from callconsole.telephony.interface import CallingPlatform, PlatformError, StartRunRequest

logger = get_logger(__name__)


class TriggerService:
    """Validates call requests and starts platform runs."""

    def __init__(
        self,
        repository: CallRecordRepositoryProtocol,
        platform: CallingPlatform,
        callback_url: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the trigger service.

        Args:
            repository: Call record store.
            platform: Calling platform adapter.
            callback_url: Absolute callback URL sent to the platform, if any.
            clock: Source of "now" for metadata timestamps.
        """
        self._repository = repository
        self._platform = platform
        self._callback_url = callback_url
        self._clock = clock

    async def trigger(
        self,
        subject_name: str | None,
        phone_number: str | None,
        email_thread: str | None = None,
        user_id: UUID | None = None,
    ) -> CallRecord:
        """Validate, record and start one outbound call.

        Returns:
            The record, RUNNING once the platform accepted the run.

        Raises:
            ValidationError: Invalid request. A FAILED record was still stored;
                its id is in `details["call_id"]`.
            CallPlatformError: The platform did not accept the run. The record
                was marked FAILED.
        """
        data, validation = validate_trigger_request(subject_name, phone_number, email_thread)
        lead = {
            "subjectName": data.subject_name,
            "phoneNumber": data.phone_number,
            "requestedBy": str(user_id) if user_id else None,
        }

        if not validation.is_valid:
            # Columns hold a clipped copy; metadata.lead keeps the input as sent
            record = await self._repository.create(
                subject_name=data.subject_name[:SUBJECT_NAME_LENGTH],
                phone_number=data.phone_number[:PHONE_NUMBER_LENGTH],
                status=CallStatus.FAILED,
                error_message=validation.first_message,
                user_id=user_id,
                call_metadata={
                    LEAD: lead,
                    VALIDATION_ERRORS: validation.errors,
                    STATUS_PROVENANCE: {
                        "source": StatusSource.TRIGGER.value,
                        "status": CallStatus.FAILED.value,
                        "changedAt": self._clock().isoformat(),
                    },
                },
            )
            logger.info(
                "Rejected call request",
                extra={"call_id": str(record.id), "errors": validation.errors},
            )
            raise ValidationError(
                "Invalid call request",
                details={"errors": validation.errors, "call_id": str(record.id)},
            )

        metadata: dict[str, Any] = {LEAD: lead}
        if data.email_thread:
            metadata[EMAIL_CONTEXT] = data.email_thread

        record = await self._repository.create(
            subject_name=data.subject_name,
            phone_number=data.phone_number,
            status=CallStatus.PENDING,
            user_id=user_id,
            call_metadata=metadata,
        )
        lookup = CallLookup.by_id(record.id)

        request = StartRunRequest(
            phone_number=data.phone_number,
            call_id=str(record.id),
            subject_name=data.subject_name,
            callback_url=self._callback_url,
            email_context=data.email_thread,
        )
        request_metadata = {
            PLATFORM_REQUEST: {
                "callbackUrl": self._callback_url,
                "sentAt": self._clock().isoformat(),
            }
        }

        try:
            response = await self._platform.start_run(request)
        except PlatformError as e:
            error_message = f"Failed to start call: {e.message}"
            logger.warning(
                "Platform rejected call",
                extra={"call_id": str(record.id), "error_code": e.error_code, "error": e.message},
            )
            await self._repository.update_conditional(
                lookup,
                lambda _current: CallUpdate(
                    status=CallStatus.FAILED,
                    error_message=error_message,
                    metadata=request_metadata,
                    source=StatusSource.TRIGGER,
                ),
            )
            raise CallPlatformError(
                error_message,
                details={"call_id": str(record.id), "platform_error_code": e.error_code},
            ) from e

        updated = await self._repository.update_conditional(
            lookup,
            lambda _current: CallUpdate(
                status=CallStatus.RUNNING,
                run_id=response.run_id,
                metadata=request_metadata,
                source=StatusSource.TRIGGER,
            ),
        )
        logger.info(
            "Call started",
            extra={"call_id": str(record.id), "run_id": response.run_id},
        )
        return updated if updated is not None else record
