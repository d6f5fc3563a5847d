"""
Platform callback (webhook) processing.

The platform may deliver the same callback several times, late, or not at
all. Processing is therefore idempotent: a payload that would not change the
record is acknowledged without writing anything.
"""

import hmac
from collections.abc import Callable
from datetime import datetime
from typing import Any

from callconsole.calls.metadata import CALLBACK, WORKFLOW_RESULT, is_subset
from callconsole.calls.models import CallRecord, utc_now
from callconsole.calls.repository import (
    CallLookup,
    CallRecordRepositoryProtocol,
    CallUpdate,
    StatusSource,
)
from callconsole.calls.status import CallStatus, can_transition, normalize_platform_status
from callconsole.shared.exceptions import CallbackAuthError, CallNotFoundError, ValidationError
from callconsole.shared.logging import get_logger
from callconsole.telephony.extraction import (
    extract_callback_call_id,
    extract_callback_run_id,
    extract_contract_draft,
    extract_status,
    extract_summary,
)

logger = get_logger(__name__)

CALLBACK_SECRET_HEADERS = ("x-callback-secret", "x-happyrobot-callback-secret")

CALLBACK_FAILURE_MESSAGE = "Call reported failed by platform callback"


def verify_callback_secret(provided: str | None, expected: str | None) -> None:
    """Check the shared secret, when one is configured.

    Raises:
        CallbackAuthError: Secret configured and missing or different.
    """
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise CallbackAuthError()


class CallbackReceiver:
    """Merges platform callbacks into call records."""

    def __init__(
        self,
        repository: CallRecordRepositoryProtocol,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._clock = clock

    async def handle(self, payload: Any) -> CallRecord:
        """Apply one callback payload.

        Correlates by the internal call id echoed in the run context, falling
        back to the platform run id only when no call id is present.

        Returns:
            The record after processing.

        Raises:
            ValidationError: Payload is not an object or carries no correlation id.
            CallNotFoundError: No record matches.
        """
        if not isinstance(payload, dict):
            raise ValidationError(
                "Callback body must be a JSON object",
                code="INVALID_CALLBACK_PAYLOAD",
            )

        call_id = extract_callback_call_id(payload)
        run_id = extract_callback_run_id(payload)
        if call_id:
            lookup = CallLookup.by_id(call_id)
        elif run_id:
            lookup = CallLookup.by_run_id(run_id)
        else:
            raise ValidationError(
                "Callback carries neither a call id nor a run id",
                code="MISSING_CORRELATION_ID",
            )

        result: dict[str, Any] = {}
        summary = extract_summary(payload)
        if summary is not None:
            result["summary"] = summary
        contract_draft = extract_contract_draft(payload)
        if contract_draft is not None:
            result["contractDraft"] = contract_draft

        status = normalize_platform_status(extract_status(payload))
        terminal_status = status if status is not None and status.is_terminal else None
        received_at = self._clock().isoformat()

        def mutation(current: CallRecord) -> CallUpdate | None:
            adds_result = bool(result) and not is_subset({WORKFLOW_RESULT: result}, current.call_metadata)
            adopts_run_id = run_id is not None and current.run_id is None
            advances = terminal_status is not None and can_transition(current.status, terminal_status)
            if not (adds_result or adopts_run_id or advances):
                return None

            return CallUpdate(
                status=terminal_status if advances else None,
                run_id=run_id if adopts_run_id else None,
                error_message=CALLBACK_FAILURE_MESSAGE if terminal_status == CallStatus.FAILED else None,
                metadata={
                    WORKFLOW_RESULT: {**result, "lastCallbackAt": received_at},
                    CALLBACK: {"receivedAt": received_at, "runId": run_id or current.run_id},
                },
                source=StatusSource.CALLBACK,
            )

        record = await self._repository.update_conditional(lookup, mutation)
        if record is None:
            logger.info(
                "Callback for unknown call",
                extra={"callback_call_id": call_id, "run_id": run_id},
            )
            raise CallNotFoundError(call_id=call_id, run_id=None if call_id else run_id)

        logger.info(
            "Callback processed",
            extra={
                "call_id": str(record.id),
                "run_id": record.run_id,
                "status": record.status.value,
                "has_result": bool(result),
            },
        )
        return record
