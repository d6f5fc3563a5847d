"""
Tests for platform callback processing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from uuid import uuid4

import pytest

from callconsole.calls.callback import (
    CALLBACK_FAILURE_MESSAGE,
    CallbackReceiver,
    verify_callback_secret,
)
from callconsole.calls.models import CallRecord, as_utc
from callconsole.calls.repository import CallRecordRepository
from callconsole.calls.status import CallStatus
from callconsole.shared.exceptions import CallbackAuthError, CallNotFoundError, ValidationError
from conftest import FrozenClock

MakeCall = Callable[..., Awaitable[CallRecord]]


@pytest.fixture
def receiver(repository: CallRecordRepository, clock: FrozenClock) -> CallbackReceiver:
    return CallbackReceiver(repository=repository, clock=clock)


def completed_payload(call_id: str, run_id: str = "run_abc", **extra) -> dict:
    return {
        "run_id": run_id,
        "status": "completed",
        "context": {"source": {"call_id": call_id}},
        "result": {"summary": "Customer agreed to renew", "contract_draft": "Draft v1"},
        **extra,
    }


class TestCallbackResults:
    @pytest.mark.asyncio
    async def test_completed_callback_stores_result(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
        clock: FrozenClock,
    ) -> None:
        record = await make_call()
        clock.advance(45)

        updated = await receiver.handle(completed_payload(str(record.id)))

        assert updated.status == CallStatus.COMPLETED
        assert as_utc(updated.completed_at) == clock()
        assert updated.call_metadata["workflowResult"] == {
            "summary": "Customer agreed to renew",
            "contractDraft": "Draft v1",
            "lastCallbackAt": clock().isoformat(),
        }
        assert updated.call_metadata["callback"] == {
            "receivedAt": clock().isoformat(),
            "runId": "run_abc",
        }
        assert updated.call_metadata["statusProvenance"]["source"] == "callback"

    @pytest.mark.asyncio
    async def test_redelivery_is_a_no_op(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
        clock: FrozenClock,
    ) -> None:
        record = await make_call()
        payload = completed_payload(str(record.id))

        first = await receiver.handle(payload)
        version = first.version
        clock.advance(120)
        second = await receiver.handle(payload)

        assert second.version == version
        assert second.status == CallStatus.COMPLETED
        assert second.call_metadata == first.call_metadata

    @pytest.mark.asyncio
    async def test_result_after_terminal_status_is_kept(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        record = await make_call(status=CallStatus.FAILED)

        updated = await receiver.handle(completed_payload(str(record.id)))

        assert updated.status == CallStatus.FAILED
        assert updated.call_metadata["workflowResult"]["summary"] == "Customer agreed to renew"

    @pytest.mark.asyncio
    async def test_flat_payload_shapes(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        record = await make_call()

        updated = await receiver.handle(
            {"callId": str(record.id), "summary": "Short call", "contractDraft": "Draft"}
        )

        assert updated.status == CallStatus.RUNNING
        assert updated.call_metadata["workflowResult"]["summary"] == "Short call"
        assert updated.call_metadata["workflowResult"]["contractDraft"] == "Draft"
        assert updated.call_metadata["callback"]["runId"] == "run_abc"

    @pytest.mark.asyncio
    async def test_failed_status_sets_error_message(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        record = await make_call()

        updated = await receiver.handle(
            {"call_id": str(record.id), "run_id": "run_abc", "status": "FAILED"}
        )

        assert updated.status == CallStatus.FAILED
        assert updated.error_message == CALLBACK_FAILURE_MESSAGE
        assert updated.completed_at is not None

    @pytest.mark.asyncio
    async def test_non_terminal_status_is_ignored(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        record = await make_call(status=CallStatus.PENDING, run_id=None)

        updated = await receiver.handle({"call_id": str(record.id), "status": "running"})

        assert updated.status == CallStatus.PENDING
        assert updated.version == record.version


class TestCorrelation:
    @pytest.mark.asyncio
    async def test_falls_back_to_run_id(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        record = await make_call(run_id="run_xyz")

        updated = await receiver.handle({"run_id": "run_xyz", "status": "completed"})

        assert updated.id == record.id
        assert updated.status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_adopts_run_id_when_missing(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        record = await make_call(run_id=None)

        updated = await receiver.handle({"call_id": str(record.id), "run_id": "run_late"})

        assert updated.run_id == "run_late"

    @pytest.mark.asyncio
    async def test_call_id_wins_over_run_id(
        self,
        receiver: CallbackReceiver,
        make_call: MakeCall,
    ) -> None:
        first = await make_call(run_id="run_1")
        second = await make_call(run_id="run_2")

        updated = await receiver.handle(
            {"call_id": str(second.id), "run_id": "run_1", "status": "completed"}
        )

        assert updated.id == second.id
        assert updated.run_id == "run_2"
        assert first.status == CallStatus.RUNNING

    @pytest.mark.asyncio
    async def test_missing_correlation_ids(self, receiver: CallbackReceiver) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await receiver.handle({"status": "completed"})

        assert exc_info.value.code == "MISSING_CORRELATION_ID"

    @pytest.mark.asyncio
    async def test_non_object_body(self, receiver: CallbackReceiver) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await receiver.handle(["not", "an", "object"])

        assert exc_info.value.code == "INVALID_CALLBACK_PAYLOAD"

    @pytest.mark.asyncio
    async def test_unknown_call(self, receiver: CallbackReceiver, make_call: MakeCall) -> None:
        await make_call()
        missing = str(uuid4())

        with pytest.raises(CallNotFoundError) as exc_info:
            await receiver.handle({"call_id": missing, "status": "completed"})

        assert exc_info.value.details["call_id"] == missing

    @pytest.mark.asyncio
    async def test_malformed_call_id_is_not_found(self, receiver: CallbackReceiver) -> None:
        with pytest.raises(CallNotFoundError):
            await receiver.handle({"call_id": "not-a-uuid", "status": "completed"})


class TestVerifyCallbackSecret:
    def test_no_secret_configured(self) -> None:
        verify_callback_secret(None, "")
        verify_callback_secret("anything", None)

    def test_matching_secret(self) -> None:
        verify_callback_secret("s3cret", "s3cret")

    @pytest.mark.parametrize("provided", [None, "", "wrong"])
    def test_rejects_missing_or_wrong(self, provided: str | None) -> None:
        with pytest.raises(CallbackAuthError) as exc_info:
            verify_callback_secret(provided, "s3cret")

        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "INVALID_CALLBACK_SECRET"
