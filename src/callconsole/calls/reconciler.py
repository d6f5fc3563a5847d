"""
Call status reconciliation.

Runs on every status-list request. For each RUNNING record with a run id:

1. Poll the run directly (when polling credentials exist). A recognised
   platform status settles the record for this pass.
2. When the poll was skipped or inconclusive, and the record is older than
   the grace window, look the record's phone number up in the failed-runs
   feed. A hit marks the record FAILED.
3. Otherwise the record stays RUNNING until the next pass.

Polls for one pass run concurrently (bounded); writes are applied one record
at a time. A failure reconciling one record is logged and does not stop the
others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from callconsole.calls.cache import RefreshingCache
from callconsole.calls.metadata import FAILED_RUN_MATCH
from callconsole.calls.models import CallRecord, as_utc, utc_now
from callconsole.calls.repository import (
    CallLookup,
    CallRecordRepositoryProtocol,
    CallUpdate,
    StatusSource,
)
from callconsole.calls.status import CallStatus, normalize_platform_status
from callconsole.calls.validation import normalize_phone
from callconsole.config import Settings
from callconsole.shared.exceptions import AppException
from callconsole.shared.logging import get_logger
from callconsole.telephony.extraction import find_phone_number
from callconsole.telephony.interface import CallingPlatform, FailedRun, PlatformError

logger = get_logger(__name__)

RECONCILED_FAILURE_MESSAGE = "Call failed upstream (reconciled from failed runs feed)"

FailedRunsCache = RefreshingCache[list[FailedRun]]


@dataclass
class ReconcilerConfig:
    """Configuration for the status reconciler."""

    grace_seconds: float = 60
    lookback_seconds: float = 300
    max_concurrent_polls: int = 5
    # Tolerated clock skew between the platform and us
    skew_seconds: float = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> ReconcilerConfig:
        return cls(
            grace_seconds=settings.reconcile_grace_seconds,
            lookback_seconds=settings.failed_runs_lookback_seconds,
            max_concurrent_polls=settings.reconcile_max_concurrent_polls,
        )


def build_failed_run_index(runs: Sequence[FailedRun]) -> dict[str, FailedRun]:
    """Index failed runs by normalized phone number, keeping the newest run per phone.

    Runs without a timestamp rank below any timestamped run; ties keep feed order.
    """
    index: dict[str, FailedRun] = {}
    for run in runs:
        phone = normalize_phone(find_phone_number(run.data))
        if not phone:
            continue
        current = index.get(phone)
        if current is None or _is_newer(run, current):
            index[phone] = run
    return index


def _is_newer(candidate: FailedRun, current: FailedRun) -> bool:
    if candidate.timestamp is None:
        return False
    if current.timestamp is None:
        return True
    return as_utc(candidate.timestamp) > as_utc(current.timestamp)


class StatusReconciler:
    """Brings RUNNING call records in line with the calling platform."""

    def __init__(
        self,
        repository: CallRecordRepositoryProtocol,
        platform: CallingPlatform,
        failed_runs_cache: FailedRunsCache,
        config: ReconcilerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._platform = platform
        self._cache = failed_runs_cache
        self._config = config or ReconcilerConfig()
        self._clock = clock

    async def reconcile(self, records: Sequence[CallRecord]) -> list[CallRecord]:
        """Reconcile `records` and return them in the same order, updated."""
        candidates = [r for r in records if r.status == CallStatus.RUNNING and r.run_id]
        if not candidates:
            return list(records)

        polled = await self._poll_all(candidates)
        failed_index: dict[str, FailedRun] | None = None
        updated: dict[UUID, CallRecord] = {}

        for record in candidates:
            try:
                status = polled.get(record.id)
                if status is not None:
                    result = await self._apply_poll(record, status)
                elif self._batch_eligible(record):
                    if failed_index is None:
                        failed_index = await self._failed_run_index()
                    result = await self._apply_failed_runs(record, failed_index)
                else:
                    result = record
            except (AppException, SQLAlchemyError):
                logger.exception(
                    "Reconciliation failed for call",
                    extra={"call_id": str(record.id), "run_id": record.run_id},
                )
                continue
            if result is not None:
                updated[record.id] = result

        return [updated.get(r.id, r) for r in records]

    async def _poll_all(self, records: Sequence[CallRecord]) -> dict[UUID, CallStatus | None]:
        if not self._platform.polling_enabled:
            return {}

        semaphore = asyncio.Semaphore(self._config.max_concurrent_polls)

        async def poll(record: CallRecord) -> CallStatus | None:
            async with semaphore:
                return await self._poll(record)

        results = await asyncio.gather(*(poll(r) for r in records), return_exceptions=True)

        statuses: dict[UUID, CallStatus | None] = {}
        for record, outcome in zip(records, results):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Unexpected error polling run",
                    exc_info=outcome,
                    extra={"call_id": str(record.id), "run_id": record.run_id},
                )
                statuses[record.id] = None
            else:
                statuses[record.id] = outcome
        return statuses

    async def _poll(self, record: CallRecord) -> CallStatus | None:
        """Known platform status for the record's run, or None when inconclusive."""
        try:
            result = await self._platform.get_run_status(record.run_id)
        except PlatformError as e:
            logger.warning(
                "Run poll failed; leaving call as is",
                extra={
                    "call_id": str(record.id),
                    "run_id": record.run_id,
                    "error_code": e.error_code,
                    "error": e.message,
                },
            )
            return None

        if result is None:
            return None

        status = normalize_platform_status(result.status)
        if status is None:
            logger.info(
                "Unrecognised platform run status",
                extra={
                    "call_id": str(record.id),
                    "run_id": record.run_id,
                    "platform_status": result.status,
                },
            )
        return status

    async def _apply_poll(self, record: CallRecord, status: CallStatus) -> CallRecord | None:
        if status == record.status:
            return record

        logger.info(
            "Applying polled run status",
            extra={"call_id": str(record.id), "run_id": record.run_id, "status": status.value},
        )
        return await self._repository.update_conditional(
            CallLookup.by_id(record.id),
            lambda current: None
            if current.status == status
            else CallUpdate(status=status, source=StatusSource.POLL),
        )

    def _batch_eligible(self, record: CallRecord) -> bool:
        if not self._platform.reconciliation_enabled:
            return False
        age = self._clock() - as_utc(record.created_at)
        return age > timedelta(seconds=self._config.grace_seconds)

    async def _failed_run_index(self) -> dict[str, FailedRun]:
        runs = await self._cache.get(self._fetch_failed_runs)
        return build_failed_run_index(runs or [])

    async def _fetch_failed_runs(self) -> list[FailedRun]:
        since = self._clock() - timedelta(seconds=self._config.lookback_seconds)
        return await self._platform.list_failed_runs(since)

    async def _apply_failed_runs(
        self,
        record: CallRecord,
        index: dict[str, FailedRun],
    ) -> CallRecord | None:
        phone = normalize_phone(record.phone_number)
        run = index.get(phone)
        if run is None:
            return record

        earliest = as_utc(record.created_at) - timedelta(seconds=self._config.skew_seconds)
        if run.timestamp is not None and run.timestamp < earliest:
            logger.info(
                "Ignoring failed run older than call",
                extra={
                    "call_id": str(record.id),
                    "failed_run_id": run.run_id,
                    "run_timestamp": run.timestamp.isoformat(),
                },
            )
            return record

        match = {
            "runId": run.run_id,
            "matchedAt": self._clock().isoformat(),
            "runTimestamp": run.timestamp.isoformat() if run.timestamp else None,
            "phoneNumber": phone,
        }
        logger.info(
            "Call matched a failed run",
            extra={"call_id": str(record.id), "run_id": record.run_id, "failed_run_id": run.run_id},
        )
        return await self._repository.update_conditional(
            CallLookup.by_id(record.id),
            lambda current: None
            if current.status.is_terminal
            else CallUpdate(
                status=CallStatus.FAILED,
                error_message=RECONCILED_FAILURE_MESSAGE,
                metadata={FAILED_RUN_MATCH: match},
                source=StatusSource.FAILED_RUNS,
            ),
        )
