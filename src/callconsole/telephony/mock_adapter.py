"""
In-memory calling platform for local development and tests.

Does not touch the network. Run statuses and the failed-runs feed are
scripted through plain attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from itertools import count

from callconsole.telephony.extraction import extract_run_id
from callconsole.telephony.interface import (
    CallingPlatform,
    FailedRun,
    PlatformError,
    PlatformNotConfiguredError,
    RunStatusResult,
    StartRunRequest,
    StartRunResponse,
)


@dataclass
class MockCallingPlatform(CallingPlatform):
    """Scriptable platform double.

    - `start_error`: raised by `start_run` when set
    - `run_statuses`: run_id -> platform-native status returned by polls
    - `poll_errors`: run_id -> exception raised by polls for that run
    - `failed_runs` / `failed_runs_error`: the failed-runs feed
    """

    polling: bool = True
    reconciliation: bool = True
    start_error: PlatformError | None = None
    start_response: dict | None = None
    run_statuses: dict[str, str] = field(default_factory=dict)
    poll_errors: dict[str, Exception] = field(default_factory=dict)
    failed_runs: list[FailedRun] = field(default_factory=list)
    failed_runs_error: Exception | None = None

    started: list[StartRunRequest] = field(default_factory=list)
    polled: list[str] = field(default_factory=list)
    failed_runs_calls: int = 0
    _ids: count = field(default_factory=lambda: count(1), repr=False)

    @property
    def polling_enabled(self) -> bool:
        return self.polling

    @property
    def reconciliation_enabled(self) -> bool:
        return self.reconciliation

    async def start_run(self, request: StartRunRequest) -> StartRunResponse:
        self.started.append(request)
        if self.start_error is not None:
            raise self.start_error
        if self.start_response is not None:
            return StartRunResponse(
                run_id=extract_run_id(self.start_response),
                raw_response=dict(self.start_response),
            )
        run_id = f"mock_run_{next(self._ids):06d}"
        return StartRunResponse(run_id=run_id, raw_response={"queued_run_ids": [run_id]})

    async def get_run_status(self, run_id: str) -> RunStatusResult | None:
        if not self.polling:
            return None
        self.polled.append(run_id)
        error = self.poll_errors.get(run_id)
        if error is not None:
            raise error
        status = self.run_statuses.get(run_id, "running")
        return RunStatusResult(run_id=run_id, status=status, raw_response={"status": status})

    async def list_failed_runs(self, since: datetime) -> list[FailedRun]:
        if not self.reconciliation:
            raise PlatformNotConfiguredError("Failed-runs reconciliation not configured")
        self.failed_runs_calls += 1
        if self.failed_runs_error is not None:
            raise self.failed_runs_error
        return [run for run in self.failed_runs if run.timestamp is None or run.timestamp >= since]
