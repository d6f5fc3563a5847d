"""
Calling platform interface definition.

The platform runs AI phone-call workflows. We consume three operations from it:
start a run, poll a run by id, and list recently failed runs. None of their
response shapes are trusted blindly; see `telephony.extraction`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class StartRunRequest:
    """Request to start an outbound call run."""

    phone_number: str
    call_id: str
    subject_name: str
    callback_url: str | None = None
    email_context: str | None = None

    @property
    def context(self) -> dict[str, Any]:
        """Correlation context echoed back verbatim by the platform in callbacks."""
        return {
            "source": {
                "call_id": self.call_id,
                "subject_name": self.subject_name,
            }
        }


@dataclass(frozen=True)
class StartRunResponse:
    """Response from a start-run call."""

    run_id: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunStatusResult:
    """Platform-native status of a single run."""

    run_id: str
    status: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FailedRun:
    """Summary of a run the platform reports as failed."""

    run_id: str | None
    timestamp: datetime | None
    data: dict[str, Any] = field(default_factory=dict)


class PlatformError(Exception):
    """Base exception for calling platform errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider_response = provider_response or {}


class PlatformNotConfiguredError(PlatformError):
    """The capability needs configuration that is missing."""


class PlatformRequestError(PlatformError):
    """Transport failure: connection error or timeout."""


class PlatformResponseError(PlatformError):
    """The platform answered with a non-success status code."""

    def __init__(
        self,
        message: str,
        status_code: int,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, str(status_code), provider_response)
        self.status_code = status_code


class CallingPlatform(ABC):
    """Abstract interface for the external calling platform."""

    @property
    @abstractmethod
    def polling_enabled(self) -> bool:
        """Whether direct run polling is configured."""
        ...

    @property
    @abstractmethod
    def reconciliation_enabled(self) -> bool:
        """Whether the failed-runs feed is configured."""
        ...

    @abstractmethod
    async def start_run(self, request: StartRunRequest) -> StartRunResponse:
        """Start an outbound call run.

        Raises:
            PlatformError: If the run could not be started.
        """
        ...

    @abstractmethod
    async def get_run_status(self, run_id: str) -> RunStatusResult | None:
        """Poll one run. Returns None when polling is not configured.

        Raises:
            PlatformError: On transport failure or non-success response.
        """
        ...

    @abstractmethod
    async def list_failed_runs(self, since: datetime) -> list[FailedRun]:
        """List runs that failed since `since`.

        Raises:
            PlatformNotConfiguredError: If reconciliation credentials are missing.
            PlatformError: On transport failure or non-success response.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
