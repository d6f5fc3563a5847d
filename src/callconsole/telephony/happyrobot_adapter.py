"""
HappyRobot calling platform adapter.

- start run: POST to the workflow trigger endpoint
- poll run: GET /runs/{run_id} with the polling secret + organization id
- failed runs: GET /runs filtered by use case and `failed` status, paginated
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from callconsole.shared.correlation import inject_correlation_headers
from callconsole.shared.logging import get_logger
from callconsole.telephony.config import PlatformConfig, get_platform_config
from callconsole.telephony.extraction import (
    extract_run_id,
    extract_run_items,
    extract_status,
    to_failed_run,
)
from callconsole.telephony.interface import (
    CallingPlatform,
    FailedRun,
    PlatformNotConfiguredError,
    PlatformRequestError,
    PlatformResponseError,
    RunStatusResult,
    StartRunRequest,
    StartRunResponse,
)

logger = get_logger(__name__)

_ERROR_BODY_LIMIT = 500


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"text": response.text[:_ERROR_BODY_LIMIT]}
    return data if isinstance(data, dict) else {"body": data}


class HappyRobotAdapter(CallingPlatform):
    """HappyRobot platform adapter over httpx.

    Every request is bounded by the configured timeout. No retries happen
    here; callers decide what a failure means.
    """

    def __init__(
        self,
        config: PlatformConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_platform_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def polling_enabled(self) -> bool:
        return self._config.polling_enabled

    @property
    def reconciliation_enabled(self) -> bool:
        return self._config.reconciliation_enabled

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _send(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> Any:
        """Send one request and return the decoded JSON body (or {} when empty)."""
        client = self._get_client()
        kwargs["headers"] = inject_correlation_headers(dict(kwargs.get("headers") or {}))
        try:
            response = await client.request(
                method,
                url,
                timeout=self._config.request_timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise PlatformRequestError(
                message=f"{operation} timed out after {self._config.request_timeout_seconds}s",
                error_code="TIMEOUT",
            ) from e
        except httpx.HTTPError as e:
            raise PlatformRequestError(
                message=f"{operation} request failed: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            body = _error_body(response)
            raise PlatformResponseError(
                message=f"{operation} returned {response.status_code}: {body}",
                status_code=response.status_code,
                provider_response=body,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PlatformResponseError(
                message=f"{operation} returned a non-JSON body",
                status_code=response.status_code,
                provider_response={"text": response.text[:_ERROR_BODY_LIMIT]},
            ) from e

    async def start_run(self, request: StartRunRequest) -> StartRunResponse:
        """Start an outbound call run."""
        if not self._config.start_enabled:
            raise PlatformNotConfiguredError(
                message="Calling platform endpoint not configured",
                error_code="NOT_CONFIGURED",
            )

        payload: dict[str, Any] = {
            "phone_number": request.phone_number,
            "context": request.context,
        }
        if request.callback_url:
            payload["callback_url"] = request.callback_url
        if request.email_context:
            payload["email_context"] = request.email_context

        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key

        logger.info(
            "Starting platform run",
            extra={
                "call_id": request.call_id,
                "has_callback_url": bool(request.callback_url),
                "api_key_configured": bool(self._config.api_key),
            },
        )

        data = await self._send(
            "POST",
            self._config.endpoint,
            "Start run",
            json=payload,
            headers=headers,
        )
        body = data if isinstance(data, dict) else {"body": data}
        run_id = extract_run_id(body)

        if run_id is None:
            logger.warning(
                "Start-run response carried no run id",
                extra={"call_id": request.call_id, "response_keys": sorted(body.keys())},
            )

        return StartRunResponse(run_id=run_id, raw_response=body)

    async def get_run_status(self, run_id: str) -> RunStatusResult | None:
        """Poll a run's platform-native status."""
        if not self._config.polling_enabled:
            logger.debug("Run polling not configured; skipping", extra={"run_id": run_id})
            return None

        data = await self._send(
            "GET",
            self._config.get_api_url(f"/runs/{run_id}"),
            "Poll run",
            headers={
                "Authorization": f"Bearer {self._config.polling_secret}",
                "X-Organization-Id": self._config.org_id,
            },
        )
        body = data if isinstance(data, dict) else {"body": data}
        return RunStatusResult(run_id=run_id, status=extract_status(body), raw_response=body)

    async def list_failed_runs(self, since: datetime) -> list[FailedRun]:
        """Fetch failed runs newer than `since`, following pages up to the configured cap."""
        if not self._config.reconciliation_enabled:
            raise PlatformNotConfiguredError(
                message="Failed-runs reconciliation not configured",
                error_code="NOT_CONFIGURED",
            )

        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        headers = {"Authorization": f"Bearer {self._config.reconcile_token}"}
        if self._config.org_id:
            headers["X-Organization-Id"] = self._config.org_id

        page_size = self._config.failed_runs_page_size
        runs: list[FailedRun] = []

        for page in range(1, self._config.failed_runs_max_pages + 1):
            data = await self._send(
                "GET",
                self._config.get_api_url("/runs"),
                "List failed runs",
                params={
                    "use_case_id": self._config.use_case_id,
                    "status": "failed",
                    "page": page,
                    "page_size": page_size,
                    "start": since.isoformat(),
                },
                headers=headers,
            )
            items = extract_run_items(data)
            reached_window_end = False
            for item in items:
                run = to_failed_run(item)
                if run.timestamp is not None and run.timestamp < since:
                    reached_window_end = True
                    continue
                runs.append(run)

            if len(items) < page_size or reached_window_end:
                break

        logger.info(
            "Fetched failed runs",
            extra={"count": len(runs), "since": since.isoformat()},
        )
        return runs
