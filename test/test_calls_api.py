"""
API tests for the calls router.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from uuid import UUID, uuid4

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from callconsole.calls.models import CallRecord
from callconsole.calls.status import CallStatus
from callconsole.telephony.config import PlatformConfig, get_platform_config
from callconsole.telephony.interface import PlatformRequestError
from callconsole.telephony.mock_adapter import MockCallingPlatform

MakeCall = Callable[..., Awaitable[CallRecord]]


class TestHealthAndAuth:
    @pytest.mark.asyncio
    async def test_health(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_request_id_generated_when_absent(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health")

        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("POST", "/api/calls/trigger"),
            ("GET", "/api/calls/status"),
            ("GET", "/api/calls"),
            ("GET", f"/api/calls/{uuid4()}"),
        ],
    )
    async def test_requires_bearer_token(self, api_client: AsyncClient, method: str, path: str) -> None:
        response = await api_client.request(method, path, json={})

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "MISSING_CREDENTIALS"


class TestTriggerEndpoint:
    @pytest.mark.asyncio
    async def test_trigger_created(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        platform: MockCallingPlatform,
    ) -> None:
        platform.start_response = {"queued_run_ids": ["run_abc"]}

        response = await api_client.post(
            "/api/calls/trigger",
            json={"subjectName": "Jane Doe", "phoneNumber": "+34612345678"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "RUNNING"
        assert data["runId"] == "run_abc"
        assert data["subjectName"] == "Jane Doe"
        assert data["user"]["email"] == "agent@example.com"
        assert data["metadata"]["lead"]["phoneNumber"] == "+34612345678"
        assert platform.started[0].callback_url == "https://console.example.com/api/calls/callback"

    @pytest.mark.asyncio
    async def test_invalid_request_is_recorded(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        platform: MockCallingPlatform,
    ) -> None:
        response = await api_client.post(
            "/api/calls/trigger",
            json={"subjectName": "", "phoneNumber": "612345678"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_ERROR"
        assert {e["field"] for e in detail["errors"]} == {"subjectName", "phoneNumber"}
        assert platform.started == []

        stored = await api_client.get(f"/api/calls/{detail['call_id']}", headers=auth_headers)
        assert stored.status_code == 200
        assert stored.json()["status"] == "FAILED"

    @pytest.mark.asyncio
    async def test_platform_failure_returns_bad_gateway(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        platform: MockCallingPlatform,
    ) -> None:
        platform.start_error = PlatformRequestError("Start run timed out after 10.0s", "TIMEOUT")

        response = await api_client.post(
            "/api/calls/trigger",
            json={"subjectName": "Jane Doe", "phoneNumber": "+34612345678"},
            headers=auth_headers,
        )

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["code"] == "PLATFORM_ERROR"
        assert detail["platform_error_code"] == "TIMEOUT"

        stored = await api_client.get(f"/api/calls/{detail['call_id']}", headers=auth_headers)
        assert stored.json()["status"] == "FAILED"
        assert "timed out" in stored.json()["errorMessage"]


class TestReadEndpoints:
    @pytest.mark.asyncio
    async def test_get_call(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        make_call: MakeCall,
    ) -> None:
        record = await make_call(run_id="run_get")

        response = await api_client.get(f"/api/calls/{record.id}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert UUID(data["id"]) == record.id
        assert data["runId"] == "run_get"
        assert data["completedAt"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("call_id", [str(uuid4()), "not-a-uuid"])
    async def test_get_call_not_found(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        call_id: str,
    ) -> None:
        response = await api_client.get(f"/api/calls/{call_id}", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "CALL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_paginates_and_filters(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        make_call: MakeCall,
    ) -> None:
        for i in range(3):
            await make_call(run_id=f"r{i}", subject_name=f"Lead {i}", age_seconds=100 - i)
        await make_call(run_id="done", subject_name="Closed", status=CallStatus.COMPLETED)

        page = await api_client.get(
            "/api/calls",
            params={"page": 1, "page_size": 2},
            headers=auth_headers,
        )
        assert page.status_code == 200
        data = page.json()
        assert data["total"] == 4
        assert data["pages"] == 2
        assert data["pageSize"] == 2
        assert len(data["items"]) == 2

        filtered = await api_client.get(
            "/api/calls",
            params={"status": "completed", "search": "clo"},
            headers=auth_headers,
        )
        assert [item["subjectName"] for item in filtered.json()["items"]] == ["Closed"]

        unknown = await api_client.get("/api/calls", params={"status": "bogus"}, headers=auth_headers)
        assert unknown.json()["total"] == 4

    @pytest.mark.asyncio
    async def test_page_size_is_capped(self, api_client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await api_client.get("/api/calls", params={"page_size": 500}, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_status_list_reconciles(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        make_call: MakeCall,
        platform: MockCallingPlatform,
    ) -> None:
        await make_call(run_id="run_old", age_seconds=60)
        await make_call(run_id="run_new", age_seconds=5)
        platform.run_statuses["run_new"] = "completed"

        response = await api_client.get("/api/calls/status", headers=auth_headers)

        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["runId"] for item in items] == ["run_new", "run_old"]
        assert items[0]["status"] == "COMPLETED"
        assert items[0]["completedAt"] is not None
        assert items[1]["status"] == "RUNNING"

    @pytest.mark.asyncio
    async def test_status_list_limit(
        self,
        api_client: AsyncClient,
        auth_headers: dict[str, str],
        make_call: MakeCall,
    ) -> None:
        for i in range(3):
            await make_call(run_id=f"r{i}", age_seconds=i)

        response = await api_client.get("/api/calls/status", params={"limit": 2}, headers=auth_headers)

        assert [item["runId"] for item in response.json()["items"]] == ["r0", "r1"]


class TestCallbackEndpoint:
    @pytest.mark.asyncio
    async def test_callback_without_auth_header(
        self,
        api_client: AsyncClient,
        make_call: MakeCall,
    ) -> None:
        record = await make_call()

        response = await api_client.post(
            "/api/calls/callback",
            json={
                "context": {"source": {"call_id": str(record.id)}},
                "status": "completed",
                "result": {"summary": "Renewal agreed"},
            },
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True, "callId": str(record.id), "status": "COMPLETED"}

    @pytest.mark.asyncio
    async def test_callback_secret_enforced(
        self,
        api_client: AsyncClient,
        app: FastAPI,
        make_call: MakeCall,
        platform_config: PlatformConfig,
    ) -> None:
        record = await make_call()
        secured = platform_config.model_copy(update={"callback_secret": "cb-secret"})
        app.dependency_overrides[get_platform_config] = lambda: secured
        payload = {"call_id": str(record.id), "status": "completed"}

        rejected = await api_client.post("/api/calls/callback", json=payload)
        wrong = await api_client.post(
            "/api/calls/callback",
            json=payload,
            headers={"X-Callback-Secret": "nope"},
        )
        accepted = await api_client.post(
            "/api/calls/callback",
            json=payload,
            headers={"X-Callback-Secret": "cb-secret"},
        )

        assert rejected.status_code == 401
        assert rejected.json()["detail"]["code"] == "INVALID_CALLBACK_SECRET"
        assert wrong.status_code == 401
        assert accepted.status_code == 200

    @pytest.mark.asyncio
    async def test_malformed_json(self, api_client: AsyncClient) -> None:
        response = await api_client.post(
            "/api/calls/callback",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_CALLBACK_PAYLOAD"

    @pytest.mark.asyncio
    async def test_missing_ids(self, api_client: AsyncClient) -> None:
        response = await api_client.post("/api/calls/callback", json={"status": "completed"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MISSING_CORRELATION_ID"

    @pytest.mark.asyncio
    async def test_unknown_call(self, api_client: AsyncClient) -> None:
        response = await api_client.post(
            "/api/calls/callback",
            json={"run_id": "run_nobody", "status": "completed"},
        )

        assert response.status_code == 404
        assert response.json()["detail"]["run_id"] == "run_nobody"
