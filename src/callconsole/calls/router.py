"""
API router for outbound calls.
"""

from math import ceil
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from callconsole.auth.middleware import CurrentUserDep
from callconsole.calls.cache import RefreshingCache
from callconsole.calls.callback import CALLBACK_SECRET_HEADERS, CallbackReceiver, verify_callback_secret
from callconsole.calls.reconciler import FailedRunsCache, ReconcilerConfig, StatusReconciler
from callconsole.calls.repository import CallFilter, CallLookup, CallRecordRepository
from callconsole.calls.schemas import (
    CallbackAck,
    CallListResponse,
    CallResponse,
    CallStatusListResponse,
    TriggerCallRequest,
)
from callconsole.calls.status import CallStatus
from callconsole.calls.trigger import TriggerService
from callconsole.config import Settings, get_settings
from callconsole.shared.database import get_db_session
from callconsole.shared.exceptions import CallNotFoundError, ValidationError
from callconsole.shared.logging import get_logger
from callconsole.telephony.config import PlatformConfig, get_platform_config
from callconsole.telephony.factory import get_calling_platform
from callconsole.telephony.interface import CallingPlatform

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


def get_call_repository(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CallRecordRepository:
    """Dependency for the call record repository."""
    return CallRecordRepository(session=session)


def get_failed_runs_cache(request: Request) -> FailedRunsCache:
    """Process-wide failed-runs cache held on the application state."""
    cache = getattr(request.app.state, "failed_runs_cache", None)
    if cache is None:
        cache = RefreshingCache(ttl_seconds=get_settings().failed_runs_cache_seconds)
        request.app.state.failed_runs_cache = cache
    return cache


def get_trigger_service(
    repository: Annotated[CallRecordRepository, Depends(get_call_repository)],
    platform: Annotated[CallingPlatform, Depends(get_calling_platform)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TriggerService:
    """Dependency for the trigger service."""
    return TriggerService(
        repository=repository,
        platform=platform,
        callback_url=settings.callback_url,
    )


def get_status_reconciler(
    repository: Annotated[CallRecordRepository, Depends(get_call_repository)],
    platform: Annotated[CallingPlatform, Depends(get_calling_platform)],
    cache: Annotated[FailedRunsCache, Depends(get_failed_runs_cache)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StatusReconciler:
    """Dependency for the status reconciler."""
    return StatusReconciler(
        repository=repository,
        platform=platform,
        failed_runs_cache=cache,
        config=ReconcilerConfig.from_settings(settings),
    )


def get_callback_receiver(
    repository: Annotated[CallRecordRepository, Depends(get_call_repository)],
) -> CallbackReceiver:
    """Dependency for the callback receiver."""
    return CallbackReceiver(repository=repository)


@router.post(
    "/trigger",
    response_model=CallResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Trigger an outbound call",
    description="Validate the request, record the call and start a platform run. "
    "Invalid requests are recorded as FAILED and rejected with 400.",
)
async def trigger_call(
    body: TriggerCallRequest,
    current_user: CurrentUserDep,
    service: Annotated[TriggerService, Depends(get_trigger_service)],
) -> CallResponse:
    logger.info(
        "Trigger call requested",
        extra={"user_id": str(current_user.id)},
    )
    record = await service.trigger(
        subject_name=body.subject_name,
        phone_number=body.phone_number,
        email_thread=body.email_thread,
        user_id=current_user.id,
    )
    return CallResponse.from_record(record)


@router.get(
    "/status",
    response_model=CallStatusListResponse,
    summary="Most recent calls, reconciled",
    description="Reconcile RUNNING calls with the platform, then return the most recent calls.",
)
async def list_call_status(
    current_user: CurrentUserDep,
    repository: Annotated[CallRecordRepository, Depends(get_call_repository)],
    reconciler: Annotated[StatusReconciler, Depends(get_status_reconciler)],
    settings: Annotated[Settings, Depends(get_settings)],
    limit: Annotated[int | None, Query(ge=1, le=200, description="Number of calls")] = None,
) -> CallStatusListResponse:
    records = await repository.list_recent(limit or settings.status_list_limit)
    records = await reconciler.reconcile(records)
    return CallStatusListResponse(items=[CallResponse.from_record(r) for r in records])


@router.get(
    "",
    response_model=CallListResponse,
    summary="List calls",
    description="Paginated call history with free-text search on subject name or phone.",
)
async def list_calls(
    current_user: CurrentUserDep,
    repository: Annotated[CallRecordRepository, Depends(get_call_repository)],
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 20,
    search: Annotated[str | None, Query(description="Subject name or phone substring")] = None,
    status_filter: Annotated[str | None, Query(alias="status", description="Call status")] = None,
) -> CallListResponse:
    call_status: CallStatus | None = None
    if status_filter:
        try:
            call_status = CallStatus(status_filter.strip().upper())
        except ValueError:
            # Unknown status values do not filter
            logger.debug("Ignoring unknown status filter", extra={"status": status_filter})

    records, total = await repository.list_page(
        CallFilter(search=search, status=call_status),
        page=page,
        page_size=page_size,
    )
    return CallListResponse(
        items=[CallResponse.from_record(r) for r in records],
        total=total,
        page=page,
        page_size=page_size,
        pages=ceil(total / page_size) if total else 0,
    )


@router.post(
    "/callback",
    response_model=CallbackAck,
    status_code=status.HTTP_200_OK,
    summary="Calling platform callback",
    description="Receives run results from the calling platform. "
    "Protected by a shared secret header when one is configured.",
)
async def receive_callback(
    request: Request,
    receiver: Annotated[CallbackReceiver, Depends(get_callback_receiver)],
    platform_config: Annotated[PlatformConfig, Depends(get_platform_config)],
) -> CallbackAck:
    provided = next(
        (request.headers[h] for h in CALLBACK_SECRET_HEADERS if request.headers.get(h)),
        None,
    )
    verify_callback_secret(provided, platform_config.callback_secret)

    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError(
            "Callback body is not valid JSON",
            code="INVALID_CALLBACK_PAYLOAD",
        ) from e

    record = await receiver.handle(payload)
    return CallbackAck(call_id=record.id, status=record.status)


@router.get(
    "/{call_id}",
    response_model=CallResponse,
    summary="Get call",
)
async def get_call(
    call_id: str,
    current_user: CurrentUserDep,
    repository: Annotated[CallRecordRepository, Depends(get_call_repository)],
) -> CallResponse:
    record = await repository.get(CallLookup.by_id(call_id))
    if record is None:
        raise CallNotFoundError(call_id=call_id)
    return CallResponse.from_record(record)
