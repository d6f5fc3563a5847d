"""
Repository for call record database operations.

Every status, run-id and metadata change goes through `update_conditional`,
which re-reads the row, lets the caller compute a change against that fresh
state, enforces the record invariants and writes with a compare-and-swap on
`version`. Concurrent writers (trigger, poll, callback, failed-runs match)
therefore never undo each other:

- status only moves forward; terminal records keep their status and
  `completed_at`
- `run_id` is set once and never replaced
- metadata patches are deep-merged into the stored document
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from callconsole.calls.metadata import STATUS_PROVENANCE, deep_merge, is_subset
from callconsole.calls.models import CallRecord, utc_now
from callconsole.calls.status import CallStatus, can_transition
from callconsole.shared.exceptions import ConcurrentUpdateError
from callconsole.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


class StatusSource(str, Enum):
    """Which writer produced a status change (kept in metadata.statusProvenance)."""

    TRIGGER = "trigger"
    POLL = "poll"
    CALLBACK = "callback"
    FAILED_RUNS = "failed_runs"


@dataclass(frozen=True)
class CallLookup:
    """Locate a record by internal id or by platform run id."""

    id: UUID | None = None
    run_id: str | None = None

    @classmethod
    def by_id(cls, value: UUID | str) -> "CallLookup":
        if isinstance(value, UUID):
            return cls(id=value)
        try:
            return cls(id=UUID(str(value).strip()))
        except ValueError:
            # Malformed ids match nothing
            return cls()

    @classmethod
    def by_run_id(cls, run_id: str) -> "CallLookup":
        return cls(run_id=run_id.strip() or None)

    @property
    def is_empty(self) -> bool:
        return self.id is None and self.run_id is None


@dataclass(frozen=True)
class CallUpdate:
    """Requested change to a call record.

    Everything is optional. The repository decides what actually lands:
    a status that is not ahead of the current one is dropped (together with
    its `error_message`), a `run_id` is only adopted when none is stored yet,
    and `metadata` is merged rather than assigned.
    """

    status: CallStatus | None = None
    run_id: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    source: StatusSource | None = None


Mutation = Callable[[CallRecord], CallUpdate | None]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class CallFilter:
    """Filters for the paginated call list."""

    search: str | None = None
    status: CallStatus | None = None


class CallRecordRepositoryProtocol(Protocol):
    """Protocol for call record repository operations."""

    async def create(self, **fields: Any) -> CallRecord:
        """Insert a new call record."""
        ...

    async def get(self, lookup: CallLookup) -> CallRecord | None:
        """Get a call record by id or run id."""
        ...

    async def update_conditional(self, lookup: CallLookup, mutation: Mutation) -> CallRecord | None:
        """Apply `mutation` to the current state of a record."""
        ...

    async def list_page(
        self,
        filters: CallFilter,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[Sequence[CallRecord], int]:
        """List call records with pagination."""
        ...

    async def list_recent(self, limit: int = 20) -> Sequence[CallRecord]:
        """Most recently created call records."""
        ...


class CallRecordRepository:
    """Repository for call record database operations."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
            clock: Source of "now" for timestamps.
            max_attempts: Compare-and-swap attempts before giving up.
        """
        self._session = session
        self._clock = clock
        self._max_attempts = max_attempts

    async def create(self, **fields: Any) -> CallRecord:
        """Insert a new call record and commit.

        Terminal records get `completed_at` stamped here so the invariant
        holds from the first write.

        Returns:
            The persisted record.
        """
        now = self._clock()
        fields.setdefault("status", CallStatus.PENDING)
        fields.setdefault("call_metadata", {})
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        if fields["status"].is_terminal:
            fields.setdefault("completed_at", now)

        record = CallRecord(**fields)
        self._session.add(record)
        await self._session.flush()
        await self._session.commit()

        logger.info(
            "Call record created",
            extra={"call_id": str(record.id), "status": record.status.value},
        )
        return await self._load(CallLookup.by_id(record.id))

    async def get(self, lookup: CallLookup) -> CallRecord | None:
        """Get a call record by id or run id.

        Args:
            lookup: Internal id or run id.

        Returns:
            CallRecord if found, None otherwise.
        """
        return await self._load(lookup)

    async def update_conditional(self, lookup: CallLookup, mutation: Mutation) -> CallRecord | None:
        """Read, mutate, compare-and-swap; repeat on conflict.

        Args:
            lookup: Record to update.
            mutation: Pure function of the freshly read record. Returns the
                change to apply or None for no change. It may run more than
                once when the row changes underneath it.

        Returns:
            The record after the update (unchanged when nothing applied),
            or None when the record does not exist.

        Raises:
            ConcurrentUpdateError: If every attempt lost the race.
        """
        for attempt in range(1, self._max_attempts + 1):
            record = await self._load(lookup)
            if record is None:
                return None

            change = mutation(record)
            if change is None:
                return record

            values = self._plan(record, change)
            if values is None:
                return record

            expected_version = record.version
            values[CallRecord.version] = expected_version + 1
            stmt = (
                update(CallRecord)
                .where(CallRecord.id == record.id, CallRecord.version == expected_version)
                .values(values)
                .execution_options(synchronize_session=False)
            )
            try:
                result = await self._session.execute(stmt)
                if result.rowcount == 1:
                    await self._session.commit()
            except SQLAlchemyError:
                await self._session.rollback()
                raise

            if result.rowcount == 1:
                logger.debug(
                    "Call record updated",
                    extra={
                        "call_id": str(record.id),
                        "version": expected_version + 1,
                        "source": change.source.value if change.source else None,
                    },
                )
                return await self._load(CallLookup.by_id(record.id))

            logger.info(
                "Concurrent change detected; retrying",
                extra={"call_id": str(record.id), "attempt": attempt},
            )

        raise ConcurrentUpdateError(lookup.id or lookup.run_id, self._max_attempts)

    def _plan(self, record: CallRecord, change: CallUpdate) -> dict[Any, Any] | None:
        """Column values to write for `change`, or None when nothing changes."""
        now = self._clock()
        values: dict[Any, Any] = {}
        patch: dict[str, Any] = dict(change.metadata)

        if change.status is not None and change.status != record.status:
            if can_transition(record.status, change.status):
                values[CallRecord.status] = change.status
                if change.status.is_terminal and record.completed_at is None:
                    values[CallRecord.completed_at] = now
                if change.error_message is not None:
                    values[CallRecord.error_message] = change.error_message
                patch = deep_merge(
                    patch,
                    {
                        STATUS_PROVENANCE: {
                            "source": change.source.value if change.source else None,
                            "status": change.status.value,
                            "changedAt": now.isoformat(),
                        }
                    },
                )
            else:
                logger.debug(
                    "Ignoring non-forward status change",
                    extra={
                        "call_id": str(record.id),
                        "current": record.status.value,
                        "requested": change.status.value,
                    },
                )

        if change.run_id is not None and change.run_id != record.run_id:
            if record.run_id is None:
                values[CallRecord.run_id] = change.run_id
            else:
                logger.warning(
                    "Ignoring different run id for call",
                    extra={
                        "call_id": str(record.id),
                        "run_id": record.run_id,
                        "ignored_run_id": change.run_id,
                    },
                )

        if patch and not is_subset(patch, record.call_metadata):
            values[CallRecord.call_metadata] = deep_merge(record.call_metadata, patch)

        if not values:
            return None

        values[CallRecord.updated_at] = now
        return values

    async def list_page(
        self,
        filters: CallFilter,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[Sequence[CallRecord], int]:
        """List call records with pagination.

        Args:
            filters: Free-text search (subject name or phone, case-insensitive)
                and optional status.
            page: Page number (1-indexed).
            page_size: Number of items per page.

        Returns:
            Tuple of (records, total count).
        """
        conditions = []
        if filters.search and filters.search.strip():
            pattern = f"%{_escape_like(filters.search.strip())}%"
            conditions.append(
                or_(
                    CallRecord.subject_name.ilike(pattern, escape="\\"),
                    CallRecord.phone_number.ilike(pattern, escape="\\"),
                )
            )
        if filters.status is not None:
            conditions.append(CallRecord.status == filters.status)

        count_stmt = select(func.count(CallRecord.id)).where(*conditions)
        total = (await self._session.execute(count_stmt)).scalar() or 0

        offset = (page - 1) * page_size
        stmt = (
            select(CallRecord)
            .where(*conditions)
            .order_by(CallRecord.created_at.desc(), CallRecord.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all(), total

    async def list_recent(self, limit: int = 20) -> Sequence[CallRecord]:
        """Most recently created records, newest first, with their user."""
        stmt = (
            select(CallRecord)
            .options(selectinload(CallRecord.user))
            .order_by(CallRecord.created_at.desc(), CallRecord.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def _load(self, lookup: CallLookup) -> CallRecord | None:
        if lookup.is_empty:
            return None
        stmt = select(CallRecord).execution_options(populate_existing=True)
        if lookup.id is not None:
            stmt = stmt.where(CallRecord.id == lookup.id)
        else:
            stmt = stmt.where(CallRecord.run_id == lookup.run_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
