"""
Call status state machine.

    PENDING -> RUNNING | FAILED
    RUNNING -> COMPLETED | FAILED | CANCELED

Terminal states have no outgoing edges. A requested move is accepted when the
target is reachable from the current state, so a late COMPLETED for a record
still PENDING goes through (PENDING -> RUNNING -> COMPLETED).
"""

from enum import Enum


class CallStatus(str, Enum):
    """Lifecycle status of a call record."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[CallStatus] = frozenset(
    {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.CANCELED}
)

TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.PENDING: frozenset({CallStatus.RUNNING, CallStatus.FAILED}),
    CallStatus.RUNNING: frozenset(
        {CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.CANCELED}
    ),
    CallStatus.COMPLETED: frozenset(),
    CallStatus.FAILED: frozenset(),
    CallStatus.CANCELED: frozenset(),
}

# Platform vocabulary -> local status (keys are lower-case).
PLATFORM_STATUS_MAP: dict[str, CallStatus] = {
    "pending": CallStatus.PENDING,
    "running": CallStatus.RUNNING,
    "completed": CallStatus.COMPLETED,
    "success": CallStatus.COMPLETED,
    "failed": CallStatus.FAILED,
    "error": CallStatus.FAILED,
    "canceled": CallStatus.CANCELED,
    "cancelled": CallStatus.CANCELED,
}


def _reachable_from(status: CallStatus) -> frozenset[CallStatus]:
    seen: set[CallStatus] = set()
    frontier = list(TRANSITIONS[status])
    while frontier:
        nxt = frontier.pop()
        if nxt not in seen:
            seen.add(nxt)
            frontier.extend(TRANSITIONS[nxt])
    return frozenset(seen)


REACHABLE: dict[CallStatus, frozenset[CallStatus]] = {
    status: _reachable_from(status) for status in CallStatus
}


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    """True when `target` is strictly ahead of `current` in the state machine."""
    return target in REACHABLE[current]


def normalize_platform_status(raw: str | None) -> CallStatus | None:
    """Map a platform-native status string onto CallStatus (case-insensitive).

    Returns None for missing or unknown vocabulary.
    """
    if not raw:
        return None
    return PLATFORM_STATUS_MAP.get(raw.strip().lower())
