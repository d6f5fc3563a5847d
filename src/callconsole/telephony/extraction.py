"""
Tolerant field extraction from loosely-typed platform documents.

The platform sends the same information under different keys depending on the
endpoint and workflow version. Every field we read is resolved by one named
function here, as an ordered list of candidate paths where the first present
value wins. Business logic never reaches into raw payloads directly.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from callconsole.telephony.interface import FailedRun

Path = tuple[str | int, ...]

PHONE_KEY = "phone_number"

RUN_ID_PATHS: tuple[Path, ...] = (
    ("queued_run_ids", 0),
    ("run_id",),
    ("id",),
)

CALLBACK_CALL_ID_PATHS: tuple[Path, ...] = (
    ("context", "source", "call_id"),
    ("call_id",),
    ("callId",),
    ("metadata", "callId"),
)

CALLBACK_RUN_ID_PATHS: tuple[Path, ...] = (
    ("run_id",),
    ("runId",),
    ("id",),
)

SUMMARY_PATHS: tuple[Path, ...] = (
    ("result", "summary"),
    ("summary",),
    ("outputs", "summary"),
    ("extracted", "summary"),
)

CONTRACT_DRAFT_PATHS: tuple[Path, ...] = (
    ("result", "contract_draft"),
    ("result", "contractDraft"),
    ("contract_draft",),
    ("contractDraft",),
    ("outputs", "contract_draft"),
)

STATUS_PATHS: tuple[Path, ...] = (
    ("status",),
    ("run", "status"),
)

FAILED_RUN_ID_PATHS: tuple[Path, ...] = (("id",), ("run_id",))

FAILED_RUN_TIMESTAMP_PATHS: tuple[Path, ...] = (
    ("timestamp",),
    ("created_at",),
    ("updated_at",),
    ("completed_at",),
)


def dig(doc: Any, path: Path) -> Any:
    """Follow `path` through nested mappings/lists; None when any step is missing."""
    current = doc
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(step)
        if current is None:
            return None
    return current


def as_text(value: Any) -> str | None:
    """Non-blank string, or None."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def as_identifier(value: Any) -> str | None:
    """Identifier as text; platforms sometimes send numeric ids."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    return as_text(value)


def first_present(
    doc: Any,
    paths: Iterable[Path],
    coerce: Callable[[Any], Any] = as_text,
) -> Any:
    """Return the first candidate path whose coerced value is not None."""
    for path in paths:
        value = coerce(dig(doc, path))
        if value is not None:
            return value
    return None


def extract_run_id(doc: Any) -> str | None:
    """Run id from a start-run response: queued ids, then run_id, then id."""
    return first_present(doc, RUN_ID_PATHS, as_identifier)


def extract_callback_call_id(doc: Any) -> str | None:
    """Internal record id echoed back in a callback."""
    return first_present(doc, CALLBACK_CALL_ID_PATHS, as_identifier)


def extract_callback_run_id(doc: Any) -> str | None:
    return first_present(doc, CALLBACK_RUN_ID_PATHS, as_identifier)


def extract_status(doc: Any) -> str | None:
    """Platform-native status string (not yet mapped to the local enum)."""
    return first_present(doc, STATUS_PATHS)


def extract_summary(doc: Any) -> str | None:
    return first_present(doc, SUMMARY_PATHS)


def extract_contract_draft(doc: Any) -> str | None:
    return first_present(doc, CONTRACT_DRAFT_PATHS)


def find_phone_number(data: Any) -> str | None:
    """Find a phone number in a flat run-data document.

    Workflow outputs are flattened with node-prefixed keys such as
    ``"<node-uuid>.data.phone_number"``. Any key equal to ``phone_number`` or
    ending in ``.phone_number`` qualifies; the first one encountered (document
    order) with a non-blank string value wins.
    """
    if not isinstance(data, Mapping):
        return None
    for key, value in data.items():
        if not isinstance(key, str):
            continue
        if key == PHONE_KEY or key.endswith(f".{PHONE_KEY}"):
            phone = as_text(value)
            if phone is not None:
                return phone
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds/milliseconds into aware UTC."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = as_text(value)
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_run_items(doc: Any) -> list[dict[str, Any]]:
    """Run summaries from a list-runs page: a bare list or a data/runs/items envelope."""
    items: Any = doc
    if isinstance(doc, Mapping):
        items = next(
            (doc[key] for key in ("data", "runs", "items") if isinstance(doc.get(key), list)),
            [],
        )
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def to_failed_run(item: Mapping[str, Any]) -> FailedRun:
    data = item.get("data")
    return FailedRun(
        run_id=first_present(item, FAILED_RUN_ID_PATHS, as_identifier),
        timestamp=first_present(item, FAILED_RUN_TIMESTAMP_PATHS, parse_timestamp),
        data=dict(data) if isinstance(data, Mapping) else {},
    )
