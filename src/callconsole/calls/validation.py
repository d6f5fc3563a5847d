"""
Trigger request validation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from callconsole.calls.models import SUBJECT_NAME_LENGTH

# Leading "+", country code, 7-15 digits in total
PHONE_PATTERN = re.compile(r"^\+[1-9][0-9]{6,14}$")

_WHITESPACE = re.compile(r"\s+")

SUBJECT_NAME_MAX_LENGTH = SUBJECT_NAME_LENGTH


def normalize_phone(raw: str | None) -> str:
    """Remove all whitespace from a phone number."""
    if not raw:
        return ""
    return _WHITESPACE.sub("", raw)


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(phone))


@dataclass
class ValidationResult:
    """
    Mutable validation result.

    - default is_valid=True
    - add_error() flips is_valid=False and appends {"field": ..., "message": ...}
    - errors property returns a COPY
    """

    is_valid: bool = True
    _errors: list[dict[str, str]] = field(default_factory=list, repr=False)

    def add_error(self, field: str, message: str) -> None:
        self.is_valid = False
        self._errors.append({"field": field, "message": message})

    @property
    def errors(self) -> list[dict[str, str]]:
        return list(self._errors)

    @property
    def first_message(self) -> str | None:
        return self._errors[0]["message"] if self._errors else None


@dataclass(frozen=True)
class TriggerInput:
    """Normalized trigger request."""

    subject_name: str
    phone_number: str
    email_thread: str | None = None


def validate_trigger_request(
    subject_name: str | None,
    phone_number: str | None,
    email_thread: str | None = None,
) -> tuple[TriggerInput, ValidationResult]:
    """Normalize and validate a trigger request.

    The normalized input is returned even when invalid so the rejected
    request can still be recorded.
    """
    result = ValidationResult()

    name = (subject_name or "").strip()
    if not name:
        result.add_error("subjectName", "Subject name is required")
    elif len(name) > SUBJECT_NAME_MAX_LENGTH:
        result.add_error(
            "subjectName",
            f"Subject name must be at most {SUBJECT_NAME_MAX_LENGTH} characters",
        )

    phone = normalize_phone(phone_number)
    if not phone:
        result.add_error("phoneNumber", "Phone number is required")
    elif not is_valid_phone(phone):
        result.add_error(
            "phoneNumber",
            "Phone number must be in international format: '+', country code and 7-15 digits",
        )

    thread = email_thread.strip() if email_thread and email_thread.strip() else None

    # Rejected numbers are kept as sent (trimmed) for the audit record
    stored_phone = phone if is_valid_phone(phone) else (phone_number or "").strip()
    return TriggerInput(subject_name=name, phone_number=stored_phone, email_thread=thread), result
