"""
Call metadata document helpers.

The `metadata` JSON document is shared by several writers, each owning its own
top-level key. Writers only ever send patches; patches are merged recursively
into the stored document so one writer never drops another's sub-tree.
"""

from collections.abc import Mapping
from copy import deepcopy
from typing import Any

# Top-level keys and their writers
LEAD = "lead"  # trigger
EMAIL_CONTEXT = "emailContext"  # trigger
PLATFORM_REQUEST = "platformRequest"  # trigger
VALIDATION_ERRORS = "validationErrors"  # trigger
WORKFLOW_RESULT = "workflowResult"  # callback
CALLBACK = "callback"  # callback
FAILED_RUN_MATCH = "failedRunMatch"  # failed-runs reconciliation
STATUS_PROVENANCE = "statusProvenance"  # repository, on every status change


def deep_merge(base: Mapping[str, Any] | None, patch: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a new document with `patch` merged into `base`.

    Nested mappings are merged key by key; any other value in `patch`
    (scalars, lists, None) replaces the value in `base`. Neither argument is
    mutated.
    """
    merged: dict[str, Any] = deepcopy(dict(base)) if base else {}
    if not patch:
        return merged
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def is_subset(patch: Mapping[str, Any] | None, document: Mapping[str, Any] | None) -> bool:
    """True when merging `patch` into `document` would change nothing."""
    if not patch:
        return True
    if document is None:
        return False
    for key, value in patch.items():
        if key not in document:
            return False
        current = document[key]
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            if not is_subset(value, current):
                return False
        elif current != value:
            return False
    return True
