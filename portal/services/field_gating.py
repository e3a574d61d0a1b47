"""Role x field capability table for service request updates.

Every update passes through :func:`split_permitted_fields`; a field outside the
caller's column is dropped before anything touches the row.
"""
from __future__ import annotations

from typing import Any

from portal.core.deps import (
    ROLE_AGENT,
    ROLE_AGENT_MANAGER,
    ROLE_CUSTOMER,
    ROLE_CUSTOMER_ADMIN,
    ROLE_SUPER_ADMIN,
)

FIELD_INSURED = "insured"
FIELD_NARRATIVE = "service_request_narrative"
FIELD_CATEGORY = "service_queue_category"
FIELD_ASSIGNED_BY = "assigned_by_id"
FIELD_ASSIGNED_TO = "assigned_to_id"
FIELD_TASK_STATUS = "task_status"
FIELD_DUE_DATE = "due_date"
FIELD_DUE_TIME = "due_time"
FIELD_TIME_SPENT = "time_spent"
FIELD_CLOSED_AT = "closed_at"
FIELD_ATTACHMENTS = "attachments"

_COMMON = frozenset(
    {FIELD_INSURED, FIELD_NARRATIVE, FIELD_CATEGORY, FIELD_ASSIGNED_BY, FIELD_TASK_STATUS, FIELD_ATTACHMENTS}
)
_MANAGER = _COMMON | {FIELD_ASSIGNED_TO, FIELD_TIME_SPENT, FIELD_DUE_DATE, FIELD_DUE_TIME, FIELD_CLOSED_AT}

UPDATE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_CUSTOMER: _COMMON | {FIELD_DUE_DATE, FIELD_DUE_TIME},
    ROLE_CUSTOMER_ADMIN: _COMMON | {FIELD_DUE_DATE, FIELD_DUE_TIME},
    ROLE_AGENT: _COMMON | {FIELD_ASSIGNED_TO, FIELD_TIME_SPENT},
    ROLE_AGENT_MANAGER: _MANAGER,
    ROLE_SUPER_ADMIN: _MANAGER,
}

# Create only takes the assignment from staff; customers submit unassigned.
CREATE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_CUSTOMER: frozenset({FIELD_DUE_DATE, FIELD_DUE_TIME}),
    ROLE_CUSTOMER_ADMIN: frozenset({FIELD_DUE_DATE, FIELD_DUE_TIME}),
    ROLE_AGENT: frozenset({FIELD_ASSIGNED_TO, FIELD_DUE_DATE, FIELD_DUE_TIME}),
    ROLE_AGENT_MANAGER: frozenset({FIELD_ASSIGNED_TO, FIELD_DUE_DATE, FIELD_DUE_TIME}),
    ROLE_SUPER_ADMIN: frozenset({FIELD_ASSIGNED_TO, FIELD_DUE_DATE, FIELD_DUE_TIME}),
}


def can_edit(role: str, field: str) -> bool:
    return field in UPDATE_CAPABILITIES.get(str(role or ""), frozenset())


def split_permitted_fields(
    role: str,
    changes: dict[str, Any],
    table: dict[str, frozenset[str]] = UPDATE_CAPABILITIES,
) -> tuple[dict[str, Any], list[str]]:
    allowed = table.get(str(role or ""), frozenset())
    permitted = {key: value for key, value in changes.items() if key in allowed}
    ignored = sorted(key for key in changes if key not in allowed)
    return permitted, ignored
