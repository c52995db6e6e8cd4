"""
Audit trail for service ticket and expense changes.

Every mutation made by the ticket services is appended to audit_log:
- Append-only (entries are never modified or deleted)
- User-attributed (acting user from utils.user_context)
- Detailed (old and new values for updates, full rows for create/delete)
"""

from enum import Enum
from typing import Any
from uuid import UUID

from clients.filters import Eq, OrderBy
from clients.record_store import RecordStore
from utils.timezone import now_utc
from utils.user_context import get_current_user_id

AUDIT_TABLE = "audit_log"


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Field-level diff between two entity states.

    Args:
        old: Previous state
        new: New state
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        {field: {"old": old_val, "new": new_val}} for changed fields.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}
    for key in set(old) | set(new):
        if key in exclude:
            continue
        if old.get(key) != new.get(key):
            changes[key] = {"old": old.get(key), "new": new.get(key)}
    return changes


class AuditLogger:
    """
    Appends entity changes to the audit log.

    Pass model_dump(mode="json") output so UUIDs, dates and Decimals are
    JSON-safe.

    Usage:
        audit.log_change(
            entity_type="service_ticket",
            entity_id=ticket.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(before.model_dump(mode="json"), after.model_dump(mode="json")),
        )
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None
    ) -> None:
        """
        Record one change.

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        if user_id is None:
            user_id = get_current_user_id()

        self.store.insert(AUDIT_TABLE, {
            "user_id": user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action.value,
            "changes": changes,
            "created_at": now_utc(),
        })

    def get_entity_history(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """Audit entries for one entity, newest first."""
        return self.store.select(
            AUDIT_TABLE,
            [Eq("entity_type", entity_type), Eq("entity_id", entity_id)],
            order_by=[OrderBy("created_at", descending=True)],
        )
