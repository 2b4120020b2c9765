"""
Audit trail for billing records.

Every mutation of a quote, invoice, payment or credit note is logged here.
The audit log is:
- Append-only (entries never modified or deleted)
- Attributed (company and acting user from the CompanyContext)
- Detailed (captures old and new values)
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel

from clients.memory_store import RecordStore
from utils.company_context import CompanyContext
from utils.timezone import now_utc

AUDIT_TABLE = "audit_log"


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditEntry(BaseModel):
    """One logged change."""

    id: UUID
    company_id: UUID
    user_id: UUID | None
    entity_type: str
    entity_id: UUID
    action: str
    changes: dict[str, Any]
    created_at: datetime


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    for key in set(old.keys()) | set(new.keys()):
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Audit trail writer and reader.

    Always pass model_dump(mode="json") for pydantic models so Decimals,
    UUIDs and datetimes are stored as JSON-compatible strings.

    Usage:
        audit = AuditLogger(store)

        audit.log_change(
            ctx,
            entity_type="quote",
            entity_id=quote.id,
            action=AuditAction.CREATE,
            changes={"created": quote.model_dump(mode="json")}
        )

        changes = compute_changes(old.model_dump(mode="json"), new.model_dump(mode="json"))
        audit.log_change(ctx, "quote", quote.id, AuditAction.UPDATE, changes)

        history = audit.get_entity_history(ctx, "quote", quote.id)
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def log_change(
        self,
        ctx: CompanyContext,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
    ) -> AuditEntry:
        """
        Log an entity change.

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        entry = AuditEntry(
            id=uuid4(),
            company_id=ctx.company_id,
            user_id=ctx.user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            changes=changes,
            created_at=now_utc(),
        )
        return self.store.upsert(AUDIT_TABLE, entry)

    def get_entity_history(
        self,
        ctx: CompanyContext,
        entity_type: str,
        entity_id: UUID
    ) -> list[AuditEntry]:
        """Full audit history for an entity, newest first."""
        entries = self.store.list(
            AUDIT_TABLE,
            lambda e: (
                e.company_id == ctx.company_id
                and e.entity_type == entity_type
                and e.entity_id == entity_id
            ),
        )
        return list(reversed(entries))

    def get_company_activity(self, ctx: CompanyContext, limit: int = 100) -> list[AuditEntry]:
        """Most recent changes across the company, newest first."""
        entries = self.store.list(AUDIT_TABLE, lambda e: e.company_id == ctx.company_id)
        return list(reversed(entries))[:limit]
