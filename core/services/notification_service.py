"""
Notification service: outbox of computed notification triggers.

The billing core decides what should be said and when; an external
dispatcher polls list_due() and delivers. Nothing here sends anything.
"""

import logging
from datetime import datetime
from uuid import UUID, uuid4

from clients.memory_store import RecordStore
from core import tables
from core.audit import AuditLogger, AuditAction
from core.exceptions import NotEditableError, RecordNotFoundError
from core.models import Notification, NotificationCreate, NotificationStatus, NotificationType
from utils.company_context import CompanyContext
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for scheduled notification operations."""

    def __init__(self, store: RecordStore, audit: AuditLogger):
        self.store = store
        self.audit = audit

    def schedule(self, ctx: CompanyContext, data: NotificationCreate) -> Notification:
        """
        Schedule a notification for later dispatch.

        Args:
            ctx: Company scope
            data: Notification scheduling data

        Returns:
            Notification in PENDING status
        """
        notification = Notification(
            id=uuid4(),
            company_id=ctx.company_id,
            client_id=data.client_id,
            entity_type=data.entity_type,
            entity_id=data.entity_id,
            notification_type=data.notification_type,
            subject=data.subject,
            body=data.body,
            scheduled_for=data.scheduled_for,
            status=NotificationStatus.PENDING,
            created_at=now_utc(),
        )

        notification = self.store.upsert(tables.NOTIFICATIONS, notification)
        self.audit.log_change(
            ctx,
            entity_type="notification",
            entity_id=notification.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)},
        )

        logger.info(
            f"Scheduled {notification.notification_type.value} for {notification.entity_type} "
            f"{notification.entity_id} at {notification.scheduled_for.isoformat()}"
        )
        return notification

    def get_by_id(self, ctx: CompanyContext, notification_id: UUID) -> Notification | None:
        """Get notification by ID, None if not found in the caller's company."""
        notification = self.store.get(tables.NOTIFICATIONS, notification_id)
        if notification is None or not ctx.owns(notification):
            return None
        return notification

    def list_for_entity(
        self,
        ctx: CompanyContext,
        entity_type: str,
        entity_id: UUID,
        status: NotificationStatus | None = None,
    ) -> list[Notification]:
        """Notifications about one record, in scheduling order."""
        notifications = self.store.list(
            tables.NOTIFICATIONS,
            lambda n: (
                n.company_id == ctx.company_id
                and n.entity_type == entity_type
                and n.entity_id == entity_id
                and (status is None or n.status == status)
            ),
        )
        return sorted(notifications, key=lambda n: n.scheduled_for)

    def list_due(self, ctx: CompanyContext, now: datetime | None = None, limit: int = 100) -> list[Notification]:
        """
        Pending notifications whose time has come.

        Returns:
            Due notifications ordered by scheduled time
        """
        now = now or now_utc()
        due = self.store.list(
            tables.NOTIFICATIONS,
            lambda n: (
                n.company_id == ctx.company_id
                and n.status == NotificationStatus.PENDING
                and n.scheduled_for <= now
            ),
        )
        return sorted(due, key=lambda n: n.scheduled_for)[:limit]

    def mark_dispatched(self, ctx: CompanyContext, notification_id: UUID, now: datetime | None = None) -> Notification:
        """
        Record that the dispatcher delivered a notification.

        Raises:
            RecordNotFoundError: If notification not found
            NotEditableError: If it is not pending
        """
        current = self.get_by_id(ctx, notification_id)
        if current is None:
            raise RecordNotFoundError("notification", notification_id)
        if current.status != NotificationStatus.PENDING:
            raise NotEditableError(f"Notification {notification_id} is {current.status.value}")

        updated = self.store.upsert(
            tables.NOTIFICATIONS,
            current.model_copy(update={"status": NotificationStatus.DISPATCHED, "dispatched_at": now or now_utc()}),
        )
        self.audit.log_change(
            ctx, "notification", notification_id, AuditAction.UPDATE,
            {"status": {"old": current.status.value, "new": updated.status.value}},
        )
        return updated

    def cancel_for_entity(
        self,
        ctx: CompanyContext,
        entity_type: str,
        entity_id: UUID,
        notification_type: NotificationType | None = None,
    ) -> int:
        """
        Cancel pending notifications about a record.

        Returns:
            Number of notifications cancelled
        """
        pending = [
            n for n in self.list_for_entity(ctx, entity_type, entity_id, NotificationStatus.PENDING)
            if notification_type is None or n.notification_type == notification_type
        ]

        with self.store.transaction():
            for notification in pending:
                self.store.upsert(
                    tables.NOTIFICATIONS,
                    notification.model_copy(update={"status": NotificationStatus.CANCELLED}),
                )
                self.audit.log_change(
                    ctx, "notification", notification.id, AuditAction.UPDATE,
                    {"status": {"old": NotificationStatus.PENDING.value, "new": NotificationStatus.CANCELLED.value}},
                )

        if pending:
            logger.info(f"Cancelled {len(pending)} pending notification(s) for {entity_type} {entity_id}")
        return len(pending)
