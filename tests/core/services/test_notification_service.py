"""Tests for NotificationService."""

import pytest
from datetime import timedelta
from uuid import uuid4


@pytest.fixture
def schedule(notification_service, ctx, client_id):
    """Factory scheduling a quote reminder."""
    from core.models import NotificationCreate, NotificationType

    def _schedule(when, entity_id=None, context=None):
        return notification_service.schedule(context or ctx, NotificationCreate(
            client_id=client_id,
            entity_type="quote",
            entity_id=entity_id or uuid4(),
            notification_type=NotificationType.QUOTE_REMINDER,
            subject="Reminder",
            scheduled_for=when,
        ))

    return _schedule


class TestSchedule:
    """Tests for NotificationService.schedule."""

    def test_schedules_pending(self, schedule, ctx, now):
        """New notifications wait for the dispatcher."""
        from core.models import NotificationStatus

        notification = schedule(now)

        assert notification.status == NotificationStatus.PENDING
        assert notification.company_id == ctx.company_id
        assert notification.dispatched_at is None

    def test_audited(self, schedule, audit, ctx, now):
        """Scheduling leaves an audit entry."""
        notification = schedule(now)

        assert len(audit.get_entity_history(ctx, "notification", notification.id)) == 1


class TestListDue:
    """Tests for NotificationService.list_due."""

    def test_only_due_pending_in_order(self, notification_service, schedule, ctx, now):
        """Future and dispatched notifications are skipped."""
        late = schedule(now - timedelta(hours=1))
        early = schedule(now - timedelta(days=1))
        schedule(now + timedelta(days=1))
        dispatched = schedule(now - timedelta(days=2))
        notification_service.mark_dispatched(ctx, dispatched.id, now=now)

        due = notification_service.list_due(ctx, now=now)

        assert [n.id for n in due] == [early.id, late.id]

    def test_company_isolation(self, notification_service, schedule, other_ctx, now):
        """Another company's outbox is separate."""
        schedule(now - timedelta(hours=1))

        assert notification_service.list_due(other_ctx, now=now) == []


class TestMarkDispatched:
    """Tests for NotificationService.mark_dispatched."""

    def test_marks_once(self, notification_service, schedule, ctx, now):
        """A notification is dispatched at most once."""
        from core.exceptions import NotEditableError
        from core.models import NotificationStatus

        notification = schedule(now)

        dispatched = notification_service.mark_dispatched(ctx, notification.id, now=now)

        assert dispatched.status == NotificationStatus.DISPATCHED
        assert dispatched.dispatched_at == now
        with pytest.raises(NotEditableError):
            notification_service.mark_dispatched(ctx, notification.id, now=now)

    def test_unknown(self, notification_service, ctx):
        """Missing notification is not found."""
        from core.exceptions import RecordNotFoundError

        with pytest.raises(RecordNotFoundError):
            notification_service.mark_dispatched(ctx, uuid4())


class TestCancelForEntity:
    """Tests for NotificationService.cancel_for_entity."""

    def test_cancels_pending_of_entity(self, notification_service, schedule, ctx, now):
        """Only the entity's pending notifications are cancelled."""
        from core.models import NotificationStatus, NotificationType

        entity_id = uuid4()
        schedule(now, entity_id=entity_id)
        schedule(now + timedelta(days=1), entity_id=entity_id)
        other = schedule(now)

        count = notification_service.cancel_for_entity(ctx, "quote", entity_id, NotificationType.QUOTE_REMINDER)

        assert count == 2
        assert notification_service.list_for_entity(ctx, "quote", entity_id, NotificationStatus.PENDING) == []
        assert notification_service.get_by_id(ctx, other.id).status == NotificationStatus.PENDING

    def test_type_filter(self, notification_service, schedule, ctx, now):
        """Other notification types are left alone."""
        from core.models import NotificationType

        entity_id = uuid4()
        schedule(now, entity_id=entity_id)

        assert notification_service.cancel_for_entity(
            ctx, "quote", entity_id, NotificationType.PAYMENT_RECEIVED,
        ) == 0

    def test_nothing_pending(self, notification_service, ctx):
        """Cancelling with nothing scheduled is a no-op."""
        assert notification_service.cancel_for_entity(ctx, "quote", uuid4()) == 0
