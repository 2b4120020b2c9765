"""Tests for QuoteService."""

import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from tests.factories import line


@pytest.fixture
def captured(event_bus):
    """Every event published during the test."""
    from core.events import BillingEvent

    events = []
    event_bus.subscribe(BillingEvent, events.append)
    return events


# =============================================================================
# CREATE / READ
# =============================================================================


class TestQuoteCreate:
    """Tests for QuoteService.create."""

    def test_creates_draft_version_one(self, make_quote, ctx, client_id, now):
        """New quotes start as the latest and only version, in draft."""
        from core.models import QuoteStatus

        quote = make_quote(("1000", "20"), ("500", "7"))

        assert quote.status == QuoteStatus.DRAFT
        assert quote.company_id == ctx.company_id
        assert quote.client_id == client_id
        assert quote.version_number == 1
        assert quote.is_latest_version
        assert quote.original_quote_id is None
        assert quote.quote_number == "DEV-20250408-0001"
        assert quote.subtotal == Decimal("1500.00")
        assert quote.vat_amount == Decimal("235.00")
        assert quote.total == Decimal("1735.00")
        assert quote.expires_at == now + timedelta(days=30)

    def test_numbers_are_sequential_per_day(self, make_quote):
        """Each quote of the day takes the next sequence number."""
        make_quote()
        second = make_quote()

        assert second.quote_number == "DEV-20250408-0002"

    def test_expiry_must_follow_issue(self, quote_service, ctx, client_id, now):
        """An expiry at or before the issue date is rejected."""
        from core.exceptions import ValidationRangeError
        from core.models import QuoteCreate

        with pytest.raises(ValidationRangeError) as exc_info:
            quote_service.create(
                ctx,
                QuoteCreate(client_id=client_id, items=[line("100")], issued_at=now, expires_at=now),
                now=now,
            )

        assert exc_info.value.field == "expires_at"

    def test_publishes_quote_created(self, make_quote, captured):
        """QuoteCreated published once the quote is stored."""
        from core.events import QuoteCreated

        quote = make_quote()

        assert [type(e) for e in captured] == [QuoteCreated]
        assert captured[0].quote.id == quote.id

    def test_other_company_cannot_read(self, quote_service, make_quote, other_ctx):
        """Quotes are invisible outside their company."""
        quote = make_quote()

        assert quote_service.get_by_id(other_ctx, quote.id) is None

    def test_list_for_client_latest_only(self, quote_service, make_quote, ctx, client_id, now):
        """Superseded versions are hidden unless asked for."""
        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)
        quote_service.create_new_version(ctx, quote.id, now=now)

        assert len(quote_service.list_for_client(ctx, client_id)) == 1
        assert len(quote_service.list_for_client(ctx, client_id, latest_only=False)) == 2


# =============================================================================
# EDITING
# =============================================================================


class TestQuoteEditing:
    """Tests for update, revise and delete."""

    def test_update_draft_reprices(self, quote_service, make_quote, ctx, now):
        """Changing lines recomputes the totals."""
        from core.models import QuoteUpdate

        quote = make_quote()

        updated = quote_service.update(ctx, quote.id, QuoteUpdate(items=[line("2000", "14")]), now=now)

        assert updated.total == Decimal("2280.00")
        assert quote_service.get_by_id(ctx, quote.id).total == Decimal("2280.00")

    def test_update_after_submit_is_refused(self, quote_service, make_quote, ctx, now):
        """Only drafts change in place."""
        from core.exceptions import NotEditableError
        from core.models import QuoteUpdate

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)

        with pytest.raises(NotEditableError):
            quote_service.update(ctx, quote.id, QuoteUpdate(notes="changed"), now=now)

    def test_revise_draft_edits_in_place(self, quote_service, make_quote, ctx, now):
        """A draft revision keeps the same record."""
        from core.models import QuoteUpdate

        quote = make_quote()

        revised = quote_service.revise(ctx, quote.id, QuoteUpdate(notes="v1 notes"), now=now)

        assert revised.id == quote.id
        assert revised.version_number == 1

    def test_revise_submitted_spawns_version(self, quote_service, make_quote, ctx, now):
        """Revising a submitted quote goes through versioning."""
        from core.models import QuoteStatus, QuoteUpdate

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)

        revised = quote_service.revise(ctx, quote.id, QuoteUpdate(items=[line("900")]), now=now)

        assert revised.id != quote.id
        assert revised.version_number == 2
        assert revised.status == QuoteStatus.DRAFT
        assert revised.total == Decimal("1080.00")

    def test_delete_lone_draft(self, quote_service, make_quote, ctx):
        """A never-versioned draft can be deleted."""
        quote = make_quote()

        assert quote_service.delete(ctx, quote.id) is True
        assert quote_service.get_by_id(ctx, quote.id) is None

    def test_delete_missing_returns_false(self, quote_service, ctx):
        """Deleting an unknown quote reports False."""
        assert quote_service.delete(ctx, uuid4()) is False

    def test_delete_submitted_is_refused(self, quote_service, make_quote, ctx, now):
        """Quotes that left draft are kept."""
        from core.exceptions import NotEditableError

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)

        with pytest.raises(NotEditableError):
            quote_service.delete(ctx, quote.id)


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestQuoteLifecycle:
    """Tests for status transitions."""

    def test_happy_path_to_accepted(self, quote_service, make_quote, ctx, now):
        """draft -> pending_validation -> awaiting_acceptance -> accepted."""
        from core.models import QuoteStatus

        quote = make_quote()

        submitted = quote_service.submit(ctx, quote.id, now=now)
        approved = quote_service.approve(ctx, quote.id, notes="OK for sending", now=now)
        accepted = quote_service.accept(ctx, quote.id, now=now + timedelta(days=2))

        assert submitted.status == QuoteStatus.PENDING_VALIDATION
        assert approved.status == QuoteStatus.AWAITING_ACCEPTANCE
        assert approved.validated_by == ctx.user_id
        assert approved.validation_notes == "OK for sending"
        assert approved.sent_at == now
        assert accepted.status == QuoteStatus.ACCEPTED
        assert accepted.decided_at == now + timedelta(days=2)

    def test_draft_cannot_be_accepted(self, quote_service, make_quote, ctx, now):
        """Skipping validation is refused and nothing is written."""
        from core.exceptions import InvalidTransitionError, TransitionRejection
        from core.models import QuoteStatus

        quote = make_quote()

        with pytest.raises(InvalidTransitionError) as exc_info:
            quote_service.accept(ctx, quote.id, now=now)

        assert exc_info.value.reason == TransitionRejection.INVALID_TRANSITION
        assert quote_service.get_by_id(ctx, quote.id).status == QuoteStatus.DRAFT

    def test_reject_records_reason(self, quote_service, make_quote, ctx, now):
        """Rejection during validation keeps the reason."""
        from core.models import QuoteStatus

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)

        rejected = quote_service.reject(ctx, quote.id, reason="Margin too low", now=now)

        assert rejected.status == QuoteStatus.REJECTED
        assert rejected.rejection_reason == "Margin too low"

    def test_terminal_status_refuses_actions(self, quote_service, make_accepted_quote, ctx, now):
        """Accepted quotes cannot be rejected afterwards."""
        from core.exceptions import InvalidTransitionError, TransitionRejection

        quote = make_accepted_quote()

        with pytest.raises(InvalidTransitionError) as exc_info:
            quote_service.reject(ctx, quote.id, now=now)

        assert exc_info.value.reason == TransitionRejection.ALREADY_TERMINAL

    def test_publishes_status_changed(self, quote_service, make_quote, ctx, now, captured):
        """Each transition publishes the previous status."""
        from core.events import QuoteStatusChanged
        from core.models import QuoteStatus

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)

        event = captured[-1]
        assert isinstance(event, QuoteStatusChanged)
        assert event.previous_status == QuoteStatus.DRAFT
        assert event.quote.status == QuoteStatus.PENDING_VALIDATION


class TestQuoteExpiry:
    """Tests for expiry evaluated on read."""

    @pytest.fixture
    def awaiting(self, quote_service, make_quote, ctx, now):
        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)
        return quote_service.approve(ctx, quote.id, now=now)

    def test_effective_status_does_not_write(self, quote_service, awaiting, ctx):
        """Reading past expiry shows EXPIRED without persisting it."""
        from core.models import QuoteStatus

        later = awaiting.expires_at + timedelta(days=1)

        assert quote_service.get_effective(ctx, awaiting.id, now=later).status == QuoteStatus.EXPIRED
        assert quote_service.get_by_id(ctx, awaiting.id).status == QuoteStatus.AWAITING_ACCEPTANCE

    def test_accept_after_expiry_is_refused(self, quote_service, awaiting, ctx):
        """Acceptance past the expiry date fails with EXPIRED."""
        from core.exceptions import InvalidTransitionError, TransitionRejection

        with pytest.raises(InvalidTransitionError) as exc_info:
            quote_service.accept(ctx, awaiting.id, now=awaiting.expires_at + timedelta(seconds=1))

        assert exc_info.value.reason == TransitionRejection.EXPIRED

    def test_accept_on_expiry_instant_is_allowed(self, quote_service, awaiting, ctx):
        """Expiry is strictly after expires_at."""
        from core.models import QuoteStatus

        accepted = quote_service.accept(ctx, awaiting.id, now=awaiting.expires_at)

        assert accepted.status == QuoteStatus.ACCEPTED

    def test_refresh_expiry_persists(self, quote_service, awaiting, ctx):
        """refresh_expiry writes EXPIRED once due."""
        from core.models import QuoteStatus

        before = quote_service.refresh_expiry(ctx, awaiting.id, now=awaiting.expires_at)
        after = quote_service.refresh_expiry(ctx, awaiting.id, now=awaiting.expires_at + timedelta(days=1))

        assert before.status == QuoteStatus.AWAITING_ACCEPTANCE
        assert after.status == QuoteStatus.EXPIRED
        assert quote_service.get_by_id(ctx, awaiting.id).status == QuoteStatus.EXPIRED

    def test_expire_due_only_touches_expired(self, quote_service, awaiting, make_quote, ctx):
        """Drafts are never expired by the sweep."""
        draft = make_quote()

        expired = quote_service.expire_due(ctx, now=awaiting.expires_at + timedelta(days=1))

        assert [q.id for q in expired] == [awaiting.id]
        assert quote_service.get_by_id(ctx, draft.id).status.value == "draft"


# =============================================================================
# VERSIONS
# =============================================================================


class TestQuoteVersions:
    """Tests for create_new_version and chain reads."""

    def test_new_version_supersedes_previous(self, quote_service, make_quote, ctx, now):
        """Exactly one latest version after revising."""
        from core.models import QuoteStatus

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)
        quote_service.reject(ctx, quote.id, reason="Too expensive", now=now)

        v2 = quote_service.create_new_version(ctx, quote.id, now=now + timedelta(days=1))

        old = quote_service.get_by_id(ctx, quote.id)
        assert not old.is_latest_version
        assert old.status == QuoteStatus.REJECTED
        assert v2.is_latest_version
        assert v2.status == QuoteStatus.DRAFT
        assert v2.version_number == 2
        assert v2.original_quote_id == quote.id
        assert v2.quote_number == quote.quote_number
        assert v2.rejection_reason is None
        assert v2.expires_at == now + timedelta(days=31)

    def test_chain_is_newest_first_and_restartable(self, quote_service, make_quote, ctx, now):
        """The chain reads the store again on each iteration."""
        quote = make_quote()
        v2 = quote_service.create_new_version(ctx, quote.id, now=now)

        chain = quote_service.list_chain(ctx, quote.id)
        first_pass = [v.version_number for v in chain]
        quote_service.create_new_version(ctx, v2.id, now=now)
        second_pass = [v.version_number for v in chain]

        assert first_pass == [2, 1]
        assert second_pass == [3, 2, 1]
        assert quote_service.latest_version(ctx, quote.id).version_number == 3
        quote_service.verify_chain(ctx, quote.id)

    def test_version_from_older_version_uses_next_number(self, quote_service, make_quote, ctx, now):
        """Branching from v1 still appends after the newest version."""
        quote = make_quote()
        quote_service.create_new_version(ctx, quote.id, now=now)

        v3 = quote_service.create_new_version(ctx, quote.id, now=now)

        assert v3.version_number == 3
        assert v3.original_quote_id == quote.id

    def test_older_version_of_converted_chain_is_locked(
        self, quote_service, conversion_service, make_quote, store, ctx, now,
    ):
        """Branching from v1 cannot reopen a chain whose v2 was billed."""
        from core import tables
        from core.exceptions import NotEditableError

        quote = make_quote()
        quote_service.submit(ctx, quote.id, now=now)
        v2 = quote_service.create_new_version(ctx, quote.id, now=now)
        for step in (quote_service.submit, quote_service.approve, quote_service.accept):
            step(ctx, v2.id, now=now)
        conversion_service.convert(ctx, v2.id, now=now)

        with pytest.raises(NotEditableError):
            quote_service.create_new_version(ctx, quote.id, now=now)

        assert store.count(tables.QUOTES) == 2
        assert quote_service.latest_version(ctx, quote.id).id == v2.id

    def test_older_version_of_invoiced_chain_is_locked(
        self, quote_service, conversion_service, make_quote, ctx, now,
    ):
        """A deposit on the latest version freezes every version."""
        from core.conversion import ConversionMode
        from core.exceptions import NotEditableError

        quote = make_quote()
        v2 = quote_service.create_new_version(ctx, quote.id, now=now)
        for step in (quote_service.submit, quote_service.approve, quote_service.accept):
            step(ctx, v2.id, now=now)
        conversion_service.convert(
            ctx, v2.id, mode=ConversionMode.PARTIAL, deposit_percentage=Decimal("30"), now=now,
        )

        with pytest.raises(NotEditableError):
            quote_service.create_new_version(ctx, quote.id, now=now)

    def test_changes_are_applied_to_new_version(self, quote_service, make_quote, ctx, now):
        """Edits carried by create_new_version reprice the new version only."""
        from core.models import QuoteUpdate

        quote = make_quote()

        v2 = quote_service.create_new_version(ctx, quote.id, QuoteUpdate(items=[line("500", "10")]), now=now)

        assert v2.total == Decimal("550.00")
        assert quote_service.get_by_id(ctx, quote.id).total == Decimal("1200.00")

    def test_superseded_version_refuses_transitions(self, quote_service, make_quote, ctx, now):
        """Old versions are frozen."""
        from core.exceptions import InvalidTransitionError, TransitionRejection

        quote = make_quote()
        quote_service.create_new_version(ctx, quote.id, now=now)

        with pytest.raises(InvalidTransitionError) as exc_info:
            quote_service.submit(ctx, quote.id, now=now)

        assert exc_info.value.reason == TransitionRejection.SUPERSEDED

    def test_converted_quote_cannot_be_versioned(
        self, quote_service, conversion_service, make_accepted_quote, store, ctx, now,
    ):
        """Revising a converted quote fails and changes nothing."""
        from core import tables
        from core.exceptions import NotEditableError

        quote = make_accepted_quote()
        conversion_service.convert(ctx, quote.id, now=now)
        before = store.count(tables.QUOTES)

        with pytest.raises(NotEditableError):
            quote_service.create_new_version(ctx, quote.id, now=now)

        assert store.count(tables.QUOTES) == before
        assert quote_service.get_by_id(ctx, quote.id).is_latest_version

    def test_invoiced_quote_cannot_be_versioned(
        self, quote_service, conversion_service, make_accepted_quote, ctx, now,
    ):
        """An accepted quote with a deposit invoice is locked too."""
        from core.conversion import ConversionMode
        from core.exceptions import NotEditableError

        quote = make_accepted_quote()
        conversion_service.convert(ctx, quote.id, mode=ConversionMode.PARTIAL, now=now)

        with pytest.raises(NotEditableError):
            quote_service.create_new_version(ctx, quote.id, now=now)

    def test_publishes_version_created(self, quote_service, make_quote, ctx, now, captured):
        """The event names the superseded version."""
        from core.events import QuoteVersionCreated

        quote = make_quote()
        v2 = quote_service.create_new_version(ctx, quote.id, now=now)

        event = captured[-1]
        assert isinstance(event, QuoteVersionCreated)
        assert event.quote.id == v2.id
        assert event.superseded.id == quote.id

    def test_broken_chain_rolls_back(self, quote_service, make_quote, store, ctx, now):
        """A chain already corrupted by a direct write aborts the new version."""
        from core import tables
        from core.exceptions import ChainIntegrityError

        quote = make_quote()
        v2 = quote_service.create_new_version(ctx, quote.id, now=now)
        store.upsert(tables.QUOTES, v2.model_copy(update={"version_number": 5}))
        before = store.count(tables.QUOTES)

        with pytest.raises(ChainIntegrityError):
            quote_service.create_new_version(ctx, v2.id, now=now)

        assert store.count(tables.QUOTES) == before
        assert store.get(tables.QUOTES, v2.id).is_latest_version


# =============================================================================
# REMINDERS
# =============================================================================


class TestConfigureReminder:
    """Tests for QuoteService.configure_reminder."""

    def test_enable_on_draft(self, quote_service, make_quote, ctx, now):
        """Reminder settings stored on the quote."""
        quote = make_quote()

        updated = quote_service.configure_reminder(ctx, quote.id, enabled=True, days_before_expiry=3, now=now)

        assert updated.reminder.enabled
        assert updated.reminder.days_before_expiry == 3

    def test_keeps_lead_time_when_not_given(self, quote_service, make_quote, ctx, now):
        """Omitted lead time keeps the current one."""
        quote = make_quote()
        quote_service.configure_reminder(ctx, quote.id, enabled=True, days_before_expiry=10, now=now)

        updated = quote_service.configure_reminder(ctx, quote.id, enabled=False, now=now)

        assert not updated.reminder.enabled
        assert updated.reminder.days_before_expiry == 10

    def test_decided_quote_is_refused(self, quote_service, make_accepted_quote, ctx, now):
        """No reminders once the client decided."""
        from core.exceptions import NotEditableError

        quote = make_accepted_quote()

        with pytest.raises(NotEditableError):
            quote_service.configure_reminder(ctx, quote.id, enabled=True, now=now)
