"""
Quote service: lifecycle, editing and version chains.

Status changes go through core.quote_states; version rules come from
core.versioning. This service loads the snapshot, applies the rule,
writes the result and audits it. Multi-record writes (new version +
flipping the previous latest) run in one store transaction.
"""

import logging
from datetime import datetime
from typing import Iterator
from uuid import UUID, uuid4

from clients.memory_store import RecordStore
from core import tables
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import QuoteCreated, QuoteReminderChanged, QuoteStatusChanged, QuoteVersionCreated
from core.exceptions import NotEditableError, RecordNotFoundError, ValidationRangeError
from core.models import (
    InvoiceStatus, LineItem, Quote, QuoteCreate, QuoteReminder, QuoteStatus, QuoteUpdate,
)
from core.numbering import next_document_number
from core.quote_states import (
    QuoteAction, TransitionPayload, apply_transition, effective_status, is_expired,
)
from core.tax import compute_totals, is_standard_rate
from core.versioning import (
    build_next_version, chain_key, ensure_revisable, newest_first, verify_chain,
)
from utils.company_context import CompanyContext
from utils.timezone import add_days, now_utc

logger = logging.getLogger(__name__)


class QuoteChain:
    """
    Every version of one quote, newest first.

    Lazy and restartable: nothing is read until iteration starts, and each
    new iteration reads the store again.
    """

    def __init__(self, store: RecordStore, company_id: UUID, chain_id: UUID):
        self._store = store
        self.company_id = company_id
        self.chain_id = chain_id

    def __iter__(self) -> Iterator[Quote]:
        versions = self._store.list(
            tables.QUOTES,
            lambda q: q.company_id == self.company_id and chain_key(q) == self.chain_id,
        )
        yield from newest_first(versions)


class QuoteService:
    """Service for quote operations."""

    def __init__(
        self,
        store: RecordStore,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig | None = None,
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or BillingConfig()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _generate_quote_number(self, ctx: CompanyContext, now: datetime) -> str:
        existing = self.store.list(tables.QUOTES, lambda q: q.company_id == ctx.company_id)
        return next_document_number((q.quote_number for q in existing), self.config.quote_prefix, now)

    def _priced(self, items: list[LineItem]) -> dict:
        """Totals fields for a list of lines."""
        for item in items:
            if not is_standard_rate(item.vat_rate):
                logger.warning(f"Non-standard VAT rate {item.vat_rate}% on line '{item.description}'")
        totals = compute_totals(items)
        return {
            "items": items,
            "subtotal": totals.subtotal,
            "vat_amount": totals.vat_amount,
            "total": totals.total,
        }

    def _require(self, ctx: CompanyContext, quote_id: UUID) -> Quote:
        quote = self.get_by_id(ctx, quote_id)
        if quote is None:
            raise RecordNotFoundError("quote", quote_id)
        return quote

    def _chain_versions(self, ctx: CompanyContext, chain_id: UUID) -> list[Quote]:
        return self.store.list(
            tables.QUOTES,
            lambda q: q.company_id == ctx.company_id and chain_key(q) == chain_id,
        )

    def has_invoices(self, quote_id: UUID) -> bool:
        """Whether any non-cancelled invoice was generated from this quote."""
        return bool(self.store.list(
            tables.INVOICES,
            lambda i: i.source_quote_id == quote_id and i.status != InvoiceStatus.CANCELLED,
        ))

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def create(self, ctx: CompanyContext, data: QuoteCreate, now: datetime | None = None) -> Quote:
        """
        Create a new quote in DRAFT status, as version 1 of a new chain.

        Raises:
            ValidationRangeError: If expires_at is not after issued_at
        """
        now = now or now_utc()
        issued_at = data.issued_at or now
        expires_at = data.expires_at or add_days(issued_at, self.config.quote_validity_days)
        if expires_at <= issued_at:
            raise ValidationRangeError(
                "expires_at", expires_at, minimum=issued_at,
                message="Quote expiry date must be after its issue date",
            )

        quote = Quote(
            id=uuid4(),
            company_id=ctx.company_id,
            client_id=data.client_id,
            quote_number=self._generate_quote_number(ctx, now),
            status=QuoteStatus.DRAFT,
            issued_at=issued_at,
            expires_at=expires_at,
            reminder=data.reminder,
            notes=data.notes,
            terms=data.terms,
            created_at=now,
            updated_at=now,
            **self._priced(data.items),
        )

        with self.store.transaction():
            quote = self.store.upsert(tables.QUOTES, quote)
            self.audit.log_change(
                ctx,
                entity_type="quote",
                entity_id=quote.id,
                action=AuditAction.CREATE,
                changes={"created": quote.model_dump(mode="json")},
            )

        logger.info(f"Created quote {quote.quote_number} total={quote.total}")
        self.event_bus.publish(QuoteCreated.create(quote=quote))
        return quote

    def get_by_id(self, ctx: CompanyContext, quote_id: UUID) -> Quote | None:
        """
        Get quote by ID.

        Returns:
            Quote if found in the caller's company, None otherwise.
        """
        quote = self.store.get(tables.QUOTES, quote_id)
        if quote is None or not ctx.owns(quote):
            return None
        return quote

    def update(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        data: QuoteUpdate,
        now: datetime | None = None,
    ) -> Quote:
        """
        Change a draft quote in place.

        Raises:
            NotEditableError: If the quote left DRAFT or is not the latest
                version. Use revise() to go through versioning instead.
        """
        current = self._require(ctx, quote_id)

        if not current.is_latest_version:
            raise NotEditableError(
                f"Quote {current.quote_number} v{current.version_number} is superseded"
            )
        if current.status != QuoteStatus.DRAFT:
            raise NotEditableError(
                f"Quote {current.quote_number} is {current.status.value}; "
                "create a new version to change it"
            )

        updates = data.model_dump(exclude_none=True)
        if not updates:
            return current

        now = now or now_utc()
        fields = {k: getattr(data, k) for k in updates}
        if "items" in fields:
            fields.update(self._priced(fields["items"]))
        fields["updated_at"] = now

        updated = current.model_copy(update=fields, deep=True)
        if updated.expires_at <= updated.issued_at:
            raise ValidationRangeError(
                "expires_at", updated.expires_at, minimum=updated.issued_at,
                message="Quote expiry date must be after its issue date",
            )

        with self.store.transaction():
            updated = self.store.upsert(tables.QUOTES, updated)
            changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
            if changes:
                self.audit.log_change(ctx, "quote", quote_id, AuditAction.UPDATE, changes)

        return updated

    def revise(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        data: QuoteUpdate,
        now: datetime | None = None,
    ) -> Quote:
        """
        Apply changes the way the quote's state allows.

        Drafts (latest version) change in place; anything else spawns a new
        version carrying the changes.
        """
        current = self._require(ctx, quote_id)
        if current.status == QuoteStatus.DRAFT and current.is_latest_version:
            return self.update(ctx, quote_id, data, now=now)
        return self.create_new_version(ctx, quote_id, changes=data, now=now)

    def delete(self, ctx: CompanyContext, quote_id: UUID) -> bool:
        """
        Delete a draft quote that was never versioned or invoiced.

        Returns:
            True if deleted, False if not found

        Raises:
            NotEditableError: If the quote is not a lone draft
        """
        current = self.get_by_id(ctx, quote_id)
        if current is None:
            return False

        if current.status != QuoteStatus.DRAFT:
            raise NotEditableError(f"Quote {current.quote_number} is {current.status.value}; only drafts can be deleted")
        if len(self._chain_versions(ctx, current.chain_id)) > 1:
            raise NotEditableError(f"Quote {current.quote_number} has several versions and cannot be deleted")
        if self.has_invoices(quote_id):
            raise NotEditableError(f"Quote {current.quote_number} has invoices and cannot be deleted")

        with self.store.transaction():
            self.store.delete(tables.QUOTES, quote_id)
            self.audit.log_change(
                ctx, "quote", quote_id, AuditAction.DELETE,
                {"deleted": current.model_dump(mode="json")},
            )

        return True

    def list_for_client(
        self,
        ctx: CompanyContext,
        client_id: UUID,
        latest_only: bool = True,
    ) -> list[Quote]:
        """
        List quotes for a client.

        Returns:
            Quotes ordered by creation time DESC
        """
        quotes = self.store.list(
            tables.QUOTES,
            lambda q: (
                q.company_id == ctx.company_id
                and q.client_id == client_id
                and (q.is_latest_version or not latest_only)
            ),
        )
        return sorted(quotes, key=lambda q: q.created_at, reverse=True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def transition(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        action: QuoteAction,
        payload: TransitionPayload | None = None,
        now: datetime | None = None,
    ) -> Quote:
        """
        Apply a state machine action and persist the result.

        Raises:
            RecordNotFoundError: If quote not found
            InvalidTransitionError: If the action is not allowed now
        """
        now = now or now_utc()
        current = self._require(ctx, quote_id)

        if payload is None:
            payload = TransitionPayload(actor_id=ctx.user_id)
        elif payload.actor_id is None:
            payload = payload.model_copy(update={"actor_id": ctx.user_id})

        updated = apply_transition(current, action, now, payload)

        with self.store.transaction():
            updated = self.store.upsert(tables.QUOTES, updated)
            self.audit.log_change(
                ctx, "quote", quote_id, AuditAction.UPDATE,
                compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json")),
            )

        logger.info(
            f"Quote {updated.quote_number} v{updated.version_number}: "
            f"{current.status.value} -> {updated.status.value}"
        )
        self.event_bus.publish(QuoteStatusChanged.create(quote=updated, previous_status=current.status))
        return updated

    def submit(self, ctx: CompanyContext, quote_id: UUID, now: datetime | None = None) -> Quote:
        """Send a draft for internal validation."""
        return self.transition(ctx, quote_id, QuoteAction.SUBMIT, now=now)

    def approve(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Quote:
        """Validate a quote and send it to the client for acceptance."""
        return self.transition(ctx, quote_id, QuoteAction.APPROVE, TransitionPayload(notes=notes), now=now)

    def reject(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Quote:
        """Reject during validation, or record the client's refusal."""
        return self.transition(ctx, quote_id, QuoteAction.REJECT, TransitionPayload(reason=reason), now=now)

    def accept(self, ctx: CompanyContext, quote_id: UUID, now: datetime | None = None) -> Quote:
        """Record the client's acceptance."""
        return self.transition(ctx, quote_id, QuoteAction.ACCEPT, now=now)

    def get_effective(self, ctx: CompanyContext, quote_id: UUID, now: datetime | None = None) -> Quote:
        """
        Quote as of now, with expiry applied to the returned copy only.

        Nothing is written; use refresh_expiry() to persist.
        """
        quote = self._require(ctx, quote_id)
        status = effective_status(quote, now or now_utc())
        if status != quote.status:
            return quote.model_copy(update={"status": status})
        return quote

    def refresh_expiry(self, ctx: CompanyContext, quote_id: UUID, now: datetime | None = None) -> Quote:
        """Persist EXPIRED if the quote ran out while awaiting acceptance."""
        now = now or now_utc()
        quote = self._require(ctx, quote_id)
        if not is_expired(quote, now):
            return quote
        return self.transition(ctx, quote_id, QuoteAction.EXPIRE, now=now)

    def expire_due(self, ctx: CompanyContext, now: datetime | None = None) -> list[Quote]:
        """Persist expiry for every quote of the company that ran out."""
        now = now or now_utc()
        due = self.store.list(
            tables.QUOTES,
            lambda q: q.company_id == ctx.company_id and is_expired(q, now),
        )
        return [self.transition(ctx, q.id, QuoteAction.EXPIRE, now=now) for q in due]

    def configure_reminder(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        enabled: bool,
        days_before_expiry: int | None = None,
        now: datetime | None = None,
    ) -> Quote:
        """
        Turn the expiry reminder on or off.

        Allowed on the latest version while no decision has been made.

        Raises:
            NotEditableError: If the quote is superseded or decided
        """
        current = self._require(ctx, quote_id)
        if not current.is_latest_version or current.status in (
            QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED, QuoteStatus.CONVERTED,
        ):
            raise NotEditableError(f"Reminders cannot change on quote {current.quote_number} ({current.status.value})")

        reminder = QuoteReminder(
            enabled=enabled,
            days_before_expiry=days_before_expiry or current.reminder.days_before_expiry,
        )
        updated = current.model_copy(update={"reminder": reminder, "updated_at": now or now_utc()}, deep=True)

        with self.store.transaction():
            updated = self.store.upsert(tables.QUOTES, updated)
            self.audit.log_change(
                ctx, "quote", quote_id, AuditAction.UPDATE,
                compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json")),
            )

        self.event_bus.publish(QuoteReminderChanged.create(quote=updated))
        return updated

    # -------------------------------------------------------------------------
    # Versions
    # -------------------------------------------------------------------------

    def create_new_version(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        changes: QuoteUpdate | None = None,
        now: datetime | None = None,
    ) -> Quote:
        """
        Spawn a new draft version of a quote.

        The source's lines and metadata are cloned, optional changes are
        applied on top, the new record becomes the chain's latest and the
        previous latest is frozen. Both writes commit together.

        Args:
            ctx: Company scope
            quote_id: Any version of the chain to copy from
            changes: Edits to carry into the new version
            now: Evaluation time

        Returns:
            The new version, in DRAFT

        Raises:
            RecordNotFoundError: If quote not found
            NotEditableError: If any version of the chain is converted or invoiced
            ChainIntegrityError: If the resulting chain breaks its invariants
                (nothing is written in that case)
        """
        now = now or now_utc()
        source = self._require(ctx, quote_id)
        versions = self._chain_versions(ctx, source.chain_id)
        ensure_revisable(
            source,
            has_invoices=any(self.has_invoices(v.id) for v in versions),
            chain=versions,
        )

        new_version = build_next_version(
            source,
            versions,
            now,
            expires_at=add_days(now, self.config.quote_validity_days),
        )

        if changes is not None:
            fields = {k: getattr(changes, k) for k in changes.model_dump(exclude_none=True)}
            if "items" in fields:
                fields.update(self._priced(fields["items"]))
            new_version = new_version.model_copy(update=fields, deep=True)

        superseded = [v for v in versions if v.is_latest_version]

        with self.store.transaction():
            for previous in superseded:
                self.store.upsert(
                    tables.QUOTES,
                    previous.model_copy(update={"is_latest_version": False, "updated_at": now}),
                )
                self.audit.log_change(
                    ctx, "quote", previous.id, AuditAction.UPDATE,
                    {"is_latest_version": {"old": True, "new": False}},
                )

            new_version = self.store.upsert(tables.QUOTES, new_version)
            self.audit.log_change(
                ctx, "quote", new_version.id, AuditAction.CREATE,
                {"created": new_version.model_dump(mode="json"), "source_quote_id": str(source.id)},
            )

            verify_chain(self._chain_versions(ctx, source.chain_id))

        logger.info(
            f"Quote {new_version.quote_number}: created v{new_version.version_number} from v{source.version_number}"
        )
        self.event_bus.publish(QuoteVersionCreated.create(
            quote=new_version,
            superseded=superseded[0] if superseded else None,
        ))
        return new_version

    def list_chain(self, ctx: CompanyContext, quote_id: UUID) -> QuoteChain:
        """
        All versions of the quote's chain, newest first.

        The result is re-iterable and reads the store on each pass.

        Raises:
            RecordNotFoundError: If quote not found
        """
        quote = self._require(ctx, quote_id)
        return QuoteChain(self.store, ctx.company_id, quote.chain_id)

    def latest_version(self, ctx: CompanyContext, quote_id: UUID) -> Quote:
        """The current version of the chain any version belongs to."""
        for version in self.list_chain(ctx, quote_id):
            if version.is_latest_version:
                return version
        raise RecordNotFoundError("quote", quote_id)

    def verify_chain(self, ctx: CompanyContext, quote_id: UUID) -> None:
        """
        Check the chain's invariants.

        Raises:
            ChainIntegrityError: If they do not hold
        """
        verify_chain(list(self.list_chain(ctx, quote_id)))
