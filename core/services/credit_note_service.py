"""
Credit note (avoir) service.

A credit note is drafted, issued, then consumed against one or more of the
client's invoices. Each application lowers the invoice's balance exactly
like a payment does and triggers the same recompute.
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from clients.memory_store import RecordStore
from core import tables
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import BillingEvent, CreditNoteApplied
from core.exceptions import NotEditableError, OverpaymentError, RecordNotFoundError, ValidationRangeError
from core.models import (
    CreditNote, CreditNoteApplication, CreditNoteCreate, CreditNoteStatus, InvoiceStatus,
)
from core.numbering import next_document_number
from core.services.invoice_service import InvoiceService
from core.tax import compute_totals
from utils.company_context import CompanyContext
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Invoices that can still receive credit
CREDITABLE_STATUSES = {InvoiceStatus.SENT, InvoiceStatus.PARTIAL, InvoiceStatus.OVERDUE}


class CreditNoteService:
    """Service for credit note operations."""

    def __init__(
        self,
        store: RecordStore,
        audit: AuditLogger,
        event_bus: EventBus,
        invoices: InvoiceService,
        config: BillingConfig | None = None,
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.invoices = invoices
        self.config = config or BillingConfig()

    def _require(self, ctx: CompanyContext, credit_note_id: UUID) -> CreditNote:
        credit_note = self.get_by_id(ctx, credit_note_id)
        if credit_note is None:
            raise RecordNotFoundError("credit_note", credit_note_id)
        return credit_note

    def _save(self, ctx: CompanyContext, current: CreditNote, updated: CreditNote) -> CreditNote:
        updated = self.store.upsert(tables.CREDIT_NOTES, updated)
        self.audit.log_change(
            ctx, "credit_note", current.id, AuditAction.UPDATE,
            compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json")),
        )
        return updated

    def create(self, ctx: CompanyContext, data: CreditNoteCreate, now: datetime | None = None) -> CreditNote:
        """
        Create a credit note in DRAFT status.

        Raises:
            RecordNotFoundError: If the referenced invoice does not exist
            ValueError: If the invoice belongs to another client
        """
        now = now or now_utc()

        if data.invoice_id is not None:
            invoice = self.invoices.get_by_id(ctx, data.invoice_id)
            if invoice is None:
                raise RecordNotFoundError("invoice", data.invoice_id)
            if invoice.client_id != data.client_id:
                raise ValueError(f"Invoice {invoice.invoice_number} belongs to another client")

        existing = self.store.list(tables.CREDIT_NOTES, lambda c: c.company_id == ctx.company_id)
        totals = compute_totals(data.items)

        credit_note = CreditNote(
            id=uuid4(),
            company_id=ctx.company_id,
            client_id=data.client_id,
            credit_note_number=next_document_number(
                (c.credit_note_number for c in existing), self.config.credit_note_prefix, now,
            ),
            invoice_id=data.invoice_id,
            status=CreditNoteStatus.DRAFT,
            reason=data.reason,
            reason_description=data.reason_description,
            items=data.items,
            subtotal=totals.subtotal,
            vat_amount=totals.vat_amount,
            total=totals.total,
            remaining_amount=totals.total,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )

        with self.store.transaction():
            credit_note = self.store.upsert(tables.CREDIT_NOTES, credit_note)
            self.audit.log_change(
                ctx,
                entity_type="credit_note",
                entity_id=credit_note.id,
                action=AuditAction.CREATE,
                changes={"created": credit_note.model_dump(mode="json")},
            )

        logger.info(f"Created credit note {credit_note.credit_note_number} total={credit_note.total}")
        return credit_note

    def get_by_id(self, ctx: CompanyContext, credit_note_id: UUID) -> CreditNote | None:
        """Get credit note by ID, None if not found in the caller's company."""
        credit_note = self.store.get(tables.CREDIT_NOTES, credit_note_id)
        if credit_note is None or not ctx.owns(credit_note):
            return None
        return credit_note

    def list_for_client(self, ctx: CompanyContext, client_id: UUID) -> list[CreditNote]:
        """Credit notes of a client, newest first."""
        credit_notes = self.store.list(
            tables.CREDIT_NOTES,
            lambda c: c.company_id == ctx.company_id and c.client_id == client_id,
        )
        return sorted(credit_notes, key=lambda c: c.created_at, reverse=True)

    def list_applications(self, ctx: CompanyContext, credit_note_id: UUID) -> list[CreditNoteApplication]:
        """Where a credit note was consumed, oldest first."""
        applications = self.store.list(
            tables.CREDIT_NOTE_APPLICATIONS,
            lambda a: a.company_id == ctx.company_id and a.credit_note_id == credit_note_id,
        )
        return sorted(applications, key=lambda a: a.applied_at)

    def issue(self, ctx: CompanyContext, credit_note_id: UUID, now: datetime | None = None) -> CreditNote:
        """
        Issue a draft credit note, making it applicable.

        Raises:
            NotEditableError: If not a draft
        """
        now = now or now_utc()
        current = self._require(ctx, credit_note_id)
        if current.status != CreditNoteStatus.DRAFT:
            raise NotEditableError(f"Credit note {current.credit_note_number} is {current.status.value}")

        with self.store.transaction():
            issued = self._save(ctx, current, current.model_copy(update={
                "status": CreditNoteStatus.ISSUED,
                "issued_at": now,
                "updated_at": now,
            }))

        logger.info(f"Issued credit note {issued.credit_note_number}")
        return issued

    def apply(
        self,
        ctx: CompanyContext,
        credit_note_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        now: datetime | None = None,
    ) -> CreditNoteApplication:
        """
        Consume part of a credit note against an invoice.

        Args:
            ctx: Company scope
            credit_note_id: Issued credit note
            invoice_id: Sent, partial or overdue invoice of the same client
            amount: Amount to apply
            now: Evaluation time

        Returns:
            The stored application

        Raises:
            RecordNotFoundError: If either record is missing
            NotEditableError: If the credit note is not issued, is bound to
                another invoice, or the invoice cannot receive credit
            ValidationRangeError: If the amount is not positive or exceeds
                what remains on the credit note
            OverpaymentError: If the amount exceeds the balance pending payments leave open
        """
        now = now or now_utc()
        credit_note = self._require(ctx, credit_note_id)
        invoice = self.invoices.get_by_id(ctx, invoice_id)
        if invoice is None:
            raise RecordNotFoundError("invoice", invoice_id)

        if credit_note.status != CreditNoteStatus.ISSUED:
            raise NotEditableError(
                f"Credit note {credit_note.credit_note_number} is {credit_note.status.value}; only issued credit notes apply"
            )
        if credit_note.invoice_id is not None and credit_note.invoice_id != invoice_id:
            raise NotEditableError(
                f"Credit note {credit_note.credit_note_number} is bound to another invoice"
            )
        if credit_note.client_id != invoice.client_id:
            raise NotEditableError(f"Invoice {invoice.invoice_number} belongs to another client")
        if invoice.status not in CREDITABLE_STATUSES:
            raise NotEditableError(f"Invoice {invoice.invoice_number} is {invoice.status.value}; credit cannot be applied")

        if amount <= 0 or amount > credit_note.remaining_amount:
            raise ValidationRangeError("amount", amount, Decimal("0.01"), credit_note.remaining_amount)
        owed = self.invoices.available_balance(ctx, invoice.id)
        if amount > owed:
            raise OverpaymentError(
                "amount", amount, minimum=Decimal("0.01"), maximum=owed,
                message=f"Credit of {amount} exceeds the unreserved balance {owed} of invoice {invoice.invoice_number}",
            )

        application = CreditNoteApplication(
            id=uuid4(),
            company_id=ctx.company_id,
            credit_note_id=credit_note.id,
            invoice_id=invoice.id,
            amount=amount,
            applied_at=now,
        )

        applied = credit_note.applied_amount + amount
        remaining = credit_note.total - applied

        events: list[BillingEvent] = []
        with self.store.transaction():
            application = self.store.upsert(tables.CREDIT_NOTE_APPLICATIONS, application)
            self.audit.log_change(
                ctx, "credit_note_application", application.id, AuditAction.CREATE,
                {"created": application.model_dump(mode="json")},
            )
            credit_note = self._save(ctx, credit_note, credit_note.model_copy(update={
                "applied_amount": applied,
                "remaining_amount": remaining,
                "status": CreditNoteStatus.APPLIED if remaining <= 0 else CreditNoteStatus.ISSUED,
                "updated_at": now,
            }))
            invoice = self.invoices.recompute(ctx, invoice.id, now=now, events=events)

        logger.info(
            f"Applied {amount} of credit note {credit_note.credit_note_number} "
            f"to invoice {invoice.invoice_number}"
        )
        self.event_bus.publish(CreditNoteApplied.create(credit_note=credit_note, invoice=invoice, amount=amount))
        for event in events:
            self.event_bus.publish(event)
        return application

    def cancel(self, ctx: CompanyContext, credit_note_id: UUID, now: datetime | None = None) -> CreditNote:
        """
        Cancel a credit note that was never applied.

        Raises:
            NotEditableError: If already cancelled or partly applied
        """
        now = now or now_utc()
        current = self._require(ctx, credit_note_id)
        if current.status == CreditNoteStatus.CANCELLED:
            raise NotEditableError(f"Credit note {current.credit_note_number} is already cancelled")
        if self.list_applications(ctx, credit_note_id):
            raise NotEditableError(f"Credit note {current.credit_note_number} has been applied and cannot be cancelled")

        with self.store.transaction():
            cancelled = self._save(ctx, current, current.model_copy(update={
                "status": CreditNoteStatus.CANCELLED,
                "updated_at": now,
            }))

        logger.info(f"Cancelled credit note {cancelled.credit_note_number}")
        return cancelled
