"""
Invoice service for billing and payments.

Invoices are created by hand or generated from an accepted quote (see
conversion_service). Payment status is never set directly: every change to
payments or credit applications re-sums them from the store and derives
the status through core.balance.
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel

from clients.memory_store import RecordStore
from core import tables
from core.audit import AuditLogger, AuditAction, compute_changes
from core.balance import completed_total, derive_status, is_overdue, paid_percentage, remaining_balance
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import (
    BillingEvent, InvoiceCancelled, InvoiceCreated, InvoicePaid, InvoiceSent,
    PaymentDeleted, PaymentRecorded,
)
from core.exceptions import NotEditableError, OverpaymentError, RecordNotFoundError, ValidationRangeError
from core.models import (
    Invoice, InvoiceCreate, InvoiceStatus, LineItem, Payment, PaymentCreate, PaymentStatus,
)
from core.numbering import next_document_number
from core.tax import compute_totals, is_standard_rate
from utils.company_context import CompanyContext
from utils.timezone import add_days, now_utc

logger = logging.getLogger(__name__)

# Allowed payment status changes
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
}


class PaymentSummary(BaseModel):
    """Settlement figures for one invoice."""

    invoice_id: UUID
    total: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    remaining: Decimal
    paid_percentage: Decimal
    payment_count: int
    is_overdue: bool
    has_overpayment: bool


class InvoiceService:
    """Service for invoice and payment operations."""

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

    def _generate_invoice_number(self, ctx: CompanyContext, now: datetime) -> str:
        existing = self.store.list(tables.INVOICES, lambda i: i.company_id == ctx.company_id)
        return next_document_number((i.invoice_number for i in existing), self.config.invoice_prefix, now)

    def _require(self, ctx: CompanyContext, invoice_id: UUID) -> Invoice:
        invoice = self.get_by_id(ctx, invoice_id)
        if invoice is None:
            raise RecordNotFoundError("invoice", invoice_id)
        return invoice

    def _publish(self, events: list[BillingEvent]):
        for event in events:
            self.event_bus.publish(event)

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def create(self, ctx: CompanyContext, data: InvoiceCreate, now: datetime | None = None) -> Invoice:
        """
        Create an invoice by hand, in DRAFT status.

        Raises:
            ValidationRangeError: If due_at is before issued_at
        """
        now = now or now_utc()
        invoice = self.insert(
            ctx,
            client_id=data.client_id,
            items=data.items,
            issued_at=data.issued_at or now,
            due_at=data.due_at,
            notes=data.notes,
            now=now,
        )
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))
        return invoice

    def insert(
        self,
        ctx: CompanyContext,
        client_id: UUID,
        items: list[LineItem],
        issued_at: datetime,
        due_at: datetime | None = None,
        notes: str | None = None,
        now: datetime | None = None,
        **links,
    ) -> Invoice:
        """
        Price, number, store and audit a new draft invoice.

        Publishes nothing; callers publish once their whole operation has
        committed. Extra keyword arguments are stored as-is (quote and
        deposit links).
        """
        now = now or now_utc()
        due_at = due_at or add_days(issued_at, self.config.payment_terms_days)
        if due_at < issued_at:
            raise ValidationRangeError(
                "due_at", due_at, minimum=issued_at,
                message="Invoice due date cannot be before its issue date",
            )

        for item in items:
            if not is_standard_rate(item.vat_rate):
                logger.warning(f"Non-standard VAT rate {item.vat_rate}% on line '{item.description}'")
        totals = compute_totals(items)

        invoice = Invoice(
            id=uuid4(),
            company_id=ctx.company_id,
            client_id=client_id,
            invoice_number=self._generate_invoice_number(ctx, now),
            status=InvoiceStatus.DRAFT,
            items=items,
            subtotal=totals.subtotal,
            vat_amount=totals.vat_amount,
            total=totals.total,
            issued_at=issued_at,
            due_at=due_at,
            notes=notes,
            created_at=now,
            updated_at=now,
            **links,
        )

        with self.store.transaction():
            invoice = self.store.upsert(tables.INVOICES, invoice)
            self.audit.log_change(
                ctx,
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": invoice.model_dump(mode="json")},
            )

        logger.info(f"Created invoice {invoice.invoice_number} total={invoice.total}")
        return invoice

    def get_by_id(self, ctx: CompanyContext, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found in the caller's company, None otherwise.
        """
        invoice = self.store.get(tables.INVOICES, invoice_id)
        if invoice is None or not ctx.owns(invoice):
            return None
        return invoice

    def send(self, ctx: CompanyContext, invoice_id: UUID, now: datetime | None = None) -> Invoice:
        """
        Send a draft invoice.

        The payment status is derived right away, so an invoice sent after
        its due date lands in OVERDUE.

        Raises:
            NotEditableError: If the invoice is not a draft
        """
        now = now or now_utc()
        current = self._require(ctx, invoice_id)

        if current.status != InvoiceStatus.DRAFT:
            raise NotEditableError(f"Invoice {current.invoice_number} is {current.status.value}; only drafts can be sent")

        sent = current.model_copy(update={"status": InvoiceStatus.SENT, "sent_at": now, "updated_at": now})
        sent = sent.model_copy(update={"status": derive_status(sent, now)})

        with self.store.transaction():
            sent = self.store.upsert(tables.INVOICES, sent)
            self.audit.log_change(
                ctx, "invoice", invoice_id, AuditAction.UPDATE,
                compute_changes(current.model_dump(mode="json"), sent.model_dump(mode="json")),
            )

        logger.info(f"Sent invoice {sent.invoice_number}")
        self.event_bus.publish(InvoiceSent.create(invoice=sent))
        return sent

    def cancel(self, ctx: CompanyContext, invoice_id: UUID, now: datetime | None = None) -> Invoice:
        """
        Cancel an invoice.

        A cancelled invoice no longer counts against its quote. A deposit's
        balance invoice link is cleared when the balance is cancelled.

        Raises:
            NotEditableError: If already cancelled, or money was settled on it
        """
        now = now or now_utc()
        current = self._require(ctx, invoice_id)

        if current.status == InvoiceStatus.CANCELLED:
            raise NotEditableError(f"Invoice {current.invoice_number} is already cancelled")
        if self.list_payments(ctx, invoice_id, completed_only=True):
            raise NotEditableError(f"Invoice {current.invoice_number} has completed payments and cannot be cancelled")
        if self.store.list(tables.CREDIT_NOTE_APPLICATIONS, lambda a: a.invoice_id == invoice_id):
            raise NotEditableError(f"Invoice {current.invoice_number} has applied credit notes and cannot be cancelled")

        cancelled = current.model_copy(update={
            "status": InvoiceStatus.CANCELLED,
            "cancelled_at": now,
            "updated_at": now,
        })

        with self.store.transaction():
            cancelled = self.store.upsert(tables.INVOICES, cancelled)
            self.audit.log_change(
                ctx, "invoice", invoice_id, AuditAction.UPDATE,
                compute_changes(current.model_dump(mode="json"), cancelled.model_dump(mode="json")),
            )

            if current.deposit_invoice_id is not None:
                deposit = self.store.get(tables.INVOICES, current.deposit_invoice_id)
                if deposit is not None and deposit.final_invoice_id == invoice_id:
                    self.store.upsert(
                        tables.INVOICES,
                        deposit.model_copy(update={"final_invoice_id": None, "updated_at": now}),
                    )
                    self.audit.log_change(
                        ctx, "invoice", deposit.id, AuditAction.UPDATE,
                        {"final_invoice_id": {"old": str(invoice_id), "new": None}},
                    )

        logger.info(f"Cancelled invoice {cancelled.invoice_number}")
        self.event_bus.publish(InvoiceCancelled.create(invoice=cancelled))
        return cancelled

    def list_for_client(self, ctx: CompanyContext, client_id: UUID, limit: int = 50) -> list[Invoice]:
        """
        List invoices for a client.

        Returns:
            Invoices ordered by creation time DESC
        """
        invoices = self.store.list(
            tables.INVOICES,
            lambda i: i.company_id == ctx.company_id and i.client_id == client_id,
        )
        return sorted(invoices, key=lambda i: i.created_at, reverse=True)[:limit]

    def list_for_quote(self, ctx: CompanyContext, quote_id: UUID, include_cancelled: bool = True) -> list[Invoice]:
        """Invoices generated from a quote, oldest first."""
        invoices = self.store.list(
            tables.INVOICES,
            lambda i: (
                i.company_id == ctx.company_id
                and i.source_quote_id == quote_id
                and (include_cancelled or i.status != InvoiceStatus.CANCELLED)
            ),
        )
        return sorted(invoices, key=lambda i: i.created_at)

    def list_overdue(self, ctx: CompanyContext, now: datetime | None = None) -> list[Invoice]:
        """
        Invoices past due with money still owed, as of now.

        Derived on read; partial invoices past due are included.

        Returns:
            Overdue invoices ordered by due date
        """
        now = now or now_utc()
        invoices = self.store.list(
            tables.INVOICES,
            lambda i: i.company_id == ctx.company_id and is_overdue(i, now),
        )
        return sorted(invoices, key=lambda i: i.due_at)

    def remaining_balance(self, ctx: CompanyContext, invoice_id: UUID) -> Decimal:
        """Amount still owed on an invoice."""
        return remaining_balance(self._require(ctx, invoice_id))

    def available_balance(self, ctx: CompanyContext, invoice_id: UUID) -> Decimal:
        """Amount still owed minus what pending payments already reserve."""
        invoice = self._require(ctx, invoice_id)
        pending = sum(
            (p.amount for p in self.list_payments(ctx, invoice.id) if p.status == PaymentStatus.PENDING),
            Decimal("0.00"),
        )
        return remaining_balance(invoice) - pending

    def payment_summary(self, ctx: CompanyContext, invoice_id: UUID, now: datetime | None = None) -> PaymentSummary:
        """Settlement figures for an invoice."""
        now = now or now_utc()
        invoice = self._require(ctx, invoice_id)
        return PaymentSummary(
            invoice_id=invoice.id,
            total=invoice.total,
            paid_amount=invoice.paid_amount,
            credited_amount=invoice.credited_amount,
            remaining=remaining_balance(invoice),
            paid_percentage=paid_percentage(invoice),
            payment_count=len(self.list_payments(ctx, invoice_id, completed_only=True)),
            is_overdue=is_overdue(invoice, now),
            has_overpayment=invoice.has_overpayment,
        )

    # -------------------------------------------------------------------------
    # Balance
    # -------------------------------------------------------------------------

    def recompute(
        self,
        ctx: CompanyContext,
        invoice_id: UUID,
        now: datetime | None = None,
        events: list[BillingEvent] | None = None,
    ) -> Invoice:
        """
        Re-sum payments and credit applications and derive the status.

        Args:
            ctx: Company scope
            invoice_id: Invoice to recompute
            now: Evaluation time
            events: When given, an InvoicePaid event is appended here
                instead of being published, so the caller can publish after
                its own transaction commits.

        Returns:
            The stored invoice
        """
        now = now or now_utc()
        current = self._require(ctx, invoice_id)

        paid = completed_total(self.list_payments(ctx, invoice_id))
        credited = sum(
            (a.amount for a in self.store.list(tables.CREDIT_NOTE_APPLICATIONS, lambda a: a.invoice_id == invoice_id)),
            Decimal("0.00"),
        )

        updated = current.model_copy(update={"paid_amount": paid, "credited_amount": credited})
        status = derive_status(updated, now)
        fields = {"status": status}
        if status == InvoiceStatus.PAID and current.paid_at is None:
            fields["paid_at"] = now
        elif status != InvoiceStatus.PAID:
            fields["paid_at"] = None
        updated = updated.model_copy(update=fields)

        if updated.has_overpayment:
            logger.warning(
                f"Invoice {updated.invoice_number} settled {updated.settled_amount} "
                f"over total {updated.total}"
            )

        changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
        if not changes:
            return current

        updated = updated.model_copy(update={"updated_at": now})
        with self.store.transaction():
            updated = self.store.upsert(tables.INVOICES, updated)
            self.audit.log_change(ctx, "invoice", invoice_id, AuditAction.UPDATE, changes)

        if "status" in changes:
            logger.info(f"Invoice {updated.invoice_number}: {current.status.value} -> {updated.status.value}")

        if updated.status == InvoiceStatus.PAID and current.status != InvoiceStatus.PAID:
            paid_event = InvoicePaid.create(invoice=updated)
            if events is None:
                self.event_bus.publish(paid_event)
            else:
                events.append(paid_event)

        return updated

    def refresh_status(self, ctx: CompanyContext, invoice_id: UUID, now: datetime | None = None) -> Invoice:
        """Persist the status implied by now (e.g. SENT becoming OVERDUE)."""
        return self.recompute(ctx, invoice_id, now=now)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(self, ctx: CompanyContext, data: PaymentCreate, now: datetime | None = None) -> Payment:
        """
        Record a payment against an invoice.

        Pending payments reserve their amount too, so the sum of completed
        and pending payments can never exceed what is owed.

        Returns:
            Created payment

        Raises:
            RecordNotFoundError: If invoice not found
            NotEditableError: If the invoice is a draft or cancelled
            OverpaymentError: If the amount exceeds the remaining balance
        """
        now = now or now_utc()
        invoice = self._require(ctx, data.invoice_id)

        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
            raise NotEditableError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}; payments are not accepted"
            )

        available = self.available_balance(ctx, invoice.id)
        if data.amount > available:
            raise OverpaymentError(
                "amount", data.amount, minimum=Decimal("0.01"), maximum=available,
                message=f"Payment of {data.amount} exceeds the remaining balance {available} of invoice {invoice.invoice_number}",
            )

        payment = Payment(
            id=uuid4(),
            company_id=ctx.company_id,
            invoice_id=invoice.id,
            amount=data.amount,
            method=data.method,
            status=data.status,
            paid_at=data.paid_at or now,
            reference=data.reference,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )

        events: list[BillingEvent] = []
        with self.store.transaction():
            payment = self.store.upsert(tables.PAYMENTS, payment)
            self.audit.log_change(
                ctx, "payment", payment.id, AuditAction.CREATE,
                {"created": payment.model_dump(mode="json")},
            )
            if payment.counts_towards_balance:
                self.store.upsert(
                    tables.INVOICES,
                    self._require(ctx, invoice.id).model_copy(update={"last_payment_at": payment.paid_at}),
                )
            updated = self.recompute(ctx, invoice.id, now=now, events=events)

        logger.info(f"Recorded payment of {payment.amount} on invoice {updated.invoice_number}")
        self.event_bus.publish(PaymentRecorded.create(payment=payment, invoice=updated))
        self._publish(events)
        return payment

    def get_payment(self, ctx: CompanyContext, payment_id: UUID) -> Payment | None:
        """Get payment by ID, None if not found in the caller's company."""
        payment = self.store.get(tables.PAYMENTS, payment_id)
        if payment is None or not ctx.owns(payment):
            return None
        return payment

    def list_payments(self, ctx: CompanyContext, invoice_id: UUID, completed_only: bool = False) -> list[Payment]:
        """Payments of an invoice, oldest first."""
        payments = self.store.list(
            tables.PAYMENTS,
            lambda p: (
                p.company_id == ctx.company_id
                and p.invoice_id == invoice_id
                and (p.counts_towards_balance or not completed_only)
            ),
        )
        return sorted(payments, key=lambda p: p.paid_at)

    def delete_payment(self, ctx: CompanyContext, payment_id: UUID, now: datetime | None = None) -> bool:
        """
        Delete a payment and recompute its invoice.

        Returns:
            True if deleted, False if not found

        Raises:
            NotEditableError: If the invoice is cancelled
        """
        now = now or now_utc()
        payment = self.get_payment(ctx, payment_id)
        if payment is None:
            return False

        invoice = self._require(ctx, payment.invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise NotEditableError(f"Invoice {invoice.invoice_number} is cancelled; its payments are frozen")

        with self.store.transaction():
            self.store.delete(tables.PAYMENTS, payment_id)
            self.audit.log_change(
                ctx, "payment", payment_id, AuditAction.DELETE,
                {"deleted": payment.model_dump(mode="json")},
            )
            updated = self.recompute(ctx, invoice.id, now=now)

        logger.info(f"Deleted payment of {payment.amount} from invoice {updated.invoice_number}")
        self.event_bus.publish(PaymentDeleted.create(payment=payment, invoice=updated))
        return True

    def set_payment_status(
        self,
        ctx: CompanyContext,
        payment_id: UUID,
        status: PaymentStatus,
        now: datetime | None = None,
    ) -> Payment:
        """
        Move a payment through its lifecycle and recompute its invoice.

        Allowed: pending -> completed/failed, completed -> refunded.

        Raises:
            RecordNotFoundError: If payment not found
            NotEditableError: If the change is not allowed
        """
        now = now or now_utc()
        current = self.get_payment(ctx, payment_id)
        if current is None:
            raise RecordNotFoundError("payment", payment_id)

        if status not in PAYMENT_TRANSITIONS.get(current.status, set()):
            raise NotEditableError(f"Payment cannot go from {current.status.value} to {status.value}")

        invoice = self._require(ctx, current.invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise NotEditableError(f"Invoice {invoice.invoice_number} is cancelled; its payments are frozen")

        updated = current.model_copy(update={"status": status, "updated_at": now})

        events: list[BillingEvent] = []
        with self.store.transaction():
            updated = self.store.upsert(tables.PAYMENTS, updated)
            self.audit.log_change(
                ctx, "payment", payment_id, AuditAction.UPDATE,
                {"status": {"old": current.status.value, "new": status.value}},
            )
            if status == PaymentStatus.COMPLETED:
                self.store.upsert(
                    tables.INVOICES,
                    self._require(ctx, invoice.id).model_copy(update={"last_payment_at": updated.paid_at}),
                )
            self.recompute(ctx, invoice.id, now=now, events=events)

        self._publish(events)
        return updated
