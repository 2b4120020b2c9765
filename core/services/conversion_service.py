"""
Quote-to-invoice conversion.

Turns an accepted quote into invoices: one full invoice, a deposit
invoice followed by an explicitly requested balance invoice, or a series
of partial invoices. The arithmetic lives in core.conversion; this service
loads snapshots, runs the checks and writes everything in one transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from clients.memory_store import RecordStore
from core import tables
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.conversion import (
    ConversionMode, balance_items, deposit_items, ensure_convertible, full_items,
    invoiced_total, remaining_convertible, resolve_deposit,
)
from core.event_bus import EventBus
from core.events import BillingEvent, InvoiceCreated, QuoteConverted, QuoteStatusChanged
from core.exceptions import NotEditableError, RecordNotFoundError
from core.models import Invoice, InvoiceStatus, Quote, QuoteStatus
from core.quote_states import QuoteAction, TransitionPayload, apply_transition
from core.services.invoice_service import InvoiceService
from core.tax import compute_totals
from utils.company_context import CompanyContext
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class ConversionResult(BaseModel):
    """Outcome of invoicing a quote."""

    quote: Quote
    invoice: Invoice
    remaining_convertible: Decimal
    pending_balance: Decimal  # Still to bill through create_balance_invoice()


class ConversionService:
    """Service for converting quotes into invoices."""

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

    def _require_quote(self, ctx: CompanyContext, quote_id: UUID) -> Quote:
        quote = self.store.get(tables.QUOTES, quote_id)
        if quote is None or not ctx.owns(quote):
            raise RecordNotFoundError("quote", quote_id)
        return quote

    def _save_quote(self, ctx: CompanyContext, current: Quote, updated: Quote) -> Quote:
        updated = self.store.upsert(tables.QUOTES, updated)
        self.audit.log_change(
            ctx, "quote", current.id, AuditAction.UPDATE,
            compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json")),
        )
        return updated

    def remaining_convertible(self, ctx: CompanyContext, quote_id: UUID) -> Decimal:
        """Quote total minus every non-cancelled invoice generated from it."""
        quote = self._require_quote(ctx, quote_id)
        return remaining_convertible(quote, self.invoices.list_for_quote(ctx, quote_id))

    def convert(
        self,
        ctx: CompanyContext,
        quote_id: UUID,
        mode: ConversionMode = ConversionMode.FULL,
        deposit_amount: Decimal | None = None,
        deposit_percentage: Decimal | None = None,
        issued_at: datetime | None = None,
        due_at: datetime | None = None,
        now: datetime | None = None,
    ) -> ConversionResult:
        """
        Generate an invoice from an accepted quote.

        FULL without a deposit bills whatever remains of the quote and
        converts it. FULL with a deposit bills the deposit only, converts
        the quote and leaves the balance pending. PARTIAL bills a deposit
        (the configured default percentage when none is given) and converts
        the quote only once nothing remains. A zero deposit is a FULL
        conversion; a zero-total quote yields a zero-total invoice.

        Args:
            ctx: Company scope
            quote_id: Accepted quote, latest version
            mode: FULL or PARTIAL
            deposit_amount: Deposit in currency units
            deposit_percentage: Deposit as percent of the quote total
            issued_at: Invoice issue date (default now)
            due_at: Invoice due date (default issue date + payment terms)
            now: Evaluation time

        Returns:
            ConversionResult with the stored quote and invoice

        Raises:
            RecordNotFoundError: If quote not found
            InvalidTransitionError: If the quote is not an accepted latest version
            ValidationRangeError: If the deposit is out of range or inconsistent
            OverConversionError: If the invoice would exceed the quote total
        """
        now = now or now_utc()
        issued_at = issued_at or now
        quote = self._require_quote(ctx, quote_id)

        # Validates status, version and expiry before anything is computed
        converted = apply_transition(quote, QuoteAction.CONVERT, now, TransitionPayload(actor_id=ctx.user_id))

        existing = self.invoices.list_for_quote(ctx, quote_id)
        has_deposit = deposit_amount is not None or deposit_percentage is not None
        if mode == ConversionMode.PARTIAL and not has_deposit:
            deposit_percentage = self.config.default_deposit_percentage
            has_deposit = True

        terms = None
        if has_deposit:
            terms = resolve_deposit(
                quote.total,
                amount=deposit_amount,
                percentage=deposit_percentage,
                tolerance=self.config.money_tolerance,
            )

        links: dict = {"source_quote_id": quote.id}
        if terms is not None and terms.amount > ZERO:
            ensure_convertible(quote, existing, terms.amount)
            items = deposit_items(quote, existing, terms)
            links.update(is_deposit=True, deposit_percentage=terms.percentage)
        else:
            # A zero deposit bills nothing upfront: the whole remainder is invoiced
            if terms is not None:
                logger.info(f"Quote {quote.quote_number}: zero deposit, converting in full")
                mode = ConversionMode.FULL
            if invoiced_total(existing) > ZERO and remaining_convertible(quote, existing) <= ZERO:
                raise NotEditableError(f"Quote {quote.quote_number} has nothing left to invoice")
            items = full_items(quote, existing)
            ensure_convertible(quote, existing, compute_totals(items).total)

        events: list[BillingEvent] = []
        with self.store.transaction():
            invoice = self.invoices.insert(
                ctx,
                client_id=quote.client_id,
                items=items,
                issued_at=issued_at,
                due_at=due_at,
                notes=quote.terms,
                now=now,
                **links,
            )
            events.append(InvoiceCreated.create(invoice=invoice))

            remaining = remaining_convertible(quote, existing + [invoice])
            if mode == ConversionMode.FULL or remaining <= ZERO:
                quote = self._save_quote(ctx, quote, converted)
                events.append(QuoteStatusChanged.create(quote=quote, previous_status=QuoteStatus.ACCEPTED))
            events.append(QuoteConverted.create(quote=quote, invoice=invoice))

        pending = remaining if quote.status == QuoteStatus.CONVERTED else ZERO
        logger.info(
            f"Converted quote {quote.quote_number} ({mode.value}) into invoice "
            f"{invoice.invoice_number} total={invoice.total}, remaining={remaining}"
        )
        for event in events:
            self.event_bus.publish(event)

        return ConversionResult(
            quote=quote,
            invoice=invoice,
            remaining_convertible=remaining,
            pending_balance=pending,
        )

    def create_balance_invoice(
        self,
        ctx: CompanyContext,
        deposit_invoice_id: UUID,
        issued_at: datetime | None = None,
        due_at: datetime | None = None,
        now: datetime | None = None,
    ) -> ConversionResult:
        """
        Bill the rest of a quote after a deposit.

        Links the balance invoice and the deposit both ways, and converts
        the quote if it was still accepted (partial conversions).

        Raises:
            RecordNotFoundError: If the deposit invoice or its quote is missing
            NotEditableError: If the invoice is not an active deposit, its
                balance was already billed, or nothing remains to bill
            OverConversionError: If the balance would exceed the quote total
        """
        now = now or now_utc()
        issued_at = issued_at or now

        deposit = self.invoices.get_by_id(ctx, deposit_invoice_id)
        if deposit is None:
            raise RecordNotFoundError("invoice", deposit_invoice_id)
        if not deposit.is_deposit or deposit.source_quote_id is None:
            raise NotEditableError(f"Invoice {deposit.invoice_number} is not a deposit invoice")
        if deposit.status == InvoiceStatus.CANCELLED:
            raise NotEditableError(f"Deposit invoice {deposit.invoice_number} is cancelled")
        if deposit.final_invoice_id is not None:
            raise NotEditableError(f"The balance of deposit invoice {deposit.invoice_number} is already billed")

        quote = self._require_quote(ctx, deposit.source_quote_id)
        existing = self.invoices.list_for_quote(ctx, quote.id)
        if remaining_convertible(quote, existing) <= ZERO:
            raise NotEditableError(f"Quote {quote.quote_number} has nothing left to invoice")

        converted = None
        if quote.status == QuoteStatus.ACCEPTED:
            converted = apply_transition(quote, QuoteAction.CONVERT, now, TransitionPayload(actor_id=ctx.user_id))
        elif quote.status != QuoteStatus.CONVERTED:
            raise NotEditableError(f"Quote {quote.quote_number} is {quote.status.value}; its balance cannot be billed")

        items = balance_items(quote, existing)
        ensure_convertible(quote, existing, compute_totals(items).total)

        events: list[BillingEvent] = []
        with self.store.transaction():
            invoice = self.invoices.insert(
                ctx,
                client_id=quote.client_id,
                items=items,
                issued_at=issued_at,
                due_at=due_at,
                notes=quote.terms,
                now=now,
                source_quote_id=quote.id,
                deposit_invoice_id=deposit.id,
            )
            events.append(InvoiceCreated.create(invoice=invoice))

            linked = self.store.upsert(
                tables.INVOICES,
                deposit.model_copy(update={"final_invoice_id": invoice.id, "updated_at": now}),
            )
            self.audit.log_change(
                ctx, "invoice", deposit.id, AuditAction.UPDATE,
                {"final_invoice_id": {"old": None, "new": str(linked.final_invoice_id)}},
            )

            if converted is not None:
                quote = self._save_quote(ctx, quote, converted)
                events.append(QuoteStatusChanged.create(quote=quote, previous_status=QuoteStatus.ACCEPTED))
            events.append(QuoteConverted.create(quote=quote, invoice=invoice))

        remaining = remaining_convertible(quote, existing + [invoice])
        logger.info(
            f"Billed balance of quote {quote.quote_number}: invoice {invoice.invoice_number} "
            f"total={invoice.total}"
        )
        for event in events:
            self.event_bus.publish(event)

        return ConversionResult(
            quote=quote,
            invoice=invoice,
            remaining_convertible=remaining,
            pending_balance=ZERO if remaining <= ZERO else remaining,
        )
