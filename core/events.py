"""
Domain events for billing.

Immutable event objects describing what happened to quotes, invoices,
payments and credit notes. Services publish them after the write has
committed; handlers (reminders, receipts) react without the service
knowing who listens.

Event Categories:
- QuoteEvent: creation, status changes, new versions, conversion
- InvoiceEvent: creation, sending, full payment, cancellation
- PaymentEvent: payment recorded or deleted
- CreditNoteEvent: credit applied to an invoice

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)
    company_id: UUID | None = None


# =============================================================================
# QUOTE EVENTS
# =============================================================================


@dataclass(frozen=True)
class QuoteEvent(BillingEvent):
    """Events related to quote lifecycle."""
    quote: Any = None  # Quote; Any avoids a circular import


@dataclass(frozen=True)
class QuoteCreated(QuoteEvent):
    """A new quote was created in DRAFT status."""

    @classmethod
    def create(cls, quote: Any) -> "QuoteCreated":
        return cls(quote=quote, company_id=quote.company_id)


@dataclass(frozen=True)
class QuoteStatusChanged(QuoteEvent):
    """A quote moved through the state machine."""
    previous_status: Any = None

    @classmethod
    def create(cls, quote: Any, previous_status: Any) -> "QuoteStatusChanged":
        return cls(quote=quote, previous_status=previous_status, company_id=quote.company_id)


@dataclass(frozen=True)
class QuoteVersionCreated(QuoteEvent):
    """A new version superseded the previous latest version."""
    superseded: Any = None

    @classmethod
    def create(cls, quote: Any, superseded: Any) -> "QuoteVersionCreated":
        return cls(quote=quote, superseded=superseded, company_id=quote.company_id)


@dataclass(frozen=True)
class QuoteReminderChanged(QuoteEvent):
    """The expiry reminder of a quote was turned on, off or moved."""

    @classmethod
    def create(cls, quote: Any) -> "QuoteReminderChanged":
        return cls(quote=quote, company_id=quote.company_id)


@dataclass(frozen=True)
class QuoteConverted(QuoteEvent):
    """An invoice was generated from a quote."""
    invoice: Any = None

    @classmethod
    def create(cls, quote: Any, invoice: Any) -> "QuoteConverted":
        return cls(quote=quote, invoice=invoice, company_id=quote.company_id)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """Invoice was created (by hand or from a quote)."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice, company_id=invoice.company_id)


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent to the client."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice, company_id=invoice.company_id)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice became fully settled."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice, company_id=invoice.company_id)


@dataclass(frozen=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCancelled":
        return cls(invoice=invoice, company_id=invoice.company_id)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to payments."""
    payment: Any = None
    invoice: Any = None


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A payment was recorded and the invoice recomputed."""

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRecorded":
        return cls(payment=payment, invoice=invoice, company_id=invoice.company_id)


@dataclass(frozen=True)
class PaymentDeleted(PaymentEvent):
    """A payment was removed and the invoice recomputed."""

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentDeleted":
        return cls(payment=payment, invoice=invoice, company_id=invoice.company_id)


# =============================================================================
# CREDIT NOTE EVENTS
# =============================================================================


@dataclass(frozen=True)
class CreditNoteEvent(BillingEvent):
    """Events related to credit notes."""
    credit_note: Any = None


@dataclass(frozen=True)
class CreditNoteApplied(CreditNoteEvent):
    """Part of a credit note was applied against an invoice."""
    invoice: Any = None
    amount: Any = None

    @classmethod
    def create(cls, credit_note: Any, invoice: Any, amount: Any) -> "CreditNoteApplied":
        return cls(credit_note=credit_note, invoice=invoice, amount=amount, company_id=invoice.company_id)
