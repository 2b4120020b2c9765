"""Invoice balance and payment-status derivation.

Everything here is a pure function of an invoice snapshot and `now`.
Overdue is never stored by a timer; it is derived whenever a status is
recomputed or read.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from core.models import Invoice, InvoiceStatus, Payment

_FROZEN = {InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED}


def remaining_balance(invoice: Invoice) -> Decimal:
    """
    Amount still owed.

    Negative means the invoice was overpaid; callers must surface that,
    not hide it.
    """
    return invoice.total - invoice.settled_amount


def is_overdue(invoice: Invoice, now: datetime) -> bool:
    if invoice.status in _FROZEN:
        return False
    return now > invoice.due_at and remaining_balance(invoice) > 0


def derive_status(invoice: Invoice, now: datetime) -> InvoiceStatus:
    """
    Payment status implied by the settled amount.

    Draft and cancelled invoices keep their status. Otherwise:
    nothing settled is sent (overdue once past due), something settled is
    partial, everything settled is paid. A partial invoice past its due
    date keeps PARTIAL; is_overdue() still reports it.
    """
    if invoice.status in _FROZEN:
        return invoice.status

    settled = invoice.settled_amount
    if settled >= invoice.total:
        return InvoiceStatus.PAID
    if settled > 0:
        return InvoiceStatus.PARTIAL
    if is_overdue(invoice, now):
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.SENT


def completed_total(payments: Iterable[Payment]) -> Decimal:
    """Sum of payments that actually settled."""
    return sum(
        (p.amount for p in payments if p.counts_towards_balance),
        Decimal("0.00"),
    )


def paid_percentage(invoice: Invoice) -> Decimal:
    """Share of the total already settled, in percent (two decimals)."""
    if invoice.total <= 0:
        return Decimal("100.00")
    return (invoice.settled_amount * 100 / invoice.total).quantize(Decimal("0.01"))
