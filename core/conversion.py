"""
Quote-to-invoice arithmetic: deposits, balances, remaining convertible amount.

Pure functions over quote and invoice snapshots. The service layer
(core/services/conversion_service.py) decides when to call them and
persists the results.

Deposit policy: a deposit is resolved once, at the engine boundary, into
both an amount and a percentage of the quote total. Either can be given;
the other is derived. When both are given they must agree to within the
money tolerance. Both are then stored on the deposit invoice, so the two
values can never drift apart.

Deposit and balance invoices are billed per VAT rate with VAT-inclusive
lines, one per rate of the quote. That keeps each invoice total exactly on
the requested amount while its VAT still reconciles by rate.
"""

from decimal import Decimal
from enum import Enum
from typing import Iterable

from pydantic import BaseModel

from core.exceptions import OverConversionError, ValidationRangeError
from core.models import Invoice, InvoiceStatus, LineItem, Quote
from core.tax import allocate, compute_totals, round_money, to_decimal

ZERO = Decimal("0.00")


class ConversionMode(str, Enum):
    """How an accepted quote is invoiced."""

    FULL = "full"
    PARTIAL = "partial"


class DepositTerms(BaseModel):
    """A deposit expressed both ways."""

    amount: Decimal
    percentage: Decimal


def resolve_deposit(
    total: Decimal,
    amount=None,
    percentage=None,
    tolerance: Decimal = Decimal("0.01"),
) -> DepositTerms:
    """
    Derive the missing half of a deposit and validate both.

    Args:
        total: Quote total the deposit is taken from
        amount: Deposit in currency units, optional
        percentage: Deposit as percent of total, optional
        tolerance: Largest accepted gap when both are given

    Raises:
        ValidationRangeError: if neither is given, either is out of range,
            or the two disagree.
    """
    if amount is None and percentage is None:
        raise ValidationRangeError(
            "deposit", None,
            message="Provide a deposit amount or a deposit percentage",
        )

    if percentage is not None:
        percentage = to_decimal(percentage)
        if not Decimal("0") <= percentage <= Decimal("100"):
            raise ValidationRangeError("deposit_percentage", percentage, Decimal("0"), Decimal("100"))

    if amount is not None:
        amount = to_decimal(amount)
        if not ZERO <= amount <= total:
            raise ValidationRangeError("deposit_amount", amount, ZERO, total)
        amount = round_money(amount)

    if percentage is not None:
        derived_amount = round_money(total * percentage / 100)
        if amount is not None and abs(derived_amount - amount) > tolerance:
            raise ValidationRangeError(
                "deposit_amount", amount,
                message=(
                    f"Deposit amount {amount} does not match {percentage}% "
                    f"of {total} ({derived_amount})"
                ),
            )
        return DepositTerms(amount=amount if amount is not None else derived_amount, percentage=percentage)

    derived_percentage = amount * 100 / total if total > 0 else Decimal("0")
    return DepositTerms(amount=amount, percentage=derived_percentage)


def counts_towards_quote(invoice: Invoice) -> bool:
    """Cancelled invoices give their amount back to the quote."""
    return invoice.status != InvoiceStatus.CANCELLED


def invoiced_total(invoices: Iterable[Invoice]) -> Decimal:
    return sum((inv.total for inv in invoices if counts_towards_quote(inv)), ZERO)


def remaining_convertible(quote: Quote, invoices: Iterable[Invoice]) -> Decimal:
    """Quote total minus everything already invoiced from it."""
    return quote.total - invoiced_total(invoices)


def ensure_convertible(quote: Quote, invoices: list[Invoice], requested: Decimal) -> None:
    """Raise OverConversionError if requested does not fit in what remains."""
    remaining = remaining_convertible(quote, invoices)
    if requested > remaining:
        raise OverConversionError(quote.id, requested, remaining)


def _gross_by_rate(items: Iterable[LineItem]) -> dict[Decimal, Decimal]:
    return {rate: line.gross for rate, line in compute_totals(items).breakdown.items()}


def remaining_by_rate(quote: Quote, invoices: Iterable[Invoice]) -> dict[Decimal, Decimal]:
    """Per VAT rate, the VAT-inclusive amount of the quote not yet invoiced."""
    remaining = _gross_by_rate(quote.items)
    for invoice in invoices:
        if not counts_towards_quote(invoice):
            continue
        for rate, gross in _gross_by_rate(invoice.items).items():
            remaining[rate] = remaining.get(rate, ZERO) - gross
    return remaining


def _slice_lines(shares: dict[Decimal, Decimal], label: str) -> list[LineItem]:
    lines = [
        LineItem(
            description=f"{label} (VAT {rate.normalize():f}%)",
            quantity=Decimal("1"),
            unit_price=share,
            vat_rate=rate,
            prices_include_vat=True,
        )
        for rate, share in shares.items()
        if share > 0
    ]
    if not lines:
        rate = max(shares) if shares else Decimal("0")
        lines.append(LineItem(
            description=label, quantity=Decimal("1"), unit_price=ZERO,
            vat_rate=rate, prices_include_vat=True,
        ))
    return lines


def deposit_items(
    quote: Quote,
    invoices: list[Invoice],
    terms: DepositTerms,
) -> list[LineItem]:
    """
    Lines of a deposit (or partial) invoice.

    The amount is spread over the rates still open on the quote, in
    proportion to what remains at each rate.
    """
    remaining = remaining_by_rate(quote, invoices)
    rates = list(remaining)
    shares = allocate(terms.amount, [max(remaining[r], ZERO) for r in rates])
    label = f"Deposit {terms.percentage.quantize(Decimal('0.01')).normalize():f}% on quote {quote.quote_number}"
    return _slice_lines(dict(zip(rates, shares)), label)


def balance_items(quote: Quote, invoices: list[Invoice]) -> list[LineItem]:
    """Lines of the invoice closing a quote: whatever remains at each rate."""
    remaining = remaining_by_rate(quote, invoices)
    label = f"Balance on quote {quote.quote_number}"
    return _slice_lines(remaining, label)


def full_items(quote: Quote, invoices: list[Invoice]) -> list[LineItem]:
    """Lines for a full conversion: the quote's own lines when nothing was invoiced yet."""
    if invoiced_total(invoices) == ZERO:
        return [item.clone() for item in quote.items]
    return balance_items(quote, invoices)
