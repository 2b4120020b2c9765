"""
VAT arithmetic for quotes, invoices, credit notes and VAT reports.

One rounding policy everywhere: amounts are rounded half-up to the cent,
and VAT is rounded once per rate group after the group's lines are summed.
Document totals are built from the per-rate breakdown, so a document's VAT
total and its breakdown always reconcile to the same figure.

Rates are percentages (20 means 20 %).
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, Sequence

from pydantic import BaseModel

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Rates applicable in Morocco
MOROCCO_VAT_RATES = (Decimal("0"), Decimal("7"), Decimal("10"), Decimal("14"), Decimal("20"))


def to_decimal(value) -> Decimal:
    """Coerce int/str/float input to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """Round to the cent, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def vat_amount(base, rate) -> Decimal:
    """VAT due on a VAT-exclusive base."""
    return round_money(to_decimal(base) * to_decimal(rate) / HUNDRED)


def price_with_vat(base, rate) -> Decimal:
    """VAT-inclusive price for a VAT-exclusive base."""
    return round_money(base) + vat_amount(base, rate)


def vat_included(gross, rate) -> Decimal:
    """VAT contained in a VAT-inclusive amount."""
    gross = round_money(gross)
    base = round_money(gross * HUNDRED / (HUNDRED + to_decimal(rate)))
    return gross - base


def is_standard_rate(rate) -> bool:
    return to_decimal(rate) in MOROCCO_VAT_RATES


class VatBreakdownLine(BaseModel):
    """VAT figures for one rate of a document."""

    rate: Decimal
    base: Decimal
    vat: Decimal
    gross: Decimal


class DocumentTotals(BaseModel):
    """Subtotal, VAT and total of a document, with the per-rate breakdown they come from."""

    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    breakdown: dict[Decimal, VatBreakdownLine]


def vat_breakdown_by_rate(items: Iterable) -> dict[Decimal, VatBreakdownLine]:
    """
    Group line items by VAT rate and compute each group's VAT once.

    Args:
        items: Objects exposing vat_rate, net_amount and prices_include_vat

    Returns:
        Dict of {rate: VatBreakdownLine}, highest rate first.
    """
    exclusive: dict[Decimal, Decimal] = {}
    inclusive: dict[Decimal, Decimal] = {}

    for item in items:
        rate = to_decimal(item.vat_rate)
        bucket = inclusive if getattr(item, "prices_include_vat", False) else exclusive
        bucket[rate] = bucket.get(rate, Decimal("0")) + item.net_amount
        # Keep both buckets keyed so every rate shows up once
        exclusive.setdefault(rate, Decimal("0"))
        inclusive.setdefault(rate, Decimal("0"))

    breakdown = {}
    for rate in sorted(exclusive, reverse=True):
        excl_base = round_money(exclusive[rate])
        incl_gross = round_money(inclusive[rate])
        incl_vat = vat_included(incl_gross, rate)

        base = excl_base + incl_gross - incl_vat
        vat = vat_amount(excl_base, rate) + incl_vat
        breakdown[rate] = VatBreakdownLine(rate=rate, base=base, vat=vat, gross=base + vat)

    return breakdown


def compute_totals(items: Iterable) -> DocumentTotals:
    """Totals of a document, derived from its VAT breakdown."""
    breakdown = vat_breakdown_by_rate(items)
    subtotal = sum((line.base for line in breakdown.values()), Decimal("0.00"))
    vat = sum((line.vat for line in breakdown.values()), Decimal("0.00"))
    return DocumentTotals(
        subtotal=subtotal,
        vat_amount=vat,
        total=subtotal + vat,
        breakdown=breakdown,
    )


def allocate(amount, weights: Sequence) -> list[Decimal]:
    """
    Split an amount into cent-exact shares proportional to weights.

    Uses largest remainder: shares are floored to the cent and leftover
    cents go to the largest fractional parts (earliest first on ties), so
    the shares always sum to amount.
    """
    if not weights:
        return []

    cents = int(round_money(amount) * 100)
    weights = [to_decimal(w) for w in weights]
    total_weight = sum(weights)

    if total_weight <= 0:
        shares = [0] * len(weights)
        shares[0] = cents
        return [(Decimal(share) / 100).quantize(CENT) for share in shares]

    raw = [Decimal(cents) * w / total_weight for w in weights]
    floored = [int(r.to_integral_value(rounding=ROUND_DOWN)) for r in raw]
    leftover = cents - sum(floored)

    by_fraction = sorted(range(len(raw)), key=lambda i: (-(raw[i] - floored[i]), i))
    for i in by_fraction[:leftover]:
        floored[i] += 1

    return [(Decimal(share) / 100).quantize(CENT) for share in floored]
