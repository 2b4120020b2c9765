"""Tests for VAT arithmetic."""

from decimal import Decimal

import pytest

from core.models import LineItem
from core.tax import (
    allocate,
    compute_totals,
    is_standard_rate,
    price_with_vat,
    round_money,
    vat_amount,
    vat_breakdown_by_rate,
    vat_included,
)


def item(price, rate="20", quantity="1", **kwargs) -> LineItem:
    return LineItem(
        description="Line",
        quantity=Decimal(quantity),
        unit_price=Decimal(price),
        vat_rate=Decimal(rate),
        **kwargs,
    )


class TestRounding:

    def test_rounds_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("2.344")) == Decimal("2.34")

    def test_accepts_strings_and_ints(self):
        assert round_money("10") == Decimal("10.00")
        assert round_money(7) == Decimal("7.00")

    def test_float_input_has_no_binary_artifacts(self):
        assert round_money(0.1 + 0.2) == Decimal("0.30")


class TestVatHelpers:

    def test_vat_amount(self):
        assert vat_amount(Decimal("1000"), Decimal("20")) == Decimal("200.00")
        assert vat_amount(Decimal("500"), Decimal("7")) == Decimal("35.00")

    def test_price_with_vat(self):
        assert price_with_vat(Decimal("99.99"), Decimal("20")) == Decimal("119.99")

    def test_vat_included_extracts_vat_from_gross(self):
        assert vat_included(Decimal("120"), Decimal("20")) == Decimal("20.00")
        assert vat_included(Decimal("107"), Decimal("7")) == Decimal("7.00")

    def test_zero_rate_includes_no_vat(self):
        assert vat_included(Decimal("50"), Decimal("0")) == Decimal("0.00")

    @pytest.mark.parametrize("rate", ["0", "7", "10", "14", "20"])
    def test_moroccan_rates_are_standard(self, rate):
        assert is_standard_rate(Decimal(rate))

    def test_other_rates_are_not_standard(self):
        assert not is_standard_rate(Decimal("19.6"))


class TestLineNetAmount:

    def test_quantity_times_price(self):
        assert item("12.50", quantity="3").net_amount == Decimal("37.50")

    def test_discount_applied_before_rounding(self):
        assert item("100", quantity="2", discount=Decimal("10")).net_amount == Decimal("180.00")


class TestVatBreakdown:

    def test_two_rates(self):
        """(1000 at 20%) and (500 at 7%) give 200.00 and 35.00 of VAT."""
        breakdown = vat_breakdown_by_rate([item("1000", "20"), item("500", "7")])

        assert breakdown[Decimal("20")].vat == Decimal("200.00")
        assert breakdown[Decimal("7")].vat == Decimal("35.00")

    def test_highest_rate_first(self):
        breakdown = vat_breakdown_by_rate([item("10", "7"), item("10", "20"), item("10", "14")])

        assert list(breakdown) == [Decimal("20"), Decimal("14"), Decimal("7")]

    def test_same_rate_lines_are_grouped(self):
        breakdown = vat_breakdown_by_rate([item("100", "20"), item("50", "20")])

        assert len(breakdown) == 1
        assert breakdown[Decimal("20")].base == Decimal("150.00")
        assert breakdown[Decimal("20")].vat == Decimal("30.00")

    def test_vat_rounded_once_per_group(self):
        """Three 0.10 lines at 7% carry 0.02 of VAT, not 3 x 0.01."""
        breakdown = vat_breakdown_by_rate([item("0.10", "7")] * 3)

        assert breakdown[Decimal("7")].vat == Decimal("0.02")

    def test_vat_inclusive_lines(self):
        line = item("1200", "20", prices_include_vat=True)

        group = vat_breakdown_by_rate([line])[Decimal("20")]

        assert group.base == Decimal("1000.00")
        assert group.vat == Decimal("200.00")
        assert group.gross == Decimal("1200.00")

    def test_empty_document(self):
        assert vat_breakdown_by_rate([]) == {}


class TestComputeTotals:

    def test_totals_match_breakdown(self):
        totals = compute_totals([item("1000", "20"), item("500", "7")])

        assert totals.subtotal == Decimal("1500.00")
        assert totals.vat_amount == Decimal("235.00")
        assert totals.total == Decimal("1735.00")
        assert totals.vat_amount == sum(line.vat for line in totals.breakdown.values())

    def test_inclusive_total_equals_gross(self):
        totals = compute_totals([
            item("2000.01", "20", prices_include_vat=True),
            item("333.33", "7", prices_include_vat=True),
        ])

        assert totals.total == Decimal("2333.34")


class TestAllocate:

    def test_shares_sum_to_amount(self):
        shares = allocate(Decimal("100"), [1, 1, 1])

        assert shares == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
        assert sum(shares) == Decimal("100.00")

    def test_proportional(self):
        assert allocate(Decimal("3000"), [Decimal("1200"), Decimal("10200")]) == [
            Decimal("315.79"), Decimal("2684.21"),
        ]

    def test_zero_weights_go_to_first_share(self):
        assert allocate(Decimal("10"), [0, 0]) == [Decimal("10.00"), Decimal("0.00")]

    def test_no_weights(self):
        assert allocate(Decimal("10"), []) == []
