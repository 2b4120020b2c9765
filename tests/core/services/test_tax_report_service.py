"""Tests for TaxReportService."""

import pytest
from datetime import timedelta
from decimal import Decimal


@pytest.fixture
def period(now):
    return now - timedelta(days=1), now + timedelta(days=1)


@pytest.fixture
def issued_credit_note(credit_note_service, ctx, client_id, now):
    from core.models import CreditNoteCreate
    from tests.factories import line

    credit_note = credit_note_service.create(
        ctx, CreditNoteCreate(client_id=client_id, items=[line("100", "20")]), now=now,
    )
    return credit_note_service.issue(ctx, credit_note.id, now=now)


class TestVatReport:
    """Tests for TaxReportService.vat_report."""

    def test_per_rate_totals_net_of_credit(
        self, tax_report_service, sent_invoice, issued_credit_note, ctx, period,
    ):
        """Collected VAT by rate, minus credited VAT."""
        sent_invoice(("1000", "20"), ("500", "7"))
        sent_invoice(("250", "20"))

        report = tax_report_service.vat_report(ctx, *period)

        assert [line.rate for line in report.lines] == [Decimal("20"), Decimal("7")]
        standard, reduced = report.lines
        assert standard.base == Decimal("1250.00")
        assert standard.vat == Decimal("250.00")
        assert standard.credited_vat == Decimal("20.00")
        assert standard.net_vat == Decimal("230.00")
        assert reduced.base == Decimal("500.00")
        assert reduced.vat == Decimal("35.00")
        assert report.invoice_count == 2
        assert report.credit_note_count == 1
        assert report.total_vat == Decimal("285.00")
        assert report.total_credited_vat == Decimal("20.00")
        assert report.net_vat == Decimal("265.00")

    def test_excludes_drafts_cancelled_and_out_of_period(
        self, tax_report_service, invoice_service, sent_invoice, ctx, client_id, now, period,
    ):
        """Only issued invoices of the period count."""
        from core.models import InvoiceCreate
        from tests.factories import line

        invoice_service.create(ctx, InvoiceCreate(client_id=client_id, items=[line("100")]), now=now)
        cancelled = sent_invoice()
        invoice_service.cancel(ctx, cancelled.id, now=now)
        sent_invoice(issued_at=now - timedelta(days=60), due_at=now + timedelta(days=1))
        counted = sent_invoice(("50", "10"))

        report = tax_report_service.vat_report(ctx, *period)

        assert report.invoice_count == 1
        assert report.total_vat == counted.vat_amount

    def test_custom_statuses(self, tax_report_service, invoice_service, ctx, client_id, now, period):
        """Callers can widen the statuses counted."""
        from core.models import InvoiceCreate, InvoiceStatus
        from tests.factories import line

        invoice_service.create(ctx, InvoiceCreate(client_id=client_id, items=[line("100")]), now=now)

        report = tax_report_service.vat_report(ctx, *period, include_statuses=[InvoiceStatus.DRAFT])

        assert report.invoice_count == 1
        assert report.total_vat == Decimal("20.00")

    def test_draft_credit_notes_ignored(self, tax_report_service, credit_note_service, ctx, client_id, now, period):
        """Only issued credit notes reduce VAT."""
        from core.models import CreditNoteCreate
        from tests.factories import line

        credit_note_service.create(ctx, CreditNoteCreate(client_id=client_id, items=[line("100")]), now=now)

        report = tax_report_service.vat_report(ctx, *period)

        assert report.credit_note_count == 0
        assert report.lines == []
        assert report.net_vat == Decimal("0.00")

    def test_company_isolation(self, tax_report_service, sent_invoice, other_ctx, period):
        """Another company's invoices are not reported."""
        sent_invoice()

        assert tax_report_service.vat_report(other_ctx, *period).invoice_count == 0

    def test_end_before_start(self, tax_report_service, ctx, now):
        """Reversed periods are rejected."""
        with pytest.raises(ValueError):
            tax_report_service.vat_report(ctx, now, now - timedelta(days=1))
