"""
VAT report over a period.

Collected VAT per rate over the invoices issued in the period, minus the
VAT of credit notes issued in the same period. Uses the same per-rate
breakdown as documents, so a report always reconciles with the invoices
it covers.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from clients.memory_store import RecordStore
from core import tables
from core.models import CreditNoteStatus, InvoiceStatus
from core.tax import vat_breakdown_by_rate
from utils.company_context import CompanyContext

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_STATUSES = frozenset({
    InvoiceStatus.SENT, InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.OVERDUE,
})

ZERO = Decimal("0.00")


class VatReportLine(BaseModel):
    """Net figures for one VAT rate."""

    rate: Decimal
    base: Decimal
    vat: Decimal
    credited_base: Decimal = ZERO
    credited_vat: Decimal = ZERO

    @property
    def net_vat(self) -> Decimal:
        return self.vat - self.credited_vat


class VatReport(BaseModel):
    """VAT due for a period, broken down by rate (highest first)."""

    company_id: str
    start: datetime
    end: datetime
    lines: list[VatReportLine]
    invoice_count: int
    credit_note_count: int
    total_base: Decimal
    total_vat: Decimal
    total_credited_vat: Decimal
    net_vat: Decimal


class TaxReportService:
    """Service for VAT reporting."""

    def __init__(self, store: RecordStore):
        self.store = store

    def vat_report(
        self,
        ctx: CompanyContext,
        start: datetime,
        end: datetime,
        include_statuses: Iterable[InvoiceStatus] | None = None,
    ) -> VatReport:
        """
        Build the VAT report for [start, end].

        Args:
            ctx: Company scope
            start: First instant included
            end: Last instant included
            include_statuses: Invoice statuses to count
                (default every issued, uncancelled status)

        Raises:
            ValueError: If end is before start
        """
        if end < start:
            raise ValueError("Report end must not be before its start")

        statuses = set(include_statuses) if include_statuses is not None else DEFAULT_INVOICE_STATUSES

        invoices = self.store.list(
            tables.INVOICES,
            lambda i: i.company_id == ctx.company_id and i.status in statuses and start <= i.issued_at <= end,
        )
        credit_notes = self.store.list(
            tables.CREDIT_NOTES,
            lambda c: (
                c.company_id == ctx.company_id
                and c.status in (CreditNoteStatus.ISSUED, CreditNoteStatus.APPLIED)
                and c.issued_at is not None
                and start <= c.issued_at <= end
            ),
        )

        lines: dict[Decimal, VatReportLine] = {}

        def line_for(rate: Decimal) -> VatReportLine:
            if rate not in lines:
                lines[rate] = VatReportLine(rate=rate, base=ZERO, vat=ZERO)
            return lines[rate]

        # Document by document, so each figure matches the printed breakdown
        for invoice in invoices:
            for rate, part in vat_breakdown_by_rate(invoice.items).items():
                line = line_for(rate)
                line.base += part.base
                line.vat += part.vat

        for credit_note in credit_notes:
            for rate, part in vat_breakdown_by_rate(credit_note.items).items():
                line = line_for(rate)
                line.credited_base += part.base
                line.credited_vat += part.vat

        ordered = [lines[rate] for rate in sorted(lines, reverse=True)]
        total_vat = sum((line.vat for line in ordered), ZERO)
        total_credited = sum((line.credited_vat for line in ordered), ZERO)

        logger.info(
            f"VAT report {start.date().isoformat()}..{end.date().isoformat()}: "
            f"{len(invoices)} invoice(s), {len(credit_notes)} credit note(s)"
        )

        return VatReport(
            company_id=str(ctx.company_id),
            start=start,
            end=end,
            lines=ordered,
            invoice_count=len(invoices),
            credit_note_count=len(credit_notes),
            total_base=sum((line.base for line in ordered), ZERO),
            total_vat=total_vat,
            total_credited_vat=total_credited,
            net_vat=total_vat - total_credited,
        )
