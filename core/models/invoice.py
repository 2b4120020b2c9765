"""Invoice (facture) domain models.

Amounts are Decimal currency units rounded to the cent.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.line_item import LineItem


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceCreate(BaseModel):
    """Data required to create an invoice by hand (not from a quote)."""

    client_id: UUID
    items: list[LineItem] = Field(..., min_length=1)
    issued_at: datetime | None = None
    due_at: datetime | None = None
    notes: str | None = Field(None, max_length=2000)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    company_id: UUID
    client_id: UUID
    invoice_number: str
    status: InvoiceStatus
    items: list[LineItem]
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    paid_amount: Decimal = Decimal("0")
    credited_amount: Decimal = Decimal("0")
    issued_at: datetime
    due_at: datetime
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    last_payment_at: datetime | None = None
    source_quote_id: UUID | None = None
    is_deposit: bool = False
    deposit_percentage: Decimal | None = None
    deposit_invoice_id: UUID | None = None  # Set on a balance invoice
    final_invoice_id: UUID | None = None  # Set on a deposit invoice once the balance is billed
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def settled_amount(self) -> Decimal:
        """Payments plus applied credit notes."""
        return self.paid_amount + self.credited_amount

    @property
    def has_overpayment(self) -> bool:
        """More was settled than billed. Reported, never clamped."""
        return self.settled_amount > self.total

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @property
    def is_balance_invoice(self) -> bool:
        return self.deposit_invoice_id is not None
