"""Credit note (avoir) domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.line_item import LineItem


class CreditNoteStatus(str, Enum):
    """Credit note lifecycle status."""

    DRAFT = "draft"
    ISSUED = "issued"
    APPLIED = "applied"  # Fully consumed
    CANCELLED = "cancelled"


class CreditNoteReason(str, Enum):
    RETURN = "return"
    DISCOUNT = "discount"
    ERROR = "error"
    CANCELLATION = "cancellation"
    OTHER = "other"


class CreditNoteCreate(BaseModel):
    """Data required to create a credit note."""

    client_id: UUID
    invoice_id: UUID | None = None
    items: list[LineItem] = Field(..., min_length=1)
    reason: CreditNoteReason = CreditNoteReason.OTHER
    reason_description: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=2000)


class CreditNote(BaseModel):
    """Full credit note entity as stored."""

    id: UUID
    company_id: UUID
    client_id: UUID
    credit_note_number: str
    invoice_id: UUID | None = None
    status: CreditNoteStatus
    reason: CreditNoteReason
    reason_description: str | None = None
    items: list[LineItem]
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    applied_amount: Decimal = Decimal("0")
    remaining_amount: Decimal
    issued_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_fully_applied(self) -> bool:
        return self.remaining_amount <= 0


class CreditNoteApplication(BaseModel):
    """Part of a credit note consumed against an invoice."""

    id: UUID
    company_id: UUID
    credit_note_id: UUID
    invoice_id: UUID
    amount: Decimal
    applied_at: datetime

    model_config = {"from_attributes": True}
