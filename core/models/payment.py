"""Payment domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CARD = "card"
    OTHER = "other"


class PaymentStatus(str, Enum):
    """Payment settlement status. Only COMPLETED counts towards an invoice."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentCreate(BaseModel):
    """Data required to record a payment against an invoice."""

    invoice_id: UUID
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    paid_at: datetime | None = None
    reference: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=1000)
    status: PaymentStatus = PaymentStatus.COMPLETED


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    company_id: UUID
    invoice_id: UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    paid_at: datetime
    reference: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def counts_towards_balance(self) -> bool:
        return self.status == PaymentStatus.COMPLETED
