"""Quote (devis) domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.line_item import LineItem


class QuoteStatus(str, Enum):
    """Quote lifecycle status."""

    DRAFT = "draft"
    PENDING_VALIDATION = "pending_validation"
    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CONVERTED = "converted"


class QuoteReminder(BaseModel):
    """Reminder sent to the client some days before the quote expires."""

    enabled: bool = False
    days_before_expiry: int = Field(7, ge=1, le=30)


class QuoteCreate(BaseModel):
    """Data required to create a quote."""

    client_id: UUID
    items: list[LineItem] = Field(..., min_length=1)
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    reminder: QuoteReminder = Field(default_factory=QuoteReminder)


class QuoteUpdate(BaseModel):
    """Data that can be changed on a quote. All fields optional."""

    client_id: UUID | None = None
    items: list[LineItem] | None = Field(None, min_length=1)
    expires_at: datetime | None = None
    notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)


class Quote(BaseModel):
    """Full quote entity as stored. One record per version."""

    id: UUID
    company_id: UUID
    client_id: UUID
    quote_number: str
    status: QuoteStatus
    items: list[LineItem]
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    issued_at: datetime
    expires_at: datetime
    original_quote_id: UUID | None = None
    version_number: int = Field(1, ge=1)
    is_latest_version: bool = True
    reminder: QuoteReminder = Field(default_factory=QuoteReminder)
    notes: str | None = None
    terms: str | None = None
    validation_notes: str | None = None
    validated_at: datetime | None = None
    validated_by: UUID | None = None
    rejection_reason: str | None = None
    sent_at: datetime | None = None
    decided_at: datetime | None = None
    converted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def chain_id(self) -> UUID:
        """Id of the first version; shared by every version of this quote."""
        return self.original_quote_id or self.id

    @property
    def is_original(self) -> bool:
        return self.original_quote_id is None
