"""Billing configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing configuration for one company.

    Defaults follow common Moroccan practice: prices in dirhams, standard
    VAT at 20 %, quotes valid 30 days, 30 % deposit on order.
    """

    currency: str = Field(
        default="MAD",
        description="ISO 4217 currency code of all amounts",
        min_length=3,
        max_length=3,
    )
    default_vat_rate: Decimal = Field(
        default=Decimal("20"),
        description="VAT rate (percent) applied to new lines when none is given",
        ge=0,
        le=100,
    )

    # Quotes
    quote_validity_days: int = Field(
        default=30,
        description="Days between issuing a quote and its expiry",
        ge=1,
        le=365,
    )
    reminder_days_before_expiry: int = Field(
        default=7,
        description="Default reminder lead time before quote expiry",
        ge=1,
        le=30,
    )

    # Invoices
    payment_terms_days: int = Field(
        default=30,
        description="Days between invoice issue and due date",
        ge=0,
        le=365,
    )
    default_deposit_percentage: Decimal = Field(
        default=Decimal("30"),
        description="Deposit suggested when converting a quote",
        ge=0,
        le=100,
    )
    money_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Largest difference treated as equal between derived amounts",
        ge=0,
    )

    # Numbering
    quote_prefix: str = Field(default="DEV", description="Quote number prefix")
    invoice_prefix: str = Field(default="FAC", description="Invoice number prefix")
    credit_note_prefix: str = Field(default="AV", description="Credit note number prefix")
