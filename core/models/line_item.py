"""Line item model shared by quotes, invoices and credit notes.

Amounts are Decimal currency units (dirhams). VAT rate and discount are
percentages: vat_rate=20 means 20 %.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from core.tax import round_money


class LineItem(BaseModel):
    """One priced line of a commercial document."""

    id: UUID = Field(default_factory=uuid4)
    product_id: UUID | None = None
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit_price: Decimal = Field(..., ge=0)
    vat_rate: Decimal = Field(Decimal("20"), ge=0, le=100)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)
    prices_include_vat: bool = False  # Deposit/balance slices are billed VAT-inclusive

    @property
    def net_amount(self) -> Decimal:
        """Line amount after discount, rounded to the cent. Excludes VAT unless prices_include_vat."""
        gross = self.quantity * self.unit_price
        return round_money(gross * (Decimal("100") - self.discount) / Decimal("100"))

    def clone(self) -> "LineItem":
        """Copy with a fresh id, for carrying lines into another document."""
        return self.model_copy(update={"id": uuid4()}, deep=True)
