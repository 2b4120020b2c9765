"""Typed exceptions for billing failures.

Each carries a machine-readable code so callers (and the HTTP layer) can
turn them into user-facing messages without parsing text.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID


class BillingError(Exception):
    """Base class for billing domain errors."""

    code = "BILLING_ERROR"


class RecordNotFoundError(BillingError):
    """Referenced record does not exist in the caller's company."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.replace('_', ' ').capitalize()} {entity_id} not found")


class TransitionRejection(str, Enum):
    """Why a quote status change was refused."""

    INVALID_TRANSITION = "invalid_transition"
    ALREADY_TERMINAL = "already_terminal"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class InvalidTransitionError(BillingError):
    """Illegal status change."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, reason: TransitionRejection, message: str):
        self.reason = reason
        super().__init__(message)


class NotEditableError(BillingError):
    """
    Edit attempted on a record that can no longer change in place.

    Quotes that left draft must be revised through a new version;
    converted quotes cannot be revised at all.
    """

    code = "NOT_EDITABLE"


class OverConversionError(BillingError):
    """Invoicing would exceed the quote total."""

    code = "OVER_CONVERSION"

    def __init__(self, quote_id: UUID, requested: Decimal, remaining: Decimal):
        self.quote_id = quote_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Cannot invoice {requested} from quote {quote_id}: "
            f"only {remaining} remains convertible"
        )


class ValidationRangeError(BillingError):
    """Numeric input outside its allowed bounds."""

    code = "VALIDATION_RANGE"

    def __init__(self, field: str, value, minimum=None, maximum=None, message: str | None = None):
        self.field = field
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        if message is None:
            message = f"{field} must be between {minimum} and {maximum}, got {value}"
        super().__init__(message)


class OverpaymentError(ValidationRangeError):
    """Payment or credit larger than the invoice's remaining balance."""

    code = "OVERPAYMENT"


class ChainIntegrityError(BillingError):
    """
    Version chain invariant broken.

    Unreachable through the public operations; seeing it means a caller
    wrote quote records around the version manager.
    """

    code = "CHAIN_INTEGRITY"
