"""Core domain models."""

from core.models.line_item import LineItem
from core.models.quote import Quote, QuoteCreate, QuoteUpdate, QuoteStatus, QuoteReminder
from core.models.invoice import Invoice, InvoiceCreate, InvoiceStatus
from core.models.payment import Payment, PaymentCreate, PaymentMethod, PaymentStatus
from core.models.credit_note import (
    CreditNote, CreditNoteCreate, CreditNoteStatus, CreditNoteReason, CreditNoteApplication,
)
from core.models.notification import (
    Notification, NotificationCreate, NotificationStatus, NotificationType,
)

__all__ = [
    # LineItem
    "LineItem",
    # Quote
    "Quote", "QuoteCreate", "QuoteUpdate", "QuoteStatus", "QuoteReminder",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceStatus",
    # Payment
    "Payment", "PaymentCreate", "PaymentMethod", "PaymentStatus",
    # CreditNote
    "CreditNote", "CreditNoteCreate", "CreditNoteStatus", "CreditNoteReason",
    "CreditNoteApplication",
    # Notification
    "Notification", "NotificationCreate", "NotificationStatus", "NotificationType",
]
