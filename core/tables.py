"""Record store table names."""

QUOTES = "quotes"
INVOICES = "invoices"
PAYMENTS = "payments"
CREDIT_NOTES = "credit_notes"
CREDIT_NOTE_APPLICATIONS = "credit_note_applications"
NOTIFICATIONS = "notifications"
