"""
Handler for InvoicePaid events.

On full payment, schedules a "payment received" notification to the client.
"""

import logging
from typing import Callable

from core.events import InvoicePaid
from core.models import NotificationCreate, NotificationType
from utils.company_context import CompanyContext
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def handle_invoice_paid(notification_service) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        notification_service: NotificationService instance

    Returns:
        Handler callable that schedules a receipt notification
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice

        notification_service.schedule(
            CompanyContext(company_id=event.company_id),
            NotificationCreate(
                client_id=invoice.client_id,
                entity_type="invoice",
                entity_id=invoice.id,
                notification_type=NotificationType.PAYMENT_RECEIVED,
                subject="Payment received",
                body=f"Thank you! Payment received for invoice {invoice.invoice_number}.",
                scheduled_for=now_utc(),
            ),
        )

    return handler
