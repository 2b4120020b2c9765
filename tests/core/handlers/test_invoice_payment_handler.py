"""Tests for invoice payment handler.

On InvoicePaid: schedule a payment-received notification to the client.

Uses real NotificationService against the in-memory store, no mocks.
"""

from decimal import Decimal

from core.events import InvoicePaid
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.models import NotificationStatus, NotificationType, PaymentCreate


class TestHandleInvoicePaid:

    def test_schedules_receipt(self, notification_service, sent_invoice, ctx):
        """Handler called directly schedules one notification."""
        invoice = sent_invoice()
        handler = handle_invoice_paid(notification_service)

        handler(InvoicePaid.create(invoice=invoice))

        notifications = notification_service.list_for_entity(ctx, "invoice", invoice.id)
        assert len(notifications) == 1
        assert notifications[0].notification_type == NotificationType.PAYMENT_RECEIVED
        assert notifications[0].status == NotificationStatus.PENDING
        assert notifications[0].client_id == invoice.client_id
        assert invoice.invoice_number in notifications[0].body

    def test_wired_to_full_payment(self, invoice_service, notification_service, sent_invoice, ctx, now):
        """Paying an invoice off schedules the receipt through the bus."""
        invoice = sent_invoice()

        invoice_service.record_payment(ctx, PaymentCreate(invoice_id=invoice.id, amount=Decimal("500")), now=now)
        assert notification_service.list_for_entity(ctx, "invoice", invoice.id) == []

        invoice_service.record_payment(ctx, PaymentCreate(invoice_id=invoice.id, amount=Decimal("1000")), now=now)
        notifications = notification_service.list_for_entity(ctx, "invoice", invoice.id)
        assert [n.subject for n in notifications] == ["Payment received"]
