"""FastAPI application assembly: services, event handlers, routes."""

from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import CompanyContextMiddleware, RequestIDMiddleware
from clients.memory_store import MemoryStore, RecordStore
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, QuoteEvent
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.handlers.quote_reminder_handler import handle_quote_event
from core.services.conversion_service import ConversionService
from core.services.credit_note_service import CreditNoteService
from core.services.invoice_service import InvoiceService
from core.services.notification_service import NotificationService
from core.services.quote_service import QuoteService
from core.services.tax_report_service import TaxReportService


def build_services(store: RecordStore | None = None, config: BillingConfig | None = None) -> dict:
    """
    Wire every billing service over one store and one event bus.

    Returns:
        Dict of services keyed by domain, plus "event_bus", "audit"
        and "store"
    """
    store = store if store is not None else MemoryStore()
    config = config or BillingConfig()
    audit = AuditLogger(store)
    event_bus = EventBus()

    invoice_svc = InvoiceService(store, audit, event_bus, config)
    notification_svc = NotificationService(store, audit)

    event_bus.subscribe(QuoteEvent, handle_quote_event(notification_svc))
    event_bus.subscribe(InvoicePaid, handle_invoice_paid(notification_svc))

    return {
        "store": store,
        "audit": audit,
        "event_bus": event_bus,
        "quote": QuoteService(store, audit, event_bus, config),
        "invoice": invoice_svc,
        "conversion": ConversionService(store, audit, event_bus, invoice_svc, config),
        "credit_note": CreditNoteService(store, audit, event_bus, invoice_svc, config),
        "notification": notification_svc,
        "tax_report": TaxReportService(store),
    }


def create_app(services: dict | None = None) -> FastAPI:
    """FastAPI app with company context, error handlers, and data/actions routes."""
    services = services or build_services()

    app = FastAPI(title="Billing")
    app.add_middleware(CompanyContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    return app
