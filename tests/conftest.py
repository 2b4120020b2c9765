"""Shared test fixtures for the billing test suite."""

from datetime import datetime, timezone
from uuid import UUID

import pytest

from api.app import build_services
from clients.memory_store import MemoryStore
from core.config import BillingConfig
from core.models import QuoteCreate
from tests.factories import line
from utils.company_context import CompanyContext


# =============================================================================
# TEST CONTEXT CONSTANTS
# =============================================================================

# Primary test company - use for single-company tests
TEST_COMPANY_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_ID = UUID("00000000-0000-0000-0000-0000000000a1")

# Secondary test company - use for isolation tests
TEST_COMPANY_B_ID = UUID("00000000-0000-0000-0000-000000000002")

TEST_CLIENT_ID = UUID("00000000-0000-0000-0000-0000000000c1")

# Fixed clock for deterministic dates
NOW = datetime(2025, 4, 8, 9, 30, tzinfo=timezone.utc)


# =============================================================================
# CONTEXT FIXTURES
# =============================================================================


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def ctx() -> CompanyContext:
    """Context of the primary test company."""
    return CompanyContext(company_id=TEST_COMPANY_ID, user_id=TEST_USER_ID)


@pytest.fixture
def other_ctx() -> CompanyContext:
    """Context of the secondary test company (for isolation tests)."""
    return CompanyContext(company_id=TEST_COMPANY_B_ID)


@pytest.fixture
def client_id() -> UUID:
    return TEST_CLIENT_ID


# =============================================================================
# STORE & SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def config():
    return BillingConfig()


@pytest.fixture
def services(store, config):
    return build_services(store, config)


@pytest.fixture
def audit(services):
    return services["audit"]


@pytest.fixture
def event_bus(services):
    return services["event_bus"]


@pytest.fixture
def quote_service(services):
    return services["quote"]


@pytest.fixture
def invoice_service(services):
    return services["invoice"]


@pytest.fixture
def conversion_service(services):
    return services["conversion"]


@pytest.fixture
def credit_note_service(services):
    return services["credit_note"]


@pytest.fixture
def notification_service(services):
    return services["notification"]


@pytest.fixture
def tax_report_service(services):
    return services["tax_report"]


# =============================================================================
# SAMPLE DATA
# =============================================================================


@pytest.fixture
def make_quote(quote_service, ctx, client_id, now):
    """Factory creating a draft quote from (price, rate) pairs."""

    def _make(*lines, **kwargs):
        items = [line(price, rate) for price, rate in lines] or [line("1000", "20")]
        return quote_service.create(ctx, QuoteCreate(client_id=client_id, items=items, **kwargs), now=now)

    return _make


@pytest.fixture
def make_accepted_quote(quote_service, make_quote, ctx, now):
    """Factory creating a quote and walking it to ACCEPTED."""

    def _make(*lines, **kwargs):
        quote = make_quote(*lines, **kwargs)
        quote_service.submit(ctx, quote.id, now=now)
        quote_service.approve(ctx, quote.id, now=now)
        return quote_service.accept(ctx, quote.id, now=now)

    return _make


@pytest.fixture
def sent_invoice(invoice_service, ctx, client_id, now):
    """Factory creating a sent manual invoice."""
    from core.models import InvoiceCreate

    def _make(*lines, **kwargs):
        items = [line(price, rate) for price, rate in lines] or [line("1250", "20")]
        invoice = invoice_service.create(ctx, InvoiceCreate(client_id=client_id, items=items, **kwargs), now=now)
        return invoice_service.send(ctx, invoice.id, now=now)

    return _make
