"""API test fixtures: company-scoped TestClient over the in-memory services."""

import pytest
from starlette.testclient import TestClient

from api.app import create_app


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """Billing app sharing the test's services, so fixtures and requests see one store."""
    return create_app(services)


@pytest.fixture
def client(app, ctx):
    """Client acting for the primary test company."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Company-ID": str(ctx.company_id), "X-User-ID": str(ctx.user_id)},
    )


@pytest.fixture
def other_client(app, other_ctx):
    """Client acting for the secondary test company."""
    return TestClient(app, raise_server_exceptions=False, headers={"X-Company-ID": str(other_ctx.company_id)})


@pytest.fixture
def anonymous_client(app):
    """Client sending no company header."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def act(client):
    """POST an action and return the response."""

    def _act(domain, action, data):
        return client.post("/api/actions", json={"domain": domain, "action": action, "data": data})

    return _act
