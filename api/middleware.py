"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.company_context import CompanyContext


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class CompanyContextMiddleware(BaseHTTPMiddleware):
    """Builds the CompanyContext of a request from its headers.

    For scoped routes:
    1. Reads the company from 'X-Company-ID' (required)
    2. Reads the acting user from 'X-User-ID' (optional)
    3. Sets request.state.company for the route handlers

    Public paths skip the check entirely.
    """

    COMPANY_HEADER = "X-Company-ID"
    USER_HEADER = "X-User-ID"

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", None)
        company_header = request.headers.get(self.COMPANY_HEADER)
        if not company_header:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    f"{self.COMPANY_HEADER} header required",
                    request_id,
                ).model_dump(mode="json"),
            )

        user_header = request.headers.get(self.USER_HEADER)
        try:
            company = CompanyContext(
                company_id=UUID(company_header),
                user_id=UUID(user_header) if user_header else None,
            )
        except ValueError:
            return JSONResponse(
                status_code=400,
                content=error_response(
                    ErrorCodes.INVALID_REQUEST,
                    f"{self.COMPANY_HEADER} and {self.USER_HEADER} must be UUIDs",
                    request_id,
                ).model_dump(mode="json"),
            )

        request.state.company = company
        return await call_next(request)
