"""
Correlation ID management for request tracing.

The id is read from the incoming `X-Request-ID` header (or generated), stored
in the logging context variable so every log line of the request carries it,
echoed on the response and forwarded on outbound platform requests.
"""

import uuid
from collections.abc import Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from callconsole.shared.logging import correlation_id_var

REQUEST_ID_HEADER = "X-Request-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def inject_correlation_headers(headers: dict[str, str]) -> dict[str, str]:
    """Add the current correlation id to outgoing request headers."""
    correlation_id = correlation_id_var.get()
    if correlation_id:
        headers.setdefault(REQUEST_ID_HEADER, correlation_id)
    return headers


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Extract or generate a correlation ID for each request."""

    def __init__(
        self,
        app: Any,
        header_name: str = REQUEST_ID_HEADER,
        generator: Callable[[], str] = generate_correlation_id,
    ) -> None:
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        correlation_id = request.headers.get(self.header_name) or self.generator()
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = correlation_id
            return response
        finally:
            correlation_id_var.reset(token)
