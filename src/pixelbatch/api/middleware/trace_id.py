"""Trace ID middleware: one id per request, echoed in X-Trace-Id and bound to logs."""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from pixelbatch.logging_config import bind_request_context, clear_request_context
from pixelbatch.services.id_generator import generate_id

# Client-supplied ids longer than this are replaced.
MAX_TRACE_ID_LENGTH = 64


class TraceIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = request.headers.get("x-trace-id", "")
        trace_id = incoming if 0 < len(incoming) <= MAX_TRACE_ID_LENGTH else generate_id("trc_")
        request.state.trace_id = trace_id
        bind_request_context(trace_id)

        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Trace-Id"] = trace_id
        return response
