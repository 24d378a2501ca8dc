"""Request logging middleware that attaches Cloud Logging request context.

Each request produces one access log line carrying a ``TraceContext``
(parsed from the ``X-Cloud-Trace-Context`` header propagated by Cloud Run
and the Google load balancers) and an ``HttpRequestContext`` describing
the request/response pair, so the entry shows up with the request's
trace and in the request log view.  The trace id is also bound into the
context map while the request is handled, so every log line emitted by
the route carries it in ``details``.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cloud_json_logging.models.schemas import HttpRequestContext, TraceContext
from cloud_json_logging.services.events import ATTACHMENTS_ATTR, log_context

logger = logging.getLogger(__name__)

TRACE_HEADER = "x-cloud-trace-context"

# File extensions considered static assets (matched by suffix).
_STATIC_EXTENSIONS = frozenset(
    (".css", ".js", ".ico", ".png", ".jpg", ".jpeg", ".svg", ".webp",
     ".woff2", ".woff", ".ttf", ".map", ".webmanifest")
)


def _is_static_asset(path: str) -> bool:
    """Return True if the request path is for a static file."""
    dot = path.rfind(".")
    return dot != -1 and path[dot:] in _STATIC_EXTENSIONS


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and latency with trace and httpRequest context."""

    def __init__(self, app, log_static_assets: bool = False) -> None:
        super().__init__(app)
        self.log_static_assets = log_static_assets

    async def dispatch(self, request: Request, call_next) -> Response:
        trace_ctx = TraceContext.from_header(request.headers.get(TRACE_HEADER))
        bound = {"trace_id": trace_ctx.trace_id} if trace_ctx else {}

        start = time.monotonic()
        with log_context(**bound):
            response = await call_next(request)
        latency = time.monotonic() - start

        if self.log_static_assets or not _is_static_asset(request.url.path):
            http_ctx = HttpRequestContext.from_request(request, response)
            http_ctx.set_latency(round(latency, 6))
            attachments = [http_ctx] if trace_ctx is None else [trace_ctx, http_ctx]
            logger.info(
                "%s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                latency * 1000,
                extra={ATTACHMENTS_ATTR: attachments},
            )
        return response
