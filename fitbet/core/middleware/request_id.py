"""
Request correlation for the HTTP surface.

Every request gets an id (the caller's ``x-request-id`` when it is usable,
otherwise a fresh uuid). The id is bound to the logging context for the
duration of the request, echoed back on the response and attached to the
``http.request`` completion event together with the chat the path refers to.
"""

import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from fitbet.core.logging import latency_bucket_ms, log_event, request_id_ctx_var

# Ids end up in log lines and response headers, so only short plain tokens are trusted
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")
_CHAT_PATH = re.compile(r"^/v1/chats/(-?\d+)(?:/|$)")


def resolve_request_id(incoming: Optional[str]) -> str:
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid4())


def chat_id_from_path(path: str) -> Optional[int]:
    match = _CHAT_PATH.match(path)
    return int(match.group(1)) if match else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id per request and log one completion event."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = resolve_request_id(request.headers.get(self.header_name))
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = rid
            log_event(
                "info",
                "request.complete",
                event_type="http.request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status": response.status_code,
                    "chat_id": chat_id_from_path(request.url.path),
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - start) * 1000),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
