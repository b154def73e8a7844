"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id so that rate limit
decisions logged deep inside the limiter can be tied back to the request
that triggered them.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from ratelimit_service.core.config import settings
from ratelimit_service.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Accept or generate a request id and echo it on the response.

    The incoming header (``LOG_REQUEST_ID_HEADER``, default X-Request-ID)
    is reused when present; otherwise a UUID4 is generated. The id is kept
    in contextvars for the duration of the request, and the response gets
    the id plus an ``X-Request-Duration-ms`` header.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with correlation headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
