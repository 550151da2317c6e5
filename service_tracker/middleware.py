import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response

from .logging_utils import log_api_request
from .metrics import record_http_request


async def log_requests_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log each call with its caller and feed the HTTP request metrics."""
    start_time = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start_time

    log_api_request(request, response.status_code)
    route = request.scope.get("route")
    record_http_request(
        request.method,
        getattr(route, "path", request.url.path),
        response.status_code,
        duration,
    )
    return response
