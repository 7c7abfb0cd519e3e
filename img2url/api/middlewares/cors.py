"""CORS headers for the browser upload client."""

from typing import Awaitable
from typing import Callable

from fastapi import Request
from fastapi import Response


async def cors_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    if request.method == "OPTIONS":
        response = Response(status_code=204)
    else:
        response = await call_next(request)

    config = getattr(request.app.state, "config", None)
    response.headers["Access-Control-Allow-Origin"] = getattr(config, "cors_origin", "*") or "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response
