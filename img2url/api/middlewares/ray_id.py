from typing import Awaitable
from typing import Callable

from fastapi import Request
from fastapi import Response

from img2url.services.ray_id_service import generate_ray_id
from img2url.services.ray_id_service import ray_id_context


RAY_ID_HEADER = "X-Img2URL-Ray-ID"


async def ray_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag each request with a ray ID for log correlation.

    Must be registered LAST in main.py so it executes FIRST and the ray ID is
    available to every other middleware and handler.
    """
    ray_id = generate_ray_id()
    ray_id_context.set(ray_id)
    request.state.ray_id = ray_id

    response = await call_next(request)

    response.headers[RAY_ID_HEADER] = ray_id
    return response
