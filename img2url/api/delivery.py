import logging
import re

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Request
from fastapi import Response
from fastapi.responses import PlainTextResponse

from img2url.dependencies import get_client_ip
from img2url.dependencies import get_expiry_manager
from img2url.errors import DeliveryError
from img2url.monitoring import get_metrics_collector
from img2url.services.expiry_manager import ExpiryManager


logger = logging.getLogger(__name__)
router = APIRouter(tags=["delivery"])

SHORT_LINK_PATTERN = re.compile(r"^[a-z0-9]{8}\.(jpg|jpeg|png|gif|webp|svg|bmp)$", re.IGNORECASE)


@router.get("/{file_name}")
async def get_image(
    file_name: str,
    request: Request,
    expiry_manager: ExpiryManager = Depends(get_expiry_manager),
) -> Response:
    """Serve an image by short link, expiring it on access when it is past due."""
    if not SHORT_LINK_PATTERN.match(file_name):
        return PlainTextResponse("Not Found", status_code=404)

    client_ip = get_client_ip(request)
    try:
        result = await expiry_manager.fetch(file_name, client_ip)
    except DeliveryError as e:
        get_metrics_collector().record_delivery(e.status_code)
        return PlainTextResponse(e.message, status_code=e.status_code)
    except Exception:
        logger.exception(f"Short link error file={file_name}")
        get_metrics_collector().record_delivery(500)
        return PlainTextResponse("Failed to retrieve image", status_code=500)

    get_metrics_collector().record_delivery(200)
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={"Cache-Control": result.cache_control},
    )
