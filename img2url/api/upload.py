import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import Form
from fastapi import Request
from fastapi import UploadFile
from fastapi.responses import JSONResponse

from img2url.dependencies import get_client_ip
from img2url.dependencies import get_ingestion_pipeline
from img2url.errors import MissingFileError
from img2url.errors import UploadError
from img2url.errors import error_response_from
from img2url.errors import json_error_response
from img2url.monitoring import get_metrics_collector
from img2url.services.ingestion import IngestionPipeline
from img2url.utils import parse_int


logger = logging.getLogger(__name__)
router = APIRouter(tags=["upload"])


@router.post("/upload")
async def upload_image(
    request: Request,
    file: Optional[UploadFile] = File(None),
    expiration: Optional[str] = Form(None),
    turnstile: Optional[str] = Form(None),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
) -> JSONResponse:
    """Upload an image and get back its short URL."""
    client_ip = get_client_ip(request)
    user_agent = request.headers.get("User-Agent") or "unknown"
    logger.info(
        f"Upload request received ip={client_ip} "
        f"file={(file.filename, file.size) if file else None} "
        f"turnstile={(turnstile[:20] + '...') if turnstile else None}"
    )

    try:
        if file is None:
            raise MissingFileError()

        # Reject on the declared type and size before reading the body
        pipeline.validate(file.content_type, file.size)
        file_bytes = await file.read()

        result = await pipeline.ingest(
            file_bytes=file_bytes,
            declared_content_type=file.content_type,
            file_size=file.size,
            requested_expiry_days=parse_int(expiration, 0),
            captcha_token=turnstile or None,
            client_ip=client_ip,
            user_agent=user_agent,
        )
    except UploadError as e:
        logger.info(f"Upload rejected ip={client_ip} error={e.error} message={e.message}")
        get_metrics_collector().record_upload(e.error.lower())
        return error_response_from(e)
    except Exception as e:
        logger.exception(f"Upload error ip={client_ip}")
        get_metrics_collector().record_upload("error")
        return json_error_response(500, "UPLOAD_FAILED", f"Upload failed: {e}")

    return JSONResponse({"success": True, "code": 200, "data": result.to_response_data()})
