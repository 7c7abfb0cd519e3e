"""Error types and standard JSON error responses."""

from fastapi.responses import JSONResponse
from starlette import status


class Img2UrlError(Exception):
    """Base exception carrying an API error code and HTTP status."""

    error = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal error"

    def __init__(self, message: str = "", *, error: str | None = None, status_code: int | None = None):
        self.error = error or self.error
        self.status_code = status_code or self.status_code
        self.message = message or self.default_message
        super().__init__(self.message)


class UploadError(Img2UrlError):
    error = "UPLOAD_FAILED"
    default_message = "Upload failed"


class MissingFileError(UploadError):
    error = "MISSING_FILE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No file provided"


class InvalidFileTypeError(UploadError):
    error = "INVALID_FILE_TYPE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Only image files are allowed"


class FileTooLargeError(UploadError):
    error = "FILE_TOO_LARGE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "File size exceeds upload limit"


class CaptchaRequiredError(UploadError):
    error = "CAPTCHA_REQUIRED"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Captcha verification required for high-volume uploads"


class CaptchaUsedError(UploadError):
    error = "CAPTCHA_USED"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "This verification token has already been used"


class CaptchaFailedError(UploadError):
    error = "CAPTCHA_FAILED"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Captcha verification failed"


class CaptchaUnavailableError(UploadError):
    error = "CAPTCHA_UNAVAILABLE"
    default_message = "Captcha verification service unavailable"


class CaptchaConfigError(UploadError):
    error = "CONFIG_ERROR"
    default_message = "Turnstile not configured"


class DailyLimitExceededError(UploadError):
    error = "DAILY_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Daily upload limit exceeded"


class UploadRateLimitedError(UploadError):
    error = "RATE_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many uploads in a short time, please slow down"


class StorageFullError(UploadError):
    error = "STORAGE_FULL"
    status_code = status.HTTP_507_INSUFFICIENT_STORAGE
    default_message = "Storage space is nearly full, please try again later"


class PersistenceError(UploadError):
    error = "UPLOAD_FAILED"
    default_message = "Failed to persist upload"


class DeliveryError(Img2UrlError):
    error = "DELIVERY_FAILED"
    default_message = "Failed to retrieve image"


class ObjectNotFoundError(DeliveryError):
    error = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Image not found"


class ObjectExpiredError(DeliveryError):
    error = "EXPIRED"
    status_code = status.HTTP_410_GONE
    default_message = "Image has expired"


class ReadRateLimitedError(DeliveryError):
    error = "RATE_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded"


def json_error_response(
    status_code: int,
    error: str,
    message: str,
    *,
    extra_headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render the standard ``{success, code, error, message}`` error body."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "code": status_code,
            "error": error,
            "message": message,
        },
        headers=extra_headers,
    )


def error_response_from(exc: Img2UrlError) -> JSONResponse:
    return json_error_response(exc.status_code, exc.error, exc.message)
