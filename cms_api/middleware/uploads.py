from typing import Optional

from fastapi import HTTPException, Request, UploadFile, status
import structlog

from cms_api.config import settings
from cms_api.services.storage import UploadPayload

logger = structlog.get_logger()

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "application/pdf",
}


def request_base_url(request: Request) -> str:
    """Scheme and host the client used, for locators when PUBLIC_BASE_URL is unset."""
    return f"{request.url.scheme}://{request.headers.get('host') or request.url.netloc}"


async def read_upload(file: Optional[UploadFile]) -> Optional[UploadPayload]:
    """Validate a multipart file part and load it into an UploadPayload. None when no file was sent."""
    if file is None or not file.filename:
        return None
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported file type: {file.content_type}. "
                f"Allowed: {sorted(ALLOWED_CONTENT_TYPES)}"
            ),
        )

    limit = settings.MAX_UPLOAD_BYTES
    too_large = HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"File too large. Max size: {limit // (1024 * 1024)} MB",
    )
    if file.size is not None and file.size > limit:
        raise too_large

    # One byte past the limit is enough to tell an oversized part apart
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise too_large
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")

    logger.debug(
        "upload_received",
        filename=file.filename,
        content_type=file.content_type,
        size=len(content),
    )
    return UploadPayload(
        content=content, original_name=file.filename, mime_type=file.content_type
    )


def upload_failed() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error": {"code": "UPLOAD_FAILED", "message": "Failed to store uploaded file"}},
    )
