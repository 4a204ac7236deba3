"""
Upload Endpoint - Synchronous Image Relay

POST /upload - Upload one or more images (multipart field "images"):
1. Store each image in the object store
2. Publish a transformation job to the broker
3. Wait for the worker's reply (bounded)
4. Return an HTML fragment per processed image
"""

import uuid
from pathlib import Path
from typing import List, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from src.api.dependencies import get_relay_service, get_settings
from src.core.config import Settings
from src.core.exceptions import UploadValidationError
from src.core.logging import LogContext, get_logger
from src.engines.relay.services import ImageRelayService

logger = get_logger(__name__)
router = APIRouter()

FORM_FIELD = "images"
RESERVED_NAMES = ("", ".", "..")


async def _read_uploads(request: Request, settings: Settings) -> List[Tuple[str, bytes]]:
    """Parse the multipart form and enforce upload limits before anything is stored."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        raise UploadValidationError(
            "Error parsing multipart form: expected multipart/form-data",
            details={"content_type": content_type}
        )

    try:
        form = await request.form(max_files=settings.MAX_FILES + 1)
    except (MultiPartException, StarletteHTTPException) as e:
        detail = getattr(e, "detail", None) or getattr(e, "message", None) or str(e)
        raise UploadValidationError(f"Error parsing multipart form: {detail}") from e

    try:
        files = [f for f in form.getlist(FORM_FIELD) if isinstance(f, UploadFile)]
        if not files:
            raise UploadValidationError("No files uploaded")

        if len(files) > settings.MAX_FILES:
            raise UploadValidationError(
                f"Too many files: at most {settings.MAX_FILES} per upload",
                details={"file_count": len(files)}
            )

        uploads = []
        for upload in files:
            if not upload.filename:
                raise UploadValidationError("Uploaded file has no filename")
            if Path(upload.filename).name in RESERVED_NAMES:
                raise UploadValidationError(
                    f"Invalid filename: {upload.filename!r}",
                    details={"filename": upload.filename}
                )

            data = await upload.read()
            if len(data) > settings.MAX_UPLOAD_SIZE_BYTES:
                raise UploadValidationError(
                    f"File '{upload.filename}' exceeds the maximum size of "
                    f"{settings.MAX_UPLOAD_SIZE_BYTES // (1024 * 1024)}MB",
                    details={"filename": upload.filename, "size_bytes": len(data)}
                )
            uploads.append((upload.filename, data))

        return uploads
    finally:
        await form.close()


@router.post("/upload", response_class=HTMLResponse)
async def upload_images(
    request: Request,
    settings: Settings = Depends(get_settings),
    relay_service: ImageRelayService = Depends(get_relay_service)
):
    """
    Upload images and wait for their processed versions.

    Files are relayed one after another; the response holds one
    `<div><img ...></div>` fragment per file. A reply wait that exceeds
    the timeout fails the whole request with 408.
    """
    request_id = str(uuid.uuid4())

    with LogContext(request_id=request_id):
        uploads = await _read_uploads(request, settings)
        logger.info("upload_request_received", file_count=len(uploads))

        fragments = []
        for filename, data in uploads:
            with LogContext(upload=filename):
                logger.info("upload_received", size_bytes=len(data))
                result = await relay_service.process_image(filename, data)
                fragments.append(result.html)

        logger.info("upload_request_completed", file_count=len(fragments))
        return HTMLResponse(content="".join(fragments))
