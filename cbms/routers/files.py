"""
File attachment router.

Mounts under ``/api/files``.

Endpoints
---------
POST /upload       Upload a bill or supporting document (PDF, JPG, PNG).
GET  /{path}       Download a previously uploaded file.

The upload response matches the ``attachments`` entries stored on an
expenditure, so clients can pass it through unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import FileResponse

from cbms.config import get_settings
from cbms.models.user import User
from cbms.schemas.files import UploadResponse
from cbms.services import file_storage
from cbms.services.auth_service import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Files"])


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an attachment",
    responses={422: {"description": "Type not allowed, empty file, or above the size limit."}},
)
async def upload_file(
    file: Annotated[UploadFile, File(description="PDF, JPG or PNG document")],
    current_user: Annotated[User, Depends(get_current_user)],
) -> UploadResponse:
    """Validate and store an uploaded file.

    Raises:
        ValidationError: Disallowed content type, empty or oversized file.
    """
    settings = get_settings()
    raw_bytes = await file.read()
    file_storage.validate_upload(
        file.content_type,
        len(raw_bytes),
        settings.ALLOWED_UPLOAD_TYPES,
        settings.MAX_UPLOAD_SIZE_MB,
    )

    stored = file_storage.save_upload(
        raw_bytes,
        file.filename or "file",
        settings.UPLOADS_DIR,
        user_folder=str(current_user.id),
    )
    relative = file_storage.get_upload_relative_path(stored, settings.UPLOADS_DIR)
    logger.info(
        "upload_file: user=%s name='%s' size=%d", current_user.email, file.filename, len(raw_bytes)
    )
    return UploadResponse(
        filename=relative,
        original_name=file.filename or stored.name,
        mimetype=file.content_type or "application/octet-stream",
        size=len(raw_bytes),
        url=f"{settings.API_PREFIX}/files/{relative}",
        uploaded_at=datetime.now(timezone.utc),
    )


@router.get(
    "/{file_path:path}",
    response_class=FileResponse,
    summary="Download an attachment",
    responses={404: {"description": "File not found."}},
)
def download_file(
    file_path: str,
    _current_user: Annotated[User, Depends(get_current_user)],
) -> FileResponse:
    settings = get_settings()
    path = file_storage.resolve_upload(file_path, settings.UPLOADS_DIR)
    return FileResponse(path=str(path), filename=path.name)
