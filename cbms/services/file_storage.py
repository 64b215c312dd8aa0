"""
Attachment storage on the local filesystem.

Uploaded bills and supporting documents are written under::

    UPLOADS_DIR/{year}/{month:02d}/{user}/{uuid4}_{sanitized_filename}

and referenced from expenditures by their path relative to ``UPLOADS_DIR``.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from pathlib import Path

from cbms.exceptions import NotFound, ValidationError

logger = logging.getLogger(__name__)


def _sanitize_filename(filename: str) -> str:
    """Replace spaces with underscores and drop anything but word chars, dots and dashes."""
    name = filename.replace(" ", "_")
    return re.sub(r"[^\w.\-]", "", name)


def validate_upload(
    content_type: str | None,
    size: int,
    allowed_types: list[str],
    max_size_mb: int,
) -> None:
    """Raise ``ValidationError`` for a disallowed type, an empty file or an oversized one."""
    if content_type not in allowed_types:
        raise ValidationError(
            f"File type '{content_type}' is not allowed.",
            errors=[{"field": "file", "message": f"Allowed types: {', '.join(allowed_types)}"}],
        )
    if size == 0:
        raise ValidationError("The uploaded file is empty.", errors=[{"field": "file", "message": "Empty file"}])
    if size > max_size_mb * 1024 * 1024:
        raise ValidationError(
            f"File exceeds the {max_size_mb} MB limit.",
            errors=[{"field": "file", "message": f"Maximum size is {max_size_mb} MB"}],
        )


def save_upload(
    raw_bytes: bytes,
    filename: str,
    uploads_dir: Path,
    user_folder: str = "anonymous",
) -> Path:
    """Write *raw_bytes* to a date- and user-partitioned directory.

    Args:
        raw_bytes: File contents.
        filename: Name supplied by the uploader.
        uploads_dir: Root directory for uploads.
        user_folder: Sub-folder for the uploader (their user ID).

    Returns:
        Absolute path of the stored file.
    """
    now = datetime.now()
    safe_user = _sanitize_filename(user_folder) or "anonymous"
    dest_dir = uploads_dir / str(now.year) / f"{now.month:02d}" / safe_user
    dest_dir.mkdir(parents=True, exist_ok=True)

    safe_name = _sanitize_filename(filename) or "file"
    dest_path = dest_dir / f"{uuid.uuid4()}_{safe_name}"
    dest_path.write_bytes(raw_bytes)
    logger.info("save_upload: %s (%d bytes)", dest_path, len(raw_bytes))
    return dest_path


def get_upload_relative_path(full_path: Path, uploads_dir: Path) -> str:
    """Path of *full_path* relative to *uploads_dir*, with forward slashes."""
    return full_path.relative_to(uploads_dir).as_posix()


def resolve_upload(relative_path: str, uploads_dir: Path) -> Path:
    """Map a stored relative path back to a file inside *uploads_dir*.

    Raises:
        NotFound: The path escapes the uploads directory or does not exist.
    """
    root = uploads_dir.resolve()
    candidate = (root / relative_path).resolve()
    if root not in candidate.parents or not candidate.is_file():
        raise NotFound("File", relative_path)
    return candidate
