"""
Pydantic v2 schema for uploaded file metadata.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UploadResponse(BaseModel):
    filename: str
    original_name: str
    mimetype: str
    size: int
    url: str
    uploaded_at: datetime
