"""
Pydantic v2 schemas for allocation spreadsheet uploads and their history.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from cbms.schemas.allocation import BulkRowError


class BulkUploadCreated(BaseModel):
    row: int
    allocation_id: int
    department: str
    budget_head: str
    amount: float


class BulkUploadResponse(BaseModel):
    """Summary returned right after an upload.

    ``results`` and ``errors`` hold at most the first ten entries each; the
    full error list is kept on the upload log.
    """

    upload_id: int
    file_name: str
    total_rows: int
    success_count: int
    failure_count: int
    status: str
    processing_ms: int
    results: list[BulkUploadCreated]
    errors: list[BulkRowError]


class BulkUploadLogResponse(BaseModel):
    id: int
    file_name: str
    upload_type: str
    uploaded_by_id: int
    uploaded_by_name: str | None = None
    total_rows: int
    success_count: int
    failure_count: int
    errors: list[BulkRowError]
    status: str
    processing_ms: int | None
    financial_year: str | None
    created_at: datetime | None = None


class BulkUploadHistoryResponse(BaseModel):
    rows: list[BulkUploadLogResponse]
    total: int
    page: int
    page_size: int
