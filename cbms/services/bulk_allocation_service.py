"""
Allocation spreadsheet upload.

``process_upload`` reads a CSV or XLSX sheet (see ``cbms.parsers``), resolves
department and budget head codes, and creates one allocation per valid row
through ``allocation_service.new_allocation``, so uploaded rows obey the
same rules as rows created one at a time.  Refused rows are collected with
their 1-based row number and the reason; they never stop the others.

Every upload leaves a ``BulkUploadLog`` row: ``completed`` when at least one
allocation was created, ``failed`` when every row was refused.  The log and
the created allocations commit together.
"""

from __future__ import annotations

import logging
import re
import time
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from cbms.exceptions import NotFound, ValidationError
from cbms.models.budget_head import BudgetHead
from cbms.models.bulk_upload_log import BulkUploadLog
from cbms.models.department import Department
from cbms.models.user import User
from cbms.parsers import parse_allocation_sheet
from cbms.schemas.allocation import BulkRowError
from cbms.schemas.bulk_upload import (
    BulkUploadCreated,
    BulkUploadHistoryResponse,
    BulkUploadLogResponse,
    BulkUploadResponse,
)
from cbms.schemas.common import PaginationParams
from cbms.services import audit_service
from cbms.services.allocation_service import new_allocation
from cbms.utils import fiscal
from cbms.utils.amounts import to_float

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".csv", ".xlsx")
# Entries echoed back in the upload response; the log keeps every error
_RESPONSE_SAMPLE = 10


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _parse_amount(value: str) -> Decimal | None:
    cleaned = re.sub(r"[,\s]", "", value or "")
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _validate_file(file_name: str, size: int, max_size_mb: int) -> None:
    if not file_name.lower().endswith(ALLOWED_EXTENSIONS):
        raise ValidationError(
            "Only CSV and XLSX files can be uploaded.",
            errors=[{"field": "file", "message": f"Allowed: {', '.join(ALLOWED_EXTENSIONS)}"}],
        )
    if size == 0:
        raise ValidationError(
            "The uploaded file is empty.",
            errors=[{"field": "file", "message": "Empty file"}],
        )
    if size > max_size_mb * 1024 * 1024:
        raise ValidationError(
            f"File exceeds the {max_size_mb} MB limit.",
            errors=[{"field": "file", "message": "File too large"}],
        )


def _process_row(
    db: Session, record: dict, user: User, upload_id: int
) -> BulkUploadCreated:
    """Create the allocation for one parsed row or raise with the reason."""
    if any(not record[key] for key in ("department_code", "budget_head_code",
                                       "allocated_amount", "financial_year")):
        raise ValidationError("Missing required fields")

    department = db.query(Department).filter(Department.code == record["department_code"]).first()
    if department is None:
        raise ValidationError(f"Department not found: {record['department_code']}")
    head = db.query(BudgetHead).filter(BudgetHead.code == record["budget_head_code"]).first()
    if head is None:
        raise ValidationError(f"Budget head not found: {record['budget_head_code']}")

    amount = _parse_amount(record["allocated_amount"])
    if amount is None or amount <= 0:
        raise ValidationError("Invalid allocated amount")

    allocation = new_allocation(
        db,
        record["financial_year"],
        department.id,
        head.id,
        amount,
        user,
        remarks=record["remarks"] or None,
    )
    audit_service.record(
        db, "allocation.create_bulk", user, "allocation", allocation.id,
        details={
            "bulk_upload_id": upload_id,
            "row": record["row"],
            "department": department.name,
            "budget_head": head.name,
            "amount": amount,
        },
    )
    return BulkUploadCreated(
        row=record["row"],
        allocation_id=allocation.id,
        department=department.name,
        budget_head=head.name,
        amount=to_float(amount),
    )


def _build_log_response(row: BulkUploadLog, uploader: User | None) -> BulkUploadLogResponse:
    return BulkUploadLogResponse(
        id=row.id,
        file_name=row.file_name,
        upload_type=row.upload_type,
        uploaded_by_id=row.uploaded_by_id,
        uploaded_by_name=uploader.name if uploader is not None else None,
        total_rows=row.total_rows,
        success_count=row.success_count,
        failure_count=row.failure_count,
        errors=[BulkRowError(**e) for e in (row.errors or [])],
        status=row.status,
        processing_ms=row.processing_ms,
        financial_year=row.financial_year,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------


def process_upload(
    db: Session, content: bytes, file_name: str, user: User, max_size_mb: int = 5
) -> BulkUploadResponse:
    """Create allocations from an uploaded sheet and log the outcome.

    Raises:
        ValidationError: Wrong extension, empty or oversized file, unreadable
            sheet, missing columns, or no data rows.  No log is written.
    """
    started = time.monotonic()
    _validate_file(file_name, len(content), max_size_mb)

    parsed = parse_allocation_sheet(content, file_name)
    if not parsed.ok:
        raise ValidationError(
            parsed.errors[0],
            errors=[{"field": "file", "message": e} for e in parsed.errors],
        )
    if not parsed.records:
        raise ValidationError(
            "The file contains no data rows.",
            errors=[{"field": "file", "message": "No data rows"}],
        )

    years = {r["financial_year"] for r in parsed.records if fiscal.is_valid_label(r["financial_year"])}
    log = BulkUploadLog(
        file_name=file_name,
        upload_type="allocation",
        uploaded_by_id=user.id,
        total_rows=len(parsed.records),
        status="processing",
        financial_year=years.pop() if len(years) == 1 else None,
    )
    db.add(log)
    db.flush()

    created: list[BulkUploadCreated] = []
    errors: list[BulkRowError] = []
    for record in parsed.records:
        try:
            created.append(_process_row(db, record, user, log.id))
        except (NotFound, ValidationError) as exc:
            errors.append(BulkRowError(row=record["row"], error=exc.message, data=record["raw"]))

    log.success_count = len(created)
    log.failure_count = len(errors)
    log.errors = [e.model_dump() for e in errors]
    log.status = "failed" if not created else "completed"
    log.processing_ms = int((time.monotonic() - started) * 1000)

    audit_service.record(
        db, "allocation.bulk_upload", user, "bulk_upload", log.id,
        details={
            "file_name": file_name,
            "total_rows": log.total_rows,
            "success_count": log.success_count,
            "failure_count": log.failure_count,
        },
    )
    db.commit()
    db.refresh(log)
    logger.info(
        "process_upload: id=%d file='%s' rows=%d created=%d refused=%d status=%s",
        log.id, file_name, log.total_rows, log.success_count, log.failure_count, log.status,
    )
    return BulkUploadResponse(
        upload_id=log.id,
        file_name=log.file_name,
        total_rows=log.total_rows,
        success_count=log.success_count,
        failure_count=log.failure_count,
        status=log.status,
        processing_ms=log.processing_ms,
        results=created[:_RESPONSE_SAMPLE],
        errors=errors[:_RESPONSE_SAMPLE],
    )


def list_upload_history(
    db: Session, pagination: PaginationParams, upload_type: str = "allocation"
) -> BulkUploadHistoryResponse:
    """Uploads of *upload_type*, newest first."""
    q = db.query(BulkUploadLog).filter(BulkUploadLog.upload_type == upload_type)
    total = q.count()
    rows = (
        q.order_by(BulkUploadLog.created_at.desc(), BulkUploadLog.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return BulkUploadHistoryResponse(
        rows=[_build_log_response(r, db.get(User, r.uploaded_by_id)) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_upload(db: Session, upload_id: int) -> BulkUploadLogResponse:
    row = db.query(BulkUploadLog).filter(BulkUploadLog.id == upload_id).first()
    if row is None:
        raise NotFound("BulkUpload", upload_id)
    return _build_log_response(row, db.get(User, row.uploaded_by_id))
