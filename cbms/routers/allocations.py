"""
Allocation and allocation-amendment routers.

``router`` mounts under ``/api/allocations``; ``amendments_router`` under
``/api/allocation-amendments``.

Department and HOD users only see their own department's allocations; the
service layer enforces that scoping.  Direct allocation CRUD, bulk creation,
spreadsheet uploads, history and rollback are restricted to admin and
office; any signed-in user can download the upload template.  Amendments
follow the workflow table (``GET /api/workflow/transitions``).
"""

from __future__ import annotations

import io
import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from cbms.config import get_settings
from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import filter_params, pagination_params
from cbms.schemas.allocation import (
    AllocationBulkCreate,
    AllocationBulkResponse,
    AllocationCreate,
    AllocationHistoryListResponse,
    AllocationHistoryResponse,
    AllocationListResponse,
    AllocationResponse,
    AllocationStatsResponse,
    AllocationUpdate,
    AmendmentCreate,
    AmendmentDecision,
    AmendmentListResponse,
    AmendmentResponse,
    RollbackRequest,
    RollbackResponse,
)
from cbms.schemas.bulk_upload import (
    BulkUploadHistoryResponse,
    BulkUploadLogResponse,
    BulkUploadResponse,
)
from cbms.schemas.common import FilterParams, PaginationParams
from cbms.services import (
    allocation_service,
    amendment_service,
    bulk_allocation_service,
    template_service,
)
from cbms.services.auth_service import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Allocations"])
amendments_router = APIRouter(tags=["Allocation Amendments"])

_DB = Annotated[Session, Depends(get_db)]
_User = Annotated[User, Depends(get_current_user)]
_Manager = Annotated[User, Depends(require_role("admin", "office"))]
_Pagination = Annotated[PaginationParams, Depends(pagination_params)]


# ---------------------------------------------------------------------------
# Allocations
# ---------------------------------------------------------------------------


@router.get(
    "/",
    response_model=AllocationListResponse,
    summary="List allocations",
    description="Paginated allocations with spent, remaining and utilisation figures.",
)
def list_allocations(
    filters: Annotated[FilterParams, Depends(filter_params)],
    pagination: _Pagination,
    db: _DB,
    current_user: _User,
    budget_head_id: Annotated[int | None, Query(ge=1)] = None,
) -> AllocationListResponse:
    return allocation_service.list_allocations(db, current_user, filters, pagination, budget_head_id)


@router.get(
    "/stats",
    response_model=AllocationStatsResponse,
    summary="Allocation statistics",
    description="Totals and a per-department breakdown of the allocations visible to the caller.",
)
def allocation_stats(
    db: _DB,
    current_user: _User,
    financial_year: Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$")] = None,
    department_id: Annotated[int | None, Query(ge=1)] = None,
) -> AllocationStatsResponse:
    return allocation_service.get_allocation_stats(db, current_user, financial_year, department_id)


@router.post(
    "/bulk",
    response_model=AllocationBulkResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create several allocations",
    description=(
        "Each row is validated on its own. Valid rows are created and refused "
        "rows are listed with their 1-based position."
    ),
    responses={422: {"description": "No row could be created."}},
)
def bulk_create_allocations(
    body: AllocationBulkCreate, db: _DB, current_user: _Manager
) -> AllocationBulkResponse:
    return allocation_service.bulk_create_allocations(db, body, current_user)


@router.get(
    "/bulk-upload/template",
    summary="Download the bulk upload template",
    responses={
        200: {
            "content": {
                template_service.CSV_MEDIA_TYPE: {},
                template_service.XLSX_MEDIA_TYPE: {},
            }
        }
    },
)
def download_upload_template(
    current_user: _User,
    fmt: Annotated[Literal["csv", "xlsx"], Query(alias="format")] = "csv",
) -> StreamingResponse:
    content, media_type = template_service.generate_template(fmt)
    headers = {
        "Content-Disposition": f'attachment; filename="{template_service.template_filename(fmt)}"',
        "Content-Length": str(len(content)),
    }
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers=headers)


@router.post(
    "/bulk-upload",
    response_model=BulkUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload allocations from a CSV or XLSX sheet",
    responses={
        422: {
            "description": (
                "Wrong file type, empty or oversized file, unreadable sheet, "
                "or missing columns."
            )
        }
    },
)
async def upload_allocations(
    file: Annotated[UploadFile, File(description="CSV or XLSX allocation sheet")],
    db: _DB,
    current_user: _Manager,
) -> BulkUploadResponse:
    """Create one allocation per valid row; the outcome is logged either way."""
    raw_bytes = await file.read()
    logger.info(
        "upload_allocations: user=%s file='%s' size=%d",
        current_user.email, file.filename, len(raw_bytes),
    )
    return bulk_allocation_service.process_upload(
        db,
        raw_bytes,
        file.filename or "upload.csv",
        current_user,
        max_size_mb=get_settings().MAX_UPLOAD_SIZE_MB,
    )


@router.get(
    "/bulk-upload/history",
    response_model=BulkUploadHistoryResponse,
    summary="List past bulk uploads",
)
def upload_history(
    pagination: _Pagination, db: _DB, current_user: _Manager
) -> BulkUploadHistoryResponse:
    return bulk_allocation_service.list_upload_history(db, pagination)


@router.get(
    "/bulk-upload/{upload_id}",
    response_model=BulkUploadLogResponse,
    summary="Get one bulk upload with every refused row",
)
def get_upload(upload_id: int, db: _DB, current_user: _Manager) -> BulkUploadLogResponse:
    return bulk_allocation_service.get_upload(db, upload_id)


@router.get("/{allocation_id}", response_model=AllocationResponse, summary="Get an allocation")
def get_allocation(allocation_id: int, db: _DB, current_user: _User) -> AllocationResponse:
    return allocation_service.get_allocation(db, allocation_id, current_user)


@router.post(
    "/",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an allocation",
    responses={
        422: {
            "description": (
                "Duplicate (department, head, year), unknown references, or "
                "the financial year is locked or closed."
            )
        }
    },
)
def create_allocation(body: AllocationCreate, db: _DB, current_user: _Manager) -> AllocationResponse:
    return allocation_service.create_allocation(db, body, current_user)


@router.put(
    "/{allocation_id}",
    response_model=AllocationResponse,
    summary="Update an allocation",
    description="Only ``allocated_amount`` and ``remarks`` are editable.",
)
def update_allocation(
    allocation_id: int, body: AllocationUpdate, db: _DB, current_user: _Manager
) -> AllocationResponse:
    return allocation_service.update_allocation(db, allocation_id, body, current_user)


@router.delete("/{allocation_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete an allocation")
def delete_allocation(allocation_id: int, db: _DB, current_user: _Manager) -> None:
    allocation_service.delete_allocation(db, allocation_id, current_user)


@router.get(
    "/{allocation_id}/history",
    response_model=AllocationHistoryListResponse,
    summary="List an allocation's versions",
    description="Every change to amount or remarks, newest first.",
)
def list_allocation_history(
    allocation_id: int, pagination: _Pagination, db: _DB, current_user: _Manager
) -> AllocationHistoryListResponse:
    return allocation_service.list_allocation_history(db, allocation_id, pagination)


@router.get(
    "/{allocation_id}/history/{version}",
    response_model=AllocationHistoryResponse,
    summary="Get one allocation version",
)
def get_allocation_version(
    allocation_id: int, version: int, db: _DB, current_user: _Manager
) -> AllocationHistoryResponse:
    return allocation_service.get_allocation_version(db, allocation_id, version)


@router.post(
    "/{allocation_id}/rollback/{version}",
    response_model=RollbackResponse,
    summary="Roll an allocation back to an earlier version",
    description=(
        "Restores the amount and remarks of *version* and records the rollback "
        "as a new version."
    ),
    responses={422: {"description": "Year locked or closed, or the amount would fall below spent."}},
)
def rollback_allocation(
    allocation_id: int,
    version: int,
    db: _DB,
    current_user: _Manager,
    body: RollbackRequest | None = None,
) -> RollbackResponse:
    reason = body.reason if body is not None else None
    return allocation_service.rollback_allocation(db, allocation_id, version, current_user, reason)


# ---------------------------------------------------------------------------
# Allocation amendments
# ---------------------------------------------------------------------------


@amendments_router.get("/", response_model=AmendmentListResponse, summary="List amendment requests")
def list_amendments(
    pagination: _Pagination,
    db: _DB,
    current_user: _User,
    status_filter: Annotated[str | None, Query(alias="status", max_length=30)] = None,
    allocation_id: Annotated[int | None, Query(ge=1)] = None,
) -> AmendmentListResponse:
    return amendment_service.list_amendments(db, current_user, pagination, status_filter, allocation_id)


@amendments_router.get("/{amendment_id}", response_model=AmendmentResponse, summary="Get an amendment request")
def get_amendment(amendment_id: int, db: _DB, current_user: _User) -> AmendmentResponse:
    return amendment_service.get_amendment(db, amendment_id, current_user)


@amendments_router.post(
    "/",
    response_model=AmendmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request an allocation amendment",
    description=(
        "Records the original and requested amounts with the computed change. "
        "The allocation itself is not modified until the request is approved."
    ),
)
def request_amendment(body: AmendmentCreate, db: _DB, current_user: _User) -> AmendmentResponse:
    return amendment_service.request_amendment(db, body, current_user)


@amendments_router.post(
    "/{amendment_id}/approve",
    response_model=AmendmentResponse,
    summary="Approve an amendment",
    responses={409: {"description": "Not pending, or role not allowed."}},
)
def approve_amendment(
    amendment_id: int, body: AmendmentDecision, db: _DB, current_user: _User
) -> AmendmentResponse:
    return amendment_service.approve_amendment(db, amendment_id, current_user, body.approval_remarks)


@amendments_router.post(
    "/{amendment_id}/reject",
    response_model=AmendmentResponse,
    summary="Reject an amendment",
    responses={409: {"description": "Not pending, or role not allowed."}},
)
def reject_amendment(
    amendment_id: int, body: AmendmentDecision, db: _DB, current_user: _User
) -> AmendmentResponse:
    return amendment_service.reject_amendment(db, amendment_id, current_user, body.approval_remarks)
