"""
Financial year router.

Mounts under ``/api/financial-years``.  Any authenticated user may read;
admin and the principal manage the lifecycle
(planning -> active -> locked -> closed).
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.schemas.financial_year import (
    FinancialYearActionRequest,
    FinancialYearCreate,
    FinancialYearResponse,
    FinancialYearSummary,
    FinancialYearUpdate,
)
from cbms.services import financial_year_service
from cbms.services.auth_service import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Financial Years"])

_DB = Annotated[Session, Depends(get_db)]
_Reader = Annotated[User, Depends(get_current_user)]
_Manager = Annotated[User, Depends(require_role("admin", "principal"))]


@router.get("/", response_model=list[FinancialYearResponse], summary="List financial years")
def list_years(
    db: _DB,
    _current_user: _Reader,
    status_filter: Annotated[str | None, Query(alias="status", max_length=30)] = None,
) -> list[FinancialYearResponse]:
    return financial_year_service.list_years(db, status_filter)


@router.get("/active", response_model=FinancialYearResponse, summary="The active financial year")
def get_active(db: _DB, _current_user: _Reader) -> FinancialYearResponse:
    return financial_year_service.get_active(db)


@router.get("/{year_id}", response_model=FinancialYearResponse, summary="Get a financial year")
def get_year(year_id: int, db: _DB, _current_user: _Reader) -> FinancialYearResponse:
    return financial_year_service.get_year(db, year_id)


@router.get(
    "/{year_id}/summary",
    response_model=FinancialYearSummary,
    summary="Financial year summary",
    description="Income by source, allocations by department and expenditures by status.",
)
def get_summary(year_id: int, db: _DB, _current_user: _Reader) -> FinancialYearSummary:
    return financial_year_service.get_summary(db, year_id)


@router.post(
    "/",
    response_model=FinancialYearResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a financial year",
    description="Dates default to 1 April and 31 March of the labelled years.",
)
def create_year(body: FinancialYearCreate, db: _DB, current_user: _Manager) -> FinancialYearResponse:
    return financial_year_service.create_year(db, body, current_user)


@router.put("/{year_id}", response_model=FinancialYearResponse, summary="Update a financial year")
def update_year(
    year_id: int, body: FinancialYearUpdate, db: _DB, current_user: _Manager
) -> FinancialYearResponse:
    return financial_year_service.update_year(db, year_id, body, current_user)


@router.post(
    "/{year_id}/activate",
    response_model=FinancialYearResponse,
    summary="Activate a financial year",
    responses={409: {"description": "Not in planning, or another year is active."}},
)
def activate_year(year_id: int, db: _DB, current_user: _Manager) -> FinancialYearResponse:
    return financial_year_service.activate_year(db, year_id, current_user)


@router.post(
    "/{year_id}/lock",
    response_model=FinancialYearResponse,
    summary="Lock a financial year",
    description="Allocations of a locked year can no longer be created or modified.",
    responses={409: {"description": "Already locked or closed."}},
)
def lock_year(
    year_id: int, body: FinancialYearActionRequest, db: _DB, current_user: _Manager
) -> FinancialYearResponse:
    return financial_year_service.lock_year(db, year_id, current_user, body.remarks)


@router.post(
    "/{year_id}/close",
    response_model=FinancialYearResponse,
    summary="Close a financial year",
    description=(
        "Refused while expenditures are pending or verified.  Final totals and "
        "the carry-forward amount are computed at closure."
    ),
    responses={409: {"description": "Already closed."}, 422: {"description": "Open expenditures remain."}},
)
def close_year(
    year_id: int, body: FinancialYearActionRequest, db: _DB, current_user: _Manager
) -> FinancialYearResponse:
    return financial_year_service.close_year(db, year_id, current_user, body.remarks)


@router.post(
    "/{year_id}/recalculate",
    response_model=FinancialYearResponse,
    summary="Recalculate year totals",
)
def recalculate_totals(year_id: int, db: _DB, _current_user: _Manager) -> FinancialYearResponse:
    return financial_year_service.recalculate_totals(db, year_id)
