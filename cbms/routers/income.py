"""
Income router.

Mounts under ``/api/income``.  Office and admin record income; the principal
and admin verify it.  Income is institution-level data, so department roles
have no access.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import pagination_params
from cbms.schemas.common import PaginationParams
from cbms.schemas.income import (
    IncomeCreate,
    IncomeListResponse,
    IncomeResponse,
    IncomeStatsResponse,
    IncomeUpdate,
    IncomeVerifyRequest,
)
from cbms.services import income_service
from cbms.services.auth_service import require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Income"])

_DB = Annotated[Session, Depends(get_db)]
_Reader = Annotated[
    User, Depends(require_role("admin", "office", "principal", "vice_principal", "auditor"))
]
_Editor = Annotated[User, Depends(require_role("admin", "office"))]
_Verifier = Annotated[User, Depends(require_role("admin", "principal"))]


@router.get("/", response_model=IncomeListResponse, summary="List income entries")
def list_income(
    pagination: Annotated[PaginationParams, Depends(pagination_params)],
    db: _DB,
    _current_user: _Reader,
    financial_year: Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$")] = None,
    source: Annotated[str | None, Query(max_length=50)] = None,
    status_filter: Annotated[str | None, Query(alias="status", max_length=30)] = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
) -> IncomeListResponse:
    return income_service.list_income(db, pagination, financial_year, source, status_filter, search)


@router.get("/stats", response_model=IncomeStatsResponse, summary="Income totals by source and status")
def income_stats(
    db: _DB,
    _current_user: _Reader,
    financial_year: Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$")] = None,
) -> IncomeStatsResponse:
    return income_service.get_stats(db, financial_year)


@router.get("/{income_id}", response_model=IncomeResponse, summary="Get an income entry")
def get_income(income_id: int, db: _DB, _current_user: _Reader) -> IncomeResponse:
    return income_service.get_income(db, income_id)


@router.post(
    "/",
    response_model=IncomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record income",
    responses={422: {"description": "Invalid source/status, or the financial year is closed."}},
)
def create_income(body: IncomeCreate, db: _DB, current_user: _Editor) -> IncomeResponse:
    return income_service.create_income(db, body, current_user)


@router.put(
    "/{income_id}",
    response_model=IncomeResponse,
    summary="Update income",
    responses={403: {"description": "Verified income may only be modified by admin or the principal."}},
)
def update_income(
    income_id: int,
    body: IncomeUpdate,
    db: _DB,
    current_user: Annotated[User, Depends(require_role("admin", "office", "principal"))],
) -> IncomeResponse:
    return income_service.update_income(db, income_id, body, current_user)


@router.delete(
    "/{income_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete income",
    responses={422: {"description": "Verified income cannot be deleted."}},
)
def delete_income(income_id: int, db: _DB, current_user: _Editor) -> None:
    income_service.delete_income(db, income_id, current_user)


@router.post(
    "/{income_id}/verify",
    response_model=IncomeResponse,
    summary="Verify received income",
    responses={409: {"description": "Only received income can be verified."}},
)
def verify_income(
    income_id: int, body: IncomeVerifyRequest, db: _DB, current_user: _Verifier
) -> IncomeResponse:
    return income_service.verify_income(db, income_id, current_user, body.remarks)
