"""
Reconciliation router: previous-year balances and current-year spend.

Mounts under ``/api/reconciliation``.  All figures are advisory; responses
carry ``computed_at`` and ``refresh_after_seconds`` so clients know when to
ask again.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.schemas.reconciliation import ReconciliationResponse
from cbms.services import reconciliation_service
from cbms.services.auth_service import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reconciliation"])

_Year = Annotated[
    str,
    Query(description="Financial year of the proposal, e.g. '2026-2027'.", pattern=r"^\d{4}-\d{4}$"),
]


@router.get(
    "/departments/{department_id}/budget-heads/{budget_head_id}",
    response_model=ReconciliationResponse,
    summary="Figures for one department and budget head",
)
def item_stats(
    department_id: int,
    budget_head_id: int,
    financial_year: _Year,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> ReconciliationResponse:
    return reconciliation_service.get_item_stats(
        db, current_user, department_id, budget_head_id, financial_year
    )


@router.get(
    "/departments/{department_id}",
    response_model=ReconciliationResponse,
    summary="Figures for one department",
)
def department_stats(
    department_id: int,
    financial_year: _Year,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> ReconciliationResponse:
    return reconciliation_service.get_department_stats(db, current_user, department_id, financial_year)


@router.get(
    "/departments",
    response_model=ReconciliationResponse,
    summary="Figures for every active department",
    description="Approver view across the college.",
)
def all_departments_stats(
    financial_year: _Year,
    db: Annotated[Session, Depends(get_db)],
    _current_user: Annotated[
        User,
        Depends(require_role("admin", "office", "principal", "vice_principal", "auditor")),
    ],
) -> ReconciliationResponse:
    return reconciliation_service.get_all_departments_stats(db, financial_year)
