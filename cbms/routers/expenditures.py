"""
Expenditure and budget-override routers.

``router`` mounts under ``/api/expenditures``; ``overrides_router`` under
``/api/budget-overrides``.

Endpoints
---------
GET    /                  Paginated expenditures (department-scoped for department roles).
GET    /stats             Counts per status and approved totals.
GET    /{id}              One expenditure with its approval steps and override.
POST   /                  Book a bill against an allocation.
DELETE /{id}              Remove a pending bill.
POST   /{id}/verify       HOD (own department) or office.
POST   /{id}/approve      Office (verified only), vice principal (up to the limit), principal.
POST   /{id}/request-override  Open a budget override for a bill that no longer fits.
POST   /{id}/reject       Remarks mandatory.
POST   /{id}/resubmit     New pending copy of a rejected bill, by its submitter.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import filter_params, pagination_params
from cbms.schemas.common import FilterParams, PaginationParams
from cbms.schemas.expenditure import (
    ExpenditureActionRequest,
    ExpenditureCreate,
    ExpenditureListResponse,
    ExpenditureResponse,
    ExpenditureResubmit,
    ExpenditureStatsResponse,
    OverrideDecision,
    OverrideListResponse,
    OverrideRequest,
    OverrideResponse,
)
from cbms.services import expenditure_service, override_service
from cbms.services.auth_service import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Expenditures"])
overrides_router = APIRouter(tags=["Budget Overrides"])

_DB = Annotated[Session, Depends(get_db)]
_User = Annotated[User, Depends(get_current_user)]
_Pagination = Annotated[PaginationParams, Depends(pagination_params)]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/", response_model=ExpenditureListResponse, summary="List expenditures")
def list_expenditures(
    filters: Annotated[FilterParams, Depends(filter_params)],
    pagination: _Pagination,
    db: _DB,
    current_user: _User,
    budget_head_id: Annotated[int | None, Query(ge=1)] = None,
) -> ExpenditureListResponse:
    return expenditure_service.list_expenditures(db, current_user, filters, pagination, budget_head_id)


@router.get("/stats", response_model=ExpenditureStatsResponse, summary="Expenditure statistics")
def expenditure_stats(
    db: _DB,
    current_user: _User,
    financial_year: Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$")] = None,
    department_id: Annotated[int | None, Query(ge=1)] = None,
) -> ExpenditureStatsResponse:
    return expenditure_service.get_stats(db, current_user, financial_year, department_id)


@router.get("/{expenditure_id}", response_model=ExpenditureResponse, summary="Get an expenditure")
def get_expenditure(expenditure_id: int, db: _DB, current_user: _User) -> ExpenditureResponse:
    return expenditure_service.get_expenditure(db, expenditure_id, current_user)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=ExpenditureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an expenditure",
    description=(
        "The financial year is derived from ``bill_date``.  When the bill "
        "exceeds the remaining allocation the outcome depends on the "
        "overspend policy: ``disallow`` rejects with EXCEEDS_BUDGET, "
        "``override`` requires ``override_justification`` and opens a budget "
        "override request, ``allow`` books it anyway."
    ),
    responses={
        403: {"description": "Role may not submit for that department."},
        422: {"description": "Validation error, NO_ALLOCATION or EXCEEDS_BUDGET."},
    },
)
def create_expenditure(body: ExpenditureCreate, db: _DB, current_user: _User) -> ExpenditureResponse:
    return expenditure_service.create_expenditure(db, body, current_user)


@router.delete(
    "/{expenditure_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a pending expenditure",
)
def delete_expenditure(expenditure_id: int, db: _DB, current_user: _User) -> None:
    expenditure_service.delete_expenditure(db, expenditure_id, current_user)


@router.post("/{expenditure_id}/verify", response_model=ExpenditureResponse, summary="Verify an expenditure")
def verify_expenditure(
    expenditure_id: int, body: ExpenditureActionRequest, db: _DB, current_user: _User
) -> ExpenditureResponse:
    return expenditure_service.verify_expenditure(db, expenditure_id, current_user, body.remarks)


@router.post(
    "/{expenditure_id}/approve",
    response_model=ExpenditureResponse,
    summary="Approve an expenditure",
    description=(
        "Approval and the allocation's spent increment happen in one "
        "transaction; the remaining balance is re-checked at that moment."
    ),
    responses={
        409: {"description": "Wrong status, wrong role, or above the vice principal's limit."},
        422: {"description": "EXCEEDS_BUDGET, or the budget override is not approved."},
    },
)
def approve_expenditure(
    expenditure_id: int, body: ExpenditureActionRequest, db: _DB, current_user: _User
) -> ExpenditureResponse:
    return expenditure_service.approve_expenditure(db, expenditure_id, current_user, body.remarks)


@router.post(
    "/{expenditure_id}/request-override",
    response_model=ExpenditureResponse,
    summary="Request a budget override",
    description=(
        "For a pending or verified bill that no longer fits its allocation under "
        "the 'override' policy, including after a previous override was rejected."
    ),
    responses={422: {"description": "Wrong policy or status, bill still fits, or an override is open."}},
)
def request_override(
    expenditure_id: int, body: OverrideRequest, db: _DB, current_user: _User
) -> ExpenditureResponse:
    return expenditure_service.request_override(db, expenditure_id, body.justification, current_user)


@router.post("/{expenditure_id}/reject", response_model=ExpenditureResponse, summary="Reject an expenditure")
def reject_expenditure(
    expenditure_id: int, body: ExpenditureActionRequest, db: _DB, current_user: _User
) -> ExpenditureResponse:
    return expenditure_service.reject_expenditure(db, expenditure_id, current_user, body.remarks)


@router.post(
    "/{expenditure_id}/resubmit",
    response_model=ExpenditureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Resubmit a rejected expenditure",
    description="Creates a new pending expenditure linked to the rejected original.",
)
def resubmit_expenditure(
    expenditure_id: int, body: ExpenditureResubmit, db: _DB, current_user: _User
) -> ExpenditureResponse:
    return expenditure_service.resubmit_expenditure(db, expenditure_id, body, current_user)


# ---------------------------------------------------------------------------
# Budget overrides
# ---------------------------------------------------------------------------


@overrides_router.get("/", response_model=OverrideListResponse, summary="List budget overrides")
def list_overrides(
    pagination: _Pagination,
    db: _DB,
    current_user: _User,
    status_filter: Annotated[str | None, Query(alias="status", max_length=30)] = None,
    expenditure_id: Annotated[int | None, Query(ge=1)] = None,
) -> OverrideListResponse:
    return override_service.list_overrides(db, current_user, pagination, status_filter, expenditure_id)


@overrides_router.get("/{override_id}", response_model=OverrideResponse, summary="Get a budget override")
def get_override(override_id: int, db: _DB, current_user: _User) -> OverrideResponse:
    return override_service.get_override(db, override_id, current_user)


@overrides_router.post("/{override_id}/approve", response_model=OverrideResponse, summary="Approve an override")
def approve_override(
    override_id: int, body: OverrideDecision, db: _DB, current_user: _User
) -> OverrideResponse:
    return override_service.approve_override(db, override_id, current_user, body.approval_remarks)


@overrides_router.post("/{override_id}/reject", response_model=OverrideResponse, summary="Reject an override")
def reject_override(
    override_id: int, body: OverrideDecision, db: _DB, current_user: _User
) -> OverrideResponse:
    return override_service.reject_override(db, override_id, current_user, body.approval_remarks)
