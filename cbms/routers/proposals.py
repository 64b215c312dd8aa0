"""
Budget proposal router.

Mounts under ``/api/budget-proposals`` (prefix set in ``main.py``).

Status changes go through the canonical transition table; a request from
the wrong status or by the wrong role answers 409 INVALID_TRANSITION and
leaves the proposal untouched.

Endpoints
---------
GET    /                           Paginated proposals.
GET    /stats                      Counts per status and approved total.
GET    /{id}                       One proposal with items and approval steps.
GET    /{id}/stats                 Reconciliation figures for every item (advisory).
POST   /                           Create a draft.
PUT    /{id}                       Edit a draft or revised proposal.
DELETE /{id}                       Delete a draft or rejected proposal.
POST   /{id}/submit | verify | approve | reject | resubmit
POST   /{id}/items/{item_id}/allocate   Allocation from one approved item.
POST   /{id}/allocate                   Allocations for every unallocated item.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import filter_params, pagination_params
from cbms.schemas.allocation import AllocationResponse
from cbms.schemas.common import FilterParams, PaginationParams
from cbms.schemas.proposal import (
    AllocateResult,
    ProposalActionRequest,
    ProposalCreate,
    ProposalListResponse,
    ProposalRejectRequest,
    ProposalResponse,
    ProposalResubmitRequest,
    ProposalStatsResponse,
    ProposalUpdate,
)
from cbms.schemas.reconciliation import ProposalReconciliationResponse
from cbms.services import allocation_service, proposal_service, reconciliation_service
from cbms.services.auth_service import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Budget Proposals"])

_DB = Annotated[Session, Depends(get_db)]
_User = Annotated[User, Depends(get_current_user)]

_TRANSITION_RESPONSES = {
    409: {"description": "Wrong status or role not allowed for this action."},
}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/", response_model=ProposalListResponse, summary="List budget proposals")
def list_proposals(
    filters: Annotated[FilterParams, Depends(filter_params)],
    pagination: Annotated[PaginationParams, Depends(pagination_params)],
    db: _DB,
    current_user: _User,
) -> ProposalListResponse:
    return proposal_service.list_proposals(db, current_user, filters, pagination)


@router.get("/stats", response_model=ProposalStatsResponse, summary="Proposal statistics")
def proposal_stats(
    db: _DB,
    current_user: _User,
    financial_year: Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$")] = None,
    department_id: Annotated[int | None, Query(ge=1)] = None,
) -> ProposalStatsResponse:
    return proposal_service.get_stats(db, current_user, financial_year, department_id)


@router.get("/{proposal_id}", response_model=ProposalResponse, summary="Get a budget proposal")
def get_proposal(proposal_id: int, db: _DB, current_user: _User) -> ProposalResponse:
    return proposal_service.get_proposal(db, proposal_id, current_user)


@router.get(
    "/{proposal_id}/stats",
    response_model=ProposalReconciliationResponse,
    summary="Reconciliation figures for a proposal",
    description=(
        "Previous-year allocated/spent/balance and current-year spend for the "
        "department and for each item's budget head.  Re-request after "
        "``refresh_after_seconds``."
    ),
)
def proposal_reconciliation(
    proposal_id: int, db: _DB, current_user: _User
) -> ProposalReconciliationResponse:
    return reconciliation_service.get_proposal_stats(db, proposal_id, current_user)


# ---------------------------------------------------------------------------
# Draft editing
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft proposal",
    responses={
        403: {"description": "Role may not create proposals for that department."},
        422: {"description": "Invalid items, unknown budget head, or an open proposal already exists."},
    },
)
def create_proposal(body: ProposalCreate, db: _DB, current_user: _User) -> ProposalResponse:
    return proposal_service.create_proposal(db, body, current_user)


@router.put("/{proposal_id}", response_model=ProposalResponse, summary="Edit a draft proposal")
def update_proposal(
    proposal_id: int, body: ProposalUpdate, db: _DB, current_user: _User
) -> ProposalResponse:
    return proposal_service.update_proposal(db, proposal_id, body, current_user)


@router.delete("/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a proposal")
def delete_proposal(proposal_id: int, db: _DB, current_user: _User) -> None:
    proposal_service.delete_proposal(db, proposal_id, current_user)


# ---------------------------------------------------------------------------
# Workflow actions
# ---------------------------------------------------------------------------


@router.post(
    "/{proposal_id}/submit",
    response_model=ProposalResponse,
    summary="Submit a proposal",
    responses={
        **_TRANSITION_RESPONSES,
        422: {"description": "Empty proposal or incomplete items; ``details.errors`` lists each one."},
    },
)
def submit_proposal(proposal_id: int, db: _DB, current_user: _User) -> ProposalResponse:
    return proposal_service.submit_proposal(db, proposal_id, current_user)


@router.post(
    "/{proposal_id}/verify",
    response_model=ProposalResponse,
    summary="Verify a proposal",
    responses=_TRANSITION_RESPONSES,
)
def verify_proposal(
    proposal_id: int, body: ProposalActionRequest, db: _DB, current_user: _User
) -> ProposalResponse:
    return proposal_service.verify_proposal(db, proposal_id, current_user, body.remarks)


@router.post(
    "/{proposal_id}/approve",
    response_model=ProposalResponse,
    summary="Approve a proposal",
    responses=_TRANSITION_RESPONSES,
)
def approve_proposal(
    proposal_id: int, body: ProposalActionRequest, db: _DB, current_user: _User
) -> ProposalResponse:
    return proposal_service.approve_proposal(db, proposal_id, current_user, body.remarks)


@router.post(
    "/{proposal_id}/reject",
    response_model=ProposalResponse,
    summary="Reject a proposal",
    responses={**_TRANSITION_RESPONSES, 422: {"description": "Rejection reason missing."}},
)
def reject_proposal(
    proposal_id: int, body: ProposalRejectRequest, db: _DB, current_user: _User
) -> ProposalResponse:
    return proposal_service.reject_proposal(db, proposal_id, current_user, body.rejection_reason)


@router.post(
    "/{proposal_id}/resubmit",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Resubmit a rejected proposal",
    description="Returns the new draft; the rejected original becomes ``revised``.",
    responses=_TRANSITION_RESPONSES,
)
def resubmit_proposal(
    proposal_id: int, body: ProposalResubmitRequest, db: _DB, current_user: _User
) -> ProposalResponse:
    return proposal_service.resubmit_proposal(db, proposal_id, current_user, body.notes)


# ---------------------------------------------------------------------------
# Allocation from approved proposals
# ---------------------------------------------------------------------------


@router.post(
    "/{proposal_id}/items/{item_id}/allocate",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Allocate one approved item",
)
def allocate_item(
    proposal_id: int,
    item_id: int,
    body: ProposalActionRequest,
    db: _DB,
    current_user: _User,
) -> AllocationResponse:
    allocation_id = proposal_service.allocate_item(db, proposal_id, item_id, current_user, body.remarks)
    return allocation_service.get_allocation(db, allocation_id, current_user)


@router.post(
    "/{proposal_id}/allocate",
    response_model=AllocateResult,
    summary="Allocate every unallocated item",
    description="Items whose (department, head, year) allocation already exists are skipped and reported.",
)
def allocate_proposal(proposal_id: int, db: _DB, current_user: _User) -> AllocateResult:
    return proposal_service.allocate_proposal(db, proposal_id, current_user)
