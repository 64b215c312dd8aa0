"""
Allocation amendment service layer.

An amendment is a request to change an allocation's amount.  Requesting one
never touches the allocation; approval applies ``requested_amount`` and
marks the allocation ``amended``; rejection leaves it unchanged.  Approval
is refused when the requested amount is below the allocation's
``spent_amount`` at approval time.  Both
decisions are allowed only while the amendment is ``pending`` and each
decision timestamp is written exactly once.

``change_percent`` is ``round(change / original * 100)`` with halves rounded
towards +infinity, and 0 when the original amount is 0.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from cbms.exceptions import NotFound, PermissionDenied, ValidationError
from cbms.models.allocation import Allocation
from cbms.models.allocation_amendment import AllocationAmendment
from cbms.models.user import User
from cbms.schemas.allocation import (
    AmendmentCreate,
    AmendmentListResponse,
    AmendmentResponse,
)
from cbms.schemas.common import PaginationParams
from cbms.services import (
    allocation_history_service,
    audit_service,
    financial_year_service,
    notification_service,
    workflow,
)
from cbms.services.allocation_service import apply_allocated_amount, get_allocation_row
from cbms.services.auth_service import is_department_scoped
from cbms.utils.amounts import half_up_percent, to_decimal, to_float

logger = logging.getLogger(__name__)

# Roles allowed to request an amendment (department roles only for their own department)
_REQUESTER_ROLES = frozenset({"admin", "office", "hod", "department"})


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_response(row: AllocationAmendment) -> AmendmentResponse:
    return AmendmentResponse(
        id=row.id,
        allocation_id=row.allocation_id,
        original_amount=to_float(row.original_amount),
        requested_amount=to_float(row.requested_amount),
        change_amount=to_float(row.change_amount),
        change_percent=row.change_percent,
        change_reason=row.change_reason,
        requested_by_id=row.requested_by_id,
        status=row.status,
        approved_by_id=row.approved_by_id,
        approval_remarks=row.approval_remarks,
        approved_at=row.approved_at,
        rejected_at=row.rejected_at,
        created_at=row.created_at,
    )


def _get_or_404(db: Session, amendment_id: int) -> AllocationAmendment:
    row = db.query(AllocationAmendment).filter(AllocationAmendment.id == amendment_id).first()
    if row is None:
        raise NotFound("AllocationAmendment", amendment_id)
    return row


def list_amendments(
    db: Session,
    user: User,
    pagination: PaginationParams,
    status: str | None = None,
    allocation_id: int | None = None,
) -> AmendmentListResponse:
    q = db.query(AllocationAmendment).join(
        Allocation, AllocationAmendment.allocation_id == Allocation.id
    )
    if is_department_scoped(user):
        q = q.filter(Allocation.department_id == user.department_id)
    if status:
        q = q.filter(AllocationAmendment.status == status)
    if allocation_id is not None:
        q = q.filter(AllocationAmendment.allocation_id == allocation_id)
    total = q.count()
    rows = (
        q.order_by(AllocationAmendment.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return AmendmentListResponse(
        rows=[build_response(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_amendment(db: Session, amendment_id: int, user: User) -> AmendmentResponse:
    row = _get_or_404(db, amendment_id)
    if is_department_scoped(user) and row.allocation.department_id != user.department_id:
        raise PermissionDenied("You can only access your own department's records.")
    return build_response(row)


def request_amendment(db: Session, data: AmendmentCreate, user: User) -> AmendmentResponse:
    """Record a pending amendment with its computed change figures.

    Raises:
        PermissionDenied: Role not allowed, or another department's allocation.
        ValidationError: Frozen year, blank reason, or no change requested.
    """
    if user.role not in _REQUESTER_ROLES:
        raise PermissionDenied(f"Role '{user.role}' cannot request allocation amendments.")
    allocation = get_allocation_row(db, data.allocation_id)
    if is_department_scoped(user) and allocation.department_id != user.department_id:
        raise PermissionDenied("You can only amend your own department's allocations.")
    financial_year_service.ensure_allocations_open(db, allocation.financial_year)

    reason = (data.change_reason or "").strip()
    if not reason:
        raise ValidationError(
            "A reason for the change is required.",
            errors=[{"field": "change_reason", "message": "Required"}],
        )

    original = to_decimal(allocation.allocated_amount)
    requested = to_decimal(data.requested_amount)
    change = requested - original
    if change == 0:
        raise ValidationError(
            "Requested amount equals the current allocation.",
            errors=[{"field": "requested_amount", "message": "No change requested"}],
        )

    row = AllocationAmendment(
        allocation_id=allocation.id,
        original_amount=original,
        requested_amount=requested,
        change_amount=change,
        change_percent=half_up_percent(change, original),
        change_reason=reason,
        requested_by_id=user.id,
        status="pending",
    )
    db.add(row)
    db.flush()
    audit_service.record(
        db, "allocation_amendment.request", user, "allocation_amendment", row.id,
        details={"allocation_id": allocation.id},
        new_values={"original_amount": original, "requested_amount": requested},
    )
    notification_service.notify_roles(
        db,
        ("admin", "principal", "vice_principal"),
        "Allocation amendment requested",
        f"Change of {change:+.2f} ({row.change_percent}%) requested for allocation #{allocation.id}.",
        type="allocation",
        link=f"/allocation-amendments/{row.id}",
    )
    db.commit()
    db.refresh(row)
    logger.info(
        "request_amendment: id=%d allocation=%d %s -> %s (%d%%)",
        row.id, allocation.id, original, requested, row.change_percent,
    )
    return build_response(row)


def approve_amendment(
    db: Session, amendment_id: int, user: User, remarks: str | None = None
) -> AmendmentResponse:
    row = _get_or_404(db, amendment_id)
    workflow.check_transition(workflow.AMENDMENT, "approve", row.status, user)
    allocation = row.allocation
    financial_year_service.ensure_allocations_open(db, allocation.financial_year)

    previous_amount = to_decimal(allocation.allocated_amount)
    apply_allocated_amount(db, allocation, row.requested_amount)
    allocation.status = "amended"
    allocation.last_modified_by_id = user.id
    allocation_history_service.record_version(
        db, allocation, "amended", user,
        previous_amount=previous_amount,
        previous_remarks=allocation.remarks,
        reason=row.change_reason,
    )

    row.status = "approved"
    row.approved_by_id = user.id
    row.approval_remarks = remarks
    if row.approved_at is None:
        row.approved_at = _now()

    audit_service.record(
        db, "allocation_amendment.approve", user, "allocation_amendment", row.id,
        details={"allocation_id": allocation.id, "remarks": remarks},
        previous_values={"allocated_amount": previous_amount},
        new_values={"allocated_amount": row.requested_amount},
    )
    notification_service.notify_users(
        db, [row.requested_by_id],
        "Allocation amendment approved",
        f"Allocation #{allocation.id} is now {to_float(row.requested_amount):.2f}.",
        type="allocation",
        link=f"/allocations/{allocation.id}",
    )
    db.commit()
    db.refresh(row)
    logger.info("approve_amendment: id=%d allocation=%d", row.id, allocation.id)
    return build_response(row)


def reject_amendment(
    db: Session, amendment_id: int, user: User, remarks: str | None = None
) -> AmendmentResponse:
    row = _get_or_404(db, amendment_id)
    workflow.check_transition(workflow.AMENDMENT, "reject", row.status, user)

    row.status = "rejected"
    row.approved_by_id = user.id
    row.approval_remarks = remarks
    if row.rejected_at is None:
        row.rejected_at = _now()

    audit_service.record(
        db, "allocation_amendment.reject", user, "allocation_amendment", row.id,
        details={"allocation_id": row.allocation_id, "remarks": remarks},
    )
    notification_service.notify_users(
        db, [row.requested_by_id],
        "Allocation amendment rejected",
        f"Your amendment for allocation #{row.allocation_id} was rejected.",
        type="allocation",
        link=f"/allocation-amendments/{row.id}",
    )
    db.commit()
    db.refresh(row)
    logger.info("reject_amendment: id=%d", row.id)
    return build_response(row)
