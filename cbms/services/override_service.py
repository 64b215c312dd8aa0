"""
Budget override service layer.

Overrides are created by ``expenditure_service`` when an over-budget bill
is submitted under the ``override`` policy, or later through
``request_override`` when a pending bill stops fitting its allocation.
This module lists them and records the admin/principal decision.
Decisions are allowed only while the override is ``pending``;
``approved_at`` / ``rejected_at`` are written once.  Rejecting an
override leaves the expenditure pending, where it can still be rejected
through the normal workflow or get a fresh override request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from cbms.exceptions import NotFound
from cbms.models.budget_override import BudgetOverride
from cbms.models.expenditure import Expenditure
from cbms.models.user import User
from cbms.schemas.common import PaginationParams
from cbms.schemas.expenditure import OverrideListResponse, OverrideResponse
from cbms.services import audit_service, notification_service, workflow
from cbms.services.auth_service import ensure_department_access, is_department_scoped
from cbms.utils.amounts import to_float

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_response(row: BudgetOverride) -> OverrideResponse:
    return OverrideResponse(
        id=row.id,
        expenditure_id=row.expenditure_id,
        allocation_id=row.allocation_id,
        allocation_amount=to_float(row.allocation_amount),
        allocation_spent=to_float(row.allocation_spent),
        expense_amount=to_float(row.expense_amount),
        overrun_amount=to_float(row.overrun_amount),
        justification=row.justification,
        requested_by_id=row.requested_by_id,
        status=row.status,
        approved_by_id=row.approved_by_id,
        approval_remarks=row.approval_remarks,
        approved_at=row.approved_at,
        rejected_at=row.rejected_at,
        created_at=row.created_at,
    )


def _get_or_404(db: Session, override_id: int) -> BudgetOverride:
    row = db.query(BudgetOverride).filter(BudgetOverride.id == override_id).first()
    if row is None:
        raise NotFound("BudgetOverride", override_id)
    return row


def list_overrides(
    db: Session,
    user: User,
    pagination: PaginationParams,
    status: str | None = None,
    expenditure_id: int | None = None,
) -> OverrideListResponse:
    q = db.query(BudgetOverride).join(Expenditure, BudgetOverride.expenditure_id == Expenditure.id)
    if is_department_scoped(user):
        q = q.filter(Expenditure.department_id == user.department_id)
    if status:
        q = q.filter(BudgetOverride.status == status)
    if expenditure_id is not None:
        q = q.filter(BudgetOverride.expenditure_id == expenditure_id)
    total = q.count()
    rows = (
        q.order_by(BudgetOverride.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return OverrideListResponse(
        rows=[build_response(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_override(db: Session, override_id: int, user: User) -> OverrideResponse:
    row = _get_or_404(db, override_id)
    ensure_department_access(user, row.expenditure.department_id)
    return build_response(row)


def _decide(
    db: Session, override_id: int, user: User, action: str, remarks: str | None
) -> OverrideResponse:
    row = _get_or_404(db, override_id)
    transition = workflow.check_transition(workflow.OVERRIDE, action, row.status, user)

    row.status = transition.to_status
    row.approved_by_id = user.id
    row.approval_remarks = remarks
    if action == "approve" and row.approved_at is None:
        row.approved_at = _now()
    if action == "reject" and row.rejected_at is None:
        row.rejected_at = _now()

    audit_service.record(
        db, f"budget_override.{action}", user, "budget_override", row.id,
        previous_values={"status": "pending"},
        new_values={"status": row.status},
        details={"expenditure_id": row.expenditure_id, "remarks": remarks},
    )
    notification_service.notify_users(
        db, [row.requested_by_id],
        f"Budget override {row.status}",
        f"The override for expenditure #{row.expenditure_id} "
        f"({to_float(row.overrun_amount):.2f} over budget) was {row.status}.",
        type="override",
        link=f"/expenditures/{row.expenditure_id}",
    )
    db.commit()
    db.refresh(row)
    logger.info("%s_override: id=%d by=%s", action, row.id, user.role)
    return build_response(row)


def approve_override(
    db: Session, override_id: int, user: User, remarks: str | None = None
) -> OverrideResponse:
    return _decide(db, override_id, user, "approve", remarks)


def reject_override(
    db: Session, override_id: int, user: User, remarks: str | None = None
) -> OverrideResponse:
    return _decide(db, override_id, user, "reject", remarks)
