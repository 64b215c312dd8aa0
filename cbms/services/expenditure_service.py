"""
Expenditure service layer.

Bills are booked against the allocation of their department, budget head
and financial year (derived from the bill date).  Submission validates the
amount against the allocation according to the overspend policy; approval
charges the allocation.

Design notes
------------
- Overspend policy (setting ``budget_overspend_policy``):

  * ``disallow``  over-budget bills are refused with ``ExceedsBudget``.
  * ``override``  a justification is mandatory and a pending
    ``BudgetOverride`` is created; the bill cannot be approved until the
    override is approved.
    A bill that fitted at submission but is overtaken by other approvals
    fails approval with ``ExceedsBudget``; ``request_override`` then opens
    an override for it, as it does after an override was rejected.
  * ``allow``     the bill goes through and the allocation may go negative.

- Approval increments ``Allocation.spent_amount`` with a single conditional
  UPDATE in the same transaction as the status change.  Unless overspending
  is permitted for this bill, the UPDATE only matches while
  ``allocated - spent >= bill``; a zero row count means a concurrent
  approval consumed the budget, so the transaction is rolled back and
  ``ExceedsBudget`` raised.
- Rejection never touches the allocation.
- Resubmission creates a new pending record pre-filled from the rejected
  original and re-runs the budget validation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from cbms.exceptions import (
    ExceedsBudget,
    InvalidTransition,
    NoAllocation,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from cbms.models.allocation import Allocation
from cbms.models.budget_head import BudgetHead
from cbms.models.budget_override import BudgetOverride
from cbms.models.department import Department
from cbms.models.expenditure import Expenditure, ExpenditureApprovalStep
from cbms.models.user import User
from cbms.schemas.common import FilterParams, PaginationParams
from cbms.schemas.expenditure import (
    Attachment,
    ExpenditureCreate,
    ExpenditureListResponse,
    ExpenditureResponse,
    ExpenditureResubmit,
    ExpenditureStatsResponse,
    ExpenditureStepResponse,
)
from cbms.services import (
    allocation_service,
    audit_service,
    financial_year_service,
    notification_service,
    settings_service,
    workflow,
)
from cbms.services.auth_service import (
    ensure_department_access,
    is_department_scoped,
    scoped_department_id,
)
from cbms.utils import fiscal
from cbms.utils.amounts import ZERO, to_decimal, to_float
from cbms.utils.constants import EXPENDITURE_STATUSES

logger = logging.getLogger(__name__)

# Roles that may book a bill for a department they name
_BOOKING_ROLES = frozenset({"admin", "office"})


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def build_response(row: Expenditure, override: BudgetOverride | None = None) -> ExpenditureResponse:
    return ExpenditureResponse(
        id=row.id,
        department_id=row.department_id,
        department_name=row.department.name if row.department is not None else None,
        budget_head_id=row.budget_head_id,
        budget_head_name=row.budget_head.name if row.budget_head is not None else None,
        financial_year=row.financial_year,
        bill_number=row.bill_number,
        bill_date=row.bill_date,
        bill_amount=to_float(row.bill_amount),
        party_name=row.party_name,
        expense_details=row.expense_details,
        reference_budget_register_no=row.reference_budget_register_no,
        attachments=[Attachment(**a) for a in (row.attachments or [])],
        status=row.status,
        submitted_by_id=row.submitted_by_id,
        is_resubmission=row.is_resubmission,
        original_expenditure_id=row.original_expenditure_id,
        resubmission_remarks=row.resubmission_remarks,
        override_id=override.id if override is not None else None,
        override_status=override.status if override is not None else None,
        approval_steps=[
            ExpenditureStepResponse(
                id=step.id,
                actor_id=step.actor_id,
                actor_name=step.actor.name if step.actor is not None else None,
                role=step.role,
                decision=step.decision,
                remarks=step.remarks,
                timestamp=step.timestamp,
            )
            for step in row.approval_steps
        ],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def get_expenditure_row(db: Session, expenditure_id: int) -> Expenditure:
    row = db.query(Expenditure).filter(Expenditure.id == expenditure_id).first()
    if row is None:
        raise NotFound("Expenditure", expenditure_id)
    return row


def latest_override(db: Session, expenditure_id: int) -> BudgetOverride | None:
    return (
        db.query(BudgetOverride)
        .filter(BudgetOverride.expenditure_id == expenditure_id)
        .order_by(BudgetOverride.id.desc())
        .first()
    )


def _respond(db: Session, row: Expenditure) -> ExpenditureResponse:
    return build_response(row, latest_override(db, row.id))


def _resolve_department(db: Session, user: User, requested: int | None) -> int:
    if is_department_scoped(user):
        if requested is not None and requested != user.department_id:
            raise PermissionDenied("You can only book expenditures for your own department.")
        return user.department_id
    if user.role not in _BOOKING_ROLES:
        raise PermissionDenied(f"Role '{user.role}' cannot submit expenditures.")
    if requested is None:
        raise ValidationError(
            "department_id is required.",
            errors=[{"field": "department_id", "message": "Required"}],
        )
    if db.get(Department, requested) is None:
        raise NotFound("Department", requested)
    return requested


def _check_bill_number(
    db: Session,
    department_id: int,
    financial_year: str,
    bill_number: str,
    exclude_id: int | None = None,
) -> None:
    """Bill numbers are unique per department and year among live (non-rejected) bills."""
    q = db.query(Expenditure.id).filter(
        Expenditure.department_id == department_id,
        Expenditure.financial_year == financial_year,
        Expenditure.bill_number == bill_number,
        Expenditure.status != "rejected",
    )
    if exclude_id is not None:
        q = q.filter(Expenditure.id != exclude_id)
    if q.first() is not None:
        raise ValidationError(
            f"Bill number '{bill_number}' already exists for this department in {financial_year}.",
            errors=[{"field": "bill_number", "message": "Duplicate bill number"}],
        )


def _find_allocation_or_raise(
    db: Session, financial_year: str, department_id: int, budget_head_id: int
) -> Allocation:
    allocation = allocation_service.find_allocation(db, financial_year, department_id, budget_head_id)
    if allocation is None:
        raise NoAllocation(
            f"No allocation exists for this department and budget head in {financial_year}.",
            {
                "financial_year": financial_year,
                "department_id": department_id,
                "budget_head_id": budget_head_id,
            },
        )
    return allocation


def check_budget(
    db: Session,
    allocation: Allocation,
    amount: Decimal,
    justification: str | None,
) -> str | None:
    """Validate *amount* against *allocation* under the current overspend policy.

    Returns:
        ``None`` when the bill fits, otherwise the policy that lets it
        through (``"override"`` or ``"allow"``).

    Raises:
        ExceedsBudget: Over budget and the policy is ``disallow``.
        ValidationError: Over budget, policy ``override`` and no justification.
    """
    remaining = allocation.remaining_amount
    if amount <= remaining:
        return None

    policy = settings_service.get_overspend_policy(db)
    if policy == "disallow":
        raise ExceedsBudget(
            f"Bill amount {to_float(amount):.2f} exceeds the remaining allocation "
            f"of {to_float(remaining):.2f}.",
            remaining_amount=to_float(remaining),
            requested_amount=to_float(amount),
        )
    if policy == "override" and not (justification or "").strip():
        raise ValidationError(
            "Bill exceeds the remaining allocation; a justification for a budget override is required.",
            errors=[{"field": "override_justification", "message": "Required when over budget"}],
            details={"remaining_amount": to_float(remaining)},
        )
    logger.info(
        "check_budget: allocation=%d over budget by %s under policy=%s",
        allocation.id, amount - remaining, policy,
    )
    return policy


def _create_override(
    db: Session,
    row: Expenditure,
    allocation: Allocation,
    justification: str,
    user: User,
) -> BudgetOverride:
    allocated = to_decimal(allocation.allocated_amount)
    spent = to_decimal(allocation.spent_amount)
    expense = to_decimal(row.bill_amount)
    override = BudgetOverride(
        expenditure_id=row.id,
        allocation_id=allocation.id,
        allocation_amount=allocated,
        allocation_spent=spent,
        expense_amount=expense,
        overrun_amount=max(ZERO, expense - (allocated - spent)),
        justification=justification.strip(),
        requested_by_id=user.id,
        status="pending",
    )
    db.add(override)
    db.flush()
    audit_service.record(
        db, "budget_override.request", user, "budget_override", override.id,
        details={"expenditure_id": row.id, "allocation_id": allocation.id},
        new_values={"overrun_amount": override.overrun_amount},
    )
    notification_service.notify_roles(
        db,
        ("admin", "principal"),
        "Budget override requested",
        f"Bill {row.bill_number} exceeds its allocation by {to_float(override.overrun_amount):.2f}.",
        type="override",
        link=f"/budget-overrides/{override.id}",
    )
    return override


def _add_step(row: Expenditure, user: User, decision: str, remarks: str | None) -> None:
    row.approval_steps.append(
        ExpenditureApprovalStep(
            actor_id=user.id,
            role=user.role,
            decision=decision,
            remarks=remarks,
            timestamp=_now(),
        )
    )


def _book(
    db: Session,
    user: User,
    department_id: int,
    values: dict,
    override_justification: str | None,
    original: Expenditure | None = None,
) -> Expenditure:
    """Shared submission path for new bills and resubmissions."""
    head: BudgetHead | None = db.get(BudgetHead, values["budget_head_id"])
    if head is None:
        raise NotFound("BudgetHead", values["budget_head_id"])

    financial_year = fiscal.financial_year_for(values["bill_date"])
    financial_year_service.ensure_not_closed(db, financial_year)
    _check_bill_number(db, department_id, financial_year, values["bill_number"])

    allocation = _find_allocation_or_raise(db, financial_year, department_id, head.id)
    amount = to_decimal(values["bill_amount"])
    policy = check_budget(db, allocation, amount, override_justification)

    row = Expenditure(
        department_id=department_id,
        budget_head_id=head.id,
        financial_year=financial_year,
        bill_number=values["bill_number"],
        bill_date=values["bill_date"],
        bill_amount=amount,
        party_name=values["party_name"],
        expense_details=values["expense_details"],
        reference_budget_register_no=values.get("reference_budget_register_no"),
        attachments=values.get("attachments") or [],
        status="pending",
        submitted_by_id=user.id,
        is_resubmission=original is not None,
        original_expenditure_id=original.id if original is not None else None,
        resubmission_remarks=values.get("resubmission_remarks"),
    )
    db.add(row)
    db.flush()
    if policy == "override":
        _create_override(db, row, allocation, override_justification, user)

    notification_service.notify_roles(
        db,
        ("hod", "office"),
        "Expenditure submitted",
        f"Bill {row.bill_number} for {to_float(amount):.2f} awaits verification.",
        type="expenditure",
        link=f"/expenditures/{row.id}",
        department_id=department_id,
    )
    return row


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_expenditures(
    db: Session,
    user: User,
    filters: FilterParams,
    pagination: PaginationParams,
    budget_head_id: int | None = None,
) -> ExpenditureListResponse:
    q = db.query(Expenditure)
    department_id = scoped_department_id(user, filters.department_id)
    if department_id is not None:
        q = q.filter(Expenditure.department_id == department_id)
    if filters.financial_year:
        q = q.filter(Expenditure.financial_year == filters.financial_year)
    if filters.status:
        q = q.filter(Expenditure.status == filters.status)
    if budget_head_id is not None:
        q = q.filter(Expenditure.budget_head_id == budget_head_id)
    if filters.search:
        pattern = f"%{filters.search}%"
        q = q.filter(or_(
            Expenditure.bill_number.ilike(pattern),
            Expenditure.party_name.ilike(pattern),
            Expenditure.expense_details.ilike(pattern),
        ))

    total = q.count()
    rows = (
        q.order_by(Expenditure.bill_date.desc(), Expenditure.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    overrides: dict[int, BudgetOverride] = {}
    if rows:
        for o in (
            db.query(BudgetOverride)
            .filter(BudgetOverride.expenditure_id.in_([r.id for r in rows]))
            .order_by(BudgetOverride.id)
            .all()
        ):
            overrides[o.expenditure_id] = o
    logger.debug("list_expenditures: total=%d returned=%d", total, len(rows))
    return ExpenditureListResponse(
        rows=[build_response(r, overrides.get(r.id)) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_expenditure(db: Session, expenditure_id: int, user: User) -> ExpenditureResponse:
    row = get_expenditure_row(db, expenditure_id)
    ensure_department_access(user, row.department_id)
    return _respond(db, row)


def get_stats(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
) -> ExpenditureStatsResponse:
    department_id = scoped_department_id(user, department_id)
    q = db.query(
        Expenditure.status,
        func.count(Expenditure.id),
        func.coalesce(func.sum(Expenditure.bill_amount), 0),
    )
    if financial_year:
        q = q.filter(Expenditure.financial_year == financial_year)
    if department_id is not None:
        q = q.filter(Expenditure.department_id == department_id)

    by_status = {status: 0 for status in EXPENDITURE_STATUSES}
    total_amount = ZERO
    approved_amount = ZERO
    for status, count, amount in q.group_by(Expenditure.status).all():
        by_status[status] = count
        total_amount += to_decimal(amount)
        if status == "approved":
            approved_amount = to_decimal(amount)

    return ExpenditureStatsResponse(
        total=sum(by_status.values()),
        by_status=by_status,
        total_amount=to_float(total_amount),
        total_approved_amount=to_float(approved_amount),
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_expenditure(db: Session, data: ExpenditureCreate, user: User) -> ExpenditureResponse:
    """Submit a bill for approval.

    Raises:
        PermissionDenied: Role cannot submit, or another department named.
        NoAllocation: No allocation for the department, head and year.
        ExceedsBudget: Over budget under policy ``disallow``.
        ValidationError: Duplicate bill number, closed year, or missing
            override justification.
    """
    department_id = _resolve_department(db, user, data.department_id)
    values = data.model_dump(exclude={"department_id", "override_justification"})
    row = _book(db, user, department_id, values, data.override_justification)
    audit_service.record(
        db, "expenditure.create", user, "expenditure", row.id,
        new_values={
            "financial_year": row.financial_year,
            "department_id": row.department_id,
            "budget_head_id": row.budget_head_id,
            "bill_number": row.bill_number,
            "bill_amount": row.bill_amount,
        },
    )
    db.commit()
    db.refresh(row)
    logger.info(
        "create_expenditure: id=%d dept=%d head=%d %s amount=%s",
        row.id, row.department_id, row.budget_head_id, row.financial_year, row.bill_amount,
    )
    return _respond(db, row)


def delete_expenditure(db: Session, expenditure_id: int, user: User) -> None:
    """Withdraw a pending bill. Only its submitter or an admin may do so."""
    row = get_expenditure_row(db, expenditure_id)
    if user.role != "admin" and row.submitted_by_id != user.id:
        raise PermissionDenied("Only the submitter or an admin can withdraw an expenditure.")
    if row.status != "pending":
        raise ValidationError(
            f"Expenditure in status '{row.status}' cannot be deleted.",
            errors=[{"field": "status", "message": "Only pending expenditures can be deleted"}],
        )
    db.query(BudgetOverride).filter(BudgetOverride.expenditure_id == row.id).delete(
        synchronize_session=False
    )
    audit_service.record(
        db, "expenditure.delete", user, "expenditure", row.id,
        previous_values={"bill_number": row.bill_number, "bill_amount": row.bill_amount},
    )
    db.delete(row)
    db.commit()
    logger.info("delete_expenditure: id=%d", expenditure_id)


def verify_expenditure(
    db: Session, expenditure_id: int, user: User, remarks: str | None = None
) -> ExpenditureResponse:
    row = get_expenditure_row(db, expenditure_id)
    transition = workflow.check_transition(
        workflow.EXPENDITURE, "verify", row.status, user, row.department_id
    )
    row.status = transition.to_status
    _add_step(row, user, "verify", remarks)
    audit_service.record(
        db, "expenditure.verify", user, "expenditure", row.id,
        previous_values={"status": "pending"},
        new_values={"status": row.status},
        details={"remarks": remarks},
    )
    notification_service.notify_roles(
        db,
        ("office", "vice_principal", "principal"),
        "Expenditure verified",
        f"Bill {row.bill_number} is ready for approval.",
        type="expenditure",
        link=f"/expenditures/{row.id}",
    )
    db.commit()
    db.refresh(row)
    logger.info("verify_expenditure: id=%d by=%s", row.id, user.role)
    return _respond(db, row)


def approve_expenditure(
    db: Session, expenditure_id: int, user: User, remarks: str | None = None
) -> ExpenditureResponse:
    """Approve a bill and charge it to its allocation in one transaction.

    Raises:
        InvalidTransition: Wrong status or role, or a vice principal above
            the approval limit.
        ValidationError: A budget override exists and is not approved.
        NoAllocation: The allocation has disappeared since submission.
        ExceedsBudget: The remaining budget no longer covers the bill.
    """
    row = get_expenditure_row(db, expenditure_id)
    transition = workflow.check_transition(
        workflow.EXPENDITURE, "approve", row.status, user, row.department_id
    )
    amount = to_decimal(row.bill_amount)

    if user.role == "vice_principal":
        limit = settings_service.get_vice_principal_limit(db)
        if amount > limit:
            raise InvalidTransition(
                f"Vice principal can approve expenditures up to {to_float(limit):.2f} only.",
                action="approve", current_status=row.status, role=user.role,
            )

    override = latest_override(db, row.id)
    if override is not None and override.status != "approved":
        raise ValidationError(
            f"Budget override #{override.id} is {override.status}; it must be approved first.",
            errors=[{"field": "override", "message": f"Override is {override.status}"}],
        )

    allocation = _find_allocation_or_raise(db, row.financial_year, row.department_id, row.budget_head_id)
    threshold = settings_service.get_exhaustion_threshold(db)
    utilization_before = allocation.utilization_percent
    overspend_permitted = (
        override is not None or settings_service.get_overspend_policy(db) == "allow"
    )

    stmt = update(Allocation).where(Allocation.id == allocation.id)
    if not overspend_permitted:
        stmt = stmt.where(Allocation.allocated_amount - Allocation.spent_amount >= amount)
    result = db.execute(
        stmt.values(spent_amount=Allocation.spent_amount + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(allocation)
        remaining = allocation.remaining_amount
        raise ExceedsBudget(
            f"Bill amount {to_float(amount):.2f} exceeds the remaining allocation "
            f"of {to_float(remaining):.2f}.",
            remaining_amount=to_float(remaining),
            requested_amount=to_float(amount),
        )

    previous_status = row.status
    row.status = transition.to_status
    _add_step(row, user, "approve", remarks)
    audit_service.record(
        db, "expenditure.approve", user, "expenditure", row.id,
        previous_values={"status": previous_status},
        new_values={"status": row.status},
        details={"allocation_id": allocation.id, "amount": amount, "remarks": remarks},
    )
    notification_service.notify_users(
        db, [row.submitted_by_id],
        "Expenditure approved",
        f"Bill {row.bill_number} for {to_float(amount):.2f} was approved.",
        type="expenditure",
        link=f"/expenditures/{row.id}",
    )
    db.flush()
    db.refresh(allocation)
    utilization_after = allocation.utilization_percent
    if utilization_before < threshold <= utilization_after:
        notification_service.notify_roles(
            db,
            ("hod", "office", "admin"),
            "Budget nearly exhausted",
            f"Allocation #{allocation.id} is {utilization_after:.2f}% utilised.",
            type="budget_alert",
            link=f"/allocations/{allocation.id}",
            department_id=allocation.department_id,
        )
    db.commit()
    db.refresh(row)
    logger.info(
        "approve_expenditure: id=%d allocation=%d spent=%s by=%s",
        row.id, allocation.id, allocation.spent_amount, user.role,
    )
    return _respond(db, row)


def request_override(
    db: Session, expenditure_id: int, justification: str, user: User
) -> ExpenditureResponse:
    """Ask for a budget override on a bill that no longer fits its allocation.

    Covers bills that fitted at submission but were overtaken by other
    approvals, and bills whose previous override was rejected.  Only valid
    under the ``override`` policy, while the bill is pending or verified.

    Raises:
        ValidationError: Wrong policy or status, blank justification, an
            override already pending or approved, or the bill still fits.
        PermissionDenied: Another department's bill for a department user,
            or a role that cannot book expenditures.
    """
    row = get_expenditure_row(db, expenditure_id)
    if is_department_scoped(user):
        ensure_department_access(user, row.department_id)
    elif user.role not in _BOOKING_ROLES and user.id != row.submitted_by_id:
        raise PermissionDenied(f"Role '{user.role}' cannot request budget overrides.")

    if settings_service.get_overspend_policy(db) != "override":
        raise ValidationError(
            "Budget overrides can only be requested under the 'override' overspend policy.",
            errors=[{"field": "policy", "message": "Policy is not 'override'"}],
        )
    if row.status not in ("pending", "verified"):
        raise ValidationError(
            f"Expenditure is {row.status}; overrides are requested for pending or verified bills.",
            errors=[{"field": "status", "message": f"Status is {row.status}"}],
        )
    justification = (justification or "").strip()
    if not justification:
        raise ValidationError(
            "A justification for the budget override is required.",
            errors=[{"field": "justification", "message": "Required"}],
        )
    existing = latest_override(db, row.id)
    if existing is not None and existing.status in ("pending", "approved"):
        raise ValidationError(
            f"Budget override #{existing.id} is already {existing.status}.",
            errors=[{"field": "override", "message": f"Override is {existing.status}"}],
        )

    allocation = _find_allocation_or_raise(db, row.financial_year, row.department_id, row.budget_head_id)
    amount = to_decimal(row.bill_amount)
    remaining = allocation.remaining_amount
    if amount <= remaining:
        raise ValidationError(
            "The bill fits the remaining allocation; no override is needed.",
            errors=[{"field": "override", "message": "Within budget"}],
            details={"remaining_amount": to_float(remaining), "requested_amount": to_float(amount)},
        )

    override = _create_override(db, row, allocation, justification, user)
    db.commit()
    db.refresh(row)
    logger.info(
        "request_override: expenditure=%d override=%d overrun=%s",
        row.id, override.id, override.overrun_amount,
    )
    return _respond(db, row)


def reject_expenditure(
    db: Session, expenditure_id: int, user: User, remarks: str | None
) -> ExpenditureResponse:
    row = get_expenditure_row(db, expenditure_id)
    transition = workflow.check_transition(
        workflow.EXPENDITURE, "reject", row.status, user, row.department_id
    )
    reason = (remarks or "").strip()
    if not reason:
        raise ValidationError(
            "Remarks are required to reject an expenditure.",
            errors=[{"field": "remarks", "message": "Required"}],
        )
    previous_status = row.status
    row.status = transition.to_status
    _add_step(row, user, "reject", reason)
    audit_service.record(
        db, "expenditure.reject", user, "expenditure", row.id,
        previous_values={"status": previous_status},
        new_values={"status": row.status},
        details={"remarks": reason},
    )
    notification_service.notify_users(
        db, [row.submitted_by_id],
        "Expenditure rejected",
        f"Bill {row.bill_number} was rejected: {reason}",
        type="expenditure",
        link=f"/expenditures/{row.id}",
    )
    db.commit()
    db.refresh(row)
    logger.info("reject_expenditure: id=%d by=%s", row.id, user.role)
    return _respond(db, row)


def resubmit_expenditure(
    db: Session, expenditure_id: int, data: ExpenditureResubmit, user: User
) -> ExpenditureResponse:
    """Create a new pending expenditure from a rejected one.

    Fields omitted in *data* are copied from the original.  Only the
    original submitter may resubmit, and only once per rejected record.
    """
    original = get_expenditure_row(db, expenditure_id)
    workflow.check_transition(
        workflow.EXPENDITURE, "resubmit", original.status, user, original.department_id
    )
    if original.submitted_by_id != user.id:
        raise PermissionDenied("Only the original submitter can resubmit this expenditure.")
    remarks = (data.resubmission_remarks or "").strip()
    if not remarks:
        raise ValidationError(
            "Resubmission remarks describing what changed are required.",
            errors=[{"field": "resubmission_remarks", "message": "Required"}],
        )
    already = (
        db.query(Expenditure.id)
        .filter(Expenditure.original_expenditure_id == original.id)
        .first()
    )
    if already is not None:
        raise ValidationError(
            f"Expenditure {original.id} was already resubmitted as #{already.id}.",
            errors=[{"field": "id", "message": "Already resubmitted"}],
        )

    overrides = data.model_dump(
        exclude_unset=True, exclude={"resubmission_remarks", "override_justification"}
    )
    values = {
        "budget_head_id": original.budget_head_id,
        "bill_number": original.bill_number,
        "bill_date": original.bill_date,
        "bill_amount": original.bill_amount,
        "party_name": original.party_name,
        "expense_details": original.expense_details,
        "reference_budget_register_no": original.reference_budget_register_no,
        "attachments": list(original.attachments or []),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    values["resubmission_remarks"] = remarks

    row = _book(db, user, original.department_id, values, data.override_justification, original=original)
    audit_service.record(
        db, "expenditure.resubmit", user, "expenditure", row.id,
        details={"original_expenditure_id": original.id, "remarks": remarks},
        new_values={"bill_amount": row.bill_amount},
    )
    db.commit()
    db.refresh(row)
    logger.info("resubmit_expenditure: original=%d new=%d", original.id, row.id)
    return _respond(db, row)
