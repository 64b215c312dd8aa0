"""
Budget proposal service layer.

Covers proposal CRUD, the workflow actions (submit, verify, approve, reject,
resubmit) and turning approved items into allocations.

Design notes
------------
- ``total_proposed_amount`` is recomputed from the items every time they
  are written (create, update, resubmit copy); nothing else assigns it.
- Every workflow action goes through ``workflow.check_transition`` before
  the row is touched, so a refused action leaves the proposal unchanged.
- Submission validates all items and reports every offending one in
  ``details.errors`` rather than stopping at the first.
- Resubmitting a rejected proposal creates a *new* draft whose items are
  field-for-field copies of the original; the original moves to
  ``revised`` and keeps its history.
- Approval does not create allocations.  The separate allocate actions do,
  one item at a time or the whole proposal at once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from cbms.exceptions import NotFound, PermissionDenied, ValidationError
from cbms.models.budget_head import BudgetHead
from cbms.models.budget_proposal import BudgetProposal, ProposalApprovalStep, ProposalItem
from cbms.models.department import Department
from cbms.models.user import User
from cbms.schemas.common import FilterParams, PaginationParams
from cbms.schemas.proposal import (
    AllocateResult,
    ApprovalStepResponse,
    ProposalCreate,
    ProposalItemIn,
    ProposalItemResponse,
    ProposalListResponse,
    ProposalResponse,
    ProposalStatsResponse,
    ProposalUpdate,
)
from cbms.services import (
    allocation_service,
    audit_service,
    financial_year_service,
    notification_service,
    workflow,
)
from cbms.services.auth_service import (
    ensure_department_access,
    is_department_scoped,
    scoped_department_id,
)
from cbms.utils import fiscal
from cbms.utils.amounts import ZERO, to_decimal, to_float
from cbms.utils.constants import OPEN_PROPOSAL_STATUSES, PROPOSAL_STATUSES

logger = logging.getLogger(__name__)

# Roles allowed to create proposals for any department
_CREATOR_ROLES = frozenset({"admin", "office"})
_EDITABLE_STATUSES = ("draft", "revised")
_DELETABLE_STATUSES = ("draft", "rejected")
_ALLOCATOR_ROLES = frozenset({"admin", "office", "principal"})


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def build_response(row: BudgetProposal) -> ProposalResponse:
    return ProposalResponse(
        id=row.id,
        financial_year=row.financial_year,
        department_id=row.department_id,
        department_name=row.department.name if row.department is not None else None,
        status=row.status,
        total_proposed_amount=to_float(row.total_proposed_amount),
        notes=row.notes,
        submitted_date=row.submitted_date,
        approved_date=row.approved_date,
        approved_by_id=row.approved_by_id,
        rejection_reason=row.rejection_reason,
        submitted_by_id=row.submitted_by_id,
        last_modified_by_id=row.last_modified_by_id,
        original_proposal_id=row.original_proposal_id,
        items=[
            ProposalItemResponse(
                id=item.id,
                position=item.position,
                budget_head_id=item.budget_head_id,
                budget_head_name=item.budget_head.name if item.budget_head is not None else None,
                proposed_amount=to_float(item.proposed_amount),
                justification=item.justification,
                previous_year_utilization=to_float(item.previous_year_utilization),
                allocation_id=item.allocation_id,
            )
            for item in row.items
        ],
        approval_steps=[
            ApprovalStepResponse(
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


def get_proposal_row(db: Session, proposal_id: int) -> BudgetProposal:
    row = db.query(BudgetProposal).filter(BudgetProposal.id == proposal_id).first()
    if row is None:
        raise NotFound("BudgetProposal", proposal_id)
    return row


def _compute_total(items: list[ProposalItem]) -> Decimal:
    return sum((to_decimal(i.proposed_amount) for i in items), ZERO)


def _set_items(row: BudgetProposal, items: list[ProposalItemIn]) -> None:
    """Replace the proposal's items and recompute its total."""
    row.items = [
        ProposalItem(
            position=position,
            budget_head_id=item.budget_head_id,
            proposed_amount=to_decimal(item.proposed_amount),
            justification=item.justification,
            previous_year_utilization=to_decimal(item.previous_year_utilization),
        )
        for position, item in enumerate(items)
    ]
    row.total_proposed_amount = _compute_total(row.items)


def _check_budget_heads(db: Session, items: list[ProposalItemIn], department_id: int) -> None:
    head_ids = {i.budget_head_id for i in items if i.budget_head_id is not None}
    if not head_ids:
        return
    heads = {h.id: h for h in db.query(BudgetHead).filter(BudgetHead.id.in_(head_ids)).all()}
    errors = []
    for position, item in enumerate(items):
        if item.budget_head_id is None:
            continue
        head = heads.get(item.budget_head_id)
        if head is None:
            errors.append({"item": position, "field": "budget_head_id", "message": "Unknown budget head"})
        elif head.department_id is not None and head.department_id != department_id:
            errors.append({
                "item": position,
                "field": "budget_head_id",
                "message": "Budget head belongs to another department",
            })
    if errors:
        raise ValidationError("One or more items reference an invalid budget head.", errors=errors)


def _check_no_open_proposal(
    db: Session, department_id: int, financial_year: str, exclude_id: int | None = None
) -> None:
    q = db.query(BudgetProposal.id).filter(
        BudgetProposal.department_id == department_id,
        BudgetProposal.financial_year == financial_year,
        BudgetProposal.status.in_(OPEN_PROPOSAL_STATUSES),
    )
    if exclude_id is not None:
        q = q.filter(BudgetProposal.id != exclude_id)
    existing = q.first()
    if existing is not None:
        raise ValidationError(
            f"Department already has an open proposal (#{existing.id}) for {financial_year}.",
            errors=[{"field": "financial_year", "message": "Open proposal exists"}],
        )


def _check_can_edit(user: User, row: BudgetProposal) -> None:
    if user.role not in _CREATOR_ROLES and not is_department_scoped(user):
        raise PermissionDenied(f"Role '{user.role}' cannot edit budget proposals.")
    ensure_department_access(user, row.department_id)


def _add_step(row: BudgetProposal, user: User, decision: str, remarks: str | None) -> None:
    row.approval_steps.append(
        ProposalApprovalStep(
            actor_id=user.id,
            role=user.role,
            decision=decision,
            remarks=remarks,
            timestamp=_now(),
        )
    )


def _commit(db: Session, row: BudgetProposal) -> ProposalResponse:
    db.commit()
    db.refresh(row)
    return build_response(row)


def validate_for_submission(row: BudgetProposal) -> list[dict]:
    """Return one error entry per incomplete item (empty list when submittable)."""
    if not row.items:
        return [{"field": "items", "message": "At least one item is required"}]
    errors: list[dict] = []
    for item in row.items:
        if item.budget_head_id is None:
            errors.append({"item": item.position, "field": "budget_head_id", "message": "Required"})
        if to_decimal(item.proposed_amount) <= 0:
            errors.append({"item": item.position, "field": "proposed_amount", "message": "Must be greater than 0"})
        if not (item.justification or "").strip():
            errors.append({"item": item.position, "field": "justification", "message": "Required"})
    return errors


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def list_proposals(
    db: Session,
    user: User,
    filters: FilterParams,
    pagination: PaginationParams,
) -> ProposalListResponse:
    q = db.query(BudgetProposal).join(Department, BudgetProposal.department_id == Department.id)
    department_id = scoped_department_id(user, filters.department_id)
    if department_id is not None:
        q = q.filter(BudgetProposal.department_id == department_id)
    if filters.financial_year:
        q = q.filter(BudgetProposal.financial_year == filters.financial_year)
    if filters.status:
        q = q.filter(BudgetProposal.status == filters.status)
    if filters.search:
        pattern = f"%{filters.search}%"
        q = q.filter(or_(Department.name.ilike(pattern), BudgetProposal.notes.ilike(pattern)))

    total = q.count()
    rows = (
        q.order_by(BudgetProposal.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    logger.debug("list_proposals: total=%d returned=%d", total, len(rows))
    return ProposalListResponse(
        rows=[build_response(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_proposal(db: Session, proposal_id: int, user: User) -> ProposalResponse:
    row = get_proposal_row(db, proposal_id)
    ensure_department_access(user, row.department_id)
    return build_response(row)


def create_proposal(db: Session, data: ProposalCreate, user: User) -> ProposalResponse:
    """Create a draft proposal.

    Department users always create for their own department; admin and
    office must name one.

    Raises:
        PermissionDenied: Role cannot create proposals, or a department user
            names another department.
        ValidationError: Bad year, closed year, unknown budget heads, or an
            open proposal already exists for the department and year.
    """
    if is_department_scoped(user):
        if data.department_id is not None and data.department_id != user.department_id:
            raise PermissionDenied("You can only create proposals for your own department.")
        department_id = user.department_id
    elif user.role in _CREATOR_ROLES:
        if data.department_id is None:
            raise ValidationError(
                "department_id is required.",
                errors=[{"field": "department_id", "message": "Required"}],
            )
        department_id = data.department_id
    else:
        raise PermissionDenied(f"Role '{user.role}' cannot create budget proposals.")

    if not fiscal.is_valid_label(data.financial_year):
        raise ValidationError(
            f"Invalid financial year '{data.financial_year}'.",
            errors=[{"field": "financial_year", "message": "Expected YYYY-YYYY"}],
        )
    if db.get(Department, department_id) is None:
        raise NotFound("Department", department_id)
    financial_year_service.ensure_not_closed(db, data.financial_year)
    _check_no_open_proposal(db, department_id, data.financial_year)
    _check_budget_heads(db, data.items, department_id)

    row = BudgetProposal(
        financial_year=data.financial_year,
        department_id=department_id,
        status="draft",
        notes=data.notes,
        submitted_by_id=user.id,
        last_modified_by_id=user.id,
    )
    _set_items(row, data.items)
    db.add(row)
    db.flush()
    audit_service.record(
        db, "proposal.create", user, "budget_proposal", row.id,
        new_values={
            "financial_year": row.financial_year,
            "department_id": department_id,
            "total_proposed_amount": row.total_proposed_amount,
            "items": len(row.items),
        },
    )
    response = _commit(db, row)
    logger.info(
        "create_proposal: id=%d dept=%d %s total=%s",
        row.id, department_id, row.financial_year, row.total_proposed_amount,
    )
    return response


def update_proposal(
    db: Session, proposal_id: int, data: ProposalUpdate, user: User
) -> ProposalResponse:
    row = get_proposal_row(db, proposal_id)
    _check_can_edit(user, row)
    if row.status not in _EDITABLE_STATUSES:
        raise ValidationError(
            f"Proposal in status '{row.status}' cannot be edited.",
            errors=[{"field": "status", "message": "Only draft or revised proposals are editable"}],
        )

    update_data = data.model_dump(exclude_unset=True)
    previous: dict = {}
    if data.items is not None:
        _check_budget_heads(db, data.items, row.department_id)
        previous["total_proposed_amount"] = row.total_proposed_amount
        _set_items(row, data.items)
    if "notes" in update_data:
        previous["notes"] = row.notes
        row.notes = update_data["notes"]
    row.last_modified_by_id = user.id

    audit_service.record(
        db, "proposal.update", user, "budget_proposal", row.id,
        previous_values=previous,
        new_values={k: getattr(row, k) for k in previous},
    )
    response = _commit(db, row)
    logger.info("update_proposal: id=%d total=%s", row.id, row.total_proposed_amount)
    return response


def delete_proposal(db: Session, proposal_id: int, user: User) -> None:
    row = get_proposal_row(db, proposal_id)
    _check_can_edit(user, row)
    if row.status not in _DELETABLE_STATUSES:
        raise ValidationError(
            f"Proposal in status '{row.status}' cannot be deleted.",
            errors=[{"field": "status", "message": "Only draft or rejected proposals can be deleted"}],
        )
    db.query(BudgetProposal).filter(BudgetProposal.original_proposal_id == row.id).update(
        {"original_proposal_id": None}, synchronize_session=False
    )
    audit_service.record(
        db, "proposal.delete", user, "budget_proposal", row.id,
        previous_values={"status": row.status, "total_proposed_amount": row.total_proposed_amount},
    )
    db.delete(row)
    db.commit()
    logger.info("delete_proposal: id=%d", proposal_id)


# ---------------------------------------------------------------------------
# Workflow actions
# ---------------------------------------------------------------------------


def submit_proposal(db: Session, proposal_id: int, user: User) -> ProposalResponse:
    row = get_proposal_row(db, proposal_id)
    transition = workflow.check_transition(
        workflow.PROPOSAL, "submit", row.status, user, row.department_id
    )
    errors = validate_for_submission(row)
    if errors:
        raise ValidationError(
            f"Proposal cannot be submitted: {len(errors)} problem(s) found.",
            errors=errors,
        )

    previous_status = row.status
    row.status = transition.to_status
    row.submitted_date = _now()
    row.last_modified_by_id = user.id
    audit_service.record(
        db, "proposal.submit", user, "budget_proposal", row.id,
        previous_values={"status": previous_status},
        new_values={"status": row.status},
    )
    notification_service.notify_roles(
        db,
        ("hod", "office"),
        "Budget proposal submitted",
        f"{row.department.name} submitted a proposal for {row.financial_year} "
        f"totalling {to_float(row.total_proposed_amount):.2f}.",
        type="proposal",
        link=f"/budget-proposals/{row.id}",
        department_id=row.department_id,
    )
    response = _commit(db, row)
    logger.info("submit_proposal: id=%d", row.id)
    return response


def verify_proposal(
    db: Session, proposal_id: int, user: User, remarks: str | None = None
) -> ProposalResponse:
    row = get_proposal_row(db, proposal_id)
    transition = workflow.check_transition(
        workflow.PROPOSAL, "verify", row.status, user, row.department_id
    )
    row.status = transition.to_status
    _add_step(row, user, "verify", remarks)
    audit_service.record(
        db, "proposal.verify", user, "budget_proposal", row.id,
        previous_values={"status": "submitted"},
        new_values={"status": row.status},
        details={"remarks": remarks},
    )
    notification_service.notify_roles(
        db,
        ("principal", "vice_principal", "office"),
        "Budget proposal verified",
        f"Proposal #{row.id} ({row.financial_year}) is ready for approval.",
        type="proposal",
        link=f"/budget-proposals/{row.id}",
    )
    response = _commit(db, row)
    logger.info("verify_proposal: id=%d by=%s", row.id, user.role)
    return response


def approve_proposal(
    db: Session, proposal_id: int, user: User, remarks: str | None = None
) -> ProposalResponse:
    row = get_proposal_row(db, proposal_id)
    transition = workflow.check_transition(
        workflow.PROPOSAL, "approve", row.status, user, row.department_id
    )
    previous_status = row.status
    row.status = transition.to_status
    row.approved_date = _now()
    row.approved_by_id = user.id
    _add_step(row, user, "approve", remarks)
    audit_service.record(
        db, "proposal.approve", user, "budget_proposal", row.id,
        previous_values={"status": previous_status},
        new_values={"status": row.status, "total_proposed_amount": row.total_proposed_amount},
        details={"remarks": remarks},
    )
    notification_service.notify_users(
        db, [row.submitted_by_id],
        "Budget proposal approved",
        f"Your proposal for {row.financial_year} was approved.",
        type="proposal",
        link=f"/budget-proposals/{row.id}",
    )
    response = _commit(db, row)
    logger.info("approve_proposal: id=%d by=%s", row.id, user.role)
    return response


def reject_proposal(
    db: Session, proposal_id: int, user: User, rejection_reason: str | None
) -> ProposalResponse:
    row = get_proposal_row(db, proposal_id)
    transition = workflow.check_transition(
        workflow.PROPOSAL, "reject", row.status, user, row.department_id
    )
    reason = (rejection_reason or "").strip()
    if not reason:
        raise ValidationError(
            "A rejection reason is required.",
            errors=[{"field": "rejection_reason", "message": "Required"}],
        )

    previous_status = row.status
    row.status = transition.to_status
    row.rejection_reason = reason
    _add_step(row, user, "reject", reason)
    audit_service.record(
        db, "proposal.reject", user, "budget_proposal", row.id,
        previous_values={"status": previous_status},
        new_values={"status": row.status},
        details={"rejection_reason": reason},
    )
    notification_service.notify_users(
        db, [row.submitted_by_id],
        "Budget proposal rejected",
        f"Your proposal for {row.financial_year} was rejected: {reason}",
        type="proposal",
        link=f"/budget-proposals/{row.id}",
    )
    response = _commit(db, row)
    logger.info("reject_proposal: id=%d by=%s", row.id, user.role)
    return response


def resubmit_proposal(
    db: Session, proposal_id: int, user: User, notes: str | None = None
) -> ProposalResponse:
    """Copy a rejected proposal into a fresh draft.

    The copy carries the original's items field for field, its notes (with
    a resubmission prefix) and ``original_proposal_id``.  The original
    becomes ``revised``.

    Returns:
        The new draft proposal.
    """
    original = get_proposal_row(db, proposal_id)
    transition = workflow.check_transition(
        workflow.PROPOSAL, "resubmit", original.status, user, original.department_id
    )
    financial_year_service.ensure_not_closed(db, original.financial_year)
    _check_no_open_proposal(db, original.department_id, original.financial_year)

    carried_notes = (notes or "").strip() or (original.notes or "")
    copy = BudgetProposal(
        financial_year=original.financial_year,
        department_id=original.department_id,
        status="draft",
        notes=f"Resubmission of rejected proposal {original.id}. {carried_notes}".strip(),
        submitted_by_id=user.id,
        last_modified_by_id=user.id,
        original_proposal_id=original.id,
    )
    copy.items = [
        ProposalItem(
            position=item.position,
            budget_head_id=item.budget_head_id,
            proposed_amount=item.proposed_amount,
            justification=item.justification,
            previous_year_utilization=item.previous_year_utilization,
        )
        for item in original.items
    ]
    copy.total_proposed_amount = _compute_total(copy.items)
    db.add(copy)

    original.status = transition.to_status
    original.last_modified_by_id = user.id
    db.flush()
    audit_service.record(
        db, "proposal.resubmit", user, "budget_proposal", original.id,
        previous_values={"status": "rejected"},
        new_values={"status": original.status},
        details={"new_proposal_id": copy.id},
    )
    response = _commit(db, copy)
    logger.info("resubmit_proposal: original=%d new=%d", original.id, copy.id)
    return response


# ---------------------------------------------------------------------------
# Allocation from approved proposals
# ---------------------------------------------------------------------------


def _check_allocatable(user: User, row: BudgetProposal) -> None:
    if user.role not in _ALLOCATOR_ROLES:
        raise PermissionDenied(f"Role '{user.role}' cannot create allocations.")
    if row.status != "approved":
        raise ValidationError(
            f"Only approved proposals can be allocated (status is '{row.status}').",
            errors=[{"field": "status", "message": "Proposal not approved"}],
        )


def allocate_item(
    db: Session, proposal_id: int, item_id: int, user: User, remarks: str | None = None
) -> int:
    """Create the allocation for one item of an approved proposal.

    Returns:
        The new allocation's ID.
    """
    row = get_proposal_row(db, proposal_id)
    _check_allocatable(user, row)
    item = next((i for i in row.items if i.id == item_id), None)
    if item is None:
        raise NotFound("ProposalItem", item_id)
    if item.allocation_id is not None:
        raise ValidationError(
            f"Item {item_id} is already allocated (allocation #{item.allocation_id}).",
            errors=[{"field": "item_id", "message": "Already allocated"}],
        )
    if item.budget_head_id is None:
        raise ValidationError(
            f"Item {item_id} has no budget head.",
            errors=[{"field": "budget_head_id", "message": "Required"}],
        )

    allocation = allocation_service.new_allocation(
        db,
        row.financial_year,
        row.department_id,
        item.budget_head_id,
        item.proposed_amount,
        user,
        remarks=remarks or item.justification,
        source_proposal_id=row.id,
    )
    item.allocation_id = allocation.id
    db.commit()
    logger.info("allocate_item: proposal=%d item=%d allocation=%d", row.id, item.id, allocation.id)
    return allocation.id


def allocate_proposal(db: Session, proposal_id: int, user: User) -> AllocateResult:
    """Allocate every not-yet-allocated item of an approved proposal.

    Items whose (department, budget head, year) allocation already exists
    are skipped and reported, as are items without a budget head.
    """
    row = get_proposal_row(db, proposal_id)
    _check_allocatable(user, row)
    financial_year_service.ensure_allocations_open(db, row.financial_year)

    created: list[int] = []
    skipped: list[dict] = []
    for item in row.items:
        if item.allocation_id is not None:
            skipped.append({"item_id": item.id, "reason": "already allocated"})
            continue
        if item.budget_head_id is None:
            skipped.append({"item_id": item.id, "reason": "no budget head"})
            continue
        existing = allocation_service.find_allocation(
            db, row.financial_year, row.department_id, item.budget_head_id
        )
        if existing is not None:
            skipped.append({
                "item_id": item.id,
                "reason": f"allocation #{existing.id} already exists for this budget head",
            })
            continue
        allocation = allocation_service.new_allocation(
            db,
            row.financial_year,
            row.department_id,
            item.budget_head_id,
            item.proposed_amount,
            user,
            remarks=item.justification,
            source_proposal_id=row.id,
        )
        item.allocation_id = allocation.id
        created.append(allocation.id)

    db.commit()
    logger.info(
        "allocate_proposal: id=%d created=%d skipped=%d", row.id, len(created), len(skipped)
    )
    return AllocateResult(proposal_id=row.id, created=created, skipped=skipped)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def get_stats(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
) -> ProposalStatsResponse:
    department_id = scoped_department_id(user, department_id)
    q = db.query(
        BudgetProposal.status,
        func.count(BudgetProposal.id),
        func.coalesce(func.sum(BudgetProposal.total_proposed_amount), 0),
    )
    if financial_year:
        q = q.filter(BudgetProposal.financial_year == financial_year)
    if department_id is not None:
        q = q.filter(BudgetProposal.department_id == department_id)

    by_status = {status: 0 for status in PROPOSAL_STATUSES}
    approved_total = ZERO
    for status, count, amount in q.group_by(BudgetProposal.status).all():
        by_status[status] = count
        if status == "approved":
            approved_total = to_decimal(amount)

    return ProposalStatsResponse(
        total=sum(by_status.values()),
        by_status=by_status,
        total_approved_amount=to_float(approved_total),
    )
