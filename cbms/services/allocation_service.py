"""
Allocation service layer.

All database access for the ``/api/allocations`` endpoints lives here, plus
the helpers other services use to find and create allocations.

Design notes
------------
- ``(financial_year, department_id, budget_head_id)`` is unique; creation
  checks it up front so the caller gets a ``ValidationError`` instead of an
  ``IntegrityError`` from the database.
- Department, budget head and year are immutable after creation; only the
  amount and remarks can be edited.  The amount can never drop below
  ``spent_amount``, whether by edit, amendment or rollback.
- Every change to amount or remarks appends a numbered version to
  ``allocation_history``; any version can be rolled back to.
- Bulk creation keeps the rows that pass and reports the rest per row;
  it fails as a whole only when no row could be created.
- ``spent_amount`` is written only by ``expenditure_service.approve_expenditure``
  through a conditional UPDATE; nothing here touches it.
- Locked or closed financial years freeze allocations.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from cbms.exceptions import NotFound, ValidationError
from cbms.models.allocation import Allocation
from cbms.models.allocation_amendment import AllocationAmendment
from cbms.models.budget_head import BudgetHead
from cbms.models.budget_proposal import ProposalItem
from cbms.models.department import Department
from cbms.models.expenditure import Expenditure
from cbms.models.user import User
from cbms.schemas.allocation import (
    AllocationBulkCreate,
    AllocationBulkResponse,
    AllocationCreate,
    AllocationDepartmentStats,
    AllocationHistoryListResponse,
    AllocationHistoryResponse,
    AllocationListResponse,
    AllocationResponse,
    AllocationStatsResponse,
    AllocationUpdate,
    BulkRowError,
    RollbackResponse,
)
from cbms.schemas.common import FilterParams, PaginationParams
from cbms.services import allocation_history_service, audit_service, financial_year_service
from cbms.services.auth_service import ensure_department_access, scoped_department_id
from cbms.utils import fiscal
from cbms.utils.amounts import safe_pct, to_decimal, to_float

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def build_response(row: Allocation) -> AllocationResponse:
    return AllocationResponse(
        id=row.id,
        financial_year=row.financial_year,
        department_id=row.department_id,
        department_name=row.department.name if row.department is not None else None,
        budget_head_id=row.budget_head_id,
        budget_head_name=row.budget_head.name if row.budget_head is not None else None,
        allocated_amount=to_float(row.allocated_amount),
        spent_amount=to_float(row.spent_amount),
        remaining_amount=to_float(row.remaining_amount),
        available_amount=to_float(row.available_amount),
        utilization_percent=row.utilization_percent,
        status=row.status,
        remarks=row.remarks,
        source_proposal_id=row.source_proposal_id,
        created_by_id=row.created_by_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def get_allocation_row(db: Session, allocation_id: int) -> Allocation:
    row = db.query(Allocation).filter(Allocation.id == allocation_id).first()
    if row is None:
        raise NotFound("Allocation", allocation_id)
    return row


def find_allocation(
    db: Session, financial_year: str, department_id: int, budget_head_id: int
) -> Allocation | None:
    return (
        db.query(Allocation)
        .filter(
            Allocation.financial_year == financial_year,
            Allocation.department_id == department_id,
            Allocation.budget_head_id == budget_head_id,
        )
        .first()
    )


def ensure_covers_spent(row: Allocation, new_amount) -> None:
    """Refuse an allocated amount below what has already been spent."""
    spent = to_decimal(row.spent_amount)
    if to_decimal(new_amount) < spent:
        raise ValidationError(
            f"Allocated amount cannot be less than the amount already spent ({to_float(spent):.2f}).",
            errors=[{"field": "allocated_amount", "message": "Below spent amount"}],
            details={
                "spent_amount": to_float(spent),
                "requested_amount": to_float(new_amount),
            },
        )


def apply_allocated_amount(db: Session, row: Allocation, new_amount) -> None:
    """Write a new ``allocated_amount`` unless it falls below ``spent_amount``.

    The write is a conditional UPDATE on ``spent_amount <= new_amount`` so a
    bill approved between the check and the commit cannot leave the
    allocation under its spending.  *row* is refreshed afterwards.
    """
    new_amount = to_decimal(new_amount)
    ensure_covers_spent(row, new_amount)
    result = db.execute(
        update(Allocation)
        .where(Allocation.id == row.id, Allocation.spent_amount <= new_amount)
        .values(allocated_amount=new_amount)
        .execution_options(synchronize_session=False)
    )
    db.refresh(row)
    if result.rowcount == 0:
        ensure_covers_spent(row, new_amount)
        raise NotFound("Allocation", row.id)


def new_allocation(
    db: Session,
    financial_year: str,
    department_id: int,
    budget_head_id: int,
    amount,
    user: User,
    remarks: str | None = None,
    source_proposal_id: int | None = None,
) -> Allocation:
    """Validate and stage a new allocation in the session (no commit).

    Raises:
        ValidationError: Bad year label, frozen year, inactive or foreign
            budget head, or an allocation already exists for the triple.
        NotFound: Unknown department or budget head.
    """
    if not fiscal.is_valid_label(financial_year):
        raise ValidationError(
            f"Invalid financial year '{financial_year}'.",
            errors=[{"field": "financial_year", "message": "Expected YYYY-YYYY"}],
        )
    financial_year_service.ensure_allocations_open(db, financial_year)

    if db.get(Department, department_id) is None:
        raise NotFound("Department", department_id)
    head: BudgetHead | None = db.get(BudgetHead, budget_head_id)
    if head is None:
        raise NotFound("BudgetHead", budget_head_id)
    if not head.is_active:
        raise ValidationError(
            f"Budget head '{head.name}' is inactive.",
            errors=[{"field": "budget_head_id", "message": "Inactive budget head"}],
        )
    if head.department_id is not None and head.department_id != department_id:
        raise ValidationError(
            f"Budget head '{head.name}' belongs to another department.",
            errors=[{"field": "budget_head_id", "message": "Head not available to this department"}],
        )

    if find_allocation(db, financial_year, department_id, budget_head_id) is not None:
        raise ValidationError(
            f"An allocation already exists for this department and budget head in {financial_year}.",
            errors=[{"field": "budget_head_id", "message": "Duplicate allocation"}],
        )

    row = Allocation(
        financial_year=financial_year,
        department_id=department_id,
        budget_head_id=budget_head_id,
        allocated_amount=to_decimal(amount),
        spent_amount=to_decimal(0),
        status="active",
        remarks=remarks,
        source_proposal_id=source_proposal_id,
        created_by_id=user.id,
    )
    db.add(row)
    db.flush()
    audit_service.record(
        db, "allocation.create", user, "allocation", row.id,
        details={"source_proposal_id": source_proposal_id},
        new_values={
            "financial_year": financial_year,
            "department_id": department_id,
            "budget_head_id": budget_head_id,
            "allocated_amount": row.allocated_amount,
        },
    )
    allocation_history_service.record_version(db, row, "created", user, reason="Initial allocation")
    return row


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------


def list_allocations(
    db: Session,
    user: User,
    filters: FilterParams,
    pagination: PaginationParams,
    budget_head_id: int | None = None,
) -> AllocationListResponse:
    q = (
        db.query(Allocation)
        .join(Department, Allocation.department_id == Department.id)
        .join(BudgetHead, Allocation.budget_head_id == BudgetHead.id)
    )
    department_id = scoped_department_id(user, filters.department_id)
    if department_id is not None:
        q = q.filter(Allocation.department_id == department_id)
    if filters.financial_year:
        q = q.filter(Allocation.financial_year == filters.financial_year)
    if filters.status:
        q = q.filter(Allocation.status == filters.status)
    if budget_head_id is not None:
        q = q.filter(Allocation.budget_head_id == budget_head_id)
    if filters.search:
        pattern = f"%{filters.search}%"
        q = q.filter(or_(
            Department.name.ilike(pattern),
            BudgetHead.name.ilike(pattern),
            Allocation.remarks.ilike(pattern),
        ))

    total = q.count()
    rows = (
        q.order_by(Allocation.financial_year.desc(), Department.name, BudgetHead.name)
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    logger.debug("list_allocations: total=%d returned=%d", total, len(rows))
    return AllocationListResponse(
        rows=[build_response(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_allocation(db: Session, allocation_id: int, user: User) -> AllocationResponse:
    row = get_allocation_row(db, allocation_id)
    ensure_department_access(user, row.department_id)
    return build_response(row)


def create_allocation(db: Session, data: AllocationCreate, user: User) -> AllocationResponse:
    row = new_allocation(
        db,
        data.financial_year,
        data.department_id,
        data.budget_head_id,
        data.allocated_amount,
        user,
        remarks=data.remarks,
    )
    db.commit()
    db.refresh(row)
    logger.info(
        "create_allocation: id=%d %s dept=%d head=%d amount=%s",
        row.id, row.financial_year, row.department_id, row.budget_head_id, row.allocated_amount,
    )
    return build_response(row)


def update_allocation(
    db: Session, allocation_id: int, data: AllocationUpdate, user: User
) -> AllocationResponse:
    """Change an allocation's amount and/or remarks.

    Raises:
        ValidationError: The year is locked or closed, or the new amount is
            below ``spent_amount`` (``details.spent_amount`` carries the figure).
    """
    row = get_allocation_row(db, allocation_id)
    financial_year_service.ensure_allocations_open(db, row.financial_year)

    update_data = data.model_dump(exclude_unset=True)
    previous_amount = to_decimal(row.allocated_amount)
    previous_remarks = row.remarks
    previous: dict = {}
    if update_data.get("allocated_amount") is not None:
        new_amount = to_decimal(update_data["allocated_amount"])
        if new_amount != previous_amount:
            previous["allocated_amount"] = previous_amount
            apply_allocated_amount(db, row, new_amount)
    if "remarks" in update_data and update_data["remarks"] != row.remarks:
        previous["remarks"] = previous_remarks
        row.remarks = update_data["remarks"]
    row.last_modified_by_id = user.id

    if previous:
        allocation_history_service.record_version(
            db, row, "updated", user,
            previous_amount=previous_amount,
            previous_remarks=previous_remarks,
        )
    audit_service.record(
        db, "allocation.update", user, "allocation", row.id,
        previous_values=previous,
        new_values={k: getattr(row, k) for k in previous},
    )
    db.commit()
    db.refresh(row)
    logger.info("update_allocation: id=%d changed=%s", row.id, sorted(previous))
    return build_response(row)


def delete_allocation(db: Session, allocation_id: int, user: User) -> None:
    row = get_allocation_row(db, allocation_id)
    financial_year_service.ensure_allocations_open(db, row.financial_year)
    has_expenditures = (
        db.query(Expenditure.id)
        .filter(
            Expenditure.department_id == row.department_id,
            Expenditure.budget_head_id == row.budget_head_id,
            Expenditure.financial_year == row.financial_year,
        )
        .first()
    )
    if to_decimal(row.spent_amount) != 0 or has_expenditures:
        raise ValidationError(
            "Allocation has expenditures booked against it and cannot be deleted.",
            errors=[{"field": "id", "message": "In use"}],
        )
    db.query(ProposalItem).filter(ProposalItem.allocation_id == row.id).update(
        {"allocation_id": None}, synchronize_session=False
    )
    db.query(AllocationAmendment).filter(AllocationAmendment.allocation_id == row.id).delete(
        synchronize_session=False
    )
    allocation_history_service.delete_history(db, row.id)
    audit_service.record(
        db, "allocation.delete", user, "allocation", row.id,
        previous_values={"allocated_amount": row.allocated_amount},
    )
    db.delete(row)
    db.commit()
    logger.info("delete_allocation: id=%d", allocation_id)


# ---------------------------------------------------------------------------
# History and rollback
# ---------------------------------------------------------------------------


def list_allocation_history(
    db: Session, allocation_id: int, pagination: PaginationParams
) -> AllocationHistoryListResponse:
    get_allocation_row(db, allocation_id)
    return allocation_history_service.list_history(db, allocation_id, pagination)


def get_allocation_version(db: Session, allocation_id: int, version: int) -> AllocationHistoryResponse:
    get_allocation_row(db, allocation_id)
    row = allocation_history_service.get_version_row(db, allocation_id, version)
    return allocation_history_service.build_response(row)


def rollback_allocation(
    db: Session, allocation_id: int, version: int, user: User, reason: str | None = None
) -> RollbackResponse:
    """Restore the amount and remarks recorded in *version*.

    The rollback is itself recorded as a new ``rollback`` version, so
    history only ever grows.

    Raises:
        NotFound: Unknown allocation or version.
        ValidationError: Frozen year, or the target amount is below what has
            been spent since.
    """
    row = get_allocation_row(db, allocation_id)
    financial_year_service.ensure_allocations_open(db, row.financial_year)
    target = allocation_history_service.get_version_row(db, allocation_id, version)

    previous_amount = to_decimal(row.allocated_amount)
    previous_remarks = row.remarks
    target_amount = to_decimal(target.snapshot.get("allocated_amount", target.new_amount))
    if target_amount != previous_amount:
        apply_allocated_amount(db, row, target_amount)
    row.remarks = target.snapshot.get("remarks")
    row.last_modified_by_id = user.id

    entry = allocation_history_service.record_version(
        db, row, "rollback", user,
        previous_amount=previous_amount,
        previous_remarks=previous_remarks,
        reason=reason or f"Rolled back to version {version}",
    )
    audit_service.record(
        db, "allocation.rollback", user, "allocation", row.id,
        details={"rolled_back_to": version, "version": entry.version},
        previous_values={"allocated_amount": previous_amount, "remarks": previous_remarks},
        new_values={"allocated_amount": row.allocated_amount, "remarks": row.remarks},
    )
    db.commit()
    db.refresh(row)
    logger.info(
        "rollback_allocation: id=%d to v%d as v%d", row.id, version, entry.version
    )
    return RollbackResponse(
        allocation=build_response(row), rolled_back_to=version, version=entry.version
    )


# ---------------------------------------------------------------------------
# Bulk creation
# ---------------------------------------------------------------------------


def bulk_create_allocations(
    db: Session, data: AllocationBulkCreate, user: User
) -> AllocationBulkResponse:
    """Create every valid allocation in *data* in one commit.

    Each row is validated on its own; refused rows are reported with their
    1-based position and do not stop the others.

    Raises:
        ValidationError: No row could be created; ``errors`` lists each row.
    """
    created: list[Allocation] = []
    errors: list[BulkRowError] = []
    for index, item in enumerate(data.allocations, start=1):
        try:
            row = new_allocation(
                db,
                item.financial_year,
                item.department_id,
                item.budget_head_id,
                item.allocated_amount,
                user,
                remarks=item.remarks,
            )
        except (NotFound, ValidationError) as exc:
            errors.append(BulkRowError(row=index, error=exc.message, data=item.model_dump()))
            continue
        created.append(row)

    if not created:
        db.rollback()
        raise ValidationError(
            "No allocations were created.",
            errors=[{"field": f"allocations[{e.row}]", "message": e.error} for e in errors],
        )
    db.commit()
    logger.info(
        "bulk_create_allocations: created=%d refused=%d", len(created), len(errors)
    )
    return AllocationBulkResponse(
        created=len(created),
        total=len(data.allocations),
        allocation_ids=[r.id for r in created],
        errors=errors,
    )


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def get_allocation_stats(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
) -> AllocationStatsResponse:
    """Totals and a per-department breakdown of the caller's visible allocations."""
    q = (
        db.query(
            Department.id,
            Department.name,
            func.count(Allocation.id),
            func.coalesce(func.sum(Allocation.allocated_amount), 0),
            func.coalesce(func.sum(Allocation.spent_amount), 0),
        )
        .join(Department, Allocation.department_id == Department.id)
    )
    department_id = scoped_department_id(user, department_id)
    if department_id is not None:
        q = q.filter(Allocation.department_id == department_id)
    if financial_year:
        q = q.filter(Allocation.financial_year == financial_year)
    rows = q.group_by(Department.id, Department.name).order_by(Department.name).all()

    by_department: list[AllocationDepartmentStats] = []
    total_count = 0
    total_allocated = to_decimal(0)
    total_spent = to_decimal(0)
    for dept_id, dept_name, count, allocated, spent in rows:
        allocated = to_decimal(allocated)
        spent = to_decimal(spent)
        total_count += count
        total_allocated += allocated
        total_spent += spent
        by_department.append(AllocationDepartmentStats(
            department_id=dept_id,
            department_name=dept_name,
            total_allocated=to_float(allocated),
            total_spent=to_float(spent),
            remaining=to_float(allocated - spent),
            utilization_percent=safe_pct(spent, allocated),
        ))

    return AllocationStatsResponse(
        financial_year=financial_year,
        total_allocations=total_count,
        total_allocated=to_float(total_allocated),
        total_spent=to_float(total_spent),
        remaining=to_float(total_allocated - total_spent),
        utilization_percent=safe_pct(total_spent, total_allocated),
        by_department=by_department,
    )
