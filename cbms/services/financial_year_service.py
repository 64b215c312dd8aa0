"""
Financial year service layer.

Lifecycle: ``planning`` -> ``active`` -> ``locked`` -> ``closed``.

Design notes
------------
- The ``total_*`` columns are caches.  ``recalculate_totals`` rebuilds them
  from income and allocations on demand and when a year is closed; nothing
  in the workflow reads them for enforcement.
- Expected income counts every income row of the year; received income
  counts ``received`` and ``verified`` rows.
- Locked and closed years freeze allocations (see ``ensure_allocations_open``);
  closed years additionally refuse new income and expenditures.
- Closing requires that no expenditure is still ``pending`` or ``verified``.
  The carry-forward is income received minus spent, or 0 when the year
  does not allow carry-forward.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from cbms.exceptions import InvalidTransition, NotFound, ValidationError
from cbms.models.allocation import Allocation
from cbms.models.department import Department
from cbms.models.expenditure import Expenditure
from cbms.models.financial_year import FinancialYear
from cbms.models.income import Income
from cbms.models.user import User
from cbms.schemas.financial_year import (
    FinancialYearCreate,
    FinancialYearResponse,
    FinancialYearSummary,
    FinancialYearUpdate,
)
from cbms.services import audit_service
from cbms.utils import fiscal
from cbms.utils.amounts import ZERO, to_decimal, to_float
from cbms.utils.constants import FROZEN_YEAR_STATUSES, RECEIVED_INCOME_STATUSES

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_response(row: FinancialYear) -> FinancialYearResponse:
    return FinancialYearResponse(
        id=row.id,
        year=row.year,
        start_date=row.start_date,
        end_date=row.end_date,
        status=row.status,
        total_income_expected=to_float(row.total_income_expected),
        total_income_received=to_float(row.total_income_received),
        total_allocated=to_float(row.total_allocated),
        total_spent=to_float(row.total_spent),
        balance=to_float(to_decimal(row.total_income_received) - to_decimal(row.total_spent)),
        carryforward_amount=to_float(row.carryforward_amount),
        carryforward_allowed=row.carryforward_allowed,
        description=row.description,
        locked_by_id=row.locked_by_id,
        locked_at=row.locked_at,
        lock_remarks=row.lock_remarks,
        closed_by_id=row.closed_by_id,
        closed_at=row.closed_at,
        closure_remarks=row.closure_remarks,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Guards used by other services
# ---------------------------------------------------------------------------


def get_by_label(db: Session, year: str) -> FinancialYear | None:
    return db.query(FinancialYear).filter(FinancialYear.year == year).first()


def ensure_allocations_open(db: Session, year: str) -> None:
    """Refuse allocation changes in a locked or closed year."""
    row = get_by_label(db, year)
    if row is not None and row.status in FROZEN_YEAR_STATUSES:
        raise ValidationError(
            f"Financial year {year} is {row.status}; allocations cannot be created or modified.",
            errors=[{"field": "financial_year", "message": f"Year is {row.status}"}],
        )


def ensure_not_closed(db: Session, year: str, must_exist: bool = False) -> None:
    row = get_by_label(db, year)
    if row is None:
        if must_exist:
            raise ValidationError(
                f"Financial year {year} does not exist.",
                errors=[{"field": "financial_year", "message": "Unknown financial year"}],
            )
        return
    if row.status == "closed":
        raise ValidationError(
            f"Financial year {year} is closed.",
            errors=[{"field": "financial_year", "message": "Year is closed"}],
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _get_or_404(db: Session, year_id: int) -> FinancialYear:
    row = db.query(FinancialYear).filter(FinancialYear.id == year_id).first()
    if row is None:
        raise NotFound("FinancialYear", year_id)
    return row


def list_years(db: Session, status: str | None = None) -> list[FinancialYearResponse]:
    q = db.query(FinancialYear)
    if status:
        q = q.filter(FinancialYear.status == status)
    return [build_response(r) for r in q.order_by(FinancialYear.year.desc()).all()]


def get_year(db: Session, year_id: int) -> FinancialYearResponse:
    return build_response(_get_or_404(db, year_id))


def get_active(db: Session) -> FinancialYearResponse:
    row = (
        db.query(FinancialYear)
        .filter(FinancialYear.status == "active")
        .order_by(FinancialYear.year.desc())
        .first()
    )
    if row is None:
        raise NotFound("FinancialYear", "active")
    return build_response(row)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_year(db: Session, data: FinancialYearCreate, user: User) -> FinancialYearResponse:
    if not fiscal.is_valid_label(data.year):
        raise ValidationError(
            f"Invalid financial year '{data.year}'.",
            errors=[{"field": "year", "message": "Second year must follow the first, e.g. 2026-2027"}],
        )
    if get_by_label(db, data.year) is not None:
        raise ValidationError(
            f"Financial year {data.year} already exists.",
            errors=[{"field": "year", "message": "Must be unique"}],
        )
    default_start, default_end = fiscal.year_bounds(data.year)
    start = data.start_date or default_start
    end = data.end_date or default_end
    if end <= start:
        raise ValidationError(
            "end_date must be after start_date.",
            errors=[{"field": "end_date", "message": "Must be after start_date"}],
        )

    row = FinancialYear(
        year=data.year,
        start_date=start,
        end_date=end,
        status="planning",
        description=data.description,
        carryforward_allowed=data.carryforward_allowed,
        created_by_id=user.id,
    )
    db.add(row)
    db.flush()
    audit_service.record(db, "financial_year.create", user, "financial_year", row.id, new_values={"year": row.year})
    db.commit()
    db.refresh(row)
    logger.info("create_year: %s id=%d", row.year, row.id)
    return build_response(row)


def update_year(db: Session, year_id: int, data: FinancialYearUpdate, user: User) -> FinancialYearResponse:
    row = _get_or_404(db, year_id)
    if row.status == "closed":
        raise InvalidTransition(f"Financial year {row.year} is closed.", action="update", current_status=row.status)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(row, field, value)
    audit_service.record(db, "financial_year.update", user, "financial_year", row.id)
    db.commit()
    db.refresh(row)
    return build_response(row)


def activate_year(db: Session, year_id: int, user: User) -> FinancialYearResponse:
    row = _get_or_404(db, year_id)
    if row.status != "planning":
        raise InvalidTransition(
            f"Only a year in planning can be activated (current: {row.status}).",
            action="activate", current_status=row.status, role=user.role,
        )
    other = (
        db.query(FinancialYear)
        .filter(FinancialYear.status == "active", FinancialYear.id != row.id)
        .first()
    )
    if other is not None:
        raise InvalidTransition(
            f"Financial year {other.year} is still active; lock or close it first.",
            action="activate", current_status=row.status, role=user.role,
        )
    row.status = "active"
    audit_service.record(
        db, "financial_year.activate", user, "financial_year", row.id,
        previous_values={"status": "planning"}, new_values={"status": "active"},
    )
    db.commit()
    db.refresh(row)
    logger.info("activate_year: %s", row.year)
    return build_response(row)


def lock_year(db: Session, year_id: int, user: User, remarks: str | None = None) -> FinancialYearResponse:
    row = _get_or_404(db, year_id)
    if row.status in FROZEN_YEAR_STATUSES:
        raise InvalidTransition(
            f"Financial year {row.year} is already {row.status}.",
            action="lock", current_status=row.status, role=user.role,
        )
    previous = row.status
    row.status = "locked"
    row.locked_by_id = user.id
    row.locked_at = _now()
    row.lock_remarks = remarks
    audit_service.record(
        db, "financial_year.lock", user, "financial_year", row.id,
        details={"remarks": remarks},
        previous_values={"status": previous}, new_values={"status": "locked"},
    )
    db.commit()
    db.refresh(row)
    logger.info("lock_year: %s by user_id=%d", row.year, user.id)
    return build_response(row)


def _apply_totals(db: Session, row: FinancialYear) -> None:
    expected = db.query(func.coalesce(func.sum(Income.amount), 0)).filter(Income.financial_year == row.year).scalar()
    received = (
        db.query(func.coalesce(func.sum(Income.amount), 0))
        .filter(Income.financial_year == row.year, Income.status.in_(RECEIVED_INCOME_STATUSES))
        .scalar()
    )
    allocated, spent = (
        db.query(
            func.coalesce(func.sum(Allocation.allocated_amount), 0),
            func.coalesce(func.sum(Allocation.spent_amount), 0),
        )
        .filter(Allocation.financial_year == row.year)
        .one()
    )
    row.total_income_expected = to_decimal(expected)
    row.total_income_received = to_decimal(received)
    row.total_allocated = to_decimal(allocated)
    row.total_spent = to_decimal(spent)
    logger.debug(
        "_apply_totals: %s expected=%s received=%s allocated=%s spent=%s",
        row.year, expected, received, allocated, spent,
    )


def recalculate_totals(db: Session, year_id: int) -> FinancialYearResponse:
    row = _get_or_404(db, year_id)
    _apply_totals(db, row)
    db.commit()
    db.refresh(row)
    return build_response(row)


def close_year(db: Session, year_id: int, user: User, remarks: str | None = None) -> FinancialYearResponse:
    row = _get_or_404(db, year_id)
    if row.status == "closed":
        raise InvalidTransition(
            f"Financial year {row.year} is already closed.",
            action="close", current_status=row.status, role=user.role,
        )
    open_count = (
        db.query(Expenditure)
        .filter(
            Expenditure.financial_year == row.year,
            Expenditure.status.in_(("pending", "verified")),
        )
        .count()
    )
    if open_count:
        raise ValidationError(
            f"Cannot close {row.year}: {open_count} expenditure(s) are still pending or verified.",
            details={"open_expenditures": open_count},
        )

    _apply_totals(db, row)
    carry = to_decimal(row.total_income_received) - to_decimal(row.total_spent)
    row.carryforward_amount = carry if row.carryforward_allowed else ZERO
    previous = row.status
    row.status = "closed"
    row.closed_by_id = user.id
    row.closed_at = _now()
    row.closure_remarks = remarks
    audit_service.record(
        db, "financial_year.close", user, "financial_year", row.id,
        details={"remarks": remarks, "carryforward_amount": carry},
        previous_values={"status": previous}, new_values={"status": "closed"},
    )
    db.commit()
    db.refresh(row)
    logger.info("close_year: %s carryforward=%s", row.year, row.carryforward_amount)
    return build_response(row)


def get_summary(db: Session, year_id: int) -> FinancialYearSummary:
    row = _get_or_404(db, year_id)

    income_by_source: dict[str, dict[str, float]] = {}
    for source, status, amount in (
        db.query(Income.source, Income.status, func.coalesce(func.sum(Income.amount), 0))
        .filter(Income.financial_year == row.year)
        .group_by(Income.source, Income.status)
        .all()
    ):
        bucket = income_by_source.setdefault(source, {"expected": 0.0, "received": 0.0})
        bucket["expected"] = round(bucket["expected"] + float(amount), 2)
        if status in RECEIVED_INCOME_STATUSES:
            bucket["received"] = round(bucket["received"] + float(amount), 2)

    allocations = []
    for dept_id, dept_name, allocated, spent in (
        db.query(
            Department.id,
            Department.name,
            func.coalesce(func.sum(Allocation.allocated_amount), 0),
            func.coalesce(func.sum(Allocation.spent_amount), 0),
        )
        .join(Allocation, Allocation.department_id == Department.id)
        .filter(Allocation.financial_year == row.year)
        .group_by(Department.id, Department.name)
        .order_by(Department.name)
        .all()
    ):
        allocations.append({
            "department_id": dept_id,
            "department_name": dept_name,
            "allocated": to_float(allocated),
            "spent": to_float(spent),
            "remaining": to_float(Decimal(allocated) - Decimal(spent)),
        })

    expenditures = {
        status: {"count": count, "amount": to_float(amount)}
        for status, count, amount in (
            db.query(
                Expenditure.status,
                func.count(Expenditure.id),
                func.coalesce(func.sum(Expenditure.bill_amount), 0),
            )
            .filter(Expenditure.financial_year == row.year)
            .group_by(Expenditure.status)
            .all()
        )
    }

    return FinancialYearSummary(
        year=build_response(row),
        income_by_source=income_by_source,
        allocations_by_department=allocations,
        expenditures_by_status=expenditures,
    )
