"""
Master data service layer: departments, budget heads and categories.

All three follow the same shape: list with search/active filters, get by
ID, create with uniqueness checks, partial update, and delete refused while
workflow documents still reference the row.  Departments and budget heads
also have summary counts, and a department has a per-year detail view with
a comparison against the previous year.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from cbms.exceptions import NotFound, ValidationError
from cbms.models.allocation import Allocation
from cbms.models.budget_head import BudgetHead
from cbms.models.budget_proposal import BudgetProposal, ProposalItem
from cbms.models.category import Category
from cbms.models.department import Department
from cbms.models.expenditure import Expenditure
from cbms.models.user import User
from cbms.schemas.master_data import (
    BudgetHeadBreakdown,
    BudgetHeadCreate,
    BudgetHeadResponse,
    BudgetHeadStatsResponse,
    BudgetHeadUpdate,
    CategoryCount,
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    DepartmentCreate,
    DepartmentDetailResponse,
    DepartmentResponse,
    DepartmentStatsResponse,
    DepartmentSummary,
    DepartmentUpdate,
    DepartmentUserCount,
    DepartmentYearComparison,
    YearFigures,
)
from cbms.services import allocation_service, audit_service, expenditure_service
from cbms.services.auth_service import ensure_department_access
from cbms.utils import fiscal
from cbms.utils.amounts import ZERO, safe_pct, to_decimal, to_float

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _duplicate(field: str, value: str) -> ValidationError:
    return ValidationError(
        f"A record with {field} '{value}' already exists.",
        errors=[{"field": field, "message": "Must be unique"}],
    )


def _check_unique(db: Session, model, field: str, value: str | None, exclude_id: int | None = None) -> None:
    if value is None:
        return
    q = db.query(model).filter(getattr(model, field) == value)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    if q.first() is not None:
        raise _duplicate(field, value)


def _apply_update(row, update_data: dict) -> dict:
    """setattr every supplied field; return the previous values of those that changed."""
    previous = {}
    for field, value in update_data.items():
        old = getattr(row, field)
        if old != value:
            previous[field] = old
            setattr(row, field, value)
    return previous


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------


def get_department_row(db: Session, department_id: int) -> Department:
    row = db.query(Department).filter(Department.id == department_id).first()
    if row is None:
        raise NotFound("Department", department_id)
    return row


def list_departments(db: Session, search: str | None = None, active_only: bool = False) -> list[DepartmentResponse]:
    q = db.query(Department)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Department.name.ilike(pattern), Department.code.ilike(pattern)))
    if active_only:
        q = q.filter(Department.is_active.is_(True))
    return [DepartmentResponse.model_validate(r) for r in q.order_by(Department.name).all()]


def create_department(db: Session, data: DepartmentCreate, user: User) -> DepartmentResponse:
    code = data.code.strip().upper()
    _check_unique(db, Department, "name", data.name)
    _check_unique(db, Department, "code", code)
    row = Department(name=data.name, code=code, description=data.description, hod_id=data.hod_id)
    db.add(row)
    db.flush()
    audit_service.record(db, "department.create", user, "department", row.id, new_values={"name": row.name, "code": code})
    db.commit()
    db.refresh(row)
    logger.info("create_department: id=%d code=%s", row.id, row.code)
    return DepartmentResponse.model_validate(row)


def update_department(db: Session, department_id: int, data: DepartmentUpdate, user: User) -> DepartmentResponse:
    row = get_department_row(db, department_id)
    update_data = data.model_dump(exclude_unset=True)
    if "code" in update_data and update_data["code"]:
        update_data["code"] = update_data["code"].strip().upper()
    _check_unique(db, Department, "name", update_data.get("name"), exclude_id=row.id)
    _check_unique(db, Department, "code", update_data.get("code"), exclude_id=row.id)
    previous = _apply_update(row, update_data)
    audit_service.record(
        db, "department.update", user, "department", row.id,
        previous_values=previous, new_values={k: update_data[k] for k in previous},
    )
    db.commit()
    db.refresh(row)
    return DepartmentResponse.model_validate(row)


def delete_department(db: Session, department_id: int, user: User) -> None:
    row = get_department_row(db, department_id)
    in_use = (
        db.query(Allocation.id).filter(Allocation.department_id == row.id).first()
        or db.query(BudgetProposal.id).filter(BudgetProposal.department_id == row.id).first()
        or db.query(Expenditure.id).filter(Expenditure.department_id == row.id).first()
    )
    if in_use:
        raise ValidationError(
            "Department is referenced by proposals, allocations or expenditures; deactivate it instead.",
            errors=[{"field": "id", "message": "In use"}],
        )
    audit_service.record(db, "department.delete", user, "department", row.id, previous_values={"name": row.name})
    db.delete(row)
    db.commit()
    logger.info("delete_department: id=%d", department_id)


# ---------------------------------------------------------------------------
# Budget heads
# ---------------------------------------------------------------------------


def get_budget_head_row(db: Session, head_id: int) -> BudgetHead:
    row = db.query(BudgetHead).filter(BudgetHead.id == head_id).first()
    if row is None:
        raise NotFound("BudgetHead", head_id)
    return row


def list_budget_heads(
    db: Session,
    search: str | None = None,
    department_id: int | None = None,
    category: str | None = None,
    active_only: bool = False,
) -> list[BudgetHeadResponse]:
    """List heads; filtering by department also returns college-wide heads."""
    q = db.query(BudgetHead)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(BudgetHead.name.ilike(pattern), BudgetHead.code.ilike(pattern)))
    if department_id is not None:
        q = q.filter(or_(BudgetHead.department_id == department_id, BudgetHead.department_id.is_(None)))
    if category:
        q = q.filter(BudgetHead.category == category)
    if active_only:
        q = q.filter(BudgetHead.is_active.is_(True))
    return [BudgetHeadResponse.model_validate(r) for r in q.order_by(BudgetHead.name).all()]


def create_budget_head(db: Session, data: BudgetHeadCreate, user: User) -> BudgetHeadResponse:
    code = data.code.strip().upper()
    _check_unique(db, BudgetHead, "code", code)
    if data.department_id is not None:
        get_department_row(db, data.department_id)
    row = BudgetHead(
        name=data.name,
        code=code,
        category=data.category,
        description=data.description,
        department_id=data.department_id,
    )
    db.add(row)
    db.flush()
    audit_service.record(db, "budget_head.create", user, "budget_head", row.id, new_values={"name": row.name, "code": code})
    db.commit()
    db.refresh(row)
    logger.info("create_budget_head: id=%d code=%s", row.id, row.code)
    return BudgetHeadResponse.model_validate(row)


def update_budget_head(db: Session, head_id: int, data: BudgetHeadUpdate, user: User) -> BudgetHeadResponse:
    row = get_budget_head_row(db, head_id)
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("code"):
        update_data["code"] = update_data["code"].strip().upper()
    _check_unique(db, BudgetHead, "code", update_data.get("code"), exclude_id=row.id)
    if update_data.get("department_id") is not None:
        get_department_row(db, update_data["department_id"])
    previous = _apply_update(row, update_data)
    audit_service.record(
        db, "budget_head.update", user, "budget_head", row.id,
        previous_values=previous, new_values={k: update_data[k] for k in previous},
    )
    db.commit()
    db.refresh(row)
    return BudgetHeadResponse.model_validate(row)


def delete_budget_head(db: Session, head_id: int, user: User) -> None:
    row = get_budget_head_row(db, head_id)
    in_use = (
        db.query(Allocation.id).filter(Allocation.budget_head_id == row.id).first()
        or db.query(ProposalItem.id).filter(ProposalItem.budget_head_id == row.id).first()
        or db.query(Expenditure.id).filter(Expenditure.budget_head_id == row.id).first()
    )
    if in_use:
        raise ValidationError(
            "Budget head is in use; deactivate it instead.",
            errors=[{"field": "id", "message": "In use"}],
        )
    audit_service.record(db, "budget_head.delete", user, "budget_head", row.id, previous_values={"code": row.code})
    db.delete(row)
    db.commit()


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def list_categories(db: Session, active_only: bool = False) -> list[CategoryResponse]:
    q = db.query(Category)
    if active_only:
        q = q.filter(Category.is_active.is_(True))
    return [CategoryResponse.model_validate(r) for r in q.order_by(Category.name).all()]


def get_category(db: Session, category_id: int) -> CategoryResponse:
    row = db.query(Category).filter(Category.id == category_id).first()
    if row is None:
        raise NotFound("Category", category_id)
    return CategoryResponse.model_validate(row)


def create_category(db: Session, data: CategoryCreate, user: User) -> CategoryResponse:
    code = data.code.strip().lower()
    _check_unique(db, Category, "name", data.name)
    _check_unique(db, Category, "code", code)
    row = Category(name=data.name, code=code, description=data.description)
    db.add(row)
    db.flush()
    audit_service.record(db, "category.create", user, "category", row.id, new_values={"code": code})
    db.commit()
    db.refresh(row)
    return CategoryResponse.model_validate(row)


def update_category(db: Session, category_id: int, data: CategoryUpdate, user: User) -> CategoryResponse:
    row = db.query(Category).filter(Category.id == category_id).first()
    if row is None:
        raise NotFound("Category", category_id)
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("code"):
        update_data["code"] = update_data["code"].strip().lower()
    _check_unique(db, Category, "name", update_data.get("name"), exclude_id=row.id)
    _check_unique(db, Category, "code", update_data.get("code"), exclude_id=row.id)
    previous = _apply_update(row, update_data)
    audit_service.record(db, "category.update", user, "category", row.id, previous_values=previous)
    db.commit()
    db.refresh(row)
    return CategoryResponse.model_validate(row)


def delete_category(db: Session, category_id: int, user: User) -> None:
    row = db.query(Category).filter(Category.id == category_id).first()
    if row is None:
        raise NotFound("Category", category_id)
    audit_service.record(db, "category.delete", user, "category", row.id, previous_values={"code": row.code})
    db.delete(row)
    db.commit()


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def get_department_stats(db: Session) -> DepartmentStatsResponse:
    total = db.query(func.count(Department.id)).scalar()
    active = db.query(func.count(Department.id)).filter(Department.is_active.is_(True)).scalar()
    with_hod = db.query(func.count(Department.id)).filter(Department.hod_id.isnot(None)).scalar()
    distribution = (
        db.query(Department.id, Department.name, func.count(User.id))
        .outerjoin(User, (User.department_id == Department.id) & User.is_active.is_(True))
        .group_by(Department.id, Department.name)
        .order_by(Department.name)
        .all()
    )
    return DepartmentStatsResponse(
        total_departments=total,
        active_departments=active,
        inactive_departments=total - active,
        departments_with_hod=with_hod,
        user_distribution=[
            DepartmentUserCount(department_id=d_id, department_name=name, user_count=count)
            for d_id, name, count in distribution
        ],
    )


def get_budget_head_stats(db: Session) -> BudgetHeadStatsResponse:
    total = db.query(func.count(BudgetHead.id)).scalar()
    active = db.query(func.count(BudgetHead.id)).filter(BudgetHead.is_active.is_(True)).scalar()
    by_category = (
        db.query(BudgetHead.category, func.count(BudgetHead.id))
        .group_by(BudgetHead.category)
        .order_by(BudgetHead.category)
        .all()
    )
    return BudgetHeadStatsResponse(
        total_budget_heads=total,
        active_budget_heads=active,
        inactive_budget_heads=total - active,
        by_category=[CategoryCount(category=c, count=n) for c, n in by_category],
    )


def _year_figures(db: Session, department_id: int, financial_year: str) -> YearFigures:
    allocated, spent = (
        db.query(
            func.coalesce(func.sum(Allocation.allocated_amount), 0),
            func.coalesce(func.sum(Allocation.spent_amount), 0),
        )
        .filter(Allocation.department_id == department_id, Allocation.financial_year == financial_year)
        .one()
    )
    expenditure_count = (
        db.query(func.count(Expenditure.id))
        .filter(Expenditure.department_id == department_id, Expenditure.financial_year == financial_year)
        .scalar()
    )
    return YearFigures(
        total_allocated=to_float(allocated),
        total_spent=to_float(spent),
        utilization_percent=safe_pct(spent, allocated),
        expenditure_count=expenditure_count,
    )


def get_department_detail(
    db: Session, department_id: int, user: User, financial_year: str | None = None
) -> DepartmentDetailResponse:
    """One department's budget picture for a year, compared with the year before.

    ``financial_year`` defaults to the current one.  Department-scoped users
    may only open their own department.
    """
    ensure_department_access(user, department_id)
    department = get_department_row(db, department_id)
    year = financial_year or fiscal.current_financial_year()

    allocations = (
        db.query(Allocation)
        .filter(Allocation.department_id == department_id, Allocation.financial_year == year)
        .order_by(Allocation.created_at.desc(), Allocation.id.desc())
        .all()
    )
    expenditures = (
        db.query(Expenditure)
        .filter(Expenditure.department_id == department_id, Expenditure.financial_year == year)
        .order_by(Expenditure.bill_date.desc(), Expenditure.id.desc())
        .all()
    )

    total_allocated = sum((to_decimal(a.allocated_amount) for a in allocations), ZERO)
    total_spent = sum((to_decimal(a.spent_amount) for a in allocations), ZERO)

    status_breakdown = {s: 0 for s in ("pending", "verified", "approved", "rejected")}
    for e in expenditures:
        if e.status in status_breakdown:
            status_breakdown[e.status] += 1

    head_breakdown = [
        BudgetHeadBreakdown(
            budget_head_id=a.budget_head_id,
            budget_head_code=a.budget_head.code,
            budget_head_name=a.budget_head.name,
            allocated=to_float(a.allocated_amount),
            spent=to_float(a.spent_amount),
            remaining=to_float(a.remaining_amount),
            utilization_percent=safe_pct(a.spent_amount, a.allocated_amount),
        )
        for a in sorted(allocations, key=lambda a: a.budget_head.name)
    ]

    previous_year = fiscal.previous_financial_year(year)
    current = _year_figures(db, department_id, year)
    previous = _year_figures(db, department_id, previous_year)
    comparison = DepartmentYearComparison(
        previous_year=previous_year,
        current_year=year,
        previous=previous,
        current=current,
        allocated_change_percent=safe_pct(
            current.total_allocated - previous.total_allocated, previous.total_allocated
        ),
        spent_change_percent=safe_pct(current.total_spent - previous.total_spent, previous.total_spent),
        utilization_change=round(current.utilization_percent - previous.utilization_percent, 2),
    )

    logger.debug(
        "get_department_detail: dept=%d %s allocations=%d expenditures=%d",
        department_id, year, len(allocations), len(expenditures),
    )
    return DepartmentDetailResponse(
        department=DepartmentResponse.model_validate(department),
        financial_year=year,
        summary=DepartmentSummary(
            total_allocated=to_float(total_allocated),
            total_spent=to_float(total_spent),
            total_remaining=to_float(total_allocated - total_spent),
            utilization_percent=safe_pct(total_spent, total_allocated),
            allocation_count=len(allocations),
            expenditure_count=len(expenditures),
        ),
        allocations=[allocation_service.build_response(a) for a in allocations],
        expenditures=[
            expenditure_service.build_response(e, expenditure_service.latest_override(db, e.id))
            for e in expenditures
        ],
        status_breakdown=status_breakdown,
        budget_head_breakdown=head_breakdown,
        year_comparison=comparison,
    )
