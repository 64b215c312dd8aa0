"""
Income service layer.

Design notes
------------
- Income can only be recorded against an existing financial year that is
  not closed.
- ``received_date`` defaults to today whenever the status becomes
  ``received`` without one.
- Verification (principal, admin) is allowed only from ``received``.
- Verified income is read-only except for admin and principal, and can
  never be deleted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from cbms.exceptions import InvalidTransition, NotFound, PermissionDenied, ValidationError
from cbms.models.income import Income
from cbms.models.user import User
from cbms.schemas.common import PaginationParams
from cbms.schemas.income import (
    IncomeCreate,
    IncomeListResponse,
    IncomeResponse,
    IncomeStatsResponse,
    IncomeUpdate,
)
from cbms.services import audit_service, financial_year_service
from cbms.utils.amounts import ZERO, to_decimal, to_float
from cbms.utils.constants import INCOME_STATUSES, RECEIVED_INCOME_STATUSES

logger = logging.getLogger(__name__)

_VERIFIER_ROLES = frozenset({"principal", "admin"})


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_response(row: Income) -> IncomeResponse:
    return IncomeResponse(
        id=row.id,
        financial_year=row.financial_year,
        source=row.source,
        category=row.category,
        amount=to_float(row.amount),
        expected_date=row.expected_date,
        received_date=row.received_date,
        status=row.status,
        reference_number=row.reference_number,
        description=row.description,
        remarks=row.remarks,
        verified_by_id=row.verified_by_id,
        verified_at=row.verified_at,
        created_by_id=row.created_by_id,
        created_at=row.created_at,
    )


def _get_or_404(db: Session, income_id: int) -> Income:
    row = db.query(Income).filter(Income.id == income_id).first()
    if row is None:
        raise NotFound("Income", income_id)
    return row


def list_income(
    db: Session,
    pagination: PaginationParams,
    financial_year: str | None = None,
    source: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> IncomeListResponse:
    q = db.query(Income)
    if financial_year:
        q = q.filter(Income.financial_year == financial_year)
    if source:
        q = q.filter(Income.source == source)
    if status:
        q = q.filter(Income.status == status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Income.description.ilike(pattern), Income.reference_number.ilike(pattern)))
    total = q.count()
    rows = (
        q.order_by(Income.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return IncomeListResponse(
        rows=[build_response(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_income(db: Session, income_id: int) -> IncomeResponse:
    return build_response(_get_or_404(db, income_id))


def create_income(db: Session, data: IncomeCreate, user: User) -> IncomeResponse:
    financial_year_service.ensure_not_closed(db, data.financial_year, must_exist=True)
    received_date = data.received_date
    if data.status == "received" and received_date is None:
        received_date = date.today()

    row = Income(
        financial_year=data.financial_year,
        source=data.source,
        category=data.category,
        amount=to_decimal(data.amount),
        expected_date=data.expected_date,
        received_date=received_date,
        status=data.status,
        reference_number=data.reference_number,
        description=data.description,
        remarks=data.remarks,
        created_by_id=user.id,
    )
    db.add(row)
    db.flush()
    audit_service.record(
        db, "income.create", user, "income", row.id,
        new_values={
            "financial_year": row.financial_year,
            "source": row.source,
            "amount": row.amount,
            "status": row.status,
        },
    )
    db.commit()
    db.refresh(row)
    logger.info("create_income: id=%d %s %s amount=%s", row.id, row.financial_year, row.source, row.amount)
    return build_response(row)


def update_income(db: Session, income_id: int, data: IncomeUpdate, user: User) -> IncomeResponse:
    row = _get_or_404(db, income_id)
    if row.status == "verified" and user.role not in _VERIFIER_ROLES:
        raise PermissionDenied("Verified income can only be modified by an admin or the principal.")
    financial_year_service.ensure_not_closed(db, row.financial_year)

    update_data = data.model_dump(exclude_unset=True)
    if "amount" in update_data and update_data["amount"] is not None:
        update_data["amount"] = to_decimal(update_data["amount"])
    if row.status == "verified":
        # status stays verified; the update schema only offers expected/received
        update_data.pop("status", None)

    previous: dict = {}
    for field, value in update_data.items():
        if getattr(row, field) != value:
            previous[field] = getattr(row, field)
            setattr(row, field, value)
    if row.status == "received" and row.received_date is None:
        row.received_date = date.today()

    audit_service.record(
        db, "income.update", user, "income", row.id,
        previous_values=previous,
        new_values={k: getattr(row, k) for k in previous},
    )
    db.commit()
    db.refresh(row)
    logger.info("update_income: id=%d changed=%s", row.id, sorted(previous))
    return build_response(row)


def delete_income(db: Session, income_id: int, user: User) -> None:
    row = _get_or_404(db, income_id)
    if row.status == "verified":
        raise ValidationError(
            "Verified income cannot be deleted.",
            errors=[{"field": "status", "message": "Income is verified"}],
        )
    financial_year_service.ensure_not_closed(db, row.financial_year)
    audit_service.record(
        db, "income.delete", user, "income", row.id,
        previous_values={"amount": row.amount, "status": row.status},
    )
    db.delete(row)
    db.commit()
    logger.info("delete_income: id=%d", income_id)


def verify_income(db: Session, income_id: int, user: User, remarks: str | None = None) -> IncomeResponse:
    row = _get_or_404(db, income_id)
    if user.role not in _VERIFIER_ROLES:
        raise InvalidTransition(
            f"Role '{user.role}' cannot verify income.",
            action="verify", current_status=row.status, role=user.role,
        )
    if row.status != "received":
        raise InvalidTransition(
            f"Only received income can be verified (status is '{row.status}').",
            action="verify", current_status=row.status, role=user.role,
        )
    row.status = "verified"
    row.verified_by_id = user.id
    row.verified_at = _now()
    if remarks:
        row.remarks = remarks
    audit_service.record(
        db, "income.verify", user, "income", row.id,
        previous_values={"status": "received"},
        new_values={"status": "verified"},
        details={"remarks": remarks},
    )
    db.commit()
    db.refresh(row)
    logger.info("verify_income: id=%d by=%s", row.id, user.role)
    return build_response(row)


def get_stats(db: Session, financial_year: str | None = None) -> IncomeStatsResponse:
    q = db.query(
        Income.source,
        Income.status,
        func.count(Income.id),
        func.coalesce(func.sum(Income.amount), 0),
    )
    if financial_year:
        q = q.filter(Income.financial_year == financial_year)

    by_source: dict[str, float] = {}
    by_status = {status: 0 for status in INCOME_STATUSES}
    expected = received = verified = ZERO
    for source, status, count, amount in q.group_by(Income.source, Income.status).all():
        amount = to_decimal(amount)
        by_source[source] = to_float(to_decimal(by_source.get(source, 0)) + amount)
        by_status[status] = by_status.get(status, 0) + count
        expected += amount
        if status in RECEIVED_INCOME_STATUSES:
            received += amount
        if status == "verified":
            verified += amount

    return IncomeStatsResponse(
        financial_year=financial_year,
        total_expected=to_float(expected),
        total_received=to_float(received),
        total_verified=to_float(verified),
        by_source=by_source,
        by_status=by_status,
    )
