"""
Amount reconciliation: historic and current-year figures shown while a
proposal is drafted or reviewed.

Design notes
------------
- The *previous* year is the last completed one when the proposal is
  drafted, two before the proposal's year (``2027-2028`` -> ``2025-2026``);
  the *current* year is the one containing today's date, whatever year the
  proposal is for.
- ``prev_year_allocated`` / ``prev_year_spent`` sum the matching allocations
  of the previous year.  ``current_year_spent`` sums ``bill_amount`` of every
  expenditure of the department in the current year regardless of status,
  narrowed to one budget head for item figures.
- Every response is a read-only snapshot stamped with ``computed_at`` and
  ``refresh_after_seconds``.  The figures are advisory: expenditure
  approval re-checks the allocation inside its own transaction and never
  relies on them.
- ``today`` is injectable so figures are reproducible in tests.
"""

from __future__ import annotations

import datetime
import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from cbms.config import get_settings
from cbms.exceptions import NotFound, ValidationError
from cbms.models.allocation import Allocation
from cbms.models.budget_head import BudgetHead
from cbms.models.budget_proposal import BudgetProposal
from cbms.models.department import Department
from cbms.models.expenditure import Expenditure
from cbms.models.user import User
from cbms.schemas.reconciliation import (
    ProposalReconciliationResponse,
    ProposalStatsItem,
    ReconciliationFigures,
    ReconciliationResponse,
)
from cbms.services.auth_service import ensure_department_access
from cbms.utils import fiscal
from cbms.utils.amounts import to_float

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _check_year(financial_year: str) -> None:
    if not fiscal.is_valid_label(financial_year):
        raise ValidationError(
            f"Invalid financial year '{financial_year}'.",
            errors=[{"field": "financial_year", "message": "Expected YYYY-YYYY"}],
        )


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def allocation_totals(
    db: Session,
    department_id: int,
    financial_year: str,
    budget_head_id: int | None = None,
) -> tuple[Decimal, Decimal]:
    """Return ``(Σ allocated_amount, Σ spent_amount)`` for the matching allocations."""
    q = db.query(
        func.coalesce(func.sum(Allocation.allocated_amount), 0),
        func.coalesce(func.sum(Allocation.spent_amount), 0),
    ).filter(
        Allocation.department_id == department_id,
        Allocation.financial_year == financial_year,
    )
    if budget_head_id is not None:
        q = q.filter(Allocation.budget_head_id == budget_head_id)
    allocated, spent = q.one()
    return Decimal(str(allocated)), Decimal(str(spent))


def expenditure_total(
    db: Session,
    department_id: int,
    financial_year: str,
    budget_head_id: int | None = None,
) -> Decimal:
    """Σ ``bill_amount`` of every expenditure (any status) of the department in the year."""
    q = db.query(func.coalesce(func.sum(Expenditure.bill_amount), 0)).filter(
        Expenditure.department_id == department_id,
        Expenditure.financial_year == financial_year,
    )
    if budget_head_id is not None:
        q = q.filter(Expenditure.budget_head_id == budget_head_id)
    return Decimal(str(q.scalar()))


def compute_figures(
    db: Session,
    department_id: int,
    financial_year: str,
    budget_head_id: int | None = None,
    today: datetime.date | None = None,
) -> ReconciliationFigures:
    """Build the reconciliation figures for one department (and optionally one head).

    Args:
        db: Active SQLAlchemy session.
        department_id: Department the figures are for.
        financial_year: The proposal's financial year.
        budget_head_id: Narrow every sum to one budget head.
        today: Reference date for the current financial year.

    Returns:
        A ``ReconciliationFigures`` snapshot.
    """
    _check_year(financial_year)
    department: Department | None = db.get(Department, department_id)
    if department is None:
        raise NotFound("Department", department_id)
    head: BudgetHead | None = None
    if budget_head_id is not None:
        head = db.get(BudgetHead, budget_head_id)
        if head is None:
            raise NotFound("BudgetHead", budget_head_id)

    previous_year = fiscal.last_closed_year_for_proposal(financial_year)
    current_year = fiscal.current_financial_year(today)
    prev_allocated, prev_spent = allocation_totals(db, department_id, previous_year, budget_head_id)
    current_spent = expenditure_total(db, department_id, current_year, budget_head_id)

    logger.debug(
        "compute_figures: dept=%d head=%s prev=%s alloc=%s spent=%s current=%s spent=%s",
        department_id, budget_head_id, previous_year, prev_allocated, prev_spent,
        current_year, current_spent,
    )
    return ReconciliationFigures(
        department_id=department_id,
        department_name=department.name,
        budget_head_id=budget_head_id,
        budget_head_name=head.name if head is not None else None,
        previous_financial_year=previous_year,
        current_financial_year=current_year,
        prev_year_allocated=to_float(prev_allocated),
        prev_year_spent=to_float(prev_spent),
        prev_year_balance=to_float(prev_allocated - prev_spent),
        current_year_spent=to_float(current_spent),
    )


def _envelope(financial_year: str, figures: list[ReconciliationFigures]) -> ReconciliationResponse:
    return ReconciliationResponse(
        financial_year=financial_year,
        figures=figures,
        computed_at=_utcnow(),
        refresh_after_seconds=get_settings().RECONCILIATION_REFRESH_SECONDS,
        advisory=True,
    )


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------


def get_item_stats(
    db: Session,
    user: User,
    department_id: int,
    budget_head_id: int,
    financial_year: str,
    today: datetime.date | None = None,
) -> ReconciliationResponse:
    ensure_department_access(user, department_id)
    return _envelope(
        financial_year,
        [compute_figures(db, department_id, financial_year, budget_head_id, today)],
    )


def get_department_stats(
    db: Session,
    user: User,
    department_id: int,
    financial_year: str,
    today: datetime.date | None = None,
) -> ReconciliationResponse:
    ensure_department_access(user, department_id)
    return _envelope(financial_year, [compute_figures(db, department_id, financial_year, None, today)])


def get_all_departments_stats(
    db: Session,
    financial_year: str,
    today: datetime.date | None = None,
) -> ReconciliationResponse:
    """Approver view: figures for every active department."""
    _check_year(financial_year)
    departments = (
        db.query(Department)
        .filter(Department.is_active.is_(True))
        .order_by(Department.name)
        .all()
    )
    figures = [compute_figures(db, d.id, financial_year, None, today) for d in departments]
    logger.debug("get_all_departments_stats: %s departments=%d", financial_year, len(figures))
    return _envelope(financial_year, figures)


def get_proposal_stats(
    db: Session,
    proposal_id: int,
    user: User,
    today: datetime.date | None = None,
) -> ProposalReconciliationResponse:
    """Per-item and department figures for the proposal being viewed."""
    proposal: BudgetProposal | None = db.get(BudgetProposal, proposal_id)
    if proposal is None:
        raise NotFound("BudgetProposal", proposal_id)
    ensure_department_access(user, proposal.department_id)

    items: list[ProposalStatsItem] = []
    for item in proposal.items:
        if item.budget_head_id is None:
            continue
        items.append(
            ProposalStatsItem(
                item_id=item.id,
                position=item.position,
                proposed_amount=to_float(item.proposed_amount),
                figures=compute_figures(
                    db, proposal.department_id, proposal.financial_year, item.budget_head_id, today
                ),
            )
        )

    return ProposalReconciliationResponse(
        proposal_id=proposal.id,
        financial_year=proposal.financial_year,
        department=compute_figures(db, proposal.department_id, proposal.financial_year, None, today),
        items=items,
        computed_at=_utcnow(),
        refresh_after_seconds=get_settings().RECONCILIATION_REFRESH_SECONDS,
        advisory=True,
    )
