"""
Reporting aggregator: dashboard KPIs and the tabular reports behind the
``/api/reports`` endpoints and their CSV/Excel exports.

Design notes
------------
- Every aggregate is a GROUP BY query; rows are never loaded one by one
  to be summed in Python.
- Department-scoped users only ever see their own department; the
  ``department_id`` argument is passed through ``scoped_department_id``.
- ``proposed`` in the consolidated report sums the items of *approved*
  proposals only, so it can be compared against what was allocated.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from cbms.exceptions import ValidationError
from cbms.models.allocation import Allocation
from cbms.models.budget_head import BudgetHead
from cbms.models.budget_proposal import BudgetProposal, ProposalItem
from cbms.models.department import Department
from cbms.models.expenditure import Expenditure
from cbms.models.income import Income
from cbms.models.user import User
from cbms.schemas.report import (
    ConsolidatedReport,
    ConsolidatedRow,
    DashboardResponse,
    DepartmentBreakdown,
    ExpenditureReport,
    ProposalReportRow,
    YearComparison,
    YearComparisonRow,
)
from cbms.services.auth_service import scoped_department_id
from cbms.utils import fiscal
from cbms.utils.amounts import ZERO, safe_pct, to_decimal, to_float
from cbms.utils.constants import (
    EXPENDITURE_STATUSES,
    PROPOSAL_STATUSES,
    RECEIVED_INCOME_STATUSES,
)

logger = logging.getLogger(__name__)


def _check_year(label: str) -> None:
    if not fiscal.is_valid_label(label):
        raise ValidationError(
            f"Invalid financial year '{label}'.",
            errors=[{"field": "financial_year", "message": "Expected YYYY-YYYY"}],
        )


def _status_counts(db: Session, model, statuses: list[str], financial_year: str, department_id: int | None) -> dict[str, int]:
    q = db.query(model.status, func.count(model.id)).filter(model.financial_year == financial_year)
    if department_id is not None:
        q = q.filter(model.department_id == department_id)
    counts = {s: 0 for s in statuses}
    for status, count in q.group_by(model.status).all():
        counts[status] = count
    return counts


def _allocation_by_department(
    db: Session, financial_year: str, department_id: int | None
) -> list[tuple[int, str, Decimal, Decimal]]:
    q = (
        db.query(
            Department.id,
            Department.name,
            func.coalesce(func.sum(Allocation.allocated_amount), 0),
            func.coalesce(func.sum(Allocation.spent_amount), 0),
        )
        .join(Allocation, Allocation.department_id == Department.id)
        .filter(Allocation.financial_year == financial_year)
    )
    if department_id is not None:
        q = q.filter(Department.id == department_id)
    return [
        (dept_id, name, to_decimal(allocated), to_decimal(spent))
        for dept_id, name, allocated, spent in q.group_by(Department.id, Department.name)
        .order_by(Department.name)
        .all()
    ]


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def get_dashboard(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
) -> DashboardResponse:
    """KPI cards for one financial year (defaults to the current one)."""
    financial_year = financial_year or fiscal.current_financial_year()
    _check_year(financial_year)
    department_id = scoped_department_id(user, department_id)

    departments: list[DepartmentBreakdown] = []
    total_allocated = total_spent = ZERO
    for dept_id, name, allocated, spent in _allocation_by_department(db, financial_year, department_id):
        total_allocated += allocated
        total_spent += spent
        departments.append(
            DepartmentBreakdown(
                department_id=dept_id,
                department_name=name,
                allocated=to_float(allocated),
                spent=to_float(spent),
                remaining=to_float(allocated - spent),
                utilization_percent=safe_pct(spent, allocated),
            )
        )

    income_q = db.query(Income.status, func.coalesce(func.sum(Income.amount), 0)).filter(
        Income.financial_year == financial_year
    )
    income_expected = income_received = ZERO
    for status, amount in income_q.group_by(Income.status).all():
        income_expected += to_decimal(amount)
        if status in RECEIVED_INCOME_STATUSES:
            income_received += to_decimal(amount)

    proposals = _status_counts(db, BudgetProposal, PROPOSAL_STATUSES, financial_year, department_id)
    expenditures = _status_counts(db, Expenditure, EXPENDITURE_STATUSES, financial_year, department_id)
    pending = (
        proposals["submitted"] + proposals["verified"]
        + expenditures["pending"] + expenditures["verified"]
    )

    logger.debug(
        "get_dashboard: %s dept=%s allocated=%s spent=%s", financial_year, department_id,
        total_allocated, total_spent,
    )
    return DashboardResponse(
        financial_year=financial_year,
        total_allocated=to_float(total_allocated),
        total_spent=to_float(total_spent),
        total_remaining=to_float(total_allocated - total_spent),
        utilization_percent=safe_pct(total_spent, total_allocated),
        income_expected=to_float(income_expected),
        income_received=to_float(income_received),
        proposals_by_status=proposals,
        expenditures_by_status=expenditures,
        pending_approvals=pending,
        departments=departments,
    )


# ---------------------------------------------------------------------------
# Consolidated department x budget head report
# ---------------------------------------------------------------------------


def get_consolidated(
    db: Session,
    user: User,
    financial_year: str,
    department_id: int | None = None,
) -> ConsolidatedReport:
    """One row per (department, budget head) with proposed, allocated and spent figures."""
    _check_year(financial_year)
    department_id = scoped_department_id(user, department_id)

    proposed_q = (
        db.query(
            BudgetProposal.department_id,
            ProposalItem.budget_head_id,
            func.coalesce(func.sum(ProposalItem.proposed_amount), 0),
        )
        .join(ProposalItem, ProposalItem.proposal_id == BudgetProposal.id)
        .filter(
            BudgetProposal.financial_year == financial_year,
            BudgetProposal.status == "approved",
            ProposalItem.budget_head_id.isnot(None),
        )
    )
    alloc_q = db.query(
        Allocation.department_id,
        Allocation.budget_head_id,
        func.coalesce(func.sum(Allocation.allocated_amount), 0),
        func.coalesce(func.sum(Allocation.spent_amount), 0),
    ).filter(Allocation.financial_year == financial_year)
    if department_id is not None:
        proposed_q = proposed_q.filter(BudgetProposal.department_id == department_id)
        alloc_q = alloc_q.filter(Allocation.department_id == department_id)

    figures: dict[tuple[int, int], dict[str, Decimal]] = defaultdict(
        lambda: {"proposed": ZERO, "allocated": ZERO, "spent": ZERO}
    )
    for dept_id, head_id, amount in proposed_q.group_by(
        BudgetProposal.department_id, ProposalItem.budget_head_id
    ).all():
        figures[(dept_id, head_id)]["proposed"] += to_decimal(amount)
    for dept_id, head_id, allocated, spent in alloc_q.group_by(
        Allocation.department_id, Allocation.budget_head_id
    ).all():
        figures[(dept_id, head_id)]["allocated"] += to_decimal(allocated)
        figures[(dept_id, head_id)]["spent"] += to_decimal(spent)

    dept_names = dict(db.query(Department.id, Department.name).all())
    head_names = dict(db.query(BudgetHead.id, BudgetHead.name).all())

    rows: list[ConsolidatedRow] = []
    totals = {"proposed": ZERO, "allocated": ZERO, "spent": ZERO}
    for (dept_id, head_id), f in figures.items():
        for key in totals:
            totals[key] += f[key]
        rows.append(
            ConsolidatedRow(
                department_id=dept_id,
                department_name=dept_names.get(dept_id, str(dept_id)),
                budget_head_id=head_id,
                budget_head_name=head_names.get(head_id, str(head_id)),
                proposed=to_float(f["proposed"]),
                allocated=to_float(f["allocated"]),
                spent=to_float(f["spent"]),
                remaining=to_float(f["allocated"] - f["spent"]),
                utilization_percent=safe_pct(f["spent"], f["allocated"]),
            )
        )
    rows.sort(key=lambda r: (r.department_name, r.budget_head_name))

    logger.debug("get_consolidated: %s rows=%d", financial_year, len(rows))
    return ConsolidatedReport(
        financial_year=financial_year,
        rows=rows,
        totals={
            "proposed": to_float(totals["proposed"]),
            "allocated": to_float(totals["allocated"]),
            "spent": to_float(totals["spent"]),
            "remaining": to_float(totals["allocated"] - totals["spent"]),
            "utilization_percent": safe_pct(totals["spent"], totals["allocated"]),
        },
    )


# ---------------------------------------------------------------------------
# Proposal and expenditure reports
# ---------------------------------------------------------------------------


def get_proposal_rows(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
    status: str | None = None,
) -> list[ProposalReportRow]:
    department_id = scoped_department_id(user, department_id)
    item_count = (
        db.query(ProposalItem.proposal_id, func.count(ProposalItem.id).label("n"))
        .group_by(ProposalItem.proposal_id)
        .subquery()
    )
    q = (
        db.query(BudgetProposal, Department.name, func.coalesce(item_count.c.n, 0))
        .join(Department, BudgetProposal.department_id == Department.id)
        .outerjoin(item_count, item_count.c.proposal_id == BudgetProposal.id)
    )
    if financial_year:
        q = q.filter(BudgetProposal.financial_year == financial_year)
    if department_id is not None:
        q = q.filter(BudgetProposal.department_id == department_id)
    if status:
        q = q.filter(BudgetProposal.status == status)

    return [
        ProposalReportRow(
            proposal_id=p.id,
            department_name=dept_name,
            financial_year=p.financial_year,
            status=p.status,
            item_count=count,
            total_proposed_amount=to_float(p.total_proposed_amount),
            submitted_date=p.submitted_date.isoformat() if p.submitted_date else None,
            approved_date=p.approved_date.isoformat() if p.approved_date else None,
        )
        for p, dept_name, count in q.order_by(
            BudgetProposal.financial_year.desc(), Department.name, BudgetProposal.id
        ).all()
    ]


def get_expenditure_report(
    db: Session,
    user: User,
    financial_year: str | None = None,
    department_id: int | None = None,
    status: str | None = None,
) -> ExpenditureReport:
    """Bills with department and head names, plus count/amount per status."""
    department_id = scoped_department_id(user, department_id)
    q = (
        db.query(Expenditure, Department.name, BudgetHead.name)
        .join(Department, Expenditure.department_id == Department.id)
        .join(BudgetHead, Expenditure.budget_head_id == BudgetHead.id)
    )
    if financial_year:
        q = q.filter(Expenditure.financial_year == financial_year)
    if department_id is not None:
        q = q.filter(Expenditure.department_id == department_id)
    if status:
        q = q.filter(Expenditure.status == status)

    rows: list[dict] = []
    summary: dict[str, dict[str, float]] = {s: {"count": 0, "amount": 0.0} for s in EXPENDITURE_STATUSES}
    for e, dept_name, head_name in q.order_by(Expenditure.bill_date, Expenditure.id).all():
        amount = to_float(e.bill_amount)
        rows.append({
            "id": e.id,
            "financial_year": e.financial_year,
            "department": dept_name,
            "budget_head": head_name,
            "bill_number": e.bill_number,
            "bill_date": e.bill_date.isoformat(),
            "party_name": e.party_name,
            "bill_amount": amount,
            "status": e.status,
        })
        bucket = summary.setdefault(e.status, {"count": 0, "amount": 0.0})
        bucket["count"] += 1
        bucket["amount"] = round(bucket["amount"] + amount, 2)

    return ExpenditureReport(financial_year=financial_year, rows=rows, summary=summary)


# ---------------------------------------------------------------------------
# Year comparison
# ---------------------------------------------------------------------------


def compare_years(db: Session, user: User, base_year: str, compare_year: str) -> YearComparison:
    """Allocated and spent per department in two financial years side by side."""
    _check_year(base_year)
    _check_year(compare_year)
    department_id = scoped_department_id(user, None)

    merged: dict[int, dict] = {}
    for key, year in (("base", base_year), ("compare", compare_year)):
        for dept_id, name, allocated, spent in _allocation_by_department(db, year, department_id):
            entry = merged.setdefault(dept_id, {
                "name": name,
                "base_allocated": ZERO, "base_spent": ZERO,
                "compare_allocated": ZERO, "compare_spent": ZERO,
            })
            entry[f"{key}_allocated"] = allocated
            entry[f"{key}_spent"] = spent

    rows = [
        YearComparisonRow(
            department_id=dept_id,
            department_name=e["name"],
            base_allocated=to_float(e["base_allocated"]),
            base_spent=to_float(e["base_spent"]),
            compare_allocated=to_float(e["compare_allocated"]),
            compare_spent=to_float(e["compare_spent"]),
            allocated_change=to_float(e["compare_allocated"] - e["base_allocated"]),
            allocated_change_percent=safe_pct(
                e["compare_allocated"] - e["base_allocated"], e["base_allocated"]
            ),
        )
        for dept_id, e in sorted(merged.items(), key=lambda kv: kv[1]["name"])
    ]
    return YearComparison(base_year=base_year, compare_year=compare_year, rows=rows)
