"""
Pydantic v2 schemas for dashboard and report endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel


class DepartmentBreakdown(BaseModel):
    department_id: int
    department_name: str
    allocated: float
    spent: float
    remaining: float
    utilization_percent: float


class DashboardResponse(BaseModel):
    """Top-level KPI cards for one financial year.

    Attributes:
        pending_approvals: Proposals awaiting verify/approve plus
                           expenditures pending or verified.
    """

    financial_year: str
    total_allocated: float
    total_spent: float
    total_remaining: float
    utilization_percent: float
    income_expected: float
    income_received: float
    proposals_by_status: dict[str, int]
    expenditures_by_status: dict[str, int]
    pending_approvals: int
    departments: list[DepartmentBreakdown]


class ConsolidatedRow(BaseModel):
    department_id: int
    department_name: str
    budget_head_id: int
    budget_head_name: str
    proposed: float
    allocated: float
    spent: float
    remaining: float
    utilization_percent: float


class ConsolidatedReport(BaseModel):
    financial_year: str
    rows: list[ConsolidatedRow]
    totals: dict[str, float]


class ProposalReportRow(BaseModel):
    proposal_id: int
    department_name: str
    financial_year: str
    status: str
    item_count: int
    total_proposed_amount: float
    submitted_date: str | None
    approved_date: str | None


class ExpenditureReport(BaseModel):
    financial_year: str | None
    rows: list[dict]
    summary: dict[str, dict[str, float]]


class YearComparisonRow(BaseModel):
    department_id: int
    department_name: str
    base_allocated: float
    base_spent: float
    compare_allocated: float
    compare_spent: float
    allocated_change: float
    allocated_change_percent: float


class YearComparison(BaseModel):
    base_year: str
    compare_year: str
    rows: list[YearComparisonRow]
