"""
Pydantic v2 schemas for the amount-reconciliation read model.

Every response carries ``computed_at`` and ``refresh_after_seconds``: the
figures are advisory snapshots, and clients re-request them on that interval
or on demand while a proposal is being drafted or reviewed.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ReconciliationFigures(BaseModel):
    """Historic and current-year figures for a department (optionally one head).

    Attributes:
        previous_financial_year: Last completed year, two before the proposal's year.
        current_financial_year: Year containing today's date.
        prev_year_allocated: Sum of allocations in the previous year.
        prev_year_spent: Sum of ``spent_amount`` of those allocations.
        prev_year_balance: ``prev_year_allocated - prev_year_spent``.
        current_year_spent: Sum of bill amounts booked this year, any status.
    """

    department_id: int
    department_name: str | None = None
    budget_head_id: int | None = None
    budget_head_name: str | None = None
    previous_financial_year: str
    current_financial_year: str
    prev_year_allocated: float
    prev_year_spent: float
    prev_year_balance: float
    current_year_spent: float


class ReconciliationResponse(BaseModel):
    financial_year: str
    figures: list[ReconciliationFigures]
    computed_at: datetime
    refresh_after_seconds: int
    advisory: bool = Field(default=True, description="Figures may be stale; not authoritative")


class ProposalStatsItem(BaseModel):
    item_id: int
    position: int
    proposed_amount: float
    figures: ReconciliationFigures


class ProposalReconciliationResponse(BaseModel):
    """Per-item and department-wide figures for one proposal."""

    proposal_id: int
    financial_year: str
    department: ReconciliationFigures
    items: list[ProposalStatsItem]
    computed_at: datetime
    refresh_after_seconds: int
    advisory: bool = True
