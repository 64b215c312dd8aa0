"""
Pydantic v2 schemas for allocations and allocation amendments.

Department, budget head and financial year are fixed at creation;
``AllocationUpdate`` therefore only exposes the amount and remarks.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AllocationCreate(BaseModel):
    financial_year: str = Field(..., pattern=r"^\d{4}-\d{4}$")
    department_id: int = Field(..., ge=1)
    budget_head_id: int = Field(..., ge=1)
    allocated_amount: float = Field(..., ge=0)
    remarks: str | None = Field(default=None, max_length=2000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "financial_year": "2026-2027",
                "department_id": 1,
                "budget_head_id": 4,
                "allocated_amount": 100000,
                "remarks": "Approved in budget committee",
            }
        }
    )


class AllocationUpdate(BaseModel):
    allocated_amount: float | None = Field(default=None, ge=0)
    remarks: str | None = Field(default=None, max_length=2000)


class AllocationResponse(BaseModel):
    """Allocation with its derived figures.

    Attributes:
        remaining_amount: ``allocated_amount - spent_amount``; negative when
                          an over-budget bill was let through.
        available_amount: ``max(0, remaining_amount)``, the user-facing figure.
        utilization_percent: ``spent / allocated * 100``.
    """

    id: int
    financial_year: str
    department_id: int
    department_name: str | None = None
    budget_head_id: int
    budget_head_name: str | None = None
    allocated_amount: float
    spent_amount: float
    remaining_amount: float
    available_amount: float
    utilization_percent: float
    status: str
    remarks: str | None
    source_proposal_id: int | None
    created_by_id: int | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AllocationListResponse(BaseModel):
    rows: list[AllocationResponse]
    total: int
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Amendments
# ---------------------------------------------------------------------------


class AmendmentCreate(BaseModel):
    allocation_id: int = Field(..., ge=1)
    requested_amount: float = Field(..., ge=0)
    change_reason: str = Field(..., min_length=1, max_length=2000)


class AmendmentDecision(BaseModel):
    approval_remarks: str | None = Field(default=None, max_length=2000)


class AmendmentResponse(BaseModel):
    id: int
    allocation_id: int
    original_amount: float
    requested_amount: float
    change_amount: float
    change_percent: int
    change_reason: str
    requested_by_id: int
    status: str
    approved_by_id: int | None
    approval_remarks: str | None
    approved_at: datetime | None
    rejected_at: datetime | None
    created_at: datetime | None = None


class AmendmentListResponse(BaseModel):
    rows: list[AmendmentResponse]
    total: int
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Bulk creation
# ---------------------------------------------------------------------------


class AllocationBulkCreate(BaseModel):
    allocations: list[AllocationCreate] = Field(..., min_length=1, max_length=500)


class BulkRowError(BaseModel):
    """A refused row; ``row`` is 1-based in the submitted order."""

    row: int
    error: str
    data: dict | None = None


class AllocationBulkResponse(BaseModel):
    created: int
    total: int
    allocation_ids: list[int]
    errors: list[BulkRowError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# History and rollback
# ---------------------------------------------------------------------------


class AllocationSnapshot(BaseModel):
    financial_year: str
    department_id: int
    budget_head_id: int
    allocated_amount: float
    spent_amount: float
    remarks: str | None = None


class AllocationHistoryResponse(BaseModel):
    id: int
    allocation_id: int
    version: int
    change_type: str
    snapshot: AllocationSnapshot
    previous_amount: float | None
    new_amount: float
    previous_remarks: str | None
    new_remarks: str | None
    change_reason: str | None
    changed_by_id: int | None
    changed_by_name: str | None = None
    changed_at: datetime | None = None


class AllocationHistoryListResponse(BaseModel):
    rows: list[AllocationHistoryResponse]
    total: int
    page: int
    page_size: int


class RollbackRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class RollbackResponse(BaseModel):
    allocation: AllocationResponse
    rolled_back_to: int
    version: int


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class AllocationDepartmentStats(BaseModel):
    department_id: int
    department_name: str
    total_allocated: float
    total_spent: float
    remaining: float
    utilization_percent: float


class AllocationStatsResponse(BaseModel):
    """Totals over the allocations visible to the caller.

    Attributes:
        financial_year: Year filter applied, ``None`` for every year.
        by_department: One entry per department, ordered by name.
    """

    financial_year: str | None
    total_allocations: int
    total_allocated: float
    total_spent: float
    remaining: float
    utilization_percent: float
    by_department: list[AllocationDepartmentStats]
