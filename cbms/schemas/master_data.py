"""
Pydantic v2 schemas for master data: departments, budget heads and categories.

These feed dropdowns on the client and are referenced by every
workflow document.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cbms.schemas.allocation import AllocationResponse
from cbms.schemas.expenditure import ExpenditureResponse
from cbms.utils.constants import BUDGET_HEAD_CATEGORIES


# ---------------------------------------------------------------------------
# Department
# ---------------------------------------------------------------------------


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    code: str = Field(..., min_length=1, max_length=20)
    description: str | None = None
    hod_id: int | None = Field(default=None, ge=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Computer Science",
                "code": "CSE",
                "description": "Department of Computer Science and Engineering",
            }
        }
    )


class DepartmentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=200)
    code: str | None = Field(default=None, min_length=1, max_length=20)
    description: str | None = None
    hod_id: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class DepartmentResponse(BaseModel):
    id: int
    name: str
    code: str
    description: str | None
    hod_id: int | None
    is_active: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Budget head
# ---------------------------------------------------------------------------


def _check_category(value: str | None) -> str | None:
    if value is not None and value not in BUDGET_HEAD_CATEGORIES:
        raise ValueError(f"category must be one of {BUDGET_HEAD_CATEGORIES}")
    return value


class BudgetHeadCreate(BaseModel):
    """Payload for ``POST /api/budget-heads``.

    Attributes:
        department_id: Restrict the head to one department; omit for a
                       college-wide head.
    """

    name: str = Field(..., min_length=2, max_length=200)
    code: str = Field(..., min_length=1, max_length=30)
    category: str = Field(default="other", description=f"One of {BUDGET_HEAD_CATEGORIES}")
    description: str | None = None
    department_id: int | None = Field(default=None, ge=1)

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str | None) -> str | None:
        return _check_category(value)


class BudgetHeadUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=200)
    code: str | None = Field(default=None, min_length=1, max_length=30)
    category: str | None = None
    description: str | None = None
    department_id: int | None = Field(default=None, ge=1)
    is_active: bool | None = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str | None) -> str | None:
        return _check_category(value)


class BudgetHeadResponse(BaseModel):
    id: int
    name: str
    code: str
    category: str
    description: str | None
    department_id: int | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    code: str = Field(..., min_length=1, max_length=50)
    description: str | None = None


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    code: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = None
    is_active: bool | None = None


class CategoryResponse(BaseModel):
    id: int
    name: str
    code: str
    description: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class DepartmentUserCount(BaseModel):
    department_id: int
    department_name: str
    user_count: int


class DepartmentStatsResponse(BaseModel):
    total_departments: int
    active_departments: int
    inactive_departments: int
    departments_with_hod: int
    user_distribution: list[DepartmentUserCount]


class CategoryCount(BaseModel):
    category: str
    count: int


class BudgetHeadStatsResponse(BaseModel):
    total_budget_heads: int
    active_budget_heads: int
    inactive_budget_heads: int
    by_category: list[CategoryCount]


class DepartmentSummary(BaseModel):
    total_allocated: float
    total_spent: float
    total_remaining: float
    utilization_percent: float
    allocation_count: int
    expenditure_count: int


class BudgetHeadBreakdown(BaseModel):
    budget_head_id: int
    budget_head_code: str
    budget_head_name: str
    allocated: float
    spent: float
    remaining: float
    utilization_percent: float


class YearFigures(BaseModel):
    total_allocated: float
    total_spent: float
    utilization_percent: float
    expenditure_count: int


class DepartmentYearComparison(BaseModel):
    """Requested year against the year before it.

    ``allocated_change_percent`` and ``spent_change_percent`` are 0 when the
    previous figure is 0; ``utilization_change`` is in percentage points.
    """

    previous_year: str
    current_year: str
    previous: YearFigures
    current: YearFigures
    allocated_change_percent: float
    spent_change_percent: float
    utilization_change: float


class DepartmentDetailResponse(BaseModel):
    department: DepartmentResponse
    financial_year: str
    summary: DepartmentSummary
    allocations: list[AllocationResponse]
    expenditures: list[ExpenditureResponse]
    status_breakdown: dict[str, int]
    budget_head_breakdown: list[BudgetHeadBreakdown]
    year_comparison: DepartmentYearComparison
