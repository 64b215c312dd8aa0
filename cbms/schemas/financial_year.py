"""
Pydantic v2 schemas for financial years and their lifecycle actions.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FinancialYearCreate(BaseModel):
    """Payload for ``POST /api/financial-years``.

    ``start_date``/``end_date`` default to 1 April / 31 March of the label's
    years when omitted.
    """

    year: str = Field(..., pattern=r"^\d{4}-\d{4}$", description="e.g. '2026-2027'")
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    description: str | None = Field(default=None, max_length=2000)
    carryforward_allowed: bool = True

    @model_validator(mode="after")
    def check_dates(self) -> "FinancialYearCreate":
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    model_config = ConfigDict(
        json_schema_extra={"example": {"year": "2026-2027", "carryforward_allowed": True}}
    )


class FinancialYearUpdate(BaseModel):
    description: str | None = Field(default=None, max_length=2000)
    carryforward_allowed: bool | None = None


class FinancialYearActionRequest(BaseModel):
    remarks: str | None = Field(default=None, max_length=2000)


class FinancialYearResponse(BaseModel):
    id: int
    year: str
    start_date: dt.date
    end_date: dt.date
    status: str
    total_income_expected: float
    total_income_received: float
    total_allocated: float
    total_spent: float
    balance: float
    carryforward_amount: float
    carryforward_allowed: bool
    description: str | None
    locked_by_id: int | None
    locked_at: dt.datetime | None
    lock_remarks: str | None
    closed_by_id: int | None
    closed_at: dt.datetime | None
    closure_remarks: str | None
    created_at: dt.datetime | None = None


class FinancialYearSummary(BaseModel):
    """Breakdown of one year: income by source and allocations by department."""

    year: FinancialYearResponse
    income_by_source: dict[str, dict[str, float]]
    allocations_by_department: list[dict]
    expenditures_by_status: dict[str, dict[str, float]]
