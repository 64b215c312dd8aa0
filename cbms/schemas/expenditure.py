"""
Pydantic v2 schemas for expenditures and budget overrides.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class Attachment(BaseModel):
    """Metadata of a file previously stored through ``POST /api/files/upload``."""

    filename: str = Field(..., description="Stored path relative to the uploads directory")
    original_name: str
    mimetype: str
    size: int = Field(..., ge=0)
    url: str


class ExpenditureCreate(BaseModel):
    """Payload for ``POST /api/expenditures``.

    Attributes:
        department_id: Required for admin/office; department users always
                       book against their own department.
        override_justification: Required when the bill exceeds the remaining
                                allocation and the overspend policy is
                                ``override``.
    """

    department_id: int | None = Field(default=None, ge=1)
    budget_head_id: int = Field(..., ge=1)
    bill_number: str = Field(..., min_length=1, max_length=100)
    bill_date: dt.date
    bill_amount: float = Field(..., gt=0)
    party_name: str = Field(..., min_length=1, max_length=300)
    expense_details: str = Field(..., min_length=1, max_length=4000)
    reference_budget_register_no: str | None = Field(default=None, max_length=100)
    attachments: list[Attachment] = Field(default_factory=list)
    override_justification: str | None = Field(default=None, max_length=2000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "budget_head_id": 4,
                "bill_number": "INV-2026-0042",
                "bill_date": "2026-08-14",
                "bill_amount": 50000,
                "party_name": "Scientific Supplies Ltd",
                "expense_details": "Glassware for chemistry lab",
            }
        }
    )


class ExpenditureResubmit(BaseModel):
    """Fields overridable on resubmission; omitted ones are copied from the original."""

    resubmission_remarks: str | None = Field(
        default=None,
        max_length=2000,
        description="Mandatory; blank values are rejected with a validation error.",
    )
    bill_number: str | None = Field(default=None, min_length=1, max_length=100)
    bill_date: dt.date | None = None
    bill_amount: float | None = Field(default=None, gt=0)
    party_name: str | None = Field(default=None, min_length=1, max_length=300)
    expense_details: str | None = Field(default=None, min_length=1, max_length=4000)
    reference_budget_register_no: str | None = Field(default=None, max_length=100)
    attachments: list[Attachment] | None = None
    override_justification: str | None = Field(default=None, max_length=2000)


class ExpenditureActionRequest(BaseModel):
    remarks: str | None = Field(default=None, max_length=2000)


class ExpenditureStepResponse(BaseModel):
    id: int
    actor_id: int
    actor_name: str | None = None
    role: str
    decision: str
    remarks: str | None
    timestamp: dt.datetime


class ExpenditureResponse(BaseModel):
    id: int
    department_id: int
    department_name: str | None = None
    budget_head_id: int
    budget_head_name: str | None = None
    financial_year: str
    bill_number: str
    bill_date: dt.date
    bill_amount: float
    party_name: str
    expense_details: str
    reference_budget_register_no: str | None
    attachments: list[Attachment] = Field(default_factory=list)
    status: str
    submitted_by_id: int
    is_resubmission: bool
    original_expenditure_id: int | None
    resubmission_remarks: str | None
    override_id: int | None = None
    override_status: str | None = None
    approval_steps: list[ExpenditureStepResponse] = Field(default_factory=list)
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class ExpenditureListResponse(BaseModel):
    rows: list[ExpenditureResponse]
    total: int
    page: int
    page_size: int


class ExpenditureStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    total_amount: float
    total_approved_amount: float


# ---------------------------------------------------------------------------
# Budget overrides
# ---------------------------------------------------------------------------


class OverrideRequest(BaseModel):
    justification: str = Field(..., min_length=1, max_length=2000)


class OverrideDecision(BaseModel):
    approval_remarks: str | None = Field(default=None, max_length=2000)


class OverrideResponse(BaseModel):
    id: int
    expenditure_id: int
    allocation_id: int
    allocation_amount: float
    allocation_spent: float
    expense_amount: float
    overrun_amount: float
    justification: str
    requested_by_id: int
    status: str
    approved_by_id: int | None
    approval_remarks: str | None
    approved_at: dt.datetime | None
    rejected_at: dt.datetime | None
    created_at: dt.datetime | None = None


class OverrideListResponse(BaseModel):
    rows: list[OverrideResponse]
    total: int
    page: int
    page_size: int
