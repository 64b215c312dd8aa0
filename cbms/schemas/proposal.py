"""
Pydantic v2 schemas for budget proposals and their workflow actions.

Input items are intentionally permissive (budget head, amount and
justification may be blank while a proposal is a draft); completeness is
checked by ``proposal_service.submit_proposal`` so that every offending
item can be reported at once.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ProposalItemIn(BaseModel):
    """One proposal line as sent by the client.

    Attributes:
        budget_head_id: Head the amount is requested under.
        proposed_amount: Requested amount; must be > 0 to submit.
        justification: Why the money is needed; required to submit.
        previous_year_utilization: Informational figure from the proposer.
    """

    budget_head_id: int | None = Field(default=None, ge=1)
    proposed_amount: float = Field(default=0, ge=0)
    justification: str | None = Field(default=None, max_length=2000)
    previous_year_utilization: float = Field(default=0, ge=0)


class ProposalCreate(BaseModel):
    financial_year: str = Field(..., pattern=r"^\d{4}-\d{4}$", description="e.g. '2025-2026'")
    department_id: int | None = Field(
        default=None,
        ge=1,
        description="Required for admin/office; department users always use their own.",
    )
    items: list[ProposalItemIn] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=4000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "financial_year": "2026-2027",
                "department_id": 1,
                "items": [
                    {"budget_head_id": 1, "proposed_amount": 10000, "justification": "Lab consumables"},
                    {"budget_head_id": 2, "proposed_amount": 5000, "justification": "Seminar series"},
                ],
                "notes": "Annual proposal",
            }
        }
    )


class ProposalUpdate(BaseModel):
    """Partial update; ``items`` replaces the whole item list when supplied."""

    items: list[ProposalItemIn] | None = None
    notes: str | None = Field(default=None, max_length=4000)


class ProposalActionRequest(BaseModel):
    remarks: str | None = Field(default=None, max_length=2000)


class ProposalRejectRequest(BaseModel):
    rejection_reason: str | None = Field(
        default=None,
        max_length=2000,
        description="Mandatory; blank values are rejected with a validation error.",
    )


class ProposalResubmitRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=4000)


class ProposalItemResponse(BaseModel):
    id: int
    position: int
    budget_head_id: int | None
    budget_head_name: str | None = None
    proposed_amount: float
    justification: str | None
    previous_year_utilization: float
    allocation_id: int | None


class ApprovalStepResponse(BaseModel):
    id: int
    actor_id: int
    actor_name: str | None = None
    role: str
    decision: str
    remarks: str | None
    timestamp: datetime


class ProposalResponse(BaseModel):
    id: int
    financial_year: str
    department_id: int
    department_name: str | None = None
    status: str
    total_proposed_amount: float
    notes: str | None
    submitted_date: datetime | None
    approved_date: datetime | None
    approved_by_id: int | None
    rejection_reason: str | None
    submitted_by_id: int
    last_modified_by_id: int | None
    original_proposal_id: int | None
    items: list[ProposalItemResponse] = Field(default_factory=list)
    approval_steps: list[ApprovalStepResponse] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProposalListResponse(BaseModel):
    rows: list[ProposalResponse]
    total: int
    page: int
    page_size: int


class ProposalStatsResponse(BaseModel):
    """Counts per status plus the total of approved proposals."""

    total: int
    by_status: dict[str, int]
    total_approved_amount: float


class AllocateResult(BaseModel):
    """Outcome of allocating every item of an approved proposal.

    Attributes:
        created: Allocation IDs created by this call.
        skipped: Items not allocated, each ``{item_id, reason}``.
    """

    proposal_id: int
    created: list[int]
    skipped: list[dict]
