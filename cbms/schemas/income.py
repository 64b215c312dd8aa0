"""
Pydantic v2 schemas for income entries.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field, field_validator

from cbms.utils.constants import INCOME_CATEGORIES, INCOME_SOURCES


def _check_choice(value: str | None, allowed: list[str], name: str) -> str | None:
    if value is not None and value not in allowed:
        raise ValueError(f"{name} must be one of {allowed}")
    return value


class IncomeCreate(BaseModel):
    financial_year: str = Field(..., pattern=r"^\d{4}-\d{4}$")
    source: str = Field(..., description=f"One of {INCOME_SOURCES}")
    category: str = Field(default="recurring", description=f"One of {INCOME_CATEGORIES}")
    amount: float = Field(..., gt=0)
    expected_date: dt.date | None = None
    received_date: dt.date | None = None
    status: str = Field(default="expected", description="'expected' or 'received'")
    reference_number: str | None = Field(default=None, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    remarks: str | None = Field(default=None, max_length=2000)

    @field_validator("source")
    @classmethod
    def validate_source(cls, value: str) -> str:
        return _check_choice(value, INCOME_SOURCES, "source")

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str) -> str:
        return _check_choice(value, INCOME_CATEGORIES, "category")

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        # Verification goes through POST /income/{id}/verify
        return _check_choice(value, ["expected", "received"], "status")


class IncomeUpdate(BaseModel):
    source: str | None = None
    category: str | None = None
    amount: float | None = Field(default=None, gt=0)
    expected_date: dt.date | None = None
    received_date: dt.date | None = None
    status: str | None = None
    reference_number: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, min_length=1, max_length=2000)
    remarks: str | None = Field(default=None, max_length=2000)

    @field_validator("source")
    @classmethod
    def validate_source(cls, value: str | None) -> str | None:
        return _check_choice(value, INCOME_SOURCES, "source")

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str | None) -> str | None:
        return _check_choice(value, INCOME_CATEGORIES, "category")

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _check_choice(value, ["expected", "received"], "status")


class IncomeVerifyRequest(BaseModel):
    remarks: str | None = Field(default=None, max_length=2000)


class IncomeResponse(BaseModel):
    id: int
    financial_year: str
    source: str
    category: str
    amount: float
    expected_date: dt.date | None
    received_date: dt.date | None
    status: str
    reference_number: str | None
    description: str
    remarks: str | None
    verified_by_id: int | None
    verified_at: dt.datetime | None
    created_by_id: int
    created_at: dt.datetime | None = None


class IncomeListResponse(BaseModel):
    rows: list[IncomeResponse]
    total: int
    page: int
    page_size: int


class IncomeStatsResponse(BaseModel):
    """Income totals for one financial year, split by source and status."""

    financial_year: str | None
    total_expected: float
    total_received: float
    total_verified: float
    by_source: dict[str, float]
    by_status: dict[str, int]

