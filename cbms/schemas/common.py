"""
Shared Pydantic v2 schemas reused across multiple modules.

Provides generic filter, pagination, and message response models so that
each domain module can compose them without duplicating field definitions.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class FilterParams(BaseModel):
    """Query-level filters shared by the list endpoints.

    All fields are optional; omitting one means "no restriction on that axis".

    Attributes:
        search: Case-insensitive substring matched against the resource's
                descriptive text columns.
        status: Exact workflow status.
        department_id: Primary key of a department.
        financial_year: Label ``"YYYY-YYYY"``.
    """

    search: str | None = Field(
        default=None,
        max_length=200,
        description="Free-text search. None = no text filter.",
    )
    status: str | None = Field(
        default=None,
        max_length=30,
        description="Exact status value. None = every status.",
    )
    department_id: int | None = Field(
        default=None,
        ge=1,
        description="Department ID. None = every department visible to the caller.",
    )
    financial_year: str | None = Field(
        default=None,
        pattern=r"^\d{4}-\d{4}$",
        description="Financial year, e.g. '2025-2026'. None = every year.",
    )


class PaginationParams(BaseModel):
    """Pagination parameters for list endpoints.

    Attributes:
        page: 1-based page number.
        page_size: Number of rows per page (capped at 200 to protect DB).
    """

    page: int = Field(
        default=1,
        ge=1,
        description="Page number (1-based).",
    )
    page_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Rows per page (maximum 200).",
    )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class MessageResponse(BaseModel):
    """Generic message envelope for operations that do not return a resource.

    Attributes:
        message: Short human-readable result summary.
        detail: Optional extended information.
    """

    message: str = Field(..., description="Summary of the operation result.")
    detail: str | None = Field(
        default=None,
        description="Additional information (context, hint, etc.).",
    )
