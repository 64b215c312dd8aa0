"""
Query-string dependencies shared by the list endpoints.

``Depends(filter_params)`` and ``Depends(pagination_params)`` keep the
parameter names, limits and OpenAPI descriptions identical across every
resource.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Query

from cbms.schemas.common import FilterParams, PaginationParams


def filter_params(
    search: Annotated[
        str | None,
        Query(description="Free-text search. Omit for no text filter.", max_length=200),
    ] = None,
    status: Annotated[
        str | None,
        Query(description="Exact status value. Omit for every status.", max_length=30),
    ] = None,
    department_id: Annotated[
        int | None,
        Query(description="Department ID. Omit for every visible department.", ge=1),
    ] = None,
    financial_year: Annotated[
        str | None,
        Query(description="Financial year, e.g. '2026-2027'.", pattern=r"^\d{4}-\d{4}$"),
    ] = None,
) -> FilterParams:
    """Assemble a ``FilterParams`` instance from URL query parameters."""
    return FilterParams(
        search=search,
        status=status,
        department_id=department_id,
        financial_year=financial_year,
    )


def pagination_params(
    page: Annotated[int, Query(description="Page number (1-based).", ge=1)] = 1,
    page_size: Annotated[
        int, Query(description="Rows per page (maximum 200).", ge=1, le=200)
    ] = 20,
) -> PaginationParams:
    """Assemble a ``PaginationParams`` instance from URL query parameters."""
    return PaginationParams(page=page, page_size=page_size)
