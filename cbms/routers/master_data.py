"""
Master data routers: departments, budget heads and categories.

Three routers are exported and mounted by ``main.py``:

- ``departments_router``  under ``/api/departments``
- ``budget_heads_router`` under ``/api/budget-heads``
- ``categories_router``   under ``/api/categories``

Any authenticated user may read; admin and office create and update; only
admin deletes.  Deleting an entity still referenced elsewhere answers 422.
Department statistics are limited to the college-wide roles; department
detail is open to those roles and to the department's own users.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.schemas.master_data import (
    BudgetHeadCreate,
    BudgetHeadResponse,
    BudgetHeadStatsResponse,
    BudgetHeadUpdate,
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    DepartmentCreate,
    DepartmentDetailResponse,
    DepartmentResponse,
    DepartmentStatsResponse,
    DepartmentUpdate,
)
from cbms.services import master_data_service
from cbms.services.auth_service import get_current_user, require_role

logger = logging.getLogger(__name__)

departments_router = APIRouter(tags=["Departments"])
budget_heads_router = APIRouter(tags=["Budget Heads"])
categories_router = APIRouter(tags=["Categories"])

_Reader = Annotated[User, Depends(get_current_user)]
_Editor = Annotated[User, Depends(require_role("admin", "office"))]
_Admin = Annotated[User, Depends(require_role("admin"))]
_Overseer = Annotated[
    User, Depends(require_role("admin", "principal", "vice_principal", "office", "auditor"))
]
_DB = Annotated[Session, Depends(get_db)]


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------


@departments_router.get("/", response_model=list[DepartmentResponse], summary="List departments")
def list_departments(
    db: _DB,
    _current_user: _Reader,
    search: Annotated[str | None, Query(max_length=200)] = None,
    active_only: Annotated[bool, Query(description="Only active departments")] = False,
) -> list[DepartmentResponse]:
    return master_data_service.list_departments(db, search, active_only)


@departments_router.get(
    "/stats",
    response_model=DepartmentStatsResponse,
    summary="Department statistics",
    description="Active, inactive and HOD counts plus active users per department.",
)
def department_stats(db: _DB, _current_user: _Overseer) -> DepartmentStatsResponse:
    return master_data_service.get_department_stats(db)


@departments_router.get(
    "/{department_id}/detail",
    response_model=DepartmentDetailResponse,
    summary="Department budget detail",
    description=(
        "Allocations, expenditures, status and budget head breakdowns for one "
        "year, compared with the previous year. Defaults to the current year."
    ),
    responses={403: {"description": "Department users may only open their own department."}},
)
def department_detail(
    department_id: int,
    db: _DB,
    current_user: _Reader,
    financial_year: Annotated[str | None, Query(pattern=r"^\d{4}-\d{4}$")] = None,
) -> DepartmentDetailResponse:
    return master_data_service.get_department_detail(db, department_id, current_user, financial_year)


@departments_router.get("/{department_id}", response_model=DepartmentResponse, summary="Get a department")
def get_department(department_id: int, db: _DB, _current_user: _Reader) -> DepartmentResponse:
    return DepartmentResponse.model_validate(master_data_service.get_department_row(db, department_id))


@departments_router.post(
    "/",
    response_model=DepartmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a department",
)
def create_department(body: DepartmentCreate, db: _DB, current_user: _Editor) -> DepartmentResponse:
    return master_data_service.create_department(db, body, current_user)


@departments_router.put("/{department_id}", response_model=DepartmentResponse, summary="Update a department")
def update_department(
    department_id: int, body: DepartmentUpdate, db: _DB, current_user: _Editor
) -> DepartmentResponse:
    return master_data_service.update_department(db, department_id, body, current_user)


@departments_router.delete(
    "/{department_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a department"
)
def delete_department(department_id: int, db: _DB, current_user: _Admin) -> None:
    master_data_service.delete_department(db, department_id, current_user)


# ---------------------------------------------------------------------------
# Budget heads
# ---------------------------------------------------------------------------


@budget_heads_router.get(
    "/",
    response_model=list[BudgetHeadResponse],
    summary="List budget heads",
    description="Filtering by department also returns the college-wide heads (no department).",
)
def list_budget_heads(
    db: _DB,
    _current_user: _Reader,
    search: Annotated[str | None, Query(max_length=200)] = None,
    department_id: Annotated[int | None, Query(ge=1)] = None,
    category: Annotated[str | None, Query(max_length=50)] = None,
    active_only: bool = False,
) -> list[BudgetHeadResponse]:
    return master_data_service.list_budget_heads(db, search, department_id, category, active_only)


@budget_heads_router.get(
    "/stats",
    response_model=BudgetHeadStatsResponse,
    summary="Budget head statistics",
    description="Active and inactive counts plus the number of heads per category.",
)
def budget_head_stats(db: _DB, _current_user: _Reader) -> BudgetHeadStatsResponse:
    return master_data_service.get_budget_head_stats(db)


@budget_heads_router.get("/{head_id}", response_model=BudgetHeadResponse, summary="Get a budget head")
def get_budget_head(head_id: int, db: _DB, _current_user: _Reader) -> BudgetHeadResponse:
    return BudgetHeadResponse.model_validate(master_data_service.get_budget_head_row(db, head_id))


@budget_heads_router.post(
    "/",
    response_model=BudgetHeadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a budget head",
)
def create_budget_head(body: BudgetHeadCreate, db: _DB, current_user: _Editor) -> BudgetHeadResponse:
    return master_data_service.create_budget_head(db, body, current_user)


@budget_heads_router.put("/{head_id}", response_model=BudgetHeadResponse, summary="Update a budget head")
def update_budget_head(
    head_id: int, body: BudgetHeadUpdate, db: _DB, current_user: _Editor
) -> BudgetHeadResponse:
    return master_data_service.update_budget_head(db, head_id, body, current_user)


@budget_heads_router.delete("/{head_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a budget head")
def delete_budget_head(head_id: int, db: _DB, current_user: _Admin) -> None:
    master_data_service.delete_budget_head(db, head_id, current_user)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


@categories_router.get("/", response_model=list[CategoryResponse], summary="List categories")
def list_categories(db: _DB, _current_user: _Reader, active_only: bool = False) -> list[CategoryResponse]:
    return master_data_service.list_categories(db, active_only)


@categories_router.get("/{category_id}", response_model=CategoryResponse, summary="Get a category")
def get_category(category_id: int, db: _DB, _current_user: _Reader) -> CategoryResponse:
    return master_data_service.get_category(db, category_id)


@categories_router.post(
    "/",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a category",
)
def create_category(body: CategoryCreate, db: _DB, current_user: _Editor) -> CategoryResponse:
    return master_data_service.create_category(db, body, current_user)


@categories_router.put("/{category_id}", response_model=CategoryResponse, summary="Update a category")
def update_category(
    category_id: int, body: CategoryUpdate, db: _DB, current_user: _Editor
) -> CategoryResponse:
    return master_data_service.update_category(db, category_id, body, current_user)


@categories_router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a category")
def delete_category(category_id: int, db: _DB, current_user: _Admin) -> None:
    master_data_service.delete_category(db, category_id, current_user)
