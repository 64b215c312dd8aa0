"""
User administration router (admin only).

Mounts under ``/api/users``.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import pagination_params
from cbms.schemas.auth import UserResponse
from cbms.schemas.common import PaginationParams
from cbms.schemas.user import UserCreate, UserListResponse, UserUpdate
from cbms.services import user_service
from cbms.services.auth_service import require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])

_Admin = Annotated[User, Depends(require_role("admin"))]


@router.get("/", response_model=UserListResponse, summary="List users")
def list_users(
    pagination: Annotated[PaginationParams, Depends(pagination_params)],
    db: Annotated[Session, Depends(get_db)],
    _current_user: _Admin,
    search: Annotated[str | None, Query(max_length=200)] = None,
    role: Annotated[str | None, Query(max_length=30)] = None,
    department_id: Annotated[int | None, Query(ge=1)] = None,
) -> UserListResponse:
    return user_service.list_users(db, pagination, search, role, department_id)


@router.get("/{user_id}", response_model=UserResponse, summary="Get a user")
def get_user(
    user_id: int,
    db: Annotated[Session, Depends(get_db)],
    _current_user: _Admin,
) -> UserResponse:
    return user_service.get_user(db, user_id)


@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
    responses={422: {"description": "Duplicate e-mail, bad role or missing department."}},
)
def create_user(
    body: UserCreate,
    db: Annotated[Session, Depends(get_db)],
    current_user: _Admin,
) -> UserResponse:
    return user_service.create_user(db, body, current_user)


@router.put("/{user_id}", response_model=UserResponse, summary="Update a user")
def update_user(
    user_id: int,
    body: UserUpdate,
    db: Annotated[Session, Depends(get_db)],
    current_user: _Admin,
) -> UserResponse:
    return user_service.update_user(db, user_id, body, current_user)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate a user",
    description="Users are never hard-deleted; the account is marked inactive.",
)
def deactivate_user(
    user_id: int,
    db: Annotated[Session, Depends(get_db)],
    current_user: _Admin,
) -> None:
    user_service.deactivate_user(db, user_id, current_user)
