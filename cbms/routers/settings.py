"""
Runtime settings router.

Mounts under ``/api/settings``.  Business rules such as the overspend policy
and the vice principal's approval limit are stored in the ``setting`` table,
falling back to the environment configuration when no row exists.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.schemas.settings import SettingResponse, SettingUpdate
from cbms.services import settings_service
from cbms.services.auth_service import get_current_user, require_role

router = APIRouter(tags=["Settings"])


@router.get("/", response_model=list[SettingResponse], summary="List settings")
def list_settings(
    db: Annotated[Session, Depends(get_db)],
    _current_user: Annotated[User, Depends(get_current_user)],
) -> list[SettingResponse]:
    return settings_service.list_settings(db)


@router.get("/{key}", response_model=SettingResponse, summary="Get one setting")
def get_setting(
    key: str,
    db: Annotated[Session, Depends(get_db)],
    _current_user: Annotated[User, Depends(get_current_user)],
) -> SettingResponse:
    return settings_service.get_setting(db, key)


@router.put(
    "/{key}",
    response_model=SettingResponse,
    summary="Update a setting (admin)",
    responses={422: {"description": "Unknown key or invalid value."}},
)
def update_setting(
    key: str,
    body: SettingUpdate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role("admin"))],
) -> SettingResponse:
    return settings_service.update_setting(db, key, body.value, current_user, body.description)
