"""
Notification inbox router.

Mounts under ``/api/notifications``.  Every endpoint acts on the caller's own
notifications only.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import pagination_params
from cbms.schemas.common import MessageResponse, PaginationParams
from cbms.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from cbms.services import notification_service
from cbms.services.auth_service import get_current_user

router = APIRouter(tags=["Notifications"])

_DB = Annotated[Session, Depends(get_db)]
_User = Annotated[User, Depends(get_current_user)]


@router.get("/", response_model=NotificationListResponse, summary="List my notifications")
def list_notifications(
    pagination: Annotated[PaginationParams, Depends(pagination_params)],
    db: _DB,
    current_user: _User,
    unread_only: bool = False,
) -> NotificationListResponse:
    return notification_service.list_notifications(db, current_user, pagination, unread_only)


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread notification count")
def unread_count(db: _DB, current_user: _User) -> UnreadCountResponse:
    return UnreadCountResponse(unread=notification_service.unread_count(db, current_user))


@router.put("/read-all", response_model=MessageResponse, summary="Mark all notifications read")
def mark_all_read(db: _DB, current_user: _User) -> MessageResponse:
    updated = notification_service.mark_all_read(db, current_user)
    return MessageResponse(message="Notifications marked as read.", detail=f"{updated} updated")


@router.put("/{notification_id}/read", response_model=NotificationResponse, summary="Mark one notification read")
def mark_read(notification_id: int, db: _DB, current_user: _User) -> NotificationResponse:
    return notification_service.mark_read(db, current_user, notification_id)


@router.delete(
    "/{notification_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a notification"
)
def delete_notification(notification_id: int, db: _DB, current_user: _User) -> None:
    notification_service.delete_notification(db, current_user, notification_id)
