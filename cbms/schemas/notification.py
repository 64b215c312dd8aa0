"""
Pydantic v2 schemas for in-app notifications.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    link: str | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    rows: list[NotificationResponse]
    total: int
    unread: int
    page: int
    page_size: int


class UnreadCountResponse(BaseModel):
    unread: int
