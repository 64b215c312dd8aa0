"""
Notifications service layer.

Two responsibilities:

1. **Fan-out helpers** (``notify_users`` and ``notify_roles``), called by
   the workflow services to tell the people who must act next.  They only
   ``add`` rows; the caller's commit persists them together with the
   change that triggered them.

2. **Inbox queries**: listing, unread count and marking as read for the
   ``/api/notifications`` endpoints.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from cbms.exceptions import NotFound
from cbms.models.notification import Notification
from cbms.models.user import User
from cbms.schemas.common import PaginationParams
from cbms.schemas.notification import NotificationListResponse, NotificationResponse

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


def notify_users(
    db: Session,
    user_ids: Iterable[int | None],
    title: str,
    message: str,
    type: str = "system",
    link: str | None = None,
) -> int:
    """Queue one notification per distinct, non-null user ID. Returns the count."""
    count = 0
    for user_id in {uid for uid in user_ids if uid is not None}:
        db.add(Notification(user_id=user_id, title=title, message=message, type=type, link=link))
        count += 1
    logger.debug("notify_users: %d notifications type=%s title=%r", count, type, title)
    return count


def notify_roles(
    db: Session,
    roles: Iterable[str],
    title: str,
    message: str,
    type: str = "system",
    link: str | None = None,
    department_id: int | None = None,
) -> int:
    """Notify every active user holding one of *roles*.

    When *department_id* is given, department-scoped roles (``hod``,
    ``department``) are narrowed to that department; institution-wide
    roles are always included.
    """
    roles = list(roles)
    users = db.query(User).filter(User.role.in_(roles), User.is_active.is_(True)).all()
    recipients = [
        u.id for u in users
        if department_id is None
        or u.role not in ("hod", "department")
        or u.department_id == department_id
    ]
    return notify_users(db, recipients, title, message, type=type, link=link)


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------


def list_notifications(
    db: Session,
    user: User,
    pagination: PaginationParams,
    unread_only: bool = False,
) -> NotificationListResponse:
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    rows = (
        q.order_by(Notification.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return NotificationListResponse(
        rows=[NotificationResponse.model_validate(r) for r in rows],
        total=total,
        unread=unread_count(db, user),
        page=pagination.page,
        page_size=pagination.page_size,
    )


def unread_count(db: Session, user: User) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .count()
    )


def mark_read(db: Session, user: User, notification_id: int) -> NotificationResponse:
    row: Notification | None = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if row is None:
        raise NotFound("Notification", notification_id)
    if not row.is_read:
        row.is_read = True
        row.read_at = _now()
        db.commit()
        db.refresh(row)
    return NotificationResponse.model_validate(row)


def mark_all_read(db: Session, user: User) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({"is_read": True, "read_at": _now()}, synchronize_session=False)
    )
    db.commit()
    logger.info("mark_all_read: user_id=%d updated=%d", user.id, updated)
    return updated


def delete_notification(db: Session, user: User, notification_id: int) -> None:
    row = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if row is None:
        raise NotFound("Notification", notification_id)
    db.delete(row)
    db.commit()
