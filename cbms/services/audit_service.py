"""
Audit trail service.

``record`` adds an ``AuditLog`` row to the caller's session without
committing, so the entry lands in the same transaction as the change it
describes and disappears with it on rollback.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from cbms.models.audit_log import AuditLog
from cbms.models.user import User
from cbms.schemas.audit_log import AuditLogListResponse, AuditLogResponse, AuditLogStats
from cbms.schemas.common import PaginationParams

logger = logging.getLogger(__name__)


def _jsonable(values: dict[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (datetime, date)):
            out[key] = value.isoformat()
        elif value is None or isinstance(value, (str, int, float, bool, list, dict)):
            out[key] = value
        else:
            # Decimal and anything else exotic
            out[key] = str(value)
    return out


def record(
    db: Session,
    event_type: str,
    actor: User | None,
    target_entity: str,
    target_id: int | None,
    details: dict[str, Any] | None = None,
    previous_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    ip_address: str | None = None,
) -> AuditLog:
    entry = AuditLog(
        event_type=event_type,
        actor_id=actor.id if actor is not None else None,
        actor_role=actor.role if actor is not None else None,
        target_entity=target_entity,
        target_id=target_id,
        details=_jsonable(details),
        previous_values=_jsonable(previous_values),
        new_values=_jsonable(new_values),
        ip_address=ip_address,
    )
    db.add(entry)
    logger.debug("audit: %s %s#%s by %s", event_type, target_entity, target_id, entry.actor_id)
    return entry


def list_logs(
    db: Session,
    pagination: PaginationParams,
    event_type: str | None = None,
    target_entity: str | None = None,
    target_id: int | None = None,
    actor_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> AuditLogListResponse:
    q = db.query(AuditLog)
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if target_entity:
        q = q.filter(AuditLog.target_entity == target_entity)
    if target_id is not None:
        q = q.filter(AuditLog.target_id == target_id)
    if actor_id is not None:
        q = q.filter(AuditLog.actor_id == actor_id)
    if date_from is not None:
        q = q.filter(AuditLog.created_at >= datetime.combine(date_from, time.min))
    if date_to is not None:
        q = q.filter(AuditLog.created_at <= datetime.combine(date_to, time.max))

    total = q.count()
    rows = (
        q.order_by(AuditLog.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return AuditLogListResponse(
        rows=[AuditLogResponse.model_validate(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_stats(db: Session) -> AuditLogStats:
    by_event = dict(
        db.query(AuditLog.event_type, func.count(AuditLog.id))
        .group_by(AuditLog.event_type)
        .all()
    )
    by_entity = dict(
        db.query(AuditLog.target_entity, func.count(AuditLog.id))
        .group_by(AuditLog.target_entity)
        .all()
    )
    return AuditLogStats(
        total=sum(by_event.values()),
        by_event_type=by_event,
        by_entity=by_entity,
    )
