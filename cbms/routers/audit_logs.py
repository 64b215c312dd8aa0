"""
Audit log router (admin, auditor, principal).

Mounts under ``/api/audit-logs``.  Entries are written by the services in
the same transaction as the change they describe; this router only reads.
"""

from __future__ import annotations

import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.models.user import User
from cbms.routers.deps import pagination_params
from cbms.schemas.audit_log import AuditLogListResponse, AuditLogStats
from cbms.schemas.common import PaginationParams
from cbms.services import audit_service
from cbms.services.auth_service import require_role

router = APIRouter(tags=["Audit Logs"])

_Auditor = Annotated[User, Depends(require_role("admin", "auditor", "principal"))]


@router.get("/", response_model=AuditLogListResponse, summary="List audit log entries")
def list_logs(
    pagination: Annotated[PaginationParams, Depends(pagination_params)],
    db: Annotated[Session, Depends(get_db)],
    _current_user: _Auditor,
    event_type: Annotated[str | None, Query(max_length=100)] = None,
    target_entity: Annotated[str | None, Query(max_length=100)] = None,
    target_id: Annotated[int | None, Query(ge=1)] = None,
    actor_id: Annotated[int | None, Query(ge=1)] = None,
    date_from: Annotated[datetime.date | None, Query(description="Inclusive start date")] = None,
    date_to: Annotated[datetime.date | None, Query(description="Inclusive end date")] = None,
) -> AuditLogListResponse:
    return audit_service.list_logs(
        db, pagination, event_type, target_entity, target_id, actor_id, date_from, date_to
    )


@router.get("/stats", response_model=AuditLogStats, summary="Audit log counts")
def audit_stats(
    db: Annotated[Session, Depends(get_db)],
    _current_user: _Auditor,
) -> AuditLogStats:
    return audit_service.get_stats(db)
