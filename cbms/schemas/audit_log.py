"""
Pydantic v2 schemas for the audit-log endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditLogResponse(BaseModel):
    id: int
    event_type: str
    actor_id: int | None
    actor_role: str | None
    target_entity: str
    target_id: int | None
    details: dict[str, Any] | None
    previous_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    ip_address: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    rows: list[AuditLogResponse]
    total: int
    page: int
    page_size: int


class AuditLogStats(BaseModel):
    total: int
    by_event_type: dict[str, int]
    by_entity: dict[str, int]
