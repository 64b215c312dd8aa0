"""
Pydantic v2 schema exposing the canonical workflow transition table.
"""

from __future__ import annotations

from pydantic import BaseModel


class TransitionResponse(BaseModel):
    document: str
    action: str
    from_statuses: list[str]
    to_status: str | None
    roles: list[str]
    notes: str | None = None
