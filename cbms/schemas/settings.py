"""
Pydantic v2 schemas for runtime settings.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SettingResponse(BaseModel):
    key: str
    value: str
    description: str | None
    category: str
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SettingUpdate(BaseModel):
    value: str = Field(..., min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
