"""
Pydantic v2 schemas for user management (CRUD) endpoints.

Separates write schemas (``UserCreate``, ``UserUpdate``) from the read
schema (``UserResponse``) to avoid accidental password exposure.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from cbms.utils.constants import ROLES

# Re-export the canonical read schema so callers can import from one place.
from cbms.schemas.auth import UserResponse  # noqa: F401


def _check_role(value: str | None) -> str | None:
    if value is not None and value not in ROLES:
        raise ValueError(f"role must be one of {ROLES}")
    return value


class UserCreate(BaseModel):
    """Payload for ``POST /api/users`` (admin only).

    ``department_id`` is mandatory for the ``department`` and ``hod`` roles;
    the service layer enforces that rule.
    """

    name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="Plain-text password; stored hashed with bcrypt",
    )
    role: str = Field(..., description=f"Role code. Allowed values: {ROLES}")
    department_id: int | None = Field(default=None, ge=1)

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        return _check_role(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Anita Rao",
                "email": "anita.rao@college.edu",
                "password": "Secure2026!",
                "role": "hod",
                "department_id": 3,
            }
        }
    )


class UserUpdate(BaseModel):
    """Partial update for ``PUT /api/users/{id}``; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=2, max_length=200)
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=8, max_length=128)
    role: str | None = None
    department_id: int | None = Field(default=None, ge=1)
    is_active: bool | None = Field(default=None, description="False to suspend the account")

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        return _check_role(value)


class UserListResponse(BaseModel):
    rows: list[UserResponse]
    total: int
    page: int
    page_size: int
