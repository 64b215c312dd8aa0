"""
Pydantic v2 schemas for the authentication endpoints.

Covers the JWT token response, the password change payload, and the
public user representation returned by ``GET /api/auth/me``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TokenResponse(BaseModel):
    """Response body returned after a successful authentication.

    Attributes:
        access_token: Signed JWT string to be sent in the
                      ``Authorization: Bearer <token>`` header.
        token_type: Always ``"bearer"`` per OAuth2 convention.
    """

    access_token: str = Field(..., description="Signed JWT access token")
    token_type: str = Field(default="bearer", description="OAuth2 token type")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                "token_type": "bearer",
            }
        }
    )


class UserResponse(BaseModel):
    """Public representation of a user.

    Sensitive fields (``password_hash``) are deliberately excluded.

    Attributes:
        id: Database primary key.
        name: Full display name.
        email: Login e-mail.
        role: Role code; one of ``constants.ROLES``.
        department_id: Department the user belongs to, or ``None`` for
                       institution-wide roles.
        is_active: Whether the account is currently active.
    """

    id: int
    name: str
    email: str
    role: str
    department_id: int | None
    is_active: bool
    last_login: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="New plain-text password; stored hashed with bcrypt",
    )
