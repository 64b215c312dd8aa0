"""
Authentication business logic for CBMS.

Provides:
- ``authenticate_user``: credential verification against the DB.
- ``get_current_user``: FastAPI dependency that extracts and validates
  the Bearer JWT from the ``Authorization`` header.
- ``require_role``: dependency factory that enforces role-based access
  control on top of ``get_current_user``.
- ``ensure_department_access`` / ``scoped_department_id``: department
  scoping for the ``department`` and ``hod`` roles.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.exceptions import AuthError, PermissionDenied, ValidationError
from cbms.models.user import User
from cbms.utils.constants import DEPARTMENT_ROLES
from cbms.utils.security import hash_password, subject_user_id, verify_password, verify_token

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# OAuth2 scheme: tells FastAPI/Swagger where to find the Bearer token.
# auto_error is off so that a missing header surfaces as ``AuthError``.
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# ---------------------------------------------------------------------------
# Core authentication function
# ---------------------------------------------------------------------------


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    """Verify e-mail/password credentials against the database.

    Returns ``None`` (instead of raising) so that callers can control the
    HTTP error response.

    Args:
        db: An active SQLAlchemy session.
        email: The login e-mail submitted by the client (case-insensitive).
        password: The plain-text password submitted by the client.

    Returns:
        The ``User`` on success, or ``None`` on failure (unknown user,
        inactive account, or wrong password).
    """
    user: User | None = (
        db.query(User)
        .filter(User.email == email.strip().lower(), User.is_active.is_(True))
        .first()
    )

    if user is None:
        logger.debug("authenticate_user: unknown or inactive user '%s'", email)
        return None

    if not verify_password(password, user.password_hash):
        logger.debug("authenticate_user: wrong password for user '%s'", email)
        return None

    user.last_login = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise ValidationError(
            "Current password is incorrect.",
            errors=[{"field": "current_password", "message": "Incorrect password"}],
        )
    user.password_hash = hash_password(new_password)
    db.commit()
    logger.info("change_password: user_id=%d", user.id)


# ---------------------------------------------------------------------------
# FastAPI dependency: current authenticated user
# ---------------------------------------------------------------------------


def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    """FastAPI dependency that resolves the caller's identity from a JWT.

    Args:
        token: Raw JWT string supplied by ``oauth2_scheme`` (``None`` when
               the header is absent).
        db: SQLAlchemy session supplied by ``get_db``.

    Returns:
        The authenticated ``User`` ORM instance.

    Raises:
        AuthError: If the token is missing, invalid, or expired, or if the
                   referenced user no longer exists or has been deactivated.
    """
    if not token:
        raise AuthError("Not authenticated.")

    try:
        payload = verify_token(token)
    except ValueError as exc:
        raise AuthError("Invalid or expired token.") from exc

    try:
        user_id = subject_user_id(payload)
    except ValueError as exc:
        raise AuthError("Invalid token subject.") from exc

    user: User | None = (
        db.query(User)
        .filter(User.id == user_id, User.is_active.is_(True))
        .first()
    )
    if user is None:
        raise AuthError("User no longer exists or is inactive.")

    return user


# ---------------------------------------------------------------------------
# Role enforcement dependency factory
# ---------------------------------------------------------------------------


def require_role(*roles: str):
    """Return a FastAPI dependency that restricts access to the given roles.

    .. code-block:: python

        @router.post("/")
        def create(current_user: User = Depends(require_role("admin", "office"))):
            ...

    Raises:
        PermissionDenied: If the authenticated user's role is not in *roles*.
    """
    allowed = frozenset(roles)

    def _check_role(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed:
            raise PermissionDenied(
                f"Access denied. One of these roles is required: {sorted(allowed)}"
            )
        return current_user

    return _check_role


# ---------------------------------------------------------------------------
# Department scoping
# ---------------------------------------------------------------------------


def is_department_scoped(user: User) -> bool:
    return user.role in DEPARTMENT_ROLES


def ensure_department_access(user: User, department_id: int) -> None:
    """Raise ``PermissionDenied`` if a department-scoped user targets another department."""
    if is_department_scoped(user) and user.department_id != department_id:
        raise PermissionDenied("You can only access your own department's records.")


def scoped_department_id(user: User, requested: int | None) -> int | None:
    """Department filter to apply for *user*.

    Department-scoped users are always pinned to their own department;
    others get whatever they asked for (``None`` = all departments).
    """
    if is_department_scoped(user):
        if requested is not None and requested != user.department_id:
            raise PermissionDenied("You can only access your own department's records.")
        return user.department_id
    return requested
