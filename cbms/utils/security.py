"""
Password hashing and access tokens for CBMS users.

Passwords are stored as bcrypt hashes.  Access tokens are HS256 JWTs
(python-jose) carrying:

    sub            user primary key, as a string
    role           one of ``cbms.utils.constants.ROLES`` at sign-in time
    email          informational, for clients
    department_id  the user's department, ``null`` for college-wide roles
    iat / exp      issue and expiry times; lifetime is ``JWT_EXPIRATION_MINUTES``

Only ``sub`` is trusted on the way back in: ``get_current_user`` reloads the
user so a role change or deactivation takes effect before the token expires.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from cbms.config import get_settings

if TYPE_CHECKING:
    from cbms.models.user import User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """False for a wrong password and for a stored hash bcrypt cannot read."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("verify_password: unreadable password hash")
        return False


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def claims_for(user: User) -> dict[str, Any]:
    """The claim set signed into a user's access token."""
    return {
        "sub": str(user.id),
        "role": user.role,
        "email": user.email,
        "department_id": user.department_id,
    }


def create_access_token(claims: dict[str, Any]) -> str:
    """Sign *claims* (normally ``claims_for(user)``), adding ``iat`` and ``exp``."""
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> dict[str, Any]:
    """Return the claims of a token signed by ``create_access_token``.

    Raises:
        ValueError: Bad signature, malformed token or past ``exp``.
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected token: %s", exc)
        raise ValueError("Invalid or expired token") from exc


def subject_user_id(claims: dict[str, Any]) -> int:
    """The user primary key in ``sub``.

    Raises:
        ValueError: ``sub`` is missing or not an integer string.
    """
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token subject") from exc
