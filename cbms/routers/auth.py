"""
Authentication router.

Mounts under ``/api/auth`` (prefix set in ``main.py``).

Endpoints:
    POST /login            Authenticate with e-mail + password, receive JWT.
    POST /refresh          Exchange a valid token for a new one.
    GET  /me               Profile of the authenticated user.
    POST /change-password  Change the caller's own password.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from cbms.database import get_db
from cbms.exceptions import AuthError
from cbms.models.user import User
from cbms.schemas.auth import ChangePasswordRequest, TokenResponse, UserResponse
from cbms.schemas.common import MessageResponse
from cbms.services import auth_service
from cbms.services.auth_service import authenticate_user, get_current_user
from cbms.utils.security import claims_for, create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def _issue_token(user: User) -> TokenResponse:
    token = create_access_token(claims_for(user))
    return TokenResponse(access_token=token)


# ---------------------------------------------------------------------------
# POST /login
# ---------------------------------------------------------------------------


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Log in",
    description=(
        "Authenticates with e-mail (sent as the OAuth2 ``username`` field) and "
        "password and returns a JWT valid for ``JWT_EXPIRATION_MINUTES``."
    ),
    responses={
        200: {"description": "Authenticated; the JWT is included."},
        401: {"description": "Wrong credentials or inactive account."},
    },
)
def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[Session, Depends(get_db)],
) -> TokenResponse:
    """Authenticate a user and issue a JWT access token.

    Raises:
        AuthError: If credentials are invalid or the account is inactive.
    """
    user = authenticate_user(db, form_data.username, form_data.password)
    if user is None:
        logger.warning("Failed login attempt for email='%s'", form_data.username)
        raise AuthError("Incorrect e-mail or password, or the account is inactive.")

    logger.info("Successful login for email='%s' role='%s'", user.email, user.role)
    return _issue_token(user)


# ---------------------------------------------------------------------------
# POST /refresh
# ---------------------------------------------------------------------------


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh token",
    responses={401: {"description": "Token missing, invalid or expired."}},
)
def refresh_token(
    current_user: Annotated[User, Depends(get_current_user)],
) -> TokenResponse:
    """Return a new token with a fresh expiration window."""
    logger.info("Token refreshed for email='%s'", current_user.email)
    return _issue_token(current_user)


# ---------------------------------------------------------------------------
# GET /me
# ---------------------------------------------------------------------------


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user profile",
    responses={401: {"description": "Token missing, invalid or expired."}},
)
def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    return UserResponse.model_validate(current_user)


# ---------------------------------------------------------------------------
# POST /change-password
# ---------------------------------------------------------------------------


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change own password",
    responses={
        401: {"description": "Token missing, invalid or expired."},
        422: {"description": "Current password incorrect or new password too short."},
    },
)
def change_password(
    body: ChangePasswordRequest,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> MessageResponse:
    auth_service.change_password(db, current_user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed.")
