"""
Domain exception hierarchy and the FastAPI handlers that render it.

Every business-rule failure raised by the service layer is a ``CBMSError``
subclass carrying a machine-readable ``code``, a human message, the HTTP
status to answer with, and an optional ``details`` dict.  The handlers
registered by ``register_exception_handlers`` turn them into the standard
error envelope::

    {"success": false, "error": {"code": "...", "message": "...", "details": {...}}}

Services never catch these; the request session is rolled back by
``get_db`` and the prior state stays intact.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CBMSError(Exception):
    """Base class for all application errors."""

    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CBMSError):
    """Missing or invalid fields.

    ``errors`` is a list of ``{"field": ..., "message": ...}`` entries, one
    per offending field or proposal item.
    """

    code = "VALIDATION_ERROR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if errors:
            merged["errors"] = errors
        self.errors = errors or []
        super().__init__(message, merged)


class InvalidTransition(CBMSError):
    """Workflow action attempted from the wrong status or by the wrong role."""

    code = "INVALID_TRANSITION"
    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        action: str | None = None,
        current_status: str | None = None,
        role: str | None = None,
    ) -> None:
        details = {
            k: v
            for k, v in (
                ("action", action),
                ("current_status", current_status),
                ("role", role),
            )
            if v is not None
        }
        super().__init__(message, details)


class ExceedsBudget(CBMSError):
    code = "EXCEEDS_BUDGET"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, remaining_amount: float, requested_amount: float) -> None:
        self.remaining_amount = remaining_amount
        self.requested_amount = requested_amount
        super().__init__(
            message,
            {"remaining_amount": remaining_amount, "requested_amount": requested_amount},
        )


class NoAllocation(CBMSError):
    code = "NO_ALLOCATION"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class AuthError(CBMSError):
    code = "AUTH_ERROR"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDenied(CBMSError):
    code = "PERMISSION_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(CBMSError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} with ID {entity_id} not found.",
            {"entity": entity, "id": entity_id},
        )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _envelope(status_code: int, error: dict[str, Any], headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


async def cbms_error_handler(request: Request, exc: CBMSError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return _envelope(exc.status_code, exc.to_dict(), headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return _envelope(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {
            "code": ValidationError.code,
            "message": "Request validation failed.",
            "details": {"errors": errors},
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred."},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CBMSError, cbms_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
