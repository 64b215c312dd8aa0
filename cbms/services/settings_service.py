"""
Runtime settings backed by the ``setting`` table.

Values stored in the database win; when a key is absent the default comes
from ``cbms.config.Settings``.  Typed accessors (``get_overspend_policy``
and friends) validate what they read so a bad row cannot silently change
budget enforcement.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from cbms.config import get_settings
from cbms.exceptions import NotFound, ValidationError
from cbms.models.setting import Setting
from cbms.models.user import User
from cbms.schemas.settings import SettingResponse
from cbms.services import audit_service
from cbms.utils.constants import (
    OVERSPEND_POLICIES,
    SETTING_EXHAUSTION_THRESHOLD,
    SETTING_OVERSPEND_POLICY,
    SETTING_VICE_PRINCIPAL_LIMIT,
)

logger = logging.getLogger(__name__)


def _defaults() -> dict[str, tuple[str, str, str]]:
    """key -> (default value, description, category)."""
    settings = get_settings()
    return {
        SETTING_OVERSPEND_POLICY: (
            settings.DEFAULT_OVERSPEND_POLICY,
            "What happens when a bill exceeds the remaining allocation: "
            "disallow, override (needs approval) or allow.",
            "budget",
        ),
        SETTING_VICE_PRINCIPAL_LIMIT: (
            str(settings.VICE_PRINCIPAL_APPROVAL_LIMIT),
            "Largest expenditure the vice principal may approve.",
            "approval",
        ),
        SETTING_EXHAUSTION_THRESHOLD: (
            str(settings.BUDGET_EXHAUSTION_THRESHOLD),
            "Utilisation percent at which a budget alert is raised.",
            "budget",
        ),
    }


def _validate(key: str, value: str) -> str:
    if key == SETTING_OVERSPEND_POLICY:
        if value not in OVERSPEND_POLICIES:
            raise ValidationError(
                f"Invalid overspend policy '{value}'.",
                errors=[{"field": "value", "message": f"Must be one of {OVERSPEND_POLICIES}"}],
            )
    elif key in (SETTING_VICE_PRINCIPAL_LIMIT, SETTING_EXHAUSTION_THRESHOLD):
        try:
            if Decimal(value) < 0:
                raise InvalidOperation
        except InvalidOperation as exc:
            raise ValidationError(
                f"Setting '{key}' must be a non-negative number.",
                errors=[{"field": "value", "message": "Must be a non-negative number"}],
            ) from exc
    return value


def get_value(db: Session, key: str) -> str | None:
    row = db.query(Setting).filter(Setting.key == key).first()
    if row is not None:
        return row.value
    default = _defaults().get(key)
    return default[0] if default else None


def get_overspend_policy(db: Session) -> str:
    value = get_value(db, SETTING_OVERSPEND_POLICY)
    if value not in OVERSPEND_POLICIES:
        logger.warning("Unknown overspend policy %r in settings; using 'disallow'", value)
        return "disallow"
    return value


def get_vice_principal_limit(db: Session) -> Decimal:
    return Decimal(get_value(db, SETTING_VICE_PRINCIPAL_LIMIT))


def get_exhaustion_threshold(db: Session) -> float:
    return float(get_value(db, SETTING_EXHAUSTION_THRESHOLD))


# ---------------------------------------------------------------------------
# CRUD for /api/settings
# ---------------------------------------------------------------------------


def list_settings(db: Session) -> list[SettingResponse]:
    stored = {row.key: row for row in db.query(Setting).all()}
    result: list[SettingResponse] = []
    for key, (value, description, category) in _defaults().items():
        row = stored.pop(key, None)
        if row is not None:
            result.append(SettingResponse.model_validate(row))
        else:
            result.append(
                SettingResponse(key=key, value=value, description=description, category=category)
            )
    result.extend(SettingResponse.model_validate(row) for row in stored.values())
    return sorted(result, key=lambda s: (s.category, s.key))


def get_setting(db: Session, key: str) -> SettingResponse:
    for item in list_settings(db):
        if item.key == key:
            return item
    raise NotFound("Setting", key)


def update_setting(
    db: Session, key: str, value: str, user: User, description: str | None = None
) -> SettingResponse:
    defaults = _defaults()
    value = _validate(key, value.strip())
    row: Setting | None = db.query(Setting).filter(Setting.key == key).first()
    previous = row.value if row is not None else defaults.get(key, (None,))[0]

    if row is None:
        _, default_description, category = defaults.get(key, (None, None, "general"))
        row = Setting(
            key=key,
            value=value,
            description=description or default_description,
            category=category,
        )
        db.add(row)
    else:
        row.value = value
        if description is not None:
            row.description = description
    row.updated_by_id = user.id

    audit_service.record(
        db, "setting.update", user, "setting", None,
        details={"key": key},
        previous_values={"value": previous},
        new_values={"value": value},
    )
    db.commit()
    db.refresh(row)
    logger.info("update_setting: %s=%s by user_id=%d", key, value, user.id)
    return SettingResponse.model_validate(row)


def seed_defaults(db: Session) -> int:
    """Insert any missing default settings rows. Returns how many were added."""
    existing = {k for (k,) in db.query(Setting.key).all()}
    added = 0
    for key, (value, description, category) in _defaults().items():
        if key not in existing:
            db.add(Setting(key=key, value=value, description=description, category=category))
            added += 1
    if added:
        db.commit()
    return added
