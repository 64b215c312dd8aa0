"""
User administration service (admin-only endpoints).
"""

from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from cbms.exceptions import NotFound, ValidationError
from cbms.models.department import Department
from cbms.models.user import User
from cbms.schemas.common import PaginationParams
from cbms.schemas.user import UserCreate, UserListResponse, UserResponse, UserUpdate
from cbms.services import audit_service
from cbms.utils.constants import DEPARTMENT_ROLES
from cbms.utils.security import hash_password

logger = logging.getLogger(__name__)


def _get_or_404(db: Session, user_id: int) -> User:
    row = db.query(User).filter(User.id == user_id).first()
    if row is None:
        raise NotFound("User", user_id)
    return row


def _check_department(db: Session, role: str, department_id: int | None) -> None:
    if role in DEPARTMENT_ROLES and department_id is None:
        raise ValidationError(
            f"Role '{role}' requires a department.",
            errors=[{"field": "department_id", "message": "Required for department and hod users"}],
        )
    if department_id is not None and db.get(Department, department_id) is None:
        raise NotFound("Department", department_id)


def _check_email(db: Session, email: str, exclude_id: int | None = None) -> None:
    q = db.query(User).filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first() is not None:
        raise ValidationError(
            f"E-mail '{email}' is already registered.",
            errors=[{"field": "email", "message": "Must be unique"}],
        )


def list_users(
    db: Session,
    pagination: PaginationParams,
    search: str | None = None,
    role: str | None = None,
    department_id: int | None = None,
) -> UserListResponse:
    q = db.query(User)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if role:
        q = q.filter(User.role == role)
    if department_id is not None:
        q = q.filter(User.department_id == department_id)
    total = q.count()
    rows = q.order_by(User.name).offset(pagination.offset).limit(pagination.page_size).all()
    return UserListResponse(
        rows=[UserResponse.model_validate(r) for r in rows],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


def get_user(db: Session, user_id: int) -> UserResponse:
    return UserResponse.model_validate(_get_or_404(db, user_id))


def create_user(db: Session, data: UserCreate, actor: User) -> UserResponse:
    email = data.email.lower()
    _check_email(db, email)
    _check_department(db, data.role, data.department_id)
    row = User(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        role=data.role,
        department_id=data.department_id,
    )
    db.add(row)
    db.flush()
    audit_service.record(
        db, "user.create", actor, "user", row.id,
        new_values={"email": email, "role": data.role, "department_id": data.department_id},
    )
    db.commit()
    db.refresh(row)
    logger.info("create_user: id=%d role=%s", row.id, row.role)
    return UserResponse.model_validate(row)


def update_user(db: Session, user_id: int, data: UserUpdate, actor: User) -> UserResponse:
    row = _get_or_404(db, user_id)
    update_data = data.model_dump(exclude_unset=True)

    if "email" in update_data and update_data["email"]:
        update_data["email"] = update_data["email"].lower()
        _check_email(db, update_data["email"], exclude_id=row.id)
    password = update_data.pop("password", None)

    role = update_data.get("role", row.role)
    department_id = update_data.get("department_id", row.department_id)
    _check_department(db, role, department_id)

    previous = {}
    for field, value in update_data.items():
        if getattr(row, field) != value:
            previous[field] = getattr(row, field)
            setattr(row, field, value)
    if password:
        row.password_hash = hash_password(password)
        previous["password"] = "***"

    audit_service.record(db, "user.update", actor, "user", row.id, previous_values=previous)
    db.commit()
    db.refresh(row)
    return UserResponse.model_validate(row)


def deactivate_user(db: Session, user_id: int, actor: User) -> None:
    row = _get_or_404(db, user_id)
    if row.id == actor.id:
        raise ValidationError("You cannot deactivate your own account.")
    row.is_active = False
    audit_service.record(db, "user.deactivate", actor, "user", row.id)
    db.commit()
    logger.info("deactivate_user: id=%d", user_id)
