"""User model: application user with role-based access control."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class User(Base):
    """System user with a role that controls workflow permissions.

    Roles:
        - admin: Full system access including configuration.
        - office: Finance office; verifies and approves, manages income.
        - department: Department staff; drafts proposals, books expenditures.
        - hod: Head of department; verifies own department's documents.
        - vice_principal: Approves expenditures up to a configured limit.
        - principal: Final approver for proposals and expenditures.
        - auditor: Read-only access including audit logs.

    Attributes:
        id: Primary key.
        name: Full display name.
        email: Unique login e-mail.
        password_hash: Bcrypt-hashed password (never store plain text).
        role: Role identifier controlling permissions.
        department_id: Required for ``department`` and ``hod`` roles.
        is_active: Whether the account can log in.
        last_login: Timestamp of the last successful login.
    """

    __tablename__ = "user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), unique=True, nullable=False)
    password_hash = Column(String(200), nullable=False)
    role = Column(String(30), nullable=False)
    # "admin", "office", "department", "hod", "vice_principal", "principal", "auditor"
    department_id = Column(Integer, ForeignKey("department.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    department = relationship(
        "Department",
        back_populates="users",
        foreign_keys=[department_id],
        lazy="select",
    )
