"""Department model: academic or administrative unit that owns budgets."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cbms.database import Base


class Department(Base):
    """A college department.

    Attributes:
        id: Primary key.
        name: Unique display name, e.g. "Computer Science".
        code: Unique short code, e.g. "CSE".
        description: Free text.
        hod_id: FK to the User acting as Head of Department (nullable).
        is_active: Inactive departments are hidden from selection lists.
        created_at: Record creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "department"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), unique=True, nullable=False)
    code = Column(String(20), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    hod_id = Column(Integer, ForeignKey("user.id", use_alter=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    hod = relationship("User", foreign_keys=[hod_id], lazy="select")
    users = relationship(
        "User",
        back_populates="department",
        foreign_keys="User.department_id",
        lazy="select",
    )
    allocations = relationship("Allocation", back_populates="department", lazy="select")
