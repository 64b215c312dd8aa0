"""
CBMS - shared pytest fixtures.

Every test gets a fresh in-memory SQLite database with the full schema, a
session bound to it, and a ``TestClient`` whose ``get_db`` dependency
yields that same session.  Users for each role, two departments, a
college-wide budget head and a 100 000 allocation are available as
fixtures.
"""

import os
import tempfile
from datetime import date
from decimal import Decimal

# Configuration must be in place before cbms.config caches its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEED_ADMIN", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="cbms-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cbms.models  # noqa: F401
from cbms.database import Base, get_db
from cbms.main import app
from cbms.models import Allocation, BudgetHead, Department, User
from cbms.utils.security import claims_for, create_access_token, hash_password

FY = "2026-2027"
BILL_DATE = date(2026, 8, 14)
PASSWORD = "Secret123!"

_PASSWORD_HASH = hash_password(PASSWORD)


# =============================================================================
# DATABASE AND CLIENT
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def client(db):
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(claims_for(user))
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# MASTER DATA
# =============================================================================

@pytest.fixture
def department(db) -> Department:
    row = Department(code="CSE", name="Computer Science")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def other_department(db) -> Department:
    row = Department(code="PHY", name="Physics")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def budget_head(db) -> BudgetHead:
    row = BudgetHead(code="CONSUM", name="Lab Consumables", category="operations")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def second_head(db) -> BudgetHead:
    row = BudgetHead(code="EVENTS", name="Seminars", category="events")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def allocation(db, department, budget_head, admin) -> Allocation:
    row = Allocation(
        financial_year=FY,
        department_id=department.id,
        budget_head_id=budget_head.id,
        allocated_amount=Decimal("100000"),
        spent_amount=Decimal("0"),
        status="active",
        created_by_id=admin.id,
    )
    db.add(row)
    db.commit()
    return row


# =============================================================================
# USERS
# =============================================================================

def _make_user(db, role: str, email: str, department_id: int | None = None) -> User:
    user = User(
        name=role.replace("_", " ").title(),
        email=email,
        password_hash=_PASSWORD_HASH,
        role=role,
        department_id=department_id,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db) -> User:
    return _make_user(db, "admin", "admin@test.edu")


@pytest.fixture
def office(db) -> User:
    return _make_user(db, "office", "office@test.edu")


@pytest.fixture
def principal(db) -> User:
    return _make_user(db, "principal", "principal@test.edu")


@pytest.fixture
def vice_principal(db) -> User:
    return _make_user(db, "vice_principal", "vp@test.edu")


@pytest.fixture
def auditor(db) -> User:
    return _make_user(db, "auditor", "auditor@test.edu")


@pytest.fixture
def staff(db, department) -> User:
    return _make_user(db, "department", "staff@test.edu", department.id)


@pytest.fixture
def hod(db, department) -> User:
    user = _make_user(db, "hod", "hod@test.edu", department.id)
    department.hod_id = user.id
    db.commit()
    return user


@pytest.fixture
def other_hod(db, other_department) -> User:
    return _make_user(db, "hod", "hod.phy@test.edu", other_department.id)
