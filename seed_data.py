"""Seed data script for the CBMS database.

Populates the database with demo data for development: departments, users
for every role, budget head categories and heads, the previous and current
financial years, allocations, a few income entries and the default runtime
settings.  The script is idempotent: each step checks for existing records
before inserting.

Usage (from the repository root, after ``alembic upgrade head``):
    python seed_data.py
"""

from __future__ import annotations

import sys
import os
from datetime import date
from decimal import Decimal

# Make the cbms package importable when running from the repository root
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cbms.database import SessionLocal  # noqa: E402
from cbms.models import (  # noqa: E402
    Allocation,
    BudgetHead,
    Category,
    Department,
    FinancialYear,
    Income,
    User,
)
from cbms.services import settings_service  # noqa: E402
from cbms.utils import fiscal  # noqa: E402
from cbms.utils.security import hash_password  # noqa: E402

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CURRENT_YEAR = fiscal.current_financial_year()
PREVIOUS_YEAR = fiscal.previous_financial_year(CURRENT_YEAR)
DEMO_PASSWORD = "Demo1234!"


def _dec(value: float) -> Decimal:
    """Convert float to Decimal for Numeric columns."""
    return Decimal(str(round(value, 2)))


# ---------------------------------------------------------------------------
# Seed functions
# ---------------------------------------------------------------------------


def seed_departments(session) -> dict[str, Department]:
    """Insert the teaching and support departments if the table is empty."""
    if session.query(Department).count() > 0:
        print("  [SKIP] Department: table already has data.")
        return {d.code: d for d in session.query(Department).all()}

    rows = [
        Department(code="CSE", name="Computer Science", description="B.Sc. and M.Sc. Computer Science"),
        Department(code="PHY", name="Physics", description="Physics and electronics laboratories"),
        Department(code="COM", name="Commerce", description="B.Com. and M.Com. programmes"),
        Department(code="LIB", name="Library", description="Central library"),
    ]
    session.add_all(rows)
    session.flush()
    print(f"  [OK] Department: {len(rows)} rows inserted.")
    return {d.code: d for d in rows}


def seed_users(session, departments: dict[str, Department]) -> dict[str, User]:
    """Insert one user per role, plus department staff and HODs."""
    if session.query(User).filter(User.role != "admin").count() > 0:
        print("  [SKIP] User: demo users already exist.")
        return {u.email: u for u in session.query(User).all()}

    pw = hash_password(DEMO_PASSWORD)
    specs = [
        ("Office Accounts", "office@college.edu", "office", None),
        ("Vice Principal", "vp@college.edu", "vice_principal", None),
        ("Principal", "principal@college.edu", "principal", None),
        ("Internal Auditor", "auditor@college.edu", "auditor", None),
        ("CSE Head", "hod.cse@college.edu", "hod", "CSE"),
        ("CSE Staff", "staff.cse@college.edu", "department", "CSE"),
        ("Physics Head", "hod.phy@college.edu", "hod", "PHY"),
        ("Physics Staff", "staff.phy@college.edu", "department", "PHY"),
        ("Commerce Head", "hod.com@college.edu", "hod", "COM"),
    ]
    if session.query(User).filter(User.role == "admin").count() == 0:
        specs.insert(0, ("Administrator", "admin@college.edu", "admin", None))

    rows = [
        User(
            name=name,
            email=email,
            password_hash=pw,
            role=role,
            department_id=departments[code].id if code else None,
            is_active=True,
        )
        for name, email, role, code in specs
    ]
    session.add_all(rows)
    session.flush()

    for user in rows:
        if user.role == "hod":
            session.get(Department, user.department_id).hod_id = user.id
    session.flush()
    print(f"  [OK] User: {len(rows)} rows inserted (password '{DEMO_PASSWORD}').")
    return {u.email: u for u in session.query(User).all()}


def seed_categories(session) -> None:
    """Insert the budget head categories."""
    if session.query(Category).count() > 0:
        print("  [SKIP] Category: table already has data.")
        return

    rows = [
        Category(code="academic", name="Academic", description="Teaching and learning resources"),
        Category(code="infrastructure", name="Infrastructure", description="Buildings and furniture"),
        Category(code="lab_equipment", name="Lab Equipment", description="Laboratory instruments"),
        Category(code="events", name="Events", description="Seminars, workshops and festivals"),
        Category(code="maintenance", name="Maintenance", description="Repairs and upkeep"),
        Category(code="operations", name="Operations", description="Day-to-day running costs"),
        Category(code="other", name="Other", description="Everything else"),
    ]
    session.add_all(rows)
    session.flush()
    print(f"  [OK] Category: {len(rows)} rows inserted.")


def seed_budget_heads(session, departments: dict[str, Department]) -> dict[str, BudgetHead]:
    """Insert college-wide heads and a few department-specific ones."""
    if session.query(BudgetHead).count() > 0:
        print("  [SKIP] BudgetHead: table already has data.")
        return {h.code: h for h in session.query(BudgetHead).all()}

    rows = [
        BudgetHead(code="BOOKS", name="Books and Journals", category="academic"),
        BudgetHead(code="CONSUM", name="Consumables and Stationery", category="operations"),
        BudgetHead(code="EVENTS", name="Seminars and Workshops", category="events"),
        BudgetHead(code="MAINT", name="Repairs and Maintenance", category="maintenance"),
        BudgetHead(
            code="CSE-LAB", name="Computer Lab Equipment", category="lab_equipment",
            department_id=departments["CSE"].id,
        ),
        BudgetHead(
            code="PHY-LAB", name="Physics Lab Equipment", category="lab_equipment",
            department_id=departments["PHY"].id,
        ),
    ]
    session.add_all(rows)
    session.flush()
    print(f"  [OK] BudgetHead: {len(rows)} rows inserted.")
    return {h.code: h for h in rows}


def seed_financial_years(session, admin: User) -> None:
    """Insert the previous (locked) and current (active) financial years."""
    if session.query(FinancialYear).count() > 0:
        print("  [SKIP] FinancialYear: table already has data.")
        return

    rows = []
    for label, status in ((PREVIOUS_YEAR, "locked"), (CURRENT_YEAR, "active")):
        start, end = fiscal.year_bounds(label)
        rows.append(
            FinancialYear(
                year=label,
                start_date=start,
                end_date=end,
                status=status,
                description=f"Financial year {label}",
                created_by_id=admin.id,
            )
        )
    session.add_all(rows)
    session.flush()
    print(f"  [OK] FinancialYear: {PREVIOUS_YEAR} (locked), {CURRENT_YEAR} (active).")


def seed_allocations(
    session,
    departments: dict[str, Department],
    heads: dict[str, BudgetHead],
    admin: User,
) -> None:
    """Insert allocations for both years; previous-year rows carry spend."""
    if session.query(Allocation).count() > 0:
        print("  [SKIP] Allocation: table already has data.")
        return

    data = [
        # year, dept, head, allocated, spent
        (PREVIOUS_YEAR, "CSE", "BOOKS", 80000, 72000),
        (PREVIOUS_YEAR, "CSE", "CSE-LAB", 250000, 231500),
        (PREVIOUS_YEAR, "PHY", "PHY-LAB", 180000, 120000),
        (PREVIOUS_YEAR, "COM", "EVENTS", 40000, 38500),
        (CURRENT_YEAR, "CSE", "BOOKS", 90000, 0),
        (CURRENT_YEAR, "CSE", "CSE-LAB", 300000, 0),
        (CURRENT_YEAR, "CSE", "CONSUM", 25000, 0),
        (CURRENT_YEAR, "PHY", "PHY-LAB", 200000, 0),
        (CURRENT_YEAR, "PHY", "CONSUM", 20000, 0),
        (CURRENT_YEAR, "COM", "EVENTS", 50000, 0),
        (CURRENT_YEAR, "LIB", "BOOKS", 400000, 0),
    ]
    rows = [
        Allocation(
            financial_year=year,
            department_id=departments[dept].id,
            budget_head_id=heads[head].id,
            allocated_amount=_dec(allocated),
            spent_amount=_dec(spent),
            status="active",
            created_by_id=admin.id,
        )
        for year, dept, head, allocated, spent in data
    ]
    session.add_all(rows)
    session.flush()
    print(f"  [OK] Allocation: {len(rows)} rows inserted.")


def seed_income(session, office: User) -> None:
    """Insert expected and received income for the current year."""
    if session.query(Income).count() > 0:
        print("  [SKIP] Income: table already has data.")
        return

    start, _ = fiscal.year_bounds(CURRENT_YEAR)
    rows = [
        Income(
            financial_year=CURRENT_YEAR, source="government_grant", category="recurring",
            amount=_dec(1500000), status="received", received_date=start,
            reference_number="GRANT-01", description="State salary and maintenance grant",
            created_by_id=office.id,
        ),
        Income(
            financial_year=CURRENT_YEAR, source="student_fees", category="recurring",
            amount=_dec(850000), status="received", received_date=date(start.year, 7, 15),
            description="First semester tuition fees", created_by_id=office.id,
        ),
        Income(
            financial_year=CURRENT_YEAR, source="donation", category="non-recurring",
            amount=_dec(100000), status="expected", expected_date=date(start.year, 12, 1),
            description="Alumni association library donation", created_by_id=office.id,
        ),
    ]
    session.add_all(rows)
    session.flush()
    print(f"  [OK] Income: {len(rows)} rows inserted.")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the complete seed process within a single database transaction."""
    print("=" * 60)
    print("  CBMS: Seed Data Script")
    print(f"  Financial years: {PREVIOUS_YEAR}, {CURRENT_YEAR}")
    print("=" * 60)

    session = SessionLocal()
    try:
        print("\n[1/7] Departments...")
        departments = seed_departments(session)

        print("\n[2/7] Users...")
        users = seed_users(session, departments)
        admin = next(u for u in users.values() if u.role == "admin")
        office = next(u for u in users.values() if u.role == "office")

        print("\n[3/7] Categories...")
        seed_categories(session)

        print("\n[4/7] Budget heads...")
        heads = seed_budget_heads(session, departments)

        print("\n[5/7] Financial years...")
        seed_financial_years(session, admin)

        print("\n[6/7] Allocations and income...")
        seed_allocations(session, departments, heads, admin)
        seed_income(session, office)

        session.commit()

        print("\n[7/7] Settings...")
        added = settings_service.seed_defaults(session)
        print(f"  [OK] Setting: {added} default rows inserted.")

        print("\n" + "=" * 60)
        print("  Seed completed successfully.")
        print("=" * 60)

    except Exception as exc:
        session.rollback()
        print("\n[ERROR] Seed failed; transaction rolled back.")
        print(f"  Detail: {exc}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
