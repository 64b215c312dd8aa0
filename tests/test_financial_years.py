"""
CBMS - Financial Year and Income Tests

- Year lifecycle: planning -> active -> locked -> closed
- Single active year
- Closing guards and carry-forward
- Income recording and verification
"""

from datetime import date
from decimal import Decimal

import pytest

from cbms.exceptions import InvalidTransition, ValidationError
from cbms.models import Expenditure
from cbms.schemas.financial_year import FinancialYearCreate
from cbms.schemas.income import IncomeCreate
from cbms.services import financial_year_service, income_service

from conftest import BILL_DATE, FY, auth_headers


def _year(db, admin, label=FY, **kwargs):
    return financial_year_service.create_year(db, FinancialYearCreate(year=label, **kwargs), admin)


def _income(db, user, amount, status="received", year=FY):
    data = IncomeCreate(
        financial_year=year,
        source="government_grant",
        amount=amount,
        status=status,
        description="State grant",
    )
    return income_service.create_income(db, data, user)


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestFinancialYearLifecycle:
    """Status transitions of a financial year."""

    def test_create_defaults_to_april_march(self, db, admin):
        fy = _year(db, admin)
        assert fy.status == "planning"
        assert fy.start_date == date(2026, 4, 1)
        assert fy.end_date == date(2027, 3, 31)

    def test_duplicate_year_rejected(self, db, admin):
        _year(db, admin)
        with pytest.raises(ValidationError):
            _year(db, admin)

    def test_only_one_active_year(self, db, admin):
        first = _year(db, admin)
        second = _year(db, admin, "2027-2028")
        financial_year_service.activate_year(db, first.id, admin)
        with pytest.raises(InvalidTransition):
            financial_year_service.activate_year(db, second.id, admin)

        financial_year_service.lock_year(db, first.id, admin, "Audit")
        assert financial_year_service.activate_year(db, second.id, admin).status == "active"

    def test_lock_twice_is_invalid(self, db, admin):
        fy = _year(db, admin)
        financial_year_service.lock_year(db, fy.id, admin)
        with pytest.raises(InvalidTransition):
            financial_year_service.lock_year(db, fy.id, admin)

    def test_close_blocked_by_open_expenditures(self, db, admin, staff, department, budget_head):
        fy = _year(db, admin)
        db.add(Expenditure(
            department_id=department.id, budget_head_id=budget_head.id, financial_year=FY,
            bill_number="B-1", bill_date=BILL_DATE, bill_amount=Decimal("100"),
            party_name="Vendor", expense_details="Paper", status="pending",
            submitted_by_id=staff.id,
        ))
        db.commit()
        with pytest.raises(ValidationError):
            financial_year_service.close_year(db, fy.id, admin)

    def test_close_computes_carryforward(self, db, admin, office, allocation):
        fy = _year(db, admin)
        _income(db, office, 150000)
        _income(db, office, 20000, status="expected")
        allocation.spent_amount = Decimal("90000")
        db.commit()

        closed = financial_year_service.close_year(db, fy.id, admin, "Year end")
        assert closed.status == "closed"
        assert closed.total_income_expected == 170000
        assert closed.total_income_received == 150000
        assert closed.total_allocated == 100000
        assert closed.total_spent == 90000
        assert closed.carryforward_amount == 60000

    def test_closed_year_rejects_income(self, db, admin, office):
        fy = _year(db, admin)
        financial_year_service.close_year(db, fy.id, admin)
        with pytest.raises(ValidationError):
            _income(db, office, 100)

    def test_management_requires_admin_or_principal(self, client, office):
        resp = client.post("/api/financial-years/", json={"year": FY}, headers=auth_headers(office))
        assert resp.status_code == 403


# =============================================================================
# INCOME
# =============================================================================

class TestIncome:
    """Income recording and verification."""

    def test_income_requires_existing_year(self, db, office):
        with pytest.raises(ValidationError):
            _income(db, office, 100)

    def test_received_income_gets_received_date(self, db, admin, office):
        _year(db, admin)
        income = _income(db, office, 5000)
        assert income.status == "received"
        assert income.received_date is not None

    def test_verify_received_income(self, db, admin, office, principal):
        _year(db, admin)
        income = _income(db, office, 5000)
        verified = income_service.verify_income(db, income.id, principal, "Bank statement checked")
        assert verified.status == "verified"
        assert verified.verified_by_id == principal.id

    def test_expected_income_cannot_be_verified(self, db, admin, office):
        _year(db, admin)
        income = _income(db, office, 5000, status="expected")
        with pytest.raises(InvalidTransition):
            income_service.verify_income(db, income.id, admin)

    def test_office_cannot_verify(self, db, admin, office):
        _year(db, admin)
        income = _income(db, office, 5000)
        with pytest.raises(InvalidTransition):
            income_service.verify_income(db, income.id, office)

    def test_department_users_cannot_read_income(self, client, staff):
        resp = client.get("/api/income/", headers=auth_headers(staff))
        assert resp.status_code == 403
