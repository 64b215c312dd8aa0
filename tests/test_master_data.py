"""
CBMS - Department and Budget Head Statistics

- Department counts and active users per department
- Budget heads per category
- Department detail for a year, compared with the year before
"""

from datetime import date
from decimal import Decimal

import pytest

from cbms.exceptions import PermissionDenied
from cbms.models import Allocation, Expenditure
from cbms.services import master_data_service

from conftest import FY, auth_headers

PREVIOUS_FY = "2025-2026"


class TestDepartmentStats:
    def test_counts_and_user_distribution(self, db, department, other_department, hod, staff, other_hod):
        other_department.is_active = False
        db.commit()
        stats = master_data_service.get_department_stats(db)
        assert stats.total_departments == 2
        assert stats.active_departments == 1
        assert stats.inactive_departments == 1
        assert stats.departments_with_hod == 1
        assert [(d.department_name, d.user_count) for d in stats.user_distribution] == [
            ("Computer Science", 2),
            ("Physics", 1),
        ]

    def test_inactive_users_not_counted(self, db, department, staff):
        staff.is_active = False
        db.commit()
        stats = master_data_service.get_department_stats(db)
        assert stats.user_distribution[0].user_count == 0

    def test_restricted_to_college_roles(self, client, admin, staff, department):
        assert client.get("/api/departments/stats", headers=auth_headers(staff)).status_code == 403
        resp = client.get("/api/departments/stats", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.json()["total_departments"] == 1


class TestBudgetHeadStats:
    def test_counts_by_category(self, client, db, staff, budget_head, second_head):
        second_head.is_active = False
        db.commit()
        resp = client.get("/api/budget-heads/stats", headers=auth_headers(staff))
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_budget_heads"] == 2
        assert body["active_budget_heads"] == 1
        assert body["inactive_budget_heads"] == 1
        assert body["by_category"] == [
            {"category": "events", "count": 1},
            {"category": "operations", "count": 1},
        ]


class TestDepartmentDetail:
    """Computer Science: 100 000 allocated this year, 80 000 the year before."""

    @pytest.fixture
    def history(self, db, admin, staff, department, budget_head, second_head, allocation):
        allocation.spent_amount = Decimal("30000")
        db.add(Allocation(
            financial_year=FY, department_id=department.id, budget_head_id=second_head.id,
            allocated_amount=Decimal("20000"), spent_amount=Decimal("0"), status="active",
            created_by_id=admin.id,
        ))
        db.add(Allocation(
            financial_year=PREVIOUS_FY, department_id=department.id, budget_head_id=budget_head.id,
            allocated_amount=Decimal("80000"), spent_amount=Decimal("40000"), status="active",
            created_by_id=admin.id,
        ))
        for number, status in (("INV-1", "approved"), ("INV-2", "pending"), ("INV-3", "rejected")):
            db.add(Expenditure(
                department_id=department.id, budget_head_id=budget_head.id, financial_year=FY,
                bill_number=number, bill_date=date(2026, 8, 1), bill_amount=Decimal("1000"),
                party_name="Scientific Supplies Ltd", expense_details="Glassware",
                attachments=[], status=status, submitted_by_id=staff.id,
            ))
        db.commit()

    def test_summary_and_breakdowns(self, db, admin, department, history):
        detail = master_data_service.get_department_detail(db, department.id, admin, FY)
        assert detail.financial_year == FY
        assert detail.summary.total_allocated == 120000
        assert detail.summary.total_spent == 30000
        assert detail.summary.total_remaining == 90000
        assert detail.summary.utilization_percent == 25.0
        assert detail.summary.allocation_count == 2
        assert detail.summary.expenditure_count == 3
        assert detail.status_breakdown == {"pending": 1, "verified": 0, "approved": 1, "rejected": 1}
        assert [h.budget_head_name for h in detail.budget_head_breakdown] == ["Lab Consumables", "Seminars"]
        assert detail.budget_head_breakdown[0].utilization_percent == 30.0

    def test_compared_with_previous_year(self, db, admin, department, history):
        comparison = master_data_service.get_department_detail(db, department.id, admin, FY).year_comparison
        assert comparison.previous_year == PREVIOUS_FY
        assert comparison.previous.total_allocated == 80000
        assert comparison.current.total_allocated == 120000
        assert comparison.allocated_change_percent == 50.0
        assert comparison.spent_change_percent == -25.0
        assert comparison.utilization_change == -25.0

    def test_no_previous_year_reports_zero_change(self, db, admin, other_department):
        comparison = master_data_service.get_department_detail(
            db, other_department.id, admin, FY
        ).year_comparison
        assert comparison.allocated_change_percent == 0.0
        assert comparison.utilization_change == 0.0

    def test_hod_of_other_department_refused(self, db, other_hod, department):
        with pytest.raises(PermissionDenied):
            master_data_service.get_department_detail(db, department.id, other_hod, FY)

    def test_own_department_via_api(self, client, hod, department, history):
        resp = client.get(
            f"/api/departments/{department.id}/detail",
            params={"financial_year": FY},
            headers=auth_headers(hod),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["department"]["code"] == "CSE"
        assert len(body["expenditures"]) == 3
