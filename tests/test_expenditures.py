"""
CBMS - Expenditure Tests

Bills are checked against the remaining allocation at submission and
charged atomically at approval:
- Budget check under each overspend policy
- Approval chain and the vice principal limit
- Budget override flow, including overrides requested after submission
- The ``allow`` policy letting remaining go negative
- Rejection and one-time resubmission
"""

from decimal import Decimal

import pytest

from cbms.exceptions import (
    ExceedsBudget,
    InvalidTransition,
    NoAllocation,
    PermissionDenied,
    ValidationError,
)
from cbms.models import Allocation, BudgetOverride, Expenditure, Notification
from cbms.schemas.expenditure import ExpenditureCreate, ExpenditureResubmit
from cbms.services import expenditure_service, override_service, settings_service
from cbms.utils.constants import SETTING_OVERSPEND_POLICY

from conftest import BILL_DATE, FY, auth_headers


def _bill(head_id, amount, number="INV-001", justification=None):
    return ExpenditureCreate(
        budget_head_id=head_id,
        bill_number=number,
        bill_date=BILL_DATE,
        bill_amount=amount,
        party_name="Scientific Supplies Ltd",
        expense_details="Glassware",
        override_justification=justification,
    )


def _spend(db, allocation, amount):
    allocation.spent_amount = Decimal(str(amount))
    db.commit()


# =============================================================================
# SUBMISSION
# =============================================================================

class TestBudgetCheck:
    """Submission-time validation against the allocation."""

    def test_bill_within_budget_is_pending(self, db, staff, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 50000), staff)
        assert exp.status == "pending"
        assert exp.financial_year == FY
        assert exp.department_id == staff.department_id

    def test_bill_over_remaining_is_rejected(self, db, staff, allocation, budget_head):
        _spend(db, allocation, 40000)
        with pytest.raises(ExceedsBudget) as exc:
            expenditure_service.create_expenditure(db, _bill(budget_head.id, 70000), staff)
        assert exc.value.remaining_amount == 60000
        assert exc.value.requested_amount == 70000
        assert db.query(Expenditure).count() == 0

    def test_exceeds_budget_envelope(self, client, db, staff, allocation, budget_head):
        _spend(db, allocation, 40000)
        payload = _bill(budget_head.id, 70000).model_dump(mode="json")
        resp = client.post("/api/expenditures/", json=payload, headers=auth_headers(staff))
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "EXCEEDS_BUDGET"
        assert error["details"]["remaining_amount"] == 60000

    def test_missing_allocation(self, db, staff, allocation, second_head):
        with pytest.raises(NoAllocation):
            expenditure_service.create_expenditure(db, _bill(second_head.id, 100), staff)

    def test_duplicate_bill_number(self, db, staff, allocation, budget_head):
        expenditure_service.create_expenditure(db, _bill(budget_head.id, 100), staff)
        with pytest.raises(ValidationError):
            expenditure_service.create_expenditure(db, _bill(budget_head.id, 200), staff)

    def test_rejected_bill_number_can_be_reused(self, db, staff, principal, allocation, budget_head):
        first = expenditure_service.create_expenditure(db, _bill(budget_head.id, 100), staff)
        expenditure_service.reject_expenditure(db, first.id, principal, "Wrong vendor")
        again = expenditure_service.create_expenditure(db, _bill(budget_head.id, 100), staff)
        assert again.status == "pending"

    def test_office_must_name_department(self, db, office, allocation, budget_head):
        with pytest.raises(ValidationError):
            expenditure_service.create_expenditure(db, _bill(budget_head.id, 100), office)


# =============================================================================
# APPROVAL
# =============================================================================

class TestApproval:
    """Approval charges the allocation."""

    def test_approval_updates_spent_amount(self, db, staff, principal, allocation, budget_head):
        _spend(db, allocation, 40000)
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 50000), staff)
        approved = expenditure_service.approve_expenditure(db, exp.id, principal)

        assert approved.status == "approved"
        row = db.get(Allocation, allocation.id)
        db.refresh(row)
        assert row.spent_amount == Decimal("90000")
        assert row.remaining_amount == Decimal("10000")

    def test_approval_fails_when_budget_was_consumed_meanwhile(
        self, db, staff, principal, allocation, budget_head
    ):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 60000), staff)
        _spend(db, allocation, 50000)
        with pytest.raises(ExceedsBudget) as exc:
            expenditure_service.approve_expenditure(db, exp.id, principal)
        assert exc.value.remaining_amount == 50000
        assert db.get(Expenditure, exp.id).status == "pending"

    def test_office_needs_verification_first(self, db, staff, office, hod, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 1000), staff)
        with pytest.raises(InvalidTransition):
            expenditure_service.approve_expenditure(db, exp.id, office)
        expenditure_service.verify_expenditure(db, exp.id, hod)
        approved = expenditure_service.approve_expenditure(db, exp.id, office)
        assert approved.status == "approved"
        assert [s.decision for s in approved.approval_steps] == ["verify", "approve"]

    def test_vice_principal_limit(self, db, staff, vice_principal, allocation, budget_head):
        big = expenditure_service.create_expenditure(db, _bill(budget_head.id, 60000, "INV-BIG"), staff)
        with pytest.raises(InvalidTransition):
            expenditure_service.approve_expenditure(db, big.id, vice_principal)

        small = expenditure_service.create_expenditure(db, _bill(budget_head.id, 30000, "INV-SMALL"), staff)
        assert expenditure_service.approve_expenditure(db, small.id, vice_principal).status == "approved"

    def test_department_user_cannot_approve(self, db, staff, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 100), staff)
        with pytest.raises(InvalidTransition):
            expenditure_service.approve_expenditure(db, exp.id, staff)

    def test_exhaustion_alert(self, db, staff, principal, office, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 95000), staff)
        expenditure_service.approve_expenditure(db, exp.id, principal)
        alerts = db.query(Notification).filter(Notification.type == "budget_alert").all()
        assert office.id in {n.user_id for n in alerts}

    def test_approve_via_api(self, client, db, staff, principal, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 2500), staff)
        resp = client.post(
            f"/api/expenditures/{exp.id}/approve",
            json={"remarks": "OK"},
            headers=auth_headers(principal),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"


# =============================================================================
# BUDGET OVERRIDES
# =============================================================================

class TestOverride:
    """Over-budget bills under the ``override`` policy."""

    @pytest.fixture(autouse=True)
    def _override_policy(self, db, admin):
        settings_service.update_setting(db, SETTING_OVERSPEND_POLICY, "override", admin)

    def test_justification_required(self, db, staff, allocation, budget_head):
        _spend(db, allocation, 90000)
        with pytest.raises(ValidationError):
            expenditure_service.create_expenditure(db, _bill(budget_head.id, 20000), staff)

    def test_override_must_be_approved_before_expenditure(
        self, db, staff, principal, allocation, budget_head
    ):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(
            db, _bill(budget_head.id, 20000, justification="Urgent repair"), staff
        )
        assert exp.override_status == "pending"
        override = db.get(BudgetOverride, exp.override_id)
        assert override.overrun_amount == Decimal("10000")

        with pytest.raises(ValidationError):
            expenditure_service.approve_expenditure(db, exp.id, principal)

        override_service.approve_override(db, exp.override_id, principal, "Approved")
        approved = expenditure_service.approve_expenditure(db, exp.id, principal)
        assert approved.status == "approved"
        row = db.get(Allocation, allocation.id)
        db.refresh(row)
        assert row.remaining_amount == Decimal("-10000")
        assert row.available_amount == Decimal("0")

    def test_office_cannot_decide_override(self, db, staff, office, allocation, budget_head):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(
            db, _bill(budget_head.id, 20000, justification="Urgent repair"), staff
        )
        with pytest.raises(InvalidTransition):
            override_service.approve_override(db, exp.override_id, office)

    def test_request_override_once_budget_was_consumed(
        self, db, staff, principal, allocation, budget_head
    ):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 60000), staff)
        assert exp.override_id is None
        _spend(db, allocation, 50000)
        with pytest.raises(ExceedsBudget):
            expenditure_service.approve_expenditure(db, exp.id, principal)

        requested = expenditure_service.request_override(db, exp.id, "Supplier deadline", staff)
        assert requested.status == "pending"
        assert requested.override_status == "pending"
        assert db.get(BudgetOverride, requested.override_id).overrun_amount == Decimal("10000")

        override_service.approve_override(db, requested.override_id, principal)
        assert expenditure_service.approve_expenditure(db, exp.id, principal).status == "approved"
        row = db.get(Allocation, allocation.id)
        db.refresh(row)
        assert row.remaining_amount == Decimal("-10000")

    def test_request_override_after_rejected_override(
        self, db, staff, principal, allocation, budget_head
    ):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(
            db, _bill(budget_head.id, 20000, justification="Urgent repair"), staff
        )
        first_override = exp.override_id
        override_service.reject_override(db, first_override, principal, "Find savings")
        with pytest.raises(ValidationError):
            expenditure_service.approve_expenditure(db, exp.id, principal)

        again = expenditure_service.request_override(db, exp.id, "No savings found", staff)
        assert again.override_id != first_override
        assert again.override_status == "pending"

    def test_request_override_refused_while_bill_fits(self, db, staff, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 1000), staff)
        with pytest.raises(ValidationError):
            expenditure_service.request_override(db, exp.id, "Just in case", staff)
        assert db.query(BudgetOverride).count() == 0

    def test_request_override_refused_while_one_is_pending(self, db, staff, allocation, budget_head):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(
            db, _bill(budget_head.id, 20000, justification="Urgent repair"), staff
        )
        with pytest.raises(ValidationError):
            expenditure_service.request_override(db, exp.id, "Second attempt", staff)

    def test_other_department_cannot_request_override(
        self, db, staff, other_hod, allocation, budget_head
    ):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 60000), staff)
        _spend(db, allocation, 50000)
        with pytest.raises(PermissionDenied):
            expenditure_service.request_override(db, exp.id, "Not mine", other_hod)

    def test_request_override_via_api(self, client, db, staff, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 60000), staff)
        _spend(db, allocation, 50000)
        resp = client.post(
            f"/api/expenditures/{exp.id}/request-override",
            json={"justification": "Supplier deadline"},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 200
        assert resp.json()["override_status"] == "pending"


# =============================================================================
# ALLOW POLICY
# =============================================================================

class TestAllowPolicy:
    """Over-budget bills under the ``allow`` policy need no override."""

    @pytest.fixture(autouse=True)
    def _allow_policy(self, db, admin):
        settings_service.update_setting(db, SETTING_OVERSPEND_POLICY, "allow", admin)

    def test_over_budget_bill_is_accepted(self, db, staff, allocation, budget_head):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 20000), staff)
        assert exp.status == "pending"
        assert exp.override_id is None
        assert db.query(BudgetOverride).count() == 0

    def test_approval_takes_remaining_negative(self, db, staff, principal, allocation, budget_head):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 20000), staff)
        approved = expenditure_service.approve_expenditure(db, exp.id, principal)
        assert approved.status == "approved"
        row = db.get(Allocation, allocation.id)
        db.refresh(row)
        assert row.spent_amount == Decimal("110000")
        assert row.remaining_amount == Decimal("-10000")
        assert row.available_amount == Decimal("0")

    def test_override_request_not_offered(self, db, staff, allocation, budget_head):
        _spend(db, allocation, 90000)
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 20000), staff)
        with pytest.raises(ValidationError):
            expenditure_service.request_override(db, exp.id, "Not needed", staff)


# =============================================================================
# REJECTION AND RESUBMISSION
# =============================================================================

class TestRejectAndResubmit:
    """Rejected bills may be resubmitted once by their submitter."""

    @pytest.fixture
    def rejected(self, db, staff, principal, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 5000), staff)
        return expenditure_service.reject_expenditure(db, exp.id, principal, "Attach the invoice")

    def test_reject_requires_remarks(self, db, staff, principal, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 5000), staff)
        with pytest.raises(ValidationError):
            expenditure_service.reject_expenditure(db, exp.id, principal, "")
        assert db.get(Expenditure, exp.id).status == "pending"

    def test_resubmit_creates_pending_copy(self, db, staff, rejected):
        data = ExpenditureResubmit(resubmission_remarks="Invoice attached", bill_amount=4500)
        copy = expenditure_service.resubmit_expenditure(db, rejected.id, data, staff)

        assert copy.id != rejected.id
        assert copy.status == "pending"
        assert copy.is_resubmission is True
        assert copy.original_expenditure_id == rejected.id
        assert copy.bill_amount == 4500
        assert copy.bill_number == rejected.bill_number
        assert copy.party_name == rejected.party_name

    def test_resubmit_only_once(self, db, staff, rejected):
        data = ExpenditureResubmit(resubmission_remarks="Invoice attached")
        expenditure_service.resubmit_expenditure(db, rejected.id, data, staff)
        with pytest.raises(ValidationError):
            expenditure_service.resubmit_expenditure(db, rejected.id, data, staff)

    def test_resubmit_requires_remarks(self, db, staff, rejected):
        with pytest.raises(ValidationError):
            expenditure_service.resubmit_expenditure(db, rejected.id, ExpenditureResubmit(), staff)

    def test_only_submitter_resubmits(self, db, hod, rejected):
        data = ExpenditureResubmit(resubmission_remarks="Invoice attached")
        with pytest.raises(PermissionDenied):
            expenditure_service.resubmit_expenditure(db, rejected.id, data, hod)

    def test_pending_bill_cannot_be_resubmitted(self, db, staff, allocation, budget_head):
        exp = expenditure_service.create_expenditure(db, _bill(budget_head.id, 100), staff)
        data = ExpenditureResubmit(resubmission_remarks="Again")
        with pytest.raises(InvalidTransition):
            expenditure_service.resubmit_expenditure(db, exp.id, data, staff)
