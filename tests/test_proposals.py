"""
CBMS - Budget Proposal Tests

Covers the proposal lifecycle:
- Draft creation and total computation
- Submission validation
- Verify / approve / reject role and status rules
- Resubmission of rejected proposals
- Allocation from approved proposals
"""

import pytest

from cbms.exceptions import InvalidTransition, PermissionDenied, ValidationError
from cbms.models import Allocation, BudgetProposal
from cbms.schemas.proposal import ProposalCreate, ProposalItemIn
from cbms.services import proposal_service

from conftest import FY, auth_headers


def _create(db, user, head_ids, amounts=(10000, 5000), justification="Needed for labs"):
    data = ProposalCreate(
        financial_year=FY,
        items=[
            ProposalItemIn(budget_head_id=h, proposed_amount=a, justification=justification)
            for h, a in zip(head_ids, amounts)
        ],
        notes="Annual proposal",
    )
    return proposal_service.create_proposal(db, data, user)


@pytest.fixture
def draft(db, staff, budget_head, second_head):
    return _create(db, staff, [budget_head.id, second_head.id])


@pytest.fixture
def submitted(db, staff, draft):
    return proposal_service.submit_proposal(db, draft.id, staff)


# =============================================================================
# CREATION
# =============================================================================

class TestProposalCreation:
    """Draft creation rules."""

    def test_total_is_sum_of_items(self, draft):
        assert draft.status == "draft"
        assert draft.total_proposed_amount == 15000
        assert [i.position for i in draft.items] == [0, 1]

    def test_department_user_cannot_target_other_department(
        self, db, staff, other_department, budget_head
    ):
        data = ProposalCreate(
            financial_year=FY,
            department_id=other_department.id,
            items=[ProposalItemIn(budget_head_id=budget_head.id, proposed_amount=100, justification="x")],
        )
        with pytest.raises(PermissionDenied):
            proposal_service.create_proposal(db, data, staff)

    def test_office_must_name_department(self, db, office, budget_head):
        data = ProposalCreate(financial_year=FY, items=[])
        with pytest.raises(ValidationError):
            proposal_service.create_proposal(db, data, office)

    def test_second_open_proposal_rejected(self, db, staff, draft, budget_head):
        with pytest.raises(ValidationError):
            _create(db, staff, [budget_head.id], amounts=(500,))

    def test_auditor_cannot_create(self, db, auditor, department):
        data = ProposalCreate(financial_year=FY, department_id=department.id)
        with pytest.raises(PermissionDenied):
            proposal_service.create_proposal(db, data, auditor)


# =============================================================================
# SUBMISSION
# =============================================================================

class TestProposalSubmission:
    """Submission validation and double-submit protection."""

    def test_submit_moves_to_submitted(self, submitted):
        assert submitted.status == "submitted"
        assert submitted.submitted_date is not None

    def test_double_submit_is_invalid_transition(self, db, staff, submitted):
        with pytest.raises(InvalidTransition):
            proposal_service.submit_proposal(db, submitted.id, staff)
        assert db.get(BudgetProposal, submitted.id).status == "submitted"

    def test_empty_proposal_cannot_be_submitted(self, db, staff):
        draft = proposal_service.create_proposal(db, ProposalCreate(financial_year=FY), staff)
        with pytest.raises(ValidationError) as exc:
            proposal_service.submit_proposal(db, draft.id, staff)
        assert exc.value.errors == [{"field": "items", "message": "At least one item is required"}]

    def test_every_incomplete_item_is_reported(self, db, staff, budget_head):
        data = ProposalCreate(
            financial_year=FY,
            items=[
                ProposalItemIn(budget_head_id=budget_head.id, proposed_amount=100, justification=""),
                ProposalItemIn(budget_head_id=budget_head.id, proposed_amount=0, justification="ok"),
            ],
        )
        draft = proposal_service.create_proposal(db, data, staff)
        with pytest.raises(ValidationError) as exc:
            proposal_service.submit_proposal(db, draft.id, staff)
        reported = {(e["item"], e["field"]) for e in exc.value.errors}
        assert reported == {(0, "justification"), (1, "proposed_amount")}
        assert db.get(BudgetProposal, draft.id).status == "draft"

    def test_submit_via_api(self, client, staff, draft):
        resp = client.post(f"/api/budget-proposals/{draft.id}/submit", headers=auth_headers(staff))
        assert resp.status_code == 200
        assert resp.json()["status"] == "submitted"

    def test_double_submit_via_api_returns_409(self, client, staff, submitted):
        resp = client.post(f"/api/budget-proposals/{submitted.id}/submit", headers=auth_headers(staff))
        assert resp.status_code == 409
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_TRANSITION"


# =============================================================================
# DECISIONS
# =============================================================================

class TestProposalDecisions:
    """Verify, approve and reject."""

    def test_office_cannot_approve_unverified(self, db, office, submitted):
        with pytest.raises(InvalidTransition):
            proposal_service.approve_proposal(db, submitted.id, office)

    def test_office_approves_after_hod_verification(self, db, hod, office, submitted):
        verified = proposal_service.verify_proposal(db, submitted.id, hod, "Checked")
        assert verified.status == "verified"
        approved = proposal_service.approve_proposal(db, submitted.id, office)
        assert approved.status == "approved"
        assert approved.approved_by_id == office.id
        assert [s.decision for s in approved.approval_steps] == ["verify", "approve"]

    def test_principal_approves_submitted_directly(self, db, principal, submitted):
        approved = proposal_service.approve_proposal(db, submitted.id, principal)
        assert approved.status == "approved"

    def test_hod_of_other_department_cannot_verify(self, db, other_hod, submitted):
        with pytest.raises(InvalidTransition):
            proposal_service.verify_proposal(db, submitted.id, other_hod)

    def test_reject_requires_reason(self, db, principal, submitted):
        with pytest.raises(ValidationError):
            proposal_service.reject_proposal(db, submitted.id, principal, "   ")
        assert db.get(BudgetProposal, submitted.id).status == "submitted"

    def test_reject_records_reason(self, db, principal, submitted):
        rejected = proposal_service.reject_proposal(db, submitted.id, principal, "Too high")
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Too high"


# =============================================================================
# RESUBMISSION
# =============================================================================

class TestProposalResubmission:
    """Rejected proposals come back as new drafts."""

    def test_resubmit_copies_items_and_revises_original(self, db, staff, principal, submitted):
        proposal_service.reject_proposal(db, submitted.id, principal, "Justify more")
        copy = proposal_service.resubmit_proposal(db, submitted.id, staff)

        assert copy.id != submitted.id
        assert copy.status == "draft"
        assert copy.original_proposal_id == submitted.id
        assert copy.notes.startswith(f"Resubmission of rejected proposal {submitted.id}.")
        fields = ("position", "budget_head_id", "proposed_amount", "justification", "previous_year_utilization")
        assert [tuple(getattr(i, f) for f in fields) for i in copy.items] == [
            tuple(getattr(i, f) for f in fields) for i in submitted.items
        ]
        assert copy.total_proposed_amount == submitted.total_proposed_amount
        assert db.get(BudgetProposal, submitted.id).status == "revised"

    def test_only_rejected_proposals_can_be_resubmitted(self, db, staff, submitted):
        with pytest.raises(InvalidTransition):
            proposal_service.resubmit_proposal(db, submitted.id, staff)


# =============================================================================
# ALLOCATION
# =============================================================================

class TestProposalAllocation:
    """Allocations created from approved proposals."""

    def test_allocate_all_items(self, db, principal, submitted, budget_head, second_head):
        proposal_service.approve_proposal(db, submitted.id, principal)
        result = proposal_service.allocate_proposal(db, submitted.id, principal)

        assert len(result.created) == 2
        assert result.skipped == []
        amounts = {
            a.budget_head_id: float(a.allocated_amount)
            for a in db.query(Allocation).filter(Allocation.source_proposal_id == submitted.id)
        }
        assert amounts == {budget_head.id: 10000.0, second_head.id: 5000.0}

    def test_second_allocate_skips_allocated_items(self, db, principal, submitted):
        proposal_service.approve_proposal(db, submitted.id, principal)
        proposal_service.allocate_proposal(db, submitted.id, principal)
        again = proposal_service.allocate_proposal(db, submitted.id, principal)
        assert again.created == []
        assert len(again.skipped) == 2

    def test_unapproved_proposal_cannot_be_allocated(self, db, principal, submitted):
        with pytest.raises(ValidationError):
            proposal_service.allocate_proposal(db, submitted.id, principal)

    def test_allocate_single_item(self, db, office, principal, submitted):
        proposal_service.approve_proposal(db, submitted.id, principal)
        item_id = submitted.items[0].id
        allocation_id = proposal_service.allocate_item(db, submitted.id, item_id, office)
        assert db.get(Allocation, allocation_id).allocated_amount == 10000
        with pytest.raises(ValidationError):
            proposal_service.allocate_item(db, submitted.id, item_id, office)
