"""
CBMS - Allocation and Amendment Tests

- Direct allocation creation and uniqueness
- Deletion guard for allocations in use
- Amendment requests, their computed change and the approval outcome
- Frozen (locked/closed) financial years
- Edits never taking the amount below what is spent
- Version history and rollback
- Bulk creation, spreadsheet uploads and the upload template
- Allocation statistics
"""

import io
from datetime import date
from decimal import Decimal

import pytest
from openpyxl import Workbook, load_workbook

from cbms.exceptions import InvalidTransition, NotFound, PermissionDenied, ValidationError
from cbms.models import Allocation, AllocationAmendment, AllocationHistory, BudgetHead, FinancialYear
from cbms.parsers import parse_allocation_sheet
from cbms.schemas.allocation import (
    AllocationBulkCreate,
    AllocationCreate,
    AllocationUpdate,
    AmendmentCreate,
)
from cbms.schemas.common import PaginationParams
from cbms.services import allocation_service, amendment_service

from conftest import FY, auth_headers


def _lock(db, year=FY):
    db.add(FinancialYear(year=year, start_date=date(2026, 4, 1), end_date=date(2027, 3, 31), status="locked"))
    db.commit()


# =============================================================================
# ALLOCATIONS
# =============================================================================

class TestAllocations:
    """Allocation CRUD rules."""

    def test_create_allocation(self, db, office, department, budget_head):
        data = AllocationCreate(
            financial_year=FY, department_id=department.id, budget_head_id=budget_head.id,
            allocated_amount=25000,
        )
        created = allocation_service.create_allocation(db, data, office)
        assert created.allocated_amount == 25000
        assert created.spent_amount == 0

    def test_duplicate_triple_rejected(self, db, office, allocation):
        data = AllocationCreate(
            financial_year=FY, department_id=allocation.department_id,
            budget_head_id=allocation.budget_head_id, allocated_amount=1,
        )
        with pytest.raises(ValidationError):
            allocation_service.create_allocation(db, data, office)

    def test_locked_year_blocks_creation(self, db, office, department, budget_head):
        _lock(db)
        data = AllocationCreate(
            financial_year=FY, department_id=department.id, budget_head_id=budget_head.id,
            allocated_amount=100,
        )
        with pytest.raises(ValidationError):
            allocation_service.create_allocation(db, data, office)

    def test_department_head_must_match(self, db, office, other_department, department):
        head = BudgetHead(code="PHY-LAB", name="Physics Lab", category="lab_equipment",
                          department_id=other_department.id)
        db.add(head)
        db.commit()
        data = AllocationCreate(
            financial_year=FY, department_id=department.id, budget_head_id=head.id,
            allocated_amount=100,
        )
        with pytest.raises(ValidationError):
            allocation_service.create_allocation(db, data, office)

    def test_allocation_in_use_cannot_be_deleted(self, db, admin, allocation):
        allocation.spent_amount = 10
        db.commit()
        with pytest.raises(ValidationError):
            allocation_service.delete_allocation(db, allocation.id, admin)

    def test_delete_unused_allocation(self, db, admin, allocation):
        allocation_service.delete_allocation(db, allocation.id, admin)
        assert db.query(Allocation).count() == 0

    def test_department_user_cannot_create_via_api(self, client, staff, department, budget_head):
        payload = {
            "financial_year": FY, "department_id": department.id,
            "budget_head_id": budget_head.id, "allocated_amount": 100,
        }
        resp = client.post("/api/allocations/", json=payload, headers=auth_headers(staff))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"


# =============================================================================
# AMENDMENTS
# =============================================================================

class TestAmendments:
    """Amendment requests against an allocation of 100 000."""

    def _request(self, db, user, allocation, amount=120000):
        data = AmendmentCreate(
            allocation_id=allocation.id, requested_amount=amount, change_reason="New lab batch"
        )
        return amendment_service.request_amendment(db, data, user)

    def test_change_figures(self, db, hod, allocation):
        amendment = self._request(db, hod, allocation)
        assert amendment.status == "pending"
        assert amendment.original_amount == 100000
        assert amendment.change_amount == 20000
        assert amendment.change_percent == 20

    def test_decrease_has_negative_change(self, db, office, allocation):
        amendment = self._request(db, office, allocation, amount=75000)
        assert amendment.change_amount == -25000
        assert amendment.change_percent == -25

    def test_no_change_rejected(self, db, office, allocation):
        with pytest.raises(ValidationError):
            self._request(db, office, allocation, amount=100000)

    def test_other_department_cannot_request(self, db, other_hod, allocation):
        with pytest.raises(PermissionDenied):
            self._request(db, other_hod, allocation)

    def test_approval_updates_allocation(self, db, hod, principal, allocation):
        amendment = self._request(db, hod, allocation)
        approved = amendment_service.approve_amendment(db, amendment.id, principal, "Fine")
        assert approved.status == "approved"
        assert approved.approved_at is not None
        row = db.get(Allocation, allocation.id)
        db.refresh(row)
        assert row.allocated_amount == 120000
        assert row.status == "amended"

    def test_rejection_leaves_allocation(self, db, hod, admin, allocation):
        amendment = self._request(db, hod, allocation)
        rejected = amendment_service.reject_amendment(db, amendment.id, admin, "Not now")
        assert rejected.status == "rejected"
        row = db.get(Allocation, allocation.id)
        db.refresh(row)
        assert row.allocated_amount == 100000

    def test_office_cannot_approve(self, db, hod, office, allocation):
        amendment = self._request(db, hod, allocation)
        with pytest.raises(InvalidTransition):
            amendment_service.approve_amendment(db, amendment.id, office)

    def test_decided_amendment_cannot_be_decided_again(self, db, hod, principal, allocation):
        amendment = self._request(db, hod, allocation)
        amendment_service.approve_amendment(db, amendment.id, principal)
        with pytest.raises(InvalidTransition):
            amendment_service.reject_amendment(db, amendment.id, principal)

    def test_locked_year_blocks_request(self, db, office, allocation):
        _lock(db)
        with pytest.raises(ValidationError):
            self._request(db, office, allocation)

    def test_approval_below_spent_refused(self, db, office, principal, allocation):
        amendment = self._request(db, office, allocation, amount=10000)
        allocation.spent_amount = Decimal("40000")
        db.commit()
        with pytest.raises(ValidationError) as exc:
            amendment_service.approve_amendment(db, amendment.id, principal)
        assert exc.value.details["spent_amount"] == 40000
        assert exc.value.errors[0]["field"] == "allocated_amount"
        db.refresh(allocation)
        assert allocation.allocated_amount == Decimal("100000")
        assert db.get(AllocationAmendment, amendment.id).status == "pending"

    def test_approval_records_amended_version(self, db, hod, principal, allocation):
        amendment = self._request(db, hod, allocation)
        amendment_service.approve_amendment(db, amendment.id, principal)
        version = db.query(AllocationHistory).filter_by(allocation_id=allocation.id).one()
        assert version.change_type == "amended"
        assert version.previous_amount == Decimal("100000")
        assert version.new_amount == Decimal("120000")
        assert version.change_reason == "New lab batch"


# =============================================================================
# UPDATES
# =============================================================================

class TestAllocationUpdates:
    """Only amount and remarks are editable, never below what is spent."""

    def test_only_amount_and_remarks_change(self, client, db, office, other_department, allocation):
        payload = {
            "allocated_amount": 150000,
            "remarks": "Revised after review",
            "department_id": other_department.id,
            "financial_year": "2030-2031",
        }
        resp = client.put(f"/api/allocations/{allocation.id}", json=payload, headers=auth_headers(office))
        assert resp.status_code == 200
        body = resp.json()
        assert body["allocated_amount"] == 150000
        assert body["remarks"] == "Revised after review"
        assert body["department_id"] == allocation.department_id
        assert body["financial_year"] == FY

    def test_locked_year_refuses_update(self, db, office, allocation):
        _lock(db)
        with pytest.raises(ValidationError):
            allocation_service.update_allocation(
                db, allocation.id, AllocationUpdate(allocated_amount=120000), office
            )

    def test_amount_below_spent_refused(self, db, office, allocation):
        allocation.spent_amount = Decimal("40000")
        db.commit()
        with pytest.raises(ValidationError) as exc:
            allocation_service.update_allocation(
                db, allocation.id, AllocationUpdate(allocated_amount=10000), office
            )
        assert exc.value.details["spent_amount"] == 40000
        assert exc.value.errors[0]["field"] == "allocated_amount"
        db.refresh(allocation)
        assert allocation.allocated_amount == Decimal("100000")

    def test_amount_equal_to_spent_allowed(self, db, office, allocation):
        allocation.spent_amount = Decimal("40000")
        db.commit()
        updated = allocation_service.update_allocation(
            db, allocation.id, AllocationUpdate(allocated_amount=40000), office
        )
        assert updated.remaining_amount == 0

    def test_below_spent_envelope(self, client, db, office, allocation):
        allocation.spent_amount = Decimal("40000")
        db.commit()
        resp = client.put(
            f"/api/allocations/{allocation.id}",
            json={"allocated_amount": 10000},
            headers=auth_headers(office),
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["spent_amount"] == 40000


# =============================================================================
# HISTORY AND ROLLBACK
# =============================================================================

class TestAllocationHistory:
    """Numbered versions and rollback."""

    @pytest.fixture
    def tracked(self, db, office, department, budget_head):
        data = AllocationCreate(
            financial_year=FY, department_id=department.id, budget_head_id=budget_head.id,
            allocated_amount=25000, remarks="Initial",
        )
        created = allocation_service.create_allocation(db, data, office)
        allocation_service.update_allocation(
            db, created.id, AllocationUpdate(allocated_amount=60000, remarks="Second lab"), office
        )
        return created

    def test_versions_are_numbered_newest_first(self, db, tracked):
        history = allocation_service.list_allocation_history(
            db, tracked.id, PaginationParams(page=1, page_size=20)
        )
        assert history.total == 2
        assert [v.version for v in history.rows] == [2, 1]
        assert [v.change_type for v in history.rows] == ["updated", "created"]
        latest = history.rows[0]
        assert latest.previous_amount == 25000
        assert latest.new_amount == 60000
        assert latest.previous_remarks == "Initial"
        assert latest.snapshot.remarks == "Second lab"

    def test_rollback_restores_and_adds_version(self, db, office, tracked):
        result = allocation_service.rollback_allocation(db, tracked.id, 1, office)
        assert result.rolled_back_to == 1
        assert result.version == 3
        assert result.allocation.allocated_amount == 25000
        assert result.allocation.remarks == "Initial"
        version = allocation_service.get_allocation_version(db, tracked.id, 3)
        assert version.change_type == "rollback"
        assert version.change_reason == "Rolled back to version 1"

    def test_rollback_below_spent_refused(self, db, office, tracked):
        row = db.get(Allocation, tracked.id)
        row.spent_amount = Decimal("40000")
        db.commit()
        with pytest.raises(ValidationError) as exc:
            allocation_service.rollback_allocation(db, tracked.id, 1, office)
        assert exc.value.details["spent_amount"] == 40000
        db.refresh(row)
        assert row.allocated_amount == Decimal("60000")

    def test_unknown_version(self, db, office, tracked):
        with pytest.raises(NotFound):
            allocation_service.rollback_allocation(db, tracked.id, 9, office)

    def test_history_restricted_to_managers(self, client, staff, office, tracked):
        url = f"/api/allocations/{tracked.id}/history"
        assert client.get(url, headers=auth_headers(staff)).status_code == 403
        resp = client.get(url, headers=auth_headers(office))
        assert resp.status_code == 200
        assert resp.json()["total"] == 2

    def test_rollback_via_api_with_reason(self, client, office, tracked):
        resp = client.post(
            f"/api/allocations/{tracked.id}/rollback/1",
            json={"reason": "Second lab postponed"},
            headers=auth_headers(office),
        )
        assert resp.status_code == 200
        assert resp.json()["allocation"]["allocated_amount"] == 25000
        version = client.get(
            f"/api/allocations/{tracked.id}/history/3", headers=auth_headers(office)
        ).json()
        assert version["change_reason"] == "Second lab postponed"


# =============================================================================
# BULK CREATION AND UPLOAD
# =============================================================================

class TestBulkCreate:
    """JSON bulk creation keeps valid rows."""

    def test_partial_success(self, db, office, allocation, department, other_department, budget_head, second_head):
        data = AllocationBulkCreate(allocations=[
            AllocationCreate(financial_year=FY, department_id=department.id,
                             budget_head_id=second_head.id, allocated_amount=5000),
            AllocationCreate(financial_year=FY, department_id=other_department.id,
                             budget_head_id=budget_head.id, allocated_amount=7000),
            AllocationCreate(financial_year=FY, department_id=department.id,
                             budget_head_id=budget_head.id, allocated_amount=9000),
        ])
        result = allocation_service.bulk_create_allocations(db, data, office)
        assert result.created == 2
        assert result.total == 3
        assert [e.row for e in result.errors] == [3]
        assert db.query(Allocation).count() == 3

    def test_nothing_created_is_an_error(self, db, office, allocation):
        data = AllocationBulkCreate(allocations=[
            AllocationCreate(financial_year=FY, department_id=allocation.department_id,
                             budget_head_id=allocation.budget_head_id, allocated_amount=1),
        ])
        with pytest.raises(ValidationError) as exc:
            allocation_service.bulk_create_allocations(db, data, office)
        assert exc.value.errors[0]["field"] == "allocations[1]"
        assert db.query(Allocation).count() == 1


def _csv(*rows: str) -> bytes:
    header = "Department Code,Budget Head Code,Allocated Amount,Financial Year,Remarks"
    return "\n".join((header,) + rows).encode("utf-8")


class TestBulkUpload:
    """Spreadsheet uploads through ``/api/allocations/bulk-upload``."""

    def _upload(self, client, user, content, name="allocations.csv"):
        return client.post(
            "/api/allocations/bulk-upload",
            files={"file": (name, content, "text/csv")},
            headers=auth_headers(user),
        )

    def test_csv_with_bad_rows(self, client, db, office, department, budget_head, second_head):
        content = _csv(
            f"CSE,CONSUM,50000,{FY},Lab",
            f"XXX,CONSUM,100,{FY},",
            f"CSE,EVENTS,abc,{FY},",
        )
        resp = self._upload(client, office, content)
        assert resp.status_code == 201
        body = resp.json()
        assert body["total_rows"] == 3
        assert body["success_count"] == 1
        assert body["failure_count"] == 2
        assert body["status"] == "completed"
        assert [e["row"] for e in body["errors"]] == [2, 3]
        assert body["errors"][0]["error"] == "Department not found: XXX"
        assert body["errors"][1]["error"] == "Invalid allocated amount"

        log = client.get(
            f"/api/allocations/bulk-upload/{body['upload_id']}", headers=auth_headers(office)
        ).json()
        assert log["failure_count"] == 2
        assert log["financial_year"] == FY
        assert log["errors"][0]["data"]["Department Code"] == "XXX"

        created = db.query(Allocation).filter_by(budget_head_id=budget_head.id).one()
        assert created.allocated_amount == Decimal("50000")
        assert created.remarks == "Lab"

    def test_every_row_failing_marks_upload_failed(self, client, office, allocation):
        content = _csv(f"CSE,CONSUM,100,{FY},duplicate")
        body = self._upload(client, office, content).json()
        assert body["status"] == "failed"
        assert body["success_count"] == 0
        history = client.get("/api/allocations/bulk-upload/history", headers=auth_headers(office)).json()
        assert history["total"] == 1
        assert history["rows"][0]["status"] == "failed"

    def test_xlsx_upload(self, client, db, office, department, budget_head):
        wb = Workbook()
        ws = wb.active
        ws.append(["Department Code", "Budget Head Code", "Allocated Amount", "Financial Year", "Remarks"])
        ws.append(["CSE", "CONSUM", 12500, FY, None])
        buffer = io.BytesIO()
        wb.save(buffer)
        resp = self._upload(client, office, buffer.getvalue(), name="allocations.xlsx")
        assert resp.status_code == 201
        assert resp.json()["success_count"] == 1
        assert db.query(Allocation).one().allocated_amount == Decimal("12500")

    def test_missing_column_refused(self, client, office, department):
        content = b"Department Code,Allocated Amount\nCSE,100\n"
        resp = self._upload(client, office, content)
        assert resp.status_code == 422
        assert "Budget Head Code" in resp.json()["error"]["message"]

    def test_wrong_extension_refused(self, client, office):
        resp = self._upload(client, office, b"hello", name="allocations.txt")
        assert resp.status_code == 422

    def test_department_user_cannot_upload(self, client, staff, department, budget_head):
        resp = self._upload(client, staff, _csv(f"CSE,CONSUM,100,{FY},"))
        assert resp.status_code == 403


class TestUploadTemplate:
    """Template downloads parse back into the expected columns."""

    def test_csv_template(self, client, staff):
        resp = client.get("/api/allocations/bulk-upload/template", headers=auth_headers(staff))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        parsed = parse_allocation_sheet(resp.content, "template.csv")
        assert parsed.ok
        assert [r["department_code"] for r in parsed.records] == ["DEPT-001", "DEPT-002"]

    def test_xlsx_template(self, client, office):
        resp = client.get(
            "/api/allocations/bulk-upload/template",
            params={"format": "xlsx"},
            headers=auth_headers(office),
        )
        assert resp.status_code == 200
        wb = load_workbook(io.BytesIO(resp.content))
        assert wb.sheetnames == ["Allocations", "Instructions"]
        assert wb["Allocations"]["C1"].value == "Allocated Amount"


# =============================================================================
# STATISTICS
# =============================================================================

class TestAllocationStats:
    """Totals and per-department breakdown."""

    @pytest.fixture
    def physics_allocation(self, db, admin, other_department, budget_head):
        row = Allocation(
            financial_year=FY, department_id=other_department.id, budget_head_id=budget_head.id,
            allocated_amount=Decimal("50000"), spent_amount=Decimal("0"), status="active",
            created_by_id=admin.id,
        )
        db.add(row)
        db.commit()
        return row

    def test_college_wide_totals(self, db, admin, allocation, physics_allocation):
        allocation.spent_amount = Decimal("25000")
        db.commit()
        stats = allocation_service.get_allocation_stats(db, admin, FY)
        assert stats.total_allocations == 2
        assert stats.total_allocated == 150000
        assert stats.total_spent == 25000
        assert stats.remaining == 125000
        assert stats.utilization_percent == 16.67
        assert [d.department_name for d in stats.by_department] == ["Computer Science", "Physics"]
        assert stats.by_department[0].utilization_percent == 25.0

    def test_department_user_sees_own_department(self, client, staff, allocation, physics_allocation):
        resp = client.get("/api/allocations/stats", headers=auth_headers(staff))
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_allocations"] == 1
        assert body["by_department"][0]["department_id"] == staff.department_id

    def test_department_user_cannot_ask_for_other_department(self, db, staff, physics_allocation):
        with pytest.raises(PermissionDenied):
            allocation_service.get_allocation_stats(db, staff, department_id=physics_allocation.department_id)
