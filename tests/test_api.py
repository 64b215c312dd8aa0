"""
CBMS - API Endpoint Tests

HTTP-level behaviour of the cross-cutting endpoints:
- Authentication, access token claims, the error envelope and role checks
- Workflow transition table
- Reconciliation figures
- Reports and file exports
- File uploads
- Settings and notifications
"""

from datetime import date
from decimal import Decimal

import pytest

from cbms.models import Allocation, Expenditure
from cbms.services import reconciliation_service
from cbms.utils.security import claims_for, create_access_token, subject_user_id, verify_token

from conftest import BILL_DATE, FY, PASSWORD, auth_headers


# =============================================================================
# AUTHENTICATION
# =============================================================================

class TestAuth:
    """Login, tokens and the error envelope."""

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_login_returns_token(self, client, staff):
        resp = client.post("/api/auth/login", data={"username": staff.email, "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == staff.email

    def test_wrong_password(self, client, staff):
        resp = client.post("/api/auth/login", data={"username": staff.email, "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTH_ERROR"

    def test_missing_token_envelope(self, client):
        resp = client.get("/api/budget-proposals/")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json() == {
            "success": False,
            "error": {"code": "AUTH_ERROR", "message": "Not authenticated."},
        }

    def test_invalid_token(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_inactive_user_rejected(self, client, db, staff):
        staff.is_active = False
        db.commit()
        resp = client.get("/api/auth/me", headers=auth_headers(staff))
        assert resp.status_code == 401

    def test_audit_log_requires_role(self, client, staff, auditor):
        assert client.get("/api/audit-logs/", headers=auth_headers(staff)).status_code == 403
        assert client.get("/api/audit-logs/", headers=auth_headers(auditor)).status_code == 200

    def test_request_validation_envelope(self, client, staff):
        resp = client.post("/api/expenditures/", json={}, headers=auth_headers(staff))
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert {"budget_head_id", "bill_number"} <= {e["field"] for e in error["details"]["errors"]}


class TestAccessTokens:
    """Claims signed into the access token."""

    def test_claims_describe_the_user(self, staff):
        claims = verify_token(create_access_token(claims_for(staff)))
        assert claims["sub"] == str(staff.id)
        assert claims["role"] == "department"
        assert claims["email"] == staff.email
        assert claims["department_id"] == staff.department_id
        assert claims["exp"] > claims["iat"]
        assert subject_user_id(claims) == staff.id

    def test_college_role_has_no_department(self, admin):
        assert claims_for(admin)["department_id"] is None

    def test_tampered_token_rejected(self, staff):
        token = create_access_token(claims_for(staff))
        with pytest.raises(ValueError):
            verify_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))

    def test_missing_subject_rejected(self):
        with pytest.raises(ValueError):
            subject_user_id({"role": "admin"})

    def test_role_change_applies_before_expiry(self, client, db, staff):
        headers = auth_headers(staff)
        staff.role = "auditor"
        staff.department_id = None
        db.commit()
        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["role"] == "auditor"


# =============================================================================
# WORKFLOW TABLE
# =============================================================================

class TestWorkflowTable:
    """The transition table served to clients."""

    def test_proposal_transitions(self, client, staff):
        resp = client.get("/api/workflow/transitions", params={"document": "proposal"}, headers=auth_headers(staff))
        assert resp.status_code == 200
        table = {t["action"]: t for t in resp.json()}
        assert set(table) == {"submit", "verify", "approve", "reject", "resubmit"}
        assert table["submit"]["from_statuses"] == ["draft", "revised"]
        assert table["approve"]["to_status"] == "approved"
        assert "office" in table["approve"]["roles"]

    def test_full_table(self, client, staff):
        resp = client.get("/api/workflow/transitions", headers=auth_headers(staff))
        documents = {t["document"] for t in resp.json()}
        assert documents == {"proposal", "expenditure", "allocation_amendment", "budget_override"}


# =============================================================================
# RECONCILIATION
# =============================================================================

class TestReconciliation:
    """Historic and current-year figures for a proposal's department."""

    def _book(self, db, staff, department, budget_head, number, amount, status):
        db.add(Expenditure(
            department_id=department.id, budget_head_id=budget_head.id, financial_year=FY,
            bill_number=number, bill_date=BILL_DATE, bill_amount=Decimal(amount),
            party_name="Vendor", expense_details="Supplies", status=status,
            submitted_by_id=staff.id,
        ))

    def test_figures(self, db, staff, department, budget_head, allocation):
        allocation.spent_amount = Decimal("40000")
        self._book(db, staff, department, budget_head, "B-1", "5000", "pending")
        self._book(db, staff, department, budget_head, "B-2", "3000", "rejected")
        db.commit()

        figures = reconciliation_service.compute_figures(
            db, department.id, "2028-2029", budget_head.id, today=date(2026, 9, 1)
        )
        assert figures.previous_financial_year == FY
        assert figures.current_financial_year == FY
        assert figures.prev_year_allocated == 100000
        assert figures.prev_year_spent == 40000
        assert figures.prev_year_balance == 60000
        assert figures.current_year_spent == 8000

    def test_department_without_history(self, db, other_department):
        figures = reconciliation_service.compute_figures(
            db, other_department.id, "2027-2028", today=date(2026, 9, 1)
        )
        assert figures.prev_year_allocated == 0
        assert figures.prev_year_balance == 0

    def test_department_user_sees_only_own_department(self, client, staff, other_department):
        resp = client.get(
            f"/api/reconciliation/departments/{other_department.id}",
            params={"financial_year": "2027-2028"},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 403

    def test_all_departments_for_approvers(self, client, principal, department, other_department):
        resp = client.get(
            "/api/reconciliation/departments",
            params={"financial_year": "2027-2028"},
            headers=auth_headers(principal),
        )
        assert resp.status_code == 200
        assert len(resp.json()["figures"]) == 2


# =============================================================================
# REPORTS
# =============================================================================

class TestReports:
    """JSON reports and file exports."""

    def test_consolidated(self, client, db, principal, allocation):
        allocation.spent_amount = Decimal("25000")
        db.commit()
        resp = client.get("/api/reports/consolidated", params={"financial_year": FY}, headers=auth_headers(principal))
        assert resp.status_code == 200
        rows = resp.json()["rows"]
        assert len(rows) == 1
        assert rows[0]["allocated"] == 100000
        assert rows[0]["spent"] == 25000
        assert rows[0]["remaining"] == 75000

    def test_consolidated_csv(self, client, principal, allocation):
        resp = client.get(
            "/api/reports/consolidated/csv", params={"financial_year": FY}, headers=auth_headers(principal)
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        disposition = resp.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="cbms_consolidated_2026-2027_')
        header = resp.content.decode("utf-8-sig").splitlines()[0]
        assert header.startswith("Department,Budget Head,Proposed,Allocated,Spent")

    def test_consolidated_excel(self, client, principal, allocation):
        resp = client.get(
            "/api/reports/consolidated/excel", params={"financial_year": FY}, headers=auth_headers(principal)
        )
        assert resp.status_code == 200
        assert resp.headers["content-disposition"].endswith('.xlsx"')
        assert resp.content[:2] == b"PK"

    def test_year_format_is_validated(self, client, principal):
        resp = client.get(
            "/api/reports/consolidated", params={"financial_year": "2026"}, headers=auth_headers(principal)
        )
        assert resp.status_code == 422


# =============================================================================
# FILES
# =============================================================================

class TestFiles:
    """Attachment upload and download."""

    def test_upload_and_download(self, client, staff):
        resp = client.post(
            "/api/files/upload",
            files={"file": ("bill scan.pdf", b"%PDF-1.4 test", "application/pdf")},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["original_name"] == "bill scan.pdf"
        assert body["size"] == len(b"%PDF-1.4 test")
        assert body["filename"].endswith("_bill_scan.pdf")

        download = client.get(body["url"], headers=auth_headers(staff))
        assert download.status_code == 200
        assert download.content == b"%PDF-1.4 test"

    def test_disallowed_type(self, client, staff):
        resp = client.post(
            "/api/files/upload",
            files={"file": ("script.sh", b"echo hi", "text/x-shellscript")},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_path_outside_uploads_is_not_found(self, client, staff):
        resp = client.get("/api/files/..%2F..%2Fetc%2Fpasswd", headers=auth_headers(staff))
        assert resp.status_code == 404


# =============================================================================
# SETTINGS AND NOTIFICATIONS
# =============================================================================

class TestSettings:
    """Runtime settings."""

    def test_defaults_listed(self, client, staff):
        resp = client.get("/api/settings/", headers=auth_headers(staff))
        keys = {s["key"] for s in resp.json()}
        assert {"budget_overspend_policy", "vice_principal_approval_limit", "budget_exhaustion_threshold"} <= keys

    def test_admin_updates_policy(self, client, admin):
        resp = client.put(
            "/api/settings/budget_overspend_policy", json={"value": "override"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 200
        assert resp.json()["value"] == "override"

    def test_invalid_policy_rejected(self, client, admin):
        resp = client.put(
            "/api/settings/budget_overspend_policy", json={"value": "sometimes"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 422

    def test_non_admin_cannot_update(self, client, office):
        resp = client.put(
            "/api/settings/budget_overspend_policy", json={"value": "allow"}, headers=auth_headers(office)
        )
        assert resp.status_code == 403


class TestNotifications:
    """Inbox of the submitting user."""

    def test_approval_notifies_submitter(self, client, db, staff, principal, allocation, budget_head):
        payload = {
            "budget_head_id": budget_head.id, "bill_number": "INV-9", "bill_date": BILL_DATE.isoformat(),
            "bill_amount": 1000, "party_name": "Vendor", "expense_details": "Chalk",
        }
        created = client.post("/api/expenditures/", json=payload, headers=auth_headers(staff)).json()
        client.post(f"/api/expenditures/{created['id']}/approve", json={}, headers=auth_headers(principal))

        count = client.get("/api/notifications/unread-count", headers=auth_headers(staff)).json()
        assert count["unread"] == 1

        client.put("/api/notifications/read-all", headers=auth_headers(staff))
        count = client.get("/api/notifications/unread-count", headers=auth_headers(staff)).json()
        assert count["unread"] == 0
        assert db.get(Allocation, allocation.id).spent_amount == 1000
