"""
Row-level security tests.

Tests cover:
  - assigned_rows scope: only rows the actor is assigned to
  - own_rows scope: only rows the actor created
  - scope "all" for non-super-admins narrows to assigned rows
  - include_all never widens a filtered view
  - super-admins see every row
  - denied row access lands in the ledger with result=failure
  - restricted and read-only columns
"""

import pytest
from sqlalchemy import select

from sheetgov.core.exceptions import AccessDenied
from sheetgov.models import db
from sheetgov.models.audit import SheetAuditEntry
from sheetgov.services.access_service import resolve_access
from sheetgov.services.row_security import (
    ALL_SCOPE_POLICY,
    build_row_filter,
    check_editable_columns,
    effective_scope,
    visible_data,
)
from sheetgov.services.row_service import assign_row, create_row, get_row, list_rows, update_row
from sheetgov.services.workflow_service import list_pending_approvals, submit_row


def _ids(result):
    return sorted(item["id"] for item in result["items"])


@pytest.fixture()
def rows(make_sheet, make_staff, grant, admin):
    """One row each for Alice and Bob, plus one row the admin keeps."""
    make_sheet("loans-q1", row_assignment={"auto_assign_on_create": True})
    alice = make_staff(name="Alice")
    bob = make_staff(name="Bob")
    grant(alice, create=True, edit=True, submit=True)
    grant(bob, create=True, edit=True)
    _access, a_row = create_row(alice, "loans-q1", {"amount": 1, "reference": "A-1"})
    _access, b_row = create_row(bob, "loans-q1", {"amount": 2, "reference": "B-1"})
    _access, admin_row = create_row(admin, "loans-q1", {"amount": 3, "reference": "X-1"})
    return {"alice": alice, "bob": bob, "a": a_row.id, "b": b_row.id, "admin_row": admin_row.id}


# ═════════════════════════════════════════════════════════════════════════
# SCOPES
# ═════════════════════════════════════════════════════════════════════════

class TestScopes:
    def test_assigned_rows_scope(self, rows):
        assert _ids(list_rows(rows["alice"], "loans-q1")) == [rows["a"]]
        assert _ids(list_rows(rows["bob"], "loans-q1")) == [rows["b"]]

    def test_include_all_cannot_widen(self, rows):
        result = list_rows(rows["alice"], "loans-q1", include_all=True)
        assert _ids(result) == [rows["a"]]
        assert result["row_filter"] == {"enforced": True, "scope": "assigned_rows"}

    def test_scope_all_follows_policy(self, rows, make_staff, grant):
        broad = make_staff()
        grant(broad, scope="all")
        access = resolve_access(broad, "loans-q1")
        assert ALL_SCOPE_POLICY == "assigned_rows"
        assert effective_scope(access) == ALL_SCOPE_POLICY
        assert build_row_filter(access).enforced is True
        assert list_rows(broad, "loans-q1")["total"] == 0

    def test_scope_all_sees_rows_assigned_to_it(self, rows, make_staff, grant, admin):
        broad = make_staff()
        grant(broad, scope="all")
        _access, row = create_row(admin, "loans-q1", {"amount": 9}, assigned_to=[broad.id])
        assert _ids(list_rows(broad, "loans-q1")) == [row.id]

    def test_scope_all_reviewer_queue_is_narrowed(self, rows, make_staff, grant, admin):
        reviewer = make_staff()
        grant(reviewer, scope="all", approve=True)
        submit_row(rows["alice"], "loans-q1", rows["a"])
        assert list_pending_approvals(reviewer, "loans-q1") == []

        assign_row(admin, "loans-q1", rows["a"], reviewer.id)
        assert [row.id for _access, row in list_pending_approvals(reviewer, "loans-q1")] == [rows["a"]]

    def test_own_rows_scope(self, rows, make_staff, grant, admin):
        owner = make_staff()
        grant(owner, scope="own_rows", create=True)
        _access, mine = create_row(owner, "loans-q1", {"amount": 4})
        # Assigned to the owner but created by the admin: outside own_rows
        create_row(admin, "loans-q1", {"amount": 5}, assigned_to=[owner.id])
        result = list_rows(owner, "loans-q1")
        assert _ids(result) == [mine.id]
        assert result["row_filter"]["scope"] == "own_rows"

    def test_super_admin_sees_everything(self, rows, admin):
        result = list_rows(admin, "loans-q1")
        assert _ids(result) == sorted([rows["a"], rows["b"], rows["admin_row"]])
        assert result["row_filter"] == {"enforced": False, "scope": "all"}


# ═════════════════════════════════════════════════════════════════════════
# DENIALS
# ═════════════════════════════════════════════════════════════════════════

class TestDenials:
    def test_read_outside_scope_is_denied_and_audited(self, rows):
        with pytest.raises(AccessDenied) as exc_info:
            get_row(rows["alice"], "loans-q1", rows["b"])
        assert exc_info.value.reason == "scope"

        entry = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.result == "failure")
        ).scalar_one()
        assert entry.action == "read"
        assert entry.row_id == rows["b"]
        assert entry.actor_id == rows["alice"].id
        assert entry.context["reason"] == "scope"

    def test_update_outside_scope_is_denied(self, rows):
        with pytest.raises(AccessDenied):
            update_row(rows["bob"], "loans-q1", rows["a"], {"amount": 100})
        failures = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.result == "failure")
        ).scalars().all()
        assert [e.action for e in failures] == ["update"]

    def test_successful_reads_are_not_audited(self, rows):
        get_row(rows["alice"], "loans-q1", rows["a"])
        reads = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.action == "read")
        ).scalars().all()
        assert reads == []


# ═════════════════════════════════════════════════════════════════════════
# COLUMNS
# ═════════════════════════════════════════════════════════════════════════

class TestColumnRestrictions:
    def test_restricted_column_hidden(self, make_sheet, make_staff, grant, admin):
        make_sheet("loans-q1")
        analyst = make_staff()
        grant(analyst, restricted_columns=["risk_score"])
        create_row(admin, "loans-q1", {"amount": 10, "risk_score": 7}, assigned_to=[analyst.id])
        result = list_rows(analyst, "loans-q1")
        assert "risk_score" not in result["items"][0]["data"]
        assert "risk_score" not in [c["key"] for c in result["columns"]]
        assert result["items"][0]["data"]["amount"] == 10

    def test_restricted_column_not_writable(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1")
        analyst = make_staff()
        grant(analyst, create=True, edit=True, restricted_columns=["risk_score"])
        with pytest.raises(AccessDenied) as exc_info:
            create_row(analyst, "loans-q1", {"amount": 10, "risk_score": 2})
        assert exc_info.value.reason == "restricted_columns"
        _access, row = create_row(analyst, "loans-q1", {"amount": 10})
        with pytest.raises(AccessDenied):
            update_row(analyst, "loans-q1", row.id, {"risk_score": 3})

    def test_read_only_column_settable_only_on_create(self, make_sheet, make_staff, grant):
        columns = [
            {"key": "amount", "type": "currency", "required": True},
            {"key": "loan_code", "type": "text", "read_only": True},
        ]
        make_sheet("loans-q1", columns=columns)
        clerk = make_staff()
        grant(clerk, create=True, edit=True)
        _access, row = create_row(clerk, "loans-q1", {"amount": 1, "loan_code": "LN-001"})
        assert row.data["loan_code"] == "LN-001"
        with pytest.raises(AccessDenied) as exc_info:
            update_row(clerk, "loans-q1", row.id, {"loan_code": "LN-002"})
        assert exc_info.value.reason == "read_only_columns"

    def test_hidden_column_visible_to_super_admin_only(self, make_sheet, make_staff, grant, admin):
        columns = [
            {"key": "amount", "type": "currency", "required": True},
            {"key": "internal_note", "type": "textarea", "hidden": True},
        ]
        make_sheet("loans-q1", columns=columns)
        clerk = make_staff()
        grant(clerk)
        create_row(admin, "loans-q1", {"amount": 1, "internal_note": "watch"}, assigned_to=[clerk.id])
        assert "internal_note" not in list_rows(clerk, "loans-q1")["items"][0]["data"]
        assert list_rows(admin, "loans-q1")["items"][0]["data"]["internal_note"] == "watch"

    def test_column_helpers_directly(self, make_sheet, make_staff, grant, admin):
        make_sheet("loans-q1")
        analyst = make_staff()
        grant(analyst, restricted_columns=["risk_score"])
        _access, row = create_row(admin, "loans-q1", {"amount": 10, "risk_score": 7})

        access = resolve_access(analyst, "loans-q1")
        assert "risk_score" not in visible_data(access, row)
        check_editable_columns(access, ["amount"])
        with pytest.raises(AccessDenied):
            check_editable_columns(access, ["amount", "risk_score"], creating=True)

        admin_access = resolve_access(admin, "loans-q1")
        assert visible_data(admin_access, row)["risk_score"] == 7
        check_editable_columns(admin_access, ["risk_score"])
