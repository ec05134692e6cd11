"""
Workflow engine tests.

Tests cover:
  - submit / approve / reject / return transitions and their audit entries
  - self-review is refused for every reviewer, super-admins included
  - reject needs a reason
  - every review drops the row lock, whoever holds it
  - illegal transitions leave the ledger untouched
  - sheets with approval disabled or a narrowed status list
  - bulk approval with skipped rows
  - pending-approval queue
  - administrative lock / unlock
"""

import pytest
from sqlalchemy import func, select

from sheetgov.core.exceptions import AccessDenied, InvalidTransition, PermissionDenied
from sheetgov.models import db
from sheetgov.models.audit import SheetAuditEntry
from sheetgov.services import lock_service
from sheetgov.services.row_service import assign_row, create_row, lock_row, update_row
from sheetgov.services.workflow_service import (
    admin_lock_rows,
    admin_unlock_rows,
    approve_row,
    bulk_approve,
    list_pending_approvals,
    reject_row,
    return_row,
    submit_row,
)


def _audit_count(action=None):
    query = select(func.count(SheetAuditEntry.id))
    if action:
        query = query.where(SheetAuditEntry.action == action)
    return db.session.execute(query).scalar_one()


@pytest.fixture()
def team(make_sheet, make_staff, grant):
    """A loans sheet with a maker and a checker."""
    make_sheet("loans-q1")
    maker = make_staff(name="Maker")
    checker = make_staff(name="Checker")
    grant(maker, create=True, edit=True, submit=True)
    grant(checker, scope="all", approve=True)
    return maker, checker


@pytest.fixture()
def pending_row(team, admin):
    """A submitted row assigned to both the maker and the checker."""
    maker, checker = team
    _access, row = create_row(maker, "loans-q1", {"amount": 1200, "borrower": "Ayse"})
    assign_row(admin, "loans-q1", row.id, checker.id)
    submit_row(maker, "loans-q1", row.id, notes="ready")
    return row.id


# ═════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════

class TestTransitions:
    def test_submit_sets_submitter(self, team, pending_row):
        maker, _ = team
        entry = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.action == "submit")
        ).scalar_one()
        assert entry.actor_id == maker.id
        assert entry.changes == [{"field": "status", "old_value": "draft", "new_value": "pending_review"}]
        assert entry.context["notes"] == "ready"

    def test_approve(self, team, pending_row):
        _, checker = team
        row = approve_row(checker, "loans-q1", pending_row, notes="looks fine")
        assert row.status == "approved"
        assert row.review_notes == "looks fine"
        assert row.reviewed_at is not None

    def test_reject_records_reason(self, team, pending_row):
        _, checker = team
        row = reject_row(checker, "loans-q1", pending_row, reason="income not verified")
        assert row.status == "rejected"
        entry = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.action == "reject")
        ).scalar_one()
        assert entry.context["reason"] == "income not verified"
        assert entry.context["previous_status"] == "pending_review"

    @pytest.mark.parametrize("review", [
        lambda checker, row_id: approve_row(checker, "loans-q1", row_id),
        lambda checker, row_id: reject_row(checker, "loans-q1", row_id, reason="bad"),
        lambda checker, row_id: return_row(checker, "loans-q1", row_id),
    ], ids=["approve", "reject", "return"])
    def test_review_releases_editor_lock(self, team, pending_row, review):
        maker, checker = team
        lock_row(maker, "loans-q1", pending_row)
        assert lock_service.get_lock_info(pending_row).holder_id == maker.id

        row = review(checker, pending_row)
        assert lock_service.get_lock_info(pending_row) is None
        assert row.locked_by_id is None

    def test_reject_without_reason(self, team, pending_row):
        _, checker = team
        before = _audit_count()
        with pytest.raises(InvalidTransition):
            reject_row(checker, "loans-q1", pending_row, reason="  ")
        db.session.rollback()
        assert _audit_count() == before

    def test_return_then_resubmit(self, team, pending_row):
        maker, checker = team
        row = return_row(checker, "loans-q1", pending_row, notes="fix the borrower name")
        assert row.status == "returned"
        _access, row = update_row(maker, "loans-q1", pending_row, {"borrower": "Ayse K."})
        assert row.status == "returned"
        row = submit_row(maker, "loans-q1", pending_row)
        assert row.status == "pending_review"
        assert row.review_notes is None

    def test_self_review_refused(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1")
        solo = make_staff()
        grant(solo, create=True, submit=True, approve=True)
        _access, row = create_row(solo, "loans-q1", {"amount": 10})
        submit_row(solo, "loans-q1", row.id)
        with pytest.raises(InvalidTransition, match="own submission"):
            approve_row(solo, "loans-q1", row.id)

    def test_self_review_refused_for_super_admin(self, make_sheet, admin):
        make_sheet("loans-q1")
        _access, row = create_row(admin, "loans-q1", {"amount": 10})
        submit_row(admin, "loans-q1", row.id)
        with pytest.raises(InvalidTransition):
            approve_row(admin, "loans-q1", row.id)

    def test_approve_needs_permission(self, team, pending_row, make_staff, grant):
        viewer = make_staff()
        grant(viewer, scope="all")
        with pytest.raises(PermissionDenied):
            approve_row(viewer, "loans-q1", pending_row)

    def test_illegal_transition_writes_nothing(self, team):
        maker, checker = team
        _access, row = create_row(maker, "loans-q1", {"amount": 50})
        before = _audit_count()
        with pytest.raises(InvalidTransition) as exc_info:
            approve_row(checker, "loans-q1", row.id)
        db.session.rollback()
        assert exc_info.value.current_status == "draft"
        assert _audit_count() == before

    def test_resubmit_pending_row_refused(self, team, pending_row):
        maker, _ = team
        with pytest.raises(InvalidTransition):
            submit_row(maker, "loans-q1", pending_row)

    def test_approval_disabled(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1", workflow={"enable_approval": False})
        maker = make_staff()
        grant(maker, create=True, submit=True)
        _access, row = create_row(maker, "loans-q1", {"amount": 1})
        with pytest.raises(InvalidTransition, match="disabled"):
            submit_row(maker, "loans-q1", row.id)

    def test_status_outside_allowed_list(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1", workflow={"allowed_statuses": ["draft", "pending_review", "approved"]})
        maker = make_staff()
        checker = make_staff()
        grant(maker, create=True, submit=True)
        grant(checker, scope="all", approve=True)
        _access, row = create_row(maker, "loans-q1", {"amount": 1})
        submit_row(maker, "loans-q1", row.id)
        with pytest.raises(InvalidTransition, match="not allowed"):
            return_row(checker, "loans-q1", row.id)


# ═════════════════════════════════════════════════════════════════════════
# APPROVED ROWS
# ═════════════════════════════════════════════════════════════════════════

class TestApprovedRows:
    def test_edit_approved_row_needs_approver(self, team, pending_row):
        maker, checker = team
        approve_row(checker, "loans-q1", pending_row)
        with pytest.raises(AccessDenied) as exc_info:
            update_row(maker, "loans-q1", pending_row, {"amount": 1300})
        assert exc_info.value.reason == "approved_row"

    def test_edit_approved_row_without_demotion(self, make_sheet, make_staff, grant, admin):
        make_sheet("loans-q1")
        maker = make_staff()
        grant(maker, create=True, edit=True, submit=True)
        _access, row = create_row(maker, "loans-q1", {"amount": 5})
        submit_row(maker, "loans-q1", row.id)
        approve_row(admin, "loans-q1", row.id)
        _access, row = update_row(admin, "loans-q1", row.id, {"amount": 6})
        assert row.status == "approved"
        assert row.version == 2


# ═════════════════════════════════════════════════════════════════════════
# BULK APPROVAL & QUEUE
# ═════════════════════════════════════════════════════════════════════════

class TestBulkApproval:
    def test_bulk_approve_skips_invalid(self, team):
        maker, checker = team
        ids = []
        for amount in (10, 20, 30):
            _access, row = create_row(maker, "loans-q1", {"amount": amount})
            ids.append(row.id)
        submit_row(maker, "loans-q1", ids[0])
        submit_row(maker, "loans-q1", ids[1])

        result = bulk_approve(checker, "loans-q1", ids + [99999], notes="batch")
        assert sorted(result["approved"]) == sorted(ids[:2])
        assert {s["row_id"] for s in result["skipped"]} == {ids[2], 99999}

        summary = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.action == "bulk_update")
        ).scalar_one()
        assert summary.result == "partial"
        assert summary.context["bulk_operation_id"] == result["bulk_operation_id"]
        approvals = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.action == "approve")
        ).scalars().all()
        assert len(approvals) == 2
        assert {e.context["bulk_operation_id"] for e in approvals} == {result["bulk_operation_id"]}

    def test_pending_queue_excludes_own_submissions(self, team, pending_row, make_staff, grant):
        maker, checker = team
        pending = list_pending_approvals(checker, "loans-q1")
        assert [row.id for _access, row in pending] == [pending_row]

        self_reviewer = make_staff()
        grant(self_reviewer, create=True, submit=True, approve=True)
        _access, own = create_row(self_reviewer, "loans-q1", {"amount": 3})
        submit_row(self_reviewer, "loans-q1", own.id)
        ids = [row.id for _access, row in list_pending_approvals(self_reviewer)]
        assert own.id not in ids

    def test_pending_queue_across_sheets(self, team, pending_row, make_sheet, grant):
        _, checker = team
        make_sheet("loans-q2")
        grant(checker, sheet_key="loans-q2", scope="all", approve=True)
        pending = list_pending_approvals(checker)
        assert [(a.sheet_key, r.id) for a, r in pending] == [("loans-q1", pending_row)]


# ═════════════════════════════════════════════════════════════════════════
# ADMINISTRATIVE LOCK
# ═════════════════════════════════════════════════════════════════════════

class TestAdminLock:
    def test_lock_and_unlock_restores_status(self, team, pending_row, admin):
        maker, checker = team
        result = admin_lock_rows(admin, "loans-q1", [pending_row], reason="audit freeze")
        assert result["locked"] == [pending_row]

        with pytest.raises(AccessDenied) as exc_info:
            update_row(maker, "loans-q1", pending_row, {"amount": 1})
        assert exc_info.value.reason == "row_locked"
        with pytest.raises(InvalidTransition):
            approve_row(checker, "loans-q1", pending_row)

        again = admin_lock_rows(admin, "loans-q1", [pending_row])
        assert again["locked"] == []
        assert again["skipped"][0]["row_id"] == pending_row

        result = admin_unlock_rows(admin, "loans-q1", [pending_row], reason="freeze lifted")
        assert result["unlocked"] == [pending_row]
        row = approve_row(checker, "loans-q1", pending_row)
        assert row.status == "approved"

    def test_unlock_to_explicit_status(self, team, pending_row, admin):
        admin_lock_rows(admin, "loans-q1", [pending_row])
        admin_unlock_rows(admin, "loans-q1", [pending_row], target_status="returned")
        entry = db.session.execute(
            select(SheetAuditEntry).where(SheetAuditEntry.action == "unlock")
        ).scalar_one()
        assert entry.context["new_status"] == "returned"

    def test_admin_lock_requires_super_admin(self, team, pending_row):
        maker, _ = team
        with pytest.raises(AccessDenied):
            admin_lock_rows(maker, "loans-q1", [pending_row])
