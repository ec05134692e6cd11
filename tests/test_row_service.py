"""
Row store tests.

Tests cover:
  - create: defaults, required fields, type coercion, unknown and unique columns
  - update: version counter, no-op updates, optimistic expected_version
  - single-cell patch
  - soft delete / restore
  - row assignment: assign, unassign with primary promotion, bulk assign, reassign
  - bulk create with partial failures
  - list filters and pagination
"""

import pytest
from sqlalchemy import select

from sheetgov.core.exceptions import (
    AccessDenied,
    MissingRequiredFields,
    NotFoundError,
    PermissionDenied,
    StaleVersion,
    ValidationError,
)
from sheetgov.models import db
from sheetgov.models.audit import SheetAuditEntry
from sheetgov.services.row_service import (
    assign_row,
    bulk_assign_rows,
    bulk_create_rows,
    create_row,
    get_row,
    list_rows,
    patch_row_field,
    reassign_rows,
    restore_row,
    soft_delete_row,
    unassign_row,
    update_row,
)


def _entries(action):
    return db.session.execute(
        select(SheetAuditEntry).where(SheetAuditEntry.action == action).order_by(SheetAuditEntry.id)
    ).scalars().all()


@pytest.fixture()
def editor(make_sheet, make_staff, grant):
    make_sheet("loans-q1")
    staff = make_staff(name="Editor")
    grant(staff, create=True, edit=True, delete=True)
    return staff


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_defaults_and_coercion(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": "1,250.50", "borrower": "  Deniz  ", "risk_score": "4"})
        assert row.data["amount"] == 1250.5
        assert row.data["borrower"] == "Deniz"
        assert row.data["risk_score"] == 4
        assert row.data["stage"] == "new"
        assert row.status == "draft"
        assert row.version == 1
        assert row.created_by_id == editor.id
        assert row.assignee_ids == [editor.id]

    def test_create_audit_entry(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 10})
        (entry,) = _entries("create")
        assert entry.row_id == row.id
        assert entry.actor_name == "Editor"
        assert {"field": "amount", "old_value": None, "new_value": 10} in entry.changes
        assert entry.context == {"new_status": "draft"}

    def test_missing_required_field(self, editor):
        with pytest.raises(MissingRequiredFields) as exc_info:
            create_row(editor, "loans-q1", {"borrower": "Deniz"})
        assert exc_info.value.missing == ["Amount"]

    def test_blank_required_field(self, editor):
        with pytest.raises(MissingRequiredFields):
            create_row(editor, "loans-q1", {"amount": "   "})

    def test_invalid_values(self, editor):
        with pytest.raises(ValidationError) as exc_info:
            create_row(editor, "loans-q1", {"amount": -5, "stage": "funded"})
        assert set(exc_info.value.details) == {"amount", "stage"}

    def test_unknown_column(self, editor):
        with pytest.raises(ValidationError) as exc_info:
            create_row(editor, "loans-q1", {"amount": 1, "colour": "red"})
        assert "colour" in exc_info.value.details

    def test_unique_column(self, editor):
        create_row(editor, "loans-q1", {"amount": 1, "reference": "LN-7"})
        with pytest.raises(ValidationError) as exc_info:
            create_row(editor, "loans-q1", {"amount": 2, "reference": "LN-7"})
        assert "reference" in exc_info.value.details

    def test_create_needs_permission(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1")
        viewer = make_staff()
        grant(viewer)
        with pytest.raises(PermissionDenied):
            create_row(viewer, "loans-q1", {"amount": 1})

    def test_assigning_others_needs_assign_rows(self, editor, make_staff, grant):
        colleague = make_staff()
        grant(colleague)
        with pytest.raises(PermissionDenied):
            create_row(editor, "loans-q1", {"amount": 1}, assigned_to=[colleague.id])

    def test_meta_fields(self, editor):
        _access, row = create_row(
            editor, "loans-q1", {"amount": 1},
            meta={"priority": "high", "tags": ["q1", " vip ", "q1"], "due_date": "2026-03-31"},
        )
        assert row.priority == "high"
        assert row.tags == ["q1", "vip"]
        assert row.due_date.isoformat() == "2026-03-31"

    def test_bad_priority(self, editor):
        with pytest.raises(ValidationError):
            create_row(editor, "loans-q1", {"amount": 1}, meta={"priority": "someday"})


class TestBulkCreate:
    def test_partial_failure(self, editor):
        result = bulk_create_rows(editor, "loans-q1", [
            {"data": {"amount": 1}},
            {"data": {"borrower": "no amount"}},
            {"data": {"amount": 3}, "priority": "low"},
        ])
        assert len(result["created"]) == 2
        assert [e["index"] for e in result["errors"]] == [1]
        (summary,) = _entries("bulk_update")
        assert summary.result == "partial"
        assert len(_entries("create")) == 2

    def test_empty_list(self, editor):
        with pytest.raises(ValidationError):
            bulk_create_rows(editor, "loans-q1", [])


# ═════════════════════════════════════════════════════════════════════════
# UPDATE
# ═════════════════════════════════════════════════════════════════════════

class TestUpdate:
    def test_version_and_diff(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 100, "borrower": "Ece"})
        _access, row = update_row(editor, "loans-q1", row.id, {"amount": 120}, reason="top-up")
        assert row.version == 2
        assert row.data == {
            "borrower": "Ece", "amount": 120, "stage": "new",
            "risk_score": None, "reference": None, "notes": None,
        }
        (entry,) = _entries("update")
        assert entry.changes == [{"field": "amount", "old_value": 100, "new_value": 120}]
        assert entry.context == {"reason": "top-up"}

    def test_noop_update_writes_nothing(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 100})
        _access, row = update_row(editor, "loans-q1", row.id, {"amount": 100})
        assert row.version == 1
        assert _entries("update") == []

    def test_clearing_required_field(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 100})
        with pytest.raises(MissingRequiredFields):
            update_row(editor, "loans-q1", row.id, {"amount": None})

    def test_expected_version(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 100})
        update_row(editor, "loans-q1", row.id, {"amount": 110}, expected_version=1)
        with pytest.raises(StaleVersion) as exc_info:
            update_row(editor, "loans-q1", row.id, {"amount": 120}, expected_version=1)
        assert exc_info.value.actual == 2

    def test_meta_change_bumps_version(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 1})
        _access, row = update_row(editor, "loans-q1", row.id, meta={"priority": "urgent"})
        assert row.priority == "urgent"
        assert row.version == 2
        (entry,) = _entries("update")
        assert entry.changes == [{"field": "priority", "old_value": "medium", "new_value": "urgent"}]

    def test_patch_single_field(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 1})
        _access, row = patch_row_field(editor, "loans-q1", row.id, "Stage", "review")
        assert row.data["stage"] == "review"
        with pytest.raises(ValidationError):
            patch_row_field(editor, "loans-q1", row.id, "", "x")

    def test_unique_check_ignores_own_row(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 1, "reference": "R-1"})
        _access, row = update_row(editor, "loans-q1", row.id, {"reference": "R-1", "amount": 2})
        assert row.version == 2


# ═════════════════════════════════════════════════════════════════════════
# DELETE / RESTORE
# ═════════════════════════════════════════════════════════════════════════

class TestDeleteRestore:
    def test_soft_delete_hides_row(self, editor):
        _access, row = create_row(editor, "loans-q1", {"amount": 1, "reference": "D-1"})
        soft_delete_row(editor, "loans-q1", row.id, reason="duplicate")
        with pytest.raises(NotFoundError):
            get_row(editor, "loans-q1", row.id)
        assert list_rows(editor, "loans-q1")["total"] == 0
        (entry,) = _entries("delete")
        assert entry.context["reason"] == "duplicate"

        # Tombstoned rows free their unique values
        create_row(editor, "loans-q1", {"amount": 2, "reference": "D-1"})

    def test_delete_needs_permission(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1")
        maker = make_staff()
        grant(maker, create=True)
        _access, row = create_row(maker, "loans-q1", {"amount": 1})
        with pytest.raises(AccessDenied):
            soft_delete_row(maker, "loans-q1", row.id)

    def test_restore_is_super_admin_only(self, editor, admin):
        _access, row = create_row(editor, "loans-q1", {"amount": 1})
        soft_delete_row(editor, "loans-q1", row.id)
        with pytest.raises(AccessDenied):
            restore_row(editor, "loans-q1", row.id)
        _access, row = restore_row(admin, "loans-q1", row.id, reason="deleted by mistake")
        assert not row.is_deleted
        _access, again = get_row(editor, "loans-q1", row.id)
        assert again.id == row.id

    def test_restore_live_row(self, editor, admin):
        _access, row = create_row(editor, "loans-q1", {"amount": 1})
        with pytest.raises(ValidationError):
            restore_row(admin, "loans-q1", row.id)

    def test_row_of_other_sheet_not_found(self, editor, make_sheet, admin):
        make_sheet("loans-q2")
        _access, row = create_row(admin, "loans-q2", {"amount": 1})
        with pytest.raises(NotFoundError):
            get_row(admin, "loans-q1", row.id)


# ═════════════════════════════════════════════════════════════════════════
# ROW ASSIGNMENT
# ═════════════════════════════════════════════════════════════════════════

class TestRowAssignment:
    @pytest.fixture()
    def desk(self, make_sheet, make_staff, grant):
        make_sheet("loans-q1")
        lead = make_staff(name="Lead")
        one = make_staff(name="One")
        two = make_staff(name="Two")
        grant(lead, scope="all", create=True, assign_rows=True, reassign=True)
        grant(one)
        grant(two)
        return lead, one, two

    def test_assign_and_unassign_promotes_next(self, desk):
        lead, one, two = desk
        _access, row = create_row(lead, "loans-q1", {"amount": 1})
        assign_row(lead, "loans-q1", row.id, one.id, make_primary=True)
        _access, row = assign_row(lead, "loans-q1", row.id, two.id)
        assert row.primary_assignee_id == one.id
        assert row.assignee_ids == [lead.id, one.id, two.id]

        _access, row = unassign_row(lead, "loans-q1", row.id, one.id)
        assert one.id not in row.assignee_ids
        assert row.primary_assignee_id == lead.id
        (entry,) = _entries("unassign")
        assert entry.changes[0]["old_value"] == [lead.id, one.id, two.id]

    def test_unassign_unknown(self, desk):
        lead, one, _two = desk
        _access, row = create_row(lead, "loans-q1", {"amount": 1})
        with pytest.raises(NotFoundError):
            unassign_row(lead, "loans-q1", row.id, one.id)

    def test_assign_staff_without_assignment(self, desk, make_staff):
        lead, _one, _two = desk
        outsider = make_staff()
        _access, row = create_row(lead, "loans-q1", {"amount": 1})
        with pytest.raises(ValidationError):
            assign_row(lead, "loans-q1", row.id, outsider.id)

    def test_single_assignee_sheet(self, make_sheet, make_staff, grant, admin):
        make_sheet("loans-q1", row_assignment={"allow_multiple_assignees": False})
        one = make_staff()
        two = make_staff()
        grant(one)
        grant(two)
        _access, row = create_row(admin, "loans-q1", {"amount": 1})
        assign_row(admin, "loans-q1", row.id, one.id)
        _access, row = assign_row(admin, "loans-q1", row.id, two.id)
        assert row.assignee_ids == [two.id]
        assert row.primary_assignee_id == two.id

    def test_assignment_disabled(self, make_sheet, make_staff, grant, admin):
        make_sheet("loans-q1", row_assignment={"enabled": False})
        one = make_staff()
        grant(one)
        _access, row = create_row(admin, "loans-q1", {"amount": 1})
        assert row.assignee_ids == []
        with pytest.raises(ValidationError):
            assign_row(admin, "loans-q1", row.id, one.id)

    def test_bulk_assign_skips_invisible_rows(self, desk, admin):
        lead, one, _two = desk
        _access, mine = create_row(lead, "loans-q1", {"amount": 1})
        _access, foreign = create_row(admin, "loans-q1", {"amount": 2})
        result = bulk_assign_rows(lead, "loans-q1", [mine.id, foreign.id], one.id)
        assert result["assigned"] == [mine.id]
        assert result["skipped"][0]["row_id"] == foreign.id

    def test_reassign_from_staff(self, desk, admin):
        lead, one, two = desk
        _access, a = create_row(admin, "loans-q1", {"amount": 1}, assigned_to=[one.id, lead.id])
        _access, b = create_row(admin, "loans-q1", {"amount": 2}, assigned_to=[one.id, lead.id])
        result = reassign_rows(lead, "loans-q1", two.id, from_staff_id=one.id, reason="one is on leave")
        assert sorted(result["reassigned"]) == sorted([a.id, b.id])
        row = get_row(lead, "loans-q1", a.id)[1]
        assert one.id not in row.assignee_ids
        assert row.primary_assignee_id == two.id
        assert len(_entries("reassign")) == 2

    def test_reassign_needs_target(self, desk):
        lead, _one, two = desk
        with pytest.raises(ValidationError):
            reassign_rows(lead, "loans-q1", two.id)


# ═════════════════════════════════════════════════════════════════════════
# LISTING
# ═════════════════════════════════════════════════════════════════════════

class TestListing:
    def test_filters_and_pagination(self, editor):
        for amount, borrower in ((1, "Aylin"), (2, "Baris"), (3, "Cem")):
            create_row(editor, "loans-q1", {"amount": amount, "borrower": borrower})

        page = list_rows(editor, "loans-q1", {"per_page": 2, "sort_by": "id", "sort_order": "asc"})
        assert page["total"] == 3
        assert page["pages"] == 2
        assert [i["data"]["borrower"] for i in page["items"]] == ["Aylin", "Baris"]

        found = list_rows(editor, "loans-q1", {"search": "baris"})
        assert [i["data"]["borrower"] for i in found["items"]] == ["Baris"]

        assert list_rows(editor, "loans-q1", {"status": "approved"})["total"] == 0
        with pytest.raises(ValidationError):
            list_rows(editor, "loans-q1", {"status": "published"})

    def test_serialized_row_has_lock_fields(self, editor):
        create_row(editor, "loans-q1", {"amount": 1})
        item = list_rows(editor, "loans-q1")["items"][0]
        assert item["lock"] is None
        assert item["is_locked"] is False
        assert item["is_locked_by_me"] is False
