"""
SheetDefinition administration tests.

Tests cover:
  - create validation and duplicate keys
  - policy blocks: unknown keys, lock timeout bounds, allowed statuses
  - update / update_columns bump the version and write configure entries
  - delete refused while rows exist
  - deactivation and stats
"""

import pytest
from sqlalchemy import select

from sheetgov.core.exceptions import AccessDenied, ConflictError, ValidationError
from sheetgov.models import db
from sheetgov.models.audit import SheetAuditEntry
from sheetgov.services.row_service import create_row, soft_delete_row
from sheetgov.services.sheet_service import (
    create_sheet,
    deactivate_sheet,
    delete_sheet,
    list_sheets,
    sheet_stats,
    update_columns,
    update_sheet,
)
from sheetgov.services.workflow_service import submit_row

from conftest import LOAN_COLUMNS


def _configure_entries(sheet_key):
    return db.session.execute(
        select(SheetAuditEntry)
        .where(SheetAuditEntry.action == "configure", SheetAuditEntry.sheet_key == sheet_key)
        .order_by(SheetAuditEntry.id)
    ).scalars().all()


class TestCreateSheet:
    def test_create_defaults(self, make_sheet):
        sheet = make_sheet("loans-q1")
        assert sheet.version == 1
        assert sheet.status == "active"
        assert sheet.workflow_settings["default_status"] == "draft"
        assert sheet.lock_timeout_minutes == 15
        assert [c["key"] for c in sheet.column_specs][:2] == ["borrower", "amount"]
        entries = _configure_entries("loans-q1")
        assert len(entries) == 1
        assert entries[0].context["column_count"] == len(LOAN_COLUMNS)

    def test_lock_timeout_falls_back_to_config(self, app, make_sheet, monkeypatch):
        monkeypatch.setitem(app.config, "SHEET_LOCK_TIMEOUT_MINUTES", 30)
        assert make_sheet("loans-q1").lock_timeout_minutes == 30
        pinned = make_sheet("loans-q2", concurrency={"lock_timeout_minutes": 5})
        assert pinned.lock_timeout_minutes == 5
        assert pinned.to_dict()["concurrency"]["lock_timeout_minutes"] == 5

    def test_key_is_lowercased(self, admin):
        sheet = create_sheet(admin, {"sheet_key": "Loans-Q3", "name": "Q3", "columns": LOAN_COLUMNS})
        assert sheet.sheet_key == "loans-q3"

    @pytest.mark.parametrize("data", [
        {"sheet_key": "x", "name": "Too short"},
        {"sheet_key": "has space", "name": "Bad"},
        {"sheet_key": "loans-q9", "name": ""},
        {"sheet_key": "loans-q9", "name": "Bad category", "category": "weather"},
        {"sheet_key": "loans-q9", "name": "No columns", "columns": []},
        {"sheet_key": "loans-q9", "name": "Bad workflow", "workflow": {"auto_close": True}},
        {"sheet_key": "loans-q9", "name": "Bad status", "workflow": {"allowed_statuses": ["draft", "archived"]}},
        {"sheet_key": "loans-q9", "name": "Bad timeout", "concurrency": {"lock_timeout_minutes": 0}},
        {"sheet_key": "loans-q9", "name": "Bad perms", "default_permissions": {"fly": True}},
    ])
    def test_rejects_invalid_definitions(self, admin, data):
        data = {"columns": LOAN_COLUMNS, **data}
        with pytest.raises(ValidationError):
            create_sheet(admin, data)

    def test_default_status_must_be_allowed(self, admin):
        with pytest.raises(ValidationError):
            create_sheet(admin, {
                "sheet_key": "loans-q9",
                "name": "Q9",
                "columns": LOAN_COLUMNS,
                "workflow": {"allowed_statuses": ["pending_review", "approved"]},
            })

    def test_duplicate_key(self, make_sheet):
        make_sheet("loans-q1")
        with pytest.raises(ConflictError):
            make_sheet("loans-q1")

    def test_staff_cannot_create(self, make_staff):
        with pytest.raises(AccessDenied):
            create_sheet(make_staff(), {"sheet_key": "loans-q9", "name": "Q9", "columns": LOAN_COLUMNS})


class TestUpdateSheet:
    def test_update_bumps_version(self, make_sheet, admin):
        make_sheet("loans-q1")
        sheet = update_sheet(admin, "loans-q1", {
            "name": "Loans Q1 (final)",
            "workflow": {"require_approval_for_edit": True},
        })
        assert sheet.version == 2
        assert sheet.workflow_settings["require_approval_for_edit"] is True
        entry = _configure_entries("loans-q1")[-1]
        assert [c["field"] for c in entry.changes] == ["name", "workflow"]

    def test_noop_update_keeps_version(self, make_sheet, admin):
        make_sheet("loans-q1", name="Loans Q1")
        sheet = update_sheet(admin, "loans-q1", {"name": "Loans Q1"})
        assert sheet.version == 1
        assert len(_configure_entries("loans-q1")) == 1

    def test_empty_name_rejected(self, make_sheet, admin):
        make_sheet("loans-q1")
        with pytest.raises(ValidationError):
            update_sheet(admin, "loans-q1", {"name": "  "})

    def test_update_columns(self, make_sheet, admin):
        make_sheet("loans-q1")
        columns = LOAN_COLUMNS + [{"key": "branch", "type": "text"}]
        sheet = update_columns(admin, "loans-q1", columns)
        assert sheet.version == 2
        assert "branch" in sheet.column_map
        entry = _configure_entries("loans-q1")[-1]
        assert entry.changes[0]["new_value"][-1] == "branch"

    def test_deactivate_and_list(self, make_sheet, admin):
        make_sheet("loans-q1")
        make_sheet("loans-q2")
        deactivate_sheet(admin, "loans-q2")
        assert [s.sheet_key for s in list_sheets(admin, status="active")] == ["loans-q1"]
        assert len(list_sheets(admin, category="loans")) == 2


class TestDeleteAndStats:
    def test_delete_empty_sheet(self, make_sheet, admin):
        make_sheet("loans-q1")
        delete_sheet(admin, "loans-q1")
        assert list_sheets(admin) == []
        # History outlives the sheet
        assert _configure_entries("loans-q1")[-1].context["notes"] == "sheet deleted"

    def test_delete_refused_with_rows(self, make_sheet, admin):
        make_sheet("loans-q1")
        _access, row = create_row(admin, "loans-q1", {"amount": 1})
        soft_delete_row(admin, "loans-q1", row.id)
        with pytest.raises(ValidationError) as exc_info:
            delete_sheet(admin, "loans-q1")
        assert exc_info.value.details == {"row_count": 1}

    def test_stats(self, make_sheet, make_staff, grant, admin):
        make_sheet("loans-q1")
        maker = make_staff()
        grant(maker, create=True, submit=True, edit=True)
        ids = [create_row(maker, "loans-q1", {"amount": n})[1].id for n in (1, 2, 3)]
        submit_row(maker, "loans-q1", ids[0])
        soft_delete_row(admin, "loans-q1", ids[2])

        stats = sheet_stats(admin, "loans-q1")
        assert stats["total_rows"] == 2
        assert stats["deleted_rows"] == 1
        assert stats["status_breakdown"]["draft"] == 1
        assert stats["status_breakdown"]["pending_review"] == 1
        assert stats["status_breakdown"]["approved"] == 0
        assert stats["average_version"] == 1.0

    def test_stats_super_admin_only(self, make_sheet, make_staff):
        make_sheet("loans-q1")
        with pytest.raises(AccessDenied):
            sheet_stats(make_staff(), "loans-q1")
