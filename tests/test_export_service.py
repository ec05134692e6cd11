"""
Tests for sheet row export (CSV and Excel).

Covers:
  - CSV header follows visible columns, then row attributes
  - restricted columns never appear in the export
  - the row filter decides which rows are exported
  - status filter
  - xlsx output opens with openpyxl and has a styled header
  - each export writes an ``export`` audit entry
  - export permission and the sheet's enable_export switch
"""

import csv
import io

import pytest
from openpyxl import load_workbook
from sqlalchemy import select

from sheetgov.core.exceptions import PermissionDenied, ValidationError
from sheetgov.models import db
from sheetgov.models.audit import SheetAuditEntry
from sheetgov.services.export_service import export_rows
from sheetgov.services.row_service import create_row
from sheetgov.services.workflow_service import submit_row


def _csv_rows(content: bytes) -> list[list[str]]:
    return list(csv.reader(io.StringIO(content.decode("utf-8"))))


@pytest.fixture()
def book(make_sheet, make_staff, grant, admin):
    """Two analyst rows and one row the analyst cannot see."""
    make_sheet("loans-q1")
    analyst = make_staff(name="Analyst")
    grant(analyst, create=True, submit=True, restricted_columns=["risk_score"])
    create_row(admin, "loans-q1", {"amount": 100, "borrower": "Ayse", "risk_score": 4}, assigned_to=[analyst.id])
    _access, second = create_row(analyst, "loans-q1", {"amount": 250, "borrower": "Berk"})
    create_row(admin, "loans-q1", {"amount": 999, "borrower": "Hidden", "risk_score": 9})
    return analyst, second.id


# ── CSV ──────────────────────────────────────────────────────────────────────


def test_csv_respects_scope_and_restricted_columns(book):
    analyst, _ = book
    content, mimetype, filename = export_rows(analyst, "loans-q1", "csv")

    assert mimetype == "text/csv"
    assert filename.startswith("loans-q1-") and filename.endswith(".csv")
    rows = _csv_rows(content)
    header = rows[0]
    assert header[:5] == ["Borrower", "Amount", "Stage", "Reference", "Notes"]
    assert "Risk Score" not in header
    assert header[5:] == ["row_id", "status", "version", "priority", "primary_assignee_id", "updated_at"]
    assert sorted(r[0] for r in rows[1:]) == ["Ayse", "Berk"]


def test_super_admin_exports_everything(book, admin):
    content, _, _ = export_rows(admin, "loans-q1", "csv")
    rows = _csv_rows(content)
    assert "Risk Score" in rows[0]
    assert len(rows) == 4


def test_status_filter(book):
    analyst, second_id = book
    submit_row(analyst, "loans-q1", second_id)
    content, _, _ = export_rows(analyst, "loans-q1", "csv", status="pending_review")
    rows = _csv_rows(content)
    assert [r[0] for r in rows[1:]] == ["Berk"]


# ── Excel ────────────────────────────────────────────────────────────────────


def test_xlsx_export(book):
    analyst, _ = book
    content, mimetype, filename = export_rows(analyst, "loans-q1", "xlsx")
    assert mimetype.endswith("spreadsheetml.sheet")
    assert filename.endswith(".xlsx")

    wb = load_workbook(io.BytesIO(content))
    ws = wb.active
    assert ws.title == "Sheet loans-q1"
    assert ws.cell(row=1, column=1).value == "Borrower"
    assert ws.cell(row=1, column=1).font.bold is True
    assert ws.freeze_panes == "A2"
    assert ws.max_row == 3


# ── Audit & access ───────────────────────────────────────────────────────────


def test_export_is_audited(book):
    analyst, _ = book
    export_rows(analyst, "loans-q1", "xlsx")
    entry = db.session.execute(
        select(SheetAuditEntry).where(SheetAuditEntry.action == "export")
    ).scalar_one()
    assert entry.actor_id == analyst.id
    assert entry.context == {"exported_format": "xlsx", "row_count": 2}


def test_export_needs_permission(make_sheet, make_staff, grant):
    make_sheet("loans-q1")
    viewer = make_staff()
    grant(viewer, export=False)
    with pytest.raises(PermissionDenied):
        export_rows(viewer, "loans-q1")


def test_unknown_format(book):
    analyst, _ = book
    with pytest.raises(ValidationError):
        export_rows(analyst, "loans-q1", "pdf")


def test_export_disabled_on_sheet(make_sheet, make_staff, grant, admin):
    make_sheet("loans-q1", ui={"enable_export": False})
    viewer = make_staff()
    grant(viewer)
    with pytest.raises(ValidationError):
        export_rows(viewer, "loans-q1")
    content, _, _ = export_rows(admin, "loans-q1")
    assert _csv_rows(content)[1:] == []
