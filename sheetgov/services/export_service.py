"""
Sheet export — CSV and styled Excel.

Exports honour the same rules as listing: the row filter decides which
rows appear and restricted columns never leave the service. Each export
appends an ``export`` audit entry.
"""

import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import select

from sheetgov.core.exceptions import ValidationError
from sheetgov.models import db
from sheetgov.models.row import SheetRow
from sheetgov.services.access_service import Actor, resolve_access
from sheetgov.services.audit_service import record_audit
from sheetgov.services.row_security import apply_row_filter, visible_columns, visible_data

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_ROW_FIELDS = ["row_id", "status", "version", "priority", "primary_assignee_id", "updated_at"]


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply dark-header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value is not None:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _table(access, status: str | None) -> tuple[list[str], list[list]]:
    columns = visible_columns(access)
    query = select(SheetRow).where(SheetRow.sheet_id == access.sheet.id, SheetRow.deleted_at.is_(None))
    if status:
        query = query.where(SheetRow.status == status)
    query = apply_row_filter(query, access).order_by(SheetRow.id)

    header = [c["label"] for c in columns] + _ROW_FIELDS
    body = []
    for row in db.session.execute(query).scalars():
        data = visible_data(access, row)
        body.append(
            [data.get(c["key"]) for c in columns]
            + [
                row.id,
                row.status,
                row.version,
                row.priority,
                row.primary_assignee_id,
                row.updated_at.isoformat() if row.updated_at else None,
            ]
        )
    return header, body


def _to_csv(header: list[str], body: list[list]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(header)
    for values in body:
        writer.writerow(["" if v is None else v for v in values])
    return buf.getvalue().encode("utf-8")


def _to_xlsx(sheet_name: str, header: list[str], body: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name[:31] or "Sheet"
    ws.append(header)
    _apply_header_style(ws, 1, len(header))
    for values in body:
        ws.append(values)
    ws.freeze_panes = "A2"
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


def export_rows(actor: Actor, sheet_key: str, fmt: str = "csv", status: str | None = None) -> tuple[bytes, str, str]:
    """Export the rows visible to the actor.

    Returns:
        (content, mimetype, filename)

    Raises:
        PermissionDenied: actor lacks ``export``.
        ValidationError: unknown format, or export disabled on the sheet.
    """
    fmt = (fmt or "csv").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}'", details={"format": sorted(EXPORT_FORMATS)})
    access = resolve_access(actor, sheet_key, "export")
    if not access.sheet.ui_settings.get("enable_export", True) and not access.bypass_row_security:
        raise ValidationError(f"Export is disabled for sheet '{access.sheet_key}'")

    header, body = _table(access, status)
    content = _to_csv(header, body) if fmt == "csv" else _to_xlsx(access.sheet.name, header, body)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    filename = f"{access.sheet_key}-{stamp}.{fmt}"

    record_audit(
        "export",
        actor=actor,
        sheet=access.sheet,
        context={"exported_format": fmt, "row_count": len(body), "status_filter": status},
        commit=True,
    )
    logger.info(
        "Sheet exported: %d rows as %s", len(body), fmt,
        extra={"sheet_key": access.sheet_key, "actor_id": actor.id},
    )
    return content, EXPORT_FORMATS[fmt], filename
