"""
Audit Ledger — queries and reports.

Access rules:
    row history / sheet activity / denied attempts on a sheet -> view_audit
    one staff member's activity                                -> that member or a super-admin
    reports and the global listing                             -> super-admin
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, select

from sheetgov.core.exceptions import ValidationError
from sheetgov.models import db
from sheetgov.models.audit import AUDIT_ACTIONS, AUDIT_RESULTS, SheetAuditEntry
from sheetgov.services.access_service import Actor, EffectiveAccess, require_super_admin, resolve_access
from sheetgov.services.row_security import hidden_columns
from sheetgov.utils.helpers import parse_datetime, parse_int

REPORT_GROUPS = {
    "action": SheetAuditEntry.action,
    "actor": SheetAuditEntry.actor_id,
    "sheet": SheetAuditEntry.sheet_key,
    "result": SheetAuditEntry.result,
}

MAX_PAGE_SIZE = 500


def entry_view(access: EffectiveAccess | None, entry: SheetAuditEntry) -> dict:
    """Serialize an entry, dropping changes to columns the reader cannot see."""
    data = entry.to_dict()
    if access is not None and not access.bypass_row_security:
        hidden = hidden_columns(access)
        data["changes"] = [c for c in data["changes"] if c.get("field") not in hidden]
    return data


def _paginate(query, page=1, per_page=100, access: EffectiveAccess | None = None) -> dict:
    page = parse_int(page, "page", default=1, minimum=1)
    per_page = parse_int(per_page, "per_page", default=100, minimum=1, maximum=MAX_PAGE_SIZE)
    total = db.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    entries = db.session.execute(
        query.order_by(SheetAuditEntry.timestamp.desc(), SheetAuditEntry.id.desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
    ).scalars()
    return {
        "items": [entry_view(access, e) for e in entries],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


def _apply_filters(query, filters: dict):
    if filters.get("action"):
        if filters["action"] not in AUDIT_ACTIONS:
            raise ValidationError(f"Unknown audit action '{filters['action']}'")
        query = query.where(SheetAuditEntry.action == filters["action"])
    if filters.get("result"):
        if filters["result"] not in AUDIT_RESULTS:
            raise ValidationError(f"Unknown audit result '{filters['result']}'")
        query = query.where(SheetAuditEntry.result == filters["result"])
    if filters.get("actor_id"):
        query = query.where(SheetAuditEntry.actor_id == parse_int(filters["actor_id"], "actor_id"))
    if filters.get("sheet_key"):
        query = query.where(SheetAuditEntry.sheet_key == filters["sheet_key"])
    start = parse_datetime(filters.get("start_date"), "start_date")
    if start is not None:
        query = query.where(SheetAuditEntry.timestamp >= start)
    end = parse_datetime(filters.get("end_date"), "end_date")
    if end is not None:
        query = query.where(SheetAuditEntry.timestamp <= end)
    return query


def get_row_history(actor: Actor, sheet_key: str, row_id: int) -> list[dict]:
    """Every entry for one row, oldest first, serialized for the reader."""
    access = resolve_access(actor, sheet_key, "view_audit")
    entries = db.session.execute(
        select(SheetAuditEntry)
        .where(SheetAuditEntry.sheet_key == access.sheet_key, SheetAuditEntry.row_id == int(row_id))
        .order_by(SheetAuditEntry.timestamp, SheetAuditEntry.id)
    ).scalars()
    return [entry_view(access, e) for e in entries]


def get_sheet_activity(actor: Actor, sheet_key: str, filters: dict | None = None, page: int = 1, per_page: int = 100) -> dict:
    """Entries for a sheet, newest first, filtered by action/result/actor/date."""
    access = resolve_access(actor, sheet_key, "view_audit")
    filters = dict(filters or {}, sheet_key=access.sheet_key)
    return _paginate(_apply_filters(select(SheetAuditEntry), filters), page, per_page, access=access)


def get_actor_activity(
    actor: Actor,
    staff_id: int,
    start_date=None,
    end_date=None,
    page: int = 1,
    per_page: int = 100,
) -> dict:
    """What one staff member did, optionally within a date range."""
    if actor.id != int(staff_id):
        require_super_admin(actor)
    filters = {"actor_id": int(staff_id), "start_date": start_date, "end_date": end_date}
    return _paginate(_apply_filters(select(SheetAuditEntry), filters), page, per_page)


def list_audit_entries(actor: Actor, filters: dict | None = None, page: int = 1, per_page: int = 100) -> dict:
    """All entries across sheets (super-admin)."""
    require_super_admin(actor)
    return _paginate(_apply_filters(select(SheetAuditEntry), filters or {}), page, per_page)


def get_denied_attempts(actor: Actor, sheet_key: str | None = None, days: int = 7) -> list[SheetAuditEntry]:
    """Failed access attempts in the last ``days`` days."""
    if sheet_key:
        sheet_key = resolve_access(actor, sheet_key, "view_audit").sheet_key
    else:
        require_super_admin(actor)
    since = datetime.now(timezone.utc) - timedelta(days=parse_int(days, "days", default=7, minimum=1))
    query = select(SheetAuditEntry).where(
        SheetAuditEntry.result == "failure",
        SheetAuditEntry.timestamp >= since,
    )
    if sheet_key:
        query = query.where(SheetAuditEntry.sheet_key == sheet_key)
    return list(db.session.execute(query.order_by(SheetAuditEntry.timestamp.desc()).limit(MAX_PAGE_SIZE)).scalars())


def get_audit_report(actor: Actor, group_by: str = "action", filters: dict | None = None) -> dict:
    """Counts grouped by action, actor, sheet or result, with success/failure
    breakdown, plus the 20 most active staff members (super-admin)."""
    require_super_admin(actor)
    if group_by not in REPORT_GROUPS:
        raise ValidationError(f"group_by must be one of {sorted(REPORT_GROUPS)}")
    filters = filters or {}
    key = REPORT_GROUPS[group_by]

    success = func.sum(case((SheetAuditEntry.result == "success", 1), else_=0))
    failure = func.sum(case((SheetAuditEntry.result == "failure", 1), else_=0))
    partial = func.sum(case((SheetAuditEntry.result == "partial", 1), else_=0))
    grouped = _apply_filters(
        select(key.label("key"), func.count(SheetAuditEntry.id).label("count"), success, failure, partial),
        filters,
    ).group_by(key).order_by(func.count(SheetAuditEntry.id).desc())

    groups = [
        {
            "key": row[0],
            "count": row[1],
            "success_count": int(row[2] or 0),
            "failure_count": int(row[3] or 0),
            "partial_count": int(row[4] or 0),
        }
        for row in db.session.execute(grouped)
    ]

    top = _apply_filters(
        select(
            SheetAuditEntry.actor_id,
            func.max(SheetAuditEntry.actor_name),
            func.max(SheetAuditEntry.actor_email),
            func.count(SheetAuditEntry.id),
            func.max(SheetAuditEntry.timestamp),
        ),
        filters,
    ).where(SheetAuditEntry.actor_id.isnot(None)).group_by(SheetAuditEntry.actor_id).order_by(
        func.count(SheetAuditEntry.id).desc()
    ).limit(20)

    user_activity = [
        {
            "actor_id": row[0],
            "actor_name": row[1],
            "actor_email": row[2],
            "count": row[3],
            "last_activity": row[4].isoformat() if row[4] else None,
        }
        for row in db.session.execute(top)
    ]

    return {
        "group_by": group_by,
        "total": sum(g["count"] for g in groups),
        "groups": groups,
        "user_activity": user_activity,
    }
