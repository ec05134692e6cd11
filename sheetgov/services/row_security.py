"""
Row-Level Security Filter.

Derives, from an EffectiveAccess, which rows of a sheet the actor may see
and touch, both as a SQL predicate (``build_row_filter``) and as the same
rule evaluated on a loaded row (``row_visible_to``).

    bypass_row_security  -> not enforced, no predicate
    own_rows             -> created_by = actor
    assigned_rows        -> primary_assignee = actor OR actor in assignees
    all                  -> ALL_SCOPE_POLICY (non-super-admins only get here)

``check_row_ownership`` composes visibility, the per-action permission, the
lock state and the workflow state into one gate that every row mutation
passes through. Denials are written to the audit ledger.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import exists, or_

from sheetgov.core.exceptions import AccessDenied, LockHeld
from sheetgov.models.row import SheetRow, sheet_row_assignees
from sheetgov.services import lock_service
from sheetgov.services.access_service import EffectiveAccess
from sheetgov.services.audit_service import record_denial

# A non-super-admin assignment with scope "all" sees only rows assigned to
# the actor. Changing this value widens or narrows that scope.
ALL_SCOPE_POLICY = "assigned_rows"

# Row action -> (permission required, audit action written on denial)
ROW_ACTIONS = {
    "read": ("view", "read"),
    "update": ("edit", "update"),
    "delete": ("delete", "delete"),
    "submit": ("submit", "submit"),
    "assign": ("assign_rows", "assign"),
    "reassign": ("reassign", "reassign"),
}


@dataclass(frozen=True)
class RowSecurityFilter:
    enforced: bool
    scope: str
    predicate: object | None = None


def effective_scope(access: EffectiveAccess) -> str:
    if access.bypass_row_security:
        return "all"
    if access.scope == "all":
        return ALL_SCOPE_POLICY
    return access.scope


def _assigned_predicate(actor_id: int):
    return or_(
        SheetRow.primary_assignee_id == actor_id,
        exists().where(
            sheet_row_assignees.c.row_id == SheetRow.id,
            sheet_row_assignees.c.staff_id == actor_id,
        ),
    )


def build_row_filter(access: EffectiveAccess) -> RowSecurityFilter:
    """SQL predicate restricting ``sheet_rows`` to what the actor may see."""
    if access.bypass_row_security:
        return RowSecurityFilter(enforced=False, scope="all")
    scope = effective_scope(access)
    if scope == "own_rows":
        return RowSecurityFilter(True, scope, SheetRow.created_by_id == access.actor.id)
    return RowSecurityFilter(True, scope, _assigned_predicate(access.actor.id))


def apply_row_filter(query, access: EffectiveAccess, include_all: bool = False):
    """Restrict a ``select(SheetRow)`` to the visible rows.

    ``include_all`` only has an effect when the filter is not enforced; it
    can never widen an actor's view.
    """
    row_filter = build_row_filter(access)
    if not row_filter.enforced:
        return query
    # include_all is ignored for an enforced filter
    return query.where(row_filter.predicate)


def row_visible_to(access: EffectiveAccess, row: SheetRow) -> bool:
    """The row filter evaluated in Python on a loaded row."""
    if access.bypass_row_security:
        return True
    scope = effective_scope(access)
    if scope == "own_rows":
        return row.created_by_id == access.actor.id
    return row.is_assigned_to(access.actor.id)


def _deny(access: EffectiveAccess, row: SheetRow, audit_action: str, message: str, reason: str):
    record_denial(
        audit_action,
        actor=access.actor,
        sheet=access.sheet,
        row_id=row.id,
        error_message=message,
        reason=reason,
    )
    raise AccessDenied(message, sheet_key=access.sheet_key, reason=reason)


def check_row_ownership(access: EffectiveAccess, row: SheetRow, action: str) -> None:
    """Gate a single-row operation.

    Order: row scope, action permission, lock held by someone else,
    workflow state. Scope and permission denials are audited with
    ``result=failure``.

    Raises:
        AccessDenied: scope mismatch, missing permission, approved row
            without approval rights, or an administratively locked row.
        LockHeld: another actor holds an active lock.
    """
    permission, audit_action = ROW_ACTIONS[action]

    if not row_visible_to(access, row):
        _deny(access, row, audit_action, f"Row {row.id} is outside your {effective_scope(access)} scope", "scope")
    if not access.can(permission):
        _deny(access, row, audit_action, f"Permission '{permission}' required on sheet '{access.sheet_key}'", "permission")

    if action == "read":
        return

    lock = lock_service.get_lock_info(row.id)
    if lock is not None and lock.holder_id != access.actor.id:
        raise LockHeld(
            row_id=row.id,
            holder_id=lock.holder_id,
            holder_name=lock.holder.name if lock.holder else None,
            locked_at=lock.acquired_at,
            expires_at=lock.expires_at,
        )

    if row.status == "locked" and not access.bypass_row_security:
        _deny(access, row, audit_action, f"Row {row.id} is administratively locked", "row_locked")

    if (row.status == "approved" and action in ("update", "delete")
            and not access.can("approve")
            and not (action == "update" and access.sheet.workflow_settings["require_approval_for_edit"])):
        _deny(access, row, audit_action, "Approved rows can only be changed by approvers", "approved_row")


# ── Column restrictions ──────────────────────────────────────────────────────


def hidden_columns(access: EffectiveAccess) -> set[str]:
    """Restricted plus hidden column keys. Empty when row security is bypassed."""
    if access.bypass_row_security:
        return set()
    hidden = set(access.restricted_columns)
    hidden.update(c["key"] for c in access.sheet.column_specs if c.get("hidden"))
    return hidden


def visible_data(access: EffectiveAccess, row: SheetRow) -> dict:
    """Row data without restricted columns (and hidden columns for non-super-admins)."""
    hidden = hidden_columns(access)
    return {k: v for k, v in (row.data or {}).items() if k not in hidden}


def visible_columns(access: EffectiveAccess) -> list[dict]:
    if access.bypass_row_security:
        return access.sheet.column_specs
    return [
        c for c in access.sheet.column_specs
        if c["key"] not in access.restricted_columns and not c.get("hidden")
    ]


def check_editable_columns(access: EffectiveAccess, keys, creating: bool = False) -> None:
    """Deny writes to restricted columns, and on update to read-only columns."""
    if access.bypass_row_security:
        return
    keys = set(keys)
    restricted = sorted(keys & set(access.restricted_columns))
    if restricted:
        raise AccessDenied(
            f"No access to columns: {', '.join(restricted)}",
            sheet_key=access.sheet_key,
            reason="restricted_columns",
        )
    if creating:
        return
    columns = access.sheet.column_map
    read_only = sorted(
        k for k in keys
        if k in columns and (columns[k].get("read_only") or not columns[k].get("allow_edit", True))
    )
    if read_only:
        raise AccessDenied(
            f"Columns are read-only: {', '.join(read_only)}",
            sheet_key=access.sheet_key,
            reason="read_only_columns",
        )
