"""
Audit Ledger — write path.

``record_audit`` is the only way entries enter the ledger. It appends inside
a SAVEPOINT so that a failing ledger write is rolled back on its own and the
caller's business mutation still commits. Infrastructure failures are logged
and swallowed; ``ImmutableRecord`` never originates here because the write
path only ever inserts.

Request metadata (client IP, user agent, session id, request id) is taken
from the Flask request context when there is one.

Read queries and reports live in ``audit_query_service``.
"""

from __future__ import annotations

import logging

from flask import current_app, g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from sheetgov.models import db
from sheetgov.models.audit import AUDIT_ACTIONS, AUDIT_RESULTS, SheetAuditEntry

logger = logging.getLogger(__name__)


# ── Private helpers ──────────────────────────────────────────────────────────


def _get_client_ip() -> str | None:
    """Real client IP, honouring X-Forwarded-For from load balancers."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.remote_addr


def _request_metadata() -> dict:
    if not has_request_context():
        return {}
    return {
        "ip_address": _get_client_ip(),
        "user_agent": (request.headers.get("User-Agent") or "")[:500] or None,
        "session_id": request.headers.get("X-Session-ID"),
        "request_id": getattr(g, "request_id", None),
    }


def _suppress_reads() -> bool:
    return bool(current_app.config.get("SHEET_AUDIT_SUPPRESS_READS", True))


# ── Public API ───────────────────────────────────────────────────────────────


def record_audit(
    action: str,
    *,
    actor=None,
    sheet=None,
    sheet_key: str | None = None,
    row_id: int | None = None,
    changes: list[dict] | None = None,
    result: str = "success",
    error_message: str | None = None,
    context: dict | None = None,
    commit: bool = False,
) -> SheetAuditEntry | None:
    """Append one ledger entry.

    Args:
        action: One of AUDIT_ACTIONS.
        actor: ``Actor`` snapshot, or None for system jobs.
        sheet: SheetDefinition the entry is about (supplies key and name).
        sheet_key: Used when no sheet object is at hand.
        changes: ``[{"field", "old_value", "new_value"}]``.
        result: success | failure | partial.
        context: reason, notes, previous_status, new_status, bulk_operation_id …
        commit: Commit the session after appending. Used for denial entries,
                where the caller raises afterwards and nothing else commits.

    Returns:
        The appended entry, or None when the entry was suppressed or could
        not be written.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    if result not in AUDIT_RESULTS:
        raise ValueError(f"Unknown audit result: {result}")

    if action == "read" and result == "success" and _suppress_reads():
        return None

    entry = SheetAuditEntry(
        action=action,
        sheet_key=sheet.sheet_key if sheet is not None else sheet_key,
        sheet_name=sheet.name if sheet is not None else None,
        row_id=row_id,
        actor_id=actor.id if actor is not None else None,
        actor_name=actor.name if actor is not None else "system",
        actor_email=actor.email if actor is not None else None,
        actor_role=actor.role if actor is not None else None,
        changes=changes or [],
        result=result,
        error_message=error_message,
        context={k: v for k, v in (context or {}).items() if v is not None},
        **_request_metadata(),
    )

    try:
        with db.session.begin_nested():
            db.session.add(entry)
    except SQLAlchemyError:
        logger.exception(
            "Audit entry could not be written",
            extra={"event_type": "audit_write_failed", "sheet_key": entry.sheet_key, "row_id": row_id},
        )
        return None

    if commit:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(
                "Audit entry commit failed",
                extra={"event_type": "audit_write_failed", "sheet_key": entry.sheet_key, "row_id": row_id},
            )
            return None
    return entry


def record_denial(
    action: str,
    *,
    actor,
    sheet,
    row_id: int | None,
    error_message: str,
    reason: str | None = None,
) -> SheetAuditEntry | None:
    """Append and commit a ``result=failure`` entry for a denied row access."""
    logger.warning(
        "Row access denied: %s",
        error_message,
        extra={
            "event_type": "access_denied",
            "sheet_key": sheet.sheet_key if sheet is not None else None,
            "row_id": row_id,
            "actor_id": actor.id if actor is not None else None,
        },
    )
    return record_audit(
        action,
        actor=actor,
        sheet=sheet,
        row_id=row_id,
        result="failure",
        error_message=error_message,
        context={"reason": reason},
        commit=True,
    )
