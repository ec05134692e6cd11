"""
Lock Manager — pessimistic, time-bounded row locks.

Acquisition is a compare-and-set against the ``row_locks`` table, never a
read followed by a write:

    1. UPDATE the row's lock record WHERE holder = me OR expires_at <= now.
       Re-entrant for the holder (expiry refreshed, acquired_at kept) and
       takes over expired records.
    2. If nothing was updated, INSERT … SELECT … WHERE NOT EXISTS a record
       for the row. UNIQUE(row_id) backs this under concurrent inserts.
    3. If neither statement claimed the record, someone else holds an
       active lock: LockHeld.

Expired records are treated as absent by every read here; the
``lock_reaper`` job deletes them.

The lock columns on ``sheet_rows`` mirror the current holder for display.
Callers own the transaction; nothing in this module commits except
``purge_expired_locks``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from flask import has_request_context, request
from sqlalchemy import and_, case, delete, exists, insert, literal, or_, select, update
from sqlalchemy.exc import IntegrityError

from sheetgov.core.exceptions import LockHeld
from sheetgov.models import db
from sheetgov.models.lock import LOCK_TYPES, RowLock
from sheetgov.models.row import SheetRow

logger = logging.getLogger(__name__)

_ACQUIRE_ATTEMPTS = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _client_fields() -> dict:
    if not has_request_context():
        return {"session_id": None, "ip_address": None, "user_agent": None}
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    return {
        "session_id": request.headers.get("X-Session-ID"),
        "ip_address": forwarded_for.split(",")[0].strip() if forwarded_for else request.remote_addr,
        "user_agent": (request.headers.get("User-Agent") or "")[:500] or None,
    }


def _load_lock(row_id: int) -> RowLock | None:
    return db.session.execute(
        select(RowLock)
        .where(RowLock.row_id == row_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _mirror(row: SheetRow, lock: RowLock | None) -> None:
    row.locked_by_id = lock.holder_id if lock else None
    row.locked_at = lock.acquired_at if lock else None
    row.lock_expires_at = lock.expires_at if lock else None


# ── Acquire ──────────────────────────────────────────────────────────────────


def _claim_existing(row_id: int, holder_id: int, now: datetime, expires_at: datetime, lock_type: str, client: dict) -> bool:
    still_mine = and_(RowLock.holder_id == holder_id, RowLock.expires_at > now)
    result = db.session.execute(
        update(RowLock)
        .where(
            RowLock.row_id == row_id,
            or_(RowLock.holder_id == holder_id, RowLock.expires_at <= now),
        )
        .values(
            acquired_at=case((still_mine, RowLock.acquired_at), else_=now),
            holder_id=holder_id,
            expires_at=expires_at,
            lock_type=lock_type,
            **client,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _insert_if_absent(sheet_id: int, row_id: int, holder_id: int, now: datetime, expires_at: datetime, lock_type: str, client: dict) -> bool:
    dt = db.DateTime(timezone=True)
    candidate = select(
        literal(sheet_id),
        literal(row_id),
        literal(holder_id),
        literal(lock_type),
        literal(now, dt),
        literal(expires_at, dt),
        literal(client["session_id"], db.String(100)),
        literal(client["ip_address"], db.String(45)),
        literal(client["user_agent"], db.String(500)),
    ).where(~exists().where(RowLock.row_id == row_id).correlate(None))
    try:
        # Only the savepoint rolls back when a concurrent insert wins
        with db.session.begin_nested():
            result = db.session.execute(
                insert(RowLock).from_select(
                    ["sheet_id", "row_id", "holder_id", "lock_type", "acquired_at",
                     "expires_at", "session_id", "ip_address", "user_agent"],
                    candidate,
                )
            )
    except IntegrityError:
        logger.debug("Row lock insert lost a race", extra={"row_id": row_id, "actor_id": holder_id})
        return False
    return result.rowcount == 1


def acquire_lock(
    row: SheetRow,
    holder_id: int,
    timeout_minutes: int | None = None,
    lock_type: str = "edit",
) -> RowLock:
    """Acquire or refresh the lock on ``row`` for ``holder_id``.

    Args:
        row: The row to lock. Its sheet supplies the default timeout.
        holder_id: Staff member taking the lock.
        timeout_minutes: Overrides the sheet's ``lock_timeout_minutes``.
        lock_type: edit | view.

    Returns:
        The lock record, refreshed from the database.

    Raises:
        LockHeld: another staff member holds an active lock on the row.
    """
    if lock_type not in LOCK_TYPES:
        raise ValueError(f"Unknown lock type: {lock_type}")
    minutes = timeout_minutes or row.sheet.lock_timeout_minutes
    row_id, sheet_id = row.id, row.sheet_id
    client = _client_fields()

    for _attempt in range(_ACQUIRE_ATTEMPTS):
        now = _utcnow()
        expires_at = now + timedelta(minutes=minutes)
        if (_claim_existing(row_id, holder_id, now, expires_at, lock_type, client)
                or _insert_if_absent(sheet_id, row_id, holder_id, now, expires_at, lock_type, client)):
            lock = _load_lock(row_id)
            _mirror(db.session.get(SheetRow, row_id), lock)
            logger.debug(
                "Row lock acquired",
                extra={"row_id": row_id, "actor_id": holder_id},
            )
            return lock

        current = _load_lock(row_id)
        if current is not None and current.holder_id != holder_id and current.is_active(now):
            raise LockHeld(
                row_id=row_id,
                holder_id=current.holder_id,
                holder_name=current.holder.name if current.holder else None,
                locked_at=current.acquired_at,
                expires_at=current.expires_at,
            )
        # The record changed hands or vanished between the two statements

    current = _load_lock(row_id)
    raise LockHeld(
        row_id=row_id,
        holder_id=current.holder_id if current else None,
        locked_at=current.acquired_at if current else None,
        expires_at=current.expires_at if current else None,
    )


# ── Release ──────────────────────────────────────────────────────────────────


def release_lock(row_id: int, holder_id: int) -> bool:
    """Release ``holder_id``'s lock on the row. Returns False when there was none.

    Another holder's lock is never touched.
    """
    result = db.session.execute(
        delete(RowLock)
        .where(RowLock.row_id == row_id, RowLock.holder_id == holder_id)
        .execution_options(synchronize_session="fetch")
    )
    released = result.rowcount > 0
    row = db.session.get(SheetRow, row_id)
    if row is not None and row.locked_by_id == holder_id:
        _mirror(row, None)
    if released:
        logger.debug("Row lock released", extra={"row_id": row_id, "actor_id": holder_id})
    return released


def force_release_lock(row_id: int) -> bool:
    """Drop whatever lock exists on the row, regardless of holder."""
    result = db.session.execute(
        delete(RowLock).where(RowLock.row_id == row_id).execution_options(synchronize_session="fetch")
    )
    row = db.session.get(SheetRow, row_id)
    if row is not None and row.status != "locked":
        _mirror(row, None)
    return result.rowcount > 0


def release_all_locks(holder_id: int) -> int:
    """Release every lock held by ``holder_id``. Returns how many were dropped."""
    row_ids = list(db.session.execute(
        select(RowLock.row_id).where(RowLock.holder_id == holder_id)
    ).scalars())
    if not row_ids:
        return 0
    db.session.execute(
        delete(RowLock).where(RowLock.holder_id == holder_id).execution_options(synchronize_session="fetch")
    )
    for row in db.session.execute(select(SheetRow).where(SheetRow.id.in_(row_ids))).scalars():
        if row.locked_by_id == holder_id and row.status != "locked":
            _mirror(row, None)
    return len(row_ids)


# ── Queries ──────────────────────────────────────────────────────────────────


def get_lock_info(row_id: int) -> RowLock | None:
    """The active lock on the row, or None. Expired records count as absent."""
    lock = _load_lock(row_id)
    if lock is None or not lock.is_active():
        return None
    return lock


def is_locked(row_id: int, exclude_holder_id: int | None = None) -> bool:
    """True if an active lock exists, ignoring one held by ``exclude_holder_id``."""
    lock = get_lock_info(row_id)
    if lock is None:
        return False
    return exclude_holder_id is None or lock.holder_id != exclude_holder_id


def get_active_locks(row_ids: list[int]) -> dict[int, RowLock]:
    """Active locks keyed by row id."""
    if not row_ids:
        return {}
    now = _utcnow()
    locks = db.session.execute(
        select(RowLock).where(RowLock.row_id.in_(row_ids), RowLock.expires_at > now)
    ).scalars()
    return {lock.row_id: lock for lock in locks}


# ── Maintenance ──────────────────────────────────────────────────────────────


def purge_expired_locks(now: datetime | None = None) -> int:
    """Delete expired lock records and clear their row mirrors. Commits."""
    now = now or _utcnow()
    expired = db.session.execute(
        select(RowLock.row_id, RowLock.holder_id).where(RowLock.expires_at <= now)
    ).all()
    if not expired:
        return 0
    db.session.execute(
        delete(RowLock).where(RowLock.expires_at <= now).execution_options(synchronize_session="fetch")
    )
    holders = dict(expired)
    for row in db.session.execute(select(SheetRow).where(SheetRow.id.in_(list(holders)))).scalars():
        if row.locked_by_id == holders[row.id] and row.status != "locked":
            _mirror(row, None)
    db.session.commit()
    logger.info("Purged %d expired row locks", len(expired), extra={"event_type": "lock_reaper"})
    return len(expired)
