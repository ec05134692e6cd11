"""Shared lookup and parsing helpers for services and blueprints."""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select

from sheetgov.core.exceptions import NotFoundError, ValidationError
from sheetgov.models import db
from sheetgov.models.row import SheetRow

logger = logging.getLogger(__name__)


def get_row_or_404(sheet, row_id, include_deleted: bool = False) -> SheetRow:
    """Fetch a row of ``sheet`` by id.

    Soft-deleted rows and rows of other sheets raise NotFoundError, so a
    row id can't be used to probe another sheet.
    """
    try:
        row_id = int(row_id)
    except (TypeError, ValueError):
        raise NotFoundError(resource="Row", resource_id=row_id) from None
    query = select(SheetRow).where(SheetRow.id == row_id, SheetRow.sheet_id == sheet.id)
    if not include_deleted:
        query = query.where(SheetRow.deleted_at.is_(None))
    row = db.session.execute(query).scalar_one_or_none()
    if row is None:
        raise NotFoundError(resource="Row", resource_id=row_id)
    return row


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value, field: str = "date"):
    """Parse an ISO date or timestamp to an aware UTC datetime.

    Raises ValidationError on bad input; returns None for empty input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date or timestamp", details={field: "invalid"}) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_id_list(values, field: str = "row_ids") -> list[int]:
    """Coerce a JSON list of ids to ints, rejecting empty or malformed input."""
    if not isinstance(values, list) or not values:
        raise ValidationError(f"{field} must be a non-empty list", details={field: "required"})
    try:
        return [int(v) for v in values]
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must contain integer ids", details={field: "invalid"}) from None


def parse_int(value, field: str, default: int | None = None, minimum: int | None = None, maximum: int | None = None):
    """Coerce a query or body value to int, clamped to [minimum, maximum].

    Empty input gives ``default``; anything non-numeric raises ValidationError.
    """
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: "invalid"}) from None
    if minimum is not None:
        number = max(number, minimum)
    if maximum is not None:
        number = min(number, maximum)
    return number
