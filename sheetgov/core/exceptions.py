"""
Service-wide exception hierarchy.

Every service raises these types; ``sheetgov.utils.errors`` registers one
handler per type on the app so each error category maps to a single HTTP
status everywhere.

Usage:
    from sheetgov.core.exceptions import NotFoundError, PermissionDenied

    raise NotFoundError(resource="Sheet", resource_id="loans-q1")
    raise PermissionDenied(permission="approve", sheet_key="loans-q1")
"""

from __future__ import annotations

from datetime import datetime


class NotFoundError(Exception):
    """Raised when a requested resource does not exist (or is soft-deleted).

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Sheet", "Row").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class MissingRequiredFields(ValidationError):
    """A row write left one or more required columns empty.

    ``missing`` lists the column labels, in column order.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            f"Missing required fields: {', '.join(self.missing)}",
            details={"missing_fields": self.missing},
        )


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique key.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class AuthenticationRequired(Exception):
    """No valid bearer token, or the token names an unknown staff member (HTTP 401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AccessDenied(Exception):
    """The actor may not perform the operation (HTTP 403).

    Covers missing assignments, missing permission flags, row-scope
    mismatches and column restrictions.
    """

    def __init__(self, message: str, sheet_key: str | None = None, reason: str | None = None) -> None:
        self.sheet_key = sheet_key
        self.reason = reason or "access_denied"
        super().__init__(message)


class NoAssignment(AccessDenied):
    """The actor holds no active, unexpired assignment on the sheet."""

    def __init__(self, sheet_key: str) -> None:
        super().__init__(
            f"No active assignment for sheet '{sheet_key}'",
            sheet_key=sheet_key,
            reason="no_assignment",
        )


class PermissionDenied(AccessDenied):
    """The actor's assignment lacks the named permission flag."""

    def __init__(self, permission: str, sheet_key: str | None = None) -> None:
        self.permission = permission
        super().__init__(
            f"Permission '{permission}' required on sheet '{sheet_key}'",
            sheet_key=sheet_key,
            reason="permission_denied",
        )


class LockHeld(Exception):
    """Another actor holds an active lock on the row (HTTP 423)."""

    def __init__(
        self,
        row_id: int,
        holder_id: int | None,
        locked_at: datetime | None = None,
        expires_at: datetime | None = None,
        holder_name: str | None = None,
    ) -> None:
        self.row_id = row_id
        self.holder_id = holder_id
        self.holder_name = holder_name
        self.locked_at = locked_at
        self.expires_at = expires_at
        super().__init__(f"Row {row_id} is locked by another user")

    def to_dict(self) -> dict:
        return {
            "row_id": self.row_id,
            "locked_by": self.holder_id,
            "locked_by_name": self.holder_name,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class InvalidTransition(Exception):
    """A workflow rule was violated: wrong source status, self-review,
    missing reason or a sheet with approval disabled (HTTP 409)."""

    def __init__(self, message: str, current_status: str | None = None, action: str | None = None) -> None:
        self.current_status = current_status
        self.action = action
        super().__init__(message)


class StaleVersion(Exception):
    """The caller's ``expected_version`` no longer matches the row (HTTP 409)."""

    def __init__(self, row_id: int, expected: int, actual: int) -> None:
        self.row_id = row_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Row {row_id} is at version {actual}, expected {expected}")


class ImmutableRecord(Exception):
    """An attempt was made to update or delete an audit ledger entry.

    Never swallowed; surfaces as HTTP 500 if it reaches a request.
    """
