"""Standardised API error responses.

Usage
-----
    from sheetgov.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Row not found")
    return api_error(E.VALIDATION_REQUIRED, "reason is required")

Service exceptions never need catching in views: ``register_error_handlers``
maps each ``sheetgov.core.exceptions`` type to one code and status.
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from sheetgov.core.exceptions import (
    AccessDenied,
    AuthenticationRequired,
    ConflictError,
    ImmutableRecord,
    InvalidTransition,
    LockHeld,
    MissingRequiredFields,
    NotFoundError,
    PermissionDenied,
    StaleVersion,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 422 / 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    BAD_REQUEST = "ERR_BAD_REQUEST"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409 / 423
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"
    LOCKED = "ERR_LOCKED"

    # Server – HTTP 500
    IMMUTABLE = "ERR_IMMUTABLE_RECORD"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.BAD_REQUEST: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.LOCKED: 423,
    E.IMMUTABLE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing fields, lock holder, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app) -> None:
    """Map service exceptions and generic HTTP errors to JSON responses."""

    @app.errorhandler(AuthenticationRequired)
    def _unauthenticated(exc):
        return api_error(E.UNAUTHENTICATED, str(exc))

    @app.errorhandler(AccessDenied)
    def _forbidden(exc):
        details = {"reason": exc.reason}
        if exc.sheet_key:
            details["sheet_key"] = exc.sheet_key
        if isinstance(exc, PermissionDenied):
            details["permission"] = exc.permission
        return api_error(E.FORBIDDEN, str(exc), details=details)

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(MissingRequiredFields)
    def _missing_fields(exc):
        return api_error(E.VALIDATION_REQUIRED, str(exc), details=exc.details)

    @app.errorhandler(ValidationError)
    def _invalid(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _duplicate(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @app.errorhandler(InvalidTransition)
    def _bad_transition(exc):
        return api_error(
            E.CONFLICT_STATE,
            str(exc),
            details={"current_status": exc.current_status, "action": exc.action},
        )

    @app.errorhandler(StaleVersion)
    def _stale(exc):
        return api_error(
            E.CONFLICT_VERSION,
            str(exc),
            details={"row_id": exc.row_id, "expected_version": exc.expected, "current_version": exc.actual},
        )

    @app.errorhandler(LockHeld)
    def _locked(exc):
        return api_error(E.LOCKED, str(exc), details=exc.to_dict())

    @app.errorhandler(ImmutableRecord)
    def _immutable(exc):
        logger.error("Audit ledger mutation attempted: %s", exc, exc_info=True)
        return api_error(E.IMMUTABLE, str(exc))

    @app.errorhandler(400)
    def _bad_request(e):
        return api_error(E.BAD_REQUEST, getattr(e, "description", "Bad request"))

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
