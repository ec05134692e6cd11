"""
Sheet Governance Service
Blueprint registry and shared request helpers.
"""

from flask import request

from sheetgov.core.exceptions import ValidationError
from sheetgov.utils.helpers import parse_int


def json_body() -> dict:
    """The request's JSON object body; an empty dict when absent.

    A body that isn't a JSON object is rejected with ValidationError.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def arg_flag(name: str, default: bool = False) -> bool:
    """Parse a boolean query-string flag (``1``/``true``/``yes``)."""
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")


def page_args(default_per_page: int = 100) -> tuple[int, int]:
    """``page`` / ``per_page`` query params. Non-numeric values raise ValidationError."""
    page = parse_int(request.args.get("page"), "page", default=1, minimum=1)
    per_page = parse_int(request.args.get("per_page"), "per_page", default=default_per_page, minimum=1)
    return page, per_page


def register_blueprints(app) -> None:
    from sheetgov.blueprints.assignments_bp import assignments_bp
    from sheetgov.blueprints.audit_bp import audit_bp
    from sheetgov.blueprints.health_bp import health_bp
    from sheetgov.blueprints.rows_bp import rows_bp
    from sheetgov.blueprints.sheets_bp import sheets_bp
    from sheetgov.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(sheets_bp)
    app.register_blueprint(rows_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(assignments_bp)
    app.register_blueprint(audit_bp)
