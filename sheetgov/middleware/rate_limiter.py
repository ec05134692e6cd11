"""
Per-blueprint rate limits.

The Limiter in ``sheetgov/__init__.py`` carries no default limit. Limits
are attached here after blueprints are registered, read from config:

    RATELIMIT_WRITE    rows, workflow and assignment routes
    RATELIMIT_READ     sheet definitions and audit queries
    RATELIMIT_EXPORT   the export route, on top of RATELIMIT_WRITE

Health probes are exempt. Nothing is attached under TESTING.
"""

import logging

logger = logging.getLogger(__name__)

_WRITE_BLUEPRINTS = ("rows", "workflow", "assignments")
_READ_BLUEPRINTS = ("sheets", "sheet_audit")
_EXPORT_ENDPOINT = "rows.export_sheet_rows"


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        logger.debug("Rate limits skipped under TESTING")
        return

    write_limit = app.config["RATELIMIT_WRITE"]
    read_limit = app.config["RATELIMIT_READ"]
    export_limit = app.config["RATELIMIT_EXPORT"]

    for name in _WRITE_BLUEPRINTS:
        if name in app.blueprints:
            limiter.limit(write_limit)(app.blueprints[name])
    for name in _READ_BLUEPRINTS:
        if name in app.blueprints:
            limiter.limit(read_limit)(app.blueprints[name])

    export_view = app.view_functions.get(_EXPORT_ENDPOINT)
    if export_view is not None:
        limiter.limit(export_limit)(export_view)

    if "health" in app.blueprints:
        limiter.exempt(app.blueprints["health"])

    logger.info("Rate limits: write=%s read=%s export=%s", write_limit, read_limit, export_limit)
