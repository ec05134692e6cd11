"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

The bearer token identifies the acting staff member:
  Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_role

Views resolve the full actor record with ``current_actor()``, which raises
AuthenticationRequired when the token is absent, invalid or names an
unknown staff member.
"""

import logging

import jwt as pyjwt
from flask import g, request

from sheetgov.core.exceptions import AuthenticationRequired
from sheetgov.models import db
from sheetgov.models.auth import StaffMember
from sheetgov.services.access_service import Actor
from sheetgov.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_error = None
        g.pop("current_actor", None)

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = payload["staff_id"]
            g.jwt_role = payload.get("role")
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token expired"
        except pyjwt.InvalidTokenError:
            g.jwt_error = "Invalid token"


def current_actor() -> Actor:
    """The authenticated, active staff member behind this request."""
    actor = getattr(g, "current_actor", None)
    if actor is not None:
        return actor

    staff_id = getattr(g, "jwt_user_id", None)
    if staff_id is None:
        raise AuthenticationRequired(getattr(g, "jwt_error", None) or "Bearer token required")

    staff = db.session.get(StaffMember, staff_id)
    if staff is None:
        logger.warning("Token for unknown staff member", extra={"staff_id": staff_id})
        raise AuthenticationRequired("Unknown staff member")

    g.current_actor = Actor.from_staff(staff)
    return g.current_actor
