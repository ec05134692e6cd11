"""
Access tokens for staff members (PyJWT, HS256).

The service does not log anyone in: an upstream identity provider signs
tokens with the shared JWT_SECRET_KEY. Claims read here:

    sub    staff member id, as a string
    type   must be "access"
    exp    expiry; JWT_LEEWAY_SECONDS of clock skew is tolerated
    role   informational; authorisation always reloads the staff record

``generate_access_token`` serves the CLI and the test suite.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
_REQUIRED_CLAIMS = ["sub", "exp", "type"]


def _signing_key() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(staff_id: int, role: str | None = None, expires_in: int | None = None) -> str:
    """Sign an access token for ``staff_id`` valid for ``expires_in`` seconds."""
    if expires_in is None:
        expires_in = current_app.config.get("JWT_ACCESS_EXPIRES", 900)
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(staff_id),
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=expires_in),
        "jti": uuid.uuid4().hex,
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify ``token`` and return its claims with ``staff_id`` added.

    Raises jwt.ExpiredSignatureError for expired tokens and
    jwt.InvalidTokenError for anything else wrong with it.
    """
    claims = jwt.decode(
        token,
        _signing_key(),
        algorithms=[ALGORITHM],
        leeway=current_app.config.get("JWT_LEEWAY_SECONDS", 0),
        options={"require": _REQUIRED_CLAIMS},
    )
    if claims["type"] != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected an {TOKEN_TYPE} token")
    try:
        claims["staff_id"] = int(claims["sub"])
    except (TypeError, ValueError):
        raise jwt.InvalidTokenError("Token subject is not a staff id") from None
    return claims
