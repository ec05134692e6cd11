"""
Shared pytest fixtures for the Sheet Governance test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin: a super-admin actor
    - make_staff / make_sheet / grant: factories for actors, sheets, assignments
    - auth_headers: bearer-token headers for an actor
"""

import itertools

import pytest

from sheetgov import create_app
from sheetgov.models import db as _db
from sheetgov.models.auth import SUPER_ADMIN_ROLE, StaffMember
from sheetgov.services.access_service import Actor, assign_staff
from sheetgov.services.jwt_service import generate_access_token
from sheetgov.services.sheet_service import create_sheet

_seq = itertools.count(1)

LOAN_COLUMNS = [
    {"key": "borrower", "label": "Borrower", "type": "text"},
    {"key": "amount", "label": "Amount", "type": "currency", "required": True, "validation": {"min": 0}},
    {
        "key": "stage",
        "label": "Stage",
        "type": "enum",
        "default_value": "new",
        "validation": {"enum_values": ["new", "review", "closed"]},
    },
    {"key": "risk_score", "label": "Risk Score", "type": "number"},
    {"key": "reference", "label": "Reference", "type": "text", "unique": True},
    {"key": "notes", "label": "Notes", "type": "textarea"},
]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def _new_staff(role="operations", status="active", name=None):
    n = next(_seq)
    staff = StaffMember(
        name=name or f"Staff {n}",
        email=f"staff{n}@example.com",
        role=role,
        status=status,
    )
    _db.session.add(staff)
    _db.session.commit()
    return Actor.from_staff(staff)


@pytest.fixture()
def admin():
    """A super-admin actor."""
    return _new_staff(role=SUPER_ADMIN_ROLE, name="Ada Admin")


@pytest.fixture()
def make_staff():
    """Factory: ``make_staff(role="operations", status="active", name=None) -> Actor``."""
    return _new_staff


@pytest.fixture()
def make_sheet(admin):
    """Factory: ``make_sheet(sheet_key="loans-q1", **overrides) -> SheetDefinition``."""

    def _make(sheet_key="loans-q1", **overrides):
        data = {
            "sheet_key": sheet_key,
            "name": overrides.pop("name", f"Sheet {sheet_key}"),
            "category": "loans",
            "columns": overrides.pop("columns", LOAN_COLUMNS),
        }
        data.update(overrides)
        return create_sheet(admin, data)

    return _make


@pytest.fixture()
def grant(admin):
    """Factory: ``grant(actor, sheet_key, scope=..., restricted_columns=..., **flags)``.

    Flags are permission names (``edit=True``); unspecified ones take the
    sheet / global defaults.
    """

    def _grant(actor, sheet_key="loans-q1", scope=None, restricted_columns=None, expires_at=None, **flags):
        return assign_staff(
            admin,
            sheet_key,
            actor.id,
            permissions=flags,
            scope=scope,
            restricted_columns=restricted_columns,
            expires_at=expires_at,
        )

    return _grant


@pytest.fixture()
def auth_headers():
    """Factory: ``auth_headers(actor) -> {"Authorization": "Bearer …"}``."""

    def _headers(actor):
        return {"Authorization": f"Bearer {generate_access_token(actor.id, actor.role)}"}

    return _headers
