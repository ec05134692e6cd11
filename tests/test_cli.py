"""
Flask CLI commands registered by the app factory.
"""

from sqlalchemy import select

from sheetgov.models import db
from sheetgov.models.auth import SUPER_ADMIN_ROLE, StaffMember
from sheetgov.services.jwt_service import decode_access_token


def test_create_super_admin_prints_token(app):
    result = app.test_cli_runner().invoke(args=["create-super-admin", "Boss@Lender.co", "--name", "Boss"])

    assert result.exit_code == 0, result.output
    staff = db.session.execute(select(StaffMember).where(StaffMember.email == "boss@lender.co")).scalar_one()
    assert staff.role == SUPER_ADMIN_ROLE
    assert staff.name == "Boss"
    assert decode_access_token(result.output.strip())["staff_id"] == staff.id


def test_create_super_admin_promotes_existing(app):
    clerk = StaffMember(name="Clerk", email="clerk@lender.co", role="operations", status="suspended")
    db.session.add(clerk)
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["create-super-admin", "clerk@lender.co"])

    assert result.exit_code == 0, result.output
    staff = db.session.get(StaffMember, clerk.id)
    assert staff.role == SUPER_ADMIN_ROLE
    assert staff.status == "active"
    assert staff.name == "Clerk"


def test_create_super_admin_rejects_bad_email(app):
    result = app.test_cli_runner().invoke(args=["create-super-admin", "not-an-email"])
    assert result.exit_code == 2
    assert "EMAIL" in result.output


def test_run_job(app):
    result = app.test_cli_runner().invoke(args=["run-job", "lock_reaper"])
    assert result.exit_code == 0, result.output
    assert '"locks_purged": 0' in result.output


def test_run_unknown_job_fails(app):
    result = app.test_cli_runner().invoke(args=["run-job", "nope"])
    assert result.exit_code == 1
    assert "Unknown job" in result.output


def test_list_jobs(app):
    result = app.test_cli_runner().invoke(args=["list-jobs"])
    assert result.exit_code == 0
    assert "lock_reaper" in result.output
