"""
Sheet Governance Service.

Application factory:

    from sheetgov import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")

CLI (``flask --app wsgi ...``):

    create-super-admin EMAIL [--name NAME]   create or promote, print a token
    run-job NAME                             run one background job now
    list-jobs                                registered jobs and last runs
"""

import json
import logging
import os

import click
from email_validator import EmailNotValidError, validate_email
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from sheetgov.blueprints import register_blueprints
from sheetgov.config import config
from sheetgov.middleware.jwt_auth import init_jwt_middleware
from sheetgov.middleware.logging_config import configure_logging
from sheetgov.middleware.rate_limiter import init_rate_limits
from sheetgov.middleware.timing import init_request_timing
from sheetgov.models import db
from sheetgov.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Build the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS") or ""
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])

    init_request_timing(app)
    init_jwt_middleware(app)

    # Models must be imported before create_all and alembic autogenerate
    from sheetgov.models import assignment, audit, auth, lock, row, sheet  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            logger.warning("db.create_all() failed, run `flask db upgrade`: %s", e)

    register_blueprints(app)
    register_error_handlers(app)
    init_rate_limits(app, limiter)

    # Importing the jobs module registers its @register_job handlers
    from sheetgov.services import scheduled_jobs  # noqa: F401
    from sheetgov.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    _register_cli(app)
    logger.info("Sheet service ready (config=%s)", config_name)
    return app


def _register_cli(app):
    @app.cli.command("create-super-admin")
    @click.argument("email")
    @click.option("--name", default="Administrator", help="Display name for a new account")
    def create_super_admin_cmd(email, name):
        """Create or promote a super-admin and print an access token."""
        from sheetgov.models.auth import SUPER_ADMIN_ROLE, StaffMember
        from sheetgov.services.jwt_service import generate_access_token

        try:
            email = validate_email(email, check_deliverability=False).normalized.lower()
        except EmailNotValidError as e:
            raise click.BadParameter(str(e), param_hint="EMAIL") from None

        staff = db.session.execute(
            db.select(StaffMember).where(StaffMember.email == email)
        ).scalar_one_or_none()
        if staff is None:
            staff = StaffMember(name=name, email=email, role=SUPER_ADMIN_ROLE, status="active")
            db.session.add(staff)
        else:
            staff.role = SUPER_ADMIN_ROLE
            staff.status = "active"
        db.session.commit()
        logger.info("Super admin ready", extra={"staff_id": staff.id})
        click.echo(generate_access_token(staff.id, staff.role))

    @app.cli.command("run-job")
    @click.argument("name")
    def run_job_cmd(name):
        """Run one registered background job now."""
        from sheetgov.services.scheduler_service import SchedulerService

        outcome = SchedulerService.run_job(name)
        click.echo(json.dumps(outcome, indent=2, default=str))
        if outcome["status"] != "success":
            raise SystemExit(1)

    @app.cli.command("list-jobs")
    def list_jobs_cmd():
        """List registered background jobs."""
        from sheetgov.services.scheduler_service import SchedulerService

        for job in SchedulerService.list_jobs():
            last = job["last_run"]["ran_at"] if job["last_run"] else "never"
            every = job["interval_config"] or "on demand"
            click.echo(f"{job['job_name']:<20} every={every:<32} last={last}")
