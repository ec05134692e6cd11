"""
Sheet Governance Service
Configuration classes for the Flask app factory.

Every setting can be overridden through an environment variable of the
same name. ``create_app`` instantiates the selected class so that
ProductionConfig can refuse to start with missing secrets.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'sheetgov_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _database_url(env_name: str = "DATABASE_URL") -> str | None:
    """Read a database URL, normalising the legacy ``postgres://`` scheme."""
    raw = os.getenv(env_name, "")
    if not raw:
        return None
    # SQLAlchemy 2 only accepts postgresql://
    return raw.replace("postgres://", "postgresql://", 1)


_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": _env_int("DB_POOL_SIZE", 5),
    "max_overflow": _env_int("DB_MAX_OVERFLOW", 10),
    "pool_recycle": 300,
    "pool_timeout": 20,
}


class Config:
    """Settings shared by every environment."""

    DEBUG = False
    TESTING = False

    # Secrets. The dev key changes on every start, which logs out all tokens
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = _env_int("JWT_ACCESS_EXPIRES", 900)
    JWT_LEEWAY_SECONDS = _env_int("JWT_LEEWAY_SECONDS", 0)

    # Database
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    # HTTP
    MAX_CONTENT_LENGTH = 5 * 1024 * 1024
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    SLOW_REQUEST_MS = _env_int("SLOW_REQUEST_MS", 1000)

    # Logging: "json" or "text"; unset picks text for DEBUG and TESTING
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")

    # Rate limits (Flask-Limiter notation), stored in REDIS_URL when set
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_WRITE = os.getenv("RATELIMIT_WRITE", "120/minute")
    RATELIMIT_READ = os.getenv("RATELIMIT_READ", "300/minute")
    RATELIMIT_EXPORT = os.getenv("RATELIMIT_EXPORT", "10/minute")

    # Sheets
    SHEET_LOCK_TIMEOUT_MINUTES = _env_int("SHEET_LOCK_TIMEOUT_MINUTES", 15)
    SHEET_AUDIT_SUPPRESS_READS = _env_bool("SHEET_AUDIT_SUPPRESS_READS", True)
    SHEET_MAX_BULK_ROWS = _env_int("SHEET_MAX_BULK_ROWS", 500)
    SHEET_DEFAULT_PAGE_SIZE = _env_int("SHEET_DEFAULT_PAGE_SIZE", 50)

    # Background jobs
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", False)
    LOCK_REAPER_INTERVAL_SECONDS = _env_int("LOCK_REAPER_INTERVAL_SECONDS", 300)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV
    # SQLite rejects the pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"pool_pre_ping": True} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else dict(_POOL_OPTIONS)
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL") or _SQLITE_TEST
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length"
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    # Must be listed explicitly in production
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY") and not os.getenv("JWT_SECRET_KEY"):
            raise RuntimeError("SECRET_KEY or JWT_SECRET_KEY must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
