"""
BCL Scoring Workflow
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'bcl_workflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str | None:
    # Heroku-style postgres:// URLs; SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Base configuration shared across all environments."""

    DEBUG = False
    TESTING = False

    # Store injected into the write gateway: "memory" | "sql"
    WORKFLOW_STORE = os.getenv("WORKFLOW_STORE", "memory")

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Period windows
    WEEK_ANCHOR = os.getenv("WEEK_ANCHOR", "MONDAY")
    PERIOD_UTC_OFFSET_HOURS = int(os.getenv("PERIOD_UTC_OFFSET_HOURS", "7"))

    # Approval gate policy (APPROVE_PERIOD only)
    APPROVAL_GATES_ENFORCED = _env_flag("APPROVAL_GATES_ENFORCED")
    APPROVAL_GATE_MIN_COVERAGE = float(os.getenv("APPROVAL_GATE_MIN_COVERAGE", "0.6"))
    APPROVAL_GATE_MIN_REVIEWED = int(os.getenv("APPROVAL_GATE_MIN_REVIEWED", "3"))
    APPROVAL_GATE_MIN_SCORED_PERSPECTIVES = int(os.getenv("APPROVAL_GATE_MIN_SCORED_PERSPECTIVES", "4"))

    # Snapshot pagination
    SNAPSHOT_PAGE_SIZE = 50
    SNAPSHOT_PAGE_MAX = 200

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging: "readable" | "json"; unset picks by environment
    LOG_FORMAT = os.getenv("LOG_FORMAT")
    LOG_LEVEL = os.getenv("LOG_LEVEL")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    WORKFLOW_STORE = "memory"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    APPROVAL_GATES_ENFORCED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    WORKFLOW_STORE = os.getenv("WORKFLOW_STORE", "sql")
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
