"""
Environment configuration for the portfolio service.

``create_app`` picks a class from ``config`` by name (``APP_ENV`` when no
name is given). Everything governance-related lives here so a deployment
can move the legacy cut-off or rename its active statuses without a
code change.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _database_url(default: str | None) -> str | None:
    """DATABASE_URL with the ``postgres://`` scheme SQLAlchemy 2 no longer accepts rewritten."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


def _csv_env(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    BULK_DERIVE_RATE_LIMIT = os.getenv("BULK_DERIVE_RATE_LIMIT", "10/minute")
    API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "120/minute")

    # Tenant metadata row read when resolving scoring / TOM / value / capability config
    METADATA_CONFIG_KEY = os.getenv("METADATA_CONFIG_KEY", "default")

    # Use cases created before this date only get warnings from the gate checks
    GOVERNANCE_ENFORCEMENT_DATE = os.getenv("GOVERNANCE_ENFORCEMENT_DATE", "2026-01-24")
    ACTIVATION_STATUSES = _csv_env("ACTIVATION_STATUSES", "In-flight,Implemented,Production")
    # Status an auto-deactivated use case falls back to
    BASELINE_STATUS = os.getenv("BASELINE_STATUS", "Backlog")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'portfolio_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url(None)
    # no wildcard in production; an empty value means same-origin only
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        missing = [name for name, value in (("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                                            ("SECRET_KEY", os.getenv("SECRET_KEY"))) if not value]
        if missing:
            raise RuntimeError(f"Production config requires: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
