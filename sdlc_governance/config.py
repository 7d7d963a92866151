"""
SDLC Governance Approval Engine
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'sdlc_governance_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production must set SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)


def _normalise_db_url(raw: str) -> str:
    # SQLAlchemy 2.0 only accepts the postgresql:// scheme
    return raw.replace("postgres://", "postgresql://", 1) if raw else raw


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting (memory:// unless REDIS_URL is set)
    RATELIMIT_ENABLED = os.getenv("RATELIMIT_ENABLED", "true").lower() == "true"
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    DECISION_RATE_LIMIT = os.getenv("DECISION_RATE_LIMIT", "60/minute")

    # Email / SMTP (no MAIL_SERVER → log-only mode)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@sdlc-governance.local")
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # External signer (optional; no SIGNER_API_KEY → routing disabled)
    SIGNER_API_BASE = os.getenv("SIGNER_API_BASE", "https://api.docuseal.com")
    SIGNER_WEB_BASE = os.getenv("SIGNER_WEB_BASE", "https://docuseal.com")
    SIGNER_API_KEY = os.getenv("SIGNER_API_KEY")
    SIGNER_WEBHOOK_SECRET = os.getenv("SIGNER_WEBHOOK_SECRET")

    # Lifecycle gate: backward transitions are allowed unless this is on
    LIFECYCLE_ENFORCE_FORWARD = os.getenv("LIFECYCLE_ENFORCE_FORWARD", "false").lower() == "true"


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(os.getenv("DATABASE_URL", "")) or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    MAIL_SERVER = None
    SIGNER_API_KEY = "test-signer-key"
    SIGNER_WEBHOOK_SECRET = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(os.getenv("DATABASE_URL", "")) or None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
