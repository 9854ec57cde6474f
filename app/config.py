"""
Gift Aid Claims Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'giftaid_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting storage (memory:// or redis://...)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # ── HMRC gateway ─────────────────────────────────────────────────────
    # local_test_service | test_gateway | live_gateway
    HMRC_GATEWAY_MODE = os.getenv("HMRC_GATEWAY_MODE", "test_gateway")
    # Blank → default endpoint for the mode
    HMRC_SUBMIT_URL = os.getenv("HMRC_SUBMIT_URL", "")
    HMRC_POLL_URL = os.getenv("HMRC_POLL_URL", "")
    HMRC_TIMEOUT_SECONDS = int(os.getenv("HMRC_TIMEOUT_SECONDS", "25"))

    # Centrally-held sender credentials ("central" mode / fallback)
    HMRC_SENDER_ID = os.getenv("HMRC_SENDER_ID", "")
    HMRC_SENDER_PASSWORD = os.getenv("HMRC_SENDER_PASSWORD", "")

    # Envelope defaults
    HMRC_OFFICIAL_FORE = os.getenv("HMRC_OFFICIAL_FORE", "Portal")
    HMRC_OFFICIAL_SUR = os.getenv("HMRC_OFFICIAL_SUR", "Operator")
    HMRC_OFFICIAL_POSTCODE = os.getenv("HMRC_OFFICIAL_POSTCODE", "AA1 1AA")
    HMRC_OFFICIAL_PHONE = os.getenv("HMRC_OFFICIAL_PHONE", "00000000000")
    HMRC_REG_NAME = os.getenv("HMRC_REG_NAME", "CCEW")
    HMRC_VENDOR_ID = os.getenv("HMRC_VENDOR_ID", "0000")
    HMRC_PRODUCT = os.getenv("HMRC_PRODUCT", "GiftAidClaims")
    HMRC_PRODUCT_VERSION = os.getenv("HMRC_PRODUCT_VERSION", "1.0")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False

    HMRC_GATEWAY_MODE = "test_gateway"
    HMRC_SUBMIT_URL = "https://hmrc.test/submission"
    HMRC_POLL_URL = "https://hmrc.test/poll"
    HMRC_SENDER_ID = ""
    HMRC_SENDER_PASSWORD = ""


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if not os.getenv("GATEWAY_CRED_ENCRYPTION_KEY"):
            raise RuntimeError(
                "GATEWAY_CRED_ENCRYPTION_KEY environment variable must be set in production"
            )


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
