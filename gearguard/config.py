"""
GearGuard maintenance service
Environment configuration.

``create_app(name)`` loads ``config[name]``; the name defaults to APP_ENV.
Every setting can be overridden with the environment variable of the same
name.
"""

import os
import secrets

ROOT_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _database_url(env_var, fallback=None):
    """Read a database URL, normalising Heroku-style ``postgres://``."""
    url = os.getenv(env_var, "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


def _flag(env_var, default):
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Flask-Limiter storage: Redis when REDIS_URL is set, else in-process memory
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL") or "memory://"
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")
    # Preventive schedules due within this many days get a request now
    PREVENTIVE_LOOKAHEAD_DAYS = int(os.getenv("PREVENTIVE_LOOKAHEAD_DAYS", "30"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(ROOT_DIR, "instance", "gearguard_dev.db"),
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    """Instantiated (not used as a class) so the checks below run at startup."""

    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": 10,
        "pool_timeout": 20,
    }

    def __init__(self):
        missing = [name for name, value in (
            ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
            ("SECRET_KEY", os.getenv("SECRET_KEY")),
        ) if not value]
        if missing:
            raise RuntimeError(f"Missing required production settings: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
