# config/base.py
import os
import warnings
from datetime import timedelta

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_IMPORT_BATCH_SIZE = 50

_TRUE_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_TOKENS = frozenset({"0", "false", "no", "off"})


def _coerce_bool(value, default=False):
    """Read an environment flag; unrecognised values fall back to ``default``."""
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower() if value is not None else ""
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """Read an integer setting; blank, malformed or too-small values use ``default``."""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def _parse_choice(value, choices, default):
    token = str(value or "").strip().lower()
    return token if token in choices else default


def _env_int(name, default, *, minimum=None):
    return _coerce_int(os.environ.get(name), default, minimum=minimum)


def _resolve_secret_key(flask_env):
    """
    SECRET_KEY from the environment.

    Production refuses to start without one; development gets a fixed key and a
    warning; testing is given its key by ``TestingConfig``.
    """
    secret = os.environ.get("SECRET_KEY")
    if secret:
        return secret
    if flask_env == "production":
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if flask_env == "testing":
        return "test-secret-key-placeholder"
    warnings.warn("SECRET_KEY not set; using the development key.", UserWarning)
    return "dev-secret-key-change-in-production"


def _sqlite_uri(filename):
    instance_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "instance")
    os.makedirs(instance_dir, exist_ok=True)
    # sqlite:/// plus an absolute path; forward slashes on every platform
    return "sqlite:///" + os.path.join(instance_dir, filename).replace("\\", "/")


_SQLITE_CONNECT_ARGS = {"check_same_thread": False, "timeout": 5}


class Config:
    SECRET_KEY = _resolve_secret_key(os.environ.get("FLASK_ENV", "development"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Donor imports
    IMPORTER_MAX_UPLOAD_BYTES = _env_int("IMPORTER_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES, minimum=1)
    IMPORTER_BATCH_SIZE = _env_int("IMPORTER_BATCH_SIZE", DEFAULT_IMPORT_BATCH_SIZE, minimum=1)
    # inline runs inside the request, thread uses an in-process pool, celery hands off to the worker
    IMPORTER_EXECUTOR = _parse_choice(os.environ.get("IMPORTER_EXECUTOR"), {"inline", "thread", "celery"}, "thread")
    IMPORTER_MAX_WORKERS = _env_int("IMPORTER_MAX_WORKERS", 4, minimum=1)
    IMPORTER_PROGRESS_BACKEND = _parse_choice(
        os.environ.get("IMPORTER_PROGRESS_BACKEND"), {"memory", "database"}, "memory"
    )
    IMPORTER_UPLOAD_DIR = os.environ.get("IMPORTER_UPLOAD_DIR")

    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"))
    if IMPORTER_EXECUTOR == "celery" and not IMPORTER_WORKER_ENABLED:
        raise ValueError("IMPORTER_EXECUTOR=celery needs IMPORTER_WORKER_ENABLED=true.")
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Progress record retention, in seconds
    PROGRESS_RETENTION_SECONDS = _env_int("PROGRESS_RETENTION_SECONDS", 30 * 60, minimum=0)
    PROGRESS_CANCEL_RETENTION_SECONDS = _env_int("PROGRESS_CANCEL_RETENTION_SECONDS", 10 * 60, minimum=0)
    PROGRESS_STALE_SECONDS = _env_int("PROGRESS_STALE_SECONDS", 10 * 60, minimum=0)

    # Donor list generation
    LIST_AUTO_EXCLUDE_ON_GENERATE = _coerce_bool(os.environ.get("LIST_AUTO_EXCLUDE_ON_GENERATE"), default=True)

    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _sqlite_uri("roster_dev.db")
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"))
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": dict(_SQLITE_CONNECT_ARGS)} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}
    )


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": dict(_SQLITE_CONNECT_ARGS)}
    # Imports run synchronously unless a test opts into the thread pool
    IMPORTER_EXECUTOR = "inline"


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
    _database_url = os.environ.get("DATABASE_URL") or None
    if _database_url and _database_url.startswith("postgres://"):
        _database_url = "postgresql://" + _database_url[len("postgres://") :]
    SQLALCHEMY_DATABASE_URI = _database_url
    # Several web processes must see the same progress records
    IMPORTER_PROGRESS_BACKEND = _parse_choice(
        os.environ.get("IMPORTER_PROGRESS_BACKEND"), {"memory", "database"}, "database"
    )
