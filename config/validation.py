# config/validation.py

"""
Startup checks for the donor roster environment.

Only production is validated; development and testing fall back to the
defaults in ``config.base``.
"""

import os
import sys
from typing import List, Tuple

PLACEHOLDER_SECRET_KEYS = frozenset({"", "your-secret-key", "your_secret_key", "change-me"})


def _importer_errors(environ) -> List[str]:
    errors = []
    executor = environ.get("IMPORTER_EXECUTOR", "thread").strip().lower()
    backend = environ.get("IMPORTER_PROGRESS_BACKEND", "database").strip().lower()
    if executor not in {"inline", "thread", "celery"}:
        errors.append(f"IMPORTER_EXECUTOR must be inline, thread or celery (got '{executor}')")
    if executor == "celery":
        if not environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when IMPORTER_EXECUTOR=celery")
        if backend == "memory":
            errors.append("IMPORTER_PROGRESS_BACKEND=memory cannot be shared with Celery workers; use 'database'")

    max_upload = environ.get("IMPORTER_MAX_UPLOAD_BYTES")
    if max_upload is not None:
        try:
            valid = int(max_upload) > 0
        except ValueError:
            valid = False
        if not valid:
            errors.append("IMPORTER_MAX_UPLOAD_BYTES must be a positive integer")
    return errors


def validate_environment(flask_env: str = None, environ=None) -> Tuple[bool, List[str]]:
    """
    Validate the environment for ``flask_env`` (defaults to ``FLASK_ENV``).

    Returns ``(is_valid, errors)``.
    """
    environ = os.environ if environ is None else environ
    if flask_env is None:
        flask_env = environ.get("FLASK_ENV", "development")
    if flask_env != "production":
        return True, []

    errors = []
    if environ.get("SECRET_KEY", "") in PLACEHOLDER_SECRET_KEYS:
        errors.append("SECRET_KEY must be set to a non-default value in production")
    if not environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production (PostgreSQL connection string)")
    errors.extend(_importer_errors(environ))
    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Exit the process with a readable report when validation fails."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    lines = ["Environment validation failed:"]
    lines.extend(f"  {number}. {error}" for number, error in enumerate(errors, 1))
    lines.append("Check your .env file or deployment environment.")
    print("\n".join(lines), file=sys.stderr)
    sys.exit(1)
