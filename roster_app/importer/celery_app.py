"""
Optional Celery worker for donor imports.

Nothing here runs unless ``IMPORTER_WORKER_ENABLED`` is set. Without explicit
``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` values the broker and result
store share one SQLite file, so a laptop can run the worker without Redis.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"

# Donor files are small; a stuck import is cancelled well before this.
IMPORT_TIME_LIMIT_SECONDS = 30 * 60
IMPORT_SOFT_TIME_LIMIT_SECONDS = 25 * 60

_WORKER_LOG_FORMAT = "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s"
_TASK_LOG_FORMAT = "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"


def _sqlite_store(app: Flask) -> Path:
    """SQLite file shared by the default broker and result backend."""
    store = Path(app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME)
    if not store.is_absolute():
        store = Path(app.instance_path) / store
    store.parent.mkdir(parents=True, exist_ok=True)
    return store


def resolve_transport(app: Flask) -> tuple[str, str]:
    """Return ``(broker_url, result_backend)`` for the importer worker."""
    broker = app.config.get("CELERY_BROKER_URL")
    backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker and backend):
        # Celery wants forward slashes, Windows paths included.
        location = _sqlite_store(app).as_posix()
        broker = broker or f"sqla+sqlite:///{location}"
        backend = backend or f"db+sqlite:///{location}"
    return broker, backend


def _worker_settings(app: Flask) -> dict[str, Any]:
    return {
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_default_exchange": DEFAULT_QUEUE_NAME,
        "task_default_routing_key": DEFAULT_QUEUE_NAME,
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        # One import per worker slot; a crashed worker hands the file back.
        "worker_prefetch_multiplier": 1,
        "task_acks_late": True,
        "task_track_started": True,
        "result_extended": True,
        "broker_connection_retry_on_startup": True,
        "task_time_limit": app.config.get("IMPORTER_TASK_TIME_LIMIT", IMPORT_TIME_LIMIT_SECONDS),
        "task_soft_time_limit": app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", IMPORT_SOFT_TIME_LIMIT_SECONDS),
        "worker_hijack_root_logger": False,
        "worker_log_format": _WORKER_LOG_FORMAT,
        "worker_task_log_format": _TASK_LOG_FORMAT,
    }


def _config_overrides(app: Flask) -> Mapping[str, Any]:
    """``CELERY_CONFIG`` as a mapping; env deployments pass it as a JSON string."""
    raw = app.config.get("CELERY_CONFIG")
    if not raw:
        return {}
    if isinstance(raw, Mapping):
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        app.logger.warning("Ignoring CELERY_CONFIG: value is not valid JSON", exc_info=True)
        return {}
    if not isinstance(parsed, dict):
        app.logger.warning("Ignoring CELERY_CONFIG: expected a JSON object")
        return {}
    return parsed


def create_celery_app(app: Flask) -> Celery:
    """
    Build the importer Celery app for ``app``.

    Every task body runs inside ``app.app_context()`` so services can use
    ``db.session`` exactly as they do during a request.
    """
    broker, backend = resolve_transport(app)
    celery = Celery(app.import_name, broker=broker, backend=backend, include=("roster_app.importer.tasks",))
    celery.conf.update(_worker_settings(app))

    overrides = _config_overrides(app)
    if overrides:
        celery.conf.update(overrides)
    app.logger.info(
        "Importer worker transport configured",
        extra={
            "importer_broker_url": broker,
            "importer_result_backend": backend,
            "importer_config_overrides": sorted(overrides),
        },
    )

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)

    base_task = celery.Task

    class AppContextTask(base_task):  # type: ignore[misc, valid-type]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery.Task = AppContextTask  # type: ignore[assignment]
    celery.loader.import_default_modules()
    return celery


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Create the worker app once and keep it in the importer state."""
    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    """The importer Celery app, or ``None`` when the worker is disabled."""
    state = app.extensions.get("importer")
    if not state:
        return None
    if state.get("celery_app") is None and state.get("worker_enabled"):
        return ensure_celery_app(app, state)
    return state.get("celery_app")
