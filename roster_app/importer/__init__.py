"""
Donor importer package.

Registers the importer blueprint and CLI, and records importer state inside
``app.extensions['importer']`` (progress store, thread pool, Celery app).
"""

from __future__ import annotations

from flask import Flask

from .celery_app import ensure_celery_app, get_celery_app
from .cli import importer_cli
from .progress import ProgressStore, build_progress_store, get_progress_store
from .submission import dispatch_import, submit_donor_import
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "dispatch_import",
    "get_celery_app",
    "get_progress_store",
    "init_importer",
    "submit_donor_import",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "worker_enabled": False,
            "celery_app": None,
            "progress_store": None,
            "executor": None,
        },
    )


def init_importer(app: Flask, *, progress_store: ProgressStore | None = None) -> None:
    """
    Mount the importer blueprint and CLI and build the progress store.

    ``progress_store`` replaces the configured backend, mainly for tests.
    """
    state = _ensure_extension_state(app)
    worker_enabled = bool(app.config.get("IMPORTER_WORKER_ENABLED", False))
    state["worker_enabled"] = worker_enabled
    state["progress_store"] = progress_store or state.get("progress_store") or build_progress_store(app)

    if worker_enabled:
        ensure_celery_app(app, state)

    if importer_blueprint.name not in app.blueprints:
        app.register_blueprint(importer_blueprint)
    if importer_cli.name in app.cli.commands:
        app.cli.commands.pop(importer_cli.name)
    app.cli.add_command(importer_cli)

    app.logger.info(
        "Importer initialised",
        extra={
            "importer_executor": app.config.get("IMPORTER_EXECUTOR"),
            "importer_progress_backend": app.config.get("IMPORTER_PROGRESS_BACKEND"),
            "importer_worker_enabled": worker_enabled,
        },
    )
