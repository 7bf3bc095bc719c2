"""
Celery tasks executed by the donor import worker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from roster_app.importer.pipeline import ImportJob
from roster_app.importer.progress import get_progress_store
from roster_app.importer.submission import HEARTBEAT_TASK_NAME, INGEST_TASK_NAME, build_runner
from roster_app.models import db


@shared_task(name=HEARTBEAT_TASK_NAME, bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name=INGEST_TASK_NAME, bind=True)
def ingest_file(
    self,
    *,
    operation_id: str,
    file_path: str,
    filename: str | None = None,
    mimetype: str | None = None,
    owner_id: int | None = None,
    keep_file: bool = False,
) -> dict[str, Any]:
    """
    Run a queued donor import on the worker.

    Not retried: a fatal error is recorded on the operation and the upload is
    discarded.
    """
    job = ImportJob(
        operation_id=operation_id,
        file_path=file_path,
        filename=filename,
        mimetype=mimetype,
        owner_id=owner_id,
        keep_file=keep_file,
    )
    current_app.logger.info(
        "Donor import picked up by worker",
        extra={"importer_operation_id": operation_id, "importer_task_id": self.request.id},
    )
    try:
        return build_runner(current_app, get_progress_store(current_app)).run(job)
    finally:
        db.session.remove()


@shared_task(name="importer.progress.purge_expired")
def purge_expired_progress() -> dict[str, Any]:
    """Drop expired progress records; meant for a periodic beat schedule."""
    removed = get_progress_store(current_app).purge_expired()
    return {"removed": removed}
