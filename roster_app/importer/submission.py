"""
Accept donor uploads and hand them to the configured execution backend.

``submit_donor_import`` validates the upload synchronously, records a
``queued`` operation and returns it before any row is processed. The runner
then executes on one of three backends selected by ``IMPORTER_EXECUTOR``:

* ``thread``: a process-wide ``ThreadPoolExecutor`` running inside an app context
* ``celery``: the ``importer.donors.ingest_file`` task on the importer worker
* ``inline``: synchronously inside the submitting request (tests, CLI)
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

from flask import Flask, current_app
from werkzeug.datastructures import FileStorage

from roster_app.errors import JobFatalError
from roster_app.models import OperationStatus, db

from .adapters import detect_format, enforce_size_limit
from .pipeline import DonorImportRunner, ImportJob
from .progress import ProgressRecord, ProgressStore, get_progress_store
from .utils import cleanup_upload, measure_upload, persist_upload

INGEST_TASK_NAME = "importer.donors.ingest_file"
HEARTBEAT_TASK_NAME = "importer.healthcheck"

EXECUTOR_THREAD = "thread"
EXECUTOR_CELERY = "celery"
EXECUTOR_INLINE = "inline"


def build_runner(app: Flask, store: ProgressStore | None = None) -> DonorImportRunner:
    """Construct a runner using the app's importer configuration."""

    return DonorImportRunner(
        store or get_progress_store(app),
        batch_size=int(app.config.get("IMPORTER_BATCH_SIZE", 50)),
        max_bytes=app.config.get("IMPORTER_MAX_UPLOAD_BYTES"),
    )


def run_import_job(app: Flask, job: ImportJob) -> dict[str, Any]:
    """Execute ``job`` to completion inside ``app``'s context."""

    with app.app_context():
        try:
            return build_runner(app).run(job)
        finally:
            db.session.remove()


def get_import_executor(app: Flask) -> ThreadPoolExecutor:
    """Return (and cache) the thread pool used by the ``thread`` backend."""

    state = app.extensions.setdefault("importer", {})
    executor: ThreadPoolExecutor | None = state.get("executor")
    if executor is None:
        executor = ThreadPoolExecutor(
            max_workers=int(app.config.get("IMPORTER_MAX_WORKERS", 4)),
            thread_name_prefix="donor-import",
        )
        state["executor"] = executor
    return executor


def _log_unhandled_failure(app: Flask, job: ImportJob):
    def _callback(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            app.logger.error(
                "Donor import thread crashed",
                exc_info=exc,
                extra={"importer_operation_id": job.operation_id},
            )

    return _callback


def dispatch_import(app: Flask, job: ImportJob, *, executor: str | None = None) -> str:
    """Send ``job`` to the configured backend and return the backend used."""

    backend = executor or app.config.get("IMPORTER_EXECUTOR", EXECUTOR_THREAD)
    if backend == EXECUTOR_CELERY:
        from .celery_app import get_celery_app

        celery_app = get_celery_app(app)
        if celery_app is None:
            raise JobFatalError("Importer worker is not configured; set IMPORTER_WORKER_ENABLED=true.")
        async_result = celery_app.send_task(INGEST_TASK_NAME, kwargs=job.as_payload())
        app.logger.info(
            "Donor import queued for worker",
            extra={"importer_operation_id": job.operation_id, "importer_task_id": async_result.id},
        )
    elif backend == EXECUTOR_INLINE:
        build_runner(app).run(job)
    else:
        future = get_import_executor(app).submit(run_import_job, app, job)
        future.add_done_callback(_log_unhandled_failure(app, job))
    return backend


def submit_donor_import(
    file_storage: FileStorage,
    *,
    owner_id: int | None = None,
    app: Flask | None = None,
) -> ProgressRecord:
    """
    Validate and persist an upload, then start an import for it.

    Raises ``UnsupportedFormat`` or ``SizeLimitExceeded`` before any work is
    recorded. The returned record reflects the operation as it was queued; poll
    the progress store for later states.
    """

    app = app or current_app._get_current_object()  # type: ignore[attr-defined]
    filename = file_storage.filename or ""
    detect_format(filename, file_storage.mimetype)
    enforce_size_limit(measure_upload(file_storage), app.config.get("IMPORTER_MAX_UPLOAD_BYTES"))

    store = get_progress_store(app)
    stored_path = persist_upload(file_storage, app)
    record = store.create(owner_id=owner_id, source_filename=filename)
    job = ImportJob(
        operation_id=record.operation_id,
        file_path=str(stored_path),
        filename=filename,
        mimetype=file_storage.mimetype,
        owner_id=owner_id,
    )
    app.logger.info(
        "Donor import submitted",
        extra={
            "importer_operation_id": record.operation_id,
            "importer_filename": filename,
            "importer_owner_id": owner_id,
        },
    )

    try:
        dispatch_import(app, job)
    except JobFatalError as exc:
        _fail_dispatch(store, record, stored_path, exc.message)
        raise
    except Exception as exc:
        message = f"Failed to start donor import: {exc}"
        _fail_dispatch(store, record, stored_path, message)
        raise JobFatalError(message) from exc
    return record


def _fail_dispatch(store: ProgressStore, record: ProgressRecord, stored_path: Path, message: str) -> None:
    store.update(record.operation_id, status=OperationStatus.ERROR, message=message)
    cleanup_upload(stored_path)
    current_app.logger.error(
        "Donor import could not be dispatched",
        extra={"importer_operation_id": record.operation_id, "importer_error": message},
    )
