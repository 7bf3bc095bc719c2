"""
Importer blueprint endpoints: donor upload, progress polling and worker health.
"""

from __future__ import annotations

from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from roster_app.errors import ForbiddenError, NotFoundError, ValidationError

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .progress import ProgressRecord, get_progress_store
from .submission import HEARTBEAT_TASK_NAME, submit_donor_import

importer_blueprint = Blueprint("importer", __name__)


def _can_view(record: ProgressRecord) -> bool:
    if getattr(current_user, "is_super_admin", False):
        return True
    return record.owner_id is None or record.owner_id == current_user.id


def _load_visible_record(operation_id: str) -> ProgressRecord:
    record = get_progress_store().get(operation_id)
    if record is None:
        raise NotFoundError(f"Operation {operation_id} not found.", details={"operationId": operation_id})
    if not _can_view(record):
        raise ForbiddenError("You do not have access to this operation.")
    return record


@importer_blueprint.post("/api/donors/import")
@login_required
def donor_import_upload():
    """Accept a donor file and return the operation id before processing starts."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("No file provided. Attach the donor file as the 'file' form field.")

    record = submit_donor_import(upload, owner_id=current_user.id)
    return jsonify({"operationId": record.operation_id, "status": record.status.value}), HTTPStatus.OK


@importer_blueprint.get("/progress/<operation_id>")
@login_required
def progress_detail(operation_id: str):
    record = _load_visible_record(operation_id)
    return jsonify(record.to_dict()), HTTPStatus.OK


@importer_blueprint.delete("/progress/<operation_id>")
@login_required
def progress_cancel(operation_id: str):
    """
    Request cancellation of an operation.

    Always answers 200: unknown, finished and foreign operations simply report
    ``cancelRequested: false``.
    """
    store = get_progress_store()
    record = store.get(operation_id)
    requested = False
    if record is not None and _can_view(record):
        requested = store.request_cancel(operation_id)
        current_app.logger.info(
            "Donor import cancellation requested",
            extra={
                "importer_operation_id": operation_id,
                "importer_cancel_accepted": requested,
                "importer_requested_by": current_user.id,
            },
        )
    return jsonify({"operationId": operation_id, "cancelRequested": requested}), HTTPStatus.OK


@importer_blueprint.get("/progress/user/operations")
@login_required
def progress_user_operations():
    store = get_progress_store()
    operations = [record.to_dict() for record in store.list_for_owner(current_user.id)]
    return jsonify({"operations": operations, "count": len(operations)}), HTTPStatus.OK


def _importer_state() -> dict:
    return current_app.extensions.get("importer", {})


@importer_blueprint.get("/importer/health")
def importer_healthcheck():
    """Report how imports are executed in this process."""
    return (
        jsonify(
            status="ok",
            executor=current_app.config.get("IMPORTER_EXECUTOR"),
            progress_backend=current_app.config.get("IMPORTER_PROGRESS_BACKEND"),
            worker_enabled=_importer_state().get("worker_enabled", False),
        ),
        HTTPStatus.OK,
    )


@importer_blueprint.get("/importer/worker_health")
def importer_worker_health():
    """Round-trip the heartbeat task through the worker queue."""
    worker_enabled = _importer_state().get("worker_enabled", False)
    timeout = request.args.get("timeout", 5, type=float)
    report = {"worker_enabled": worker_enabled, "queue": DEFAULT_QUEUE_NAME, "timeout_seconds": timeout}

    if not worker_enabled:
        report.update(status="disabled", message="Set IMPORTER_WORKER_ENABLED=true to run imports on the worker.")
        return jsonify(report), HTTPStatus.OK

    celery = get_celery_app(current_app)
    heartbeat = celery.tasks.get(HEARTBEAT_TASK_NAME) if celery is not None else None
    if heartbeat is None:
        report.update(status="error", error="heartbeat_task_missing")
        return jsonify(report), HTTPStatus.INTERNAL_SERVER_ERROR

    try:
        report["heartbeat"] = heartbeat.apply_async().get(timeout=timeout)
    except CeleryTimeoutError:
        report["status"] = "timeout"
        return jsonify(report), HTTPStatus.GATEWAY_TIMEOUT
    report["status"] = "ok"
    return jsonify(report), HTTPStatus.OK
