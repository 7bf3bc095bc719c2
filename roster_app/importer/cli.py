"""
CLI commands for donor imports and the importer worker.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import current_app
from flask.cli import with_appcontext

from roster_app.errors import ValidationError
from roster_app.importer.adapters import detect_format, enforce_size_limit
from roster_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from roster_app.importer.pipeline import ImportJob
from roster_app.importer.progress import get_progress_store
from roster_app.importer.submission import HEARTBEAT_TASK_NAME, build_runner
from roster_app.importer.utils import cleanup_upload, resolve_upload_directory


@click.group(name="importer")
def importer_cli():
    """Donor import management commands."""


def _resolve_celery(app) -> Celery:
    """
    Retrieve the registered Celery instance, raising a helpful error if missing.
    """
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Set IMPORTER_WORKER_ENABLED=true before running worker commands."
        )
    return celery_app


@importer_cli.command("ingest")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--owner-id", type=int, default=None, help="User id recorded as the operation owner.")
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Rows per committed batch (defaults to IMPORTER_BATCH_SIZE).",
)
@with_appcontext
def importer_ingest(file_path: Path, owner_id: Optional[int], batch_size: Optional[int]):
    """Import a donor CSV/XLS/XLSX file synchronously and print the summary."""
    app = current_app._get_current_object()
    source = file_path.resolve()
    try:
        detect_format(source.name)
        enforce_size_limit(source.stat().st_size, app.config.get("IMPORTER_MAX_UPLOAD_BYTES"))
    except ValidationError as exc:
        raise click.ClickException(exc.message) from exc

    store = get_progress_store(app)
    record = store.create(owner_id=owner_id, source_filename=source.name)
    runner = build_runner(app, store)
    if batch_size:
        runner.batch_size = batch_size

    # Operator-provided files are never deleted.
    job = ImportJob(
        operation_id=record.operation_id,
        file_path=str(source),
        filename=source.name,
        owner_id=owner_id,
        keep_file=True,
    )
    result = runner.run(job)
    final = store.get(record.operation_id)
    payload = {
        "operationId": record.operation_id,
        "status": final.status.value if final else None,
        "message": final.message if final else None,
        "result": result,
    }
    click.echo(json.dumps(payload, indent=2, sort_keys=True))
    if final is not None and final.status.value == "error":
        raise click.ClickException(final.message or "Donor import failed.")


@importer_cli.command("purge-progress")
@with_appcontext
def importer_purge_progress():
    """Remove expired and stale progress records."""
    removed = get_progress_store(current_app).purge_expired()
    click.echo(f"Removed {removed} expired progress record(s).")


def _stale_uploads(directory: Path, cutoff: datetime):
    for entry in directory.iterdir():
        if not entry.is_file():
            continue
        try:
            modified = datetime.fromtimestamp(entry.stat().st_mtime, timezone.utc)
        except FileNotFoundError:  # pragma: no cover - removed by a concurrent import
            continue
        if modified < cutoff:
            yield entry


@importer_cli.command("cleanup-uploads")
@click.option(
    "--max-age-hours",
    type=click.IntRange(min=0),
    default=72,
    show_default=True,
    help="Age after which a stored upload counts as abandoned.",
)
@with_appcontext
def importer_cleanup_uploads(max_age_hours: int):
    """Delete upload files left behind by crashed or abandoned imports."""
    directory = resolve_upload_directory(current_app)
    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    stale = list(_stale_uploads(directory, cutoff))
    for entry in stale:
        cleanup_upload(entry)
    click.echo(f"Removed {len(stale)} upload file(s) older than {max_age_hours} hours from {directory}.")


@importer_cli.group(name="worker")
def worker_group():
    """Run or probe the Celery import worker."""


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Worker processes or threads.")
@click.option("--pool", default=None, help="Celery pool, e.g. prefork, solo or threads.")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queues to consume.")
@with_appcontext
def worker_run(loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Run the import worker in the foreground."""
    celery = _resolve_celery(current_app)
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    for flag, value in (("--concurrency", concurrency), ("--pool", pool)):
        if value:
            argv += [flag, str(value)]

    click.echo(f"Import worker consuming '{queues}' at loglevel {loglevel}")
    try:
        celery.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Import worker stopped.")


@worker_group.command("ping")
@click.option("--timeout", type=float, default=10.0, show_default=True, help="Seconds to wait for the heartbeat.")
@with_appcontext
def worker_ping(timeout: float):
    """Send the heartbeat task through the broker and print the reply."""
    heartbeat = _resolve_celery(current_app).tasks.get(HEARTBEAT_TASK_NAME)
    if heartbeat is None:
        raise click.ClickException(f"Heartbeat task '{HEARTBEAT_TASK_NAME}' is not registered.")
    try:
        reply = heartbeat.apply_async().get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"No heartbeat from the import worker within {timeout}s") from exc
    click.echo(json.dumps(reply, indent=2))
