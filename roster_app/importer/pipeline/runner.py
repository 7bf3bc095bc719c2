"""
Batch loop driving a donor file through the reconciler while reporting progress.

State machine: ``queued -> processing -> completed | error | cancelled``. The
runner commits after every batch, so a cancellation or fatal error keeps the
effects of earlier batches.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roster_app.errors import JobFatalError, RowError, ValidationError
from roster_app.importer.adapters import DonorFileParser
from roster_app.importer.metrics import record_import_batch, record_import_finished, record_import_started
from roster_app.importer.progress import CancellationToken, ProgressStore
from roster_app.importer.utils import cleanup_upload
from roster_app.models import OperationStatus, db

from .reconcile import DonorReconciler, ReconcileResult, RowOutcome

DEFAULT_BATCH_SIZE = 50

_module_logger = logging.getLogger(__name__)


def _logger() -> logging.Logger:
    return current_app.logger if has_app_context() else _module_logger


@dataclass
class ImportSummary:
    """Running counts for one import; serialized into the operation result."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    rows_processed: int = 0
    row_errors: list[RowError] = field(default_factory=list)

    def record(self, result: ReconcileResult) -> None:
        self.rows_processed += 1
        if result.outcome == RowOutcome.CREATED:
            self.created += 1
        elif result.outcome == RowOutcome.UPDATED:
            self.updated += 1
        elif result.outcome == RowOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1
        self.row_errors.extend(result.errors)

    def to_dict(self, *, partial: bool | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "rows_processed": self.rows_processed,
            "row_errors": [error.to_dict() for error in self.row_errors],
        }
        if partial is not None:
            payload["partial"] = partial
        return payload


@dataclass(frozen=True, slots=True)
class ImportJob:
    """Everything a worker needs to run one queued import."""

    operation_id: str
    file_path: str
    filename: str | None = None
    mimetype: str | None = None
    owner_id: int | None = None
    keep_file: bool = False

    def as_payload(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "file_path": self.file_path,
            "filename": self.filename,
            "mimetype": self.mimetype,
            "owner_id": self.owner_id,
            "keep_file": self.keep_file,
        }


def compute_progress(consumed: int, total: int | None) -> int | None:
    """Percent of rows consumed, held at 99 until the job completes."""

    if total is None:
        return None
    if total <= 0:
        return 99
    return min(99, int(round(consumed / total * 100)))


def _progress_message(consumed: int, total: int | None) -> str:
    if total is None:
        return f"Processed {consumed} rows"
    return f"Processed {consumed} of {total} rows"


def _completion_message(summary: ImportSummary) -> str:
    message = (
        f"Import completed: {summary.created} created, {summary.updated} updated, {summary.skipped} skipped"
    )
    if summary.row_errors:
        message += f" (completed with {len(summary.row_errors)} row errors)"
    return message


class DonorImportRunner:
    """
    Execute one import operation against the donor pool.

    The runner refuses operations that are not ``queued`` so a given operation
    id is processed at most once.
    """

    def __init__(
        self,
        store: ProgressStore,
        *,
        session: Session | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_bytes: int | None = None,
        token: CancellationToken | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.session = session or db.session
        self.batch_size = batch_size
        self.max_bytes = max_bytes
        self._token = token

    def run(self, job: ImportJob) -> dict[str, Any]:
        record = self.store.get(job.operation_id)
        if record is not None and record.status != OperationStatus.QUEUED:
            _logger().warning(
                "Donor import not started; operation is not queued",
                extra={"importer_operation_id": job.operation_id, "importer_status": record.status.value},
            )
            if not job.keep_file:
                cleanup_upload(Path(job.file_path))
            return record.result or {}

        started = time.monotonic()
        record_import_started()
        status = OperationStatus.ERROR
        try:
            status, result = self._execute(job)
            return result
        finally:
            record_import_finished(status.value, duration_seconds=time.monotonic() - started)
            if not job.keep_file:
                cleanup_upload(Path(job.file_path))

    def _execute(self, job: ImportJob) -> tuple[OperationStatus, dict[str, Any]]:
        operation_id = job.operation_id
        token = self._token or CancellationToken(store=self.store, operation_id=operation_id)
        summary = ImportSummary()
        reconciler = DonorReconciler(self.session)
        log_extra = {"importer_operation_id": operation_id, "importer_filename": job.filename}

        self.store.update(operation_id, status=OperationStatus.PROCESSING, progress=0, message="Reading file")
        _logger().info("Donor import started", extra=log_extra)

        try:
            parser = DonorFileParser(
                job.file_path,
                filename=job.filename or job.file_path,
                mimetype=job.mimetype,
                max_bytes=self.max_bytes,
            )
            total = parser.total_rows
            found = f"Found {total} rows to process" if total is not None else "Processing rows"
            self.store.update(operation_id, progress=0 if total is not None else None, message=found)

            rows = iter(parser)
            batch_number = 0
            while True:
                if token.cancelled:
                    return self._finish_cancelled(operation_id, summary, log_extra)
                batch = list(islice(rows, self.batch_size))
                if not batch:
                    break
                batch_number += 1
                self._process_batch(reconciler, batch, summary)
                consumed = parser.statistics.rows_consumed
                self.store.update(
                    operation_id,
                    progress=compute_progress(consumed, total),
                    message=_progress_message(consumed, total),
                )
                _logger().debug(
                    "Donor import batch committed",
                    extra={**log_extra, "importer_batch": batch_number, "importer_rows_consumed": consumed},
                )
        except (JobFatalError, ValidationError) as exc:
            return self._finish_error(operation_id, summary, exc.message, log_extra)
        except SQLAlchemyError as exc:
            fatal = JobFatalError(f"Database error during import: {exc.__class__.__name__}: {exc}")
            return self._finish_error(operation_id, summary, fatal.message, log_extra)
        except OSError as exc:
            fatal = JobFatalError(f"Unable to read uploaded file: {exc}")
            return self._finish_error(operation_id, summary, fatal.message, log_extra)
        except Exception as exc:
            _logger().exception("Unexpected error during donor import", extra=log_extra)
            fatal = JobFatalError(f"Unexpected error during import: {exc.__class__.__name__}: {exc}")
            return self._finish_error(operation_id, summary, fatal.message, log_extra)

        result = summary.to_dict()
        self.store.update(
            operation_id,
            status=OperationStatus.COMPLETED,
            progress=100,
            message=_completion_message(summary),
            result=result,
        )
        _logger().info(
            "Donor import completed",
            extra={
                **log_extra,
                "importer_status": OperationStatus.COMPLETED.value,
                "importer_rows_processed": summary.rows_processed,
                "importer_rows_created": summary.created,
                "importer_rows_updated": summary.updated,
                "importer_rows_skipped": summary.skipped,
                "importer_rows_errored": summary.errors,
                "importer_rows_blank": parser.statistics.rows_skipped_blank,
            },
        )
        return OperationStatus.COMPLETED, result

    def _process_batch(self, reconciler: DonorReconciler, batch: list, summary: ImportSummary) -> None:
        started = time.monotonic()
        outcomes: Counter[str] = Counter()
        batch_summary = ImportSummary()
        for row in batch:
            result = reconciler.reconcile(row)
            batch_summary.record(result)
            outcomes[result.outcome.value] += 1
        self.session.commit()
        # Counts only move into the job summary once the batch is durable.
        summary.created += batch_summary.created
        summary.updated += batch_summary.updated
        summary.skipped += batch_summary.skipped
        summary.errors += batch_summary.errors
        summary.rows_processed += batch_summary.rows_processed
        summary.row_errors.extend(batch_summary.row_errors)
        record_import_batch(duration_seconds=time.monotonic() - started, outcomes=dict(outcomes))

    def _finish_cancelled(
        self, operation_id: str, summary: ImportSummary, log_extra: dict[str, Any]
    ) -> tuple[OperationStatus, dict[str, Any]]:
        result = summary.to_dict(partial=True)
        self.store.update(
            operation_id,
            status=OperationStatus.CANCELLED,
            message=f"Import cancelled after {summary.rows_processed} rows; earlier batches were kept",
            result=result,
        )
        _logger().info(
            "Donor import cancelled",
            extra={
                **log_extra,
                "importer_status": OperationStatus.CANCELLED.value,
                "importer_rows_processed": summary.rows_processed,
            },
        )
        return OperationStatus.CANCELLED, result

    def _finish_error(
        self, operation_id: str, summary: ImportSummary, message: str, log_extra: dict[str, Any]
    ) -> tuple[OperationStatus, dict[str, Any]]:
        self.session.rollback()
        result = summary.to_dict(partial=summary.rows_processed > 0)
        self.store.update(operation_id, status=OperationStatus.ERROR, message=message, result=result)
        _logger().error(
            "Donor import failed",
            extra={**log_extra, "importer_status": OperationStatus.ERROR.value, "importer_error": message},
        )
        return OperationStatus.ERROR, result
