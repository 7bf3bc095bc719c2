"""
Progress registry for long-running donor imports.

The store maps an opaque operation id to a mutable progress record. Records are
observability only: losing or resetting them never corrupts donor or list data.
Two backends exist: an in-process dictionary (single web process, thread
executor) and a database table shared with Celery workers.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from flask import Flask, current_app
from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from roster_app.models import ImportOperation, OperationStatus, db

Clock = Callable[[], datetime]

DEFAULT_OPERATION_TYPE = "donor_import"

_UNSET: Any = object()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _clamp_progress(value: int | float | None) -> int | None:
    if value is None:
        return None
    return max(0, min(100, int(round(value))))


def mint_operation_id(operation_type: str = DEFAULT_OPERATION_TYPE) -> str:
    return f"{operation_type}_{uuid.uuid4().hex}"


@dataclass(slots=True)
class ProgressRecord:
    """Snapshot of one tracked operation."""

    operation_id: str
    operation_type: str
    status: OperationStatus
    progress: int | None
    message: str | None
    created_at: datetime
    updated_at: datetime
    result: dict[str, Any] | None = None
    owner_id: int | None = None
    source_filename: str | None = None
    cancel_requested: bool = False
    expires_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "operationType": self.operation_type,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "result": self.result,
            "filename": self.source_filename,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    """How long finished operations stay readable before purge."""

    terminal_seconds: int = 30 * 60
    cancelled_seconds: int = 10 * 60
    stale_seconds: int = 10 * 60

    @classmethod
    def from_config(cls, config) -> "RetentionPolicy":
        return cls(
            terminal_seconds=int(config.get("PROGRESS_RETENTION_SECONDS", 30 * 60)),
            cancelled_seconds=int(config.get("PROGRESS_CANCEL_RETENTION_SECONDS", 10 * 60)),
            stale_seconds=int(config.get("PROGRESS_STALE_SECONDS", 10 * 60)),
        )

    def expiry_for(self, status: OperationStatus, now: datetime) -> datetime | None:
        if status == OperationStatus.CANCELLED:
            return now + timedelta(seconds=self.cancelled_seconds)
        if status.is_terminal:
            return now + timedelta(seconds=self.terminal_seconds)
        return None


class ProgressStore:
    """
    Interface shared by the progress backends.

    ``update`` is ignored once a record has reached a terminal status so a
    late writer cannot resurrect a cancelled or failed operation.
    """

    def __init__(self, *, retention: RetentionPolicy | None = None, clock: Clock | None = None):
        self.retention = retention or RetentionPolicy()
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    def create(
        self,
        *,
        operation_type: str = DEFAULT_OPERATION_TYPE,
        owner_id: int | None = None,
        message: str | None = "Queued",
        source_filename: str | None = None,
    ) -> ProgressRecord:
        raise NotImplementedError

    def get(self, operation_id: str) -> ProgressRecord | None:
        raise NotImplementedError

    def update(
        self,
        operation_id: str,
        *,
        status: OperationStatus | None = None,
        progress: int | float | None = _UNSET,
        message: str | None = _UNSET,
        result: dict[str, Any] | None = _UNSET,
    ) -> ProgressRecord | None:
        raise NotImplementedError

    def request_cancel(self, operation_id: str) -> bool:
        raise NotImplementedError

    def is_cancel_requested(self, operation_id: str) -> bool:
        raise NotImplementedError

    def delete(self, operation_id: str) -> bool:
        raise NotImplementedError

    def list_for_owner(self, owner_id: int | None) -> list[ProgressRecord]:
        raise NotImplementedError

    def purge_expired(self) -> int:
        raise NotImplementedError


class InMemoryProgressStore(ProgressStore):
    """Thread-safe dictionary-backed store for a single process."""

    def __init__(self, *, retention: RetentionPolicy | None = None, clock: Clock | None = None):
        super().__init__(retention=retention, clock=clock)
        self._records: dict[str, ProgressRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def create(
        self,
        *,
        operation_type: str = DEFAULT_OPERATION_TYPE,
        owner_id: int | None = None,
        message: str | None = "Queued",
        source_filename: str | None = None,
    ) -> ProgressRecord:
        now = self.now()
        record = ProgressRecord(
            operation_id=mint_operation_id(operation_type),
            operation_type=operation_type,
            status=OperationStatus.QUEUED,
            progress=0,
            message=message,
            created_at=now,
            updated_at=now,
            owner_id=owner_id,
            source_filename=source_filename,
        )
        with self._lock:
            self._records[record.operation_id] = record
        return replace(record)

    def get(self, operation_id: str) -> ProgressRecord | None:
        with self._lock:
            record = self._records.get(operation_id)
            return replace(record) if record is not None else None

    def update(
        self,
        operation_id: str,
        *,
        status: OperationStatus | None = None,
        progress: int | float | None = _UNSET,
        message: str | None = _UNSET,
        result: dict[str, Any] | None = _UNSET,
    ) -> ProgressRecord | None:
        with self._lock:
            record = self._records.get(operation_id)
            if record is None:
                return None
            if record.is_terminal:
                return replace(record)
            now = self.now()
            if status is not None:
                record.status = status
                record.expires_at = self.retention.expiry_for(status, now)
            if progress is not _UNSET:
                record.progress = _clamp_progress(progress)
            if message is not _UNSET:
                record.message = message
            if result is not _UNSET:
                record.result = result
            record.updated_at = now
            return replace(record)

    def request_cancel(self, operation_id: str) -> bool:
        with self._lock:
            record = self._records.get(operation_id)
            if record is None or record.is_terminal:
                return False
            now = self.now()
            record.cancel_requested = True
            record.updated_at = now
            if record.status == OperationStatus.QUEUED:
                record.status = OperationStatus.CANCELLED
                record.message = "Cancelled before processing started"
                record.result = {"partial": False}
                record.expires_at = self.retention.expiry_for(OperationStatus.CANCELLED, now)
            else:
                record.message = "Cancellation requested"
            return True

    def is_cancel_requested(self, operation_id: str) -> bool:
        with self._lock:
            record = self._records.get(operation_id)
            return bool(record and record.cancel_requested)

    def delete(self, operation_id: str) -> bool:
        with self._lock:
            return self._records.pop(operation_id, None) is not None

    def list_for_owner(self, owner_id: int | None) -> list[ProgressRecord]:
        with self._lock:
            records = [replace(record) for record in self._records.values() if record.owner_id == owner_id]
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def purge_expired(self) -> int:
        now = self.now()
        stale_before = now - timedelta(seconds=self.retention.stale_seconds)
        with self._lock:
            doomed = [
                operation_id
                for operation_id, record in self._records.items()
                if (record.expires_at is not None and record.expires_at <= now)
                or (not record.is_terminal and record.updated_at <= stale_before)
            ]
            for operation_id in doomed:
                del self._records[operation_id]
        return len(doomed)


class DatabaseProgressStore(ProgressStore):
    """Store backed by the ``import_operations`` table, shared across processes."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        retention: RetentionPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(retention=retention, clock=clock)
        self._session = session

    @property
    def session(self) -> Session:
        return self._session or db.session

    @staticmethod
    def _to_record(row: ImportOperation) -> ProgressRecord:
        return ProgressRecord(
            operation_id=row.id,
            operation_type=row.operation_type,
            status=row.status,
            progress=row.progress,
            message=row.message,
            created_at=_as_aware(row.created_at),
            updated_at=_as_aware(row.updated_at),
            result=row.result_json,
            owner_id=row.owner_id,
            source_filename=row.source_filename,
            cancel_requested=bool(row.cancel_requested),
            expires_at=_as_aware(row.expires_at),
        )

    def _load(self, operation_id: str) -> ImportOperation | None:
        return self.session.execute(
            select(ImportOperation)
            .where(ImportOperation.id == operation_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create(
        self,
        *,
        operation_type: str = DEFAULT_OPERATION_TYPE,
        owner_id: int | None = None,
        message: str | None = "Queued",
        source_filename: str | None = None,
    ) -> ProgressRecord:
        now = self.now()
        row = ImportOperation(
            id=mint_operation_id(operation_type),
            operation_type=operation_type,
            owner_id=owner_id,
            status=OperationStatus.QUEUED,
            progress=0,
            message=message,
            source_filename=source_filename,
            cancel_requested=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        self.session.commit()
        return self._to_record(row)

    def get(self, operation_id: str) -> ProgressRecord | None:
        row = self._load(operation_id)
        return self._to_record(row) if row is not None else None

    def update(
        self,
        operation_id: str,
        *,
        status: OperationStatus | None = None,
        progress: int | float | None = _UNSET,
        message: str | None = _UNSET,
        result: dict[str, Any] | None = _UNSET,
    ) -> ProgressRecord | None:
        row = self._load(operation_id)
        if row is None:
            return None
        if row.status.is_terminal:
            return self._to_record(row)
        now = self.now()
        if status is not None:
            row.status = status
            row.expires_at = self.retention.expiry_for(status, now)
        if progress is not _UNSET:
            row.progress = _clamp_progress(progress)
        if message is not _UNSET:
            row.message = message
        if result is not _UNSET:
            row.result_json = result
        row.updated_at = now
        self.session.commit()
        return self._to_record(row)

    def request_cancel(self, operation_id: str) -> bool:
        row = self._load(operation_id)
        if row is None or row.status.is_terminal:
            return False
        now = self.now()
        row.cancel_requested = True
        row.updated_at = now
        if row.status == OperationStatus.QUEUED:
            row.status = OperationStatus.CANCELLED
            row.message = "Cancelled before processing started"
            row.result_json = {"partial": False}
            row.expires_at = self.retention.expiry_for(OperationStatus.CANCELLED, now)
        else:
            row.message = "Cancellation requested"
        self.session.commit()
        return True

    def is_cancel_requested(self, operation_id: str) -> bool:
        flag = self.session.execute(
            select(ImportOperation.cancel_requested).where(ImportOperation.id == operation_id)
        ).scalar_one_or_none()
        return bool(flag)

    def delete(self, operation_id: str) -> bool:
        result = self.session.execute(
            delete(ImportOperation)
            .where(ImportOperation.id == operation_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        return bool(result.rowcount)

    def list_for_owner(self, owner_id: int | None) -> list[ProgressRecord]:
        rows: Iterable[ImportOperation] = (
            self.session.execute(
                select(ImportOperation)
                .where(ImportOperation.owner_id == owner_id)
                .order_by(ImportOperation.created_at.desc())
            )
            .scalars()
            .all()
        )
        return [self._to_record(row) for row in rows]

    def purge_expired(self) -> int:
        now = self.now()
        stale_before = now - timedelta(seconds=self.retention.stale_seconds)
        result = self.session.execute(
            delete(ImportOperation)
            .where(
                or_(
                    ImportOperation.expires_at <= now,
                    and_(
                        ImportOperation.status.in_([OperationStatus.QUEUED, OperationStatus.PROCESSING]),
                        ImportOperation.updated_at <= stale_before,
                    ),
                )
            )
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        return int(result.rowcount or 0)


@dataclass
class CancellationToken:
    """
    Cooperative cancellation signal checked by the runner between batches.

    The token consults the progress store so a cancel request from another
    request (or process, with the database backend) is observed.
    """

    store: ProgressStore | None = None
    operation_id: str | None = None
    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.store is not None and self.operation_id is not None:
            if self.store.is_cancel_requested(self.operation_id):
                self._event.set()
                return True
        return False


def build_progress_store(app: Flask) -> ProgressStore:
    """Instantiate the configured progress backend for ``app``."""
    retention = RetentionPolicy.from_config(app.config)
    backend = app.config.get("IMPORTER_PROGRESS_BACKEND", "memory")
    if backend == "database":
        return DatabaseProgressStore(retention=retention)
    return InMemoryProgressStore(retention=retention)


def get_progress_store(app: Flask | None = None) -> ProgressStore:
    """Return the progress store registered on the importer extension."""
    app = app or current_app._get_current_object()  # type: ignore[attr-defined]
    state = app.extensions.setdefault("importer", {})
    store = state.get("progress_store")
    if store is None:
        store = build_progress_store(app)
        state["progress_store"] = store
    return store
