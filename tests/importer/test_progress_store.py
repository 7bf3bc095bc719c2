from datetime import datetime, timedelta, timezone

import pytest

from roster_app.importer.progress import (
    CancellationToken,
    DatabaseProgressStore,
    InMemoryProgressStore,
    RetentionPolicy,
    build_progress_store,
)
from roster_app.models import ImportOperation, OperationStatus, db


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "database"])
def store(request, app, clock):
    retention = RetentionPolicy(terminal_seconds=1800, cancelled_seconds=600, stale_seconds=600)
    if request.param == "memory":
        return InMemoryProgressStore(retention=retention, clock=clock)
    return DatabaseProgressStore(retention=retention, clock=clock)


def test_create_returns_queued_record_with_unique_id(store):
    first = store.create(owner_id=None, source_filename="donors.csv")
    second = store.create()

    assert first.operation_id != second.operation_id
    assert first.operation_id.startswith("donor_import_")
    assert first.status == OperationStatus.QUEUED
    assert first.progress == 0
    assert first.source_filename == "donors.csv"
    assert store.get(first.operation_id).status == OperationStatus.QUEUED


def test_get_unknown_operation_returns_none(store):
    assert store.get("donor_import_missing") is None
    assert store.update("donor_import_missing", message="nope") is None


def test_update_clamps_progress_and_keeps_unset_fields(store):
    record = store.create(message="Queued")

    store.update(record.operation_id, status=OperationStatus.PROCESSING, progress=140)
    updated = store.update(record.operation_id, progress=-3)

    assert updated.progress == 0
    assert updated.message == "Queued"
    assert updated.status == OperationStatus.PROCESSING


def test_terminal_records_ignore_late_updates(store):
    record = store.create()
    store.update(record.operation_id, status=OperationStatus.PROCESSING)
    store.update(record.operation_id, status=OperationStatus.COMPLETED, progress=100, result={"created": 1})

    late = store.update(record.operation_id, status=OperationStatus.PROCESSING, progress=10, message="late")

    assert late.status == OperationStatus.COMPLETED
    assert late.progress == 100
    assert late.result == {"created": 1}


def test_cancelling_queued_operation_finishes_it_immediately(store):
    record = store.create()

    assert store.request_cancel(record.operation_id) is True

    cancelled = store.get(record.operation_id)
    assert cancelled.status == OperationStatus.CANCELLED
    assert cancelled.result == {"partial": False}
    assert store.is_cancel_requested(record.operation_id)


def test_cancelling_processing_operation_only_raises_the_flag(store):
    record = store.create()
    store.update(record.operation_id, status=OperationStatus.PROCESSING)

    assert store.request_cancel(record.operation_id) is True

    current = store.get(record.operation_id)
    assert current.status == OperationStatus.PROCESSING
    assert current.cancel_requested is True
    assert current.message == "Cancellation requested"


def test_cancel_is_refused_for_finished_or_unknown_operations(store):
    record = store.create()
    store.update(record.operation_id, status=OperationStatus.PROCESSING)
    store.update(record.operation_id, status=OperationStatus.ERROR, message="boom")

    assert store.request_cancel(record.operation_id) is False
    assert store.request_cancel("donor_import_missing") is False
    assert store.is_cancel_requested("donor_import_missing") is False


def test_list_for_owner_returns_newest_first(store, clock, other_user):
    older = store.create(owner_id=other_user.id)
    clock.advance(seconds=5)
    newer = store.create(owner_id=other_user.id)
    store.create(owner_id=None)

    records = store.list_for_owner(other_user.id)

    assert [record.operation_id for record in records] == [newer.operation_id, older.operation_id]


def test_purge_honours_retention_windows(store, clock):
    completed = store.create()
    store.update(completed.operation_id, status=OperationStatus.COMPLETED, progress=100)
    cancelled = store.create()
    store.request_cancel(cancelled.operation_id)
    running = store.create()
    store.update(running.operation_id, status=OperationStatus.PROCESSING)

    clock.advance(minutes=5)
    store.update(running.operation_id, progress=50)
    assert store.purge_expired() == 0

    clock.advance(minutes=6)
    assert store.purge_expired() == 1
    assert store.get(cancelled.operation_id) is None
    assert store.get(completed.operation_id) is not None

    clock.advance(minutes=20)
    assert store.purge_expired() == 2
    assert store.get(completed.operation_id) is None
    assert store.get(running.operation_id) is None


def test_delete_removes_record(store):
    record = store.create()

    assert store.delete(record.operation_id) is True
    assert store.delete(record.operation_id) is False
    assert store.get(record.operation_id) is None


def test_database_store_persists_rows(app, clock):
    store = DatabaseProgressStore(clock=clock)

    record = store.create(source_filename="donors.xlsx")
    store.update(record.operation_id, status=OperationStatus.PROCESSING, progress=33, message="Processed 1 of 3 rows")

    row = db.session.get(ImportOperation, record.operation_id)
    assert row.status == OperationStatus.PROCESSING
    assert row.progress == 33
    assert row.message == "Processed 1 of 3 rows"


def test_record_serializes_for_polling(store):
    record = store.create(source_filename="donors.csv")

    payload = store.get(record.operation_id).to_dict()

    assert payload["operationId"] == record.operation_id
    assert payload["status"] == "queued"
    assert payload["progress"] == 0
    assert payload["result"] is None
    assert payload["filename"] == "donors.csv"


def test_cancellation_token_observes_store_flag(memory_store):
    record = memory_store.create()
    memory_store.update(record.operation_id, status=OperationStatus.PROCESSING)
    token = CancellationToken(store=memory_store, operation_id=record.operation_id)

    assert token.cancelled is False
    memory_store.request_cancel(record.operation_id)
    assert token.cancelled is True


def test_cancellation_token_without_record_is_not_cancelled(memory_store):
    token = CancellationToken(store=memory_store, operation_id="donor_import_gone")

    assert token.cancelled is False
    token.cancel()
    assert token.cancelled is True


def test_build_progress_store_follows_config(app):
    app.config["IMPORTER_PROGRESS_BACKEND"] = "database"
    assert isinstance(build_progress_store(app), DatabaseProgressStore)

    app.config["IMPORTER_PROGRESS_BACKEND"] = "memory"
    assert isinstance(build_progress_store(app), InMemoryProgressStore)
