from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from roster_app.importer.pipeline import DonorImportRunner, DonorReconciler, ImportJob, compute_progress
from roster_app.importer.progress import InMemoryProgressStore
from roster_app.models import Donor, OperationStatus, db


class RecordingStore(InMemoryProgressStore):
    """In-memory store remembering every progress value it was given."""

    def __init__(self):
        super().__init__()
        self.progress_history = []

    def update(self, operation_id, **kwargs):
        if kwargs.get("progress") is not None:
            self.progress_history.append(kwargs["progress"])
        return super().update(operation_id, **kwargs)


class CancelAfterBatches:
    """Token reporting cancellation once ``batches`` batches have started."""

    def __init__(self, batches):
        self.batches = batches
        self.checks = 0

    @property
    def cancelled(self):
        self.checks += 1
        return self.checks > self.batches


def _job(store, path, *, keep_file=True):
    record = store.create(source_filename=path.name)
    return ImportJob(operation_id=record.operation_id, file_path=str(path), filename=path.name, keep_file=keep_file)


@pytest.mark.parametrize(
    "consumed, total, expected",
    [(0, None, None), (3, 0, 99), (0, 10, 0), (5, 10, 50), (10, 10, 99), (12, 10, 99)],
)
def test_compute_progress_holds_below_completion(consumed, total, expected):
    assert compute_progress(consumed, total) == expected


def test_mixed_file_creates_updates_and_reports_row_errors(app, csv_file, donor_factory):
    donor_factory(first_name="Existing", last_name="Donor", total_donations=Decimal("100"))
    path = csv_file(
        [
            ("First Name", "Last Name", "Organization", "Total Donations"),
            ("New", "Donor", "", "25"),
            ("existing", "donor", "", "50"),
            ("", "Lonely", "", "10"),
        ]
    )
    store = RecordingStore()
    job = _job(store, path)

    result = DonorImportRunner(store, batch_size=2).run(job)

    record = store.get(job.operation_id)
    assert record.status == OperationStatus.COMPLETED
    assert record.progress == 100
    assert record.message == "Import completed: 1 created, 1 updated, 0 skipped (completed with 1 row errors)"
    assert result["created"] == 1
    assert result["updated"] == 1
    assert result["errors"] == 1
    assert result["row_errors"] == [{"row": 4, "error": "missing identity"}]
    assert record.result == result
    assert store.progress_history == sorted(store.progress_history)
    assert store.progress_history[-1] == 100

    existing = Donor.find_by_identity_key("ind:existing|donor")
    assert existing.total_donations == Decimal("150")
    assert Donor.query.count() == 2


def test_rows_with_bad_cells_are_skipped(app, csv_file, memory_store):
    path = csv_file(
        [
            ("first_name", "last_name", "total_donations"),
            ("Jane", "Doe", "not money"),
            ("John", "Smith", "15"),
        ]
    )
    job = _job(memory_store, path)

    result = DonorImportRunner(memory_store).run(job)

    assert result["skipped"] == 1
    assert result["created"] == 1
    assert result["row_errors"][0]["column"] == "total_donations"
    assert memory_store.get(job.operation_id).status == OperationStatus.COMPLETED
    assert Donor.find_by_identity_key("ind:jane|doe") is None


def test_cancellation_keeps_committed_batches(app, many_rows_csv, memory_store):
    path = many_rows_csv(100)
    job = _job(memory_store, path)

    result = DonorImportRunner(memory_store, batch_size=10, token=CancelAfterBatches(2)).run(job)

    record = memory_store.get(job.operation_id)
    assert record.status == OperationStatus.CANCELLED
    assert result["partial"] is True
    assert result["rows_processed"] == 20
    assert result["created"] == 20
    assert record.message == "Import cancelled after 20 rows; earlier batches were kept"
    assert Donor.query.count() == 20


def test_cancel_request_through_store_stops_between_batches(app, many_rows_csv):
    path = many_rows_csv(30)

    class CancelOnFirstProgress(InMemoryProgressStore):
        def update(self, operation_id, **kwargs):
            record = super().update(operation_id, **kwargs)
            if (kwargs.get("message") or "").startswith("Processed"):
                self.request_cancel(operation_id)
            return record

    store = CancelOnFirstProgress()
    job = _job(store, path)

    DonorImportRunner(store, batch_size=10).run(job)

    record = store.get(job.operation_id)
    assert record.status == OperationStatus.CANCELLED
    assert record.result["rows_processed"] == 10
    assert Donor.query.count() == 10


def test_runner_refuses_operation_that_is_not_queued(app, csv_file, memory_store):
    path = csv_file([("first_name", "last_name"), ("Jane", "Doe")])
    job = _job(memory_store, path, keep_file=False)
    memory_store.update(job.operation_id, status=OperationStatus.PROCESSING, message="Already running")

    result = DonorImportRunner(memory_store).run(job)

    assert result == {}
    assert memory_store.get(job.operation_id).message == "Already running"
    assert Donor.query.count() == 0
    assert not path.exists()


def test_unreadable_file_fails_the_job(app, tmp_path, memory_store):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"definitely not a workbook")
    job = _job(memory_store, path)

    result = DonorImportRunner(memory_store).run(job)

    record = memory_store.get(job.operation_id)
    assert record.status == OperationStatus.ERROR
    assert "Unable to read XLSX file" in record.message
    assert result["partial"] is False
    assert path.exists()


def test_oversized_file_fails_the_job(app, csv_file, memory_store):
    path = csv_file([("first_name", "last_name"), ("Jane", "Doe")])
    job = _job(memory_store, path)

    DonorImportRunner(memory_store, max_bytes=4).run(job)

    record = memory_store.get(job.operation_id)
    assert record.status == OperationStatus.ERROR
    assert "limit" in record.message


def test_database_failure_keeps_earlier_batches(app, many_rows_csv, memory_store, monkeypatch):
    path = many_rows_csv(20)
    job = _job(memory_store, path)
    real_commit = db.session.commit
    calls = {"count": 0}

    def flaky_commit():
        calls["count"] += 1
        if calls["count"] == 2:
            raise SQLAlchemyError("disk I/O error")
        return real_commit()

    monkeypatch.setattr(db.session, "commit", flaky_commit)

    result = DonorImportRunner(memory_store, batch_size=10).run(job)

    record = memory_store.get(job.operation_id)
    assert record.status == OperationStatus.ERROR
    assert record.message.startswith("Database error during import")
    assert result["partial"] is True
    assert result["rows_processed"] == 10
    monkeypatch.undo()
    assert Donor.query.count() == 10


def test_unexpected_failure_fails_the_job_and_discards_the_batch(app, csv_file, memory_store, monkeypatch):
    path = csv_file([("first_name", "last_name"), ("Jane", "Doe")])
    job = _job(memory_store, path)

    def half_written(self, row):
        self.session.add(Donor(first_name="Half", last_name="Written", total_donations=Decimal("0")))
        raise ArithmeticError("decimal overflow")

    monkeypatch.setattr(DonorReconciler, "reconcile", half_written)

    result = DonorImportRunner(memory_store).run(job)

    record = memory_store.get(job.operation_id)
    assert record.status == OperationStatus.ERROR
    assert record.message == "Unexpected error during import: ArithmeticError: decimal overflow"
    assert result["partial"] is False
    assert Donor.query.count() == 0


def test_importing_the_same_file_twice_adds_totals_again(app, csv_file, memory_store):
    path = csv_file(
        [
            ("First Name", "Last Name", "Total Donations", "Largest Gift", "Tags"),
            ("Jane", "Doe", "125.50", "100", "Board, gala"),
        ]
    )

    first = DonorImportRunner(memory_store).run(_job(memory_store, path))
    second = DonorImportRunner(memory_store).run(_job(memory_store, path))

    assert first["created"] == 1
    assert second["updated"] == 1
    donor = Donor.find_by_identity_key("ind:jane|doe")
    db.session.refresh(donor)
    assert donor.total_donations == Decimal("251.00")
    assert donor.largest_gift == Decimal("100")
    assert donor.tag_set == {"Board", "gala"}
    assert Donor.query.count() == 1


def test_uploaded_file_is_removed_after_run(app, csv_file, memory_store):
    path = csv_file([("organization_name",), ("Acme",)])
    job = _job(memory_store, path, keep_file=False)

    DonorImportRunner(memory_store).run(job)

    assert memory_store.get(job.operation_id).status == OperationStatus.COMPLETED
    assert not path.exists()


def test_header_only_file_completes_with_zero_counts(app, csv_file, memory_store):
    path = csv_file([("first_name", "last_name")])
    job = _job(memory_store, path)

    result = DonorImportRunner(memory_store).run(job)

    assert result["rows_processed"] == 0
    assert memory_store.get(job.operation_id).message == "Import completed: 0 created, 0 updated, 0 skipped"


def test_batch_size_must_be_positive(memory_store):
    with pytest.raises(ValueError):
        DonorImportRunner(memory_store, batch_size=0)
