from dataclasses import replace
from pathlib import Path
import threading
import time

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from paybatch.config import Settings
from paybatch.db_models import JobRun
from paybatch.job import PaymentJob
from paybatch.run_store import get_step_runs
from paybatch.schemas import JobStatus, StepEvent, StepPhase, StepStatus


def test_twelve_lines_four_partitions(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, stored_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 12)

    result = PaymentJob(test_settings, session_factory).run(path, grid_size=4, chunk_size=5)

    assert result.status == JobStatus.SUCCESS
    assert [(p.partition.start_line, p.partition.end_line) for p in result.partitions] == [(0, 3), (3, 6), (6, 9), (9, 12)]
    assert result.read_count == 12
    assert result.write_count == 12
    assert result.error is None

    stored = stored_payments()
    assert sorted(doc.external_id for doc in stored) == sorted(f"P{i}" for i in range(1, 13))
    assert {doc.reconciliation_status for doc in stored} == {"RECONCILED"}


def test_order_preserved_within_each_partition(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, stored_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 40)

    PaymentJob(test_settings, session_factory).run(path, grid_size=4, chunk_size=3)

    stored = [int(doc.external_id[1:]) for doc in stored_payments()]
    for start in range(1, 41, 10):
        in_partition = [i for i in stored if start <= i < start + 10]
        assert in_partition == list(range(start, start + 10))


def test_zero_amount_is_invalid_not_an_error(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, stored_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 1, amounts={1: "0"})

    result = PaymentJob(test_settings, session_factory).run(path, grid_size=4, chunk_size=5)

    assert result.status == JobStatus.SUCCESS
    assert len(result.partitions) == 1
    [doc] = stored_payments()
    assert doc.reconciliation_status == "INVALID"
    assert doc.status == "PROCESSED"


def test_header_only_file_succeeds_with_nothing_processed(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, stored_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 0)

    result = PaymentJob(test_settings, session_factory).run(path)

    assert result.status == JobStatus.SUCCESS
    assert result.partitions == []
    assert result.read_count == 0
    assert stored_payments() == []


def test_unreadable_input_fails_before_any_partition(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path
) -> None:
    result = PaymentJob(test_settings, session_factory).run(tmp_path / "missing.csv")

    assert result.status == JobStatus.FAILURE
    assert result.partitions == []
    assert "missing.csv" in result.error

    with session_factory() as db:
        run = db.get(JobRun, result.job_run_id)
        assert run.status == "failed"
        assert get_step_runs(db, run.id) == []


def test_failed_partition_does_not_stop_siblings(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, stored_payments
) -> None:
    # Line 5 falls in partition-1 of [0,3) [3,6) [6,9) [9,12).
    path = write_payments(tmp_path / "payments.csv", 12, amounts={5: "bad"})

    result = PaymentJob(test_settings, session_factory).run(path, grid_size=4, chunk_size=5)

    assert result.status == JobStatus.FAILURE
    assert [p.status for p in result.partitions] == [
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
    ]
    [failed] = result.failed_partitions
    assert (failed.partition.start_line, failed.partition.end_line) == (3, 6)
    assert failed.write_count == 0
    assert result.write_count == 9
    assert "partition-1 [3, 6)" in result.error
    assert len(stored_payments()) == 9


def test_sink_failure_reports_counts_up_to_last_commit(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, recording_sink
) -> None:
    path = write_payments(tmp_path / "payments.csv", 8)
    sink = recording_sink(fail_on_call=2)

    result = PaymentJob(test_settings, session_factory, sink=sink).run(path, grid_size=1, chunk_size=3)

    assert result.status == JobStatus.FAILURE
    [only] = result.partitions
    assert (only.read_count, only.write_count) == (3, 3)
    assert [record.external_id for record in sink.committed] == ["P1", "P2", "P3"]


def test_unexpected_sink_error_reports_committed_counts(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, recording_sink
) -> None:
    path = write_payments(tmp_path / "payments.csv", 8)
    sink = recording_sink(fail_on_call=2, error=RuntimeError("connection reset"))

    result = PaymentJob(test_settings, session_factory, sink=sink).run(path, grid_size=1, chunk_size=3)

    assert result.status == JobStatus.FAILURE
    [only] = result.partitions
    assert only.status == StepStatus.FAILED
    assert (only.read_count, only.write_count) == (3, 3)
    assert len(sink.committed) == 3
    assert "RuntimeError: connection reset" in result.error


def test_observer_failure_only_fails_its_own_partition(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments, stored_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 12)

    class BrokenForPartitionTwo:
        def on_event(self, event: StepEvent) -> None:
            if event.phase == StepPhase.AFTER and event.partition_id == 2:
                raise RuntimeError("diagnostics sink unavailable")

    result = PaymentJob(test_settings, session_factory, observers=[BrokenForPartitionTwo()]).run(
        path, grid_size=4, chunk_size=2
    )

    assert result.status == JobStatus.FAILURE
    assert [p.status for p in result.partitions] == [
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.COMPLETED,
    ]
    assert [(p.read_count, p.write_count) for p in result.partitions] == [(3, 3)] * 4
    assert result.write_count == 12
    assert len(stored_payments()) == 12
    assert "diagnostics sink unavailable" in result.failed_partitions[0].error


def test_partitions_run_on_bounded_named_workers(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 20)
    lock = threading.Lock()
    active = 0
    peak = 0
    threads: set[str] = set()

    class TrackingSink:
        def write_batch(self, records):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
                threads.add(threading.current_thread().name)
            try:
                time.sleep(0.01)
                return len(records)
            finally:
                with lock:
                    active -= 1

    result = PaymentJob(test_settings, session_factory, sink=TrackingSink()).run(path, grid_size=2, chunk_size=4)

    assert result.status == JobStatus.SUCCESS
    assert peak <= 2
    assert threads
    assert all(name.startswith("payment-range") for name in threads)


def test_run_history_is_persisted(
    test_settings: Settings, session_factory: sessionmaker[Session], tmp_path: Path, write_payments
) -> None:
    path = write_payments(tmp_path / "payments.csv", 12, amounts={11: "bad"})

    result = PaymentJob(test_settings, session_factory).run(path, grid_size=3, chunk_size=2, trigger_source="scheduled")

    with session_factory() as db:
        run = db.execute(select(JobRun).where(JobRun.id == result.job_run_id)).scalar_one()
        assert run.status == "failed"
        assert run.trigger_source == "scheduled"
        assert run.partition_count == 3
        assert run.write_count == result.write_count
        assert run.completed_at is not None

        steps = get_step_runs(db, run.id)
        assert [step.step_name for step in steps] == [f"payment_step:partition-{i}" for i in range(3)]
        assert [step.status for step in steps] == ["completed", "completed", "failed"]
        assert (steps[2].start_line, steps[2].end_line) == (8, 12)
        assert steps[2].write_count == 2
        assert "line 12" in steps[2].error
        assert all(step.thread_name.startswith("payment-range") for step in steps)


def test_settings_supply_defaults(
    test_settings: Settings, session_factory: sessionmaker[Session], write_payments
) -> None:
    settings = replace(test_settings, grid_size=2, chunk_size=100)
    write_payments(Path(settings.input_file), 5)

    result = PaymentJob(settings, session_factory).run()

    assert result.status == JobStatus.SUCCESS
    assert len(result.partitions) == 2
    assert result.chunk_size == 100
    assert result.write_count == 5
