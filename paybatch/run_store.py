from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from paybatch.db_models import JobRun, StepRun
from paybatch.schemas import JobResult, JobStatus, StepEvent, StepStatus


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def create_job_run(
    db: Session,
    *,
    job_name: str,
    file_path: str,
    grid_size: int,
    chunk_size: int,
    trigger_source: str,
) -> JobRun:
    run = JobRun(
        job_name=job_name,
        file_path=file_path,
        grid_size=grid_size,
        chunk_size=chunk_size,
        trigger_source=trigger_source,
        status="queued",
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def mark_job_running(db: Session, run: JobRun) -> None:
    run.status = "running"
    run.started_at = utc_now()
    run.error = None
    db.commit()


def mark_job_finished(db: Session, run: JobRun, result: JobResult) -> None:
    run.status = "succeeded" if result.status == JobStatus.SUCCESS else "failed"
    run.partition_count = len(result.partitions)
    run.read_count = result.read_count
    run.write_count = result.write_count
    run.skip_count = result.skip_count
    run.error = result.error
    run.completed_at = utc_now()
    db.commit()


def create_step_run(db: Session, *, job_run_id: int, event: StepEvent) -> StepRun:
    step = StepRun(
        job_run_id=job_run_id,
        step_name=event.step_name,
        partition_id=event.partition_id,
        start_line=event.start_line,
        end_line=event.end_line,
        thread_name=event.thread_id,
        status="started",
        started_at=utc_now(),
    )
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def finish_step_run(db: Session, *, job_run_id: int, event: StepEvent) -> StepRun | None:
    stmt = select(StepRun).where(
        StepRun.job_run_id == job_run_id,
        StepRun.partition_id == event.partition_id,
    )
    step = db.execute(stmt).scalar_one_or_none()
    if step is None:
        return None

    finished_at = utc_now()
    step.status = "completed" if event.status == StepStatus.COMPLETED else "failed"
    step.completed_at = finished_at
    step.duration_ms = (finished_at - step.started_at).total_seconds() * 1000
    step.read_count = event.read_count or 0
    step.write_count = event.write_count or 0
    step.skip_count = event.skip_count or 0
    step.error = event.error
    db.commit()
    return step


def get_step_runs(db: Session, job_run_id: int) -> list[StepRun]:
    stmt = select(StepRun).where(StepRun.job_run_id == job_run_id).order_by(StepRun.partition_id)
    return list(db.execute(stmt).scalars().all())
