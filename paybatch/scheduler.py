import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from paybatch.config import Settings
from paybatch.job import PaymentJob
from paybatch.schemas import JobStatus


logger = logging.getLogger(__name__)


def _run_daily_job(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    job = PaymentJob(settings, session_factory)
    result = job.run(trigger_source="scheduled")
    if result.status == JobStatus.FAILURE:
        logger.error(
            "scheduled payment job failed",
            extra={
                "job_run_id": result.job_run_id,
                "file_path": result.file_path,
                "failed_partitions": len(result.failed_partitions),
                "error": result.error,
            },
        )
        return
    logger.info(
        "scheduled payment job completed",
        extra={
            "job_run_id": result.job_run_id,
            "file_path": result.file_path,
            "write_count": result.write_count,
        },
    )


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_daily_job,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_payment_job",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "input_file": settings.input_file,
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_daily_job(settings, session_factory)

    scheduler.start()
