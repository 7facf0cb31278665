import logging
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from paybatch.run_store import create_step_run, finish_step_run
from paybatch.schemas import StepEvent, StepPhase


logger = logging.getLogger(__name__)


class ExecutionObserver(Protocol):
    def on_event(self, event: StepEvent) -> None: ...


class LoggingObserver:
    def on_event(self, event: StepEvent) -> None:
        if event.phase == StepPhase.BEFORE:
            logger.info(
                ">>> [BEFORE STEP] step='%s', thread='%s', file='%s', range=[%s - %s]",
                event.step_name,
                event.thread_id,
                event.file_name,
                event.start_line,
                event.end_line,
            )
            return

        log = logger.info if event.error is None else logger.error
        log(
            "<<< [AFTER STEP] step='%s', thread='%s', range=[%s - %s], status=%s, "
            "readCount=%s, writeCount=%s, skipCount=%s",
            event.step_name,
            event.thread_id,
            event.start_line,
            event.end_line,
            event.status,
            event.read_count,
            event.write_count,
            event.skip_count,
        )


class StepRunRecorder:
    """Persists one step_runs row per partition of a job run."""

    def __init__(self, session_factory: sessionmaker[Session], job_run_id: int) -> None:
        self.session_factory = session_factory
        self.job_run_id = job_run_id

    def on_event(self, event: StepEvent) -> None:
        with self.session_factory() as db:
            if event.phase == StepPhase.BEFORE:
                create_step_run(db, job_run_id=self.job_run_id, event=event)
            else:
                finish_step_run(db, job_run_id=self.job_run_id, event=event)
