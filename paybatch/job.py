from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
import logging
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from paybatch.chunk_runner import ChunkRunner
from paybatch.config import Settings
from paybatch.errors import SetupError
from paybatch.observer import ExecutionObserver, LoggingObserver, StepRunRecorder
from paybatch.partitioner import partition
from paybatch.run_store import create_job_run, mark_job_finished, mark_job_running
from paybatch.schemas import JobResult, JobStatus, Partition, PartitionResult, StepStatus
from paybatch.sink import BatchSink, PaymentSink, RetryingSink


logger = logging.getLogger(__name__)

JOB_NAME = "payment_job"


class PaymentJob:
    """Partitions the input file and runs one chunk runner per partition.

    At most grid_size partitions execute at once. A failed partition fails the
    job but never cancels its siblings; they run to their own completion.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        sink: BatchSink | None = None,
        observers: Sequence[ExecutionObserver] | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.sink = sink if sink is not None else self._build_sink()
        self.observers = list(observers) if observers is not None else [LoggingObserver()]

    def run(
        self,
        file_path: str | Path | None = None,
        *,
        grid_size: int | None = None,
        chunk_size: int | None = None,
        trigger_source: str = "manual",
    ) -> JobResult:
        file_path = str(file_path or self.settings.input_file)
        grid_size = grid_size if grid_size is not None else self.settings.grid_size
        chunk_size = chunk_size if chunk_size is not None else self.settings.chunk_size
        if grid_size < 1:
            raise ValueError(f"grid_size must be at least 1, got {grid_size}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")

        with self.session_factory() as db:
            run = create_job_run(
                db,
                job_name=JOB_NAME,
                file_path=file_path,
                grid_size=grid_size,
                chunk_size=chunk_size,
                trigger_source=trigger_source,
            )
            mark_job_running(db, run)
            job_run_id = run.id

            try:
                partitions = partition(file_path, grid_size)
            except SetupError as exc:
                logger.exception("job setup failed", extra={"job_run_id": job_run_id, "file_path": file_path})
                result = JobResult(
                    job_run_id=job_run_id,
                    file_path=file_path,
                    status=JobStatus.FAILURE,
                    grid_size=grid_size,
                    chunk_size=chunk_size,
                    error=str(exc),
                )
                mark_job_finished(db, run, result)
                return result

            runner = ChunkRunner(
                self.sink,
                chunk_size=chunk_size,
                skip_limit=self.settings.skip_limit,
                observers=[*self.observers, StepRunRecorder(self.session_factory, job_run_id)],
            )
            results = self._execute(runner, partitions, grid_size)
            result = self._aggregate(job_run_id, results, file_path, grid_size, chunk_size)
            mark_job_finished(db, run, result)

        logger.info(
            "job finished",
            extra={
                "job_run_id": result.job_run_id,
                "status": str(result.status),
                "partitions": len(result.partitions),
                "read_count": result.read_count,
                "write_count": result.write_count,
                "skip_count": result.skip_count,
            },
        )
        return result

    def _execute(self, runner: ChunkRunner, partitions: list[Partition], grid_size: int) -> list[PartitionResult]:
        if not partitions:
            logger.info("no data lines to process")
            return []

        results: list[PartitionResult] = []
        with ThreadPoolExecutor(max_workers=grid_size, thread_name_prefix="payment-range") as executor:
            future_to_partition: dict[Future[PartitionResult], Partition] = {
                executor.submit(runner.run, item): item for item in partitions
            }
            for future in as_completed(future_to_partition):
                item = future_to_partition[future]
                try:
                    results.append(future.result())
                except Exception as exc:
                    # Whatever escaped the runner still only fails its own partition.
                    logger.error(
                        "partition crashed",
                        extra={"partition": item.name, "error": str(exc)},
                        exc_info=True,
                    )
                    results.append(
                        PartitionResult(
                            partition=item,
                            status=StepStatus.FAILED,
                            read_count=0,
                            write_count=0,
                            skip_count=0,
                            error=f"{type(exc).__name__}: {exc}",
                        )
                    )

        return sorted(results, key=lambda result: result.partition.id)

    def _aggregate(
        self,
        job_run_id: int,
        results: list[PartitionResult],
        file_path: str,
        grid_size: int,
        chunk_size: int,
    ) -> JobResult:
        failed = [result for result in results if result.status != StepStatus.COMPLETED]
        error = None
        if failed:
            error = "; ".join(
                f"{result.partition.name} [{result.partition.start_line}, {result.partition.end_line}): {result.error}"
                for result in failed
            )
        return JobResult(
            job_run_id=job_run_id,
            file_path=file_path,
            status=JobStatus.FAILURE if failed else JobStatus.SUCCESS,
            grid_size=grid_size,
            chunk_size=chunk_size,
            partitions=results,
            error=error,
        )

    def _build_sink(self) -> BatchSink:
        sink: BatchSink = PaymentSink(self.session_factory)
        if self.settings.max_sink_retries > 0:
            sink = RetryingSink(
                sink,
                max_retries=self.settings.max_sink_retries,
                backoff_seconds=self.settings.retry_backoff_seconds,
            )
        return sink
