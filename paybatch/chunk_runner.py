from collections.abc import Callable, Sequence
from dataclasses import dataclass
import logging
from pathlib import Path
import threading

from paybatch.classifier import classify
from paybatch.errors import PartitionFailure, PaymentBatchError, RecordParseError
from paybatch.observer import ExecutionObserver
from paybatch.reader import PartitionReader
from paybatch.schemas import Partition, PartitionResult, PaymentRecord, StepEvent, StepPhase, StepStatus
from paybatch.sink import BatchSink


logger = logging.getLogger(__name__)

ReaderFactory = Callable[[str | Path, int, int], PartitionReader]


@dataclass
class _Counters:
    read: int = 0
    write: int = 0
    skip: int = 0


class ChunkRunner:
    """Drives reader -> classifier -> sink over one partition, one chunk at a time.

    A chunk either commits as a whole, advancing the counters by its size, or
    fails the partition. Nothing past a failed chunk is read.
    """

    def __init__(
        self,
        sink: BatchSink,
        *,
        chunk_size: int,
        skip_limit: int = 0,
        observers: Sequence[ExecutionObserver] = (),
        step_name: str = "payment_step",
        reader_factory: ReaderFactory = PartitionReader,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        if skip_limit < 0:
            raise ValueError(f"skip_limit cannot be negative, got {skip_limit}")
        self.sink = sink
        self.chunk_size = chunk_size
        self.skip_limit = skip_limit
        self.observers = list(observers)
        self.step_name = step_name
        self.reader_factory = reader_factory

    def run(self, partition: Partition) -> PartitionResult:
        step_name = f"{self.step_name}:{partition.name}"
        thread_name = threading.current_thread().name
        counts = _Counters()
        status = StepStatus.FAILED
        error: str | None = None

        try:
            self._notify(
                StepEvent(
                    phase=StepPhase.BEFORE,
                    step_name=step_name,
                    thread_id=thread_name,
                    partition_id=partition.id,
                    file_name=partition.file_path,
                    start_line=partition.start_line,
                    end_line=partition.end_line,
                )
            )
            self._run_chunks(partition, counts)
            status = StepStatus.COMPLETED
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.error(
                "partition failed",
                extra={"partition": partition.name, "start_line": partition.start_line, "end_line": partition.end_line, "error": error},
                exc_info=not isinstance(exc, (PaymentBatchError, OSError, UnicodeDecodeError)),
            )

        try:
            self._notify(
                StepEvent(
                    phase=StepPhase.AFTER,
                    step_name=step_name,
                    thread_id=thread_name,
                    partition_id=partition.id,
                    file_name=partition.file_path,
                    start_line=partition.start_line,
                    end_line=partition.end_line,
                    read_count=counts.read,
                    write_count=counts.write,
                    skip_count=counts.skip,
                    status=status,
                    error=error,
                )
            )
        except Exception as exc:
            # Committed chunks stay committed; the partition still reports them.
            status = StepStatus.FAILED
            error = "; ".join(filter(None, [error, f"observer {type(exc).__name__}: {exc}"]))
            logger.error("step observer failed", extra={"partition": partition.name, "error": error}, exc_info=True)

        return PartitionResult(
            partition=partition,
            status=status,
            read_count=counts.read,
            write_count=counts.write,
            skip_count=counts.skip,
            error=error,
        )

    def _notify(self, event: StepEvent) -> None:
        for observer in self.observers:
            observer.on_event(event)

    def _run_chunks(self, partition: Partition, counts: _Counters) -> None:
        with self.reader_factory(partition.file_path, partition.start_line, partition.end_line) as reader:
            exhausted = False
            while not exhausted:
                batch, skipped, exhausted = self._read_chunk(reader, partition, counts.skip)
                written = self.sink.write_batch(batch) if batch else 0
                # Counters only move once the chunk is committed.
                counts.read += len(batch)
                counts.write += written
                counts.skip += skipped
                if batch or skipped:
                    logger.debug(
                        "chunk committed",
                        extra={"partition": partition.name, "records": len(batch), "skipped": skipped},
                    )

            consumed = reader.lines_consumed

        if consumed < partition.size:
            raise PartitionFailure(
                f"{partition.name} ended after {consumed} of {partition.size} lines in [{partition.start_line}, {partition.end_line})"
            )

    def _read_chunk(
        self,
        reader: PartitionReader,
        partition: Partition,
        committed_skips: int,
    ) -> tuple[list[PaymentRecord], int, bool]:
        batch: list[PaymentRecord] = []
        skipped = 0

        while len(batch) < self.chunk_size:
            try:
                record = next(reader)
            except StopIteration:
                return batch, skipped, True
            except RecordParseError as exc:
                if committed_skips + skipped >= self.skip_limit:
                    raise
                skipped += 1
                logger.warning(
                    "skipping unparseable line",
                    extra={"partition": partition.name, "file_line": exc.file_line, "error": str(exc)},
                )
                continue
            batch.append(classify(record, worker=partition.name))

        return batch, skipped, False
