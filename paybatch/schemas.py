from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum


class PaymentStatus(StrEnum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"


class ReconciliationStatus(StrEnum):
    PENDING = "PENDING"
    RECONCILED = "RECONCILED"
    INVALID = "INVALID"


@dataclass
class PaymentRecord:
    external_id: str
    payer_id: str
    payee_id: str
    amount: Decimal | None
    currency: str
    payment_date: date
    status: PaymentStatus = PaymentStatus.RECEIVED
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING


@dataclass(frozen=True)
class Partition:
    """Half-open range [start_line, end_line) of 0-based data line indices."""

    id: int
    file_path: str
    start_line: int
    end_line: int

    @property
    def name(self) -> str:
        return f"partition-{self.id}"

    @property
    def size(self) -> int:
        return self.end_line - self.start_line


class StepPhase(StrEnum):
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class StepStatus(StrEnum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass(frozen=True)
class StepEvent:
    phase: StepPhase
    step_name: str
    thread_id: str
    partition_id: int
    file_name: str
    start_line: int
    end_line: int
    read_count: int | None = None
    write_count: int | None = None
    skip_count: int | None = None
    status: StepStatus | None = None
    error: str | None = None


@dataclass(frozen=True)
class PartitionResult:
    partition: Partition
    status: StepStatus
    read_count: int
    write_count: int
    skip_count: int
    error: str | None = None


@dataclass(frozen=True)
class JobResult:
    job_run_id: int
    file_path: str
    status: JobStatus
    grid_size: int
    chunk_size: int
    partitions: list[PartitionResult] = field(default_factory=list)
    error: str | None = None

    @property
    def read_count(self) -> int:
        return sum(result.read_count for result in self.partitions)

    @property
    def write_count(self) -> int:
        return sum(result.write_count for result in self.partitions)

    @property
    def skip_count(self) -> int:
        return sum(result.skip_count for result in self.partitions)

    @property
    def failed_partitions(self) -> list[PartitionResult]:
        return [result for result in self.partitions if result.status == StepStatus.FAILED]
