from collections.abc import Sequence
import logging
import time
from typing import Protocol

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from paybatch.db_models import PaymentDocument
from paybatch.errors import SinkError
from paybatch.schemas import PaymentRecord, ReconciliationStatus


logger = logging.getLogger(__name__)


class BatchSink(Protocol):
    def write_batch(self, records: Sequence[PaymentRecord]) -> int: ...


def to_document(record: PaymentRecord) -> dict[str, object]:
    return {
        "external_id": record.external_id,
        "payer_id": record.payer_id,
        "payee_id": record.payee_id,
        "amount": None if record.amount is None else str(record.amount),
        "currency": record.currency,
        "payment_date": record.payment_date,
        "status": str(record.status),
        "reconciliation_status": str(record.reconciliation_status),
    }


class PaymentSink:
    """Commits each batch to the payments table in a single transaction."""

    collection = PaymentDocument.__tablename__

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def write_batch(self, records: Sequence[PaymentRecord]) -> int:
        if not records:
            return 0

        pending = [record.external_id for record in records if record.reconciliation_status == ReconciliationStatus.PENDING]
        if pending:
            raise SinkError(f"refusing to write unclassified payments: {pending[:5]}")

        rows = [to_document(record) for record in records]
        with self.session_factory() as db:
            try:
                db.execute(insert(PaymentDocument), rows)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise SinkError(f"batch of {len(rows)} payments not committed to {self.collection}: {exc}") from exc
        return len(rows)


class RetryingSink:
    """Retries a failed batch write with linear backoff before giving up."""

    def __init__(self, sink: BatchSink, *, max_retries: int, backoff_seconds: float) -> None:
        self.sink = sink
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def write_batch(self, records: Sequence[PaymentRecord]) -> int:
        last_error: SinkError | None = None

        for attempt in range(1, self.max_retries + 2):
            try:
                return self.sink.write_batch(records)
            except SinkError as exc:
                last_error = exc
                logger.warning(
                    "batch write attempt failed",
                    extra={"attempt": attempt, "batch_size": len(records), "error": str(exc)},
                )
                if attempt > self.max_retries:
                    break
                time.sleep(self.backoff_seconds * attempt)

        raise SinkError(f"batch write failed after {self.max_retries + 1} attempts: {last_error}") from last_error
