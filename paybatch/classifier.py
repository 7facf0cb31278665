import logging

from paybatch.schemas import PaymentRecord, PaymentStatus, ReconciliationStatus


logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 1_000_000


def classify(record: PaymentRecord, *, worker: str) -> PaymentRecord:
    _log_progress(record, worker)

    if record.amount is None or record.amount <= 0:
        record.reconciliation_status = ReconciliationStatus.INVALID
    else:
        record.reconciliation_status = ReconciliationStatus.RECONCILED
    record.status = PaymentStatus.PROCESSED
    return record


def _log_progress(record: PaymentRecord, worker: str) -> None:
    if not record.external_id:
        return
    try:
        # "P123" -> 123
        sequence = int(record.external_id[1:])
    except ValueError:
        # Ids without a numeric suffix just don't report progress.
        return
    if sequence % PROGRESS_INTERVAL == 0:
        logger.info(
            "processing payment",
            extra={"external_id": record.external_id, "worker": worker},
        )
