from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from paybatch.config import Settings
from paybatch.database import build_session_factory
from paybatch.db_models import PaymentDocument
from paybatch.errors import SinkError
from paybatch.schemas import PaymentRecord


class RecordingSink:
    """In-memory sink that can be told to fail on a given call."""

    def __init__(self, fail_on_call: int | None = None, error: Exception | None = None) -> None:
        self.fail_on_call = fail_on_call
        self.error = error
        self.calls = 0
        self.batches: list[list[PaymentRecord]] = []

    def write_batch(self, records: Sequence[PaymentRecord]) -> int:
        self.calls += 1
        if self.fail_on_call is not None and self.calls == self.fail_on_call:
            raise self.error or SinkError(f"injected failure on call {self.calls}")
        self.batches.append(list(records))
        return len(records)

    @property
    def committed(self) -> list[PaymentRecord]:
        return [record for batch in self.batches for record in batch]


def _payment_line(i: int, amount: str | None = None) -> str:
    if amount is None:
        amount = f"{100 + (i % 1000) + (i % 97) / 100:.2f}"
    day = (i % 28) + 1
    return f"P{i};C{i % 1_000_000:06d};L{i % 1_000_000:06d};{amount};BRL;2025-01-{day:02d}"


@pytest.fixture()
def write_payments() -> Callable[..., Path]:
    def write(path: Path, count: int, *, amounts: dict[int, str] | None = None) -> Path:
        amounts = amounts or {}
        with path.open("w", encoding="utf-8") as outfile:
            outfile.write("externalId;payerId;payeeId;amount;currency;paymentDate\n")
            for i in range(1, count + 1):
                outfile.write(_payment_line(i, amounts.get(i)) + "\n")
        return path

    return write


@pytest.fixture()
def make_payment() -> Callable[..., PaymentRecord]:
    def make(external_id: str = "P1", amount: Decimal | None = Decimal("10.00")) -> PaymentRecord:
        return PaymentRecord(
            external_id=external_id,
            payer_id="C000001",
            payee_id="L000001",
            amount=amount,
            currency="BRL",
            payment_date=date(2025, 1, 2),
        )

    return make


@pytest.fixture()
def recording_sink() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        app_name="paybatch",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="INFO",
        input_file=str(tmp_path / "payments.csv"),
        grid_size=4,
        chunk_size=5,
        skip_limit=0,
        max_sink_retries=0,
        retry_backoff_seconds=0,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def stored_payments(session_factory: sessionmaker[Session]) -> Callable[[], list[PaymentDocument]]:
    def load() -> list[PaymentDocument]:
        with session_factory() as db:
            return list(db.execute(select(PaymentDocument).order_by(PaymentDocument.id)).scalars().all())

    return load
