from collections.abc import Iterator
from datetime import date
from decimal import Decimal, InvalidOperation
from itertools import islice
from pathlib import Path
from typing import TextIO
import re

from paybatch.errors import RecordParseError
from paybatch.schemas import PaymentRecord


DELIMITER = ";"
FIELD_NAMES = ("external_id", "payer_id", "payee_id", "amount", "currency", "payment_date")

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


def parse_line(line: str, line_index: int) -> PaymentRecord:
    fields = [value.strip() for value in line.rstrip("\r\n").split(DELIMITER)]
    if len(fields) != len(FIELD_NAMES):
        raise RecordParseError(
            f"expected {len(FIELD_NAMES)} fields, found {len(fields)}",
            line_index=line_index,
            line=line,
        )

    external_id, payer_id, payee_id, amount_raw, currency, date_raw = fields

    try:
        amount = Decimal(amount_raw)
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        raise RecordParseError(f"invalid amount {amount_raw!r}", line_index=line_index, line=line)

    payment_date: date | None = None
    if _DATE_PATTERN.fullmatch(date_raw):
        try:
            payment_date = date.fromisoformat(date_raw)
        except ValueError:
            pass
    if payment_date is None:
        raise RecordParseError(f"invalid payment date {date_raw!r}", line_index=line_index, line=line)

    return PaymentRecord(
        external_id=external_id,
        payer_id=payer_id,
        payee_id=payee_id,
        amount=amount,
        currency=currency,
        payment_date=payment_date,
    )


class PartitionReader:
    """Streams parsed records for data lines [start_line, end_line).

    Partitions are addressed by line, not byte offset, so opening the reader
    reads and discards every line before start_line. A parse error consumes
    its line; the next call moves on to the following one. The sequence ends
    early, without error, if the file is shorter than expected. A reader is
    good for one pass only.
    """

    def __init__(self, file_path: str | Path, start_line: int, end_line: int) -> None:
        self.file_path = Path(file_path)
        self.start_line = start_line
        self.end_line = end_line
        self._handle: TextIO | None = None
        self._lines: Iterator[str] | None = None
        self._next_index = start_line
        self._used = False

    @property
    def lines_consumed(self) -> int:
        return self._next_index - self.start_line

    def open(self) -> "PartitionReader":
        if self._used:
            raise RuntimeError(f"reader for {self.file_path} [{self.start_line}, {self.end_line}) cannot be reopened")
        self._used = True
        self._handle = self.file_path.open("r", encoding="utf-8")
        if self._handle.readline():
            self._lines = islice(self._handle, self.start_line, self.end_line)
        else:
            self._lines = iter(())
        return self

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        self._lines = iter(())

    def __enter__(self) -> "PartitionReader":
        if not self._used:
            self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __iter__(self) -> "PartitionReader":
        return self

    def __next__(self) -> PaymentRecord:
        if self._lines is None:
            raise RuntimeError("reader is not open")
        line = next(self._lines)
        line_index = self._next_index
        self._next_index += 1
        return parse_line(line, line_index)


def open_partition(file_path: str | Path, start_line: int, end_line: int) -> PartitionReader:
    return PartitionReader(file_path, start_line, end_line).open()
