class PaymentBatchError(Exception):
    """Base class for errors raised by the payment batch pipeline."""


class SetupError(PaymentBatchError):
    """The input file could not be counted, so no partitions can be built."""


class RecordParseError(PaymentBatchError):
    def __init__(self, message: str, *, line_index: int, line: str) -> None:
        self.line_index = line_index
        # Physical line in the file: 1-based and counting the header.
        self.file_line = line_index + 2
        self.line = line
        super().__init__(f"line {self.file_line}: {message}")


class SinkError(PaymentBatchError):
    """A batch could not be committed to the store."""


class PartitionFailure(PaymentBatchError):
    """A partition stopped before committing its whole range."""
