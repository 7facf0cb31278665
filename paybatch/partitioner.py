import logging
import math
from pathlib import Path

from paybatch.errors import SetupError
from paybatch.schemas import Partition


logger = logging.getLogger(__name__)


def count_data_lines(file_path: str | Path) -> int:
    """Count the lines after the header. An empty file has zero data lines."""
    path = Path(file_path)
    try:
        with path.open("r", encoding="utf-8") as infile:
            if not infile.readline():
                return 0
            return sum(1 for _ in infile)
    except (OSError, UnicodeDecodeError) as exc:
        raise SetupError(f"cannot count data lines in {path}: {exc}") from exc


def compute_ranges(total_lines: int, grid_size: int) -> list[tuple[int, int]]:
    if grid_size < 1:
        raise ValueError(f"grid_size must be at least 1, got {grid_size}")
    if total_lines <= 0:
        return []

    target_size = math.ceil(total_lines / grid_size)
    ranges: list[tuple[int, int]] = []
    start = 0
    while start < total_lines:
        end = min(start + target_size, total_lines)
        ranges.append((start, end))
        start = end
    return ranges


def partition(file_path: str | Path, grid_size: int) -> list[Partition]:
    if grid_size < 1:
        raise ValueError(f"grid_size must be at least 1, got {grid_size}")

    resolved = str(Path(file_path).resolve())
    total_lines = count_data_lines(resolved)
    partitions = [
        Partition(id=index, file_path=resolved, start_line=start, end_line=end)
        for index, (start, end) in enumerate(compute_ranges(total_lines, grid_size))
    ]
    logger.info(
        "input partitioned",
        extra={"file_path": resolved, "total_lines": total_lines, "partitions": len(partitions)},
    )
    return partitions
