"""CSV export of attempt records.

CSV format:
    session_id,attempt_number,action,result,response_time,error_message
    T261019093000abcd,1,unlock,success,742,
    T261019093000abcd,1,lock,failure,5000,timeout
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable, TextIO

from lockcycle.records import AttemptRecord, attempt_records_from_run
from lockcycle.types import TestRun

CSV_COLUMNS = (
    "session_id",
    "attempt_number",
    "action",
    "result",
    "response_time",
    "error_message",
)


def write_attempts(records: Iterable[AttemptRecord], handle: TextIO) -> int:
    """Write attempt records as CSV to an open text handle.

    Args:
        records: Attempt records in the order they should appear.
        handle: Destination, opened with newline="".

    Returns:
        Number of data rows written.
    """
    writer = csv.writer(handle)
    writer.writerow(CSV_COLUMNS)
    count = 0
    for record in records:
        writer.writerow(
            [
                record.session_id,
                record.attempt_number,
                record.action,
                record.result,
                "" if record.response_time is None else record.response_time,
                record.error_message or "",
            ]
        )
        count += 1
    return count


def attempts_to_csv(records: Iterable[AttemptRecord]) -> str:
    """Return attempt records rendered as a CSV string."""
    buffer = io.StringIO(newline="")
    write_attempts(records, buffer)
    return buffer.getvalue()


def write_attempts_csv(run: TestRun, path: str | Path) -> Path:
    """Write every recorded attempt of a run to a CSV file.

    Parent directories are created as needed.

    Args:
        run: Run snapshot to export.
        path: Destination file.

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        write_attempts(attempt_records_from_run(run), f)
    return path
