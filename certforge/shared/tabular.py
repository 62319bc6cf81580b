from __future__ import annotations

import csv
import io
from typing import NamedTuple

from .errors import TabularSourceError

# Row number of the first data row; the header is row 1.
FIRST_DATA_ROW = 2


class TabularData(NamedTuple):
    headers: list[str]
    rows: list[dict[str, str]]


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise TabularSourceError(f"CSV must be UTF-8 encoded: {exc}") from exc


def _reader(raw: bytes):
    return csv.reader(io.StringIO(_decode(raw), newline=""), strict=True)


def _header_row(reader) -> list[str]:
    for record in reader:
        if any((cell or "").strip() for cell in record):
            headers = [(cell or "").strip() for cell in record]
            if any(not name for name in headers):
                raise TabularSourceError("CSV header contains a blank column name")
            if len(set(headers)) != len(headers):
                raise TabularSourceError("CSV header contains duplicate column names")
            return headers
    raise TabularSourceError("CSV has no header row")


def read_csv_headers(raw: bytes) -> list[str]:
    reader = _reader(raw)
    try:
        return _header_row(reader)
    except csv.Error as exc:
        raise TabularSourceError(f"Malformed CSV: {exc}") from exc


def read_csv_rows(raw: bytes) -> TabularData:
    """Parse the whole CSV into ordered row maps of trimmed strings.

    Blank lines are skipped. Rows shorter than the header are padded with
    empty cells; rows with extra cells are rejected.
    """
    reader = _reader(raw)
    try:
        headers = _header_row(reader)
        rows: list[dict[str, str]] = []
        for record in reader:
            cells = [(cell or "").strip() for cell in record]
            if not any(cells):
                continue
            if len(cells) > len(headers):
                raise TabularSourceError(
                    f"CSV line {reader.line_num} has {len(cells)} cells; header has {len(headers)}"
                )
            cells.extend([""] * (len(headers) - len(cells)))
            rows.append(dict(zip(headers, cells)))
    except csv.Error as exc:
        raise TabularSourceError(f"Malformed CSV: {exc}") from exc
    return TabularData(headers=headers, rows=rows)
