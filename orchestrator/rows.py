"""Loading tabular input rows for a replay."""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any, Dict, List, Sequence


def load_csv_rows(source: str | Path) -> List[Dict[str, str]]:
    """Parse CSV text (or a path to a CSV file) into ``{column: value}`` rows.

    The first row is the header. Blank header cells are dropped and short
    rows are padded with empty strings.
    """

    if isinstance(source, Path):
        text = source.read_text(encoding="utf-8-sig")
    else:
        text = source
    reader = csv.reader(io.StringIO(text))
    matrix = [row for row in reader if any(cell.strip() for cell in row)]
    return rows_from_matrix(matrix)


def rows_from_matrix(matrix: Sequence[Sequence[Any]]) -> List[Dict[str, str]]:
    if not matrix:
        return []
    header = [str(cell).strip() for cell in matrix[0]]
    rows: List[Dict[str, str]] = []
    for raw in matrix[1:]:
        row: Dict[str, str] = {}
        for index, column in enumerate(header):
            if not column:
                continue
            value = raw[index] if index < len(raw) else ""
            row[column] = "" if value is None else str(value)
        rows.append(row)
    return rows


def headers(rows: Sequence[Dict[str, Any]]) -> List[str]:
    seen: List[str] = []
    for row in rows:
        for key in row:
            if key not in seen:
                seen.append(key)
    return seen
