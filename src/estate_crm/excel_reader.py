"""Read the first worksheet of an Excel workbook into header-keyed rows.

Rows keep their 1-indexed worksheet row number (the header is row 1) so that
validation errors can point at the exact spreadsheet line.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path  # Filesystem path management
from typing import Any, BinaryIO, Dict, List, Union

from openpyxl import load_workbook  # Excel file loader
from openpyxl.utils.exceptions import InvalidFileException

WorkbookSource = Union[str, Path, bytes, BinaryIO]


class SpreadsheetError(ValueError):
    """Raised when a workbook cannot be read at all."""


@dataclass(slots=True)
class SheetRow:
    row: int  # Worksheet row number (first data row is 2)
    values: Dict[str, Any]  # Header text -> cell value

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def read_rows(source: WorkbookSource) -> List[SheetRow]:
    """Return the data rows of the first worksheet in ``source``.

    ``source`` may be a path, raw bytes or a binary file object. Raises
    :class:`FileNotFoundError` for a missing path and :class:`SpreadsheetError`
    for an unreadable workbook or one without data rows.
    """

    if isinstance(source, (str, Path)):
        path = Path(source)  # Ensure we have a Path instance
        if not path.exists():  # Validate the file exists
            raise FileNotFoundError(f"Workbook not found: {path}")
        handle: Any = path
    elif isinstance(source, (bytes, bytearray)):
        handle = io.BytesIO(source)
    else:
        handle = source

    try:
        # Read-only mode with cell values, not formulas
        workbook = load_workbook(filename=handle, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise SpreadsheetError(f"Failed to parse Excel file: {exc}") from exc

    try:
        sheet = workbook.worksheets[0]  # Only the first sheet is imported
        rows = sheet.iter_rows(values_only=True)
        headers_row = next(rows, None)  # First row should contain column headers
        if headers_row is None:
            raise SpreadsheetError("Excel file is empty")

        headers = [
            str(header).strip() if header is not None else "" for header in headers_row
        ]

        result: List[SheetRow] = []
        for row_number, row in enumerate(rows, start=2):
            if all(_is_blank(value) for value in row):
                continue  # Skip empty lines but keep numbering
            values = {
                header: row[idx]
                for idx, header in enumerate(headers)
                if header and idx < len(row)
            }
            result.append(SheetRow(row=row_number, values=values))
    finally:
        workbook.close()  # Always close the workbook handle

    if not result:
        raise SpreadsheetError("Excel file is empty")
    return result


__all__ = ["SheetRow", "SpreadsheetError", "WorkbookSource", "read_rows"]
