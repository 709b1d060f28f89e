"""
Spreadsheet Parser

Parses .xlsx statement exports with openpyxl.
"""

import zipfile
from io import BytesIO
from typing import Any, Iterator

from openpyxl import load_workbook
from openpyxl.utils import column_index_from_string
from openpyxl.utils.exceptions import InvalidFileException

from ledger.errors import ValidationError

from .base import BaseStatementParser, StatementRow, parse_amount, parse_date


class ExcelStatementParser(BaseStatementParser):
    """Parser for spreadsheet statements (first row header by default)."""

    FILE_TYPE = "excel"

    DEFAULTS = {
        "sheet_index": 0,
        "has_header": True,
        "date_format": "dd/MM/yyyy",
        "decimal_separator": ".",
        "columns": {"date": "A", "description": "B", "amount": "C"},
        "skip_rows": 0,
        "invert_amounts": False,
    }

    def __init__(self, config: dict | None = None, max_rows: int = 10_000):
        merged = dict(self.DEFAULTS)
        merged.update({k: v for k, v in (config or {}).items() if v is not None})
        super().__init__(merged, max_rows)

        self.columns = {
            name: self._column_index(name, col)
            for name, col in self.config["columns"].items()
            if col is not None
        }
        for name in ("date", "description", "amount"):
            if name not in self.columns:
                raise ValidationError(f"Column mapping is missing: {name}")

    @staticmethod
    def _column_index(name: str, column: str | int) -> int:
        """Accept a 0-based index or a column letter."""
        if isinstance(column, bool):
            raise ValidationError(f"Invalid column for '{name}': {column!r}")
        if isinstance(column, int):
            if column < 0:
                raise ValidationError(f"Invalid column for '{name}': {column}")
            return column
        try:
            return column_index_from_string(str(column).strip().upper()) - 1
        except ValueError:
            raise ValidationError(f"Invalid column for '{name}': {column!r}")

    def _iter_records(self, content: bytes) -> Iterator[tuple[int, Any]]:
        try:
            workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise ValidationError(f"Cannot read spreadsheet: {e}")

        try:
            sheet_index = int(self.config["sheet_index"])
            if sheet_index >= len(workbook.worksheets):
                raise ValidationError(f"Spreadsheet has no sheet at index {sheet_index}")
            sheet = workbook.worksheets[sheet_index]

            skip = int(self.config["skip_rows"]) + (1 if self.config["has_header"] else 0)
            for row_number, row in enumerate(sheet.iter_rows(values_only=True), start=1):
                if row_number <= skip:
                    continue
                if all(cell is None or str(cell).strip() == "" for cell in row):
                    continue
                yield row_number, row
        finally:
            workbook.close()

    def _cell(self, row: tuple, name: str) -> Any:
        index = self.columns.get(name)
        if index is None or index >= len(row):
            return None
        value = row[index]
        return value.strip() if isinstance(value, str) else value

    def _parse_record(self, record: tuple) -> StatementRow:
        txn_date = parse_date(self._cell(record, "date"), self.config["date_format"])
        amount = parse_amount(
            self._cell(record, "amount"),
            self.config["decimal_separator"],
            self.config["invert_amounts"],
        )

        value_date = None
        raw_value_date = self._cell(record, "value_date")
        if raw_value_date:
            value_date = parse_date(raw_value_date, self.config["date_format"])

        description = self._cell(record, "description")
        reference = self._cell(record, "reference")

        return StatementRow(
            date=txn_date,
            description=str(description) if description is not None else "",
            amount=amount,
            reference=str(reference) if reference else None,
            value_date=value_date,
        )
