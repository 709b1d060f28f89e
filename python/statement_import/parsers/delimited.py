"""
Delimited Text Parser

Parses CSV-style bank exports using an explicit column map.
"""

import csv
from io import StringIO
from typing import Any, Iterator

from ledger.errors import ValidationError

from .base import BaseStatementParser, StatementRow, parse_amount, parse_date


class CSVStatementParser(BaseStatementParser):
    """Parser for delimited text statements."""

    FILE_TYPE = "csv"

    DEFAULTS = {
        "delimiter": ";",
        "encoding": "utf-8",
        "has_header": True,
        "date_format": "dd/MM/yyyy",
        "decimal_separator": ",",
        "columns": {"date": 0, "description": 1, "amount": 2},
        "skip_rows": 0,
        "invert_amounts": False,
    }

    REQUIRED_COLUMNS = ("date", "description", "amount")

    def __init__(self, config: dict | None = None, max_rows: int = 10_000):
        merged = dict(self.DEFAULTS)
        merged.update({k: v for k, v in (config or {}).items() if v is not None})
        super().__init__(merged, max_rows)

        self.columns = self._validate_columns(self.config["columns"])

    def _validate_columns(self, columns: dict) -> dict[str, int]:
        missing = [name for name in self.REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise ValidationError(f"Column mapping is missing: {', '.join(missing)}")

        validated = {}
        for name, index in columns.items():
            if index is None:
                continue
            if isinstance(index, bool) or not isinstance(index, int) or index < 0:
                raise ValidationError(f"Column '{name}' must be a non-negative index")
            validated[name] = index
        return validated

    def _iter_records(self, content: bytes) -> Iterator[tuple[int, Any]]:
        text = self._decode(content, self.config["encoding"])

        try:
            reader = csv.reader(StringIO(text), delimiter=self.config["delimiter"])
            skip = int(self.config["skip_rows"]) + (1 if self.config["has_header"] else 0)

            for line_number, row in enumerate(reader, start=1):
                if line_number <= skip:
                    continue
                if not any(cell.strip() for cell in row):
                    continue
                yield line_number, row
        except csv.Error as e:
            raise ValidationError(f"Malformed delimited file: {e}")

    def _cell(self, row: list[str], name: str) -> str | None:
        index = self.columns.get(name)
        if index is None:
            return None
        if index >= len(row):
            raise ValueError(f"Missing column '{name}' (row has {len(row)} columns)")
        return row[index].strip()

    def _parse_record(self, record: list[str]) -> StatementRow:
        txn_date = parse_date(self._cell(record, "date"), self.config["date_format"])
        amount = parse_amount(
            self._cell(record, "amount"),
            self.config["decimal_separator"],
            self.config["invert_amounts"],
        )

        value_date = None
        value_date_str = self._cell(record, "value_date")
        if value_date_str:
            value_date = parse_date(value_date_str, self.config["date_format"])

        return StatementRow(
            date=txn_date,
            description=self._cell(record, "description") or "",
            amount=amount,
            reference=self._cell(record, "reference") or None,
            value_date=value_date,
            raw_data={"cells": list(record)},
        )
