"""
QIF Parser

Parses Quicken Interchange Format bank statements.
"""

from typing import Any, Iterator

from .base import BaseStatementParser, StatementRow, parse_amount, parse_date


class QIFStatementParser(BaseStatementParser):
    """Parser for QIF files (one field per line, '^' ends a record)."""

    FILE_TYPE = "qif"

    DATE_FORMATS = [
        "%m/%d/%Y",
        "%m/%d/%y",
        "%Y-%m-%d",
        "%d/%m/%Y",
    ]

    def _iter_records(self, content: bytes) -> Iterator[tuple[int, Any]]:
        text = self._decode(content, self.config.get("encoding", "utf-8"))

        current: dict[str, str] = {}
        record_number = 0

        for line in text.split("\n"):
            line = line.strip()
            if not line or line.startswith("!"):
                continue

            code, value = line[0], line[1:].strip()
            if code == "^":
                if current:
                    record_number += 1
                    yield record_number, current
                current = {}
            elif code in "DTUPMN":
                # T and U carry the same amount; keep the first seen
                key = "T" if code == "U" else code
                current.setdefault(key, value)

        # Trailing record without a terminator
        if current:
            yield record_number + 1, current

    def _parse_date(self, value: str | None) -> Any:
        # Quicken writes 1/15'25 for 2025 and pads with spaces
        cleaned = (value or "").replace("'", "/").replace(" ", "0")
        formats = self.config.get("date_format") or self.DATE_FORMATS
        return parse_date(cleaned, formats)

    def _parse_record(self, record: dict[str, str]) -> StatementRow:
        if "D" not in record:
            raise ValueError("Record has no date")
        if "T" not in record:
            raise ValueError("Record has no amount")

        description = record.get("P") or record.get("M") or ""

        return StatementRow(
            date=self._parse_date(record["D"]),
            description=description,
            amount=parse_amount(record["T"], "."),
            reference=record.get("N") or None,
            raw_data=dict(record),
        )
