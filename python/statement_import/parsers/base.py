"""
Base Statement Parser Module

Abstract base class and shared value parsing for statement file parsers.
"""

import hashlib
import logging
import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator

from ledger.errors import ValidationError

logger = logging.getLogger(__name__)

# date-fns style tokens accepted in date formats, mapped to strptime
_DATE_TOKENS = {
    "yyyy": "%Y",
    "yy": "%y",
    "MMM": "%b",
    "MM": "%m",
    "M": "%m",
    "dd": "%d",
    "d": "%d",
    "HH": "%H",
    "mm": "%M",
    "ss": "%S",
}
_DATE_TOKEN_RE = re.compile(r"yyyy|yy|MMM|MM|M|dd|d|HH|mm|ss")

_CURRENCY_RE = re.compile(r"[€$£¥₱\s']|EUR|USD|GBP|CHF|PHP", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def normalize_description(description: str | None) -> str:
    """Lower-case, strip accents and punctuation, collapse whitespace."""
    if not description:
        return ""

    text = unicodedata.normalize("NFD", description.lower())
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = re.sub(r"[^a-z0-9\s]", "", text)
    return " ".join(text.split())


def to_strptime_format(date_format: str) -> str:
    """Translate a dd/MM/yyyy style format; strptime formats pass through."""
    if "%" in date_format:
        return date_format
    return _DATE_TOKEN_RE.sub(lambda m: _DATE_TOKENS[m.group(0)], date_format)


def parse_date(value: Any, date_format: str | list[str]) -> date:
    """Parse a date cell.

    Args:
        value: String, date or datetime
        date_format: One format or a list of formats to try in order

    Returns:
        Parsed date

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value or "").strip()
    if not text:
        raise ValueError("Empty date")

    formats = [date_format] if isinstance(date_format, str) else date_format
    for fmt in formats:
        try:
            return datetime.strptime(text, to_strptime_format(fmt)).date()
        except ValueError:
            continue

    raise ValueError(f"Cannot parse date: {text!r}")


def parse_amount(value: Any, decimal_separator: str = ".", invert: bool = False) -> Decimal:
    """Parse a locale-formatted amount.

    Grouping symbols are stripped, at most one decimal separator is allowed
    and leading zeros are collapsed. Empty or non-numeric input is an error,
    never zero.

    Args:
        value: Cell value (string or number)
        decimal_separator: '.' or ','
        invert: Negate the parsed amount

    Returns:
        Parsed Decimal amount

    Raises:
        ValueError: If the value is empty or not a number
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse amount: {value!r}")

    if isinstance(value, (int, float, Decimal)):
        amount = Decimal(str(value))
    else:
        text = str(value if value is not None else "").strip()
        if not text:
            raise ValueError("Empty amount")

        negative = False
        if text.startswith("(") and text.endswith(")"):
            negative = True
            text = text[1:-1]

        text = _CURRENCY_RE.sub("", text)

        if text.endswith("-"):
            negative = True
            text = text[:-1]
        if text.startswith("-"):
            negative = True
            text = text[1:]
        elif text.startswith("+"):
            text = text[1:]

        grouping = "," if decimal_separator == "." else "."
        text = text.replace(grouping, "")
        if decimal_separator != ".":
            text = text.replace(decimal_separator, ".")

        if not _NUMBER_RE.fullmatch(text):
            raise ValueError(f"Cannot parse amount: {value!r}")

        integer, _, fraction = text.partition(".")
        integer = integer.lstrip("0") or "0"
        text = f"{integer}.{fraction}" if fraction else integer

        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Cannot parse amount: {value!r}")

        if negative:
            amount = -amount

    return -amount if invert else amount


@dataclass
class StatementRow:
    """A raw record decoded from a statement file."""

    date: date
    description: str = ""
    amount: Decimal = Decimal("0")
    row_number: int = 0
    reference: str | None = None
    value_date: date | None = None
    raw_data: dict = field(default_factory=dict)

    @property
    def import_hash(self) -> str:
        """Stable fingerprint used to recognise a re-imported row."""
        amount = f"{self.amount.normalize():f}"
        data = f"{self.date.isoformat()}|{amount}|{normalize_description(self.description)}"
        return hashlib.md5(data.encode()).hexdigest()


@dataclass
class ParseResult:
    """Result of parsing a statement file."""

    file_type: str
    rows: list[StatementRow] = field(default_factory=list)
    skipped_rows: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def total_debits(self) -> Decimal:
        return abs(sum((r.amount for r in self.rows if r.amount < 0), Decimal("0")))

    @property
    def total_credits(self) -> Decimal:
        return sum((r.amount for r in self.rows if r.amount > 0), Decimal("0"))

    def skip(self, row_number: int, reason: str) -> None:
        self.skipped_rows += 1
        self.warnings.append(f"Row {row_number}: {reason}")


class BaseStatementParser(ABC):
    """Abstract base class for statement parsers."""

    FILE_TYPE: str = "unknown"

    def __init__(self, config: dict | None = None, max_rows: int = 10_000):
        """Initialize the parser.

        Args:
            config: Format-specific parse configuration
            max_rows: Upper bound on records read from one file
        """
        self.config = config or {}
        self.max_rows = max_rows

    def parse_content(self, content: bytes) -> ParseResult:
        """Parse a statement file.

        Args:
            content: Raw file bytes

        Returns:
            ParseResult with at least one row

        Raises:
            ValidationError: If the file cannot be read, is too large, or
                yields no parseable rows
        """
        result = ParseResult(file_type=self.FILE_TYPE)
        seen = 0

        for row_number, record in self._iter_records(content):
            seen += 1
            if seen > self.max_rows:
                raise ValidationError(
                    f"Statement has more than {self.max_rows} rows"
                )

            try:
                row = self._parse_record(record)
            except ValueError as e:
                result.skip(row_number, str(e))
                continue

            row.row_number = row_number
            result.rows.append(row)

        if not result.rows:
            details = [{"message": w} for w in result.warnings[:20]]
            raise ValidationError(
                f"No parseable transactions found in {self.FILE_TYPE} file",
                details=details,
            )

        if result.skipped_rows:
            logger.warning(
                f"Skipped {result.skipped_rows} malformed {self.FILE_TYPE} rows "
                f"({result.row_count} parsed)"
            )

        return result

    @abstractmethod
    def _iter_records(self, content: bytes) -> Iterator[tuple[int, Any]]:
        """Yield (row_number, record) pairs in file order.

        Raises:
            ValidationError: If the file itself cannot be decoded
        """

    @abstractmethod
    def _parse_record(self, record: Any) -> StatementRow:
        """Convert one record into a StatementRow.

        Raises:
            ValueError: If the record is malformed
        """

    def _decode(self, content: bytes, encoding: str = "utf-8") -> str:
        """Decode bytes, dropping a BOM and normalizing line endings."""
        codec = {
            "utf-8": "utf-8-sig",
            "iso-8859-1": "latin-1",
            "windows-1252": "cp1252",
        }.get(encoding.lower(), encoding)

        try:
            text = content.decode(codec)
        except (UnicodeDecodeError, LookupError) as e:
            raise ValidationError(f"Cannot decode {self.FILE_TYPE} file as {encoding}: {e}")

        return text.replace("\r\n", "\n").replace("\r", "\n")
