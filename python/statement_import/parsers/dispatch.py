"""
Parser Dispatch

Maps a statement file type to its parser.
"""

import logging

from ledger.errors import ValidationError

from .base import BaseStatementParser, ParseResult
from .delimited import CSVStatementParser
from .excel import ExcelStatementParser
from .ofx import OFXStatementParser
from .qif import QIFStatementParser

logger = logging.getLogger(__name__)

PARSERS: dict[str, type[BaseStatementParser]] = {
    "csv": CSVStatementParser,
    "excel": ExcelStatementParser,
    "qif": QIFStatementParser,
    "qfx": OFXStatementParser,
    "ofx": OFXStatementParser,
}

FILE_TYPES = tuple(PARSERS)


def get_parser(
    file_type: str,
    config: dict | None = None,
    max_rows: int = 10_000,
) -> BaseStatementParser:
    """Build the parser registered for a file type.

    Raises:
        ValidationError: If the file type is not supported
    """
    parser_cls = PARSERS.get((file_type or "").lower())
    if parser_cls is None:
        raise ValidationError(
            f"Unsupported file type: {file_type!r}",
            details=[{"field": "fileType", "message": f"Expected one of {', '.join(FILE_TYPES)}"}],
        )
    return parser_cls(config, max_rows=max_rows)


def parse_statement(
    content: bytes,
    file_type: str,
    config: dict | None = None,
    max_rows: int = 10_000,
    max_bytes: int | None = None,
) -> ParseResult:
    """Parse a statement file of the given type.

    Args:
        content: Raw file bytes
        file_type: One of FILE_TYPES
        config: Parse configuration for the format
        max_rows: Upper bound on records
        max_bytes: Upper bound on file size

    Returns:
        ParseResult with at least one row

    Raises:
        ValidationError: On unsupported type, oversized or empty file, or
            when no row can be parsed
    """
    if max_bytes is not None and len(content) > max_bytes:
        raise ValidationError(f"File exceeds the {max_bytes} byte upload limit")
    if not content:
        raise ValidationError("File is empty")

    parser = get_parser(file_type, config, max_rows)
    result = parser.parse_content(content)

    logger.info(
        f"Parsed {result.row_count} {file_type} rows "
        f"({result.skipped_rows} skipped)"
    )
    return result
