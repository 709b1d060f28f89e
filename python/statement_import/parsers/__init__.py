"""
Statement file parsers: delimited text, spreadsheet, QIF and OFX/QFX.
"""

from .base import (
    BaseStatementParser,
    StatementRow,
    ParseResult,
    normalize_description,
    parse_amount,
    parse_date,
)
from .delimited import CSVStatementParser
from .excel import ExcelStatementParser
from .qif import QIFStatementParser
from .ofx import OFXStatementParser
from .dispatch import PARSERS, FILE_TYPES, get_parser, parse_statement

__all__ = [
    "BaseStatementParser",
    "StatementRow",
    "ParseResult",
    "normalize_description",
    "parse_amount",
    "parse_date",
    "CSVStatementParser",
    "ExcelStatementParser",
    "QIFStatementParser",
    "OFXStatementParser",
    "PARSERS",
    "FILE_TYPES",
    "get_parser",
    "parse_statement",
]
