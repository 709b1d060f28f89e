"""
OFX/QFX Parser

Parses Open Financial Exchange statements in SGML or XML form.
"""

import re
from typing import Any, Iterator

from .base import BaseStatementParser, StatementRow, parse_amount, parse_date

_TRANSACTION_RE = re.compile(r"<STMTTRN>(.*?)</STMTTRN>", re.IGNORECASE | re.DOTALL)


class OFXStatementParser(BaseStatementParser):
    """Parser for OFX and QFX files."""

    FILE_TYPE = "qfx"

    def _iter_records(self, content: bytes) -> Iterator[tuple[int, Any]]:
        text = self._decode(content, self.config.get("encoding", "utf-8"))

        for number, match in enumerate(_TRANSACTION_RE.finditer(text), start=1):
            yield number, match.group(1)

    @staticmethod
    def _tag(block: str, tag: str) -> str | None:
        # SGML leaves tags unclosed, so read up to the next tag or line end
        match = re.search(rf"<{tag}>([^<\n]+)", block, re.IGNORECASE)
        if not match:
            return None
        value = match.group(1).strip()
        return value or None

    def _parse_record(self, block: str) -> StatementRow:
        posted = self._tag(block, "DTPOSTED")
        if not posted or not re.match(r"\d{8}", posted):
            raise ValueError(f"Invalid DTPOSTED: {posted!r}")

        raw_amount = self._tag(block, "TRNAMT")
        # Some banks write TRNAMT with a decimal comma
        separator = "," if raw_amount and "," in raw_amount and "." not in raw_amount else "."

        name = self._tag(block, "NAME")
        memo = self._tag(block, "MEMO")

        return StatementRow(
            date=parse_date(posted[:8], "%Y%m%d"),
            description=name or memo or "",
            amount=parse_amount(raw_amount, separator),
            reference=self._tag(block, "FITID"),
            raw_data={"memo": memo} if memo and name else {},
        )
