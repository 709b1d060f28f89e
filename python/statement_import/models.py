"""
Import Records

Candidates, sessions and results exchanged across the analyze/confirm protocol.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class MatchType(Enum):
    """Classification of a candidate against the existing ledger."""
    NEW = "new"
    EXACT = "exact"  # Same date, amount and normalized description
    PROBABLE = "probable"  # Same amount within the date window
    DUPLICATE = "duplicate"  # Already imported (same import hash)


class ImportAction(Enum):
    """What confirm does with a candidate."""
    CREATE = "create"
    MATCH = "match"
    SKIP = "skip"


DEFAULT_ACTIONS = {
    MatchType.DUPLICATE: ImportAction.SKIP,
    MatchType.EXACT: ImportAction.MATCH,
    MatchType.PROBABLE: ImportAction.MATCH,
    MatchType.NEW: ImportAction.CREATE,
}


@dataclass
class ImportCandidate:
    """One statement row annotated for review."""

    index: int
    date: date
    description: str
    amount: Decimal
    import_hash: str
    row_number: int = 0
    reference: str | None = None
    value_date: date | None = None
    merchant_pattern: str = ""
    match_type: MatchType = MatchType.NEW
    matched_transaction_id: str | None = None
    matched_transaction: dict | None = None
    match_days_apart: int | None = None
    suggested_payee_id: str | None = None
    suggested_payee_name: str | None = None
    credit_card_id: str | None = None
    credit_card_name: str | None = None
    detected_last4: str | None = None
    purchase_date: date | None = None
    is_card_payment: bool = False

    @property
    def default_action(self) -> ImportAction:
        return DEFAULT_ACTIONS[self.match_type]

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "rowNumber": self.row_number,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": float(self.amount),
            "reference": self.reference,
            "valueDate": self.value_date.isoformat() if self.value_date else None,
            "hash": self.import_hash,
            "merchantPattern": self.merchant_pattern,
            "matchType": self.match_type.value,
            "matchedTransactionId": self.matched_transaction_id,
            "matchedTransaction": self.matched_transaction,
            "matchDaysApart": self.match_days_apart,
            "suggestedPayeeId": self.suggested_payee_id,
            "suggestedPayeeName": self.suggested_payee_name,
            "creditCardId": self.credit_card_id,
            "creditCardName": self.credit_card_name,
            "detectedLast4": self.detected_last4,
            "purchaseDate": self.purchase_date.isoformat() if self.purchase_date else None,
            "isCardPayment": self.is_card_payment,
            "defaultAction": self.default_action.value,
        }


@dataclass
class CreditCardDetectionGroup:
    """Card-present rows sharing the same last 4 digits."""

    last4: str
    count: int = 0
    credit_card_id: str | None = None
    credit_card_name: str | None = None  # None: seen but unassociated

    def to_dict(self) -> dict:
        return {
            "last4": self.last4,
            "count": self.count,
            "creditCardId": self.credit_card_id,
            "creditCardName": self.credit_card_name,
        }


@dataclass
class CandidateAction:
    """Client override for one candidate, sent with confirm."""

    action: ImportAction
    matched_transaction_id: str | None = None
    payee_id: str | None = None
    credit_card_id: str | None = None
    merchant_pattern: str | None = None
    category_id: str | None = None
    description: str | None = None


@dataclass
class ImportSession:
    """Reviewable result of analyze, held until confirm or expiry."""

    import_id: str
    user_id: str
    account_id: str
    file_type: str
    parse_config: dict
    created_at: datetime
    expires_at: datetime
    candidates: list[ImportCandidate] = field(default_factory=list)
    credit_cards_detected: list[CreditCardDetectionGroup] = field(default_factory=list)
    filename: str | None = None
    skipped_rows: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        counts = {t: 0 for t in MatchType}
        for candidate in self.candidates:
            counts[candidate.match_type] += 1
        return {
            "total": len(self.candidates),
            "new": counts[MatchType.NEW],
            "matches": counts[MatchType.EXACT] + counts[MatchType.PROBABLE],
            "duplicates": counts[MatchType.DUPLICATE],
            "skippedRows": self.skipped_rows,
        }

    def to_dict(self) -> dict:
        return {
            "importId": self.import_id,
            "accountId": self.account_id,
            "fileType": self.file_type,
            "filename": self.filename,
            "transactions": [c.to_dict() for c in self.candidates],
            "summary": self.summary,
            "creditCardsDetected": [g.to_dict() for g in self.credit_cards_detected],
            "warnings": list(self.warnings),
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class ConfirmResult:
    """Outcome of confirm; partial success is normal."""

    imported: int = 0
    matched: int = 0
    skipped: int = 0
    aliases_learned: int = 0
    errors: int = 0
    error_details: list[dict] = field(default_factory=list)

    def record_error(self, index: int, message: str) -> None:
        self.errors += 1
        self.error_details.append({"index": index, "error": message})

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "matched": self.matched,
            "skipped": self.skipped,
            "aliasesLearned": self.aliases_learned,
            "errors": self.errors,
            "errorDetails": list(self.error_details),
        }
