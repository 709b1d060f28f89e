"""
Ledger Records

Plain records exchanged with the storage collaborators.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal


@dataclass
class LedgerTransaction:
    """A transaction already recorded on an account."""

    id: str
    account_id: str
    date: date
    amount: Decimal
    description: str = ""
    user_id: str | None = None
    type: str = "expense"  # 'income' or 'expense'
    status: str = "cleared"
    category_id: str | None = None
    payee_id: str | None = None
    credit_card_id: str | None = None
    tags: list[str] = field(default_factory=list)
    notes: str | None = None
    value_date: date | None = None
    purchase_date: date | None = None
    is_reconciled: bool = False
    import_id: str | None = None
    import_hash: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "accountId": self.account_id,
            "date": self.date.isoformat(),
            "amount": float(self.amount),
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "categoryId": self.category_id,
            "payeeId": self.payee_id,
            "creditCardId": self.credit_card_id,
            "tags": list(self.tags),
            "isReconciled": self.is_reconciled,
        }


@dataclass
class CreditCard:
    """A credit card configured on an account."""

    id: str
    account_id: str
    name: str
    last4: str


@dataclass
class Payee:
    id: str
    name: str
    user_id: str | None = None


@dataclass
class MerchantAlias:
    """Learned mapping from a merchant pattern to a payee."""

    pattern: str
    payee_id: str
    user_id: str
    id: str | None = None
    payee_name: str | None = None
    bank_description: str = ""
    source: str = "import_learn"
    times_matched: int = 1
    last_matched_at: datetime | None = None
